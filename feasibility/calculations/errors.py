"""
Calculation engine exceptions.
"""


class ConfigurationError(ValueError):
    """Raised when an input snapshot cannot be calculated as specified.

    Covers malformed hurdle splits, non-monotonic hurdle thresholds,
    non-positive compounding periods and negative rates. The run is aborted
    and no partial result is returned.
    """
