"""
IRR, NPV and Return Ratios

Implements IRR using Newton-Raphson with a bisection fallback, NPV at the
monthly rate implied by an annual discount rate, rate conversions and the
private-equity ratios (MOIC, TVPI, DPI, RVPI).

Undefined results (no sign change, zero contributed capital) are None,
never 0 or NaN.
"""

import math
from decimal import Decimal
from typing import Optional, Sequence, Union

import numpy as np

from feasibility.calculations.errors import ConfigurationError
from feasibility.calculations.money import ONE, ZERO, money, to_decimal
from feasibility.config import get_settings

Number = Union[Decimal, float, int]

DEFAULT_GUESS = 0.01
RATE_FLOOR = -0.9999
RATE_CEILING = 10.0
BRACKET_GRID = (
    RATE_FLOOR, -0.9, -0.5, -0.2, -0.1, -0.05, -0.01, 0.0,
    0.005, 0.01, 0.02, 0.05, 0.1, 0.2, 0.5, 1.0, 2.0, 5.0, RATE_CEILING,
)


def nominal_to_effective(nominal: Number, periods_per_year: int) -> Decimal:
    """
    Convert a nominal annual rate compounded m times a year to an effective rate.

    effective = (1 + nominal/m)^m - 1

    Raises:
        ConfigurationError: If periods_per_year is not positive
    """
    if periods_per_year <= 0:
        raise ConfigurationError(f"compounding periods must be positive, got {periods_per_year}")
    m = Decimal(periods_per_year)
    base = ONE + to_decimal(nominal) / m
    if base <= 0:
        raise ConfigurationError(f"nominal rate {nominal} is below -{periods_per_year}")
    return base ** periods_per_year - ONE


def effective_to_nominal(effective: Number, periods_per_year: int) -> Decimal:
    """
    Convert an effective annual rate to the nominal rate compounded m times a year.

    nominal = m * ((1 + effective)^(1/m) - 1)

    Raises:
        ConfigurationError: If periods_per_year is not positive
    """
    if periods_per_year <= 0:
        raise ConfigurationError(f"compounding periods must be positive, got {periods_per_year}")
    m = Decimal(periods_per_year)
    base = ONE + to_decimal(effective)
    if base <= 0:
        raise ConfigurationError(f"effective rate {effective} must be greater than -1")
    return m * (base ** (ONE / m) - ONE)


def periodic_rate(annual_rate: Number, periods_per_year: int = 12) -> Decimal:
    """Per-period rate equivalent to an effective annual rate."""
    return effective_to_nominal(annual_rate, periods_per_year) / Decimal(periods_per_year)


def calculate_npv(cash_flows: Sequence[Number], annual_rate: Number, periods_per_year: int = 12) -> Decimal:
    """
    Calculate NPV of a periodic cash flow series.

    Args:
        cash_flows: One cash flow per period, period 0 undiscounted
        annual_rate: Annual effective discount rate (e.g., 0.10 for 10%)
        periods_per_year: Periods per year of the series

    Returns:
        NPV rounded to the cent
    """
    factor = ONE + periodic_rate(annual_rate, periods_per_year)
    npv = ZERO
    discount = ONE
    for cf in cash_flows:
        npv += to_decimal(cf) / discount
        discount *= factor
    return money(npv)


def _npv_at(flows: np.ndarray, periods: np.ndarray, rate: float) -> float:
    with np.errstate(over="ignore", divide="ignore", invalid="ignore"):
        return float(np.sum(flows / (1.0 + rate) ** periods))


def _npv_derivative(flows: np.ndarray, periods: np.ndarray, rate: float) -> float:
    """Calculate derivative of NPV with respect to rate (for Newton-Raphson)."""
    with np.errstate(over="ignore", divide="ignore", invalid="ignore"):
        return float(np.sum(-periods * flows / (1.0 + rate) ** (periods + 1)))


def _bisect(flows: np.ndarray, periods: np.ndarray, max_iterations: int, tolerance: float) -> Optional[float]:
    values = [(rate, _npv_at(flows, periods, rate)) for rate in BRACKET_GRID]
    bracket = None
    for (lo, f_lo), (hi, f_hi) in zip(values, values[1:]):
        if not (math.isfinite(f_lo) and math.isfinite(f_hi)):
            continue
        if f_lo == 0:
            return lo
        if f_lo * f_hi < 0:
            bracket = (lo, f_lo, hi)
            break
    if bracket is None:
        return None

    lo, f_lo, hi = bracket
    for _ in range(max_iterations * 2):
        mid = (lo + hi) / 2
        f_mid = _npv_at(flows, periods, mid)
        if f_mid == 0 or (hi - lo) / 2 < tolerance:
            return mid
        if f_mid * f_lo < 0:
            hi = mid
        else:
            lo, f_lo = mid, f_mid
    return (lo + hi) / 2


def calculate_irr(
    cash_flows: Sequence[Number],
    guess: float = DEFAULT_GUESS,
    max_iterations: Optional[int] = None,
    tolerance: Optional[float] = None,
) -> Optional[float]:
    """
    Calculate the periodic IRR of a cash flow series.

    Newton-Raphson from `guess`; if it stalls or leaves the bracket
    [-0.9999, 10], bisection over a sign-change bracket takes over.

    Args:
        cash_flows: Array of periodic cash flows
        guess: Initial guess for the periodic rate

    Returns:
        Periodic IRR as decimal, or None when no solution exists
    """
    settings = get_settings()
    max_iterations = max_iterations or settings.irr_max_iterations
    tolerance = tolerance or settings.irr_tolerance

    flows = np.array([float(cf) for cf in cash_flows], dtype=float)
    if len(flows) < 2:
        return None
    if not (flows > 0).any() or not (flows < 0).any():
        return None

    periods = np.arange(len(flows), dtype=float)
    scale = float(np.sum(np.abs(flows)))

    rate = guess
    for _ in range(max_iterations):
        npv = _npv_at(flows, periods, rate)
        dnpv = _npv_derivative(flows, periods, rate)
        if not (math.isfinite(npv) and math.isfinite(dnpv)) or dnpv == 0:
            break
        if abs(npv) <= tolerance * scale:
            return rate

        new_rate = rate - npv / dnpv
        if not math.isfinite(new_rate) or new_rate <= RATE_FLOOR or new_rate > RATE_CEILING:
            break
        if abs(new_rate - rate) < tolerance:
            return new_rate
        rate = new_rate

    return _bisect(flows, periods, max_iterations, tolerance)


def annualize_irr(periodic_irr: Optional[float], periods_per_year: int = 12) -> Optional[float]:
    """Convert a periodic IRR to an annual effective IRR."""
    if periodic_irr is None:
        return None
    return (1 + periodic_irr) ** periods_per_year - 1


def calculate_irr_pa(cash_flows: Sequence[Number], periods_per_year: int = 12) -> Optional[float]:
    """Annual IRR of a monthly cash flow series."""
    return annualize_irr(calculate_irr(cash_flows), periods_per_year)


def safe_ratio(numerator: Decimal, denominator: Decimal) -> Optional[float]:
    """numerator / denominator as a float, or None when the denominator is zero."""
    if denominator == 0:
        return None
    return float(numerator / denominator)


def calculate_moic(distributed: Number, contributed: Number, residual: Number = 0) -> Optional[float]:
    """Multiple on invested capital: (distributed + residual) / contributed."""
    return safe_ratio(to_decimal(distributed) + to_decimal(residual), to_decimal(contributed))


def calculate_tvpi(distributed: Number, residual: Number, contributed: Number) -> Optional[float]:
    """Total value to paid-in."""
    return safe_ratio(to_decimal(distributed) + to_decimal(residual), to_decimal(contributed))


def calculate_dpi(distributed: Number, contributed: Number) -> Optional[float]:
    """Distributions to paid-in."""
    return safe_ratio(to_decimal(distributed), to_decimal(contributed))


def calculate_rvpi(residual: Number, contributed: Number) -> Optional[float]:
    """Residual value to paid-in."""
    return safe_ratio(to_decimal(residual), to_decimal(contributed))


def calculate_multiple(cash_flows: Sequence[Number]) -> Optional[float]:
    """
    Calculate equity multiple.

    Args:
        cash_flows: Array of cash flows (investments are negative)

    Returns:
        Multiple (e.g., 2.0 = 2.0x return), or None without any investment
    """
    flows = [to_decimal(cf) for cf in cash_flows]
    total_inflows = sum((cf for cf in flows if cf > 0), ZERO)
    total_outflows = abs(sum((cf for cf in flows if cf < 0), ZERO))
    return safe_ratio(total_inflows, total_outflows)


def calculate_profit(cash_flows: Sequence[Number]) -> Decimal:
    """Calculate profit (total inflows minus total outflows)."""
    return sum((to_decimal(cf) for cf in cash_flows), ZERO)
