"""
Tests for IRR, NPV, rate conversion and return ratios.
"""

import pytest
from decimal import Decimal

from feasibility.calculations.errors import ConfigurationError
from feasibility.calculations.irr import (
    annualize_irr,
    calculate_dpi,
    calculate_irr,
    calculate_irr_pa,
    calculate_moic,
    calculate_multiple,
    calculate_npv,
    calculate_profit,
    calculate_rvpi,
    calculate_tvpi,
    effective_to_nominal,
    nominal_to_effective,
)


class TestIRRCalculations:
    """Test IRR calculation functions."""

    def test_calculate_irr_simple(self):
        """Test IRR calculation with simple cash flows."""
        # Investment of 100, returns of 110 after 1 period = 10% return
        irr = calculate_irr([-100, 110])
        assert abs(irr - 0.10) < 1e-9

    def test_calculate_irr_multi_period(self):
        """Test IRR with multiple periods."""
        # Investment of 100, returns of 20 a period, capital back at the end
        irr = calculate_irr([-100, 20, 20, 20, 20, 120])
        assert abs(irr - 0.20) < 1e-9

    def test_irr_negative_returns(self):
        """Test IRR with negative return scenario."""
        irr = calculate_irr([-100, 40, 40, 10])
        assert irr < 0

    def test_irr_high_return_series(self):
        """Test IRR far from the initial guess still solves."""
        flows = [-1] + [0] * 11 + [1000]
        irr = calculate_irr(flows)
        assert abs(irr - (1000 ** (1 / 12) - 1)) < 1e-6

    def test_irr_accepts_decimals(self):
        """Test IRR on a Decimal series."""
        irr = calculate_irr([Decimal("-100.00"), Decimal("110.00")])
        assert abs(irr - 0.10) < 1e-9

    def test_irr_none_without_sign_change(self):
        """Test IRR is undefined when every flow has the same sign."""
        assert calculate_irr([100, 50, 25]) is None
        assert calculate_irr([-100, -5]) is None
        assert calculate_irr([0, 0, 0]) is None

    def test_irr_none_for_single_flow(self):
        """Test IRR is undefined for a one-period series."""
        assert calculate_irr([-100]) is None

    def test_annualize_irr(self):
        """Test monthly IRR compounds to an annual effective rate."""
        assert abs(annualize_irr(0.01) - 0.126825030131969) < 1e-12
        assert annualize_irr(None) is None

    def test_calculate_irr_pa(self):
        """Test annual IRR of a monthly series."""
        flows = [-1000] + [0] * 11 + [1100]
        assert abs(calculate_irr_pa(flows) - 0.10) < 1e-9


class TestNPV:
    """Test NPV calculation."""

    def test_calculate_npv(self):
        """Test NPV calculation."""
        npv = calculate_npv([-100, 50, 50, 50], 0.10)
        # NPV should be positive since returns exceed cost
        assert npv > 0

    def test_npv_at_zero_rate_is_sum(self):
        """Test NPV at a zero rate equals the undiscounted sum."""
        assert calculate_npv([-100, 30, 30, 30], 0) == Decimal("-10.00")

    def test_npv_discounts_monthly(self):
        """Test NPV uses the monthly equivalent of the annual rate."""
        # 110 twelve months out at 10% a year is worth exactly 100 today
        npv = calculate_npv([-100] + [0] * 11 + [110], 0.10)
        assert abs(npv) <= Decimal("0.01")

    def test_npv_is_zero_at_irr(self):
        """Test NPV at the annual IRR is zero."""
        flows = [-1000, 100, 200, 300, 400, 500]
        rate = calculate_irr_pa(flows)
        assert abs(calculate_npv(flows, rate)) <= Decimal("0.01")


class TestRateConversion:
    """Test nominal/effective conversions."""

    @pytest.mark.parametrize("periods_per_year", [1, 4, 12])
    @pytest.mark.parametrize("rate", [0.0, 0.05, 0.12, 0.25])
    def test_round_trip(self, rate, periods_per_year):
        """Test nominal -> effective -> nominal returns the input."""
        effective = nominal_to_effective(rate, periods_per_year)
        nominal = effective_to_nominal(effective, periods_per_year)
        assert abs(float(nominal) - rate) < 1e-6

    def test_nominal_12_percent_monthly(self):
        """Test 12% nominal compounded monthly is about 12.68% effective."""
        effective = nominal_to_effective(0.12, 12)
        assert abs(float(effective) - 0.126825) < 1e-6

    def test_annual_compounding_is_identity(self):
        """Test one compounding period leaves the rate unchanged."""
        assert abs(float(nominal_to_effective(0.07, 1)) - 0.07) < 1e-12

    @pytest.mark.parametrize("periods_per_year", [0, -12])
    def test_non_positive_periods_rejected(self, periods_per_year):
        """Test compounding frequency must be positive."""
        with pytest.raises(ConfigurationError):
            nominal_to_effective(0.05, periods_per_year)
        with pytest.raises(ConfigurationError):
            effective_to_nominal(0.05, periods_per_year)

    def test_configuration_error_is_value_error(self):
        """Test configuration errors can be caught as ValueError."""
        with pytest.raises(ValueError):
            effective_to_nominal(0.05, 0)


class TestRatios:
    """Test multiple and paid-in ratios."""

    def test_moic(self):
        """Test MOIC includes residual value."""
        assert calculate_moic(150, 100) == 1.5
        assert calculate_moic(150, 100, residual=50) == 2.0

    def test_ratios_undefined_without_contributions(self):
        """Test ratios are None, not zero, when nothing was contributed."""
        assert calculate_moic(100, 0) is None
        assert calculate_tvpi(100, 0, 0) is None
        assert calculate_dpi(100, 0) is None
        assert calculate_rvpi(100, 0) is None

    def test_tvpi_is_dpi_plus_rvpi(self):
        """Test TVPI decomposes into DPI and RVPI."""
        tvpi = calculate_tvpi(120, 30, 100)
        assert abs(tvpi - (calculate_dpi(120, 100) + calculate_rvpi(30, 100))) < 1e-12

    def test_calculate_multiple(self):
        """Test equity multiple of a signed series."""
        assert calculate_multiple([-100, 50, 100]) == 1.5
        assert calculate_multiple([10, 20]) is None

    def test_calculate_profit(self):
        """Test profit is the signed sum of flows."""
        assert calculate_profit([-100, 50, 100]) == Decimal("50")
