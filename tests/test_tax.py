"""
Tests for depreciation and corporation tax.
"""

from decimal import Decimal

from feasibility.calculations.depreciation import compute_depreciation, straight_line
from feasibility.calculations.inputs import CostItem, DepreciationPolicy, RevenueLine, TaxConfig
from feasibility.calculations.rows import build_cost_rows, build_revenue_rows
from feasibility.calculations.tax import compute_corporation_tax

from conftest import decimal_row


def building(**policy):
    return CostItem.model_validate({
        "key": "building",
        "base_amount": 1200000,
        "start_period": 0,
        "duration_periods": 2,
        "depreciation": {"method": "straight_line", **policy},
    })


def rental(horizon):
    line = RevenueLine(key="flats", kind="rental", units=10, price_per_unit=1000, start_period=2, end_period=horizon)
    return build_revenue_rows([line], horizon)


def depreciate(items, horizon, revenue=None):
    costs = build_cost_rows(items, horizon)
    return compute_depreciation(items, costs, revenue or rental(horizon))


class TestDepreciation:
    """Test straight-line depreciation of capitalised items."""

    def test_straight_line_after_salvage(self):
        """Test basis less salvage is written off evenly over the useful life."""
        schedule = depreciate(
            [building(start_period=2, useful_life_months=10, salvage_value=200000)], 24
        )
        assert schedule.total[:2] == (0, 0)
        assert schedule.total[2:12] == (Decimal("100000.00"),) * 10
        assert schedule.total[12] == 0
        assert sum(schedule.total) == Decimal("1000000.00")
        assert schedule.items["building"] == schedule.total

    def test_life_beyond_horizon_is_truncated(self):
        """Test months past the last period are not charged."""
        schedule = depreciate([building(start_period=2, useful_life_months=10, salvage_value=200000)], 6)
        assert sum(schedule.total) == Decimal("400000.00")

    def test_last_month_absorbs_rounding(self):
        """Test the final month books the rounding residual."""
        policy = DepreciationPolicy(method="straight_line", useful_life_months=3)
        charges = straight_line(decimal_row(1000, 0, 0, 0), policy)
        assert charges == [Decimal("333.33"), Decimal("333.33"), Decimal("333.34"), 0]

    def test_items_without_policy_or_opex_skipped(self):
        """Test opex and items without a straight-line policy are not depreciated."""
        items = [
            building(method="none", useful_life_months=10),
            CostItem(key="fitout", base_amount=100000),
            CostItem.model_validate({
                "key": "ops",
                "base_amount": 50000,
                "is_opex": True,
                "depreciation": {"method": "straight_line", "useful_life_months": 5},
            }),
        ]
        schedule = depreciate(items, 12)
        assert sum(schedule.total) == 0
        assert dict(schedule.items) == {}

    def test_for_sale_scheme_not_depreciated(self):
        """Test for-sale schemes release cost through cost of sales instead."""
        sales = build_revenue_rows(
            [RevenueLine(key="homes", units=4, price_per_unit=500000, start_period=6, end_period=7)], 12
        )
        schedule = depreciate([building(useful_life_months=10)], 12, revenue=sales)
        assert sum(schedule.total) == 0

    def test_schedule_serializes(self):
        """Test the schedule converts to plain JSON types."""
        data = depreciate([building(start_period=1, useful_life_months=12)], 12).to_dict()
        assert data["total"][1] == 100000.0
        assert list(data["detail"]) == ["building"]


class TestCorporationTax:
    """Test corporation tax on operating profit."""

    def test_losses_carry_forward(self):
        """Test losses shelter later profits before tax is charged."""
        result = compute_corporation_tax(
            decimal_row(-100, 50, 100, 100),
            decimal_row(0, 0, 0, 40),
            decimal_row(0, 0, 0, 0),
            TaxConfig(corp_tax_rate=Decimal("0.25")),
        )
        assert result.nol_carry == decimal_row(100, 50, 0, 0)
        assert result.taxable_income == decimal_row(0, 0, 50, 60)
        assert result.tax == (0, 0, Decimal("12.50"), Decimal("15.00"))
        assert result.pbt == decimal_row(-100, 50, 100, 60)

    def test_finance_costs_capped(self):
        """Test finance costs above the cap share of EBIT are not deductible."""
        result = compute_corporation_tax(
            decimal_row(100),
            decimal_row(30),
            decimal_row(10),
            TaxConfig(corp_tax_rate=Decimal("0.25"), interest_cap_pct=Decimal("0.3")),
        )
        assert result.allowed_finance_costs[0] == Decimal("30.00")
        assert result.tax[0] == Decimal("17.50")

    def test_uncapped_finance_costs_create_losses(self):
        """Test finance costs in a loss period add to the carried loss."""
        result = compute_corporation_tax(
            decimal_row(0, 100),
            decimal_row(40, 0),
            decimal_row(10, 0),
            TaxConfig(corp_tax_rate=Decimal("0.2")),
        )
        assert result.nol_carry[0] == Decimal("50")
        assert result.tax == (0, Decimal("10.00"))

    def test_without_carryforward(self):
        """Test each period is taxed alone when carryforward is disabled."""
        result = compute_corporation_tax(
            decimal_row(-100, 100),
            decimal_row(0, 0),
            decimal_row(0, 0),
            TaxConfig(corp_tax_rate=Decimal("0.25"), allow_nol_carryforward=False),
        )
        assert result.tax == (0, Decimal("25.00"))
        assert result.nol_carry == (0, 0)

    def test_zero_rate_by_default(self):
        """Test the default configuration charges no tax."""
        result = compute_corporation_tax(decimal_row(500), decimal_row(0), decimal_row(0), TaxConfig())
        assert result.tax == (0,)
        assert result.to_dict()["taxable_income"] == [500.0]
