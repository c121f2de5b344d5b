"""
Tests for the equity waterfall.
"""

import dataclasses
import pytest
from decimal import Decimal

from feasibility.calculations.inputs import EquityTranche, WaterfallConfig
from feasibility.calculations.irr import calculate_irr_pa, calculate_npv
from feasibility.calculations.waterfall import PRO_RATA, compute_waterfall

from conftest import decimal_row


def tranche(key, commitment, role="LP", pref=0, compounding="simple"):
    return EquityTranche.model_validate({
        "key": key,
        "role": role,
        "commitment": commitment,
        "preferred_return": {"rate_pa": pref, "compounding": compounding},
    })


def tier(key, split_lp, irr=None, moic=None, catchup=None):
    trigger = {"irr_threshold": irr} if irr is not None else {"moic_threshold": moic}
    hurdle = {
        "key": key,
        "trigger": trigger,
        "split_after_catchup": {"lp": split_lp, "gp": round(1 - split_lp, 10)},
    }
    if catchup is not None:
        hurdle["catchup"] = {"enabled": True, "gp_target_share_of_profits": catchup}
    return hurdle


def config(*hurdles, mode="european", **extra):
    return WaterfallConfig.model_validate({"mode": mode, "hurdles": list(hurdles), **extra})


def account(result, key):
    return next(a for a in result.accounts if a.key == key)


class TestFunding:
    """Test equity calls against commitments."""

    def test_calls_pro_rata_to_commitments(self):
        """Test a deficit is called pro-rata to remaining commitments."""
        result = compute_waterfall(
            decimal_row(-500, 0), [tranche("lp", 900), tranche("gp", 100, role="GP")], config()
        )
        assert account(result, "lp").contributed[0] == Decimal("450.00")
        assert account(result, "gp").contributed[0] == Decimal("50.00")
        assert result.contributions[0] == Decimal("500.00")

    def test_contributions_never_exceed_commitments(self):
        """Test repeated calls stop at each tranche's commitment."""
        result = compute_waterfall(
            decimal_row(-400, -400, -400, 2000),
            [tranche("lp", 900), tranche("gp", 100, role="GP")],
            config(),
        )
        for a in result.accounts:
            assert a.total_contributed <= a.commitment
        assert result.funding_gap[2] == Decimal("200.00")

    def test_funding_gap_reported(self):
        """Test uncovered deficits show up as a funding gap, not a silent loss."""
        result = compute_waterfall(decimal_row(-1000, 500), [tranche("lp", 600)], config())
        assert result.funding_gap[0] == Decimal("400.00")
        assert result.cash_balance[0] == Decimal("-400.00")
        assert result.distributions[1] == Decimal("100.00")

    def test_no_tranches_holds_cash(self):
        """Test surplus cash stays in the project when there is no equity."""
        result = compute_waterfall(decimal_row(0, 250), [], config())
        assert result.cash_balance[1] == Decimal("250")
        assert sum(result.distributions) == 0


class TestPreferredReturn:
    """Test preferred return accrual and payment."""

    def test_lp_only_returns_match_project(self):
        """Test a lone LP without pref or tiers earns the project IRR."""
        residual = decimal_row(-1000, 0, 0, 1200)
        result = compute_waterfall(residual, [tranche("lp", 1000)], config())
        assert abs(result.summary("LP")["irr_pa"] - calculate_irr_pa(residual)) < 1e-9
        assert account(result, "lp").distributions[3] == Decimal("1200")

    @pytest.mark.parametrize(
        "compounding,expected",
        [("simple", "40.00"), ("monthly", "40.60"), ("quarterly", "40.30")],
    )
    def test_pref_compounding(self, compounding, expected):
        """Test pref accrued over four months under each compounding convention."""
        result = compute_waterfall(
            decimal_row(-1000, 0, 0, 1100),
            [tranche("lp", 1000, pref=0.12, compounding=compounding)],
            config(),
        )
        lp = account(result, "lp")
        assert lp.preferred_paid[3] == Decimal(expected)
        assert lp.returned_capital[3] == Decimal("1000")

    def test_pref_shortfall_carries_forward(self):
        """Test unpaid pref stays accrued when cash runs short."""
        result = compute_waterfall(
            decimal_row(-1000, 0, 0, 1020), [tranche("lp", 1000, pref=0.12)], config()
        )
        lp = account(result, "lp")
        assert lp.preferred_paid[3] == Decimal("20")
        assert lp.preferred_accrued[3] == Decimal("20.00")

    def test_lp_only_accrual(self):
        """Test GP tranches do not accrue pref when accrual is LP-only."""
        result = compute_waterfall(
            decimal_row(-1000, 0, 0, 1500),
            [tranche("lp", 900, pref=0.12), tranche("gp", 100, role="GP", pref=0.12)],
            config(accrual_level="lp_only"),
        )
        assert sum(account(result, "gp").preferred_paid) == 0
        assert sum(account(result, "lp").preferred_paid) == Decimal("36.00")


class TestEuropeanWaterfall:
    """Test deal-level tier selection."""

    def test_governing_tier_splits_profit(self):
        """Test profit follows the highest tier the deal achieves."""
        residual = decimal_row(-1000, *([0] * 10), 2000)
        result = compute_waterfall(
            residual,
            [tranche("lp", 900), tranche("gp", 100, role="GP")],
            config(tier("promote", 0.7, irr=0.08)),
        )
        assert result.governing_tier == "promote"
        assert account(result, "lp").profit_distributions[11] == Decimal("700.00")
        assert account(result, "gp").profit_distributions[11] == Decimal("300.00")
        assert result.carry_paid[11] == Decimal("200.00")
        assert sum(result.clawback) == 0
        assert result.tier_distributions["promote"][11] == Decimal("1000.00")

    def test_unmet_tier_falls_back_to_pro_rata(self):
        """Test profit is shared by capital when no tier is met."""
        residual = decimal_row(-1000, *([0] * 10), 2000)
        result = compute_waterfall(
            residual,
            [tranche("lp", 900), tranche("gp", 100, role="GP")],
            config(tier("promote", 0.7, irr=5.0)),
        )
        assert result.governing_tier is None
        assert account(result, "lp").profit_distributions[11] == Decimal("900.00")
        assert account(result, "gp").profit_distributions[11] == Decimal("100.00")
        assert result.tier_distributions[PRO_RATA][11] == Decimal("1000.00")
        assert sum(result.carry_paid) == 0

    def test_catch_up_reaches_target_share(self):
        """Test the GP catches up to its target share of pref and profit."""
        result = compute_waterfall(
            decimal_row(-1000, 0, 0, 1240),
            [tranche("lp", 1000, pref=0.12), tranche("gp", 0, role="GP")],
            config(tier("promote", 0.8, irr=0.0, catchup=0.2)),
        )
        lp, gp = account(result, "lp"), account(result, "gp")
        gp_total = sum(gp.distributions)
        lp_returns = sum(lp.preferred_paid) + sum(lp.profit_distributions)
        assert gp_total == Decimal("48.00")
        assert gp_total / (gp_total + lp_returns) == Decimal("0.2")

    def test_profit_routes_to_lp_without_gp(self):
        """Test a tier's GP share goes to LPs when there is no GP tranche."""
        result = compute_waterfall(
            decimal_row(-1000, 1500), [tranche("lp", 1000)], config(tier("promote", 0.7, irr=0.0))
        )
        assert account(result, "lp").profit_distributions[1] == Decimal("500.00")


class TestAmericanWaterfall:
    """Test period-by-period tier progression."""

    def test_tiers_fill_in_order(self):
        """Test cash walks through each MOIC tier as the LP meets it."""
        result = compute_waterfall(
            decimal_row(-1000, 0, 2000),
            [tranche("lp", 900), tranche("gp", 100, role="GP")],
            config(tier("tier0", 0.8, moic=1.2), tier("tier1", 0.6, moic=1.5), mode="american"),
        )
        assert result.tier_distributions[PRO_RATA][2] == Decimal("200.00")
        assert result.tier_distributions["tier0"][2] == Decimal("337.50")
        assert result.tier_distributions["tier1"][2] == Decimal("462.50")
        assert account(result, "lp").total_distributed == Decimal("1627.50")
        assert account(result, "gp").total_distributed == Decimal("372.50")

    def test_clawback_restores_lp_capital(self):
        """Test early GP carry is clawed back when later calls leave LP capital unreturned."""
        result = compute_waterfall(
            decimal_row(-1000, 1500, -200, 0),
            [tranche("lp", 1080), tranche("gp", 120, role="GP")],
            config(tier("tier0", 0.5, irr=0), mode="american"),
        )
        lp, gp = account(result, "lp"), account(result, "gp")
        assert result.clawback[3] == Decimal("180.00")
        assert lp.total_distributed == Decimal("1330.00")
        assert gp.distributions[3] == Decimal("-180.00")
        assert lp.ending_unreturned_capital[3] == 0


class TestConservation:
    """Test that the waterfall neither creates nor loses cash."""

    def test_distributions_tie_to_distributable_cash(self):
        """Test tranche distributions add up to the cash distributed."""
        result = compute_waterfall(
            decimal_row(-1000, 0, 300, 0, 1700),
            [tranche("lp", 900, pref=0.08, compounding="monthly"), tranche("gp", 100, role="GP", pref=0.08)],
            config(
                tier("t1", 0.8, irr=0.08, catchup=0.2),
                tier("t2", 0.7, irr=0.15),
                mode="american",
            ),
        )
        for t in range(5):
            paid = sum(a.distributions[t] for a in result.accounts)
            assert paid == result.distributions[t]
            assert result.lp_distributions[t] + result.gp_distributions[t] == paid

    def test_result_serializes(self):
        """Test the result converts to plain JSON types."""
        result = compute_waterfall(
            decimal_row(-1000, 1500), [tranche("lp", 900), tranche("gp", 100, role="GP")], config()
        )
        data = result.to_dict()
        assert data["lp"]["contributed"] == 900.0
        assert data["tiers"]["governing_tier"] is None
        assert len(data["capital_accounts"]) == 2
        assert data["capital_accounts"][0]["moic"] == pytest.approx(1.5)

    def test_tranche_npv(self):
        """Test each capital account reports NPV at the result's discount rate."""
        result = compute_waterfall(
            decimal_row(-1000, 1500), [tranche("lp", 900), tranche("gp", 100, role="GP")], config()
        )
        result = dataclasses.replace(result, discount_rate_pa=Decimal("0.10"))
        lp = result.to_dict()["capital_accounts"][0]
        assert lp["npv"] == pytest.approx(float(calculate_npv([-900, 1350], Decimal("0.10"))))
        assert result.to_dict()["lp"]["npv"] == lp["npv"]

    def test_tier_rows_read_only(self):
        """Test the per-tier distribution rows cannot be replaced."""
        result = compute_waterfall(
            decimal_row(-1000, 1500),
            [tranche("lp", 900), tranche("gp", 100, role="GP")],
            config(tier("promote", 0.8, irr=0)),
        )
        assert "promote" in result.tier_distributions
        with pytest.raises(TypeError):
            result.tier_distributions["promote"] = decimal_row(0, 0)
