"""
Calculation Engine

Runs a validated input snapshot through the row builders, the debt engine,
depreciation and corporation tax, the equity waterfall, the statements and
the covenant tests, and packages the KPIs into an immutable result snapshot.
"""

import dataclasses
import hashlib
import logging
from dataclasses import dataclass
from decimal import Decimal, localcontext
from typing import Dict, Optional, Sequence, Union

from feasibility.calculations.covenants import CovenantResult, compute_covenants
from feasibility.calculations.debt import FinancingSchedule, compute_financing
from feasibility.calculations.depreciation import DepreciationSchedule, compute_depreciation
from feasibility.calculations.inputs import InputSnapshot, load_snapshot
from feasibility.calculations.irr import (
    calculate_dpi,
    calculate_irr_pa,
    calculate_moic,
    calculate_npv,
    calculate_profit,
    calculate_rvpi,
    calculate_tvpi,
)
from feasibility.calculations.money import Row, freeze, row_sum, to_decimal, to_floats
from feasibility.calculations.rows import (
    CostRows,
    RevenueRows,
    build_cost_rows,
    build_revenue_rows,
)
from feasibility.calculations.statements import (
    ExitValuation,
    Statements,
    build_statements,
    compute_earnings,
    compute_exit,
    residual_value,
)
from feasibility.calculations.tax import CorporationTax, compute_corporation_tax
from feasibility.calculations.timeline import PeriodGrid
from feasibility.calculations.waterfall import WaterfallResult, compute_waterfall
from feasibility.config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KPIs:
    """Headline returns of a run. Undefined values are None."""

    irr_pa: Optional[float]
    project_irr_pa: Optional[float]
    npv: Decimal
    profit: Decimal
    moic: Optional[float]
    tvpi: Optional[float]
    dpi: Optional[float]
    rvpi: Optional[float]
    residual_value: Decimal

    def to_dict(self) -> Dict:
        return {
            "irr_pa": self.irr_pa,
            "project_irr_pa": self.project_irr_pa,
            "npv": float(self.npv),
            "profit": float(self.profit),
            "moic": self.moic,
            "tvpi": self.tvpi,
            "dpi": self.dpi,
            "rvpi": self.rvpi,
            "residual_value": float(self.residual_value),
        }


@dataclass(frozen=True)
class ResultSnapshot:
    """Complete output of one engine run, keyed by the input fingerprint."""

    fingerprint: str
    grid: PeriodGrid
    costs: CostRows
    revenue: RevenueRows
    financing: FinancingSchedule
    exit: ExitValuation
    depreciation: DepreciationSchedule
    tax: CorporationTax
    waterfall: WaterfallResult
    statements: Statements
    covenants: CovenantResult
    kpis: KPIs

    def to_dict(self) -> Dict:
        return {
            "fingerprint": self.fingerprint,
            "timeline": {
                "periods": self.grid.periods,
                "dates": [d.isoformat() for d in self.grid.dates()],
            },
            "costs": {
                "capex": to_floats(self.costs.capex),
                "opex": to_floats(self.costs.opex),
                "detail": {k: to_floats(v) for k, v in self.costs.items.items()},
            },
            "revenue": {
                "sales": to_floats(self.revenue.sales),
                "rent": to_floats(self.revenue.rent),
                "detail": {k: to_floats(v) for k, v in self.revenue.lines.items()},
            },
            "financing": self.financing.to_dict(),
            "exit": self.exit.to_dict(),
            "depreciation": self.depreciation.to_dict(),
            "tax": self.tax.to_dict(),
            "profit_and_loss": self.statements.profit_and_loss.to_dict(),
            "cash_flow": self.statements.cash_flow.to_dict(),
            "balance_sheet": self.statements.balance_sheet.to_dict(),
            "waterfall": self.waterfall.to_dict(),
            "covenants": self.covenants.to_dict(),
            "kpis": self.kpis.to_dict(),
        }


def fingerprint(snapshot: InputSnapshot) -> str:
    """SHA-256 of the canonical JSON of a validated snapshot."""
    return hashlib.sha256(snapshot.model_dump_json().encode("utf-8")).hexdigest()


def pre_equity_cash(
    costs: CostRows,
    revenue: RevenueRows,
    financing: FinancingSchedule,
    exit_valuation: ExitValuation,
    tax: Sequence[Decimal],
) -> Row:
    """Project cash after debt draws, debt service, fees, tax and reserve movements."""
    fees = financing.fees_total
    income = revenue.total
    return freeze(
        income[t]
        + exit_valuation.proceeds[t]
        - costs.opex[t]
        - costs.capex[t]
        + financing.draws[t]
        - financing.interest[t]
        - financing.principal[t]
        - fees[t]
        - financing.dsra_funding[t]
        + financing.dsra_release[t]
        - tax[t]
        for t in range(len(costs.capex))
    )


def project_cash_flows(costs: CostRows, revenue: RevenueRows, exit_valuation: ExitValuation) -> Row:
    """Unlevered project cash flow before tax."""
    income = revenue.total
    return freeze(
        income[t] + exit_valuation.proceeds[t] - costs.opex[t] - costs.capex[t]
        for t in range(len(costs.capex))
    )


def compute_kpis(
    waterfall: WaterfallResult,
    project_flows: Row,
    nav: Decimal,
    discount_rate_pa: Decimal,
) -> KPIs:
    """
    Equity returns on the aggregate equity cash flow plus residual value.

    Args:
        waterfall: Equity contributions and distributions
        project_flows: Unlevered project cash flow
        nav: Residual value added to the last period
        discount_rate_pa: Annual rate for NPV

    Returns:
        KPIs
    """
    flows = list(waterfall.cash_flows)
    if flows:
        flows[-1] += nav

    contributed = row_sum(waterfall.contributions)
    distributed = row_sum(waterfall.distributions)

    return KPIs(
        irr_pa=calculate_irr_pa(flows),
        project_irr_pa=calculate_irr_pa(project_flows),
        npv=calculate_npv(flows, discount_rate_pa),
        profit=calculate_profit(flows),
        moic=calculate_moic(distributed, contributed, nav),
        tvpi=calculate_tvpi(distributed, nav, contributed),
        dpi=calculate_dpi(distributed, contributed),
        rvpi=calculate_rvpi(nav, contributed),
        residual_value=nav,
    )


def run(snapshot: Union[InputSnapshot, dict], settings: Optional[Settings] = None) -> ResultSnapshot:
    """
    Run the full feasibility calculation.

    Args:
        snapshot: Validated snapshot, or raw input to validate
        settings: Engine settings (defaults to get_settings())

    Returns:
        ResultSnapshot

    Raises:
        ConfigurationError: If the input is malformed
    """
    settings = settings or get_settings()
    snapshot = load_snapshot(snapshot)
    key = fingerprint(snapshot)

    with localcontext() as ctx:
        ctx.prec = settings.decimal_precision
        grid = PeriodGrid.from_timeline(snapshot.timeline)
        horizon = grid.periods
        logger.info(
            f"Running feasibility {key[:12]}: {horizon} periods, "
            f"{len(snapshot.debt)} facilities, {len(snapshot.equity)} equity tranches"
        )

        costs = build_cost_rows(snapshot.cost_items, horizon)
        revenue = build_revenue_rows(snapshot.unit_types, horizon)
        financing = compute_financing(snapshot.debt, costs.capex)
        exit_valuation = compute_exit(revenue, costs, snapshot.valuation, horizon)
        depreciation = compute_depreciation(snapshot.cost_items, costs, revenue)
        earnings = compute_earnings(costs, revenue, exit_valuation, depreciation.total)
        tax = compute_corporation_tax(
            earnings.ebit, financing.interest, financing.fees_total, snapshot.tax
        )

        residual = pre_equity_cash(costs, revenue, financing, exit_valuation, tax.tax)
        waterfall = compute_waterfall(residual, snapshot.equity, snapshot.waterfall_config)

        statements = build_statements(
            costs,
            revenue,
            financing,
            waterfall,
            exit_valuation,
            earnings,
            tax.tax,
            to_decimal(settings.cash_tie_out_tolerance),
        )
        covenants = compute_covenants(
            snapshot.debt,
            financing,
            statements.cash_flow.from_operations,
            statements.profit_and_loss.ebit,
        )

        discount_rate = snapshot.discount_rate_pa
        if discount_rate is None:
            discount_rate = to_decimal(settings.default_discount_rate_pa)
        nav = residual_value(statements)
        waterfall = dataclasses.replace(waterfall, residual_value=nav, discount_rate_pa=discount_rate)

        kpis = compute_kpis(
            waterfall,
            project_cash_flows(costs, revenue, exit_valuation),
            nav,
            discount_rate,
        )

    logger.info(
        f"Feasibility {key[:12]} complete: equity IRR {kpis.irr_pa}, "
        f"tie-out {'ok' if statements.cash_flow.tie_out_ok_cash else 'FAILED'}"
    )

    return ResultSnapshot(
        fingerprint=key,
        grid=grid,
        costs=costs,
        revenue=revenue,
        financing=financing,
        exit=exit_valuation,
        depreciation=depreciation,
        tax=tax,
        waterfall=waterfall,
        statements=statements,
        covenants=covenants,
        kpis=kpis,
    )
