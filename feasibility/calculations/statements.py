"""
Financial Statements and Cash Reconciliation

Builds the profit and loss, cash flow statement and balance sheet from the
cost, revenue, financing and equity rows, then ties the cash flow statement's
closing cash out against the cash implied by the balance sheet.

Development capex is capitalised into a cost basis. On pure for-sale schemes
the basis is released as cost of sales in proportion to cumulative sales;
income schemes reduce it by depreciation. On exit the remaining basis is
derecognised against the sale proceeds.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from feasibility.calculations.debt import FinancingSchedule
from feasibility.calculations.inputs import ValuationConfig
from feasibility.calculations.money import (
    MONTHS_PER_YEAR,
    ZERO,
    Row,
    cumulative,
    freeze,
    money,
    row_sum,
    to_floats,
    zeros,
)
from feasibility.calculations.rows import CostRows, RevenueRows
from feasibility.calculations.waterfall import WaterfallResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExitValuation:
    """Capitalised sale of the income-producing asset at the last period."""

    period: Optional[int]
    forward_noi: Decimal
    gross_value: Decimal
    selling_costs: Decimal
    proceeds: Row

    @property
    def net_proceeds(self) -> Decimal:
        return row_sum(self.proceeds)

    def to_dict(self) -> Dict:
        return {
            "period": self.period,
            "forward_noi": float(self.forward_noi),
            "gross_value": float(self.gross_value),
            "selling_costs": float(self.selling_costs),
            "net_proceeds": float(self.net_proceeds),
        }


@dataclass(frozen=True)
class Earnings:
    """Accrual lines between revenue and operating profit."""

    cost_of_sales: Row
    depreciation: Row
    disposed: Row
    exit_gain: Row
    ebit: Row


@dataclass(frozen=True)
class ProfitAndLoss:
    revenue: Row
    opex: Row
    cost_of_sales: Row
    depreciation: Row
    exit_gain: Row
    ebit: Row
    interest: Row
    fees: Row
    pbt: Row
    tax: Row
    net_income: Row

    def to_dict(self) -> Dict:
        return {name: to_floats(getattr(self, name)) for name in self.__dataclass_fields__}


@dataclass(frozen=True)
class CashFlowStatement:
    from_operations: Row
    from_investing: Row
    from_financing: Row
    net_change: Row
    cash_closing: Row
    tie_out_ok_cash: bool
    max_cash_error: Decimal

    def to_dict(self) -> Dict:
        return {
            "from_operations": to_floats(self.from_operations),
            "from_investing": to_floats(self.from_investing),
            "from_financing": to_floats(self.from_financing),
            "net_change": to_floats(self.net_change),
            "cash_closing": to_floats(self.cash_closing),
            "detail": {
                "tie_out_ok_cash": self.tie_out_ok_cash,
                "max_cash_error": float(self.max_cash_error),
            },
        }


@dataclass(frozen=True)
class BalanceSheet:
    cash: Row
    cost_basis: Row
    dsra: Row
    total_assets: Row
    debt: Row
    paid_in_capital: Row
    distributions: Row
    retained_earnings: Row
    equity: Row
    total_liabilities_and_equity: Row

    def to_dict(self) -> Dict:
        return {name: to_floats(getattr(self, name)) for name in self.__dataclass_fields__}


@dataclass(frozen=True)
class Statements:
    profit_and_loss: ProfitAndLoss
    cash_flow: CashFlowStatement
    balance_sheet: BalanceSheet


def compute_exit(
    revenue: RevenueRows,
    costs: CostRows,
    valuation: ValuationConfig,
    horizon: int,
) -> ExitValuation:
    """
    Value the asset at the last period on forward twelve-month NOI.

    Forward NOI is the final month's rent less opex run at twelve months.
    No exit is modelled when exit_cap_rate is zero or NOI is not positive.
    """
    proceeds = zeros(horizon)
    if valuation.exit_cap_rate <= 0 or horizon == 0:
        return ExitValuation(None, ZERO, ZERO, ZERO, freeze(proceeds))

    last = horizon - 1
    forward_noi = money((revenue.rent[last] - costs.opex[last]) * MONTHS_PER_YEAR)
    if forward_noi <= 0:
        logger.info(f"No exit modelled: forward NOI {forward_noi} is not positive")
        return ExitValuation(None, forward_noi, ZERO, ZERO, freeze(proceeds))

    gross_value = money(forward_noi / valuation.exit_cap_rate)
    selling_costs = money(gross_value * valuation.selling_cost_pct)
    proceeds[last] = gross_value - selling_costs
    return ExitValuation(last, forward_noi, gross_value, selling_costs, freeze(proceeds))


def _cost_of_sales(capex: Sequence[Decimal], revenue: RevenueRows) -> List[Decimal]:
    """Release capitalised cost in step with cumulative sales on for-sale schemes."""
    horizon = len(capex)
    out = zeros(horizon)
    if not revenue.for_sale:
        return out
    total_sales = row_sum(revenue.sales)

    released = ZERO
    sold = ZERO
    spent = ZERO
    for t in range(horizon):
        sold += revenue.sales[t]
        spent += capex[t]
        target = money(spent * sold / total_sales)
        out[t] = target - released
        released = target
    return out


def compute_earnings(
    costs: CostRows,
    revenue: RevenueRows,
    exit_valuation: ExitValuation,
    depreciation: Sequence[Decimal],
) -> Earnings:
    """
    Operating profit before finance costs and tax.

    EBIT = revenue - opex - cost of sales - depreciation + exit gain, where
    the exit gain is net proceeds less the cost basis still held at exit.
    """
    horizon = len(costs.capex)
    income = revenue.total
    cost_of_sales = _cost_of_sales(costs.capex, revenue)

    exit_gain = zeros(horizon)
    disposed = zeros(horizon)
    if exit_valuation.period is not None:
        t = exit_valuation.period
        disposed[t] = (
            row_sum(costs.capex[: t + 1])
            - row_sum(cost_of_sales[: t + 1])
            - row_sum(depreciation[: t + 1])
        )
        exit_gain[t] = exit_valuation.proceeds[t] - disposed[t]

    ebit = [
        income[t] - costs.opex[t] - cost_of_sales[t] - depreciation[t] + exit_gain[t]
        for t in range(horizon)
    ]
    return Earnings(
        cost_of_sales=freeze(cost_of_sales),
        depreciation=freeze(depreciation),
        disposed=freeze(disposed),
        exit_gain=freeze(exit_gain),
        ebit=freeze(ebit),
    )


def reconcile_cash(cash_closing: Sequence[Decimal], balance_sheet_cash: Sequence[Decimal], tolerance: Decimal):
    """
    Compare closing cash with the balance sheet cash.

    Returns:
        (tie_out_ok, max_error)
    """
    max_error = max(
        (abs(a - b) for a, b in zip(cash_closing, balance_sheet_cash)),
        default=ZERO,
    )
    return max_error < tolerance, max_error


def build_statements(
    costs: CostRows,
    revenue: RevenueRows,
    financing: FinancingSchedule,
    waterfall: WaterfallResult,
    exit_valuation: ExitValuation,
    earnings: Earnings,
    tax: Sequence[Decimal],
    tolerance: Decimal,
) -> Statements:
    """
    Build the three statements and the cash tie-out.

    Args:
        costs: Capex and opex rows
        revenue: Sales and recurring income rows
        financing: Aggregated debt schedule
        waterfall: Equity contributions and distributions
        exit_valuation: Exit proceeds, if any
        earnings: Cost of sales, depreciation and exit gain
        tax: Corporation tax paid per period
        tolerance: Largest acceptable cash difference

    Returns:
        Statements for the run
    """
    horizon = len(costs.capex)
    fees = financing.fees_total
    income = revenue.total

    pbt = [earnings.ebit[t] - financing.interest[t] - fees[t] for t in range(horizon)]
    net_income = [pbt[t] - tax[t] for t in range(horizon)]

    from_operations = [
        income[t] - costs.opex[t] - financing.interest[t] - fees[t] - tax[t] for t in range(horizon)
    ]
    from_investing = [exit_valuation.proceeds[t] - costs.capex[t] for t in range(horizon)]
    from_financing = [
        financing.draws[t]
        - financing.principal[t]
        + waterfall.contributions[t]
        - waterfall.distributions[t]
        - financing.dsra_funding[t]
        + financing.dsra_release[t]
        for t in range(horizon)
    ]
    net_change = [o + i + f for o, i, f in zip(from_operations, from_investing, from_financing)]
    cash_closing = cumulative(net_change)

    cost_basis = cumulative(
        c - s - dep - d
        for c, s, dep, d in zip(costs.capex, earnings.cost_of_sales, earnings.depreciation, earnings.disposed)
    )
    paid_in = cumulative(waterfall.contributions)
    distributed = cumulative(waterfall.distributions)
    retained = cumulative(net_income)
    equity = [p - d + r for p, d, r in zip(paid_in, distributed, retained)]
    debt = financing.balance
    dsra = financing.dsra_balance

    balance_sheet_cash = [
        debt[t] + equity[t] - cost_basis[t] - dsra[t] for t in range(horizon)
    ]
    total_assets = [balance_sheet_cash[t] + cost_basis[t] + dsra[t] for t in range(horizon)]
    total_liabilities_and_equity = [debt[t] + equity[t] for t in range(horizon)]

    tie_out_ok, max_error = reconcile_cash(cash_closing, balance_sheet_cash, tolerance)
    if not tie_out_ok:
        logger.warning(f"Cash tie-out failed: max cash error {max_error} exceeds {tolerance}")

    return Statements(
        profit_and_loss=ProfitAndLoss(
            revenue=freeze(income),
            opex=costs.opex,
            cost_of_sales=earnings.cost_of_sales,
            depreciation=earnings.depreciation,
            exit_gain=earnings.exit_gain,
            ebit=earnings.ebit,
            interest=financing.interest,
            fees=fees,
            pbt=freeze(pbt),
            tax=freeze(tax),
            net_income=freeze(net_income),
        ),
        cash_flow=CashFlowStatement(
            from_operations=freeze(from_operations),
            from_investing=freeze(from_investing),
            from_financing=freeze(from_financing),
            net_change=freeze(net_change),
            cash_closing=freeze(cash_closing),
            tie_out_ok_cash=tie_out_ok,
            max_cash_error=max_error,
        ),
        balance_sheet=BalanceSheet(
            cash=freeze(balance_sheet_cash),
            cost_basis=freeze(cost_basis),
            dsra=dsra,
            total_assets=freeze(total_assets),
            debt=debt,
            paid_in_capital=freeze(paid_in),
            distributions=freeze(distributed),
            retained_earnings=freeze(retained),
            equity=freeze(equity),
            total_liabilities_and_equity=freeze(total_liabilities_and_equity),
        ),
    )


def residual_value(statements: Statements) -> Decimal:
    """Net asset value at the last period, floored at zero."""
    bs = statements.balance_sheet
    if not bs.cash:
        return ZERO
    nav = statements.cash_flow.cash_closing[-1] + bs.dsra[-1] + bs.cost_basis[-1] - bs.debt[-1]
    return max(ZERO, money(nav))
