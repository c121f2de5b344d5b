"""
Debt Facility Engine

Converts the development cost row into draw, repayment, interest, fee and
debt service reserve schedules per facility, then aggregates them.

Facilities draw in draw_priority order (lower first). A facility's loan-to-cost
cap counts the balances of the facilities ahead of it, so a junior facility
only funds the slice of the stack above the senior debt.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Dict, Iterable, List, Sequence, Tuple

from feasibility.calculations.amortization import get_strategy
from feasibility.calculations.inputs import DebtFacility, RateBasis
from feasibility.calculations.irr import effective_to_nominal
from feasibility.calculations.money import (
    MONTHS_PER_YEAR,
    ZERO,
    Row,
    add_rows,
    cumulative,
    freeze,
    money,
    row_sum,
    to_floats,
    zeros,
)

logger = logging.getLogger(__name__)

ROW_FIELDS = (
    "draws",
    "balance",
    "interest",
    "principal",
    "fees_upfront",
    "fees_ongoing",
    "fees_commitment",
    "dsra_balance",
    "dsra_funding",
    "dsra_release",
)


@dataclass(frozen=True)
class LoanRows:
    """Schedule of a single facility."""

    key: str
    maturity: int
    draws: Row
    balance: Row
    interest: Row
    principal: Row
    fees_upfront: Row
    fees_ongoing: Row
    fees_commitment: Row
    dsra_balance: Row
    dsra_funding: Row
    dsra_release: Row
    unfunded: Row

    @property
    def debt_service(self) -> Row:
        return freeze(i + p for i, p in zip(self.interest, self.principal))

    def to_dict(self) -> Dict:
        out = {"key": self.key, "maturity": self.maturity}
        for name in ROW_FIELDS + ("unfunded",):
            out[name] = to_floats(getattr(self, name))
        return out


@dataclass(frozen=True)
class FinancingSchedule:
    """Schedules of all facilities and their period totals."""

    draws: Row
    balance: Row
    interest: Row
    principal: Row
    fees_upfront: Row
    fees_ongoing: Row
    fees_commitment: Row
    dsra_balance: Row
    dsra_funding: Row
    dsra_release: Row
    tranches: Tuple[LoanRows, ...]

    @property
    def fees_total(self) -> Row:
        return freeze(
            u + o + c
            for u, o, c in zip(self.fees_upfront, self.fees_ongoing, self.fees_commitment)
        )

    def to_dict(self) -> Dict:
        out = {name: to_floats(getattr(self, name)) for name in ROW_FIELDS}
        out["detail"] = {"tranches": [tranche.to_dict() for tranche in self.tranches]}
        return out


def monthly_rate(facility: DebtFacility) -> Decimal:
    """Monthly interest rate of a facility, converting effective quotes."""
    if facility.rate_basis == RateBasis.effective:
        return effective_to_nominal(facility.nominal_rate_pa, 12) / MONTHS_PER_YEAR
    return facility.nominal_rate_pa / MONTHS_PER_YEAR


def _dsra_target(facility: DebtFacility, interest: Sequence[Decimal], principal: Sequence[Decimal],
                 window_end: int, maturity: int) -> Decimal:
    """dsra_months x average monthly debt service over the repayment window, balloon excluded."""
    repayment = range(window_end + 1, maturity + 1)
    if facility.dsra_months <= 0 or len(repayment) == 0:
        return ZERO
    service = [interest[t] + (principal[t] if t < maturity else ZERO) for t in repayment]
    return money(facility.dsra_months * row_sum(service) / len(service))


def schedule_facility(
    facility: DebtFacility,
    cumulative_cost: Sequence[Decimal],
    senior_balance: Sequence[Decimal],
) -> LoanRows:
    """
    Build the schedule of one facility.

    Args:
        facility: Facility terms
        cumulative_cost: Cumulative development cost per period
        senior_balance: Balance of higher-priority facilities after their draws, per period

    Returns:
        LoanRows for the facility
    """
    horizon = len(cumulative_cost)
    last = horizon - 1
    rate = monthly_rate(facility)
    strategy = get_strategy(facility.amort_type)

    window_start = facility.availability_start
    window_end = min(facility.availability_end, last)
    maturity = min(strategy.contractual_maturity(facility), last)

    draws, balance, interest, principal = zeros(horizon), zeros(horizon), zeros(horizon), zeros(horizon)
    fees_upfront, fees_ongoing, fees_commitment = zeros(horizon), zeros(horizon), zeros(horizon)
    unfunded = zeros(horizon)

    bal = ZERO
    level = None
    first_draw_done = False

    for t in range(horizon):
        opening = bal
        interest[t] = money(opening * rate)

        available = window_start <= t <= window_end
        if available:
            ltc_cap = cumulative_cost[t] * facility.ltc_percent
            need = ltc_cap - (opening + senior_balance[t])
            headroom = facility.limit - opening
            draw = max(ZERO, money(min(need, headroom), ROUND_DOWN))
            if need > headroom:
                unfunded[t] = money(need - max(headroom, ZERO))
            draws[t] = draw
            bal = opening + draw

            if draw > 0 and not first_draw_done:
                fees_upfront[t] = money(facility.limit * facility.upfront_fee_pct)
                first_draw_done = True

        if t > window_end or t == maturity:
            if level is None:
                level = strategy.level_amount(opening, rate, facility.tenor_months)
            principal[t] = strategy.principal(t, bal, interest[t], level, maturity)
            bal -= principal[t]

        balance[t] = bal

        if bal > 0:
            fees_ongoing[t] = money(bal * facility.ongoing_fee_pct / MONTHS_PER_YEAR)
        if available and bal < facility.limit:
            fees_commitment[t] = money((facility.limit - bal) * facility.commitment_fee_pct / MONTHS_PER_YEAR)

    dsra_funding, dsra_release, dsra_balance = zeros(horizon), zeros(horizon), zeros(horizon)
    target = _dsra_target(facility, interest, principal, window_end, maturity)
    funding_period = min(window_start, last)
    if target > 0 and funding_period < maturity:
        dsra_funding[funding_period] = target
        dsra_release[maturity] = target
        dsra_balance = cumulative(f - r for f, r in zip(dsra_funding, dsra_release))

    shortfall = row_sum(unfunded)
    if shortfall > 0:
        logger.warning(
            f"Facility {facility.key} limit exhausted; {shortfall} of loan-to-cost capacity left to equity"
        )

    return LoanRows(
        key=facility.key,
        maturity=maturity,
        draws=freeze(draws),
        balance=freeze(balance),
        interest=freeze(interest),
        principal=freeze(principal),
        fees_upfront=freeze(fees_upfront),
        fees_ongoing=freeze(fees_ongoing),
        fees_commitment=freeze(fees_commitment),
        dsra_balance=freeze(dsra_balance),
        dsra_funding=freeze(dsra_funding),
        dsra_release=freeze(dsra_release),
        unfunded=freeze(unfunded),
    )


def compute_financing(facilities: Iterable[DebtFacility], capex: Sequence[Decimal]) -> FinancingSchedule:
    """
    Schedule every facility against the development cost row and aggregate.

    Args:
        facilities: Debt facilities in any order
        capex: Development cost per period

    Returns:
        FinancingSchedule with per-facility detail in draw order
    """
    horizon = len(capex)
    cumulative_cost = cumulative(capex)
    senior_balance = zeros(horizon)

    tranches: List[LoanRows] = []
    for facility in sorted(facilities, key=lambda f: f.draw_priority):
        rows = schedule_facility(facility, cumulative_cost, senior_balance)
        tranches.append(rows)
        # Senior balance after draws, before this period's repayment
        senior_balance = add_rows([senior_balance, rows.balance, rows.principal], horizon)

    totals = {
        name: freeze(add_rows([getattr(rows, name) for rows in tranches], horizon))
        for name in ROW_FIELDS
    }
    return FinancingSchedule(tranches=tuple(tranches), **totals)
