"""
Cost and Revenue Row Builders

Spreads cost items and revenue lines across the period grid. Each builder is
a pure function of an item and the horizon length and returns a row of
length N. Rows with timing outside the grid come back all-zero rather than
raising, so half-edited inputs still calculate.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Iterable, List, Mapping, Sequence

from feasibility.calculations.inputs import (
    CostItem,
    Recognition,
    RevenueKind,
    RevenueLine,
)
from feasibility.calculations.money import (
    ONE,
    MONTHS_PER_YEAR,
    Row,
    add_rows,
    freeze,
    money,
    row_sum,
    zeros,
)

logger = logging.getLogger(__name__)

DAYS_PER_MONTH = Decimal("365") / MONTHS_PER_YEAR


def window_on_grid(start: int, end: int, horizon: int) -> bool:
    """Whether the half-open window [start, end) is non-empty and on the grid."""
    return 0 <= start < end <= horizon


def escalation_factor(annual_rate: Decimal, months: int) -> Decimal:
    """Monthly-compounded escalation after a number of months."""
    return (ONE + annual_rate / MONTHS_PER_YEAR) ** months


def resample(values: Sequence[Decimal], length: int) -> List[Decimal]:
    """
    Linearly resample a weight vector to a new length.

    Args:
        values: Source weights
        length: Target number of periods

    Returns:
        Weights of the requested length
    """
    n = len(values)
    if n == length:
        return list(values)
    if n == 1:
        return [values[0]] * length
    if length == 1:
        return [row_sum(values)]

    out = []
    for t in range(length):
        x = Decimal(t * (n - 1)) / Decimal(length - 1)
        i = int(x)
        frac = x - i
        nxt = values[min(i + 1, n - 1)]
        out.append(values[i] * (ONE - frac) + nxt * frac)
    return out


def spread(total: Decimal, weights: Sequence[Decimal], start: int, horizon: int) -> List[Decimal]:
    """
    Spread a total across periods starting at `start` in proportion to weights.

    The row sums exactly to the cent-rounded total; the rounding residual is
    booked in the last period with a positive weight.
    """
    row = zeros(horizon)
    total = money(total)
    weight_sum = row_sum(weights)
    if weight_sum <= 0 or total == 0:
        return row

    last = start
    for k, w in enumerate(weights):
        if w > 0:
            row[start + k] = money(total * w / weight_sum)
            last = start + k

    row[last] += total - row_sum(row)
    return row


def build_cost_row(item: CostItem, horizon: int) -> Row:
    """
    Spread one cost item across the horizon.

    Escalation compounds monthly on the phasing weights before they are
    normalised, so the row always sums to base_amount.

    Args:
        item: Cost item
        horizon: Number of periods N

    Returns:
        Row of length N
    """
    start, end = item.start_period, item.end_period
    if not window_on_grid(start, end, horizon):
        logger.debug(f"Cost item {item.key} window [{start}, {end}) outside horizon {horizon}; zero-filled")
        return freeze(zeros(horizon))

    length = end - start
    weights = resample(item.phasing, length) if item.phasing else [ONE] * length
    if item.escalation_rate:
        weights = [w * escalation_factor(item.escalation_rate, k) for k, w in enumerate(weights)]

    if row_sum(weights) <= 0:
        logger.debug(f"Cost item {item.key} has all-zero phasing; zero-filled")

    return freeze(spread(item.base_amount, weights, start, horizon))


def build_revenue_row(line: RevenueLine, horizon: int) -> Row:
    """
    Build the revenue row of a sale, rental or hospitality line.

    Sale lines recognise units x price either entirely at the handover month
    or evenly over the selling window. Rental lines earn units x monthly rent
    x occupancy; hospitality lines earn rooms x ADR x days x occupancy.
    Prices escalate monthly from the line's start period.
    """
    start, end = line.start_period, line.end_period
    if not window_on_grid(start, end, horizon):
        logger.debug(f"Revenue line {line.key} window [{start}, {end}) outside horizon {horizon}; zero-filled")
        return freeze(zeros(horizon))

    row = zeros(horizon)

    if line.kind == RevenueKind.sale:
        if line.recognition == Recognition.handover:
            handover = line.handover_period if line.handover_period is not None else end - 1
            if not start <= handover < end:
                logger.debug(f"Revenue line {line.key} handover {handover} outside its window; zero-filled")
                return freeze(row)
            factor = escalation_factor(line.escalation_rate, handover - start)
            row[handover] = money(line.units * line.price_per_unit * factor)
        else:
            units_per_period = line.units / Decimal(end - start)
            exact = [
                units_per_period * line.price_per_unit * escalation_factor(line.escalation_rate, k)
                for k in range(end - start)
            ]
            row = spread(row_sum(exact), exact, start, horizon)
        return freeze(row)

    monthly = line.units * line.price_per_unit * line.occupancy
    if line.kind == RevenueKind.hospitality:
        monthly *= DAYS_PER_MONTH

    for t in range(start, end):
        row[t] = money(monthly * escalation_factor(line.escalation_rate, t - start))

    return freeze(row)


def aggregate_rows(rows: Iterable[Sequence[Decimal]], horizon: int) -> Row:
    """Sum rows period by period."""
    return freeze(add_rows(rows, horizon))


@dataclass(frozen=True)
class CostRows:
    """Aggregated cost rows."""

    capex: Row
    opex: Row
    items: Mapping[str, Row]


@dataclass(frozen=True)
class RevenueRows:
    """Aggregated revenue rows."""

    sales: Row
    rent: Row
    lines: Mapping[str, Row]

    @property
    def total(self) -> Row:
        return freeze(s + r for s, r in zip(self.sales, self.rent))

    @property
    def for_sale(self) -> bool:
        """Pure for-sale scheme: sales and no recurring income."""
        return row_sum(self.sales) > 0 and row_sum(self.rent) == 0


def build_cost_rows(items: Iterable[CostItem], horizon: int) -> CostRows:
    """Build every cost row and split them into capex and opex."""
    capex_rows, opex_rows = [], []
    detail = {}
    for item in items:
        row = build_cost_row(item, horizon)
        detail[item.key] = row
        (opex_rows if item.is_opex else capex_rows).append(row)

    return CostRows(
        capex=aggregate_rows(capex_rows, horizon),
        opex=aggregate_rows(opex_rows, horizon),
        items=MappingProxyType(detail),
    )


def build_revenue_rows(lines: Iterable[RevenueLine], horizon: int) -> RevenueRows:
    """Build every revenue row and split them into sales and recurring income."""
    sales_rows, rent_rows = [], []
    detail = {}
    for line in lines:
        row = build_revenue_row(line, horizon)
        detail[line.key] = row
        (sales_rows if line.kind == RevenueKind.sale else rent_rows).append(row)

    return RevenueRows(
        sales=aggregate_rows(sales_rows, horizon),
        rent=aggregate_rows(rent_rows, horizon),
        lines=MappingProxyType(detail),
    )
