"""
Depreciation

Straight-line depreciation of capitalised cost items on income-producing
schemes. For-sale schemes hold their cost basis as inventory released
through cost of sales, so nothing is depreciated there.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Iterable, List, Mapping, Sequence

from feasibility.calculations.inputs import CostItem, DepreciationMethod, DepreciationPolicy
from feasibility.calculations.money import (
    ZERO,
    Row,
    add_rows,
    freeze,
    money,
    row_sum,
    to_floats,
    zeros,
)
from feasibility.calculations.rows import CostRows, RevenueRows

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DepreciationSchedule:
    """Depreciation charge per period, in total and per cost item."""

    total: Row
    items: Mapping[str, Row]

    def to_dict(self):
        return {
            "total": to_floats(self.total),
            "detail": {k: to_floats(v) for k, v in self.items.items()},
        }


def straight_line(spend: Sequence[Decimal], policy: DepreciationPolicy) -> List[Decimal]:
    """
    Depreciate an item's spend up to policy.start_period over its useful life.

    The final month of the life books the rounding residual so the charge
    adds up to basis less salvage. Months past the horizon are not charged.
    """
    horizon = len(spend)
    out = zeros(horizon)
    life = policy.useful_life_months
    start = policy.start_period
    if life <= 0 or start >= horizon:
        return out

    basis = row_sum(spend[: start + 1])
    depreciable = max(ZERO, money(basis - policy.salvage_value))
    if depreciable == 0:
        return out

    monthly = money(depreciable / life)
    for t in range(start, min(start + life, horizon)):
        out[t] = monthly
    end = start + life - 1
    if end < horizon:
        out[end] += depreciable - monthly * life
    return out


def compute_depreciation(
    items: Iterable[CostItem],
    costs: CostRows,
    revenue: RevenueRows,
) -> DepreciationSchedule:
    """
    Build the depreciation rows of every capex item with a depreciation policy.

    Args:
        items: Cost items of the snapshot
        costs: Built cost rows, for each item's escalated spend
        revenue: Revenue rows, to tell for-sale schemes apart

    Returns:
        DepreciationSchedule
    """
    horizon = len(costs.capex)
    detail = {}
    depreciable = [
        item for item in items
        if item.depreciation is not None
        and item.depreciation.method == DepreciationMethod.straight_line
        and not item.is_opex
    ]
    if depreciable and revenue.for_sale:
        logger.debug("For-sale scheme: cost basis is released as cost of sales, not depreciated")
        depreciable = []

    for item in depreciable:
        detail[item.key] = freeze(straight_line(costs.items[item.key], item.depreciation))

    return DepreciationSchedule(
        total=freeze(add_rows(detail.values(), horizon)),
        items=MappingProxyType(detail),
    )
