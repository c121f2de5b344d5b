"""
Corporation Tax

Tax on operating profit (EBIT) after deductible finance costs. With an
interest_cap_pct, finance costs are deductible up to interest_cap_pct x EBIT
and the disallowed part is lost.
Tax losses carry forward against later profits when enabled. Tax is paid in
the period it arises.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from feasibility.calculations.inputs import TaxConfig
from feasibility.calculations.money import ZERO, Row, freeze, money, to_floats, zeros


@dataclass(frozen=True)
class CorporationTax:
    pbt: Row
    allowed_finance_costs: Row
    taxable_income: Row
    nol_carry: Row
    tax: Row

    def to_dict(self):
        return {name: to_floats(getattr(self, name)) for name in self.__dataclass_fields__}


def compute_corporation_tax(
    ebit: Sequence[Decimal],
    interest: Sequence[Decimal],
    fees: Sequence[Decimal],
    config: TaxConfig,
) -> CorporationTax:
    """
    Calculate corporation tax per period.

    Args:
        ebit: Operating profit per period
        interest: Interest expense per period
        fees: Facility fees per period
        config: Tax rate, finance cost cap and loss carryforward switch

    Returns:
        CorporationTax rows
    """
    horizon = len(ebit)
    pbt, allowed, taxable, nol_carry, tax = (zeros(horizon) for _ in range(5))

    losses = ZERO
    for t in range(horizon):
        finance_costs = interest[t] + fees[t]
        pbt[t] = ebit[t] - finance_costs
        if config.interest_cap_pct is None:
            allowed[t] = finance_costs
        else:
            allowed[t] = min(finance_costs, max(ZERO, money(ebit[t] * config.interest_cap_pct)))
        base = ebit[t] - allowed[t]

        if config.allow_nol_carryforward:
            base -= losses
            losses = max(ZERO, -base)
        taxable[t] = max(ZERO, base)
        nol_carry[t] = losses
        tax[t] = money(taxable[t] * config.corp_tax_rate)

    return CorporationTax(
        pbt=freeze(pbt),
        allowed_finance_costs=freeze(allowed),
        taxable_income=freeze(taxable),
        nol_carry=freeze(nol_carry),
        tax=freeze(tax),
    )
