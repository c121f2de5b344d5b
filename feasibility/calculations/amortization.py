"""
Loan Amortization Strategies

One strategy per AmortType. Each strategy knows its contractual maturity and
the scheduled principal of a period; the registry below is checked at import
so a new AmortType cannot be added without a strategy.
"""

from decimal import Decimal
from typing import Dict, Optional

from feasibility.calculations.inputs import AmortType, DebtFacility
from feasibility.calculations.money import ONE, ZERO, money


def calculate_payment(principal: Decimal, monthly_rate: Decimal, months: int) -> Decimal:
    """
    Calculate the level monthly payment that amortizes a balance.

    Matches Excel's PMT() function.

    Args:
        principal: Loan balance to amortize
        monthly_rate: Periodic interest rate as decimal
        months: Number of monthly payments

    Returns:
        Monthly payment amount (positive number)
    """
    if principal <= 0 or months <= 0:
        return ZERO

    if monthly_rate == 0:
        return money(principal / months)

    growth = (ONE + monthly_rate) ** months
    return money(principal * monthly_rate * growth / (growth - ONE))


class AmortizationStrategy:
    """Scheduled principal for one amortization shape."""

    amort_type: AmortType

    def contractual_maturity(self, facility: DebtFacility) -> int:
        """Period of the final repayment, before clamping to the horizon."""
        return facility.availability_end + facility.tenor_months

    def level_amount(self, balance: Decimal, monthly_rate: Decimal, tenor_months: int) -> Decimal:
        """Fixed amount set once when repayment starts (payment or installment)."""
        return ZERO

    def principal(
        self,
        period: int,
        balance: Decimal,
        interest: Decimal,
        level: Optional[Decimal],
        maturity: int,
    ) -> Decimal:
        """Principal repaid in a repayment period; everything at maturity."""
        if period >= maturity:
            return balance
        return ZERO


class BulletStrategy(AmortizationStrategy):
    amort_type = AmortType.bullet


class InterestOnlyStrategy(AmortizationStrategy):
    """Tenor runs from the start of availability, not its end."""

    amort_type = AmortType.interest_only

    def contractual_maturity(self, facility: DebtFacility) -> int:
        return max(
            facility.availability_start + facility.tenor_months,
            facility.availability_end + 1,
        )


class AnnuityStrategy(AmortizationStrategy):
    """Constant total debt service over the tenor."""

    amort_type = AmortType.annuity

    def level_amount(self, balance, monthly_rate, tenor_months):
        return calculate_payment(balance, monthly_rate, tenor_months)

    def principal(self, period, balance, interest, level, maturity):
        if period >= maturity:
            return balance
        return min(balance, max(ZERO, level - interest))


class StraightLineStrategy(AmortizationStrategy):
    """Equal principal installments over the tenor."""

    amort_type = AmortType.straight_line

    def level_amount(self, balance, monthly_rate, tenor_months):
        return money(balance / tenor_months)

    def principal(self, period, balance, interest, level, maturity):
        if period >= maturity:
            return balance
        return min(balance, level)


STRATEGIES: Dict[AmortType, AmortizationStrategy] = {
    strategy.amort_type: strategy
    for strategy in (
        BulletStrategy(),
        InterestOnlyStrategy(),
        AnnuityStrategy(),
        StraightLineStrategy(),
    )
}

_missing = set(AmortType) - set(STRATEGIES)
if _missing:
    raise RuntimeError(f"No amortization strategy registered for {sorted(m.value for m in _missing)}")


def get_strategy(amort_type: AmortType) -> AmortizationStrategy:
    return STRATEGIES[amort_type]
