"""
Debt Covenant Tests

Coverage ratios for the whole debt stack and for each facility:

- DSCR = CFADS / (interest + principal)
- Strict DSCR = CFADS / (interest + principal + ongoing fees)
- ICR = EBIT / interest

CFADS is cash from operations with the interest and fees it has already
paid added back. Each ratio is also tested on a trailing twelve-month (LTM)
basis, summing numerators and denominators over the window. Ratios with a
zero denominator, and LTM ratios without twelve months of history, are None
and never breach.

Portfolio thresholds are the lowest minimums across facilities; a portfolio
breach counts once the consecutive breach streak reaches the longest grace
period of any facility.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from feasibility.calculations.debt import FinancingSchedule, LoanRows
from feasibility.calculations.inputs import CovenantBasis, Covenants, DebtFacility
from feasibility.calculations.irr import safe_ratio
from feasibility.calculations.money import Row, freeze, row_sum

logger = logging.getLogger(__name__)

LTM_WINDOW = 12

Ratios = Tuple[Optional[float], ...]
Flags = Tuple[bool, ...]


@dataclass(frozen=True)
class CovenantSeries:
    """Coverage ratios, headroom and breaches of the stack or one facility."""

    dscr: Ratios
    dscr_strict: Ratios
    icr: Ratios
    dscr_ltm: Ratios
    dscr_strict_ltm: Ratios
    icr_ltm: Ratios
    dscr_headroom: Ratios
    dscr_strict_headroom: Ratios
    icr_headroom: Ratios
    dscr_breach: Flags
    icr_breach: Flags
    breaches: Flags

    def to_dict(self) -> Dict:
        return {name: list(getattr(self, name)) for name in self.__dataclass_fields__}


@dataclass(frozen=True)
class CovenantResult:
    portfolio: CovenantSeries
    tranches: Mapping[str, CovenantSeries]
    test_basis: CovenantBasis
    grace_period_m: int
    dscr_threshold: Optional[Decimal]
    icr_threshold: Optional[Decimal]
    strict_dscr: bool

    @property
    def breaches_any(self) -> Flags:
        return self.portfolio.breaches

    @property
    def total_breach_periods(self) -> int:
        return sum(self.breaches_any)

    @property
    def first_breach_index(self) -> Optional[int]:
        return next((t for t, b in enumerate(self.breaches_any) if b), None)

    def to_dict(self) -> Dict:
        return {
            "portfolio": self.portfolio.to_dict(),
            "by_tranche": {k: v.to_dict() for k, v in self.tranches.items()},
            "breaches_any": list(self.breaches_any),
            "breaches_summary": {
                "total_breach_periods": self.total_breach_periods,
                "first_breach_index": self.first_breach_index,
            },
            "detail": {
                "test_basis": self.test_basis.value,
                "grace_period_m": self.grace_period_m,
                "dscr_threshold": float(self.dscr_threshold) if self.dscr_threshold is not None else None,
                "icr_threshold": float(self.icr_threshold) if self.icr_threshold is not None else None,
                "strict_dscr": self.strict_dscr,
            },
        }


def point_ratios(numerator: Sequence[Decimal], denominator: Sequence[Decimal]) -> Ratios:
    return tuple(safe_ratio(n, d) for n, d in zip(numerator, denominator))


def ltm_ratios(numerator: Sequence[Decimal], denominator: Sequence[Decimal], window: int = LTM_WINDOW) -> Ratios:
    """Rolling ratio of window sums; None until a full window of history."""
    out: List[Optional[float]] = []
    for t in range(len(numerator)):
        if t < window - 1:
            out.append(None)
            continue
        lo = t - window + 1
        out.append(safe_ratio(row_sum(numerator[lo : t + 1]), row_sum(denominator[lo : t + 1])))
    return tuple(out)


def headroom(ratios: Ratios, minimum: Optional[Decimal]) -> Ratios:
    if minimum is None:
        return (None,) * len(ratios)
    return tuple(None if r is None else r - float(minimum) for r in ratios)


def breached(ratios: Ratios, minimum: Optional[Decimal]) -> Flags:
    if minimum is None:
        return (False,) * len(ratios)
    return tuple(r is not None and r < float(minimum) for r in ratios)


def by_basis(point: Flags, ltm: Flags, basis: CovenantBasis) -> Flags:
    if basis == CovenantBasis.point:
        return point
    if basis == CovenantBasis.ltm:
        return ltm
    return tuple(p or l for p, l in zip(point, ltm))


def with_grace(flags: Flags, grace: int) -> Flags:
    """A breach counts from the grace-th consecutive breaching period."""
    out = []
    streak = 0
    for flag in flags:
        streak = streak + 1 if flag else 0
        out.append(streak > 0 and streak >= grace)
    return tuple(out)


def _series(
    available: Row,
    ebit: Sequence[Decimal],
    interest: Sequence[Decimal],
    principal: Sequence[Decimal],
    ongoing_fees: Sequence[Decimal],
    dscr_min: Optional[Decimal],
    icr_min: Optional[Decimal],
    basis: CovenantBasis,
    grace: int,
    strict: bool,
) -> CovenantSeries:
    service = freeze(i + p for i, p in zip(interest, principal))
    service_strict = freeze(s + f for s, f in zip(service, ongoing_fees))

    dscr, dscr_ltm = point_ratios(available, service), ltm_ratios(available, service)
    dscr_strict, dscr_strict_ltm = point_ratios(available, service_strict), ltm_ratios(available, service_strict)
    icr, icr_ltm = point_ratios(ebit, interest), ltm_ratios(ebit, interest)

    tested_dscr = (dscr_strict, dscr_strict_ltm) if strict else (dscr, dscr_ltm)
    dscr_breach = by_basis(breached(tested_dscr[0], dscr_min), breached(tested_dscr[1], dscr_min), basis)
    icr_breach = by_basis(breached(icr, icr_min), breached(icr_ltm, icr_min), basis)

    return CovenantSeries(
        dscr=dscr,
        dscr_strict=dscr_strict,
        icr=icr,
        dscr_ltm=dscr_ltm,
        dscr_strict_ltm=dscr_strict_ltm,
        icr_ltm=icr_ltm,
        dscr_headroom=headroom(dscr, dscr_min),
        dscr_strict_headroom=headroom(dscr_strict, dscr_min),
        icr_headroom=headroom(icr, icr_min),
        dscr_breach=dscr_breach,
        icr_breach=icr_breach,
        breaches=with_grace(tuple(d or i for d, i in zip(dscr_breach, icr_breach)), grace),
    )


def _portfolio_basis(covenants: Sequence[Covenants]) -> CovenantBasis:
    bases = {c.test_basis for c in covenants}
    if CovenantBasis.both in bases or len(bases) > 1:
        return CovenantBasis.both
    return bases.pop() if bases else CovenantBasis.point


def _lowest(values) -> Optional[Decimal]:
    values = [v for v in values if v is not None]
    return min(values) if values else None


def cfads(from_operations: Sequence[Decimal], financing: FinancingSchedule) -> Row:
    """Cash available for debt service: operating cash before interest and fees."""
    fees = financing.fees_total
    return freeze(
        cfo + i + f for cfo, i, f in zip(from_operations, financing.interest, fees)
    )


def compute_covenants(
    facilities: Sequence[DebtFacility],
    financing: FinancingSchedule,
    from_operations: Sequence[Decimal],
    ebit: Sequence[Decimal],
) -> CovenantResult:
    """
    Test the debt covenants of every facility and of the whole stack.

    Args:
        facilities: Facility terms, with optional covenants
        financing: Aggregated debt schedule with per-facility detail
        from_operations: Cash flow from operations per period
        ebit: Operating profit per period

    Returns:
        CovenantResult
    """
    available = cfads(from_operations, financing)
    terms = {f.key: f.covenants or Covenants() for f in facilities}
    configured = [f.covenants for f in facilities if f.covenants is not None]

    dscr_min = _lowest(c.dscr_min for c in configured)
    icr_min = _lowest(c.icr_min for c in configured)
    basis = _portfolio_basis(configured)
    grace = max((c.grace_period_m for c in configured), default=0)
    strict = any(c.strict_dscr for c in configured)

    portfolio = _series(
        available, ebit, financing.interest, financing.principal, financing.fees_ongoing,
        dscr_min, icr_min, basis, grace, strict,
    )

    tranches: Dict[str, CovenantSeries] = {}
    for loan in financing.tranches:
        tranches[loan.key] = _tranche_series(loan, terms.get(loan.key, Covenants()), available, ebit)

    result = CovenantResult(
        portfolio=portfolio,
        tranches=MappingProxyType(tranches),
        test_basis=basis,
        grace_period_m=grace,
        dscr_threshold=dscr_min,
        icr_threshold=icr_min,
        strict_dscr=strict,
    )
    if result.total_breach_periods:
        logger.warning(
            f"Covenant breach in {result.total_breach_periods} periods, "
            f"first at period {result.first_breach_index}"
        )
    return result


def _tranche_series(loan: LoanRows, covenants: Covenants, available: Row, ebit: Sequence[Decimal]) -> CovenantSeries:
    return _series(
        available, ebit, loan.interest, loan.principal, loan.fees_ongoing,
        covenants.dscr_min, covenants.icr_min, covenants.test_basis,
        covenants.grace_period_m, covenants.strict_dscr,
    )
