"""
Equity Waterfall Calculations

Calls equity to cover project cash deficits and distributes surplus cash to
LP/GP tranches through a promote structure:

1. Return of Capital - unreturned capital paid back pro-rata
2. Preferred Return - accrued pref paid pro-rata to unpaid balances
3. Promote Tiers - remaining profit split by the hurdle tiers, with optional
   GP catch-up
4. Clawback - at the final period, excess GP carry moves back to LPs

European mode picks one governing tier from deal-level returns; American mode
walks the tiers period by period as the LP aggregate meets each trigger.
"""

import logging
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, ROUND_UP, Decimal
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from feasibility.calculations.inputs import (
    AccrualLevel,
    Compounding,
    EquityTranche,
    Hurdle,
    HurdleTrigger,
    Role,
    WaterfallConfig,
    WaterfallMode,
)
from feasibility.calculations.irr import (
    calculate_dpi,
    calculate_irr_pa,
    calculate_moic,
    calculate_npv,
    calculate_rvpi,
    calculate_tvpi,
    periodic_rate,
)
from feasibility.calculations.money import (
    CENT,
    MONTHS_PER_YEAR,
    ONE,
    ZERO,
    Row,
    allocate,
    freeze,
    money,
    row_sum,
    to_decimal,
    to_floats,
    zeros,
)
from feasibility.config import get_settings

logger = logging.getLogger(__name__)

PRO_RATA = "pro_rata"

# Periods between pref compounding dates
COMPOUNDING_PERIODS = {
    Compounding.monthly: 1,
    Compounding.quarterly: 3,
    Compounding.annual: 12,
}


@dataclass
class _Ledger:
    """Mutable running state of one tranche while the waterfall runs."""

    tranche: EquityTranche
    horizon: int
    accrues: bool
    unreturned: Decimal = ZERO
    pref_balance: Decimal = ZERO
    pref_compounded: Decimal = ZERO
    contributed_total: Decimal = ZERO
    pref_paid_total: Decimal = ZERO
    profit_total: Decimal = ZERO
    contributed: List[Decimal] = field(init=False)
    returned_capital: List[Decimal] = field(init=False)
    preferred_accrued: List[Decimal] = field(init=False)
    preferred_paid: List[Decimal] = field(init=False)
    profit_distributions: List[Decimal] = field(init=False)
    ending_unreturned_capital: List[Decimal] = field(init=False)

    def __post_init__(self):
        for name in (
            "contributed",
            "returned_capital",
            "preferred_accrued",
            "preferred_paid",
            "profit_distributions",
            "ending_unreturned_capital",
        ):
            setattr(self, name, zeros(self.horizon))

    @property
    def is_lp(self) -> bool:
        return self.tranche.role == Role.LP

    def accrue(self) -> None:
        """Accrue one month of preferred return before distributions."""
        pref = self.tranche.preferred_return
        if not self.accrues or pref.rate_pa == 0:
            return
        base = self.unreturned
        if pref.compounding == Compounding.monthly:
            base += self.pref_balance
        elif pref.compounding != Compounding.simple:
            base += self.pref_compounded
        self.pref_balance += money(base * pref.rate_pa / MONTHS_PER_YEAR)

    def close_period(self, t: int) -> None:
        pref = self.tranche.preferred_return
        step = COMPOUNDING_PERIODS.get(pref.compounding)
        if step and (t + 1) % step == 0:
            self.pref_compounded = self.pref_balance
        self.preferred_accrued[t] = self.pref_balance
        self.ending_unreturned_capital[t] = self.unreturned

    def receive(self, t: int, amount: Decimal) -> None:
        """Book a receipt against capital first, then pref, then profit."""
        capital = min(amount, self.unreturned)
        self.unreturned -= capital
        self.returned_capital[t] += capital
        amount -= capital

        pref = min(amount, self.pref_balance)
        self.pref_balance -= pref
        self.preferred_paid[t] += pref
        self.pref_paid_total += pref
        amount -= pref

        self.profit_distributions[t] += amount
        self.profit_total += amount


@dataclass(frozen=True)
class TrancheAccount:
    """Capital account of one equity tranche."""

    key: str
    role: Role
    commitment: Decimal
    contributed: Row
    returned_capital: Row
    preferred_accrued: Row
    preferred_paid: Row
    profit_distributions: Row
    distributions: Row
    ending_unreturned_capital: Row

    @classmethod
    def from_ledger(cls, ledger: _Ledger) -> "TrancheAccount":
        distributions = [
            c + p + x
            for c, p, x in zip(
                ledger.returned_capital, ledger.preferred_paid, ledger.profit_distributions
            )
        ]
        return cls(
            key=ledger.tranche.key,
            role=ledger.tranche.role,
            commitment=ledger.tranche.commitment,
            contributed=freeze(ledger.contributed),
            returned_capital=freeze(ledger.returned_capital),
            preferred_accrued=freeze(ledger.preferred_accrued),
            preferred_paid=freeze(ledger.preferred_paid),
            profit_distributions=freeze(ledger.profit_distributions),
            distributions=freeze(distributions),
            ending_unreturned_capital=freeze(ledger.ending_unreturned_capital),
        )

    @property
    def total_contributed(self) -> Decimal:
        return row_sum(self.contributed)

    @property
    def total_distributed(self) -> Decimal:
        return row_sum(self.distributions)

    @property
    def cash_flows(self) -> Row:
        return freeze(d - c for c, d in zip(self.contributed, self.distributions))

    def to_dict(self) -> Dict:
        return {
            "key": self.key,
            "role": self.role.value,
            "commitment": float(self.commitment),
            "contributed": to_floats(self.contributed),
            "returned_capital": to_floats(self.returned_capital),
            "preferred_accrued": to_floats(self.preferred_accrued),
            "preferred_paid": to_floats(self.preferred_paid),
            "profit_distributions": to_floats(self.profit_distributions),
            "distributions": to_floats(self.distributions),
            "ending_unreturned_capital": to_floats(self.ending_unreturned_capital),
        }


@dataclass(frozen=True)
class WaterfallResult:
    """Equity calls, distributions and capital accounts of a run."""

    accounts: Tuple[TrancheAccount, ...]
    contributions: Row
    distributions: Row
    lp_distributions: Row
    gp_distributions: Row
    carry_paid: Row
    clawback: Row
    funding_gap: Row
    cash_balance: Row
    tier_distributions: Mapping[str, Row]
    governing_tier: Optional[str] = None
    residual_value: Decimal = ZERO
    discount_rate_pa: Optional[Decimal] = None

    @property
    def cash_flows(self) -> Row:
        """Aggregate equity cash flow: distributions less contributions."""
        return freeze(d - c for c, d in zip(self.contributions, self.distributions))

    def _discount_rate(self) -> Decimal:
        if self.discount_rate_pa is not None:
            return self.discount_rate_pa
        return to_decimal(get_settings().default_discount_rate_pa)

    def _residual_share(self, accounts: Sequence[TrancheAccount]) -> Decimal:
        total = row_sum(a.total_contributed for a in self.accounts)
        if total == 0 or self.residual_value == 0:
            return ZERO
        share = row_sum(a.total_contributed for a in accounts)
        return money(self.residual_value * share / total)

    def metrics(self, accounts: Sequence[TrancheAccount]) -> Dict:
        """Returns of a group of tranches, residual value shared by contributed capital."""
        horizon = len(self.contributions)
        flows = zeros(horizon)
        for account in accounts:
            for t, cf in enumerate(account.cash_flows):
                flows[t] += cf
        residual = self._residual_share(accounts)
        if horizon:
            flows[-1] += residual

        contributed = row_sum(a.total_contributed for a in accounts)
        distributed = row_sum(a.total_distributed for a in accounts)
        return {
            "contributed": float(contributed),
            "distributed": float(distributed),
            "residual_value": float(residual),
            "irr_pa": calculate_irr_pa(flows),
            "npv": float(calculate_npv(flows, self._discount_rate())),
            "moic": calculate_moic(distributed, contributed, residual),
            "tvpi": calculate_tvpi(distributed, residual, contributed),
            "dpi": calculate_dpi(distributed, contributed),
            "rvpi": calculate_rvpi(residual, contributed),
        }

    def summary(self, role: Role) -> Dict:
        return self.metrics([a for a in self.accounts if a.role == role])

    def to_dict(self) -> Dict:
        return {
            "lp": self.summary(Role.LP),
            "gp": self.summary(Role.GP),
            "capital_accounts": [
                {**account.to_dict(), **self.metrics([account])} for account in self.accounts
            ],
            "contributions": to_floats(self.contributions),
            "distributions": to_floats(self.distributions),
            "lp_distributions": to_floats(self.lp_distributions),
            "gp_distributions": to_floats(self.gp_distributions),
            "carry_paid": to_floats(self.carry_paid),
            "clawback": to_floats(self.clawback),
            "funding_gap": to_floats(self.funding_gap),
            "cash_balance": to_floats(self.cash_balance),
            "tiers": {
                "governing_tier": self.governing_tier,
                "distributions": {k: to_floats(v) for k, v in self.tier_distributions.items()},
            },
        }


def _weights(values: Sequence[Decimal], fallback: Sequence[Decimal]) -> List[Decimal]:
    if row_sum(values) > 0:
        return list(values)
    if row_sum(fallback) > 0:
        return list(fallback)
    return [ONE] * len(values)


def _capital_weights(ledgers: Sequence[_Ledger]) -> List[Decimal]:
    return _weights(
        [l.contributed_total for l in ledgers],
        [l.tranche.commitment for l in ledgers],
    )


def _hurdle_deficit(
    trigger: HurdleTrigger,
    lp_flows: Sequence[Decimal],
    contributed: Decimal,
    distributed: Decimal,
) -> Decimal:
    """
    Cash the LP aggregate still needs in the current period to meet a trigger.

    IRR triggers compare the future value of LP flows at the hurdle rate with
    zero (the closed form of -NPV_h x (1 + h_m)^t); MOIC triggers compare
    distributions with threshold x contributed. Zero or negative means met.
    """
    if trigger.metric == "moic":
        return trigger.threshold * contributed - distributed
    growth = ONE + periodic_rate(trigger.threshold)
    future_value = ZERO
    for flow in lp_flows:
        future_value = future_value * growth + flow
    return -future_value


def _deal_satisfies(trigger: HurdleTrigger, flows: Sequence[Decimal]) -> bool:
    if trigger.metric == "moic":
        contributed = -row_sum(cf for cf in flows if cf < 0)
        distributed = row_sum(cf for cf in flows if cf > 0)
        moic = calculate_moic(distributed, contributed)
        return moic is not None and moic >= float(trigger.threshold)
    irr = calculate_irr_pa(flows)
    return irr is not None and irr >= float(trigger.threshold)


class _ProfitSplit:
    """Profit allocated between LP and GP within one period."""

    def __init__(self, has_lp: bool, has_gp: bool, lp_to_date: Decimal, gp_to_date: Decimal):
        self.has_lp = has_lp
        self.has_gp = has_gp
        self.lp_to_date = lp_to_date
        self.gp_to_date = gp_to_date
        self.lp = ZERO
        self.gp = ZERO
        self.by_tier: Dict[str, Decimal] = {}

    def lp_share(self, share: Decimal) -> Decimal:
        # Without GP tranches the GP share routes to LPs, and vice versa
        if not self.has_gp:
            return ONE
        if not self.has_lp:
            return ZERO
        return share

    def _book(self, key: str, lp: Decimal, gp: Decimal) -> None:
        self.lp += lp
        self.gp += gp
        self.by_tier[key] = self.by_tier.get(key, ZERO) + lp + gp

    def catch_up(self, hurdle: Hurdle, available: Decimal) -> Decimal:
        """Pay GP until it holds the target share of preferred return and profit to date."""
        if not hurdle.catchup.enabled or not self.has_gp or available <= 0:
            return ZERO
        target = hurdle.catchup.gp_target_share_of_profits
        total = self.lp_to_date + self.gp_to_date + self.lp + self.gp
        gp = self.gp_to_date + self.gp
        needed = money((target * total - gp) / (ONE - target), ROUND_UP)
        amount = min(available, max(ZERO, needed))
        if amount > 0:
            self._book(hurdle.key, ZERO, amount)
        return amount

    def split(self, key: str, amount: Decimal, share: Decimal) -> None:
        if amount <= 0:
            return
        lp = money(amount * self.lp_share(share))
        self._book(key, lp, amount - lp)


def _fund(residual: Sequence[Decimal], ledgers: Sequence[_Ledger]) -> Tuple[List[Decimal], List[Decimal], List[Decimal]]:
    """
    Call equity for deficits and work out the distributable cash per period.

    Returns:
        (distributable, cash_balance, funding_gap) rows
    """
    horizon = len(residual)
    distributable, cash_balance, funding_gap = zeros(horizon), zeros(horizon), zeros(horizon)

    called = [ZERO] * len(ledgers)
    cash = ZERO
    for t in range(horizon):
        available = cash + residual[t]
        if available < 0:
            remaining = [max(ZERO, l.tranche.commitment - c) for l, c in zip(ledgers, called)]
            call = money(min(-available, row_sum(remaining)), ROUND_DOWN)
            for i, (ledger, share) in enumerate(zip(ledgers, allocate(call, remaining))):
                ledger.contributed[t] = share
                called[i] += share
            available += call
            if available < 0:
                funding_gap[t] = -available
        elif ledgers:
            distributable[t] = available
            available = ZERO
        cash = available
        cash_balance[t] = cash

    gap = max(funding_gap) if horizon else ZERO
    if gap > 0:
        first = next(t for t, v in enumerate(funding_gap) if v > 0)
        logger.warning(
            f"Equity commitments exhausted from period {first}; peak funding gap {gap}"
        )
    return distributable, cash_balance, funding_gap


def compute_waterfall(
    residual: Sequence[Decimal],
    tranches: Sequence[EquityTranche],
    config: WaterfallConfig,
) -> WaterfallResult:
    """
    Run the equity waterfall over the pre-equity project cash row.

    Args:
        residual: Project cash after debt service and fees, per period
        tranches: Equity tranches (LP and GP)
        config: Waterfall mode, hurdle tiers and accrual level

    Returns:
        WaterfallResult with capital accounts and aggregate rows
    """
    horizon = len(residual)
    lp_only = config.accrual_level == AccrualLevel.lp_only
    ledgers = [
        _Ledger(tranche=tr, horizon=horizon, accrues=not (lp_only and tr.role == Role.GP))
        for tr in tranches
    ]
    lps = [l for l in ledgers if l.is_lp]
    gps = [l for l in ledgers if not l.is_lp]
    hurdles = list(config.hurdles)

    distributable, cash_balance, funding_gap = _fund(residual, ledgers)
    contributions = [row_sum(l.contributed[t] for l in ledgers) for t in range(horizon)]

    governing: Optional[Hurdle] = None
    if config.mode == WaterfallMode.european and hurdles:
        deal_flows = [d - c for c, d in zip(contributions, distributable)]
        for hurdle in hurdles:
            if _deal_satisfies(hurdle.trigger, deal_flows):
                governing = hurdle
        logger.info(f"European waterfall governed by tier {governing.key if governing else PRO_RATA}")

    tier_rows: Dict[str, List[Decimal]] = {PRO_RATA: zeros(horizon)}
    for hurdle in hurdles:
        tier_rows[hurdle.key] = zeros(horizon)
    lp_distributions, gp_distributions = zeros(horizon), zeros(horizon)
    carry_paid, clawback = zeros(horizon), zeros(horizon)

    lp_history: List[Decimal] = []
    lp_contributed = ZERO
    lp_distributed = ZERO
    lp_returns_to_date = ZERO
    gp_returns_to_date = ZERO

    for t in range(horizon):
        for ledger in ledgers:
            ledger.contributed_total += ledger.contributed[t]
            ledger.unreturned += ledger.contributed[t]
            ledger.accrue()

        cash = distributable[t]

        roc = min(cash, row_sum(l.unreturned for l in ledgers))
        for ledger, share in zip(ledgers, allocate(roc, [l.unreturned for l in ledgers])):
            ledger.unreturned -= share
            ledger.returned_capital[t] += share
        cash -= roc

        pref = min(cash, row_sum(l.pref_balance for l in ledgers))
        for ledger, share in zip(ledgers, allocate(pref, [l.pref_balance for l in ledgers])):
            ledger.pref_balance -= share
            ledger.preferred_paid[t] += share
            ledger.pref_paid_total += share
        cash -= pref

        lp_contributed += row_sum(l.contributed[t] for l in lps)
        lp_partial = row_sum(l.returned_capital[t] + l.preferred_paid[t] - l.contributed[t] for l in lps)
        lp_received = row_sum(l.returned_capital[t] + l.preferred_paid[t] for l in lps)

        capital = _capital_weights(ledgers)
        capital_total = row_sum(capital)
        lp_capital_share = row_sum(w for w, l in zip(capital, ledgers) if l.is_lp) / capital_total if ledgers else ONE

        lp_pref = row_sum(l.preferred_paid[t] for l in lps)
        gp_pref = row_sum(l.preferred_paid[t] for l in gps)
        split = _ProfitSplit(bool(lps), bool(gps), lp_returns_to_date + lp_pref, gp_returns_to_date + gp_pref)
        profit = cash
        if profit > 0:
            if config.mode == WaterfallMode.european or not hurdles:
                if governing is None:
                    split.split(PRO_RATA, profit, lp_capital_share)
                else:
                    profit_left = profit - split.catch_up(governing, profit)
                    split.split(governing.key, profit_left, governing.split_after_catchup.lp)
            else:
                phases: List[Optional[Hurdle]] = [None] + hurdles
                remaining = profit
                for k, hurdle in enumerate(phases):
                    if remaining <= 0:
                        break
                    key = PRO_RATA if hurdle is None else hurdle.key
                    share = split.lp_share(
                        lp_capital_share if hurdle is None else hurdle.split_after_catchup.lp
                    )
                    if k + 1 == len(phases):
                        if hurdle is not None:
                            remaining -= split.catch_up(hurdle, remaining)
                        split.split(key, remaining, share)
                        remaining = ZERO
                        break

                    deficit = _hurdle_deficit(
                        phases[k + 1].trigger,
                        lp_history + [lp_partial + split.lp],
                        lp_contributed,
                        lp_distributed + lp_received + split.lp,
                    )
                    if deficit <= 0:
                        continue
                    if hurdle is not None:
                        remaining -= split.catch_up(hurdle, remaining)
                    if share <= 0:
                        split.split(key, remaining, share)
                        remaining = ZERO
                        break
                    chunk = min(remaining, money(deficit / share, ROUND_UP))
                    split.split(key, chunk, share)
                    remaining -= chunk

        for ledger, amount in zip(lps, allocate(split.lp, _capital_weights(lps))):
            ledger.profit_distributions[t] += amount
            ledger.profit_total += amount
        for ledger, amount in zip(gps, allocate(split.gp, _capital_weights(gps))):
            ledger.profit_distributions[t] += amount
            ledger.profit_total += amount
        for key, amount in split.by_tier.items():
            tier_rows[key][t] += amount

        if gps and lps and profit > 0:
            gp_capital_entitlement = money(profit * (ONE - lp_capital_share))
            carry_paid[t] = max(ZERO, split.gp - gp_capital_entitlement)

        lp_returns_to_date += lp_pref + split.lp
        gp_returns_to_date += gp_pref + split.gp
        lp_history.append(lp_partial + split.lp)
        lp_distributed += lp_received + split.lp

        for ledger in ledgers:
            ledger.close_period(t)

    if horizon and lps and gps:
        last = horizon - 1
        amount = _clawback(
            config, governing, lps, gps, ledgers, lp_history, lp_contributed, lp_distributed,
            carry_paid,
        )
        if amount > 0:
            clawback[last] = amount
            for ledger, share in zip(gps, allocate(amount, _weights([g.profit_total for g in gps], _capital_weights(gps)))):
                ledger.profit_distributions[last] -= share
                ledger.profit_total -= share
            lp_owed = [l.unreturned + l.pref_balance for l in lps]
            for ledger, share in zip(lps, allocate(amount, _weights(lp_owed, _capital_weights(lps)))):
                ledger.receive(last, share)
            for ledger in ledgers:
                ledger.close_period(last)
            logger.info(f"Clawback of {amount} moved from GP to LP tranches")

    accounts = tuple(TrancheAccount.from_ledger(l) for l in ledgers)
    for account in accounts:
        target = lp_distributions if account.role == Role.LP else gp_distributions
        for t, value in enumerate(account.distributions):
            target[t] += value

    return WaterfallResult(
        accounts=accounts,
        contributions=freeze(contributions),
        distributions=freeze(distributable),
        lp_distributions=freeze(lp_distributions),
        gp_distributions=freeze(gp_distributions),
        carry_paid=freeze(carry_paid),
        clawback=freeze(clawback),
        funding_gap=freeze(funding_gap),
        cash_balance=freeze(cash_balance),
        tier_distributions=MappingProxyType({k: freeze(v) for k, v in tier_rows.items()}),
        governing_tier=governing.key if governing else None,
    )


def _clawback(
    config: WaterfallConfig,
    governing: Optional[Hurdle],
    lps: Sequence[_Ledger],
    gps: Sequence[_Ledger],
    ledgers: Sequence[_Ledger],
    lp_history: Sequence[Decimal],
    lp_contributed: Decimal,
    lp_distributed: Decimal,
    carry_paid: Sequence[Decimal],
) -> Decimal:
    """
    GP carry to return to LPs at the final period.

    min(carry received, max(carry above the final entitlement, LP capital and
    preferred shortfall)).
    """
    carry_received = row_sum(carry_paid)
    if carry_received <= 0:
        return ZERO

    capital = _capital_weights(ledgers)
    gp_capital_share = row_sum(w for w, l in zip(capital, ledgers) if not l.is_lp) / row_sum(capital)

    if config.mode == WaterfallMode.european:
        final = governing
    else:
        final = None
        for hurdle in config.hurdles:
            if _hurdle_deficit(hurdle.trigger, lp_history, lp_contributed, lp_distributed) <= 0:
                final = hurdle
    final_gp_share = final.split_after_catchup.gp if final else gp_capital_share

    pool = row_sum(l.profit_total + l.pref_paid_total for l in ledgers)
    entitled = max(ZERO, money((final_gp_share - gp_capital_share) * pool))
    excess = carry_received - entitled
    # Carry rounds each period; up to a cent per carry period is not excess
    if excess <= CENT * sum(1 for c in carry_paid if c > 0):
        excess = ZERO
    shortfall = row_sum(l.unreturned + l.pref_balance for l in lps)

    return money(max(ZERO, min(carry_received, max(excess, shortfall))))
