"""
Input Snapshot Models

Pydantic models for the fully resolved input snapshot consumed by the engine.
Every option has an explicit default; validation happens once, at ingestion,
through load_snapshot().
"""

import enum
from datetime import date
from decimal import Decimal
from typing import Any, Optional, Tuple, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from feasibility.calculations.errors import ConfigurationError

SPLIT_TOLERANCE = Decimal("1e-9")


class SnapshotModel(BaseModel):
    """Base for snapshot models: immutable, snake_case or camelCase keys."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class RevenueKind(str, enum.Enum):
    """Revenue line type."""
    sale = "sale"
    rental = "rental"
    hospitality = "hospitality"


class Recognition(str, enum.Enum):
    """When sale revenue is recognised."""
    handover = "handover"
    sell_through = "sell_through"


class AmortType(str, enum.Enum):
    """Debt principal repayment shape."""
    bullet = "bullet"
    annuity = "annuity"
    straight_line = "straight_line"
    interest_only = "interest_only"


_AMORT_ALIASES = {
    "straightLine": "straight_line",
    "straight": "straight_line",
    "interestOnly": "interest_only",
}


class RateBasis(str, enum.Enum):
    """Whether a facility quotes a nominal or an effective annual rate."""
    nominal = "nominal"
    effective = "effective"


class Role(str, enum.Enum):
    """Equity tranche role."""
    LP = "LP"
    GP = "GP"


class Compounding(str, enum.Enum):
    """Preferred return compounding convention."""
    simple = "simple"
    monthly = "monthly"
    quarterly = "quarterly"
    annual = "annual"


class WaterfallMode(str, enum.Enum):
    """Hurdle trigger evaluation cadence."""
    european = "european"
    american = "american"


class AccrualLevel(str, enum.Enum):
    """Which tranches accrue preferred return."""
    all_tranches = "all_tranches"
    lp_only = "lp_only"


class DepreciationMethod(str, enum.Enum):
    none = "none"
    straight_line = "straight_line"


class CovenantBasis(str, enum.Enum):
    """Covenant test window; ltm is the trailing twelve months."""
    point = "point"
    ltm = "ltm"
    both = "both"


def _above_minus_one(value: Decimal) -> Decimal:
    if value <= -1:
        raise ValueError("escalation_rate must be greater than -1")
    return value


class Timeline(SnapshotModel):
    """Monthly period grid."""

    periods: int = Field(gt=0)
    start_date: date


class DepreciationPolicy(SnapshotModel):
    """
    Straight-line depreciation of a capitalised cost item.

    The depreciable basis is the item's spend up to and including
    start_period, less salvage_value, written off evenly over
    useful_life_months from start_period.
    """

    method: DepreciationMethod = DepreciationMethod.none
    start_period: int = Field(default=0, ge=0)
    useful_life_months: int = Field(default=0, ge=0)
    salvage_value: Decimal = Field(default=Decimal("0"), ge=0)


class CostItem(SnapshotModel):
    """A construction or operating cost spread over a window of periods."""

    key: str
    label: str = ""
    category: str = "construction"
    base_amount: Decimal = Field(ge=0)
    start_period: int = 0
    duration_periods: int = 1
    escalation_rate: Decimal = Decimal("0")
    phasing: Optional[Tuple[Decimal, ...]] = None
    is_opex: bool = False
    depreciation: Optional[DepreciationPolicy] = None

    @field_validator("phasing")
    @classmethod
    def _weights_non_negative(cls, value):
        if value is not None and any(w < 0 for w in value):
            raise ValueError("phasing weights must be non-negative")
        return value

    @field_validator("escalation_rate")
    @classmethod
    def _escalation_above_minus_one(cls, value):
        return _above_minus_one(value)

    @property
    def end_period(self) -> int:
        return self.start_period + self.duration_periods


class RevenueLine(SnapshotModel):
    """A sale, rental or hospitality revenue line."""

    key: str
    kind: RevenueKind = RevenueKind.sale
    units: Decimal = Field(default=Decimal("0"), ge=0)
    price_per_unit: Decimal = Field(default=Decimal("0"), ge=0)
    start_period: int = 0
    end_period: int = 1
    escalation_rate: Decimal = Decimal("0")
    occupancy: Decimal = Field(default=Decimal("1"), ge=0, le=1)
    recognition: Recognition = Recognition.handover
    handover_period: Optional[int] = None

    @field_validator("escalation_rate")
    @classmethod
    def _escalation_above_minus_one(cls, value):
        return _above_minus_one(value)

    @model_validator(mode="before")
    @classmethod
    def _hospitality_aliases(cls, data: Any):
        # rooms/adr are the hospitality names for units/price_per_unit
        if isinstance(data, dict):
            data = dict(data)
            if "rooms" in data and "units" not in data:
                data["units"] = data.pop("rooms")
            if "adr" in data and "price_per_unit" not in data and "pricePerUnit" not in data:
                data["price_per_unit"] = data.pop("adr")
        return data


class Covenants(SnapshotModel):
    """Financial covenants of a facility."""

    dscr_min: Optional[Decimal] = Field(default=None, ge=0)
    icr_min: Optional[Decimal] = Field(default=None, ge=0)
    test_basis: CovenantBasis = CovenantBasis.point
    grace_period_m: int = Field(default=0, ge=0)
    strict_dscr: bool = False


class DebtFacility(SnapshotModel):
    """A debt facility in the capital stack."""

    key: str
    limit: Decimal = Field(ge=0)
    ltc_percent: Decimal = Field(ge=0, le=1)
    nominal_rate_pa: Decimal = Field(default=Decimal("0"), ge=0)
    rate_basis: RateBasis = RateBasis.nominal
    amort_type: AmortType = AmortType.bullet
    availability_start: int = Field(default=0, ge=0)
    availability_end: int = Field(default=999, ge=0)
    tenor_months: int = Field(gt=0)
    upfront_fee_pct: Decimal = Field(default=Decimal("0"), ge=0)
    ongoing_fee_pct: Decimal = Field(default=Decimal("0"), ge=0)
    commitment_fee_pct: Decimal = Field(default=Decimal("0"), ge=0)
    dsra_months: Decimal = Field(default=Decimal("0"), ge=0)
    draw_priority: int = 1
    covenants: Optional[Covenants] = None

    @field_validator("amort_type", mode="before")
    @classmethod
    def _amort_aliases(cls, value):
        if isinstance(value, str):
            return _AMORT_ALIASES.get(value, value)
        return value

    @model_validator(mode="after")
    def _window_ordered(self):
        if self.availability_end < self.availability_start:
            raise ValueError(
                f"facility {self.key}: availability_end precedes availability_start"
            )
        return self


class PreferredReturn(SnapshotModel):
    """Preferred return terms for a tranche."""

    rate_pa: Decimal = Field(default=Decimal("0"), ge=0)
    compounding: Compounding = Compounding.monthly


class EquityTranche(SnapshotModel):
    """An equity tranche and its commitment."""

    key: str
    role: Role = Role.LP
    commitment: Decimal = Field(default=Decimal("0"), ge=0)
    preferred_return: PreferredReturn = PreferredReturn()

    @field_validator("role", mode="before")
    @classmethod
    def _upper_role(cls, value):
        if isinstance(value, str):
            return value.upper()
        return value


class HurdleTrigger(SnapshotModel):
    """Threshold that must be met by LPs before a tier applies."""

    irr_threshold: Optional[Decimal] = Field(default=None, gt=-1)
    moic_threshold: Optional[Decimal] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _exactly_one(self):
        if (self.irr_threshold is None) == (self.moic_threshold is None):
            raise ValueError("a hurdle trigger needs exactly one of irr_threshold or moic_threshold")
        return self

    @property
    def metric(self) -> str:
        return "irr" if self.irr_threshold is not None else "moic"

    @property
    def threshold(self) -> Decimal:
        return self.irr_threshold if self.irr_threshold is not None else self.moic_threshold


class Split(SnapshotModel):
    """LP/GP split of a tier; must sum to 1."""

    lp: Decimal = Field(ge=0, le=1)
    gp: Decimal = Field(ge=0, le=1)

    @model_validator(mode="after")
    def _sums_to_one(self):
        if abs(self.lp + self.gp - 1) > SPLIT_TOLERANCE:
            raise ValueError(f"split lp={self.lp} gp={self.gp} does not sum to 1.0")
        return self


class Catchup(SnapshotModel):
    """GP catch-up terms."""

    enabled: bool = False
    gp_target_share_of_profits: Decimal = Field(default=Decimal("0.2"), ge=0, lt=1)


class Hurdle(SnapshotModel):
    """One promote tier of the waterfall."""

    key: str
    trigger: HurdleTrigger
    split_after_catchup: Split
    catchup: Catchup = Catchup()


class WaterfallConfig(SnapshotModel):
    """Distribution waterfall configuration."""

    mode: WaterfallMode = WaterfallMode.european
    hurdles: Tuple[Hurdle, ...] = ()
    accrual_level: AccrualLevel = AccrualLevel.all_tranches

    @model_validator(mode="after")
    def _monotonic_triggers(self):
        metrics = {h.trigger.metric for h in self.hurdles}
        if len(metrics) > 1:
            raise ValueError("all hurdle triggers must use the same metric")
        thresholds = [h.trigger.threshold for h in self.hurdles]
        for prev, nxt in zip(thresholds, thresholds[1:]):
            if nxt < prev:
                raise ValueError(f"hurdle thresholds must be non-decreasing, got {thresholds}")
        return self


class ValuationConfig(SnapshotModel):
    """Exit assumptions for income-producing lines."""

    exit_cap_rate: Decimal = Field(default=Decimal("0"), ge=0)
    selling_cost_pct: Decimal = Field(default=Decimal("0"), ge=0, le=1)


class TaxConfig(SnapshotModel):
    """Corporation tax on operating profit after deductible finance costs."""

    corp_tax_rate: Decimal = Field(default=Decimal("0"), ge=0, le=1)
    interest_cap_pct: Optional[Decimal] = Field(default=None, ge=0)
    allow_nol_carryforward: bool = True


class InputSnapshot(SnapshotModel):
    """Fully resolved engine input."""

    timeline: Timeline
    cost_items: Tuple[CostItem, ...] = ()
    unit_types: Tuple[RevenueLine, ...] = ()
    debt: Tuple[DebtFacility, ...] = ()
    equity: Tuple[EquityTranche, ...] = ()
    waterfall_config: WaterfallConfig = WaterfallConfig()
    valuation: ValuationConfig = ValuationConfig()
    tax: TaxConfig = TaxConfig()
    discount_rate_pa: Optional[Decimal] = Field(default=None, gt=-1)

    @model_validator(mode="after")
    def _unique_keys(self):
        for name, items in (("cost item", self.cost_items), ("debt", self.debt), ("equity", self.equity)):
            keys = [item.key for item in items]
            if len(keys) != len(set(keys)):
                raise ValueError(f"duplicate {name} keys: {keys}")
        return self


def load_snapshot(data: Union[dict, InputSnapshot]) -> InputSnapshot:
    """
    Validate raw input into an InputSnapshot.

    Raises:
        ConfigurationError: If the input is malformed
    """
    if isinstance(data, InputSnapshot):
        return data
    try:
        return InputSnapshot.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e
