from __future__ import annotations

import math
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel


class Granularity(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"


class RequirementKey(str, Enum):
    """Worker roles a shift can request, plus the reserved ``all`` rollup."""

    CNA = "CNA"
    LVN = "LVN"
    RN = "RN"
    CAREGIVER = "CAREGIVER"
    HHA = "HHA"
    MEDICAL_TECHNICIAN = "MEDICAL_TECHNICIAN"
    ALL = "all"


WORKER_TYPES: tuple[RequirementKey, ...] = tuple(k for k in RequirementKey if k is not RequirementKey.ALL)

_TWO_PLACES = Decimal("0.01")


def round_metric(value: Optional[float]) -> float:
    """Round half-up to 2 decimals. Missing and non-finite values become 0."""
    if value is None:
        return 0.0
    v = float(value)
    if not math.isfinite(v):
        return 0.0
    # -0.0 normalizes to 0.0
    return float(Decimal(repr(v)).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)) + 0.0


def safe_ratio(numerator: float, denominator: float, scale: float = 1.0) -> float:
    if not denominator:
        return 0.0
    return numerator / denominator * scale


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _Figures(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    @field_validator("*", mode="before")
    @classmethod
    def _round(cls, v):
        return round_metric(v)


class ShiftFigures(_Figures):
    requested: float = 0.0
    filled: float = 0.0
    fill_rate: float = 0.0
    unique_workers: float = 0.0


class RevenueFigures(_Figures):
    expected: float = 0.0
    gross: float = 0.0
    net: float = 0.0
    avg_margin: float = 0.0


class PeriodFigures(BaseModel):
    """Shift and revenue figures of one requirement type for one period."""

    model_config = ConfigDict(frozen=True)

    shifts: ShiftFigures = Field(default_factory=ShiftFigures)
    revenue: RevenueFigures = Field(default_factory=RevenueFigures)


SnapshotMap = Dict[RequirementKey, PeriodFigures]


class Metric(_CamelModel):
    current_shifts: Optional[ShiftFigures] = None
    current_revenue: Optional[RevenueFigures] = None
    previous_shifts: Optional[ShiftFigures] = None
    previous_revenue: Optional[RevenueFigures] = None
    churn_shifts: Optional[ShiftFigures] = None
    churn_revenue: Optional[RevenueFigures] = None

    def current(self) -> Optional[PeriodFigures]:
        if self.current_shifts is None and self.current_revenue is None:
            return None
        return PeriodFigures(
            shifts=self.current_shifts or ShiftFigures(),
            revenue=self.current_revenue or RevenueFigures(),
        )

    def previous(self) -> Optional[PeriodFigures]:
        if self.previous_shifts is None and self.previous_revenue is None:
            return None
        return PeriodFigures(
            shifts=self.previous_shifts or ShiftFigures(),
            revenue=self.previous_revenue or RevenueFigures(),
        )


Breakdown = Dict[RequirementKey, Metric]

BREAKDOWN_ADAPTER: TypeAdapter[Breakdown] = TypeAdapter(Breakdown)


def dump_breakdown(section: Breakdown) -> dict:
    return BREAKDOWN_ADAPTER.dump_python(section, mode="json", by_alias=True)


def load_breakdown(raw: Optional[dict]) -> Optional[Breakdown]:
    if raw is None:
        return None
    return BREAKDOWN_ADAPTER.validate_python(raw)


class MetricRecord(_CamelModel):
    facility_id: str
    facility_type: Optional[str] = None
    name: Optional[str] = None
    date: datetime
    daily: Optional[Breakdown] = None
    weekly: Optional[Breakdown] = None
    monthly: Optional[Breakdown] = None

    def section(self, granularity: Granularity) -> Optional[Breakdown]:
        return getattr(self, granularity.value)

    @property
    def has_identity(self) -> bool:
        return bool(self.facility_type and self.name)


class ShiftRecord(BaseModel):
    shift_id: str
    facility_id: str
    requirement_type: str
    start: datetime
    end: Optional[datetime] = None
    charge: float = 0.0
    pay: float = 0.0
    time: float = 0.0
    agent_id: Optional[str] = None
    deleted: bool = False
    is_billable: bool = False

    @property
    def qualifies(self) -> bool:
        # Deleted shifts still count when billable (late-cancellation fee)
        return not self.deleted or self.is_billable

    @property
    def is_filled(self) -> bool:
        return self.agent_id is not None and not self.deleted


class FacilityInfo(BaseModel):
    facility_id: str
    type: str
    name: str
    account_manager_id: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None


class GranularityFlags(BaseModel):
    daily: bool = True
    weekly: bool = True
    monthly: bool = True

    def enabled(self) -> list[Granularity]:
        return [g for g in Granularity if getattr(self, g.value)]


class ShiftUpdateEvent(_CamelModel):
    shift_id: Optional[str] = None
    facility_id: Optional[str] = None
    start: Optional[datetime] = None
    flags: GranularityFlags = Field(default_factory=GranularityFlags)

    @field_validator("flags", mode="before")
    @classmethod
    def _null_flags(cls, v):
        # An explicit null means the defaults
        return GranularityFlags() if v is None else v
