from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from backend.app.metrics.ledger import ShiftLedger
from backend.app.metrics.models import (
    WORKER_TYPES,
    Granularity,
    PeriodFigures,
    RequirementKey,
    RevenueFigures,
    ShiftFigures,
    ShiftRecord,
    SnapshotMap,
    safe_ratio,
)
from backend.app.metrics.periods import PeriodResolver


logger = logging.getLogger(__name__)


@dataclass
class RequirementAggregate:
    """Raw, unrounded sums for one requirement type over one window."""

    requirement_type: RequirementKey
    requested: int = 0
    filled: int = 0
    workers: set[str] = field(default_factory=set)
    expected_revenue: float = 0.0
    gross_revenue: float = 0.0
    net_revenue: float = 0.0
    total_margin: float = 0.0

    @property
    def unique_workers(self) -> int:
        return len(self.workers)

    def add(self, shift: ShiftRecord) -> None:
        self.requested += 1
        billed = shift.time * shift.charge
        if not shift.deleted:
            self.expected_revenue += billed
            if shift.agent_id is not None:
                self.workers.add(shift.agent_id)
        # Assigned late cancellations still bill the facility
        if shift.agent_id is not None:
            self.gross_revenue += billed
            self.net_revenue += billed - shift.time * shift.pay
        if shift.is_filled:
            self.filled += 1
            self.total_margin += shift.charge - shift.pay

    def to_figures(self) -> PeriodFigures:
        return _figures(
            self.requested,
            self.filled,
            self.unique_workers,
            self.expected_revenue,
            self.gross_revenue,
            self.net_revenue,
            self.total_margin,
        )


def _figures(
    requested: float,
    filled: float,
    unique_workers: float,
    expected: float,
    gross: float,
    net: float,
    total_margin: float,
) -> PeriodFigures:
    return PeriodFigures(
        shifts=ShiftFigures(
            requested=requested,
            filled=filled,
            fill_rate=safe_ratio(filled, requested, 100.0),
            unique_workers=unique_workers,
        ),
        revenue=RevenueFigures(
            expected=expected,
            gross=gross,
            net=net,
            avg_margin=safe_ratio(total_margin, filled),
        ),
    )


def aggregate_shifts(shifts: Iterable[ShiftRecord]) -> dict[RequirementKey, RequirementAggregate]:
    """Group qualifying shifts by requirement type and sum their counts and revenue."""
    valid = {k.value: k for k in WORKER_TYPES}
    buckets: dict[RequirementKey, RequirementAggregate] = {}
    for shift in shifts:
        if not shift.qualifies:
            continue
        key = valid.get(shift.requirement_type)
        if key is None:
            logger.warning(
                "Skipping shift %s with unknown requirement type %r",
                shift.shift_id,
                shift.requirement_type,
            )
            continue
        bucket = buckets.get(key)
        if bucket is None:
            bucket = buckets[key] = RequirementAggregate(requirement_type=key)
        bucket.add(shift)
    return buckets


def build_snapshot(aggregates: dict[RequirementKey, RequirementAggregate]) -> SnapshotMap:
    """Round per-type figures and add the ``all`` rollup, which is always present."""
    snapshot: SnapshotMap = {}
    for key in WORKER_TYPES:
        if key in aggregates:
            snapshot[key] = aggregates[key].to_figures()

    # Revenue totals add the already rounded per-type figures so the rollup
    # matches the stored entries to the cent.
    parts = [snapshot[k] for k in WORKER_TYPES if k in snapshot]
    snapshot[RequirementKey.ALL] = _figures(
        sum(p.shifts.requested for p in parts),
        sum(p.shifts.filled for p in parts),
        # Workers are counted per requirement type, then summed
        sum(p.shifts.unique_workers for p in parts),
        sum(p.revenue.expected for p in parts),
        sum(p.revenue.gross for p in parts),
        sum(p.revenue.net for p in parts),
        sum(a.total_margin for a in aggregates.values()),
    )
    return snapshot


class ShiftAggregateQuery:
    def __init__(self, ledger: ShiftLedger, resolver: PeriodResolver) -> None:
        self.ledger = ledger
        self.resolver = resolver

    async def snapshot(self, facility_id: str, period_start: datetime, granularity: Granularity) -> SnapshotMap:
        start, end = self.resolver.window(period_start, granularity)
        shifts = await self.ledger.window_shifts(facility_id, start, end)
        return build_snapshot(aggregate_shifts(shifts))
