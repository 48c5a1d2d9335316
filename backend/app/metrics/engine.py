from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from backend.app.config.env import MetricsSettings, get_metrics_settings
from backend.app.metrics.aggregates import ShiftAggregateQuery
from backend.app.metrics.churn import build_section
from backend.app.metrics.errors import MetricLookupError
from backend.app.metrics.facilities import FacilityDirectory
from backend.app.metrics.ledger import ShiftLedger
from backend.app.metrics.models import (
    Breakdown,
    FacilityInfo,
    Granularity,
    MetricRecord,
    PeriodFigures,
    RequirementKey,
    ShiftUpdateEvent,
    SnapshotMap,
)
from backend.app.metrics.periods import PeriodResolver
from backend.app.metrics.store import MetricRecordStore


logger = logging.getLogger(__name__)


class OutcomeStatus(str, Enum):
    processed = "processed"
    aborted = "aborted"


@dataclass(frozen=True)
class PeriodOutcome:
    facility_id: Optional[str]
    granularity: Granularity
    period_start: Optional[datetime]
    status: OutcomeStatus
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.processed


def _current_figures(section: Optional[Breakdown]) -> SnapshotMap:
    if not section:
        return {}
    out: SnapshotMap = {}
    for key, metric in section.items():
        figures = metric.current()
        if figures is not None:
            out[key] = figures
    return out


def _previous_figures(section: Breakdown) -> SnapshotMap:
    out: SnapshotMap = {}
    for key, metric in section.items():
        figures = metric.previous()
        if figures is not None:
            out[key] = figures
    return out


def _is_usable(section: Optional[Breakdown]) -> bool:
    return bool(section) and RequirementKey.ALL in section


class _FacilityCache:
    """Fetches the facility profile at most once per run."""

    def __init__(self, directory: FacilityDirectory, facility_id: str) -> None:
        self._directory = directory
        self._facility_id = facility_id
        self._info: Optional[FacilityInfo] = None

    async def identity_for(self, record: Optional[MetricRecord]) -> Optional[FacilityInfo]:
        if record is not None and record.has_identity:
            return None
        if self._info is None:
            self._info = await self._directory.get_facility(self._facility_id)
        return self._info


class MetricAggregator:
    """Recomputes facility metrics for a period and cascades them one period forward.

    Each run resolves the period window, loads or bootstraps the record,
    aggregates fresh current figures from the shift ledger, diffs them against
    the previous-period baseline, persists the section and finally writes the
    new current figures into the next period's baseline.
    """

    def __init__(
        self,
        ledger: ShiftLedger,
        store: MetricRecordStore,
        facilities: FacilityDirectory,
        resolver: PeriodResolver,
    ) -> None:
        self.ledger = ledger
        self.store = store
        self.facilities = facilities
        self.resolver = resolver
        self.query = ShiftAggregateQuery(ledger, resolver)

    async def process_period(self, facility_id: str, instant: datetime, granularity: Granularity) -> PeriodOutcome:
        period_start = self.resolver.period_start(instant, granularity)
        next_start = self.resolver.next_period(period_start, granularity)
        logger.debug("Processing %s metrics for facility %s at %s", granularity.value, facility_id, period_start.isoformat())
        cache = _FacilityCache(self.facilities, facility_id)
        try:
            # Every lookup happens before the first write
            record = await self.store.find(facility_id, period_start)
            next_record = await self.store.find(facility_id, next_start)
            identity = await cache.identity_for(record)
            next_identity = await cache.identity_for(next_record)

            section = record.section(granularity) if record else None
            if _is_usable(section):
                baseline = _previous_figures(section)
            else:
                baseline = await self._previous_baseline(facility_id, period_start, granularity)
            current = await self.query.snapshot(facility_id, period_start, granularity)
        except MetricLookupError as exc:
            logger.warning(
                "Aborted %s metrics for facility %s at %s: %s",
                granularity.value,
                facility_id,
                period_start.isoformat(),
                exc,
            )
            return PeriodOutcome(facility_id, granularity, period_start, OutcomeStatus.aborted, str(exc))

        await self.store.upsert_section(
            facility_id, period_start, granularity, build_section(current, baseline), identity
        )
        await self._cascade_next(facility_id, next_start, granularity, current, next_record, next_identity)
        return PeriodOutcome(facility_id, granularity, period_start, OutcomeStatus.processed)

    async def _previous_baseline(self, facility_id: str, period_start: datetime, granularity: Granularity) -> SnapshotMap:
        previous_start = self.resolver.previous_period(period_start, granularity)
        previous_record = await self.store.find(facility_id, previous_start)
        previous_section = previous_record.section(granularity) if previous_record else None
        if _is_usable(previous_section):
            return _current_figures(previous_section)
        # No stored history: derive the baseline from the ledger without persisting it
        return await self.query.snapshot(facility_id, previous_start, granularity)

    async def _cascade_next(
        self,
        facility_id: str,
        next_start: datetime,
        granularity: Granularity,
        current: SnapshotMap,
        next_record: Optional[MetricRecord],
        identity: Optional[FacilityInfo],
    ) -> None:
        next_current = _current_figures(next_record.section(granularity) if next_record else None)
        next_current.setdefault(RequirementKey.ALL, PeriodFigures())
        await self.store.upsert_section(
            facility_id,
            next_start,
            granularity,
            build_section(next_current, current),
            identity,
        )

    async def on_shift_update(self, event: ShiftUpdateEvent) -> list[PeriodOutcome]:
        """Handle one shift lifecycle event across its enabled granularities.

        All granularities run to completion before a store failure is raised,
        so a redelivery never overlaps writes from the failed attempt.
        """
        granularities = event.flags.enabled()
        facility_id, start = event.facility_id, event.start
        if not facility_id or start is None:
            try:
                if not event.shift_id:
                    raise MetricLookupError("Event carries neither facilityId/start nor shiftId")
                shift = await self.ledger.get_shift(event.shift_id)
            except MetricLookupError as exc:
                logger.warning("Dropping shift update %s: %s", event.shift_id, exc)
                return [
                    PeriodOutcome(facility_id, g, None, OutcomeStatus.aborted, str(exc))
                    for g in granularities
                ]
            facility_id, start = shift.facility_id, shift.start

        results = await asyncio.gather(
            *(self.process_period(facility_id, start, g) for g in granularities),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return list(results)


def build_default_aggregator(settings: Optional[MetricsSettings] = None) -> MetricAggregator:
    """Aggregator wired to the Postgres shift ledger, facility profiles and metric store."""
    from backend.app.metrics.facilities import PostgresFacilityDirectory
    from backend.app.metrics.ledger import PostgresShiftLedger
    from backend.app.metrics.store import PostgresMetricRecordStore

    settings = settings or get_metrics_settings()
    return MetricAggregator(
        ledger=PostgresShiftLedger(settings=settings),
        store=PostgresMetricRecordStore(settings=settings),
        facilities=PostgresFacilityDirectory(settings=settings),
        resolver=PeriodResolver(settings.timezone),
    )
