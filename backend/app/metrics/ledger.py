from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

import psycopg

from backend.app.config.db import pg_conn
from backend.app.config.env import MetricsSettings
from backend.app.metrics.errors import LedgerQueryError, ShiftNotFoundError
from backend.app.metrics.models import Granularity, ShiftRecord
from backend.app.metrics.periods import PeriodResolver


@dataclass(frozen=True)
class ActivityBucket:
    period_start: datetime
    facility_ids: tuple[str, ...]


class ShiftLedger(ABC):
    """Read-only access to the shift ledger."""

    @abstractmethod
    async def get_shift(self, shift_id: str) -> ShiftRecord:
        """Return the shift or raise ShiftNotFoundError."""

    @abstractmethod
    async def window_shifts(self, facility_id: str, start: datetime, end: datetime) -> list[ShiftRecord]:
        """Qualifying shifts of a facility whose start falls in ``[start, end)``."""

    @abstractmethod
    async def activity_buckets(
        self,
        granularity: Granularity,
        resolver: PeriodResolver,
        excluded_facility_ids: Sequence[str] = (),
    ) -> list[ActivityBucket]:
        """Distinct periods with non-deleted shifts, oldest first, with their active facilities."""


_SHIFT_COLUMNS = 'id, facility_id, agent_req, start, "end", charge, pay, "time", agent_id, deleted, is_billable'

_TRUNC_UNITS = {
    Granularity.daily: "day",
    Granularity.weekly: "week",
    Granularity.monthly: "month",
}


def _row_to_shift(row: tuple) -> ShiftRecord:
    shift_id, facility_id, agent_req, start, end, charge, pay, time, agent_id, deleted, is_billable = row
    return ShiftRecord(
        shift_id=str(shift_id),
        facility_id=str(facility_id),
        requirement_type=agent_req or "",
        start=start,
        end=end,
        charge=float(charge or 0),
        pay=float(pay or 0),
        time=float(time or 0),
        agent_id=str(agent_id) if agent_id is not None else None,
        deleted=bool(deleted),
        is_billable=bool(is_billable),
    )


class PostgresShiftLedger(ShiftLedger):
    def __init__(self, db_url: Optional[str] = None, settings: Optional[MetricsSettings] = None) -> None:
        self._db_url = db_url
        self._settings = settings

    async def get_shift(self, shift_id: str) -> ShiftRecord:
        try:
            async with pg_conn(self._db_url, self._settings) as conn, conn.cursor() as cur:
                await cur.execute(f"SELECT {_SHIFT_COLUMNS} FROM shifts WHERE id = %s", (shift_id,))
                row = await cur.fetchone()
        except psycopg.Error as exc:
            raise LedgerQueryError(f"Shift lookup failed for {shift_id}: {exc}") from exc
        if not row:
            raise ShiftNotFoundError(shift_id)
        return _row_to_shift(row)

    async def window_shifts(self, facility_id: str, start: datetime, end: datetime) -> list[ShiftRecord]:
        try:
            async with pg_conn(self._db_url, self._settings) as conn, conn.cursor() as cur:
                await cur.execute(
                    f"""
                    SELECT {_SHIFT_COLUMNS}
                    FROM shifts
                    WHERE facility_id = %s
                      AND start >= %s AND start < %s
                      AND (deleted = FALSE OR is_billable = TRUE)
                    ORDER BY start, id
                    """,
                    (facility_id, start, end),
                )
                rows = await cur.fetchall()
        except psycopg.Error as exc:
            raise LedgerQueryError(f"Shift aggregate query failed for {facility_id}: {exc}") from exc
        return [_row_to_shift(r) for r in rows]

    async def activity_buckets(
        self,
        granularity: Granularity,
        resolver: PeriodResolver,
        excluded_facility_ids: Sequence[str] = (),
    ) -> list[ActivityBucket]:
        try:
            async with pg_conn(self._db_url, self._settings) as conn, conn.cursor() as cur:
                await cur.execute(
                    """
                    SELECT date_trunc(%s, start AT TIME ZONE %s)::date AS bucket,
                           array_agg(DISTINCT facility_id ORDER BY facility_id)
                    FROM shifts
                    WHERE deleted = FALSE
                      AND NOT (facility_id = ANY(%s::text[]))
                    GROUP BY 1
                    ORDER BY 1
                    """,
                    (_TRUNC_UNITS[granularity], resolver.tz_name, list(excluded_facility_ids)),
                )
                rows = await cur.fetchall()
        except psycopg.Error as exc:
            raise LedgerQueryError(f"Activity bucket query failed for {granularity.value}: {exc}") from exc
        return [
            ActivityBucket(period_start=resolver.at_local_midnight(bucket), facility_ids=tuple(str(f) for f in facilities))
            for bucket, facilities in rows
        ]
