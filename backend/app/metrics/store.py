from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Sequence

import psycopg
from psycopg import sql
from psycopg.types.json import Jsonb

from backend.app.config.db import pg_conn
from backend.app.config.env import MetricsSettings
from backend.app.metrics.errors import MetricStoreError
from backend.app.metrics.models import (
    Breakdown,
    FacilityInfo,
    Granularity,
    MetricRecord,
    dump_breakdown,
    load_breakdown,
)


class MetricRecordStore(ABC):
    """One metric record per (facility, period start); sections are replaced whole."""

    @abstractmethod
    async def find(self, facility_id: str, date: datetime) -> Optional[MetricRecord]:
        ...

    @abstractmethod
    async def upsert_section(
        self,
        facility_id: str,
        date: datetime,
        granularity: Granularity,
        section: Breakdown,
        identity: Optional[FacilityInfo] = None,
    ) -> None:
        """Replace one granularity section, creating the record if needed.

        Identity fields are only written where the stored record lacks them.
        """

    @abstractmethod
    async def list_with_section(
        self,
        granularity: Granularity,
        facility_ids: Optional[Sequence[str]] = None,
        date: Optional[datetime] = None,
    ) -> list[MetricRecord]:
        """Records that carry a ``granularity`` section, optionally narrowed by facility or date."""


_COLUMNS = "facility_id, date, facility_type, name, daily, weekly, monthly"


def _row_to_record(row: tuple) -> MetricRecord:
    facility_id, date, facility_type, name, daily, weekly, monthly = row
    return MetricRecord(
        facility_id=str(facility_id),
        date=date,
        facility_type=facility_type,
        name=name,
        daily=load_breakdown(daily),
        weekly=load_breakdown(weekly),
        monthly=load_breakdown(monthly),
    )


class PostgresMetricRecordStore(MetricRecordStore):
    def __init__(self, db_url: Optional[str] = None, settings: Optional[MetricsSettings] = None) -> None:
        self._db_url = db_url
        self._settings = settings

    async def find(self, facility_id: str, date: datetime) -> Optional[MetricRecord]:
        try:
            async with pg_conn(self._db_url, self._settings) as conn, conn.cursor() as cur:
                await cur.execute(
                    f"SELECT {_COLUMNS} FROM facility_metrics WHERE facility_id = %s AND date = %s",
                    (facility_id, date),
                )
                row = await cur.fetchone()
        except psycopg.Error as exc:
            raise MetricStoreError(f"Metric record read failed for {facility_id} @ {date}: {exc}") from exc
        return _row_to_record(row) if row else None

    async def upsert_section(
        self,
        facility_id: str,
        date: datetime,
        granularity: Granularity,
        section: Breakdown,
        identity: Optional[FacilityInfo] = None,
    ) -> None:
        column = sql.Identifier(granularity.value)
        query = sql.SQL(
            """
            INSERT INTO facility_metrics (facility_id, date, facility_type, name, {col}, updated_at)
            VALUES (%s, %s, %s, %s, %s, now())
            ON CONFLICT (facility_id, date) DO UPDATE SET
              {col} = EXCLUDED.{col},
              facility_type = COALESCE(facility_metrics.facility_type, EXCLUDED.facility_type),
              name = COALESCE(facility_metrics.name, EXCLUDED.name),
              updated_at = now()
            """
        ).format(col=column)
        params = (
            facility_id,
            date,
            identity.type if identity else None,
            identity.name if identity else None,
            Jsonb(dump_breakdown(section)),
        )
        try:
            async with pg_conn(self._db_url, self._settings) as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, params)
                await conn.commit()
        except psycopg.Error as exc:
            raise MetricStoreError(
                f"Metric upsert failed for {facility_id} @ {date} ({granularity.value}): {exc}"
            ) from exc

    async def list_with_section(
        self,
        granularity: Granularity,
        facility_ids: Optional[Sequence[str]] = None,
        date: Optional[datetime] = None,
    ) -> list[MetricRecord]:
        clauses = [sql.SQL("{col} IS NOT NULL").format(col=sql.Identifier(granularity.value))]
        params: list = []
        if facility_ids is not None:
            clauses.append(sql.SQL("facility_id = ANY(%s::text[])"))
            params.append(list(facility_ids))
        if date is not None:
            clauses.append(sql.SQL("date = %s"))
            params.append(date)
        query = sql.SQL("SELECT {cols} FROM facility_metrics WHERE {where} ORDER BY date, facility_id").format(
            cols=sql.SQL(_COLUMNS),
            where=sql.SQL(" AND ").join(clauses),
        )
        try:
            async with pg_conn(self._db_url, self._settings) as conn, conn.cursor() as cur:
                await cur.execute(query, params)
                rows = await cur.fetchall()
        except psycopg.Error as exc:
            raise MetricStoreError(f"Metric listing failed for {granularity.value}: {exc}") from exc
        return [_row_to_record(r) for r in rows]
