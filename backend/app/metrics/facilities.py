from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

import psycopg

from backend.app.config.db import pg_conn
from backend.app.config.env import MetricsSettings
from backend.app.metrics.errors import FacilityNotFoundError, LedgerQueryError
from backend.app.metrics.models import FacilityInfo


class FacilityDirectory(ABC):
    """Facility profile lookups used to stamp identity onto metric records."""

    @abstractmethod
    async def get_facility(self, facility_id: str) -> FacilityInfo:
        """Return the profile or raise FacilityNotFoundError."""

    @abstractmethod
    async def facility_ids_for_manager(self, account_manager_id: str) -> list[str]:
        ...

    @abstractmethod
    async def list_facilities(self) -> list[FacilityInfo]:
        ...


_PROFILE_COLUMNS = "user_id, type, name, account_manager_id, city, state"


def _row_to_facility(row: tuple) -> FacilityInfo:
    user_id, ftype, name, manager_id, city, state = row
    return FacilityInfo(
        facility_id=str(user_id),
        type=ftype or "",
        name=name or "",
        account_manager_id=manager_id,
        city=city,
        state=state,
    )


class PostgresFacilityDirectory(FacilityDirectory):
    def __init__(self, db_url: Optional[str] = None, settings: Optional[MetricsSettings] = None) -> None:
        self._db_url = db_url
        self._settings = settings

    async def get_facility(self, facility_id: str) -> FacilityInfo:
        try:
            async with pg_conn(self._db_url, self._settings) as conn, conn.cursor() as cur:
                await cur.execute(
                    f"SELECT {_PROFILE_COLUMNS} FROM facility_profiles WHERE user_id = %s",
                    (facility_id,),
                )
                row = await cur.fetchone()
        except psycopg.Error as exc:
            raise LedgerQueryError(f"Facility lookup failed for {facility_id}: {exc}") from exc
        if not row:
            raise FacilityNotFoundError(facility_id)
        return _row_to_facility(row)

    async def facility_ids_for_manager(self, account_manager_id: str) -> list[str]:
        async with pg_conn(self._db_url, self._settings) as conn, conn.cursor() as cur:
            await cur.execute(
                "SELECT user_id FROM facility_profiles WHERE account_manager_id = %s ORDER BY user_id",
                (account_manager_id,),
            )
            return [str(r[0]) for r in await cur.fetchall()]

    async def list_facilities(self) -> list[FacilityInfo]:
        async with pg_conn(self._db_url, self._settings) as conn, conn.cursor() as cur:
            await cur.execute(
                f"SELECT {_PROFILE_COLUMNS} FROM facility_profiles WHERE user_id IS NOT NULL ORDER BY name, user_id"
            )
            return [_row_to_facility(r) for r in await cur.fetchall()]
