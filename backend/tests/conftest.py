from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
import sys
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import psycopg
import pytest


def _find_repo_root(start: Path) -> Path:
    cur = start
    while cur != cur.parent:
        candidate = cur / "backend" / "src" / "db" / "migrations"
        if candidate.exists():
            return cur
        cur = cur.parent
    # Fallback to start
    return start


# Ensure repo root is on sys.path so tests can import the backend package
_REPO_ROOT = _find_repo_root(Path(__file__).resolve())
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))


from backend.app.config.env import get_db_url, load_env  # noqa: E402
from backend.app.metrics.engine import MetricAggregator  # noqa: E402
from backend.app.metrics.errors import (  # noqa: E402
    FacilityNotFoundError,
    LedgerQueryError,
    MetricStoreError,
    ShiftNotFoundError,
)
from backend.app.metrics.facilities import FacilityDirectory  # noqa: E402
from backend.app.metrics.ledger import ActivityBucket, ShiftLedger  # noqa: E402
from backend.app.metrics.models import (  # noqa: E402
    Breakdown,
    FacilityInfo,
    Granularity,
    MetricRecord,
    ShiftRecord,
    dump_breakdown,
    load_breakdown,
)
from backend.app.metrics.periods import PeriodResolver  # noqa: E402
from backend.app.metrics.store import MetricRecordStore  # noqa: E402


TIMEZONE = "America/Los_Angeles"
FACILITY_ID = "facility-1"


# ---------- In-memory collaborators ----------

class InMemoryShiftLedger(ShiftLedger):
    def __init__(self) -> None:
        self.shifts: List[ShiftRecord] = []
        self.fail_queries = False

    def add(self, **fields) -> ShiftRecord:
        fields.setdefault("shift_id", f"shift-{len(self.shifts) + 1}")
        fields.setdefault("facility_id", FACILITY_ID)
        shift = ShiftRecord(**fields)
        self.shifts.append(shift)
        return shift

    async def get_shift(self, shift_id: str) -> ShiftRecord:
        for shift in self.shifts:
            if shift.shift_id == shift_id:
                return shift
        raise ShiftNotFoundError(shift_id)

    async def window_shifts(self, facility_id: str, start: datetime, end: datetime) -> list[ShiftRecord]:
        if self.fail_queries:
            raise LedgerQueryError("ledger unavailable")
        return [
            s for s in self.shifts
            if s.facility_id == facility_id and start <= s.start < end and s.qualifies
        ]

    async def activity_buckets(
        self,
        granularity: Granularity,
        resolver: PeriodResolver,
        excluded_facility_ids: Sequence[str] = (),
    ) -> list[ActivityBucket]:
        grouped: Dict[datetime, set] = {}
        for s in self.shifts:
            if s.deleted or s.facility_id in excluded_facility_ids:
                continue
            grouped.setdefault(resolver.period_start(s.start, granularity), set()).add(s.facility_id)
        return [ActivityBucket(start, tuple(sorted(ids))) for start, ids in sorted(grouped.items())]


class InMemoryFacilityDirectory(FacilityDirectory):
    def __init__(self, facilities: Optional[List[FacilityInfo]] = None) -> None:
        self.facilities: Dict[str, FacilityInfo] = {f.facility_id: f for f in (facilities or [])}
        self.lookups = 0

    def add(self, facility: FacilityInfo) -> None:
        self.facilities[facility.facility_id] = facility

    async def get_facility(self, facility_id: str) -> FacilityInfo:
        self.lookups += 1
        try:
            return self.facilities[facility_id]
        except KeyError:
            raise FacilityNotFoundError(facility_id) from None

    async def facility_ids_for_manager(self, account_manager_id: str) -> list[str]:
        return sorted(f.facility_id for f in self.facilities.values() if f.account_manager_id == account_manager_id)

    async def list_facilities(self) -> list[FacilityInfo]:
        return sorted(self.facilities.values(), key=lambda f: (f.name, f.facility_id))


class InMemoryMetricRecordStore(MetricRecordStore):
    """Keeps rows in their serialized form so every read re-validates stored JSON."""

    def __init__(self) -> None:
        self.rows: Dict[Tuple[str, datetime], dict] = {}
        self.fail_writes = False
        self.writes = 0

    @staticmethod
    def _key(facility_id: str, date: datetime) -> Tuple[str, datetime]:
        return facility_id, date.astimezone(timezone.utc)

    def _to_record(self, row: dict) -> MetricRecord:
        return MetricRecord(
            facility_id=row["facility_id"],
            date=row["date"],
            facility_type=row["facility_type"],
            name=row["name"],
            daily=load_breakdown(row["daily"]),
            weekly=load_breakdown(row["weekly"]),
            monthly=load_breakdown(row["monthly"]),
        )

    async def find(self, facility_id: str, date: datetime) -> Optional[MetricRecord]:
        row = self.rows.get(self._key(facility_id, date))
        return self._to_record(row) if row else None

    async def upsert_section(
        self,
        facility_id: str,
        date: datetime,
        granularity: Granularity,
        section: Breakdown,
        identity: Optional[FacilityInfo] = None,
    ) -> None:
        if self.fail_writes:
            raise MetricStoreError("store unavailable")
        key = self._key(facility_id, date)
        row = self.rows.setdefault(
            key,
            {
                "facility_id": facility_id,
                "date": key[1],
                "facility_type": None,
                "name": None,
                "daily": None,
                "weekly": None,
                "monthly": None,
            },
        )
        row[granularity.value] = dump_breakdown(section)
        if identity is not None:
            row["facility_type"] = row["facility_type"] or identity.type
            row["name"] = row["name"] or identity.name
        self.writes += 1

    async def list_with_section(
        self,
        granularity: Granularity,
        facility_ids: Optional[Sequence[str]] = None,
        date: Optional[datetime] = None,
    ) -> list[MetricRecord]:
        out = []
        for (facility_id, row_date), row in sorted(self.rows.items(), key=lambda kv: (kv[0][1], kv[0][0])):
            if row[granularity.value] is None:
                continue
            if facility_ids is not None and facility_id not in facility_ids:
                continue
            if date is not None and row_date != date.astimezone(timezone.utc):
                continue
            out.append(self._to_record(row))
        return out


@pytest.fixture()
def resolver() -> PeriodResolver:
    return PeriodResolver(TIMEZONE)


@pytest.fixture()
def ledger() -> InMemoryShiftLedger:
    return InMemoryShiftLedger()


@pytest.fixture()
def store() -> InMemoryMetricRecordStore:
    return InMemoryMetricRecordStore()


@pytest.fixture()
def facilities() -> InMemoryFacilityDirectory:
    return InMemoryFacilityDirectory(
        [
            FacilityInfo(
                facility_id=FACILITY_ID,
                type="Skilled Nursing Facility",
                name="Sunrise Care",
                account_manager_id="csm-1",
                city="Oakland",
                state="CA",
            ),
            FacilityInfo(
                facility_id="facility-2",
                type="Hospital",
                name="Bayview Hospital",
                account_manager_id="csm-2",
                city="San Jose",
                state="CA",
            ),
        ]
    )


@pytest.fixture()
def aggregator(
    ledger: InMemoryShiftLedger,
    store: InMemoryMetricRecordStore,
    facilities: InMemoryFacilityDirectory,
    resolver: PeriodResolver,
) -> MetricAggregator:
    return MetricAggregator(ledger=ledger, store=store, facilities=facilities, resolver=resolver)


# ---------- Postgres ----------

@pytest.fixture(scope="session")
def database_url() -> str:
    load_env()
    return get_db_url()


@pytest.fixture(scope="session")
def migrated_db(database_url: str) -> Iterator[str]:
    try:
        with psycopg.connect(database_url, connect_timeout=3):
            pass
    except psycopg.OperationalError as exc:
        pytest.skip(f"Postgres not reachable: {exc}")
    from backend.src.db.run_migrations import migrate  # local import after sys.path
    migrate(database_url)
    yield database_url


def _truncate_for_test(conn: psycopg.Connection) -> None:
    with conn.cursor() as cur:
        cur.execute("TRUNCATE facility_metrics, shifts, facility_profiles")
    conn.commit()


@pytest.fixture()
def db_conn(migrated_db: str) -> Iterator[psycopg.Connection]:
    with psycopg.connect(migrated_db) as conn:
        _truncate_for_test(conn)
        yield conn
