from datetime import datetime
from zoneinfo import ZoneInfo

from backend.app.metrics.aggregates import aggregate_shifts, build_snapshot
from backend.app.metrics.models import RequirementKey, ShiftRecord, WORKER_TYPES, round_metric


LA = ZoneInfo("America/Los_Angeles")
DAY = datetime(2024, 4, 9, 7, tzinfo=LA)


def _shift(n: int, **fields) -> ShiftRecord:
    fields.setdefault("requirement_type", "RN")
    fields.setdefault("start", DAY)
    return ShiftRecord(shift_id=f"s{n}", facility_id="f", **fields)


def test_filled_and_open_shift_figures() -> None:
    snapshot = build_snapshot(
        aggregate_shifts(
            [
                _shift(1, time=8, charge=40, pay=25, agent_id="a1"),
                _shift(2, time=8, charge=40),
            ]
        )
    )
    rn = snapshot[RequirementKey.RN]
    assert rn.shifts.model_dump() == {"requested": 2, "filled": 1, "fill_rate": 50, "unique_workers": 1}
    assert rn.revenue.model_dump() == {"expected": 640, "gross": 320, "net": 120, "avg_margin": 15}
    assert snapshot[RequirementKey.ALL] == rn


def test_empty_window_still_has_all_rollup() -> None:
    snapshot = build_snapshot(aggregate_shifts([]))
    assert list(snapshot) == [RequirementKey.ALL]
    all_ = snapshot[RequirementKey.ALL]
    assert all_.shifts.fill_rate == 0
    assert all_.revenue.avg_margin == 0


def test_open_shifts_only_have_zero_rates() -> None:
    snapshot = build_snapshot(aggregate_shifts([_shift(1, time=8, charge=40)]))
    rn = snapshot[RequirementKey.RN]
    assert rn.shifts.requested == 1
    assert rn.shifts.fill_rate == 0
    assert rn.revenue.avg_margin == 0
    assert rn.revenue.gross == 0


def test_deleted_shifts_count_only_when_billable() -> None:
    snapshot = build_snapshot(
        aggregate_shifts(
            [
                _shift(1, time=4, charge=50, pay=30, agent_id="a1", deleted=True, is_billable=True),
                _shift(2, time=4, charge=50, agent_id="a2", deleted=True),
            ]
        )
    )
    rn = snapshot[RequirementKey.RN]
    assert rn.shifts.requested == 1
    assert rn.shifts.filled == 0
    assert rn.shifts.unique_workers == 0
    assert rn.revenue.expected == 0
    # assigned late cancellation still bills
    assert rn.revenue.gross == 200
    assert rn.revenue.net == 80


def test_unique_workers_are_distinct_per_type() -> None:
    snapshot = build_snapshot(
        aggregate_shifts(
            [
                _shift(1, agent_id="a1"),
                _shift(2, agent_id="a1"),
                _shift(3, agent_id="a2"),
                _shift(4, requirement_type="CNA", agent_id="a1"),
            ]
        )
    )
    assert snapshot[RequirementKey.RN].shifts.unique_workers == 2
    assert snapshot[RequirementKey.CNA].shifts.unique_workers == 1
    assert snapshot[RequirementKey.ALL].shifts.unique_workers == 3


def test_unknown_requirement_type_is_skipped() -> None:
    aggregates = aggregate_shifts([_shift(1, requirement_type="SURGEON", agent_id="a1"), _shift(2)])
    assert list(aggregates) == [RequirementKey.RN]
    assert build_snapshot(aggregates)[RequirementKey.ALL].shifts.requested == 1


def test_all_rollup_sums_rounded_type_figures() -> None:
    snapshot = build_snapshot(
        aggregate_shifts(
            [
                _shift(1, time=1.333, charge=10.005, pay=3, agent_id="a1"),
                _shift(2, requirement_type="LVN", time=2.5, charge=33.333, pay=20, agent_id="a2"),
                _shift(3, requirement_type="LVN", time=7.25, charge=21.17),
                _shift(4, requirement_type="HHA", time=3, charge=17.777, pay=11, agent_id="a3"),
            ]
        )
    )
    parts = [snapshot[k] for k in WORKER_TYPES if k in snapshot]
    all_ = snapshot[RequirementKey.ALL]
    for field in ("requested", "filled", "unique_workers"):
        assert getattr(all_.shifts, field) == sum(getattr(p.shifts, field) for p in parts)
    for field in ("expected", "gross", "net"):
        assert getattr(all_.revenue, field) == round_metric(sum(getattr(p.revenue, field) for p in parts))
    assert all_.shifts.fill_rate == 75


def test_per_type_entries_follow_enum_order() -> None:
    snapshot = build_snapshot(
        aggregate_shifts([_shift(1, requirement_type="HHA"), _shift(2, requirement_type="CNA"), _shift(3)])
    )
    assert list(snapshot) == [RequirementKey.CNA, RequirementKey.RN, RequirementKey.HHA, RequirementKey.ALL]
