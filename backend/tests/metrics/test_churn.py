from backend.app.metrics.churn import build_metric, build_section, calculate_churn
from backend.app.metrics.models import (
    PeriodFigures,
    RequirementKey,
    RevenueFigures,
    ShiftFigures,
    dump_breakdown,
    load_breakdown,
    round_metric,
)


def _shifts(requested: float, filled: float) -> ShiftFigures:
    return ShiftFigures(requested=requested, filled=filled, fill_rate=filled / requested * 100 if requested else 0)


def test_churn_is_previous_minus_current() -> None:
    churn = calculate_churn(_shifts(4, 3), _shifts(10, 5))
    assert churn.requested == 6
    assert churn.filled == 2
    assert churn.fill_rate == -25


def test_churn_without_previous_is_negated_current() -> None:
    churn = calculate_churn(RevenueFigures(expected=640, gross=320), None)
    assert churn == RevenueFigures(expected=-640, gross=-320)


def test_churn_without_current_is_previous() -> None:
    previous = _shifts(3, 1)
    assert calculate_churn(None, previous) == previous


def test_churn_of_nothing_is_none() -> None:
    assert calculate_churn(None, None) is None


def test_churn_is_rounded_half_up() -> None:
    churn = calculate_churn(RevenueFigures(net=2.5), RevenueFigures(net=10))
    assert churn.net == 7.5
    assert round_metric(2.675) == 2.68
    assert round_metric(0.125) == 0.13
    assert round_metric(-0.001) == 0.0


def test_figures_round_non_finite_to_zero() -> None:
    figures = RevenueFigures(expected=float("nan"), gross=float("inf"), net=1.005)
    assert figures.expected == 0
    assert figures.gross == 0
    assert figures.net == 1.01


def test_build_metric_sides() -> None:
    current = PeriodFigures(shifts=_shifts(2, 1))
    metric = build_metric(current, None)
    assert metric.current_shifts.requested == 2
    assert metric.previous_shifts is None
    assert metric.previous_revenue is None
    assert metric.churn_shifts.requested == -2
    assert metric.churn_revenue == RevenueFigures()


def test_build_section_covers_union_of_keys_with_all_last() -> None:
    current = {RequirementKey.RN: PeriodFigures(shifts=_shifts(2, 1)), RequirementKey.ALL: PeriodFigures(shifts=_shifts(2, 1))}
    previous = {RequirementKey.CNA: PeriodFigures(shifts=_shifts(5, 5)), RequirementKey.ALL: PeriodFigures(shifts=_shifts(5, 5))}
    section = build_section(current, previous)
    assert list(section) == [RequirementKey.CNA, RequirementKey.RN, RequirementKey.ALL]
    assert section[RequirementKey.CNA].current_shifts is None
    assert section[RequirementKey.CNA].churn_shifts.requested == 5
    assert section[RequirementKey.RN].previous_shifts is None
    assert section[RequirementKey.ALL].churn_shifts.requested == 3


def test_section_serializes_with_camel_case_keys() -> None:
    section = build_section({RequirementKey.ALL: PeriodFigures(shifts=_shifts(2, 1))}, {})
    raw = dump_breakdown(section)
    assert set(raw) == {"all"}
    assert raw["all"]["currentShifts"]["fillRate"] == 50
    assert raw["all"]["previousShifts"] is None
    assert load_breakdown(raw) == section
