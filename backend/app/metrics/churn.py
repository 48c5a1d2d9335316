from __future__ import annotations

from typing import Optional, TypeVar

from backend.app.metrics.models import (
    RequirementKey,
    Metric,
    PeriodFigures,
    RevenueFigures,
    ShiftFigures,
    SnapshotMap,
    WORKER_TYPES,
    round_metric,
)


F = TypeVar("F", ShiftFigures, RevenueFigures)

_KEY_ORDER = (*WORKER_TYPES, RequirementKey.ALL)


def calculate_churn(current: Optional[F], previous: Optional[F]) -> Optional[F]:
    """Field-wise ``previous - current``.

    With no previous figures every field churns fully (``0 - current``); with no
    current figures the previous ones are returned unchanged.
    """
    if current is None and previous is None:
        return None
    if previous is None:
        return type(current)(**{k: round_metric(0 - v) for k, v in current.model_dump().items()})
    if current is None:
        return type(previous)(**{k: round_metric(v) for k, v in previous.model_dump().items()})
    cur = current.model_dump()
    return type(previous)(**{k: round_metric(v - cur[k]) for k, v in previous.model_dump().items()})


def build_metric(current: Optional[PeriodFigures], previous: Optional[PeriodFigures]) -> Metric:
    return Metric(
        current_shifts=current.shifts if current else None,
        current_revenue=current.revenue if current else None,
        previous_shifts=previous.shifts if previous else None,
        previous_revenue=previous.revenue if previous else None,
        churn_shifts=calculate_churn(
            current.shifts if current else None, previous.shifts if previous else None
        ),
        churn_revenue=calculate_churn(
            current.revenue if current else None, previous.revenue if previous else None
        ),
    )


def build_section(current: SnapshotMap, previous: SnapshotMap) -> dict[RequirementKey, Metric]:
    """Metrics for every requirement type present in either snapshot, ``all`` last."""
    return {
        key: build_metric(current.get(key), previous.get(key))
        for key in _KEY_ORDER
        if key in current or key in previous
    }
