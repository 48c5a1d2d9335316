from __future__ import annotations

import csv
import io
from datetime import datetime
from typing import Iterable, Optional

from backend.app.metrics.definitions import get_definitions
from backend.app.metrics.models import FacilityInfo, Granularity, Metric, MetricRecord, RequirementKey


_SIDES = ("current", "previous", "churn")


def churn_csv_filename(granularity: Granularity, period_start: datetime) -> str:
    return f"facility-{granularity.value}-churn-{period_start.date().isoformat()}.csv"


def _figure(metric: Optional[Metric], side: str, group: str, key: str) -> str:
    if metric is None:
        return ""
    figures = getattr(metric, f"{side}_{group}")
    if figures is None:
        return ""
    return f"{getattr(figures, key):.2f}"


def build_churn_csv(
    facilities: Iterable[FacilityInfo],
    records: Iterable[MetricRecord],
    granularity: Granularity,
    period_start: datetime,
) -> str:
    """One row per facility with the ``all`` rollup of the selected period.

    Facilities without a record for the period are listed with empty figures.
    """
    definitions = get_definitions()
    by_facility = {r.facility_id: r for r in records}

    buf = io.StringIO()
    writer = csv.writer(buf)
    header = ["facility_id", "name", "type", "city", "state", "period_start"]
    for side in _SIDES:
        header.extend(f"{side}_{d.key}" for d in definitions)
    writer.writerow(header)

    for facility in facilities:
        record = by_facility.get(facility.facility_id)
        section = record.section(granularity) if record else None
        metric = section.get(RequirementKey.ALL) if section else None
        row = [
            facility.facility_id,
            facility.name,
            facility.type,
            facility.city or "",
            facility.state or "",
            period_start.date().isoformat(),
        ]
        for side in _SIDES:
            row.extend(_figure(metric, side, d.group, d.key) for d in definitions)
        writer.writerow(row)
    return buf.getvalue()
