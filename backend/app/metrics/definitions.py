from __future__ import annotations

from typing import Literal, Optional, List
from pydantic import BaseModel


MetricKey = Literal[
    "requested",
    "filled",
    "fill_rate",
    "unique_workers",
    "expected",
    "gross",
    "net",
    "avg_margin",
]


class MetricDefinition(BaseModel):
    key: MetricKey
    group: Literal["shifts", "revenue"]
    name: str
    description: str
    orientation: Literal["higher", "lower"]
    unit: str  # "count", "percent" or "usd"
    formula_markdown: Optional[str] = None
    edge_rules: Optional[List[str]] = None


DEFINITIONS: list[MetricDefinition] = [
    MetricDefinition(
        key="requested",
        group="shifts",
        name="Shifts Requested",
        description="Shifts posted by the facility that start in the period, including billable cancellations.",
        orientation="higher",
        unit="count",
        formula_markdown="count( shifts where start in period and (not deleted or billable) )",
    ),
    MetricDefinition(
        key="filled",
        group="shifts",
        name="Shifts Filled",
        description="Requested shifts with an assigned worker that were not cancelled.",
        orientation="higher",
        unit="count",
    ),
    MetricDefinition(
        key="fill_rate",
        group="shifts",
        name="Fill Rate",
        description="Share of requested shifts that were filled.",
        orientation="higher",
        unit="percent",
        formula_markdown="Fill Rate = Filled / Requested × 100",
        edge_rules=["If Requested = 0 → 0."],
    ),
    MetricDefinition(
        key="unique_workers",
        group="shifts",
        name="Unique Workers",
        description="Distinct workers assigned to non-deleted shifts, counted per requirement type.",
        orientation="higher",
        unit="count",
        edge_rules=["The `all` rollup sums per-type counts; a worker holding two roles counts twice."],
    ),
    MetricDefinition(
        key="expected",
        group="revenue",
        name="Expected Revenue",
        description="Billable value of every non-deleted shift, filled or not.",
        orientation="higher",
        unit="usd",
        formula_markdown="Σ time × charge",
    ),
    MetricDefinition(
        key="gross",
        group="revenue",
        name="Gross Revenue",
        description="Billable value of shifts with an assigned worker, including billable late cancellations.",
        orientation="higher",
        unit="usd",
        formula_markdown="Σ time × charge (assigned shifts)",
    ),
    MetricDefinition(
        key="net",
        group="revenue",
        name="Net Revenue",
        description="Gross revenue minus worker pay.",
        orientation="higher",
        unit="usd",
        formula_markdown="Σ time × (charge − pay) (assigned shifts)",
    ),
    MetricDefinition(
        key="avg_margin",
        group="revenue",
        name="Average Margin",
        description="Average hourly spread between charge and pay across filled shifts.",
        orientation="higher",
        unit="usd",
        formula_markdown="Σ (charge − pay) / Filled",
        edge_rules=["If Filled = 0 → 0."],
    ),
]


def get_definitions() -> list[MetricDefinition]:
    return DEFINITIONS
