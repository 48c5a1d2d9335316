from __future__ import annotations


class MetricsError(Exception):
    """Base class for facility metrics failures."""


class MetricLookupError(MetricsError):
    """A facility or shift ledger lookup failed; the run for that period is aborted."""


class FacilityNotFoundError(MetricLookupError):
    def __init__(self, facility_id: str) -> None:
        super().__init__(f"Facility profile not found: {facility_id}")
        self.facility_id = facility_id


class ShiftNotFoundError(MetricLookupError):
    def __init__(self, shift_id: str | None) -> None:
        super().__init__(f"Shift not found: {shift_id}")
        self.shift_id = shift_id


class LedgerQueryError(MetricLookupError):
    pass


class MetricStoreError(MetricsError):
    """Reading or writing a metric record failed. Callers may redeliver."""
