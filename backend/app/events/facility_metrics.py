from __future__ import annotations

import logging
from typing import Any, Dict

from pydantic import ValidationError

from backend.app.events.channel import EventChannel, Subscription
from backend.app.metrics.engine import MetricAggregator, PeriodOutcome
from backend.app.metrics.models import ShiftUpdateEvent


logger = logging.getLogger(__name__)

SHIFT_UPDATE_TOPIC = "shift-update.facility-metrics"


def register_facility_metric_service(
    channel: EventChannel, aggregator: MetricAggregator, max_messages: int = 3
) -> Subscription:
    """Subscribe the metric aggregator to shift lifecycle events."""

    async def on_shift_update(payload: Dict[str, Any]) -> list[PeriodOutcome]:
        try:
            event = ShiftUpdateEvent.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Discarding malformed shift update %r: %s", payload, exc)
            return []
        outcomes = await aggregator.on_shift_update(event)
        aborted = [o for o in outcomes if not o.ok]
        if aborted:
            logger.info(
                "Shift update %s finished with %d aborted period(s)",
                event.shift_id or event.facility_id,
                len(aborted),
            )
        return outcomes

    return channel.subscribe(SHIFT_UPDATE_TOPIC, on_shift_update, max_messages=max_messages)
