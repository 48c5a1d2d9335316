from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from backend.app.config.env import get_log_level, get_metrics_settings
from backend.app.metrics.backfill import BackfillRunner, BackfillSummary, build_default_runner
from backend.app.metrics.models import Granularity


logger = logging.getLogger(__name__)


async def reconcile_recent(runner: BackfillRunner, now: Optional[datetime] = None) -> list[BackfillSummary]:
    """Re-derive the current and previous period of every granularity from the ledger.

    Repairs sections left stale when concurrent event runs completed out of order.
    """
    now = now or datetime.now(timezone.utc)
    resolver = runner.aggregator.resolver
    summaries = []
    for granularity in Granularity:
        since = resolver.previous_period(resolver.period_start(now, granularity), granularity)
        summary = await runner.run(granularity, since=since)
        logger.info(
            "Reconciled %s metrics since %s: %d processed, %d aborted",
            granularity.value,
            since.date().isoformat(),
            summary.processed,
            summary.aborted,
        )
        summaries.append(summary)
    return summaries


def build_scheduler(runner: BackfillRunner, hour: int, tz_name: str) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone=tz_name)
    scheduler.add_job(
        reconcile_recent,
        CronTrigger(hour=hour, minute=0, timezone=tz_name),
        args=[runner],
        id="facility-metrics-reconcile",
        max_instances=1,
        coalesce=True,
    )
    return scheduler


def main() -> None:
    logging.basicConfig(level=get_log_level())
    settings = get_metrics_settings()
    runner = build_default_runner()

    async def _serve() -> None:
        scheduler = build_scheduler(runner, settings.reconcile_hour, settings.timezone)
        scheduler.start()
        try:
            await asyncio.Event().wait()
        finally:
            scheduler.shutdown(wait=False)

    try:
        asyncio.run(_serve())
    except (KeyboardInterrupt, SystemExit):
        pass


if __name__ == "__main__":
    main()
