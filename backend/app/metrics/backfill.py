from __future__ import annotations

import argparse
import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Sequence

from backend.app.config.env import get_log_level, get_metrics_settings
from backend.app.metrics.engine import MetricAggregator, PeriodOutcome, build_default_aggregator
from backend.app.metrics.models import Granularity


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackfillSummary:
    granularity: Granularity
    buckets: int
    processed: int
    aborted: int


class BackfillRunner:
    """Rebuilds metric history bucket by bucket, oldest first.

    Buckets run sequentially so each period's predecessor is persisted before
    it is needed as a baseline; facilities inside a bucket run concurrently.
    """

    def __init__(
        self,
        aggregator: MetricAggregator,
        concurrency: int = 10,
        excluded_facility_ids: Sequence[str] = (),
    ) -> None:
        self.aggregator = aggregator
        self.concurrency = max(1, concurrency)
        self.excluded_facility_ids = tuple(excluded_facility_ids)

    async def run(self, granularity: Granularity, since: Optional[datetime] = None) -> BackfillSummary:
        resolver = self.aggregator.resolver
        buckets = await self.aggregator.ledger.activity_buckets(granularity, resolver, self.excluded_facility_ids)
        if since is not None:
            floor = resolver.period_start(since, granularity)
            buckets = [b for b in buckets if b.period_start >= floor]

        semaphore = asyncio.Semaphore(self.concurrency)

        async def _one(facility_id: str, period_start: datetime) -> PeriodOutcome:
            async with semaphore:
                return await self.aggregator.process_period(facility_id, period_start, granularity)

        processed = aborted = 0
        for index, bucket in enumerate(buckets):
            outcomes = await asyncio.gather(*(_one(f, bucket.period_start) for f in bucket.facility_ids))
            ok = sum(1 for o in outcomes if o.ok)
            processed += ok
            aborted += len(outcomes) - ok
            logger.info(
                "Facility metrics backfill: type=%s bucket=%s facilities=%d aborted=%d (%d/%d)",
                granularity.value,
                bucket.period_start.date().isoformat(),
                len(outcomes),
                len(outcomes) - ok,
                index + 1,
                len(buckets),
            )
        return BackfillSummary(granularity, len(buckets), processed, aborted)


def build_default_runner() -> BackfillRunner:
    settings = get_metrics_settings()
    aggregator = build_default_aggregator(settings)
    return BackfillRunner(
        aggregator,
        concurrency=settings.backfill_concurrency,
        excluded_facility_ids=settings.excluded_facility_ids,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Rebuild facility metrics history from the shift ledger")
    parser.add_argument("--granularity", choices=[g.value for g in Granularity], action="append")
    parser.add_argument("--since", type=date.fromisoformat, default=None, help="YYYY-MM-DD; skip older periods")
    args = parser.parse_args(argv)

    logging.basicConfig(level=get_log_level())
    runner = build_default_runner()
    since = runner.aggregator.resolver.at_local_midnight(args.since) if args.since else None
    granularities = [Granularity(g) for g in (args.granularity or [g.value for g in Granularity])]

    async def _run() -> None:
        for g in granularities:
            summary = await runner.run(g, since=since)
            logger.info("Backfill done: %s", summary)

    asyncio.run(_run())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
