from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from backend.app.api.routes.facility_metrics import router as facility_metrics_router
from backend.app.config.env import MetricsSettings, get_log_level, get_metrics_settings
from backend.app.events.channel import EventChannel
from backend.app.events.facility_metrics import register_facility_metric_service
from backend.app.metrics.engine import MetricAggregator, build_default_aggregator


def create_app(
    aggregator: Optional[MetricAggregator] = None,
    settings: Optional[MetricsSettings] = None,
    channel: Optional[EventChannel] = None,
) -> FastAPI:
    settings = settings or get_metrics_settings()
    aggregator = aggregator or build_default_aggregator(settings)
    channel = channel or EventChannel(attempts=settings.delivery_attempts)
    register_facility_metric_service(channel, aggregator, max_messages=settings.max_in_flight)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await channel.start()
        try:
            yield
        finally:
            await channel.stop()

    app = FastAPI(title="Facility Metrics API", version="0.1.0", lifespan=lifespan)
    app.state.aggregator = aggregator
    app.state.channel = channel
    app.state.settings = settings

    # CORS for local frontend dev
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(facility_metrics_router, prefix="/api/facility-metrics", tags=["facility-metrics"])
    return app


app = create_app()


def main() -> None:
    logging.basicConfig(level=get_log_level())
    uvicorn.run(app, host=os.getenv("HOST", "127.0.0.1"), port=int(os.getenv("PORT", "8000")))


if __name__ == "__main__":
    main()
