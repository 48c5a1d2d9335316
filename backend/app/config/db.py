from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import psycopg

from backend.app.config.env import MetricsSettings, get_db_url, get_metrics_settings


@asynccontextmanager
async def pg_conn(
    db_url: Optional[str] = None, settings: Optional[MetricsSettings] = None
) -> AsyncIterator[psycopg.AsyncConnection]:
    """Open a single-use async connection with bounded connect and statement time."""
    settings = settings or get_metrics_settings()
    conn = await psycopg.AsyncConnection.connect(
        db_url or get_db_url(),
        connect_timeout=settings.connect_timeout,
        options=f"-c statement_timeout={settings.statement_timeout_ms}",
    )
    try:
        yield conn
    finally:
        await conn.close()
