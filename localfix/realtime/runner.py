from __future__ import annotations

import asyncio
import logging
import random

from opentelemetry import trace

from localfix.core.auth import Principal, Role
from localfix.core.config import Settings, get_settings
from localfix.core.session import Session
from localfix.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from localfix.realtime.feed import PostgresChangeFeed
from localfix.realtime.reconciler import DashboardReconciler
from localfix.services.repository import get_repository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def build_feed(settings: Settings, repository):
    if settings.database_url:
        return PostgresChangeFeed(settings.database_url, settings.realtime_channel)
    if hasattr(repository, "subscribe"):
        # The in-memory store publishes its own writes.
        return repository
    raise RuntimeError("LOCALFIX_DATABASE_URL is required for the change feed")


async def run_dashboard(settings: Settings | None = None, *, cycles: int | None = None) -> DashboardReconciler:
    """Keep one worker's dashboard projections live, reconnecting with backoff.

    ``cycles`` bounds the number of report intervals; ``None`` runs forever.
    """
    settings = settings or get_settings()
    if not settings.dashboard_worker_id:
        raise RuntimeError("LOCALFIX_DASHBOARD_WORKER_ID is required")

    repository = get_repository()
    session = Session(
        principal=Principal(subject=settings.dashboard_worker_id, role=Role.WORKER),
        repository=repository,
    ).as_service()
    feed = build_feed(settings, repository)
    reconciler = DashboardReconciler(session, settings.dashboard_worker_id, recent_limit=settings.recent_bookings_limit)

    backoff = settings.dashboard_retry_seconds
    completed = 0
    while cycles is None or completed < cycles:
        try:
            with tracer.start_as_current_span("dashboard.connect") as span:
                span.set_attribute("worker.id", settings.dashboard_worker_id)
                if isinstance(feed, PostgresChangeFeed):
                    await feed.start()
                reconciler.start(feed)
                await reconciler.settle()

            while cycles is None or completed < cycles:
                await asyncio.sleep(settings.dashboard_report_interval_seconds)
                with tracer.start_as_current_span("dashboard.report"):
                    projections = reconciler.projections
                    logger.info(
                        "dashboard worker_id=%s available_jobs=%s applications=%s service_bookings=%s recent=%s",
                        settings.dashboard_worker_id,
                        len(projections.available_jobs),
                        len(projections.my_applications),
                        len(projections.my_service_bookings),
                        len(projections.recent_client_bookings),
                    )
                completed += 1
            backoff = settings.dashboard_retry_seconds
        except Exception as exc:  # pragma: no cover - connection robustness
            jitter = random.uniform(0.0, 0.5)
            sleep_for = min(backoff * (2.0 + jitter), settings.dashboard_max_backoff_seconds)
            logger.exception("dashboard cycle failed: %s; retry in %.1fs", exc, sleep_for)
            await reconciler.stop()
            if isinstance(feed, PostgresChangeFeed):
                await feed.stop()
            await asyncio.sleep(sleep_for)
            backoff = sleep_for

    await reconciler.stop()
    if isinstance(feed, PostgresChangeFeed):
        await feed.stop()
    return reconciler


async def main() -> None:
    settings = get_settings()
    configure_logging(correlate=settings.otel_log_correlation)
    telemetry_runtime = setup_telemetry(settings)
    try:
        await run_dashboard(settings)
    finally:
        shutdown_telemetry(telemetry_runtime)
        await get_repository().close()


if __name__ == "__main__":
    asyncio.run(main())
