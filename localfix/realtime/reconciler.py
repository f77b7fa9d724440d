"""Worker dashboard projections kept in sync with the change feed.

Subscription callbacks only enqueue events. A single drain task first seeds the
projections with ``load()`` and then applies the queued events in arrival order
through the pure ``merge_row``/``remove_row`` helpers, so the projections have
exactly one writer. Events that arrive while the snapshot is being read wait in
the queue and are replayed on top of it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from opentelemetry import trace

from localfix.core.auth import Role
from localfix.realtime.feed import ChangeEvent, Subscription
from localfix.services.disclosure import Viewer, disclose_booking
from localfix.services.lifecycle import JobStatus, Relation

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

Row = dict[str, Any]

RECENT_BOOKINGS_LIMIT = 10
JOB_ORDER_KEY = "created_at"
APPLICATION_ORDER_KEY = "created_at"
BOOKING_ORDER_KEY = "booking_date"


def _sort_key(order_key: str) -> Callable[[Row], tuple[bool, Any]]:
    # Rows without a timestamp sink to the end.
    def key(row: Row) -> tuple[bool, Any]:
        value = row.get(order_key)
        return (value is not None, value or "")

    return key


def _in_order(rows: list[Row], index: int, order_key: str) -> bool:
    key = _sort_key(order_key)
    current = key(rows[index])
    if index > 0 and key(rows[index - 1]) < current:
        return False
    if index + 1 < len(rows) and current < key(rows[index + 1]):
        return False
    return True


def merge_row(
    rows: list[Row],
    row: Row,
    *,
    order_key: str,
    limit: int | None = None,
    replace: bool = False,
) -> list[Row]:
    """Upsert ``row`` by id into a newest-first list.

    An existing row is updated in place (or swapped out when ``replace`` is
    set), a new one is prepended. The list is re-sorted only when the merged
    row breaks the ordering.
    """
    merged = list(rows)
    index = next((i for i, existing in enumerate(merged) if existing.get("id") == row.get("id")), None)
    if index is None:
        merged.insert(0, dict(row))
        index = 0
    else:
        merged[index] = dict(row) if replace else {**merged[index], **row}

    if not _in_order(merged, index, order_key):
        merged.sort(key=_sort_key(order_key), reverse=True)
    if limit is not None:
        del merged[limit:]
    return merged


def remove_row(rows: list[Row], row_id: Any) -> list[Row]:
    return [row for row in rows if row.get("id") != row_id]


@dataclass(slots=True)
class DashboardProjections:
    available_jobs: list[Row] = field(default_factory=list)
    my_applications: list[Row] = field(default_factory=list)
    my_service_bookings: list[Row] = field(default_factory=list)
    recent_client_bookings: list[Row] = field(default_factory=list)
    my_service_ids: set[str] = field(default_factory=set)
    reviewed_job_ids: set[str] = field(default_factory=set)
    reviewed_booking_ids: set[str] = field(default_factory=set)


class DashboardReconciler:
    def __init__(self, store: Any, worker_id: str, *, recent_limit: int = RECENT_BOOKINGS_LIMIT) -> None:
        self.store = store
        self.worker_id = worker_id
        self.recent_limit = recent_limit
        self.projections = DashboardProjections()
        self._viewer = Viewer(user_id=worker_id, role=Role.WORKER)
        self._queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self._subscription: Subscription | None = None
        self._task: asyncio.Task[None] | None = None
        self._ready = asyncio.Event()

    async def load(self) -> None:
        """Seed every projection from the store; a failed read leaves that projection empty.

        Once started, only the drain task calls this.
        """
        try:
            await self._load()
        finally:
            self._ready.set()

    async def _load(self) -> None:
        projections = self.projections
        projections.available_jobs = await self._read(
            "available_jobs",
            "jobs",
            filters={"status": JobStatus.OPEN.value},
            order_by=JOB_ORDER_KEY,
        )
        projections.my_applications = await self._read(
            "my_applications",
            "job_applications",
            filters={"provider_id": self.worker_id},
            order_by=APPLICATION_ORDER_KEY,
        )
        reviews = await self._read("reviewed_targets", "reviews", filters={"reviewer_id": self.worker_id})
        projections.reviewed_job_ids = {review["job_id"] for review in reviews if review.get("job_id")}
        projections.reviewed_booking_ids = {review["booking_id"] for review in reviews if review.get("booking_id")}
        services = await self._read("my_service_ids", "services", filters={"provider_id": self.worker_id})
        projections.my_service_ids = {service["id"] for service in services}
        if not projections.my_service_ids:
            return

        bookings = await self._read(
            "my_service_bookings",
            "bookings",
            filters={"service_id": sorted(projections.my_service_ids)},
            order_by=BOOKING_ORDER_KEY,
        )
        services_by_id = {service["id"]: service for service in services}
        client_ids = sorted({booking["client_id"] for booking in bookings if booking.get("client_id")})
        clients = await self._read("my_service_bookings", "profiles", filters={"id": client_ids}) if client_ids else []
        clients_by_id = {client["id"]: client for client in clients}
        projections.my_service_bookings = [
            self._disclose(booking, clients_by_id.get(booking.get("client_id")), services_by_id.get(booking["service_id"]))
            for booking in bookings
        ]
        projections.recent_client_bookings = projections.my_service_bookings[: self.recent_limit]

    async def _read(self, projection: str, table: str, **kwargs: Any) -> list[Row]:
        try:
            return await self.store.select(table, **kwargs)
        except Exception:
            logger.exception("dashboard load failed projection=%s worker_id=%s", projection, self.worker_id)
            return []

    def submit(self, event: ChangeEvent) -> None:
        self._queue.put_nowait(event)

    def start(self, feed: Any) -> None:
        if self._task is not None:
            return
        # Subscribe before loading so nothing written during the snapshot is lost.
        self._ready.clear()
        self._subscription = feed.subscribe(self.submit)
        self._task = asyncio.create_task(self._drain(), name=f"dashboard-reconciler-{self.worker_id}")

    async def stop(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription.unsubscribe()
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def settle(self) -> None:
        """Wait until the initial load and every queued event have been applied."""
        await self._ready.wait()
        await self._queue.join()

    async def _drain(self) -> None:
        await self.load()
        while True:
            event = await self._queue.get()
            try:
                with tracer.start_as_current_span("dashboard.event") as span:
                    span.set_attribute("change.table", event.table)
                    span.set_attribute("change.kind", event.kind)
                    await self.apply(event)
            except Exception:
                logger.exception("dashboard event failed table=%s kind=%s id=%s", event.table, event.kind, event.row_id)
            finally:
                self._queue.task_done()

    async def apply(self, event: ChangeEvent) -> None:
        if event.table == "jobs":
            self._apply_job(event)
        elif event.table == "job_applications":
            self._apply_application(event)
        elif event.table == "services":
            self._apply_service(event)
        elif event.table == "bookings":
            await self._apply_booking(event)
        elif event.table == "reviews":
            self._apply_review(event)

    def _apply_job(self, event: ChangeEvent) -> None:
        projections = self.projections
        if event.kind == "delete" or event.row.get("status") != JobStatus.OPEN.value:
            projections.available_jobs = remove_row(projections.available_jobs, event.row_id)
            return
        projections.available_jobs = merge_row(projections.available_jobs, event.row, order_key=JOB_ORDER_KEY)

    def _apply_application(self, event: ChangeEvent) -> None:
        projections = self.projections
        if event.kind == "delete":
            projections.my_applications = remove_row(projections.my_applications, event.row_id)
            return
        if event.row.get("provider_id") != self.worker_id:
            return
        projections.my_applications = merge_row(
            projections.my_applications,
            event.row,
            order_key=APPLICATION_ORDER_KEY,
        )

    def _apply_service(self, event: ChangeEvent) -> None:
        service_id = event.row_id
        if event.kind == "delete":
            self.projections.my_service_ids.discard(service_id)
        elif event.row.get("provider_id") == self.worker_id:
            self.projections.my_service_ids.add(service_id)

    async def _apply_booking(self, event: ChangeEvent) -> None:
        projections = self.projections
        if event.kind == "delete":
            projections.my_service_bookings = remove_row(projections.my_service_bookings, event.row_id)
            # Refill from the full list so the recent view stays at its limit.
            projections.recent_client_bookings = projections.my_service_bookings[: self.recent_limit]
            return

        booking = event.row
        if booking.get("service_id") not in projections.my_service_ids:
            return

        try:
            client, service = await asyncio.gather(
                self.store.get("profiles", booking.get("client_id")),
                self.store.get("services", booking["service_id"]),
            )
        except Exception:
            logger.exception("dropping booking event id=%s: enrichment lookup failed", event.row_id)
            return

        if service is None or service.get("provider_id") != self.worker_id:
            logger.warning("dropping booking event id=%s: service %s is not owned by this worker", event.row_id, booking.get("service_id"))
            return

        enriched = self._disclose(booking, client, service)
        projections.my_service_bookings = merge_row(
            projections.my_service_bookings,
            enriched,
            order_key=BOOKING_ORDER_KEY,
            replace=True,
        )
        projections.recent_client_bookings = merge_row(
            projections.recent_client_bookings,
            enriched,
            order_key=BOOKING_ORDER_KEY,
            replace=True,
            limit=self.recent_limit,
        )

    def _apply_review(self, event: ChangeEvent) -> None:
        review = event.row
        if review.get("reviewer_id") != self.worker_id:
            return
        projections = self.projections
        job_id, booking_id = review.get("job_id"), review.get("booking_id")
        if event.kind == "delete":
            projections.reviewed_job_ids.discard(job_id)
            projections.reviewed_booking_ids.discard(booking_id)
            return
        if job_id:
            projections.reviewed_job_ids.add(job_id)
        if booking_id:
            projections.reviewed_booking_ids.add(booking_id)

    def _disclose(self, booking: Row, client: Row | None, service: Row | None) -> Row:
        return disclose_booking(
            booking,
            viewer=self._viewer,
            relations={Relation.SERVICE_PROVIDER},
            client_profile=client,
            service=service,
        )
