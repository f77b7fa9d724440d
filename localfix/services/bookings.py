from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from localfix.core.auth import Role
from localfix.core.session import Session
from localfix.services.accounts import fetch_profiles
from localfix.services.disclosure import Viewer, disclose_booking
from localfix.services.errors import ConflictError, ForbiddenError, NotFoundError, StateError, ValidationError
from localfix.services.lifecycle import (
    BookingStatus,
    Entity,
    ServiceStatus,
    booking_relations,
    is_bookable,
    require_transition,
    service_relations,
)

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def require_service(session: Session, service_id: str) -> dict[str, Any]:
    service = await session.get("services", service_id)
    if service is None:
        raise NotFoundError("service not found")
    return service


async def require_booking(session: Session, booking_id: str) -> dict[str, Any]:
    booking = await session.get("bookings", booking_id)
    if booking is None:
        raise NotFoundError("booking not found")
    return booking


async def create_service(session: Session, payload: Mapping[str, Any]) -> dict[str, Any]:
    session.principal.require_role(Role.WORKER)

    name = payload.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("name is required")
    price = payload.get("price")
    if isinstance(price, bool) or not isinstance(price, (int, float)) or not math.isfinite(price) or price < 0:
        raise ValidationError("price must be a non-negative number")

    row = {
        "provider_id": session.user_id,
        "name": name.strip(),
        "description": payload.get("description"),
        "price": price,
        "duration": payload.get("duration"),
        "location": payload.get("location"),
        "status": ServiceStatus.PENDING.value,
    }
    service = await session.insert("services", row)
    logger.info("service created id=%s provider_id=%s", service.get("id"), session.user_id)
    return service


async def list_my_services(session: Session) -> list[dict[str, Any]]:
    return await session.select("services", filters={"provider_id": session.user_id}, order_by="created_at")


async def set_service_status(session: Session, service_id: str, status: str) -> dict[str, Any]:
    service = await require_service(session, service_id)
    relations = service_relations(service, session.user_id, is_admin=session.principal.is_admin)
    require_transition(Entity.SERVICE, service["status"], status, relations)

    rows = await session.update(
        "services",
        {"status": status, "updated_at": _now()},
        filters={"id": service_id, "status": service["status"]},
    )
    if not rows:
        raise ConflictError("service changed concurrently; reload and retry")
    logger.info("service transition id=%s %s -> %s by=%s", service_id, service["status"], status, session.user_id)
    return rows[0]


async def create_booking(
    session: Session,
    *,
    service_id: str,
    booking_date: str,
    notes: str | None = None,
) -> dict[str, Any]:
    if not booking_date:
        raise ValidationError("booking_date is required")
    service = await require_service(session, service_id)
    if service.get("provider_id") == session.user_id:
        raise ForbiddenError("providers cannot book their own service")
    if not is_bookable(service.get("status")):
        raise StateError("service is not open for bookings")

    booking = await session.insert(
        "bookings",
        {
            "service_id": service_id,
            "client_id": session.user_id,
            "booking_date": booking_date,
            "status": BookingStatus.PENDING.value,
            "notes": notes,
        },
    )
    logger.info("booking created id=%s service_id=%s", booking.get("id"), service_id)
    return booking


async def approve_booking(session: Session, booking_id: str) -> dict[str, Any]:
    return await _move_booking(session, booking_id, BookingStatus.APPROVED)


async def reject_booking(session: Session, booking_id: str) -> dict[str, Any]:
    return await _move_booking(session, booking_id, BookingStatus.REJECTED)


async def complete_booking(session: Session, booking_id: str) -> dict[str, Any]:
    return await _move_booking(session, booking_id, BookingStatus.COMPLETED)


async def cancel_booking(session: Session, booking_id: str) -> dict[str, Any]:
    return await _move_booking(session, booking_id, BookingStatus.CANCELLED)


async def _move_booking(session: Session, booking_id: str, target: BookingStatus) -> dict[str, Any]:
    if not booking_id:
        raise ValidationError("bookingId is required")
    booking = await require_booking(session, booking_id)
    service = await session.get("services", booking["service_id"])
    relations = booking_relations(booking, service, session.user_id)
    require_transition(Entity.BOOKING, booking["status"], target, relations)

    rows = await session.update(
        "bookings",
        {"status": target.value, "updated_at": _now()},
        filters={"id": booking_id, "status": booking["status"]},
    )
    if not rows:
        raise ConflictError("booking changed concurrently; reload and retry")
    logger.info("booking transition id=%s %s -> %s by=%s", booking_id, booking["status"], target.value, session.user_id)
    return await _view(session, rows[0], service)


async def get_booking_for_viewer(session: Session, booking_id: str) -> dict[str, Any]:
    booking = await require_booking(session, booking_id)
    service = await session.get("services", booking["service_id"])
    relations = booking_relations(booking, service, session.user_id)
    if not relations and not session.principal.is_admin:
        raise ForbiddenError("not a party to this booking")
    return await _view(session, booking, service)


async def list_provider_bookings(session: Session) -> list[dict[str, Any]]:
    services = await list_my_services(session)
    if not services:
        return []
    by_id = {service["id"]: service for service in services}
    bookings = await session.select(
        "bookings",
        filters={"service_id": sorted(by_id)},
        order_by="booking_date",
    )
    profiles = await fetch_profiles(session, [booking.get("client_id") for booking in bookings])
    viewer = Viewer(user_id=session.user_id, role=session.principal.role)
    return [
        disclose_booking(
            booking,
            viewer=viewer,
            relations=booking_relations(booking, by_id.get(booking["service_id"]), session.user_id),
            client_profile=profiles.get(booking.get("client_id") or ""),
            service=by_id.get(booking["service_id"]),
        )
        for booking in bookings
    ]


async def _view(session: Session, booking: dict[str, Any], service: dict[str, Any] | None) -> dict[str, Any]:
    profiles = await fetch_profiles(session, [booking.get("client_id")])
    return disclose_booking(
        booking,
        viewer=Viewer(user_id=session.user_id, role=session.principal.role),
        relations=booking_relations(booking, service, session.user_id),
        client_profile=profiles.get(booking.get("client_id") or ""),
        service=service,
    )
