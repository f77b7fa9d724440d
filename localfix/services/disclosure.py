"""Field-level disclosure rules.

Every function here is pure: the caller resolves rows and relationships, and
gets back a response-shaped dict with the fields the viewer may see.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from localfix.core.auth import Role
from localfix.services.lifecycle import ApplicationStatus, BookingStatus, Relation

PUBLIC_PROFILE_FIELDS = ("id", "full_name", "avatar_url")
CONTACT_PROFILE_FIELDS = ("id", "full_name", "avatar_url", "email", "phone")
SERVICE_SUMMARY_FIELDS = ("id", "provider_id", "name", "price", "duration", "location", "status")
BOOKING_HIDDEN_CLIENT_FIELDS = ("id", "service_id", "booking_date", "status", "created_at", "updated_at")

CLIENT_VISIBLE_BOOKING_STATES = frozenset(
    {BookingStatus.APPROVED.value, BookingStatus.COMPLETED.value, BookingStatus.CANCELLED.value}
)


@dataclass(slots=True, frozen=True)
class Viewer:
    user_id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


def _pick(row: Mapping[str, Any] | None, fields: Iterable[str]) -> dict[str, Any] | None:
    if not row:
        return None
    return {field: row.get(field) for field in fields}


def public_profile(profile: Mapping[str, Any] | None) -> dict[str, Any] | None:
    return _pick(profile, PUBLIC_PROFILE_FIELDS)


def contact_profile(profile: Mapping[str, Any] | None) -> dict[str, Any] | None:
    return _pick(profile, CONTACT_PROFILE_FIELDS)


def service_summary(service: Mapping[str, Any] | None) -> dict[str, Any] | None:
    return _pick(service, SERVICE_SUMMARY_FIELDS)


def booking_client_visible(booking_status: str, viewer: Viewer, relations: set[Relation]) -> bool:
    if viewer.is_admin or Relation.CLIENT in relations:
        return True
    return Relation.SERVICE_PROVIDER in relations and booking_status in CLIENT_VISIBLE_BOOKING_STATES


def disclose_booking(
    booking: Mapping[str, Any],
    *,
    viewer: Viewer,
    relations: set[Relation],
    client_profile: Mapping[str, Any] | None,
    service: Mapping[str, Any] | None,
) -> dict[str, Any]:
    status = str(booking.get("status") or "")
    if booking_client_visible(status, viewer, relations):
        view = dict(booking)
        view["client"] = contact_profile(client_profile)
        view["client_hidden"] = False
    else:
        # Pending bookings only show the provider the service and the date.
        view = {field: booking.get(field) for field in BOOKING_HIDDEN_CLIENT_FIELDS}
        view["client"] = None
        view["client_hidden"] = True
    view["service"] = service_summary(service)
    return view


def poster_contact_visible(
    viewer: Viewer,
    relations: set[Relation],
    application: Mapping[str, Any] | None,
) -> bool:
    if viewer.is_admin or Relation.POSTER in relations:
        return True
    if application is None or application.get("provider_id") != viewer.user_id:
        return False
    return application.get("status") == ApplicationStatus.ACCEPTED.value and bool(
        application.get("client_contact_revealed")
    )


def disclose_job(
    job: Mapping[str, Any],
    *,
    viewer: Viewer,
    relations: set[Relation],
    poster_profile: Mapping[str, Any] | None,
    application: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    view = dict(job)
    if poster_contact_visible(viewer, relations, application):
        view["poster"] = contact_profile(poster_profile)
        view["poster_hidden"] = False
    else:
        view["poster"] = None
        view["poster_hidden"] = True
    view["my_application"] = dict(application) if application is not None else None
    return view


def disclose_application(
    application: Mapping[str, Any],
    *,
    viewer: Viewer,
    relations: set[Relation],
    provider_profile: Mapping[str, Any] | None,
) -> dict[str, Any]:
    view = dict(application)
    sees_contact = (
        viewer.is_admin
        or Relation.PROVIDER in relations
        or application.get("status") == ApplicationStatus.ACCEPTED.value
    )
    view["provider"] = contact_profile(provider_profile) if sees_contact else public_profile(provider_profile)
    return view


def disclose_review(
    review: Mapping[str, Any],
    *,
    reviewer: Mapping[str, Any] | None,
    reviewee: Mapping[str, Any] | None,
) -> dict[str, Any]:
    view = dict(review)
    view["reviewer"] = public_profile(reviewer)
    view["reviewee"] = public_profile(reviewee)
    return view
