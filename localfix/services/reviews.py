"""Review admission.

A review is admitted only after a completed job or booking, by one of its two
parties about the other, and at most once per ``(reviewer, reviewee, target)``.
The checks run in a fixed order so the first failing rule decides the error.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from localfix.core.session import Session
from localfix.services.accounts import fetch_profiles
from localfix.services.disclosure import disclose_review
from localfix.services.errors import ConflictError, ForbiddenError, NotFoundError, StateError, ValidationError
from localfix.services.lifecycle import ApplicationStatus, BookingStatus, JobStatus, job_owner_id

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5
CAMEL_CASE_FIELDS = {"revieweeId": "reviewee_id", "jobId": "job_id", "bookingId": "booking_id"}


def _optional_id(payload: Mapping[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value


def _rating(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError("rating must be an integer between 1 and 5")
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError("rating must be an integer between 1 and 5")
    if not MIN_RATING <= value <= MAX_RATING:
        raise ValidationError("rating must be an integer between 1 and 5")
    return int(value)


async def _job_parties(session: Session, job_id: str) -> tuple[str | None, str | None]:
    job = await session.get("jobs", job_id)
    if job is None:
        raise NotFoundError("job not found")
    if job.get("status") != JobStatus.COMPLETED.value:
        raise StateError("job must be completed before it can be reviewed")
    accepted = await session.select(
        "job_applications",
        filters={"job_id": job_id, "status": ApplicationStatus.ACCEPTED.value},
        limit=1,
    )
    return job_owner_id(job), accepted[0].get("provider_id") if accepted else None


async def _booking_parties(session: Session, booking_id: str) -> tuple[str | None, str | None]:
    booking = await session.get("bookings", booking_id)
    if booking is None:
        raise NotFoundError("booking not found")
    if booking.get("status") != BookingStatus.COMPLETED.value:
        raise StateError("booking must be completed before it can be reviewed")
    service = await session.get("services", booking["service_id"])
    return booking.get("client_id"), service.get("provider_id") if service else None


def normalize_payload(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Accept both the camelCase keys browsers send and snake_case column names."""
    normalized = dict(payload)
    for camel, snake in CAMEL_CASE_FIELDS.items():
        if camel in normalized and snake not in normalized:
            normalized[snake] = normalized.pop(camel)
    return normalized


async def admit_review(session: Session, payload: Mapping[str, Any]) -> dict[str, Any]:
    payload = normalize_payload(payload)
    reviewer_id = session.user_id

    reviewee_id = payload.get("reviewee_id")
    if not isinstance(reviewee_id, str) or not reviewee_id:
        raise ValidationError("reviewee_id is required")
    if reviewee_id == reviewer_id:
        raise ValidationError("cannot review yourself")

    rating = _rating(payload.get("rating"))

    job_id = _optional_id(payload, "job_id")
    booking_id = _optional_id(payload, "booking_id")
    if (job_id is None) == (booking_id is None):
        raise ValidationError("exactly one of job_id or booking_id is required")

    if job_id is not None:
        parties = await _job_parties(session, job_id)
        target: dict[str, str] = {"job_id": job_id}
    else:
        parties = await _booking_parties(session, booking_id)
        target = {"booking_id": booking_id}

    first, second = parties
    if reviewer_id not in parties or None in parties:
        raise ForbiddenError("only the parties of a completed job or booking can review it")
    counterpart = second if reviewer_id == first else first
    if reviewee_id != counterpart:
        raise ForbiddenError("reviewee must be the other party")

    key = {"reviewer_id": reviewer_id, "reviewee_id": reviewee_id, **target}
    if await session.select("reviews", filters=key, limit=1):
        raise ConflictError("You have already reviewed this item")

    comment = payload.get("comment")
    row = {**key, "rating": rating, "comment": comment if isinstance(comment, str) and comment.strip() else None}
    try:
        review = await session.insert("reviews", row)
    except ConflictError as exc:
        raise ConflictError("You have already reviewed this item") from exc

    logger.info("review admitted id=%s target=%s", review.get("id"), target)
    profiles = await fetch_profiles(session, [reviewer_id, reviewee_id])
    return disclose_review(review, reviewer=profiles.get(reviewer_id), reviewee=profiles.get(reviewee_id))


async def list_reviews(
    reader: Any,
    *,
    job_id: str | None = None,
    booking_id: str | None = None,
    user_id: str | None = None,
) -> list[dict[str, Any]]:
    filters: dict[str, Any] = {}
    if job_id:
        filters["job_id"] = job_id
    if booking_id:
        filters["booking_id"] = booking_id
    any_of = {"reviewer_id": user_id, "reviewee_id": user_id} if user_id else None

    rows = await reader.select("reviews", filters=filters, any_of=any_of, order_by="created_at")
    profiles = await fetch_profiles(
        reader,
        [row.get("reviewer_id") for row in rows] + [row.get("reviewee_id") for row in rows],
    )
    return [
        disclose_review(
            row,
            reviewer=profiles.get(row.get("reviewer_id") or ""),
            reviewee=profiles.get(row.get("reviewee_id") or ""),
        )
        for row in rows
    ]
