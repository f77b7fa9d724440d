from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from localfix.core.auth import Role
from localfix.core.session import Session
from localfix.services.accounts import fetch_profiles
from localfix.services.disclosure import Viewer, disclose_application, disclose_job
from localfix.services.errors import ConflictError, ForbiddenError, NotFoundError, StateError, ValidationError
from localfix.services.job_writer import JobWriter
from localfix.services.lifecycle import (
    ApplicationStatus,
    Entity,
    JobStatus,
    application_relations,
    application_withdrawable,
    job_owner_id,
    job_relations,
    require_transition,
)

logger = logging.getLogger(__name__)

EDITABLE_JOB_FIELDS = ("title", "description", "category", "required_skills", "budget", "budget_type", "location", "duration")
REQUIRED_JOB_TEXT_FIELDS = ("title", "description", "category", "location")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _viewer(session: Session) -> Viewer:
    return Viewer(user_id=session.user_id, role=session.principal.role)


def _coerce_budget(value: Any) -> float | int:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValidationError("budget must be a number")
    try:
        number = float(value)
    except ValueError as exc:
        raise ValidationError("budget must be a number") from exc
    if not math.isfinite(number) or number < 0:
        raise ValidationError("budget must be a non-negative number")
    return int(number) if number.is_integer() else number


def _coerce_skills(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError("required_skills must be a list of strings")
    skills: list[str] = []
    for item in value:
        if isinstance(item, str) and item.strip() and item.strip() not in skills:
            skills.append(item.strip())
    return skills


def _text(payload: Mapping[str, Any], key: str, *, required: bool) -> str | None:
    value = payload.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{key} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value.strip()


async def require_job(session: Session, job_id: str) -> dict[str, Any]:
    job = await session.get("jobs", job_id)
    if job is None:
        raise NotFoundError("job not found")
    return job


async def require_application(session: Session, application_id: str) -> dict[str, Any]:
    application = await session.get("job_applications", application_id)
    if application is None:
        raise NotFoundError("Application not found")
    return application


async def accepted_application(session: Session, job_id: str) -> dict[str, Any] | None:
    rows = await session.select(
        "job_applications",
        filters={"job_id": job_id, "status": ApplicationStatus.ACCEPTED.value},
        limit=1,
    )
    return rows[0] if rows else None


async def create_job(session: Session, payload: Mapping[str, Any], writer: JobWriter | None = None) -> dict[str, Any]:
    session.principal.require_role(Role.CLIENT)

    job_payload: dict[str, Any] = {
        "poster_id": session.user_id,
        "title": _text(payload, "title", required=True),
        "description": _text(payload, "description", required=True),
        "category": _text(payload, "category", required=True),
        "required_skills": _coerce_skills(payload.get("required_skills")),
        "budget": _coerce_budget(payload.get("budget")),
        # Unknown budget types are left for the writer's sanitizer.
        "budget_type": payload.get("budget_type") or "fixed",
        "location": _text(payload, "location", required=True),
        "duration": _text(payload, "duration", required=False),
        "status": JobStatus.OPEN.value,
    }

    outcome = await (writer or JobWriter()).insert(session, job_payload)
    logger.info(
        "job created id=%s poster_id=%s attempts=%s rewrites=%s",
        outcome.row.get("id"),
        session.user_id,
        outcome.attempts,
        outcome.applied_rules,
    )
    return outcome.row


async def list_open_jobs(session: Session, *, limit: int = 50) -> list[dict[str, Any]]:
    return await session.select(
        "jobs",
        filters={"status": JobStatus.OPEN.value},
        order_by="created_at",
        limit=limit,
    )


async def get_job_for_viewer(session: Session, job_id: str) -> dict[str, Any]:
    job = await require_job(session, job_id)
    mine = await session.select("job_applications", filters={"job_id": job_id, "provider_id": session.user_id}, limit=1)
    application = mine[0] if mine else None
    accepted = application if application and application.get("status") == ApplicationStatus.ACCEPTED.value else None
    relations = job_relations(job, session.user_id, accepted_application=accepted)

    profiles = await fetch_profiles(session, [job_owner_id(job)])
    return disclose_job(
        job,
        viewer=_viewer(session),
        relations=relations,
        poster_profile=profiles.get(job_owner_id(job) or ""),
        application=application,
    )


async def update_job(session: Session, job_id: str, changes: Mapping[str, Any]) -> dict[str, Any]:
    job = await require_job(session, job_id)
    if job_owner_id(job) != session.user_id:
        raise ForbiddenError("only the poster can edit a job")
    if job.get("status") != JobStatus.OPEN.value:
        raise StateError("jobs can only be edited while open")

    values: dict[str, Any] = {}
    for key in EDITABLE_JOB_FIELDS:
        if key not in changes:
            continue
        if key == "budget":
            values[key] = _coerce_budget(changes[key])
        elif key == "required_skills":
            values[key] = _coerce_skills(changes[key])
        elif key == "budget_type":
            if changes[key] not in ("fixed", "hourly"):
                raise ValidationError("budget_type must be one of: fixed, hourly")
            values[key] = changes[key]
        else:
            values[key] = _text(changes, key, required=key in REQUIRED_JOB_TEXT_FIELDS)
    if not values:
        raise ValidationError("no editable fields supplied")
    values["updated_at"] = _now()

    rows = await session.update("jobs", values, filters={"id": job_id, "status": JobStatus.OPEN.value})
    if not rows:
        raise ConflictError("job is no longer open")
    return rows[0]


async def close_job(session: Session, job_id: str) -> dict[str, Any]:
    job = await require_job(session, job_id)
    require_transition(Entity.JOB, job["status"], JobStatus.CLOSED, job_relations(job, session.user_id))
    return await _move_job(session, job, JobStatus.CLOSED)


async def complete_job(session: Session, job_id: str) -> dict[str, Any]:
    job = await require_job(session, job_id)
    accepted = await accepted_application(session, job_id)
    relations = job_relations(job, session.user_id, accepted_application=accepted)
    require_transition(Entity.JOB, job["status"], JobStatus.COMPLETED, relations)
    return await _move_job(session, job, JobStatus.COMPLETED)


async def _move_job(session: Session, job: dict[str, Any], target: JobStatus) -> dict[str, Any]:
    rows = await session.update(
        "jobs",
        {"status": target.value, "updated_at": _now()},
        filters={"id": job["id"], "status": job["status"]},
    )
    if not rows:
        raise ConflictError("job changed concurrently; reload and retry")
    logger.info("job transition id=%s %s -> %s by=%s", job["id"], job["status"], target.value, session.user_id)
    return rows[0]


async def apply_to_job(session: Session, job_id: str, proposed_rate: Any) -> dict[str, Any]:
    session.principal.require_role(Role.WORKER)
    if isinstance(proposed_rate, bool) or not isinstance(proposed_rate, (int, float)):
        raise ValidationError("proposed_rate must be a number")
    if not math.isfinite(proposed_rate) or proposed_rate <= 0:
        raise ValidationError("proposed_rate must be greater than 0")

    job = await require_job(session, job_id)
    if job_owner_id(job) == session.user_id:
        raise ForbiddenError("posters cannot apply to their own job")
    if job.get("status") != JobStatus.OPEN.value:
        raise StateError("job is not open for applications")

    try:
        return await session.insert(
            "job_applications",
            {
                "job_id": job_id,
                "provider_id": session.user_id,
                "proposed_rate": proposed_rate,
                "status": ApplicationStatus.PENDING.value,
                "client_contact_revealed": False,
            },
        )
    except ConflictError as exc:
        raise ConflictError("already applied to this job") from exc


async def list_job_applications(session: Session, job_id: str) -> list[dict[str, Any]]:
    job = await require_job(session, job_id)
    if job_owner_id(job) != session.user_id and not session.principal.is_admin:
        raise ForbiddenError("only the poster can list applications")

    rows = await session.select("job_applications", filters={"job_id": job_id}, order_by="created_at")
    profiles = await fetch_profiles(session, [row.get("provider_id") for row in rows])
    viewer = _viewer(session)
    return [
        disclose_application(
            row,
            viewer=viewer,
            relations=application_relations(row, job, session.user_id),
            provider_profile=profiles.get(row.get("provider_id") or ""),
        )
        for row in rows
    ]


async def list_my_applications(session: Session) -> list[dict[str, Any]]:
    rows = await session.select("job_applications", filters={"provider_id": session.user_id}, order_by="created_at")
    job_ids = sorted({row["job_id"] for row in rows if row.get("job_id")})
    jobs = await session.select("jobs", filters={"id": job_ids}) if job_ids else []
    by_id = {job["id"]: job for job in jobs}
    for row in rows:
        job = by_id.get(row.get("job_id"))
        row["job"] = {key: job.get(key) for key in ("id", "title", "status", "budget", "location")} if job else None
    return rows


async def accept_application(session: Session, application_id: str) -> dict[str, Any]:
    """Accept one application and move its job to ``in-progress``.

    The job row is claimed first with a write conditioned on ``status = open``,
    so of two concurrent accepts on the same job only one can win; the other
    pending applications stay pending.
    """
    application = await require_application(session, application_id)
    job = await require_job(session, application["job_id"])
    relations = application_relations(application, job, session.user_id)
    require_transition(Entity.APPLICATION, application["status"], ApplicationStatus.ACCEPTED, relations)

    if job.get("status") == JobStatus.IN_PROGRESS.value:
        raise ConflictError("job already has an accepted application")
    require_transition(Entity.JOB, job["status"], JobStatus.IN_PROGRESS, relations)

    now = _now()
    claimed = await session.update(
        "jobs",
        {"status": JobStatus.IN_PROGRESS.value, "updated_at": now},
        filters={"id": job["id"], "status": JobStatus.OPEN.value},
    )
    if not claimed:
        raise ConflictError("job already has an accepted application")

    accepted = await session.update(
        "job_applications",
        {"status": ApplicationStatus.ACCEPTED.value, "updated_at": now},
        filters={"id": application_id, "status": ApplicationStatus.PENDING.value},
    )
    if not accepted:
        # The application was withdrawn between the read and the claim.
        await session.update(
            "jobs",
            {"status": JobStatus.OPEN.value, "updated_at": _now()},
            filters={"id": job["id"], "status": JobStatus.IN_PROGRESS.value},
        )
        raise ConflictError("application is no longer pending")

    logger.info("application accepted id=%s job_id=%s", application_id, job["id"])
    return {"application": accepted[0], "job": claimed[0]}


async def reject_application(session: Session, application_id: str) -> dict[str, Any]:
    application = await require_application(session, application_id)
    job = await require_job(session, application["job_id"])
    relations = application_relations(application, job, session.user_id)
    require_transition(Entity.APPLICATION, application["status"], ApplicationStatus.REJECTED, relations)
    return await _move_application(session, application, ApplicationStatus.REJECTED)


async def withdraw_application(session: Session, application_id: str) -> dict[str, Any]:
    application = await require_application(session, application_id)
    job = await require_job(session, application["job_id"])
    relations = application_relations(application, job, session.user_id)
    require_transition(Entity.APPLICATION, application["status"], ApplicationStatus.WITHDRAWN, relations)
    if not application_withdrawable(application["status"], job.get("status")):
        raise StateError("accepted applications can only be withdrawn while the job is open")
    return await _move_application(session, application, ApplicationStatus.WITHDRAWN)


async def _move_application(
    session: Session,
    application: dict[str, Any],
    target: ApplicationStatus,
) -> dict[str, Any]:
    rows = await session.update(
        "job_applications",
        {"status": target.value, "updated_at": _now()},
        filters={"id": application["id"], "status": application["status"]},
    )
    if not rows:
        raise ConflictError("application changed concurrently; reload and retry")
    return rows[0]


async def reveal_contact(session: Session, application_id: str) -> dict[str, Any]:
    application = await require_application(session, application_id)
    if application.get("provider_id") != session.user_id:
        raise ForbiddenError("Forbidden")
    if application.get("status") != ApplicationStatus.ACCEPTED.value:
        raise StateError("Application must be accepted to reveal contact")
    if application.get("client_contact_revealed"):
        return {"success": True, "already_revealed": True, "application": application}

    rows = await session.update(
        "job_applications",
        {"client_contact_revealed": True, "updated_at": _now()},
        filters={"id": application_id, "status": ApplicationStatus.ACCEPTED.value},
    )
    if not rows:
        raise StateError("Application must be accepted to reveal contact")
    logger.info("client contact revealed application_id=%s", application_id)
    return {"success": True, "already_revealed": False, "application": rows[0]}
