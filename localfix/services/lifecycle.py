"""State machines for jobs, applications, services and bookings.

Each machine maps an allowed ``(from, to)`` pair to the actor relations that
may drive it. Relations describe how the caller relates to the row (the job's
poster, the booking's client, ...) rather than the caller's global role, so the
same worker can be a provider on one job and a stranger on another.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any

from localfix.services.errors import ForbiddenError, StateError


class JobStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CLOSED = "closed"


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class ServiceStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    OPEN = "open"
    CLOSED = "closed"


class BookingStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class Entity(str, Enum):
    JOB = "job"
    APPLICATION = "application"
    SERVICE = "service"
    BOOKING = "booking"


class Relation(str, Enum):
    POSTER = "poster"
    ACCEPTED_PROVIDER = "accepted_provider"
    PROVIDER = "provider"
    SERVICE_PROVIDER = "service_provider"
    CLIENT = "client"
    ADMIN = "admin"


Transitions = dict[tuple[str, str], frozenset[Relation]]

JOB_TRANSITIONS: Transitions = {
    ("open", "in-progress"): frozenset({Relation.POSTER}),
    ("open", "closed"): frozenset({Relation.POSTER}),
    ("in-progress", "completed"): frozenset({Relation.POSTER, Relation.ACCEPTED_PROVIDER}),
}

APPLICATION_TRANSITIONS: Transitions = {
    ("pending", "accepted"): frozenset({Relation.POSTER}),
    ("pending", "rejected"): frozenset({Relation.POSTER}),
    ("pending", "withdrawn"): frozenset({Relation.PROVIDER}),
    # Only while the job is still open; see ``application_withdrawable``.
    ("accepted", "withdrawn"): frozenset({Relation.PROVIDER}),
}

SERVICE_TRANSITIONS: Transitions = {
    ("pending", "approved"): frozenset({Relation.ADMIN}),
    ("approved", "open"): frozenset({Relation.SERVICE_PROVIDER, Relation.ADMIN}),
    ("open", "closed"): frozenset({Relation.SERVICE_PROVIDER, Relation.ADMIN}),
    ("closed", "open"): frozenset({Relation.SERVICE_PROVIDER, Relation.ADMIN}),
}

BOOKING_TRANSITIONS: Transitions = {
    ("pending", "approved"): frozenset({Relation.SERVICE_PROVIDER}),
    ("pending", "rejected"): frozenset({Relation.SERVICE_PROVIDER}),
    ("approved", "completed"): frozenset({Relation.SERVICE_PROVIDER}),
    ("pending", "cancelled"): frozenset({Relation.CLIENT}),
    ("approved", "cancelled"): frozenset({Relation.CLIENT}),
}

MACHINES: dict[Entity, Transitions] = {
    Entity.JOB: JOB_TRANSITIONS,
    Entity.APPLICATION: APPLICATION_TRANSITIONS,
    Entity.SERVICE: SERVICE_TRANSITIONS,
    Entity.BOOKING: BOOKING_TRANSITIONS,
}

INITIAL_STATES: dict[Entity, str] = {
    Entity.JOB: JobStatus.OPEN.value,
    Entity.APPLICATION: ApplicationStatus.PENDING.value,
    Entity.SERVICE: ServiceStatus.PENDING.value,
    Entity.BOOKING: BookingStatus.PENDING.value,
}

BOOKABLE_SERVICE_STATES = frozenset({ServiceStatus.OPEN.value, ServiceStatus.APPROVED.value})


def _value(state: str | Enum) -> str:
    return state.value if isinstance(state, Enum) else str(state)


def allowed_targets(entity: Entity, from_state: str | Enum) -> set[str]:
    source = _value(from_state)
    return {to for (frm, to) in MACHINES[entity] if frm == source}


def is_terminal(entity: Entity, state: str | Enum) -> bool:
    return not allowed_targets(entity, state)


def can_transition(
    entity: Entity,
    from_state: str | Enum,
    to_state: str | Enum,
    relations: Iterable[Relation],
) -> bool:
    drivers = MACHINES[entity].get((_value(from_state), _value(to_state)))
    if drivers is None:
        return False
    return bool(drivers & set(relations))


def require_transition(
    entity: Entity,
    from_state: str | Enum,
    to_state: str | Enum,
    relations: Iterable[Relation],
) -> None:
    source, target = _value(from_state), _value(to_state)
    drivers = MACHINES[entity].get((source, target))
    if drivers is None:
        raise StateError(
            f"invalid {entity.value} transition: {source} -> {target}",
            details={"from": source, "to": target},
        )
    if not drivers & set(relations):
        raise ForbiddenError(f"not permitted to move {entity.value} from {source} to {target}")


def is_bookable(service_status: str | Enum | None) -> bool:
    return service_status is not None and _value(service_status) in BOOKABLE_SERVICE_STATES


def application_withdrawable(application_status: str, job_status: str | None) -> bool:
    if application_status == ApplicationStatus.PENDING.value:
        return True
    return application_status == ApplicationStatus.ACCEPTED.value and job_status == JobStatus.OPEN.value


def job_relations(
    job: Mapping[str, Any],
    user_id: str,
    *,
    accepted_application: Mapping[str, Any] | None = None,
) -> set[Relation]:
    relations: set[Relation] = set()
    if job_owner_id(job) == user_id:
        relations.add(Relation.POSTER)
    if accepted_application is not None and accepted_application.get("provider_id") == user_id:
        relations.add(Relation.ACCEPTED_PROVIDER)
    return relations


def application_relations(application: Mapping[str, Any], job: Mapping[str, Any], user_id: str) -> set[Relation]:
    relations: set[Relation] = set()
    if job_owner_id(job) == user_id:
        relations.add(Relation.POSTER)
    if application.get("provider_id") == user_id:
        relations.add(Relation.PROVIDER)
    return relations


def service_relations(service: Mapping[str, Any], user_id: str, *, is_admin: bool = False) -> set[Relation]:
    relations: set[Relation] = set()
    if service.get("provider_id") == user_id:
        relations.add(Relation.SERVICE_PROVIDER)
    if is_admin:
        relations.add(Relation.ADMIN)
    return relations


def booking_relations(booking: Mapping[str, Any], service: Mapping[str, Any] | None, user_id: str) -> set[Relation]:
    relations: set[Relation] = set()
    if booking.get("client_id") == user_id:
        relations.add(Relation.CLIENT)
    if service is not None and service.get("provider_id") == user_id:
        relations.add(Relation.SERVICE_PROVIDER)
    return relations


def job_owner_id(job: Mapping[str, Any]) -> str | None:
    # Older schemas name the owner column client_id.
    return job.get("poster_id") or job.get("client_id")
