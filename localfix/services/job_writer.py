"""Job inserts that survive a drifting ``jobs`` schema.

Deployed schemas have disagreed on the owner column name (``poster_id`` vs
``client_id``), on whether ``required_skills`` exists and on the allowed
``budget_type`` values. Instead of failing the post, the writer walks a fixed
table of rewrites keyed on the store's error code, each usable once.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from localfix.services.errors import CHECK_VIOLATION, UNKNOWN_COLUMN, SchemaDriftError, StoreError

logger = logging.getLogger(__name__)

MAX_STORE_CALLS = 4
ALLOWED_BUDGET_TYPES = ("fixed", "hourly")

Payload = dict[str, Any]


@dataclass(slots=True, frozen=True)
class DriftRule:
    name: str
    group: str
    detector: Callable[[StoreError, Payload], bool]
    rewrite: Callable[[Payload], Payload]


def _unknown_column(column: str) -> Callable[[StoreError, Payload], bool]:
    def detect(error: StoreError, payload: Payload) -> bool:
        return error.code == UNKNOWN_COLUMN and f"'{column}'" in error.message and column in payload

    return detect


def _check_failed(column: str) -> Callable[[StoreError, Payload], bool]:
    def detect(error: StoreError, payload: Payload) -> bool:
        return error.code == CHECK_VIOLATION and column in error.message and column in payload

    return detect


def _drop(column: str) -> Callable[[Payload], Payload]:
    def rewrite(payload: Payload) -> Payload:
        return {key: value for key, value in payload.items() if key != column}

    return rewrite


def _rename(source: str, target: str) -> Callable[[Payload], Payload]:
    def rewrite(payload: Payload) -> Payload:
        renamed = {key: value for key, value in payload.items() if key != source}
        renamed[target] = payload[source]
        return renamed

    return rewrite


DRIFT_RULES: tuple[DriftRule, ...] = (
    DriftRule("drop_required_skills", "required_skills", _unknown_column("required_skills"), _drop("required_skills")),
    # Both renames share a group so one can never undo the other.
    DriftRule("poster_id_to_client_id", "owner_column", _unknown_column("poster_id"), _rename("poster_id", "client_id")),
    DriftRule("client_id_to_poster_id", "owner_column", _unknown_column("client_id"), _rename("client_id", "poster_id")),
    DriftRule("drop_budget_type", "budget_type", _check_failed("budget_type"), _drop("budget_type")),
)


def sanitize(payload: Payload) -> Payload:
    cleaned = dict(payload)
    if "budget_type" in cleaned and cleaned["budget_type"] not in ALLOWED_BUDGET_TYPES:
        cleaned["budget_type"] = "fixed"
    if "budget" in cleaned:
        cleaned["budget"] = _coerce_budget(cleaned["budget"])
    return cleaned


def _coerce_budget(value: Any) -> float | int:
    if isinstance(value, bool):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number) or number < 0:
        return 0
    return int(number) if number.is_integer() else number


@dataclass(slots=True)
class WriteOutcome:
    row: dict[str, Any]
    attempts: int
    applied_rules: list[str] = field(default_factory=list)


class JobWriter:
    def __init__(self, rules: tuple[DriftRule, ...] = DRIFT_RULES, max_calls: int = MAX_STORE_CALLS) -> None:
        self.rules = rules
        self.max_calls = max_calls

    async def insert(self, session: Any, payload: Payload) -> WriteOutcome:
        current = dict(payload)
        consumed: set[str] = set()
        applied: list[str] = []
        attempts = 0

        while True:
            attempts += 1
            try:
                row = await session.insert("jobs", current)
            except StoreError as exc:
                rule = self._match(exc, current, consumed)
                if rule is None or attempts >= self.max_calls:
                    logger.warning(
                        "job insert rejected code=%s attempts=%s applied=%s",
                        exc.code,
                        attempts,
                        applied,
                    )
                    raise SchemaDriftError(
                        "failed to create job",
                        details={"code": exc.code, "message": exc.message, "applied_rules": applied},
                    ) from exc

                logger.info("job insert schema drift code=%s rule=%s", exc.code, rule.name)
                consumed.add(rule.group)
                applied.append(rule.name)
                current = sanitize(rule.rewrite(current))
                continue

            return WriteOutcome(row=row, attempts=attempts, applied_rules=applied)

    def _match(self, error: StoreError, payload: Payload, consumed: set[str]) -> DriftRule | None:
        for rule in self.rules:
            if rule.group in consumed:
                continue
            if rule.detector(error, payload):
                return rule
        return None
