from __future__ import annotations

import asyncio
import copy
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from localfix.realtime.feed import ChangeCallback, ChangeEvent, ChangeFanout, Subscription
from localfix.services.errors import CHECK_VIOLATION, UNIQUE_VIOLATION, UNKNOWN_COLUMN, raise_for_store_error

TABLE_COLUMNS: dict[str, set[str]] = {
    "profiles": {
        "id", "role", "full_name", "email", "phone", "avatar_url", "phone_verified", "created_at", "updated_at",
    },
    "jobs": {
        "id", "poster_id", "title", "description", "category", "required_skills", "budget", "budget_type",
        "location", "duration", "status", "created_at", "updated_at",
    },
    "job_applications": {
        "id", "job_id", "provider_id", "proposed_rate", "status", "client_contact_revealed", "created_at",
        "updated_at",
    },
    "services": {
        "id", "provider_id", "name", "description", "price", "duration", "location", "status", "created_at",
        "updated_at",
    },
    "bookings": {
        "id", "service_id", "client_id", "booking_date", "status", "notes", "created_at", "updated_at",
    },
    "reviews": {
        "id", "reviewer_id", "reviewee_id", "job_id", "booking_id", "rating", "comment", "created_at",
    },
}

CHECK_CONSTRAINTS: dict[str, dict[str, set[Any]]] = {
    "profiles": {"role": {"client", "worker", "admin"}},
    "jobs": {
        "budget_type": {"fixed", "hourly"},
        "status": {"open", "in-progress", "completed", "closed"},
    },
    "job_applications": {"status": {"pending", "accepted", "rejected", "withdrawn"}},
    "services": {"status": {"pending", "open", "closed", "approved"}},
    "bookings": {"status": {"pending", "approved", "completed", "cancelled", "rejected"}},
    "reviews": {"rating": {1, 2, 3, 4, 5}},
}

UNIQUE_KEYS: dict[str, list[tuple[str, ...]]] = {
    "job_applications": [("job_id", "provider_id")],
    "reviews": [("reviewer_id", "reviewee_id", "job_id"), ("reviewer_id", "reviewee_id", "booking_id")],
}

COLUMN_DEFAULTS: dict[str, dict[str, Any]] = {
    "profiles": {"phone_verified": False},
    "jobs": {"budget_type": "fixed", "status": "open"},
    "job_applications": {"status": "pending", "client_contact_revealed": False},
    "services": {"status": "pending"},
    "bookings": {"status": "pending"},
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryStore:
    """Process-local store with the same surface as ``BaasRepository``.

    Mirrors the backend's observable failure modes: unknown columns, check
    constraints and unique keys raise the same coded errors, and every write is
    published as a change event.
    """

    def __init__(
        self,
        columns: Mapping[str, set[str]] | None = None,
        check_constraints: Mapping[str, dict[str, set[Any]]] | None = None,
    ) -> None:
        self.columns = {table: set(cols) for table, cols in (columns or TABLE_COLUMNS).items()}
        self.check_constraints = dict(CHECK_CONSTRAINTS if check_constraints is None else check_constraints)
        self.tables: dict[str, dict[str, dict[str, Any]]] = {table: {} for table in self.columns}
        self.calls: list[tuple[str, str]] = []
        self._fanout = ChangeFanout()

    async def close(self) -> None:
        return None

    def subscribe(self, callback: ChangeCallback) -> Subscription:
        return self._fanout.subscribe(callback)

    def seed(self, table: str, row: Mapping[str, Any]) -> dict[str, Any]:
        """Insert a row directly, skipping schema checks and change events."""
        record = self._with_defaults(table, dict(row))
        self._table(table)[record["id"]] = record
        return copy.deepcopy(record)

    async def select(
        self,
        table: str,
        *,
        filters: Mapping[str, Any] | None = None,
        any_of: Mapping[str, Any] | None = None,
        columns: str = "*",
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
        token: str | None = None,
        privileged: bool = False,
    ) -> list[dict[str, Any]]:
        await asyncio.sleep(0)
        self.calls.append(("select", table))
        rows = [row for row in self._table(table).values() if _matches(row, filters, any_of)]
        if order_by:
            present = [row for row in rows if row.get(order_by) is not None]
            missing = [row for row in rows if row.get(order_by) is None]
            present.sort(key=lambda row: row[order_by], reverse=descending)
            rows = present + missing
        if limit is not None:
            rows = rows[:limit]
        return [_project(row, columns) for row in rows]

    async def get(self, table: str, row_id: str, **kwargs: Any) -> dict[str, Any] | None:
        rows = await self.select(table, filters={"id": row_id}, limit=1, **kwargs)
        return rows[0] if rows else None

    async def insert(
        self,
        table: str,
        row: Mapping[str, Any],
        *,
        token: str | None = None,
        privileged: bool = False,
    ) -> dict[str, Any]:
        await asyncio.sleep(0)
        self.calls.append(("insert", table))
        self._check_columns(table, row)
        record = self._with_defaults(table, dict(row))
        self._check_constraints(table, record)
        self._check_unique(table, record)
        self._table(table)[record["id"]] = record
        self._fanout.publish(ChangeEvent(kind="insert", table=table, row=copy.deepcopy(record)))
        return copy.deepcopy(record)

    async def update(
        self,
        table: str,
        values: Mapping[str, Any],
        *,
        filters: Mapping[str, Any],
        token: str | None = None,
        privileged: bool = False,
    ) -> list[dict[str, Any]]:
        if not filters:
            raise ValueError("update requires at least one filter")
        await asyncio.sleep(0)
        self.calls.append(("update", table))
        self._check_columns(table, values)

        updated: list[dict[str, Any]] = []
        for row_id, row in list(self._table(table).items()):
            if not _matches(row, filters, None):
                continue
            candidate = {**row, **values}
            if "updated_at" in self.columns[table] and "updated_at" not in values:
                candidate["updated_at"] = _now()
            self._check_constraints(table, candidate)
            self._check_unique(table, candidate, ignore_id=row_id)
            self._table(table)[row_id] = candidate
            self._fanout.publish(
                ChangeEvent(kind="update", table=table, row=copy.deepcopy(candidate), old_row=copy.deepcopy(row))
            )
            updated.append(copy.deepcopy(candidate))
        return updated

    async def delete(
        self,
        table: str,
        *,
        filters: Mapping[str, Any],
        token: str | None = None,
        privileged: bool = False,
    ) -> list[dict[str, Any]]:
        if not filters:
            raise ValueError("delete requires at least one filter")
        await asyncio.sleep(0)
        self.calls.append(("delete", table))
        removed: list[dict[str, Any]] = []
        for row_id, row in list(self._table(table).items()):
            if _matches(row, filters, None):
                del self._table(table)[row_id]
                self._fanout.publish(ChangeEvent(kind="delete", table=table, row=copy.deepcopy(row), old_row=row))
                removed.append(copy.deepcopy(row))
        return removed

    async def count(
        self,
        table: str,
        *,
        filters: Mapping[str, Any] | None = None,
        token: str | None = None,
        privileged: bool = False,
    ) -> int:
        await asyncio.sleep(0)
        self.calls.append(("count", table))
        return sum(1 for row in self._table(table).values() if _matches(row, filters, None))

    def _table(self, table: str) -> dict[str, dict[str, Any]]:
        if table not in self.tables:
            raise_for_store_error("42P01", f'relation "public.{table}" does not exist')
        return self.tables[table]

    def _check_columns(self, table: str, row: Mapping[str, Any]) -> None:
        known = self.columns.get(table, set())
        for column in row:
            if column not in known:
                raise_for_store_error(
                    UNKNOWN_COLUMN,
                    f"Could not find the '{column}' column of '{table}' in the schema cache",
                )

    def _check_constraints(self, table: str, row: Mapping[str, Any]) -> None:
        for column, allowed in self.check_constraints.get(table, {}).items():
            if column not in self.columns.get(table, set()):
                continue
            value = row.get(column)
            if value is not None and value not in allowed:
                raise_for_store_error(
                    CHECK_VIOLATION,
                    f'new row for relation "{table}" violates check constraint "{table}_{column}_check"',
                )

    def _check_unique(self, table: str, row: Mapping[str, Any], ignore_id: str | None = None) -> None:
        if row.get("id") in self._table(table) and row.get("id") != ignore_id:
            raise_for_store_error(UNIQUE_VIOLATION, f'duplicate key value violates unique constraint "{table}_pkey"')
        for key in UNIQUE_KEYS.get(table, []):
            values = tuple(row.get(column) for column in key)
            if any(value is None for value in values):
                continue
            for existing_id, existing in self._table(table).items():
                if existing_id == ignore_id:
                    continue
                if tuple(existing.get(column) for column in key) == values:
                    raise_for_store_error(
                        UNIQUE_VIOLATION,
                        f'duplicate key value violates unique constraint "{table}_{"_".join(key)}_key"',
                    )

    def _with_defaults(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        known = self.columns.get(table, set())
        record = {column: value for column, value in COLUMN_DEFAULTS.get(table, {}).items() if column in known}
        record.update(row)
        record.setdefault("id", str(uuid4()))
        now = _now()
        for column in ("created_at", "updated_at"):
            if column in known:
                record.setdefault(column, now)
        return record


def _matches(row: Mapping[str, Any], filters: Mapping[str, Any] | None, any_of: Mapping[str, Any] | None) -> bool:
    for column, expected in (filters or {}).items():
        if not _value_matches(row.get(column), expected):
            return False
    if any_of and not any(_value_matches(row.get(column), expected) for column, expected in any_of.items()):
        return False
    return True


def _value_matches(actual: Any, expected: Any) -> bool:
    if isinstance(expected, (list, tuple, set, frozenset)):
        return actual in expected
    return actual == expected


def _project(row: Mapping[str, Any], columns: str) -> dict[str, Any]:
    if columns.strip() == "*":
        return copy.deepcopy(dict(row))
    wanted = [column.strip() for column in columns.split(",") if column.strip()]
    return {column: copy.deepcopy(row.get(column)) for column in wanted}
