from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

import asyncpg  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

ChangeKind = Literal["insert", "update", "delete"]
_KINDS: set[str] = {"insert", "update", "delete"}


@dataclass(slots=True, frozen=True)
class ChangeEvent:
    kind: ChangeKind
    table: str
    row: dict[str, Any]
    old_row: dict[str, Any] | None = None

    @property
    def row_id(self) -> Any:
        return self.row.get("id") if self.row else None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ChangeEvent:
        """Parse a Supabase-style change payload.

        Accepts both the trigger shape (``type``/``record``/``old_record``) and
        the realtime client shape (``eventType``/``new``/``old``).
        """
        raw_kind = payload.get("type") or payload.get("eventType") or ""
        kind = str(raw_kind).strip().lower()
        if kind not in _KINDS:
            raise ValueError(f"unsupported change kind: {raw_kind!r}")

        table = payload.get("table")
        if not isinstance(table, str) or not table:
            raise ValueError("change payload requires a table")

        record = payload.get("record", payload.get("new"))
        old_record = payload.get("old_record", payload.get("old"))
        record = record if isinstance(record, dict) and record else None
        old_record = old_record if isinstance(old_record, dict) and old_record else None

        row = record if kind != "delete" else (old_record or record)
        if row is None:
            raise ValueError(f"{kind} payload for {table} carries no row")
        return cls(kind=kind, table=table, row=dict(row), old_row=old_record)  # type: ignore[arg-type]


ChangeCallback = Callable[[ChangeEvent], None]


@dataclass(slots=True)
class Subscription:
    _detach: Callable[[], None] | None = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return self._detach is not None

    def unsubscribe(self) -> None:
        detach, self._detach = self._detach, None
        if detach is not None:
            detach()


class ChangeFanout:
    def __init__(self) -> None:
        self._callbacks: list[ChangeCallback] = []

    def subscribe(self, callback: ChangeCallback) -> Subscription:
        self._callbacks.append(callback)

        def detach() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return Subscription(detach)

    def publish(self, event: ChangeEvent) -> None:
        for callback in list(self._callbacks):
            try:
                callback(event)
            except Exception:  # pragma: no cover - subscriber bug
                logger.exception("change subscriber failed table=%s kind=%s", event.table, event.kind)


class PostgresChangeFeed:
    """Table change feed delivered through Postgres ``LISTEN/NOTIFY``.

    Table triggers publish ``{"type", "table", "record", "old_record"}`` JSON on
    the configured channel.
    """

    def __init__(self, database_url: str, channel: str) -> None:
        self.database_url = database_url
        self.channel = channel
        self._fanout = ChangeFanout()
        self._conn: asyncpg.Connection | None = None

    def subscribe(self, callback: ChangeCallback) -> Subscription:
        return self._fanout.subscribe(callback)

    async def start(self) -> None:
        if self._conn is not None:
            return
        self._conn = await asyncpg.connect(dsn=self.database_url)
        await self._conn.add_listener(self.channel, self._on_notify)
        logger.info("listening for changes channel=%s", self.channel)

    async def stop(self) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            await conn.remove_listener(self.channel, self._on_notify)
        finally:
            await conn.close()

    def _on_notify(self, _connection: Any, _pid: int, _channel: str, payload: str) -> None:
        try:
            event = ChangeEvent.from_payload(json.loads(payload))
        except (ValueError, TypeError) as exc:
            logger.warning("dropping malformed change payload: %s", exc)
            return
        self._fanout.publish(event)
