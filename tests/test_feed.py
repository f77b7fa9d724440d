from __future__ import annotations

import json

import pytest

from localfix.realtime.feed import ChangeEvent, ChangeFanout, PostgresChangeFeed


def test_parses_trigger_payload() -> None:
    event = ChangeEvent.from_payload(
        {"type": "UPDATE", "table": "jobs", "record": {"id": "J1", "status": "closed"}, "old_record": {"id": "J1"}}
    )

    assert event.kind == "update"
    assert event.table == "jobs"
    assert event.row_id == "J1"
    assert event.old_row == {"id": "J1"}


def test_parses_realtime_client_payload_and_uses_old_row_for_deletes() -> None:
    event = ChangeEvent.from_payload({"eventType": "DELETE", "table": "bookings", "new": {}, "old": {"id": "B1"}})

    assert event.kind == "delete"
    assert event.row == {"id": "B1"}


@pytest.mark.parametrize(
    "payload",
    [
        {"type": "TRUNCATE", "table": "jobs", "record": {"id": "J1"}},
        {"type": "INSERT", "record": {"id": "J1"}},
        {"type": "INSERT", "table": "jobs"},
    ],
)
def test_rejects_malformed_payloads(payload: dict) -> None:
    with pytest.raises(ValueError):
        ChangeEvent.from_payload(payload)


def test_unsubscribe_is_idempotent() -> None:
    fanout = ChangeFanout()
    received: list[ChangeEvent] = []
    subscription = fanout.subscribe(received.append)

    fanout.publish(ChangeEvent("insert", "jobs", {"id": "J1"}))
    subscription.unsubscribe()
    subscription.unsubscribe()
    fanout.publish(ChangeEvent("insert", "jobs", {"id": "J2"}))

    assert [event.row_id for event in received] == ["J1"]
    assert subscription.active is False


def test_notify_handler_fans_out_and_drops_garbage() -> None:
    feed = PostgresChangeFeed("postgresql://localhost/localfix", "localfix_changes")
    received: list[ChangeEvent] = []
    feed.subscribe(received.append)

    feed._on_notify(None, 1, "localfix_changes", "not json")
    feed._on_notify(None, 1, "localfix_changes", json.dumps({"type": "INSERT", "table": "jobs", "record": {"id": "J1"}}))

    assert [event.row_id for event in received] == ["J1"]
