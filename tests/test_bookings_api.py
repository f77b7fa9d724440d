from __future__ import annotations

from typing import Any

from fastapi.testclient import TestClient

from conftest import bearer


def _open_service(client: TestClient) -> dict[str, Any]:
    created = client.post(
        "/services",
        json={"name": "Leak repair", "price": 80, "duration": "1h", "location": "Springfield"},
        headers=bearer("worker-token"),
    )
    assert created.status_code == 201
    service = created.json()
    assert service["status"] == "pending"

    approved = client.patch(f"/services/{service['id']}/status", json={"status": "approved"}, headers=bearer("admin-token"))
    assert approved.status_code == 200
    return approved.json()


def _book(client: TestClient, service_id: str, booking_date: str = "2024-07-01") -> dict[str, Any]:
    response = client.post(
        "/bookings",
        json={"service_id": service_id, "booking_date": booking_date, "notes": "Back door"},
        headers=bearer("client-token"),
    )
    assert response.status_code == 201
    return response.json()


def test_booking_contact_gated_until_approval(api_client: TestClient) -> None:
    service = _open_service(api_client)
    booking = _book(api_client, service["id"])
    assert booking["status"] == "pending"

    pending_view = api_client.get(f"/bookings/{booking['id']}", headers=bearer("worker-token"))
    assert pending_view.status_code == 200
    body = pending_view.json()
    assert body["client"] is None
    assert body["client_hidden"] is True
    assert body["client_id"] is None
    assert body["notes"] is None

    approved = api_client.post("/bookings/approve", json={"bookingId": booking["id"]}, headers=bearer("worker-token"))
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"

    approved_view = api_client.get(f"/bookings/{booking['id']}", headers=bearer("worker-token")).json()
    assert approved_view["client"]["full_name"] == "Cara Client"
    assert approved_view["client"]["email"] == "cara@example.com"
    assert approved_view["client_hidden"] is False


def test_client_sees_own_booking(api_client: TestClient) -> None:
    service = _open_service(api_client)
    booking = _book(api_client, service["id"])

    view = api_client.get(f"/bookings/{booking['id']}", headers=bearer("client-token")).json()
    assert view["client"]["phone"] == "+15550001"
    assert view["service"]["name"] == "Leak repair"

    assert api_client.get(f"/bookings/{booking['id']}", headers=bearer("worker2-token")).status_code == 403


def test_booking_transitions_are_role_gated(api_client: TestClient) -> None:
    service = _open_service(api_client)
    booking = _book(api_client, service["id"])

    assert api_client.post("/bookings/approve", json={"bookingId": booking["id"]}, headers=bearer("client-token")).status_code == 403
    assert api_client.post("/bookings/complete", json={"bookingId": booking["id"]}, headers=bearer("worker-token")).status_code == 400

    api_client.post("/bookings/approve", json={"bookingId": booking["id"]}, headers=bearer("worker-token"))
    completed = api_client.post("/bookings/complete", json={"bookingId": booking["id"]}, headers=bearer("worker-token"))
    assert completed.json()["status"] == "completed"

    late_cancel = api_client.post("/bookings/cancel", json={"bookingId": booking["id"]}, headers=bearer("client-token"))
    assert late_cancel.status_code == 400


def test_client_cancels_pending_booking(api_client: TestClient) -> None:
    service = _open_service(api_client)
    booking = _book(api_client, service["id"])

    cancelled = api_client.post("/bookings/cancel", json={"bookingId": booking["id"]}, headers=bearer("client-token"))
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"


def test_booking_action_requires_booking_id(api_client: TestClient) -> None:
    response = api_client.post("/bookings/approve", json={}, headers=bearer("worker-token"))
    assert response.status_code == 400
    assert response.json()["error"] == "invalid request"


def test_services_must_be_bookable(api_client: TestClient) -> None:
    created = api_client.post("/services", json={"name": "Gutter clean", "price": 40}, headers=bearer("worker-token")).json()

    response = api_client.post(
        "/bookings",
        json={"service_id": created["id"], "booking_date": "2024-07-01"},
        headers=bearer("client-token"),
    )
    assert response.status_code == 400


def test_provider_cannot_book_own_service(api_client: TestClient) -> None:
    service = _open_service(api_client)

    response = api_client.post(
        "/bookings",
        json={"service_id": service["id"], "booking_date": "2024-07-01"},
        headers=bearer("worker-token"),
    )
    assert response.status_code == 403


def test_service_status_rules(api_client: TestClient) -> None:
    created = api_client.post("/services", json={"name": "Tiling", "price": 120}, headers=bearer("worker-token")).json()

    self_approve = api_client.patch(f"/services/{created['id']}/status", json={"status": "approved"}, headers=bearer("worker-token"))
    assert self_approve.status_code == 403

    api_client.patch(f"/services/{created['id']}/status", json={"status": "approved"}, headers=bearer("admin-token"))
    opened = api_client.patch(f"/services/{created['id']}/status", json={"status": "open"}, headers=bearer("worker-token"))
    assert opened.json()["status"] == "open"
    closed = api_client.patch(f"/services/{created['id']}/status", json={"status": "closed"}, headers=bearer("worker-token"))
    assert closed.json()["status"] == "closed"

    mine = api_client.get("/services/mine", headers=bearer("worker-token")).json()
    assert [service["name"] for service in mine] == ["Tiling"]

    assert api_client.post("/services", json={"name": "x", "price": 1}, headers=bearer("client-token")).status_code == 403


def test_provider_booking_list_is_filtered_and_newest_first(api_client: TestClient) -> None:
    service = _open_service(api_client)
    older = _book(api_client, service["id"], booking_date="2024-07-01")
    newer = _book(api_client, service["id"], booking_date="2024-08-01")
    api_client.post("/bookings/approve", json={"bookingId": older["id"]}, headers=bearer("worker-token"))

    rows = api_client.get("/bookings/provider", headers=bearer("worker-token")).json()

    assert [row["id"] for row in rows] == [newer["id"], older["id"]]
    assert rows[0]["client"] is None
    assert rows[1]["client"]["email"] == "cara@example.com"
    assert api_client.get("/bookings/provider", headers=bearer("worker2-token")).json() == []
