from __future__ import annotations

import asyncio
from typing import Any

import pytest
from fastapi.testclient import TestClient

from localfix.core.auth import Role
from localfix.services import jobs
from localfix.services.errors import ConflictError, StateError
from localfix.services.store import InMemoryStore

from conftest import bearer, session_for

JOB_PAYLOAD = {
    "title": "Fix leaking sink",
    "description": "Kitchen sink drips constantly",
    "category": "Plumbing",
    "required_skills": ["Plumbing"],
    "budget": 5000,
    "budget_type": "fixed",
    "location": "Springfield",
    "duration": "2 days",
}


def _post_job(client: TestClient) -> dict[str, Any]:
    response = client.post("/jobs", json=JOB_PAYLOAD, headers=bearer("client-token"))
    assert response.status_code == 201
    return response.json()


def _apply(client: TestClient, job_id: str, token: str = "worker-token", rate: float = 4500) -> dict[str, Any]:
    response = client.post(f"/jobs/{job_id}/applications", json={"proposed_rate": rate}, headers=bearer(token))
    assert response.status_code == 201
    return response.json()


def test_happy_path_job_through_review(api_client: TestClient) -> None:
    job = _post_job(api_client)
    assert job["status"] == "open"
    assert job["poster_id"] == "client-1"

    application = _apply(api_client, job["id"])
    assert application["status"] == "pending"

    before = api_client.get(f"/jobs/{job['id']}", headers=bearer("worker-token")).json()
    assert before["poster"] is None
    assert before["poster_hidden"] is True

    accepted = api_client.post(f"/job-applications/{application['id']}/accept", headers=bearer("client-token"))
    assert accepted.status_code == 200
    assert accepted.json()["job"]["status"] == "in-progress"
    assert accepted.json()["application"]["status"] == "accepted"

    revealed = api_client.post(f"/job-applications/{application['id']}/reveal", headers=bearer("worker-token"))
    assert revealed.status_code == 200
    assert revealed.json()["success"] is True
    assert revealed.json()["alreadyRevealed"] is False

    after = api_client.get(f"/jobs/{job['id']}", headers=bearer("worker-token")).json()
    assert after["poster"]["phone"] == "+15550001"
    assert after["poster_hidden"] is False

    completed = api_client.post(f"/jobs/{job['id']}/complete", headers=bearer("client-token"))
    assert completed.status_code == 200
    assert completed.json()["status"] == "completed"

    review = api_client.post(
        "/reviews",
        json={"rating": 5, "job_id": job["id"], "reviewee_id": "client-1", "comment": "Clear brief"},
        headers=bearer("worker-token"),
    )
    assert review.status_code == 200
    assert review.json()["reviewer"] == {"id": "worker-1", "full_name": "Wes Worker", "avatar_url": None}

    reviews = api_client.get("/reviews", params={"jobId": job["id"]}).json()
    assert len(reviews) == 1
    assert "email" not in reviews[0]["reviewee"]


def test_reveal_is_idempotent(api_client: TestClient, store: InMemoryStore) -> None:
    job = _post_job(api_client)
    application = _apply(api_client, job["id"])
    api_client.post(f"/job-applications/{application['id']}/accept", headers=bearer("client-token"))

    first = api_client.post(f"/job-applications/{application['id']}/reveal", headers=bearer("worker-token"))
    updated_at = store.tables["job_applications"][application["id"]]["updated_at"]
    second = api_client.post(f"/job-applications/{application['id']}/reveal", headers=bearer("worker-token"))

    assert first.json()["alreadyRevealed"] is False
    assert second.status_code == 200
    assert second.json()["alreadyRevealed"] is True
    assert store.tables["job_applications"][application["id"]]["updated_at"] == updated_at


def test_reveal_requires_accepted_application_owner(api_client: TestClient) -> None:
    job = _post_job(api_client)
    application = _apply(api_client, job["id"])

    pending = api_client.post(f"/job-applications/{application['id']}/reveal", headers=bearer("worker-token"))
    assert pending.status_code == 400
    assert pending.json() == {"error": "Application must be accepted to reveal contact"}

    stranger = api_client.post(f"/job-applications/{application['id']}/reveal", headers=bearer("worker2-token"))
    assert stranger.status_code == 403

    missing = api_client.post("/job-applications/nope/reveal", headers=bearer("worker-token"))
    assert missing.status_code == 404

    anonymous = api_client.post(f"/job-applications/{application['id']}/reveal")
    assert anonymous.status_code == 401


def test_duplicate_application_conflicts(api_client: TestClient) -> None:
    job = _post_job(api_client)
    _apply(api_client, job["id"])

    duplicate = api_client.post(f"/jobs/{job['id']}/applications", json={"proposed_rate": 10}, headers=bearer("worker-token"))
    assert duplicate.status_code == 409


def test_only_workers_apply_with_positive_rate(api_client: TestClient) -> None:
    job = _post_job(api_client)

    as_client = api_client.post(f"/jobs/{job['id']}/applications", json={"proposed_rate": 10}, headers=bearer("client-token"))
    assert as_client.status_code == 403

    zero = api_client.post(f"/jobs/{job['id']}/applications", json={"proposed_rate": 0}, headers=bearer("worker-token"))
    assert zero.status_code == 400


def test_workers_cannot_post_jobs(api_client: TestClient) -> None:
    response = api_client.post("/jobs", json=JOB_PAYLOAD, headers=bearer("worker-token"))
    assert response.status_code == 403


def test_second_accept_after_winner_conflicts(api_client: TestClient) -> None:
    job = _post_job(api_client)
    first = _apply(api_client, job["id"])
    second = _apply(api_client, job["id"], token="worker2-token", rate=4000)

    assert api_client.post(f"/job-applications/{first['id']}/accept", headers=bearer("client-token")).status_code == 200
    loser = api_client.post(f"/job-applications/{second['id']}/accept", headers=bearer("client-token"))

    assert loser.status_code == 409
    listed = api_client.get(f"/jobs/{job['id']}/applications", headers=bearer("client-token")).json()
    assert {row["status"] for row in listed} == {"accepted", "pending"}


def test_applicant_listing_is_poster_only(api_client: TestClient) -> None:
    job = _post_job(api_client)
    _apply(api_client, job["id"])

    poster_view = api_client.get(f"/jobs/{job['id']}/applications", headers=bearer("client-token"))
    assert poster_view.status_code == 200
    assert poster_view.json()[0]["provider"] == {"id": "worker-1", "full_name": "Wes Worker", "avatar_url": None}

    assert api_client.get(f"/jobs/{job['id']}/applications", headers=bearer("worker2-token")).status_code == 403


def test_close_and_edit_rules(api_client: TestClient) -> None:
    job = _post_job(api_client)

    edited = api_client.patch(f"/jobs/{job['id']}", json={"budget": 6000}, headers=bearer("client-token"))
    assert edited.status_code == 200
    assert edited.json()["budget"] == 6000

    assert api_client.patch(f"/jobs/{job['id']}", json={"budget": 1}, headers=bearer("worker-token")).status_code == 403

    closed = api_client.post(f"/jobs/{job['id']}/close", headers=bearer("client-token"))
    assert closed.json()["status"] == "closed"

    reopen_attempt = api_client.post(f"/jobs/{job['id']}/complete", headers=bearer("client-token"))
    assert reopen_attempt.status_code == 400
    assert api_client.get("/jobs", headers=bearer("worker-token")).json() == []


def test_withdraw_pending_application(api_client: TestClient) -> None:
    job = _post_job(api_client)
    application = _apply(api_client, job["id"])

    withdrawn = api_client.post(f"/job-applications/{application['id']}/withdraw", headers=bearer("worker-token"))
    assert withdrawn.status_code == 200
    assert withdrawn.json()["status"] == "withdrawn"

    mine = api_client.get("/job-applications/mine", headers=bearer("worker-token")).json()
    assert mine[0]["job"]["title"] == JOB_PAYLOAD["title"]


def test_concurrent_accepts_have_exactly_one_winner(store: InMemoryStore) -> None:
    client = session_for(store, "client-1", Role.CLIENT)
    store.seed("jobs", {"id": "job-1", "poster_id": "client-1", "title": "Roof", "status": "open"})
    store.seed("job_applications", {"id": "app-1", "job_id": "job-1", "provider_id": "worker-1", "proposed_rate": 100})
    store.seed("job_applications", {"id": "app-2", "job_id": "job-1", "provider_id": "worker-2", "proposed_rate": 90})

    async def run() -> list[Any]:
        return await asyncio.gather(
            jobs.accept_application(client, "app-1"),
            jobs.accept_application(client, "app-2"),
            return_exceptions=True,
        )

    results = asyncio.run(run())

    winners = [result for result in results if isinstance(result, dict)]
    losers = [result for result in results if isinstance(result, ConflictError)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert store.tables["jobs"]["job-1"]["status"] == "in-progress"
    statuses = sorted(row["status"] for row in store.tables["job_applications"].values())
    assert statuses == ["accepted", "pending"]


def test_loser_cannot_reveal_after_concurrent_accept(store: InMemoryStore) -> None:
    client = session_for(store, "client-1", Role.CLIENT)
    store.seed("jobs", {"id": "job-1", "poster_id": "client-1", "title": "Roof", "status": "open"})
    store.seed("job_applications", {"id": "app-1", "job_id": "job-1", "provider_id": "worker-1", "proposed_rate": 100})
    store.seed("job_applications", {"id": "app-2", "job_id": "job-1", "provider_id": "worker-2", "proposed_rate": 90})

    asyncio.run(jobs.accept_application(client, "app-1"))

    with pytest.raises(ConflictError):
        asyncio.run(jobs.accept_application(client, "app-2"))

    with pytest.raises(StateError):
        asyncio.run(jobs.reveal_contact(session_for(store, "worker-2", Role.WORKER), "app-2"))
    assert store.tables["job_applications"]["app-2"]["client_contact_revealed"] is False


def test_withdrawn_application_between_read_and_claim_reopens_job(store: InMemoryStore) -> None:
    client = session_for(store, "client-1", Role.CLIENT)
    worker = session_for(store, "worker-1", Role.WORKER)
    store.seed("jobs", {"id": "job-1", "poster_id": "client-1", "title": "Roof", "status": "open"})
    store.seed("job_applications", {"id": "app-1", "job_id": "job-1", "provider_id": "worker-1", "proposed_rate": 100})

    async def run() -> list[Any]:
        return await asyncio.gather(
            jobs.accept_application(client, "app-1"),
            jobs.withdraw_application(worker, "app-1"),
            return_exceptions=True,
        )

    results = asyncio.run(run())

    application = store.tables["job_applications"]["app-1"]
    job = store.tables["jobs"]["job-1"]
    if application["status"] == "withdrawn":
        assert isinstance(results[0], ConflictError)
        assert job["status"] == "open"
    else:
        assert application["status"] == "accepted"
        assert job["status"] == "in-progress"
