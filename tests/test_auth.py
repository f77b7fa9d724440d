from __future__ import annotations

import asyncio
import base64
import json
from typing import Any

import pytest
from fastapi.testclient import TestClient

import localfix.core.security as security
from localfix.core.auth import (
    REVIEW_EXTRACTORS,
    Credentials,
    Principal,
    Role,
    candidate_tokens,
    resolve_role,
    token_from_authorization,
    token_from_body,
    token_from_cookie,
)
from localfix.core.config import Settings
from localfix.services.errors import AuthError, ForbiddenError


def test_cookie_extractor_handles_session_shapes() -> None:
    session_json = json.dumps({"access_token": "from-object", "refresh_token": "r"})
    encoded = "base64-" + base64.b64encode(json.dumps(["from-array", "refresh"]).encode()).decode()

    assert token_from_cookie(Credentials(cookie="raw-token")) == "raw-token"
    assert token_from_cookie(Credentials(cookie=session_json)) == "from-object"
    assert token_from_cookie(Credentials(cookie=encoded)) == "from-array"
    assert token_from_cookie(Credentials(cookie="{not json")) is None
    assert token_from_cookie(Credentials()) is None


def test_authorization_and_body_extractors() -> None:
    assert token_from_authorization(Credentials(authorization="Bearer abc")) == "abc"
    assert token_from_authorization(Credentials(authorization="Basic abc")) is None
    assert token_from_body(Credentials(body={"accessToken": " tok "})) == "tok"
    assert token_from_body(Credentials(body={"accessToken": 12})) is None


def test_candidate_tokens_keep_extractor_order_without_duplicates() -> None:
    credentials = Credentials(cookie="same", authorization="Bearer same", body={"accessToken": "body"})
    assert candidate_tokens(credentials, REVIEW_EXTRACTORS) == ["same", "body"]


def test_role_resolution_only_trusts_app_metadata_for_admin() -> None:
    assert resolve_role({"app_metadata": {"role": "admin"}}) is Role.ADMIN
    assert resolve_role({"user_metadata": {"role": "admin"}}) is Role.CLIENT
    assert resolve_role({"user_metadata": {"role": "worker"}}) is Role.WORKER
    assert resolve_role({}) is Role.CLIENT


def test_require_role_lets_admin_through() -> None:
    Principal(subject="a", role=Role.ADMIN).require_role(Role.WORKER)
    with pytest.raises(ForbiddenError):
        Principal(subject="c", role=Role.CLIENT).require_role(Role.WORKER)


def test_first_verified_token_wins(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[str] = []

    async def _fake_fetch(*, token: str, **_: Any) -> dict[str, Any] | None:
        seen.append(token)
        return {"id": "worker-1", "user_metadata": {"role": "worker"}} if token == "good" else None

    monkeypatch.setattr(security, "_fetch_baas_user", _fake_fetch)
    settings = Settings(BAAS_URL="https://example.supabase.co", BAAS_ANON_KEY="anon")

    principal = asyncio.run(
        security.resolve_principal(Credentials(cookie="stale", authorization="Bearer good"), settings)
    )

    assert seen == ["stale", "good"]
    assert principal.subject == "worker-1"
    assert principal.role is Role.WORKER
    assert principal.access_token == "good"


def test_no_verified_token_is_unauthorized(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _fake_fetch(**_: Any) -> None:
        return None

    monkeypatch.setattr(security, "_fetch_baas_user", _fake_fetch)
    settings = Settings(BAAS_URL="https://example.supabase.co", BAAS_ANON_KEY="anon")

    with pytest.raises(AuthError):
        asyncio.run(security.resolve_principal(Credentials(authorization="Bearer bad"), settings))


def test_session_cookie_authenticates_requests(api_client: TestClient) -> None:
    encoded = base64.b64encode(json.dumps({"access_token": "worker-token"}).encode()).decode()
    api_client.cookies.set("sb-access-token", f"base64-{encoded}")

    response = api_client.get("/profiles/me")

    assert response.status_code == 200
    assert response.json()["full_name"] == "Wes Worker"
