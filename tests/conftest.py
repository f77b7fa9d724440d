from __future__ import annotations

from typing import Any

import pytest
from fastapi.testclient import TestClient

import localfix.core.security as security
from localfix.core.auth import Principal, Role
from localfix.core.config import get_settings
from localfix.core.session import Session
from localfix.main import app
from localfix.services.repository import get_repository
from localfix.services.store import InMemoryStore

USERS: dict[str, dict[str, Any]] = {
    "client-token": {"id": "client-1", "email": "cara@example.com", "user_metadata": {"role": "client"}},
    "worker-token": {"id": "worker-1", "email": "wes@example.com", "user_metadata": {"role": "worker"}},
    "worker2-token": {"id": "worker-2", "email": "wren@example.com", "user_metadata": {"role": "worker"}},
    "admin-token": {"id": "admin-1", "email": "ada@example.com", "app_metadata": {"role": "admin"}},
}

PROFILES: list[dict[str, Any]] = [
    {"id": "client-1", "role": "client", "full_name": "Cara Client", "email": "cara@example.com", "phone": "+15550001"},
    {"id": "worker-1", "role": "worker", "full_name": "Wes Worker", "email": "wes@example.com", "phone": "+15550002"},
    {"id": "worker-2", "role": "worker", "full_name": "Wren Worker", "email": "wren@example.com", "phone": "+15550003"},
    {"id": "admin-1", "role": "admin", "full_name": "Ada Admin", "email": "ada@example.com", "phone": "+15550004"},
]


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def session_for(store: InMemoryStore, user_id: str, role: Role) -> Session:
    return Session(principal=Principal(subject=user_id, role=role, access_token=f"{user_id}-token"), repository=store)


@pytest.fixture
def store() -> InMemoryStore:
    memory = InMemoryStore()
    for profile in PROFILES:
        memory.seed("profiles", profile)
    return memory


@pytest.fixture
def api_client(monkeypatch: pytest.MonkeyPatch, store: InMemoryStore) -> TestClient:
    monkeypatch.setenv("BAAS_URL", "https://example.supabase.co")
    monkeypatch.setenv("BAAS_ANON_KEY", "anon-key")
    get_settings.cache_clear()

    async def _fake_fetch(*, token: str, **_: Any) -> dict[str, Any] | None:
        return USERS.get(token)

    monkeypatch.setattr(security, "_fetch_baas_user", _fake_fetch)
    app.dependency_overrides[get_repository] = lambda: store

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
    get_settings.cache_clear()
