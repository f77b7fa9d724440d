from __future__ import annotations

import logging
from collections.abc import Iterable
from functools import lru_cache
from typing import Any

import httpx

from localfix.core.auth import Principal, Role
from localfix.core.config import get_settings
from localfix.core.session import Session
from localfix.services.errors import ConflictError, ForbiddenError, NotFoundError, StoreError, TransportError, ValidationError

logger = logging.getLogger(__name__)

SELF_SERVICE_ROLES = {Role.CLIENT.value, Role.WORKER.value}


class BaasAuthClient:
    """Thin client for the backend's auth endpoints used by sign-up and OTP."""

    def __init__(self, base_url: str | None, anon_key: str | None, timeout_seconds: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/") if base_url else None
        self.anon_key = anon_key
        self.timeout_seconds = timeout_seconds

    async def sign_up(self, *, email: str, password: str, data: dict[str, Any]) -> dict[str, Any]:
        return await self._post("/auth/v1/signup", {"email": email, "password": password, "data": data})

    async def verify_otp(self, *, phone: str, token: str, access_token: str | None = None) -> dict[str, Any]:
        return await self._post(
            "/auth/v1/verify",
            {"type": "sms", "phone": phone, "token": token},
            access_token=access_token,
        )

    async def _post(self, path: str, payload: dict[str, Any], access_token: str | None = None) -> dict[str, Any]:
        if not self.base_url or not self.anon_key:
            raise TransportError("BAAS_URL and BAAS_ANON_KEY are required")

        headers = {"apikey": self.anon_key, "Authorization": f"Bearer {access_token or self.anon_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(f"{self.base_url}{path}", json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise TransportError("auth service unavailable") from exc

        body = _json_or_empty(response)
        if response.status_code >= 500:
            raise TransportError("auth service failed", details={"status": response.status_code})
        if response.status_code >= 400:
            message = body.get("msg") or body.get("error_description") or body.get("message") or "auth request failed"
            raise ValidationError(str(message))
        return body


def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@lru_cache
def get_auth_client() -> BaasAuthClient:
    settings = get_settings()
    return BaasAuthClient(
        base_url=settings.baas_url,
        anon_key=settings.baas_anon_key,
        timeout_seconds=settings.baas_timeout_seconds,
    )


async def sign_up(repository: Any, auth_client: Any, payload: dict[str, Any]) -> dict[str, Any]:
    email = _required_text(payload, "email")
    password = _required_text(payload, "password", strip=False)
    full_name = _required_text(payload, "full_name")
    phone = _required_text(payload, "phone")
    role = _required_text(payload, "role")
    if role not in SELF_SERVICE_ROLES:
        raise ValidationError("role must be one of: client, worker")

    result = await auth_client.sign_up(
        email=email,
        password=password,
        data={"full_name": full_name, "role": role, "phone": phone},
    )
    user = result.get("user") if isinstance(result.get("user"), dict) else result
    user_id = user.get("id") if isinstance(user, dict) else None
    if not isinstance(user_id, str) or not user_id:
        return {"message": "Signup successful", "user": None}

    # Without email confirmation the backend returns a live session we can act as.
    session = Session(
        principal=Principal(subject=user_id, role=Role(role), access_token=result.get("access_token")),
        repository=repository,
    )
    try:
        await session.insert(
            "profiles",
            {"id": user_id, "email": email, "full_name": full_name, "phone": phone, "role": role},
        )
    except (StoreError, ConflictError, ForbiddenError) as exc:
        logger.error("profile creation failed user_id=%s error=%s", user_id, exc.message)
        raise ValidationError("Failed to create user profile") from exc

    logger.info("signed up user_id=%s role=%s", user_id, role)
    return {"message": "Signup successful", "user": user}


async def verify_phone(session: Session, auth_client: Any, *, phone: Any, token: Any) -> dict[str, Any]:
    if not isinstance(phone, str) or not phone.strip() or not isinstance(token, str) or not token.strip():
        raise ValidationError("Phone and token are required")

    await auth_client.verify_otp(phone=phone.strip(), token=token.strip(), access_token=session.principal.access_token)

    # phone_verified is not writable under row-level security; use the service key.
    try:
        rows = await session.as_service().update(
            "profiles",
            {"phone_verified": True},
            filters={"id": session.user_id},
        )
    except StoreError as exc:
        raise StoreError(exc.code, "Failed to update profile", details=exc.details) from exc
    if not rows:
        raise NotFoundError("profile not found")
    return {"success": True}


async def get_profile(session: Session, user_id: str | None = None) -> dict[str, Any]:
    profile = await session.get("profiles", user_id or session.user_id)
    if profile is None:
        raise NotFoundError("profile not found")
    return profile


async def fetch_profiles(session: Session, user_ids: Iterable[str | None]) -> dict[str, dict[str, Any]]:
    wanted = sorted({user_id for user_id in user_ids if user_id})
    if not wanted:
        return {}
    rows = await session.select("profiles", filters={"id": wanted})
    return {row["id"]: row for row in rows}


async def admin_stats(session: Session) -> dict[str, int]:
    session.principal.require_role(Role.ADMIN)
    return {
        "total_users": await session.count("profiles"),
        "total_jobs": await session.count("jobs"),
        "active_jobs": await session.count("jobs", filters={"status": "open"}),
        "total_job_applications": await session.count("job_applications"),
    }


def _required_text(payload: dict[str, Any], key: str, *, strip: bool = True) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{key} is required")
    return value.strip() if strip else value
