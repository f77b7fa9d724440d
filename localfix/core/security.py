import json
import logging
from collections.abc import Sequence
from typing import Any

import httpx
from fastapi import Depends, Request

from localfix.core.auth import (
    DEFAULT_EXTRACTORS,
    REVIEW_EXTRACTORS,
    CredentialExtractor,
    Credentials,
    Principal,
    candidate_tokens,
    resolve_role,
)
from localfix.core.config import Settings, get_settings
from localfix.core.session import Session
from localfix.services.errors import AuthError, TransportError
from localfix.services.repository import get_repository

logger = logging.getLogger(__name__)


async def resolve_principal(
    credentials: Credentials,
    settings: Settings,
    extractors: Sequence[CredentialExtractor] = DEFAULT_EXTRACTORS,
) -> Principal:
    """Return the principal for the first candidate token the BaaS accepts."""
    tokens = candidate_tokens(credentials, extractors)
    if not tokens:
        raise AuthError("Unauthorized")

    if not settings.baas_url or not settings.baas_anon_key:
        raise TransportError("BaaS auth is not configured")

    for token in tokens:
        user = await _fetch_baas_user(
            baas_url=settings.baas_url,
            anon_key=settings.baas_anon_key,
            token=token,
            timeout_seconds=settings.baas_timeout_seconds,
        )
        if user is None:
            continue
        user_id = user.get("id")
        if not isinstance(user_id, str) or not user_id:
            continue
        email = user.get("email")
        return Principal(
            subject=user_id,
            role=resolve_role(user),
            access_token=token,
            email=email if isinstance(email, str) else None,
        )

    raise AuthError("Unauthorized")


async def _fetch_baas_user(
    *,
    baas_url: str,
    anon_key: str,
    token: str,
    timeout_seconds: float,
) -> dict[str, Any] | None:
    headers = {
        "Authorization": f"Bearer {token}",
        "apikey": anon_key,
    }
    url = f"{baas_url.rstrip('/')}/auth/v1/user"

    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            response = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:  # pragma: no cover - network dependent
        raise TransportError("BaaS auth verification unavailable") from exc

    if response.status_code in {401, 403}:
        return None
    if response.status_code != 200:
        raise TransportError("BaaS auth verification failed", details={"status": response.status_code})

    return response.json()


def _credentials(request: Request, settings: Settings, body: dict[str, Any] | None = None) -> Credentials:
    return Credentials(
        cookie=request.cookies.get(settings.session_cookie_name),
        authorization=request.headers.get("Authorization"),
        body=body,
    )


async def get_principal(request: Request, settings: Settings = Depends(get_settings)) -> Principal:
    return await resolve_principal(_credentials(request, settings), settings)


async def get_review_principal(request: Request, settings: Settings = Depends(get_settings)) -> Principal:
    body: dict[str, Any] | None = None
    if request.method == "POST":
        try:
            parsed = json.loads(await request.body() or b"null")
        except ValueError:
            parsed = None
        body = parsed if isinstance(parsed, dict) else None
    return await resolve_principal(_credentials(request, settings, body), settings, REVIEW_EXTRACTORS)


async def get_session(principal: Principal = Depends(get_principal), repository=Depends(get_repository)) -> Session:
    return Session(principal=principal, repository=repository)


async def get_review_session(
    principal: Principal = Depends(get_review_principal),
    repository=Depends(get_repository),
) -> Session:
    return Session(principal=principal, repository=repository)
