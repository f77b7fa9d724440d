from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from localfix.services.errors import ForbiddenError


class Role(str, Enum):
    CLIENT = "client"
    WORKER = "worker"
    ADMIN = "admin"


@dataclass(slots=True)
class Principal:
    subject: str
    role: Role
    access_token: str | None = None
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def require_role(self, *roles: Role) -> None:
        if self.role in roles or self.is_admin:
            return
        allowed = ", ".join(role.value for role in roles)
        raise ForbiddenError(f"requires role: {allowed}")


@dataclass(slots=True)
class Credentials:
    """Raw credential sources of one request."""

    cookie: str | None = None
    authorization: str | None = None
    body: dict[str, Any] | None = None


CredentialExtractor = Callable[[Credentials], str | None]


def token_from_cookie(credentials: Credentials) -> str | None:
    raw = (credentials.cookie or "").strip()
    if not raw:
        return None

    if raw.startswith("base64-"):
        try:
            raw = base64.b64decode(raw[len("base64-") :]).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return None

    if raw[0] not in "[{":
        return raw

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if isinstance(parsed, dict):
        token = parsed.get("access_token")
    elif isinstance(parsed, list) and parsed:
        token = parsed[0]
    else:
        return None
    return token if isinstance(token, str) and token else None


def token_from_authorization(credentials: Credentials) -> str | None:
    authorization = credentials.authorization or ""
    if not authorization.lower().startswith("bearer "):
        return None
    token = authorization.split(" ", maxsplit=1)[1].strip()
    return token or None


def token_from_body(credentials: Credentials) -> str | None:
    if not isinstance(credentials.body, dict):
        return None
    token = credentials.body.get("accessToken")
    if isinstance(token, str) and token.strip():
        return token.strip()
    return None


DEFAULT_EXTRACTORS: tuple[CredentialExtractor, ...] = (token_from_cookie, token_from_authorization)
REVIEW_EXTRACTORS: tuple[CredentialExtractor, ...] = (*DEFAULT_EXTRACTORS, token_from_body)


def candidate_tokens(credentials: Credentials, extractors: Iterable[CredentialExtractor]) -> list[str]:
    tokens: list[str] = []
    for extractor in extractors:
        token = extractor(credentials)
        if token and token not in tokens:
            tokens.append(token)
    return tokens


def resolve_role(user: dict[str, Any]) -> Role:
    app_metadata = user.get("app_metadata")
    if isinstance(app_metadata, dict):
        role = app_metadata.get("role")
        if isinstance(role, str) and role in Role._value2member_map_:
            return Role(role)

    # Self-declared roles from sign-up metadata never grant admin.
    user_metadata = user.get("user_metadata")
    if isinstance(user_metadata, dict):
        role = user_metadata.get("role")
        if role in {Role.CLIENT.value, Role.WORKER.value}:
            return Role(role)

    return Role.CLIENT
