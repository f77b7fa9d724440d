from __future__ import annotations

import logging
from collections.abc import Mapping
from functools import lru_cache
from typing import Any

import httpx

from localfix.core.config import get_settings
from localfix.services.errors import TransportError, raise_for_store_error
from localfix.services.store import InMemoryStore

logger = logging.getLogger(__name__)

Filters = Mapping[str, Any]


class BaasRepository:
    """PostgREST adapter for the managed backend.

    User-scoped calls send the caller's access token so row-level security
    applies; privileged calls use the service key and bypass it.
    """

    def __init__(
        self,
        base_url: str | None,
        anon_key: str | None,
        service_key: str | None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/") if base_url else None
        self.anon_key = anon_key
        self.service_key = service_key
        self.timeout_seconds = timeout_seconds
        self._client: httpx.AsyncClient | None = None

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def select(
        self,
        table: str,
        *,
        filters: Filters | None = None,
        any_of: Filters | None = None,
        columns: str = "*",
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
        token: str | None = None,
        privileged: bool = False,
    ) -> list[dict[str, Any]]:
        params = self._build_params(filters=filters, any_of=any_of)
        params.append(("select", columns))
        if order_by:
            params.append(("order", f"{order_by}.{'desc' if descending else 'asc'}.nullslast"))
        if limit is not None:
            params.append(("limit", str(limit)))

        response = await self._request("GET", table, params=params, token=token, privileged=privileged)
        return list(response.json() or [])

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
        response = await self._request(
            "POST",
            table,
            json=[dict(row)],
            headers={"Prefer": "return=representation"},
            token=token,
            privileged=privileged,
        )
        rows = response.json() or []
        return rows[0] if rows else dict(row)

    async def update(
        self,
        table: str,
        values: Mapping[str, Any],
        *,
        filters: Filters,
        token: str | None = None,
        privileged: bool = False,
    ) -> list[dict[str, Any]]:
        if not filters:
            raise ValueError("update requires at least one filter")
        response = await self._request(
            "PATCH",
            table,
            params=self._build_params(filters=filters),
            json=dict(values),
            headers={"Prefer": "return=representation"},
            token=token,
            privileged=privileged,
        )
        return list(response.json() or [])

    async def delete(
        self,
        table: str,
        *,
        filters: Filters,
        token: str | None = None,
        privileged: bool = False,
    ) -> list[dict[str, Any]]:
        if not filters:
            raise ValueError("delete requires at least one filter")
        response = await self._request(
            "DELETE",
            table,
            params=self._build_params(filters=filters),
            headers={"Prefer": "return=representation"},
            token=token,
            privileged=privileged,
        )
        return list(response.json() or [])

    async def count(
        self,
        table: str,
        *,
        filters: Filters | None = None,
        token: str | None = None,
        privileged: bool = False,
    ) -> int:
        response = await self._request(
            "HEAD",
            table,
            params=self._build_params(filters=filters),
            headers={"Prefer": "count=exact"},
            token=token,
            privileged=privileged,
        )
        content_range = response.headers.get("content-range", "")
        _, _, total = content_range.partition("/")
        try:
            return int(total)
        except ValueError:
            return 0

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: list[tuple[str, str]] | None = None,
        json: Any | None = None,
        headers: dict[str, str] | None = None,
        token: str | None,
        privileged: bool,
    ) -> httpx.Response:
        client = self._get_client()
        request_headers = self._auth_headers(token=token, privileged=privileged)
        if headers:
            request_headers.update(headers)

        try:
            response = await client.request(
                method,
                f"/rest/v1/{table}",
                params=params,
                json=json,
                headers=request_headers,
            )
        except httpx.HTTPError as exc:
            logger.warning("store request failed method=%s table=%s error=%s", method, table, exc)
            raise TransportError("backend store unavailable", details={"table": table}) from exc

        if response.status_code >= 400:
            self._raise_for_response(response, table=table)
        return response

    def _get_client(self) -> httpx.AsyncClient:
        if not self.base_url or not self.anon_key:
            raise TransportError("BAAS_URL and BAAS_ANON_KEY are required")

        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout_seconds)
        return self._client

    def _auth_headers(self, *, token: str | None, privileged: bool) -> dict[str, str]:
        if privileged:
            if not self.service_key:
                raise TransportError("BAAS_SERVICE_KEY is required for privileged writes")
            return {"apikey": self.service_key, "Authorization": f"Bearer {self.service_key}"}
        if not self.anon_key:
            raise TransportError("BAAS_ANON_KEY is required")
        return {"apikey": self.anon_key, "Authorization": f"Bearer {token or self.anon_key}"}

    @staticmethod
    def _raise_for_response(response: httpx.Response, *, table: str) -> None:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        code = body.get("code")
        message = body.get("message") or f"store request failed with status {response.status_code}"
        logger.info("store rejected request table=%s status=%s code=%s", table, response.status_code, code)
        if response.status_code >= 500 and code is None:
            raise TransportError(message, details={"table": table, "status": response.status_code})
        raise_for_store_error(code, message, details=body.get("details"), hint=body.get("hint"))

    @staticmethod
    def _build_params(*, filters: Filters | None = None, any_of: Filters | None = None) -> list[tuple[str, str]]:
        params: list[tuple[str, str]] = []
        for column, value in (filters or {}).items():
            params.append((column, _encode_filter(value)))
        if any_of:
            clauses = ",".join(f"{column}.{_encode_filter(value, quoted=True)}" for column, value in any_of.items())
            params.append(("or", f"({clauses})"))
        return params


def _encode_filter(value: Any, *, quoted: bool = False) -> str:
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return f"is.{str(value).lower()}"
    if isinstance(value, (list, tuple, set, frozenset)):
        return f"in.({','.join(_quote_item(item) for item in value)})"
    # Values inside or=(...) share its comma and parenthesis syntax.
    return f"eq.{_quote_item(value)}" if quoted else f"eq.{value}"


def _quote_item(value: Any) -> str:
    text = str(value)
    if any(char in text for char in ',()"\\'):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


@lru_cache
def get_repository() -> BaasRepository | InMemoryStore:
    settings = get_settings()
    if settings.store_backend == "memory":
        return InMemoryStore()
    return BaasRepository(
        base_url=settings.baas_url,
        anon_key=settings.baas_anon_key,
        service_key=settings.baas_service_key,
        timeout_seconds=settings.baas_timeout_seconds,
    )
