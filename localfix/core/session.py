from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from localfix.core.auth import Principal


@dataclass(slots=True)
class Session:
    """An authenticated caller bound to the store.

    Every domain operation receives one explicitly; the caller's access token
    rides along on each store call so row-level security sees the real user.
    """

    principal: Principal
    repository: Any
    privileged: bool = False

    @property
    def user_id(self) -> str:
        return self.principal.subject

    def as_service(self) -> Session:
        return replace(self, privileged=True)

    async def select(self, table: str, **kwargs: Any) -> list[dict[str, Any]]:
        return await self.repository.select(table, **self._scope(kwargs))

    async def get(self, table: str, row_id: str, **kwargs: Any) -> dict[str, Any] | None:
        return await self.repository.get(table, row_id, **self._scope(kwargs))

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        return await self.repository.insert(table, row, **self._scope({}))

    async def update(self, table: str, values: dict[str, Any], *, filters: dict[str, Any]) -> list[dict[str, Any]]:
        return await self.repository.update(table, values, filters=filters, **self._scope({}))

    async def count(self, table: str, **kwargs: Any) -> int:
        return await self.repository.count(table, **self._scope(kwargs))

    def _scope(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        return {**kwargs, "token": self.principal.access_token, "privileged": self.privileged}
