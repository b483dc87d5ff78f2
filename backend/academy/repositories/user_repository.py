from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from academy.clients.leancloud import (
    OBJECT_NOT_FOUND,
    USER_NOT_FOUND,
    LeanCloudClient,
    LeanCloudError,
)
from academy.models.enums import Role, parse_enum


@dataclass(frozen=True)
class Actor:
    id: str
    role: Role | None
    full_name: str = ""
    is_active: bool = True

    @property
    def is_elevated(self) -> bool:
        return self.role is not None and self.role.is_elevated


def _from_lc(payload: dict[str, Any]) -> Actor:
    return Actor(
        id=payload.get("objectId", ""),
        role=parse_enum(Role, payload.get("role")),
        full_name=payload.get("fullName") or payload.get("username", ""),
        is_active=bool(payload.get("isActive", True)),
    )


class UserRepository:
    def __init__(self, client: LeanCloudClient) -> None:
        self._client = client

    async def get_actor(self, user_id: str) -> Actor | None:
        try:
            payload = await self._client.get_json(f"/1.1/users/{user_id}")
        except LeanCloudError as exc:
            if exc.status_code == 404 or exc.code in {USER_NOT_FOUND, OBJECT_NOT_FOUND}:
                return None
            raise
        return _from_lc(payload)
