from __future__ import annotations

from typing import AsyncIterator

from fastapi import Depends, Header, HTTPException, status

from academy.clients.leancloud import LeanCloudClient
from academy.config import load_settings
from academy.repositories.user_repository import Actor, UserRepository


def leancloud_client() -> LeanCloudClient:
    settings = load_settings()
    return LeanCloudClient(
        app_id=settings.lean_app_id,
        app_key=settings.lean_app_key,
        master_key=settings.lean_master_key,
        server_url=settings.lean_server_url,
    )


async def _user_repo() -> AsyncIterator[UserRepository]:
    client = leancloud_client()
    try:
        yield UserRepository(client)
    finally:
        await client.close()


async def require_actor(
    x_actor_id: str | None = Header(None, alias="X-Actor-Id"),
    repo: UserRepository = Depends(_user_repo),
) -> Actor:
    if not x_actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing actor identity",
        )
    actor = await repo.get_actor(x_actor_id)
    if actor is None or not actor.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown or inactive actor",
        )
    return actor


CurrentActor = Depends(require_actor)
