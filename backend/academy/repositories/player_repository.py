from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from academy.clients.leancloud import OBJECT_NOT_FOUND, LeanCloudClient, LeanCloudError
from academy.models.enums import Level, parse_enum


@dataclass(frozen=True)
class GroupRecord:
    id: str
    name: str
    coach_id: str | None


@dataclass(frozen=True)
class PlayerRecord:
    id: str
    full_name: str
    level: Level | None
    is_active: bool
    group_id: str | None
    group_name: str | None = None
    coach_id: str | None = None


def _group_from_lc(payload: dict[str, Any]) -> GroupRecord:
    return GroupRecord(
        id=payload.get("objectId", ""),
        name=payload.get("name", ""),
        coach_id=payload.get("coachId") or None,
    )


def _player_from_lc(payload: dict[str, Any], group: GroupRecord | None) -> PlayerRecord:
    first = payload.get("firstName", "") or ""
    last = payload.get("lastName", "") or ""
    return PlayerRecord(
        id=payload.get("objectId", ""),
        full_name=f"{first} {last}".strip(),
        level=parse_enum(Level, payload.get("level")),
        is_active=bool(payload.get("isActive", True)),
        group_id=payload.get("groupId") or None,
        group_name=group.name if group else None,
        coach_id=group.coach_id if group else None,
    )


def _is_missing(exc: LeanCloudError) -> bool:
    return exc.status_code == 404 or exc.code == OBJECT_NOT_FOUND


class PlayerRepository:
    """Read-only view over the Player and Group classes."""

    def __init__(self, client: LeanCloudClient) -> None:
        self._client = client

    async def get_group(self, group_id: str) -> GroupRecord | None:
        try:
            payload = await self._client.get_json(f"/1.1/classes/Group/{group_id}")
        except LeanCloudError as exc:
            if _is_missing(exc):
                return None
            raise
        return _group_from_lc(payload)

    async def get_player(self, player_id: str) -> PlayerRecord | None:
        try:
            payload = await self._client.get_json(f"/1.1/classes/Player/{player_id}")
        except LeanCloudError as exc:
            if _is_missing(exc):
                return None
            raise
        group_id = payload.get("groupId")
        group = await self.get_group(group_id) if group_id else None
        return _player_from_lc(payload, group)

    async def _groups(self, where: dict[str, Any]) -> list[GroupRecord]:
        response = await self._client.get_json(
            "/1.1/classes/Group",
            params={"where": json.dumps(where), "limit": 1000},
        )
        return [_group_from_lc(item) for item in response.get("results", [])]

    async def _players(
        self, where: dict[str, Any], groups: dict[str, GroupRecord]
    ) -> list[PlayerRecord]:
        response = await self._client.get_json(
            "/1.1/classes/Player",
            params={"where": json.dumps(where), "limit": 1000},
        )
        results = response.get("results", [])
        missing = {
            item.get("groupId")
            for item in results
            if item.get("groupId") and item.get("groupId") not in groups
        }
        if missing:
            for group in await self._groups({"objectId": {"$in": sorted(missing)}}):
                groups[group.id] = group
        return [
            _player_from_lc(item, groups.get(item.get("groupId") or ""))
            for item in results
        ]

    async def get_players(self, player_ids: list[str]) -> dict[str, PlayerRecord]:
        if not player_ids:
            return {}
        players = await self._players({"objectId": {"$in": sorted(set(player_ids))}}, {})
        return {player.id: player for player in players}

    async def list_players_coached_by(self, coach_id: str) -> list[PlayerRecord]:
        groups = {group.id: group for group in await self._groups({"coachId": coach_id})}
        if not groups:
            return []
        return await self._players({"groupId": {"$in": sorted(groups)}}, groups)
