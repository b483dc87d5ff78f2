from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from academy.clients.leancloud import LeanCloudClient
from academy.models.enums import Level, SkillCategory, parse_enum


@dataclass(frozen=True)
class SkillRecord:
    id: str
    name: str
    category: SkillCategory | None
    applicable_level: Level | None
    is_active: bool
    display_order: int


def _from_lc(payload: dict[str, Any]) -> SkillRecord:
    return SkillRecord(
        id=payload.get("objectId", ""),
        name=payload.get("name", ""),
        category=parse_enum(SkillCategory, payload.get("category")),
        applicable_level=parse_enum(Level, payload.get("applicableLevel")),
        is_active=bool(payload.get("isActive", True)),
        display_order=int(payload.get("displayOrder", 0) or 0),
    )


class SkillRepository:
    def __init__(self, client: LeanCloudClient) -> None:
        self._client = client

    async def _query(self, where: dict[str, Any]) -> list[SkillRecord]:
        response = await self._client.get_json(
            "/1.1/classes/Skill",
            params={"where": json.dumps(where), "limit": 1000, "order": "displayOrder"},
        )
        results = response.get("results", [])
        return [_from_lc(item) for item in results]

    async def get_many(self, skill_ids: list[str]) -> dict[str, SkillRecord]:
        if not skill_ids:
            return {}
        skills = await self._query({"objectId": {"$in": sorted(set(skill_ids))}})
        return {skill.id: skill for skill in skills}

    async def list_active_for_level(self, level: Level) -> list[SkillRecord]:
        return await self._query({"applicableLevel": level.value, "isActive": True})
