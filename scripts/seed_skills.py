from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

PROJECT_ROOT = Path(__file__).resolve().parents[1]
BACKEND_ROOT = PROJECT_ROOT / "backend"
sys.path.append(str(BACKEND_ROOT))

from academy.clients.leancloud import DUPLICATE_VALUE, LeanCloudClient, LeanCloudError
from academy.config import SettingsError, load_settings
from academy.models.enums import Level, SkillCategory, parse_enum


def _read_json(path: Path) -> list[dict[str, Any]]:
    try:
        data = json.loads(path.read_text())
    except FileNotFoundError as exc:
        raise ValueError(f"File not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(data, list):
        raise ValueError(f"Expected a list in {path}")
    if not all(isinstance(item, dict) for item in data):
        raise ValueError(f"Expected a list of objects in {path}")
    return data


def _require_fields(item: dict[str, Any], fields: list[str], context: str) -> None:
    missing = [field for field in fields if not item.get(field)]
    if missing:
        raise ValueError(f"{context} missing required fields: {', '.join(missing)}")


def _normalize_skill(skill: dict[str, Any]) -> dict[str, Any]:
    _require_fields(skill, ["externalId", "name", "category", "applicableLevel"], "Skill")
    category = parse_enum(SkillCategory, skill["category"])
    if category is None:
        raise ValueError(f"Skill {skill['externalId']} has unknown category {skill['category']}")
    level = parse_enum(Level, skill["applicableLevel"])
    if level is None:
        raise ValueError(
            f"Skill {skill['externalId']} has unknown level {skill['applicableLevel']}"
        )
    return {
        "externalId": skill["externalId"],
        "name": skill["name"],
        "category": category.value,
        "applicableLevel": level.value,
        "description": skill.get("description"),
        "displayOrder": int(skill.get("displayOrder", 0) or 0),
        "isActive": bool(skill.get("isActive", True)),
    }


async def _fetch_by_external_id(
    client: LeanCloudClient, class_name: str, external_id: str
) -> dict[str, Any] | None:
    where = json.dumps({"externalId": external_id})
    response = await client.get_json(f"/1.1/classes/{class_name}", params={"where": where})
    results = response.get("results", [])
    if results:
        return results[0]
    return None


async def _ensure_class(client: LeanCloudClient, class_name: str) -> None:
    try:
        await client.post_json(f"/1.1/schemas/{class_name}", {"className": class_name})
    except LeanCloudError as exc:
        body = exc.body or ""
        if "exists" in body.lower():
            return
        if exc.status_code in {400, 404}:
            return
        raise


INDEX_CHECK_KEY = "__index-check__:1970-01"


async def _check_period_index(client: LeanCloudClient) -> bool:
    """Whether Assessment.periodKey rejects a second row with the same value."""
    created: list[str] = []
    payload = {
        "periodKey": INDEX_CHECK_KEY,
        "playerId": "__index-check__",
        "assessmentDate": "1970-01-01",
    }
    try:
        for _ in range(2):
            try:
                response = await client.post_json("/1.1/classes/Assessment", payload)
            except LeanCloudError as exc:
                if exc.code == DUPLICATE_VALUE:
                    return True
                raise
            created.append(response["objectId"])
        return False
    finally:
        for object_id in created:
            await client.delete_json(f"/1.1/classes/Assessment/{object_id}")


async def _upsert_skill(client: LeanCloudClient, payload: dict[str, Any]) -> str:
    existing = await _fetch_by_external_id(client, "Skill", payload["externalId"])
    if existing:
        object_id = existing["objectId"]
        await client.put_json(f"/1.1/classes/Skill/{object_id}", payload)
        return object_id
    response = await client.post_json("/1.1/classes/Skill", payload)
    return response["objectId"]


async def _run(skills_path: Path, *, check_index: bool = True) -> int:
    skills = [_normalize_skill(item) for item in _read_json(skills_path)]

    try:
        settings = load_settings()
    except SettingsError as exc:
        raise ValueError(str(exc)) from exc

    client = LeanCloudClient(
        app_id=settings.lean_app_id,
        app_key=settings.lean_app_key,
        master_key=settings.lean_master_key,
        server_url=settings.lean_server_url,
    )

    seeded = 0
    try:
        await _ensure_class(client, "Skill")
        if check_index and not await _check_period_index(client):
            raise ValueError(
                "Assessment.periodKey has no unique index; add one in the LeanCloud "
                "console (Data Storage > Assessment > Index) before serving traffic"
            )
        for skill in skills:
            await _upsert_skill(client, skill)
            seeded += 1
    finally:
        await client.close()

    print(f"Seed complete: {seeded} skills")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed the LeanCloud skill catalog")
    parser.add_argument("--skills", required=True, type=Path)
    parser.add_argument(
        "--skip-index-check",
        action="store_true",
        help="do not verify the unique index on Assessment.periodKey",
    )
    args = parser.parse_args()

    try:
        return asyncio.run(_run(args.skills, check_index=not args.skip_index_check))
    except Exception as exc:
        print(f"Seed failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
