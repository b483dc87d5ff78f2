from __future__ import annotations

import asyncio
import itertools
import json
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Any

import httpx
import pytest
import pytest_asyncio

from academy.clients.leancloud import LeanCloudClient
from academy.models.assessment import AssessmentCreate, SkillRatingInput
from academy.models.enums import AssessmentPeriod, Role
from academy.repositories.assessment_repository import AssessmentRepository
from academy.repositories.player_repository import PlayerRepository
from academy.repositories.skill_repository import SkillRepository
from academy.repositories.user_repository import Actor, UserRepository
from academy.services.assessment_service import AssessmentService

DEVELOPMENT_CATEGORIES = ["Athletic", "Technical", "Mentality", "Personality"]


def _error(status: int, code: int, message: str) -> httpx.Response:
    return httpx.Response(status, json={"code": code, "error": message})


def _matches(record: dict[str, Any], where: dict[str, Any]) -> bool:
    for field, condition in where.items():
        value = record.get(field)
        if isinstance(condition, dict) and any(key.startswith("$") for key in condition):
            for op, expected in condition.items():
                if op == "$ne" and value == expected:
                    return False
                if op == "$in" and value not in expected:
                    return False
                if op == "$lt" and not (value is not None and value < expected):
                    return False
                if op == "$lte" and not (value is not None and value <= expected):
                    return False
                if op == "$gt" and not (value is not None and value > expected):
                    return False
                if op == "$gte" and not (value is not None and value >= expected):
                    return False
        elif value != condition:
            return False
    return True


class FakeLeanCloud:
    """In-memory LeanCloud REST emulation: where-queries, unique index, conditional writes."""

    UNIQUE_FIELDS = {"Assessment": ("periodKey",)}

    def __init__(self) -> None:
        self.classes: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self.users: dict[str, dict[str, Any]] = {}
        self.requests: list[tuple[str, str]] = []
        self.yield_on_request = False
        self._ids = itertools.count(1)
        self._clock = itertools.count(1)

    def _timestamp(self) -> str:
        moment = datetime(2025, 1, 1, tzinfo=timezone.utc) + timedelta(
            milliseconds=next(self._clock)
        )
        return moment.isoformat().replace("+00:00", "Z")

    def add(self, class_name: str, object_id: str | None = None, **fields: Any) -> str:
        object_id = object_id or f"{class_name.lower()}-{next(self._ids)}"
        now = self._timestamp()
        self.classes[class_name][object_id] = {
            "objectId": object_id,
            "createdAt": now,
            "updatedAt": now,
            **fields,
        }
        return object_id

    def add_user(self, user_id: str, role: str, **fields: Any) -> None:
        self.users[user_id] = {"objectId": user_id, "role": role, **fields}

    def _violates_unique(self, class_name: str, object_id: str | None, record: dict) -> bool:
        for field in self.UNIQUE_FIELDS.get(class_name, ()):
            value = record.get(field)
            if value is None:
                continue
            for other_id, other in self.classes[class_name].items():
                if other_id != object_id and other.get(field) == value:
                    return True
        return False

    def _query(self, class_name: str, params: httpx.QueryParams) -> list[dict[str, Any]]:
        where = json.loads(params.get("where") or "{}")
        items = [item for item in self.classes[class_name].values() if _matches(item, where)]
        order = params.get("order")
        if order:
            for key in reversed(order.split(",")):
                descending = key.startswith("-")
                field = key.lstrip("-")
                items.sort(
                    key=lambda item: (item.get(field) is not None, item.get(field) or 0),
                    reverse=descending,
                )
        skip = int(params.get("skip") or 0)
        limit = int(params.get("limit") or 100)
        return items[skip : skip + limit]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if self.yield_on_request:
            await asyncio.sleep(0)
        path = request.url.path
        self.requests.append((request.method, path))
        parts = path.strip("/").split("/")
        if parts[:2] == ["1.1", "users"] and len(parts) == 3:
            user = self.users.get(parts[2])
            if not user:
                return _error(404, 211, "Could not find user.")
            return httpx.Response(200, json=user)
        if parts[:2] != ["1.1", "classes"] or len(parts) not in {3, 4}:
            return _error(404, 101, "Not found")
        class_name = parts[2]
        store = self.classes[class_name]
        if len(parts) == 3:
            if request.method == "GET":
                return httpx.Response(
                    200, json={"results": self._query(class_name, request.url.params)}
                )
            if request.method == "POST":
                payload = json.loads(request.content.decode() or "{}")
                if self._violates_unique(class_name, None, payload):
                    return _error(400, 137, "A unique field was given a value that is already taken.")
                object_id = self.add(class_name, **payload)
                record = store[object_id]
                return httpx.Response(
                    201, json={"objectId": object_id, "createdAt": record["createdAt"]}
                )
            return _error(405, 107, "Method not allowed")

        object_id = parts[3]
        record = store.get(object_id)
        if record is None:
            return _error(404, 101, "Object not found.")
        where = json.loads(request.url.params.get("where") or "{}")
        if request.method == "GET":
            return httpx.Response(200, json=record)
        if where and not _matches(record, where):
            return _error(400, 305, "No effect on updating/deleting a document.")
        if request.method == "PUT":
            payload = json.loads(request.content.decode() or "{}")
            candidate = {**record, **payload}
            if self._violates_unique(class_name, object_id, candidate):
                return _error(400, 137, "A unique field was given a value that is already taken.")
            candidate["updatedAt"] = self._timestamp()
            store[object_id] = candidate
            return httpx.Response(
                200, json={"objectId": object_id, "updatedAt": candidate["updatedAt"]}
            )
        if request.method == "DELETE":
            del store[object_id]
            return httpx.Response(200, json={})
        return _error(405, 107, "Method not allowed")


def seed_academy(lean: FakeLeanCloud) -> None:
    lean.add_user("admin-1", "Admin", fullName="Ada Admin")
    lean.add_user("manager-1", "Manager", fullName="Max Manager")
    lean.add_user("coach-a", "Coach", fullName="Carla Coach")
    lean.add_user("coach-b", "Coach", fullName="Ben Coach")
    lean.add_user("parent-1", "Parent", fullName="Pat Parent")
    lean.add_user("coach-retired", "Coach", fullName="Rita Retired", isActive=False)

    lean.add("Group", "g1", name="Tigers", coachId="coach-a")
    lean.add("Group", "g2", name="Lions", coachId="coach-b")
    lean.add("Group", "g3", name="Dolphins")

    lean.add("Player", "p1", firstName="Sam", lastName="Striker", level="Development", groupId="g1")
    lean.add("Player", "p2", firstName="Lee", lastName="Keeper", level="Development", groupId="g2")
    lean.add("Player", "p3", firstName="Ana", lastName="Winger", level="Advanced", groupId="g1")
    lean.add("Player", "p4", firstName="Tom", lastName="Back", level="Development", groupId="g3")
    lean.add("Player", "p5", firstName="Kim", lastName="Free", level="Development")

    for index in range(1, 17):
        lean.add(
            "Skill",
            f"dev-{index}",
            name=f"Development skill {index:02d}",
            category=DEVELOPMENT_CATEGORIES[(index - 1) % 4],
            applicableLevel="Development",
            isActive=True,
            displayOrder=index,
        )
    for index in range(1, 5):
        lean.add(
            "Skill",
            f"adv-{index}",
            name=f"Advanced skill {index}",
            category=DEVELOPMENT_CATEGORIES[index - 1],
            applicableLevel="Advanced",
            isActive=True,
            displayOrder=index,
        )
    lean.add(
        "Skill",
        "dev-retired",
        name="Retired drill",
        category="Technical",
        applicableLevel="Development",
        isActive=False,
    )


@pytest.fixture(autouse=True)
def _set_env(monkeypatch):
    monkeypatch.setenv("LEAN_APP_ID", "app")
    monkeypatch.setenv("LEAN_APP_KEY", "key")
    monkeypatch.setenv("LEAN_MASTER_KEY", "master")
    monkeypatch.setenv("LEAN_SERVER_URL", "https://api.leancloud.cn")
    monkeypatch.delenv("CONCEAL_FORBIDDEN_RESOURCES", raising=False)
    monkeypatch.delenv("ASSESSMENT_HISTORY_LIMIT", raising=False)


@pytest.fixture
def lean() -> FakeLeanCloud:
    fake = FakeLeanCloud()
    seed_academy(fake)
    return fake


@pytest_asyncio.fixture
async def leancloud_client(lean):
    client = LeanCloudClient(
        app_id="app",
        app_key="key",
        master_key="master",
        server_url="https://api.leancloud.cn",
        transport=httpx.MockTransport(lean.handler),
    )
    yield client
    await client.close()


@pytest.fixture
def service(leancloud_client) -> AssessmentService:
    return AssessmentService(
        AssessmentRepository(leancloud_client),
        SkillRepository(leancloud_client),
        PlayerRepository(leancloud_client),
        UserRepository(leancloud_client),
    )


@pytest.fixture
def actors() -> dict[str, Actor]:
    return {
        "admin": Actor(id="admin-1", role=Role.ADMIN),
        "manager": Actor(id="manager-1", role=Role.MANAGER),
        "coach_a": Actor(id="coach-a", role=Role.COACH),
        "coach_b": Actor(id="coach-b", role=Role.COACH),
        "parent": Actor(id="parent-1", role=Role.PARENT),
    }


@pytest.fixture
def make_create():
    def _make(
        player_id: str = "p1",
        on: str = "2024-03-15",
        scores: dict[str, int] | None = None,
        **extra: Any,
    ) -> AssessmentCreate:
        scores = scores if scores is not None else {"dev-1": 6, "dev-2": 7}
        return AssessmentCreate(
            playerId=player_id,
            assessmentDate=date.fromisoformat(on),
            period=extra.pop("period", AssessmentPeriod.MONTHLY),
            skillRatings=[
                SkillRatingInput(skillId=skill_id, score=score)
                for skill_id, score in scores.items()
            ],
            **extra,
        )

    return _make


@pytest_asyncio.fixture
async def api_client(service, leancloud_client):
    from academy.api.deps import actor as actor_deps
    from academy.api.routes import assessments as assessment_routes
    from academy.main import app

    app.dependency_overrides = {
        assessment_routes._service: lambda: service,
        actor_deps._user_repo: lambda: UserRepository(leancloud_client),
    }
    asgi_transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=asgi_transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides = {}
