from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date
from typing import Any

from academy.clients.leancloud import (
    CONDITION_NOT_MET,
    DUPLICATE_VALUE,
    OBJECT_NOT_FOUND,
    LeanCloudClient,
    LeanCloudError,
)
from academy.models.enums import AssessmentPeriod, parse_enum

ASSESSMENT_PATH = "/1.1/classes/Assessment"
PAGE_SIZE = 1000
NEWEST_FIRST = "-assessmentDate,-createdAt"


class DuplicatePeriodError(Exception):
    """The store's unique index on periodKey rejected the write."""


class StaleWriteError(Exception):
    """A conditional write found the assessment no longer matching its precondition."""


@dataclass(frozen=True)
class SkillScoreRecord:
    id: str
    skill_id: str
    score: int
    notes: str | None
    previous_score: int | None
    improvement: int | None


@dataclass(frozen=True)
class AssessmentRecord:
    id: str
    player_id: str
    assessor_id: str
    assessment_date: date
    period: AssessmentPeriod | None
    comments: str | None
    coach_notes: str | None
    finalized: bool
    created_at: str | None
    updated_at: str | None
    skill_scores: tuple[SkillScoreRecord, ...] = ()

    @property
    def assessed_skill_ids(self) -> set[str]:
        return {score.skill_id for score in self.skill_scores}


def period_key(player_id: str, assessment_date: date) -> str:
    return f"{player_id}:{assessment_date.year:04d}-{assessment_date.month:02d}"


def _score_from_lc(payload: dict[str, Any]) -> SkillScoreRecord:
    return SkillScoreRecord(
        id=payload.get("id", ""),
        skill_id=payload.get("skillId", ""),
        score=int(payload.get("score", 0)),
        notes=payload.get("notes"),
        previous_score=payload.get("previousScore"),
        improvement=payload.get("improvement"),
    )


def score_to_lc(score: SkillScoreRecord) -> dict[str, Any]:
    return {
        "id": score.id,
        "skillId": score.skill_id,
        "score": score.score,
        "notes": score.notes,
        "previousScore": score.previous_score,
        "improvement": score.improvement,
    }


def _from_lc(payload: dict[str, Any]) -> AssessmentRecord:
    return AssessmentRecord(
        id=payload["objectId"],
        player_id=payload.get("playerId", ""),
        assessor_id=payload.get("assessorId", ""),
        assessment_date=date.fromisoformat(payload["assessmentDate"]),
        period=parse_enum(AssessmentPeriod, payload.get("period")),
        comments=payload.get("comments"),
        coach_notes=payload.get("coachNotes"),
        finalized=bool(payload.get("finalized", False)),
        created_at=payload.get("createdAt"),
        updated_at=payload.get("updatedAt"),
        skill_scores=tuple(_score_from_lc(item) for item in payload.get("skillScores") or []),
    )


def _translate(exc: LeanCloudError) -> Exception:
    if exc.code == DUPLICATE_VALUE:
        return DuplicatePeriodError(str(exc))
    if exc.code == CONDITION_NOT_MET:
        return StaleWriteError(str(exc))
    return exc


class AssessmentRepository:
    def __init__(self, client: LeanCloudClient) -> None:
        self._client = client

    async def create(self, payload: dict[str, Any]) -> AssessmentRecord:
        try:
            response = await self._client.post_json(ASSESSMENT_PATH, payload)
        except LeanCloudError as exc:
            raise _translate(exc) from exc
        record = payload | response
        return _from_lc(record)

    async def get(self, assessment_id: str) -> AssessmentRecord | None:
        try:
            payload = await self._client.get_json(f"{ASSESSMENT_PATH}/{assessment_id}")
        except LeanCloudError as exc:
            if exc.status_code == 404 or exc.code == OBJECT_NOT_FOUND:
                return None
            raise
        return _from_lc(payload)

    async def update(
        self,
        assessment_id: str,
        payload: dict[str, Any],
        *,
        require_draft: bool = False,
    ) -> AssessmentRecord:
        where = {"finalized": False} if require_draft else None
        try:
            await self._client.put_json(
                f"{ASSESSMENT_PATH}/{assessment_id}", payload, where=where
            )
        except LeanCloudError as exc:
            raise _translate(exc) from exc
        updated = await self.get(assessment_id)
        if updated is None:
            raise StaleWriteError(f"Assessment {assessment_id} disappeared during update")
        return updated

    async def delete(self, assessment_id: str, *, require_draft: bool = False) -> None:
        where = {"finalized": False} if require_draft else None
        try:
            await self._client.delete_json(f"{ASSESSMENT_PATH}/{assessment_id}", where=where)
        except LeanCloudError as exc:
            raise _translate(exc) from exc

    async def query(
        self,
        where: dict[str, Any],
        *,
        order: str = NEWEST_FIRST,
        limit: int | None = None,
    ) -> list[AssessmentRecord]:
        records: list[AssessmentRecord] = []
        skip = 0
        while True:
            page_size = PAGE_SIZE if limit is None else min(PAGE_SIZE, limit - len(records))
            params = {
                "where": json.dumps(where),
                "order": order,
                "limit": page_size,
                "skip": skip,
            }
            response = await self._client.get_json(ASSESSMENT_PATH, params=params)
            results = response.get("results", [])
            records.extend(_from_lc(item) for item in results)
            skip += len(results)
            if len(results) < page_size:
                break
            if limit is not None and len(records) >= limit:
                break
        return records

    async def exists_for_period(
        self, key: str, *, exclude_id: str | None = None
    ) -> bool:
        where: dict[str, Any] = {"periodKey": key}
        if exclude_id:
            where["objectId"] = {"$ne": exclude_id}
        return bool(await self.query(where, limit=1))

    async def list_for_player(self, player_id: str) -> list[AssessmentRecord]:
        return await self.query({"playerId": player_id})

    async def list_for_players(self, player_ids: list[str]) -> list[AssessmentRecord]:
        if not player_ids:
            return []
        return await self.query({"playerId": {"$in": sorted(set(player_ids))}})

    async def list_for_assessor(self, assessor_id: str) -> list[AssessmentRecord]:
        return await self.query({"assessorId": assessor_id})

    async def list_all(self) -> list[AssessmentRecord]:
        return await self.query({})

    async def list_in_range(
        self,
        start: date,
        end: date,
        *,
        player_ids: list[str] | None = None,
    ) -> list[AssessmentRecord]:
        where: dict[str, Any] = {
            "assessmentDate": {"$gte": start.isoformat(), "$lte": end.isoformat()}
        }
        if player_ids is not None:
            if not player_ids:
                return []
            where["playerId"] = {"$in": sorted(set(player_ids))}
        return await self.query(where)

    async def list_earlier_for_player(
        self,
        player_id: str,
        before: date,
        *,
        exclude_id: str | None = None,
        limit: int = 100,
    ) -> list[AssessmentRecord]:
        where: dict[str, Any] = {
            "playerId": player_id,
            "assessmentDate": {"$lt": before.isoformat()},
        }
        if exclude_id:
            where["objectId"] = {"$ne": exclude_id}
        return await self.query(where, limit=limit)
