from __future__ import annotations

from datetime import date
from typing import Any, AsyncIterator

from fastapi import APIRouter, Depends, Query, status

from academy.api.deps.actor import CurrentActor, leancloud_client
from academy.config import load_settings
from academy.models.assessment import AssessmentCreate, AssessmentUpdate, SummaryFilters
from academy.models.enums import AssessmentPeriod, SkillCategory, parse_enum
from academy.repositories.assessment_repository import (
    AssessmentRecord,
    AssessmentRepository,
    SkillScoreRecord,
)
from academy.repositories.player_repository import PlayerRepository
from academy.repositories.skill_repository import SkillRecord, SkillRepository
from academy.repositories.user_repository import Actor, UserRepository
from academy.services.analytics_service import (
    AssessmentDetails,
    AssessmentSummary,
    PlayerProgress,
    round_average,
    score_description,
)
from academy.services.assessment_service import AssessmentService
from academy.services.errors import ValidationError

router = APIRouter(prefix="/assessments", tags=["assessments"])


async def _service() -> AsyncIterator[AssessmentService]:
    settings = load_settings()
    client = leancloud_client()
    try:
        yield AssessmentService(
            AssessmentRepository(client),
            SkillRepository(client),
            PlayerRepository(client),
            UserRepository(client),
            history_limit=settings.assessment_history_limit,
        )
    finally:
        await client.close()


def _category_map(values: dict[SkillCategory, float | None]) -> dict[str, float | None]:
    return {category.value: round_average(value) for category, value in values.items()}


def _score_response(score: SkillScoreRecord, skill: SkillRecord | None) -> dict[str, Any]:
    return {
        "id": score.id,
        "skillId": score.skill_id,
        "skillName": skill.name if skill else None,
        "skillCategory": skill.category.value if skill and skill.category else None,
        "score": score.score,
        "notes": score.notes,
        "previousScore": score.previous_score,
        "improvement": score.improvement,
        "scoreDescription": score_description(score.score),
    }


def _assessment_response(details: AssessmentDetails) -> dict[str, Any]:
    record = details.assessment
    scores = [
        _score_response(score, details.skills.get(score.skill_id))
        for score in record.skill_scores
    ]
    scores.sort(key=lambda item: (item["skillCategory"] or "", item["skillName"] or ""))
    return {
        "id": record.id,
        "playerId": record.player_id,
        "playerName": details.player.full_name if details.player else None,
        "playerGroupName": details.player.group_name if details.player else None,
        "assessorId": record.assessor_id,
        "assessmentDate": record.assessment_date.isoformat(),
        "period": record.period.value if record.period else None,
        "comments": record.comments,
        "coachNotes": record.coach_notes,
        "isFinalized": record.finalized,
        "createdAt": record.created_at,
        "updatedAt": record.updated_at,
        "skillScores": scores,
        "categoryAverages": _category_map(details.category_averages),
        "overallAverage": round_average(details.overall_average),
        "totalSkillsAssessed": len(record.skill_scores),
        "isPartialAssessment": details.is_partial,
    }


async def _one(service: AssessmentService, record: AssessmentRecord) -> dict[str, Any]:
    details = await service.analytics.describe([record])
    return _assessment_response(details[0])


async def _many(service: AssessmentService, records: list[AssessmentRecord]) -> dict[str, Any]:
    details = await service.analytics.describe(records)
    return {"assessments": [_assessment_response(item) for item in details]}


def _summary_response(summary: AssessmentSummary) -> dict[str, Any]:
    return {
        "totalAssessments": summary.total_assessments,
        "completedAssessments": summary.completed_assessments,
        "pendingAssessments": summary.pending_assessments,
        "averageScoreByCategory": _category_map(summary.average_score_by_category),
    }


def _progress_response(progress: PlayerProgress) -> dict[str, Any]:
    return {
        "totalAssessments": progress.total_assessments,
        "averageScore": round_average(progress.average_score),
        "categoryAverages": _category_map(progress.category_averages),
        "progressTrend": progress.progress_trend.value,
        "latestAssessmentDate": (
            progress.latest_assessment_date.isoformat()
            if progress.latest_assessment_date
            else None
        ),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_assessment(
    payload: AssessmentCreate,
    actor: Actor = CurrentActor,
    service: AssessmentService = Depends(_service),
):
    record = await service.create(payload, actor)
    return await _one(service, record)


@router.get("/my-assessments")
async def list_my_assessments(
    actor: Actor = CurrentActor,
    service: AssessmentService = Depends(_service),
):
    return await _many(service, await service.list_mine(actor))


@router.get("/summary")
async def get_assessment_summary(
    player_id: str | None = Query(None, alias="playerId"),
    group_id: str | None = Query(None, alias="groupId"),
    period: str | None = None,
    date_from: date | None = Query(None, alias="dateFrom"),
    date_to: date | None = Query(None, alias="dateTo"),
    actor: Actor = CurrentActor,
    service: AssessmentService = Depends(_service),
):
    parsed_period = parse_enum(AssessmentPeriod, period)
    if period is not None and parsed_period is None:
        raise ValidationError(f"Unknown assessment period: {period}")
    filters = SummaryFilters(
        player_id=player_id,
        group_id=group_id,
        period=parsed_period,
        date_from=date_from,
        date_to=date_to,
    )
    return _summary_response(await service.analytics.summary(filters, actor))


@router.get("/analytics/player/{player_id}")
async def get_player_progress_analytics(
    player_id: str,
    actor: Actor = CurrentActor,
    service: AssessmentService = Depends(_service),
):
    return _progress_response(await service.analytics.player_progress(player_id, actor))


@router.get("/can-assess/{player_id}")
async def can_assess_player(
    player_id: str,
    year: int,
    month: int,
    actor: Actor = CurrentActor,
    service: AssessmentService = Depends(_service),
):
    allowed, message = await service.can_assess(player_id, year, month, actor)
    return {"canAssess": allowed, "message": message}


@router.get("/player/{player_id}")
async def list_player_assessments(
    player_id: str,
    actor: Actor = CurrentActor,
    service: AssessmentService = Depends(_service),
):
    return await _many(service, await service.list_for_player(player_id, actor))


@router.get("/coach/{coach_id}")
async def list_coach_assessments(
    coach_id: str,
    actor: Actor = CurrentActor,
    service: AssessmentService = Depends(_service),
):
    return await _many(service, await service.list_for_assessor(coach_id, actor))


@router.get("/date-range")
async def list_assessments_in_range(
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    actor: Actor = CurrentActor,
    service: AssessmentService = Depends(_service),
):
    records = await service.list_in_date_range(start_date, end_date, actor)
    return await _many(service, records)


@router.get("/{assessment_id}")
async def get_assessment(
    assessment_id: str,
    actor: Actor = CurrentActor,
    service: AssessmentService = Depends(_service),
):
    return await _one(service, await service.get(assessment_id, actor))


@router.put("/{assessment_id}")
async def update_assessment(
    assessment_id: str,
    payload: AssessmentUpdate,
    actor: Actor = CurrentActor,
    service: AssessmentService = Depends(_service),
):
    record = await service.update(assessment_id, payload, actor)
    return await _one(service, record)


@router.patch("/{assessment_id}/finalize")
async def finalize_assessment(
    assessment_id: str,
    actor: Actor = CurrentActor,
    service: AssessmentService = Depends(_service),
):
    record = await service.finalize(assessment_id, actor)
    return await _one(service, record)


@router.delete("/{assessment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_assessment(
    assessment_id: str,
    actor: Actor = CurrentActor,
    service: AssessmentService = Depends(_service),
):
    await service.delete(assessment_id, actor)
    return None
