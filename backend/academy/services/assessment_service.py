from __future__ import annotations

import logging
from datetime import date
from typing import Any

from academy.models.assessment import AssessmentCreate, AssessmentUpdate, SkillRatingInput
from academy.repositories.assessment_repository import (
    AssessmentRecord,
    AssessmentRepository,
    DuplicatePeriodError,
    StaleWriteError,
    period_key,
    score_to_lc,
)
from academy.repositories.player_repository import PlayerRecord, PlayerRepository
from academy.repositories.skill_repository import SkillRepository
from academy.repositories.user_repository import Actor, UserRepository
from academy.services.analytics_service import AnalyticsService
from academy.services.authorization import (
    AccessContext,
    Action,
    authorize,
    ensure_staff,
)
from academy.services.duplicate_guard import duplicate_message, ensure_unique_month
from academy.services.errors import (
    ASSESSMENT_FINALIZED,
    DUPLICATE_ASSESSMENT,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from academy.services.improvement_tracker import snapshot_scores
from academy.services.skill_validation import SkillRating, validate_ratings
from academy.telemetry.otel import start_span
from academy.telemetry.tracing import build_actor_attributes, emit_event, emit_metric

logger = logging.getLogger(__name__)


def _ratings(items: list[SkillRatingInput]) -> list[SkillRating]:
    return [
        SkillRating(skill_id=item.skillId, score=item.score, notes=item.notes)
        for item in items
    ]


def _attributes(actor: Actor, extra: dict[str, Any] | None = None) -> dict[str, Any]:
    return build_actor_attributes(actor.id, actor.role.value if actor.role else None, extra)


class AssessmentService:
    """Create, edit, finalize and delete assessments.

    Draft assessments may be edited by their assessor; finalizing locks them
    against everyone but Admin and Manager. Each mutation is a single write
    of the assessment object together with its embedded score set.
    """

    def __init__(
        self,
        assessment_repo: AssessmentRepository,
        skill_repo: SkillRepository,
        player_repo: PlayerRepository,
        user_repo: UserRepository,
        *,
        analytics: AnalyticsService | None = None,
        history_limit: int = 100,
    ) -> None:
        self.assessment_repo = assessment_repo
        self.skill_repo = skill_repo
        self.player_repo = player_repo
        self.user_repo = user_repo
        self.analytics = analytics or AnalyticsService(assessment_repo, skill_repo, player_repo)
        self.history_limit = history_limit

    async def _load(self, assessment_id: str) -> AssessmentRecord:
        assessment = await self.assessment_repo.get(assessment_id)
        if assessment is None:
            raise NotFoundError.for_entity("Assessment", assessment_id)
        return assessment

    async def _require_player(self, player_id: str) -> PlayerRecord:
        player = await self.player_repo.get_player(player_id)
        if player is None:
            raise NotFoundError.for_entity("Player", player_id)
        return player

    # ===== lifecycle =====

    async def create(self, data: AssessmentCreate, actor: Actor) -> AssessmentRecord:
        player = await self._require_player(data.playerId)
        authorize(Action.CREATE, AccessContext(actor=actor, player=player))
        await ensure_unique_month(self.assessment_repo, player.id, data.assessmentDate)
        ratings = _ratings(data.skillRatings)
        await validate_ratings(self.skill_repo, ratings, player.level)
        scores = await snapshot_scores(
            self.assessment_repo,
            player_id=player.id,
            assessment_date=data.assessmentDate,
            ratings=ratings,
            history_limit=self.history_limit,
        )
        payload = {
            "playerId": player.id,
            "assessorId": actor.id,
            "assessmentDate": data.assessmentDate.isoformat(),
            "periodKey": period_key(player.id, data.assessmentDate),
            "period": data.period.value,
            "comments": data.comments,
            "coachNotes": data.coachNotes,
            "finalized": data.isFinalized,
            "skillScores": [score_to_lc(score) for score in scores],
        }
        with start_span("assessment.store", {"operation": "create", "playerId": player.id}):
            try:
                record = await self.assessment_repo.create(payload)
            except DuplicatePeriodError as exc:
                emit_event(
                    "assessment.duplicate_rejected",
                    player_id=player.id,
                    attributes={"periodKey": payload["periodKey"], "stage": "store"},
                )
                raise ConflictError(
                    duplicate_message(data.assessmentDate), code=DUPLICATE_ASSESSMENT
                ) from exc
        logger.info(
            "Assessment %s created for player %s by %s", record.id, player.id, actor.id
        )
        emit_event(
            "assessment.created",
            assessment_id=record.id,
            player_id=player.id,
            attributes=_attributes(actor, {"finalized": record.finalized}),
        )
        emit_metric(
            "assessment.skills_scored",
            len(scores),
            assessment_id=record.id,
            player_id=player.id,
        )
        return record

    async def update(
        self, assessment_id: str, data: AssessmentUpdate, actor: Actor
    ) -> AssessmentRecord:
        assessment = await self._load(assessment_id)
        player = await self.player_repo.get_player(assessment.player_id)
        authorize(
            Action.EDIT, AccessContext(actor=actor, player=player, assessment=assessment)
        )
        if assessment.finalized and not actor.is_elevated:
            raise ConflictError("Cannot edit finalized assessment", code=ASSESSMENT_FINALIZED)
        fields = data.provided_fields()
        if not fields:
            raise ValidationError("Update request contains no fields")

        payload: dict[str, Any] = {}
        effective_date = assessment.assessment_date
        if data.assessmentDate is not None and data.assessmentDate != assessment.assessment_date:
            await ensure_unique_month(
                self.assessment_repo,
                assessment.player_id,
                data.assessmentDate,
                exclude_id=assessment.id,
            )
            effective_date = data.assessmentDate
            payload["assessmentDate"] = effective_date.isoformat()
            payload["periodKey"] = period_key(assessment.player_id, effective_date)
        if data.period is not None:
            payload["period"] = data.period.value
        if data.comments is not None:
            payload["comments"] = data.comments
        if data.coachNotes is not None:
            payload["coachNotes"] = data.coachNotes
        if data.skillRatings is not None:
            if player is None:
                raise NotFoundError.for_entity("Player", assessment.player_id)
            ratings = _ratings(data.skillRatings)
            await validate_ratings(self.skill_repo, ratings, player.level)
            scores = await snapshot_scores(
                self.assessment_repo,
                player_id=assessment.player_id,
                assessment_date=effective_date,
                ratings=ratings,
                exclude_id=assessment.id,
                history_limit=self.history_limit,
            )
            # Full replace of the embedded score set, never a merge.
            payload["skillScores"] = [score_to_lc(score) for score in scores]
        if not payload:
            return assessment

        with start_span("assessment.store", {"operation": "update", "assessmentId": assessment.id}):
            try:
                record = await self.assessment_repo.update(
                    assessment.id, payload, require_draft=not actor.is_elevated
                )
            except DuplicatePeriodError as exc:
                raise ConflictError(
                    duplicate_message(effective_date), code=DUPLICATE_ASSESSMENT
                ) from exc
            except StaleWriteError as exc:
                raise ConflictError(
                    "Cannot edit finalized assessment", code=ASSESSMENT_FINALIZED
                ) from exc
        emit_event(
            "assessment.updated",
            assessment_id=record.id,
            player_id=record.player_id,
            attributes=_attributes(actor, {"fields": sorted(fields)}),
        )
        return record

    async def finalize(self, assessment_id: str, actor: Actor) -> AssessmentRecord:
        assessment = await self._load(assessment_id)
        player = await self.player_repo.get_player(assessment.player_id)
        authorize(
            Action.FINALIZE,
            AccessContext(actor=actor, player=player, assessment=assessment),
        )
        if assessment.finalized:
            raise ConflictError("Assessment is already finalized", code=ASSESSMENT_FINALIZED)
        missing = await self.analytics.missing_skills(assessment, player)
        if missing:
            logger.warning(
                "Finalizing partial assessment %s for player %s; missing skills: %s",
                assessment.id,
                assessment.player_id,
                ", ".join(skill.name for skill in missing),
            )
        with start_span("assessment.store", {"operation": "finalize", "assessmentId": assessment.id}):
            try:
                # The store re-checks finalized=false at write time.
                record = await self.assessment_repo.update(
                    assessment.id, {"finalized": True}, require_draft=True
                )
            except StaleWriteError as exc:
                raise ConflictError(
                    "Assessment is already finalized", code=ASSESSMENT_FINALIZED
                ) from exc
        emit_event(
            "assessment.finalized",
            assessment_id=record.id,
            player_id=record.player_id,
            attributes=_attributes(
                actor, {"partial": bool(missing), "missingSkills": len(missing)}
            ),
        )
        return record

    async def delete(self, assessment_id: str, actor: Actor) -> None:
        assessment = await self._load(assessment_id)
        player = await self.player_repo.get_player(assessment.player_id)
        authorize(
            Action.DELETE,
            AccessContext(actor=actor, player=player, assessment=assessment),
        )
        with start_span("assessment.store", {"operation": "delete", "assessmentId": assessment.id}):
            try:
                await self.assessment_repo.delete(
                    assessment.id, require_draft=not actor.is_elevated
                )
            except StaleWriteError as exc:
                raise ConflictError(
                    "Cannot delete finalized assessment", code=ASSESSMENT_FINALIZED
                ) from exc
        logger.info("Assessment %s deleted by %s", assessment.id, actor.id)
        emit_event(
            "assessment.deleted",
            assessment_id=assessment.id,
            player_id=assessment.player_id,
            attributes=_attributes(actor, {"finalized": assessment.finalized}),
        )

    # ===== reads =====

    async def get(self, assessment_id: str, actor: Actor) -> AssessmentRecord:
        assessment = await self._load(assessment_id)
        player = await self.player_repo.get_player(assessment.player_id)
        authorize(
            Action.VIEW, AccessContext(actor=actor, player=player, assessment=assessment)
        )
        return assessment

    async def list_for_player(self, player_id: str, actor: Actor) -> list[AssessmentRecord]:
        player = await self._require_player(player_id)
        authorize(Action.VIEW_PLAYER, AccessContext(actor=actor, player=player))
        return await self.assessment_repo.list_for_player(player_id)

    async def list_for_assessor(self, assessor_id: str, actor: Actor) -> list[AssessmentRecord]:
        authorize(Action.VIEW_ASSESSOR, AccessContext(actor=actor, assessor_id=assessor_id))
        if assessor_id != actor.id and await self.user_repo.get_actor(assessor_id) is None:
            raise NotFoundError.for_entity("Coach", assessor_id)
        return await self.assessment_repo.list_for_assessor(assessor_id)

    async def _coached_player_ids(self, actor: Actor) -> list[str]:
        players = await self.player_repo.list_players_coached_by(actor.id)
        return [player.id for player in players]

    async def list_in_date_range(
        self, start: date, end: date, actor: Actor
    ) -> list[AssessmentRecord]:
        ensure_staff(actor)
        if start > end:
            raise ValidationError("startDate must be on or before endDate")
        if actor.is_elevated:
            return await self.assessment_repo.list_in_range(start, end)
        return await self.assessment_repo.list_in_range(
            start, end, player_ids=await self._coached_player_ids(actor)
        )

    async def list_mine(self, actor: Actor) -> list[AssessmentRecord]:
        ensure_staff(actor)
        if actor.is_elevated:
            return await self.assessment_repo.list_all()
        return await self.assessment_repo.list_for_players(
            await self._coached_player_ids(actor)
        )

    async def can_assess(
        self, player_id: str, year: int, month: int, actor: Actor
    ) -> tuple[bool, str]:
        if not 1 <= month <= 12:
            raise ValidationError(f"Invalid month: {month}")
        try:
            target = date(year, month, 1)
        except ValueError as exc:
            raise ValidationError(f"Invalid year: {year}") from exc
        player = await self._require_player(player_id)
        authorize(Action.CREATE, AccessContext(actor=actor, player=player))
        if await self.assessment_repo.exists_for_period(period_key(player.id, target)):
            return False, duplicate_message(target)
        return True, f"Player can be assessed for {month}/{year}"
