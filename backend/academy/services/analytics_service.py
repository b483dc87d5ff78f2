from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from statistics import fmean

from academy.models.assessment import SummaryFilters
from academy.models.enums import Level, ProgressTrend, SkillCategory
from academy.repositories.assessment_repository import AssessmentRecord, AssessmentRepository
from academy.repositories.player_repository import PlayerRecord, PlayerRepository
from academy.repositories.skill_repository import SkillRecord, SkillRepository
from academy.repositories.user_repository import Actor
from academy.services.authorization import AccessContext, Action, authorize, ensure_staff
from academy.services.errors import NotFoundError

TREND_THRESHOLD = 0.5

_SCORE_BANDS = (
    (2, "Needs significant improvement"),
    (4, "Below average"),
    (6, "Average"),
    (8, "Good"),
    (10, "Excellent"),
)


def score_description(score: int | None) -> str:
    if score is None:
        return "Not scored"
    if score < 1:
        return "Invalid score"
    for upper, label in _SCORE_BANDS:
        if score <= upper:
            return label
    return "Invalid score"


def round_average(value: float | None) -> float | None:
    return None if value is None else round(value, 2)


def missing_skill_ids(assessment: AssessmentRecord, required: set[str]) -> set[str]:
    return required - assessment.assessed_skill_ids


def is_complete(assessment: AssessmentRecord, required: set[str]) -> bool:
    return assessment.assessed_skill_ids >= required


def overall_average(assessment: AssessmentRecord) -> float:
    if not assessment.skill_scores:
        return 0.0
    return fmean(score.score for score in assessment.skill_scores)


def category_average(
    assessment: AssessmentRecord,
    category: SkillCategory,
    skills: dict[str, SkillRecord],
) -> float | None:
    """Mean score in one category, or None when nothing in it was scored."""
    values = [
        score.score
        for score in assessment.skill_scores
        if score.skill_id in skills and skills[score.skill_id].category == category
    ]
    return fmean(values) if values else None


def category_averages(
    assessment: AssessmentRecord, skills: dict[str, SkillRecord]
) -> dict[SkillCategory, float | None]:
    return {
        category: category_average(assessment, category, skills)
        for category in SkillCategory
    }


def classify_trend(earliest: float, latest: float) -> ProgressTrend:
    delta = latest - earliest
    if delta > TREND_THRESHOLD:
        return ProgressTrend.IMPROVING
    if delta < -TREND_THRESHOLD:
        return ProgressTrend.DECLINING
    return ProgressTrend.STABLE


@dataclass(frozen=True)
class PlayerProgress:
    total_assessments: int
    average_score: float
    category_averages: dict[SkillCategory, float | None]
    progress_trend: ProgressTrend
    latest_assessment_date: date | None


def player_progress(
    assessments: list[AssessmentRecord], skills: dict[str, SkillRecord]
) -> PlayerProgress:
    if not assessments:
        return PlayerProgress(
            total_assessments=0,
            average_score=0.0,
            category_averages={category: None for category in SkillCategory},
            progress_trend=ProgressTrend.NO_DATA,
            latest_assessment_date=None,
        )
    ordered = sorted(assessments, key=lambda item: item.assessment_date, reverse=True)
    averages = [overall_average(item) for item in ordered]
    per_category: dict[SkillCategory, float | None] = {}
    for category in SkillCategory:
        values = [
            value
            for value in (category_average(item, category, skills) for item in ordered)
            if value is not None
        ]
        per_category[category] = fmean(values) if values else None
    trend = ProgressTrend.STABLE
    if len(ordered) > 1:
        trend = classify_trend(earliest=averages[-1], latest=averages[0])
    return PlayerProgress(
        total_assessments=len(ordered),
        average_score=fmean(averages),
        category_averages=per_category,
        progress_trend=trend,
        latest_assessment_date=ordered[0].assessment_date,
    )


@dataclass(frozen=True)
class AssessmentSummary:
    total_assessments: int
    completed_assessments: int
    pending_assessments: int
    average_score_by_category: dict[SkillCategory, float | None]


def apply_filters(
    assessments: list[AssessmentRecord],
    filters: SummaryFilters,
    players: dict[str, PlayerRecord],
) -> list[AssessmentRecord]:
    matching = assessments
    if filters.player_id is not None:
        matching = [item for item in matching if item.player_id == filters.player_id]
    if filters.group_id is not None:
        matching = [
            item
            for item in matching
            if item.player_id in players
            and players[item.player_id].group_id == filters.group_id
        ]
    if filters.period is not None:
        matching = [item for item in matching if item.period == filters.period]
    if filters.date_from is not None:
        matching = [item for item in matching if item.assessment_date >= filters.date_from]
    if filters.date_to is not None:
        matching = [item for item in matching if item.assessment_date <= filters.date_to]
    return matching


def summarize(
    assessments: list[AssessmentRecord], skills: dict[str, SkillRecord]
) -> AssessmentSummary:
    total = len(assessments)
    finalized = sum(1 for item in assessments if item.finalized)
    by_category: dict[SkillCategory, list[int]] = {category: [] for category in SkillCategory}
    for assessment in assessments:
        for score in assessment.skill_scores:
            skill = skills.get(score.skill_id)
            if skill is not None and skill.category is not None:
                by_category[skill.category].append(score.score)
    return AssessmentSummary(
        total_assessments=total,
        completed_assessments=finalized,
        pending_assessments=total - finalized,
        average_score_by_category={
            category: fmean(values) if values else None
            for category, values in by_category.items()
        },
    )


@dataclass(frozen=True)
class AssessmentDetails:
    assessment: AssessmentRecord
    player: PlayerRecord | None
    skills: dict[str, SkillRecord]
    overall_average: float
    category_averages: dict[SkillCategory, float | None]
    missing_skills: list[SkillRecord] = field(default_factory=list)
    complete: bool = True

    @property
    def is_partial(self) -> bool:
        return not self.complete


class AnalyticsService:
    """Read-only aggregation over persisted assessments."""

    def __init__(
        self,
        assessment_repo: AssessmentRepository,
        skill_repo: SkillRepository,
        player_repo: PlayerRepository,
    ) -> None:
        self.assessment_repo = assessment_repo
        self.skill_repo = skill_repo
        self.player_repo = player_repo

    async def _required_by_level(
        self, levels: set[Level]
    ) -> dict[Level, list[SkillRecord]]:
        return {level: await self.skill_repo.list_active_for_level(level) for level in levels}

    async def _skills_for(self, assessments: list[AssessmentRecord]) -> dict[str, SkillRecord]:
        skill_ids = {score.skill_id for item in assessments for score in item.skill_scores}
        return await self.skill_repo.get_many(sorted(skill_ids))

    async def missing_skills(
        self, assessment: AssessmentRecord, player: PlayerRecord | None
    ) -> list[SkillRecord]:
        if player is None or player.level is None:
            return []
        required = await self.skill_repo.list_active_for_level(player.level)
        missing = missing_skill_ids(assessment, {skill.id for skill in required})
        return [skill for skill in required if skill.id in missing]

    async def describe(
        self,
        assessments: list[AssessmentRecord],
        players: dict[str, PlayerRecord] | None = None,
    ) -> list[AssessmentDetails]:
        if not assessments:
            return []
        if players is None:
            players = await self.player_repo.get_players(
                [item.player_id for item in assessments]
            )
        skills = await self._skills_for(assessments)
        required = await self._required_by_level(
            {player.level for player in players.values() if player.level is not None}
        )
        details: list[AssessmentDetails] = []
        for assessment in assessments:
            player = players.get(assessment.player_id)
            needed = required.get(player.level, []) if player and player.level else []
            needed_ids = {skill.id for skill in needed}
            missing = missing_skill_ids(assessment, needed_ids)
            details.append(
                AssessmentDetails(
                    assessment=assessment,
                    player=player,
                    skills=skills,
                    overall_average=overall_average(assessment),
                    category_averages=category_averages(assessment, skills),
                    missing_skills=[skill for skill in needed if skill.id in missing],
                    complete=is_complete(assessment, needed_ids),
                )
            )
        return details

    async def player_progress(self, player_id: str, actor: Actor) -> PlayerProgress:
        player = await self.player_repo.get_player(player_id)
        if player is None:
            raise NotFoundError.for_entity("Player", player_id)
        authorize(Action.VIEW_PLAYER, AccessContext(actor=actor, player=player))
        assessments = await self.assessment_repo.list_for_player(player_id)
        return player_progress(assessments, await self._skills_for(assessments))

    async def summary(self, filters: SummaryFilters, actor: Actor) -> AssessmentSummary:
        ensure_staff(actor)
        if actor.is_elevated:
            assessments = await self.assessment_repo.list_all()
            players: dict[str, PlayerRecord] = {}
            if filters.group_id is not None:
                players = await self.player_repo.get_players(
                    [item.player_id for item in assessments]
                )
        else:
            coached = await self.player_repo.list_players_coached_by(actor.id)
            players = {player.id: player for player in coached}
            assessments = await self.assessment_repo.list_for_players(sorted(players))
        matching = apply_filters(assessments, filters, players)
        return summarize(matching, await self._skills_for(matching))
