from __future__ import annotations

import uuid
from datetime import date

from academy.repositories.assessment_repository import (
    AssessmentRecord,
    AssessmentRepository,
    SkillScoreRecord,
)
from academy.services.skill_validation import SkillRating


def latest_prior_scores(history: list[AssessmentRecord]) -> dict[str, int]:
    """Most recent score per skill; history must be ordered newest first."""
    latest: dict[str, int] = {}
    for assessment in history:
        for score in assessment.skill_scores:
            latest.setdefault(score.skill_id, score.score)
    return latest


def build_scores(
    ratings: list[SkillRating], previous: dict[str, int]
) -> tuple[SkillScoreRecord, ...]:
    scores: list[SkillScoreRecord] = []
    for rating in ratings:
        previous_score = previous.get(rating.skill_id)
        improvement = rating.score - previous_score if previous_score is not None else None
        scores.append(
            SkillScoreRecord(
                id=uuid.uuid4().hex,
                skill_id=rating.skill_id,
                score=rating.score,
                notes=rating.notes,
                previous_score=previous_score,
                improvement=improvement,
            )
        )
    return tuple(scores)


async def snapshot_scores(
    repo: AssessmentRepository,
    *,
    player_id: str,
    assessment_date: date,
    ratings: list[SkillRating],
    exclude_id: str | None = None,
    history_limit: int = 100,
) -> tuple[SkillScoreRecord, ...]:
    """Score set with previousScore/improvement captured against strictly earlier assessments."""
    history = await repo.list_earlier_for_player(
        player_id,
        assessment_date,
        exclude_id=exclude_id,
        limit=history_limit,
    )
    history = [item for item in history if item.id != exclude_id]
    history.sort(key=lambda item: (item.assessment_date, item.created_at or ""), reverse=True)
    return build_scores(ratings, latest_prior_scores(history))
