from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from academy.models.enums import Level
from academy.repositories.skill_repository import SkillRecord, SkillRepository
from academy.services.errors import NotFoundError, ValidationError

MIN_SCORE = 1
MAX_SCORE = 10


@dataclass(frozen=True)
class SkillRating:
    skill_id: str
    score: int
    notes: str | None = None


def check_ratings(
    ratings: Iterable[SkillRating],
    skills: dict[str, SkillRecord],
    level: Level | None,
) -> None:
    """All-or-nothing check of ratings against the already fetched skills."""
    ratings = list(ratings)
    missing = sorted({rating.skill_id for rating in ratings} - set(skills))
    if missing:
        raise NotFoundError(f"One or more skills not found: {', '.join(missing)}")
    for rating in ratings:
        skill = skills[rating.skill_id]
        if level is None or skill.applicable_level != level:
            label = level.value if level else "unknown"
            raise ValidationError(
                f"Skill '{skill.name}' is not applicable for {label} level"
            )
        if not skill.is_active:
            raise ValidationError(f"Skill '{skill.name}' is not active")
        if not MIN_SCORE <= rating.score <= MAX_SCORE:
            raise ValidationError(
                f"Score for skill '{skill.name}' must be between {MIN_SCORE} and {MAX_SCORE}"
            )


async def validate_ratings(
    repo: SkillRepository,
    ratings: list[SkillRating],
    level: Level | None,
) -> dict[str, SkillRecord]:
    skills = await repo.get_many([rating.skill_id for rating in ratings])
    check_ratings(ratings, skills, level)
    return skills
