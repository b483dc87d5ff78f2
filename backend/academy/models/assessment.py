from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from pydantic import BaseModel, Field, field_validator, model_validator

from academy.models.enums import AssessmentPeriod

MAX_COMMENT_LENGTH = 1000
MAX_NOTES_LENGTH = 500


def ensure_not_future(value: date, *, today: date | None = None) -> date:
    reference = today or date.today()
    if value > reference:
        raise ValueError("Assessment date cannot be in the future")
    return value


class SkillRatingInput(BaseModel):
    skillId: str = Field(..., min_length=1)
    # Range is checked by the skill validation engine so the error carries its code.
    score: int
    notes: str | None = Field(None, max_length=MAX_NOTES_LENGTH)


class AssessmentCreate(BaseModel):
    playerId: str = Field(..., min_length=1)
    assessmentDate: date
    period: AssessmentPeriod
    comments: str | None = Field(None, max_length=MAX_COMMENT_LENGTH)
    coachNotes: str | None = Field(None, max_length=MAX_COMMENT_LENGTH)
    skillRatings: list[SkillRatingInput] = Field(..., min_length=1)
    isFinalized: bool = False

    @field_validator("assessmentDate")
    @classmethod
    def validate_date(cls, value: date) -> date:
        return ensure_not_future(value)

    @model_validator(mode="after")
    def validate_unique_skills(self) -> "AssessmentCreate":
        _reject_repeated_skills(self.skillRatings)
        return self


class AssessmentUpdate(BaseModel):
    assessmentDate: date | None = None
    period: AssessmentPeriod | None = None
    comments: str | None = Field(None, max_length=MAX_COMMENT_LENGTH)
    coachNotes: str | None = Field(None, max_length=MAX_COMMENT_LENGTH)
    skillRatings: list[SkillRatingInput] | None = None

    @field_validator("assessmentDate")
    @classmethod
    def validate_date(cls, value: date | None) -> date | None:
        if value is None:
            return value
        return ensure_not_future(value)

    @model_validator(mode="after")
    def validate_ratings(self) -> "AssessmentUpdate":
        if self.skillRatings is not None:
            if not self.skillRatings:
                raise ValueError("skillRatings must not be empty when provided")
            _reject_repeated_skills(self.skillRatings)
        return self

    def provided_fields(self) -> set[str]:
        return {name for name in self.model_fields_set if getattr(self, name) is not None}


def _reject_repeated_skills(ratings: list[SkillRatingInput]) -> None:
    seen: set[str] = set()
    for rating in ratings:
        if rating.skillId in seen:
            raise ValueError(f"Skill {rating.skillId} is rated more than once")
        seen.add(rating.skillId)


@dataclass(frozen=True)
class SummaryFilters:
    player_id: str | None = None
    group_id: str | None = None
    period: AssessmentPeriod | None = None
    date_from: date | None = None
    date_to: date | None = None
