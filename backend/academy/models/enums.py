from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    COACH = "Coach"
    ADMIN = "Admin"
    MANAGER = "Manager"
    PARENT = "Parent"

    @property
    def is_elevated(self) -> bool:
        return self in {Role.ADMIN, Role.MANAGER}


class Level(str, Enum):
    DEVELOPMENT = "Development"
    ADVANCED = "Advanced"


class SkillCategory(str, Enum):
    ATHLETIC = "Athletic"
    TECHNICAL = "Technical"
    MENTALITY = "Mentality"
    PERSONALITY = "Personality"


class AssessmentPeriod(str, Enum):
    MONTHLY = "Monthly"
    QUARTERLY = "Quarterly"


class ProgressTrend(str, Enum):
    IMPROVING = "Improving"
    DECLINING = "Declining"
    STABLE = "Stable"
    NO_DATA = "No data available"


def parse_enum(enum_cls: type[Enum], raw: str | None):
    """Match by value or member name, case-insensitively. None when unknown."""
    if raw is None:
        return None
    lowered = str(raw).strip().lower()
    for member in enum_cls:
        if member.value.lower() == lowered or member.name.lower() == lowered:
            return member
    return None
