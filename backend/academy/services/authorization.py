"""Role and ownership permission table for assessment operations.

Every operation asks ``authorize`` once with the action and the resources it
touches. Admin and Manager are unrestricted; Coach rows carry an ownership
predicate that returns a denial reason, or None when the coach may proceed.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable

from academy.models.enums import Role
from academy.repositories.assessment_repository import AssessmentRecord
from academy.repositories.player_repository import PlayerRecord
from academy.repositories.user_repository import Actor
from academy.services.errors import (
    ASSESSMENT_FINALIZED,
    AccessDeniedError,
    ConflictError,
)


class Action(str, Enum):
    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    FINALIZE = "finalize"
    DELETE = "delete"
    VIEW_PLAYER = "view_player"
    VIEW_ASSESSOR = "view_assessor"


@dataclass(frozen=True)
class AccessContext:
    actor: Actor
    player: PlayerRecord | None = None
    assessment: AssessmentRecord | None = None
    assessor_id: str | None = None


Rule = Callable[[AccessContext], "str | None"]


def _always(ctx: AccessContext) -> str | None:
    return None


def _coaches_player(ctx: AccessContext) -> str | None:
    player = ctx.player
    if player is None or player.group_id is None:
        return "Player is not assigned to any group"
    if player.coach_id is None:
        return "Player's group has no assigned coach"
    if player.coach_id != ctx.actor.id:
        return "Coach can only access players in their assigned groups"
    return None


def _owns_assessment(ctx: AccessContext) -> str | None:
    if ctx.assessment is None or ctx.assessment.assessor_id != ctx.actor.id:
        return "Coach can only access assessments they created"
    return _coaches_player(ctx)


def _is_self(ctx: AccessContext) -> str | None:
    if ctx.assessor_id != ctx.actor.id:
        return "Coaches can only view their own assessments"
    return None


_ELEVATED = (Role.ADMIN, Role.MANAGER)

RULES: dict[tuple[Action, Role], Rule] = {
    **{(action, role): _always for action in Action for role in _ELEVATED},
    (Action.CREATE, Role.COACH): _coaches_player,
    (Action.VIEW, Role.COACH): _owns_assessment,
    (Action.EDIT, Role.COACH): _owns_assessment,
    (Action.FINALIZE, Role.COACH): _owns_assessment,
    (Action.VIEW_PLAYER, Role.COACH): _coaches_player,
    (Action.VIEW_ASSESSOR, Role.COACH): _is_self,
}


def authorize(action: Action, ctx: AccessContext) -> None:
    actor = ctx.actor
    if (
        action is Action.DELETE
        and ctx.assessment is not None
        and ctx.assessment.finalized
        and not actor.is_elevated
    ):
        raise ConflictError("Cannot delete finalized assessment", code=ASSESSMENT_FINALIZED)
    rule = RULES.get((action, actor.role)) if actor.role else None
    if rule is None:
        role = actor.role.value if actor.role else "unknown"
        raise AccessDeniedError(f"Role {role} is not permitted to {action.value} assessments")
    reason = rule(ctx)
    if reason:
        raise AccessDeniedError(reason)


def ensure_staff(actor: Actor) -> None:
    if actor.role not in (Role.COACH, *_ELEVATED):
        role = actor.role.value if actor.role else "unknown"
        raise AccessDeniedError(f"Role {role} is not permitted to access assessments")
