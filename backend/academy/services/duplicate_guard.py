from __future__ import annotations

from datetime import date

from academy.repositories.assessment_repository import AssessmentRepository, period_key
from academy.services.errors import DUPLICATE_ASSESSMENT, ConflictError
from academy.telemetry.tracing import emit_event


def duplicate_message(assessment_date: date) -> str:
    return (
        "An assessment already exists for this player in "
        f"{assessment_date.strftime('%B').upper()} {assessment_date.year}"
    )


async def ensure_unique_month(
    repo: AssessmentRepository,
    player_id: str,
    assessment_date: date,
    *,
    exclude_id: str | None = None,
) -> None:
    key = period_key(player_id, assessment_date)
    if await repo.exists_for_period(key, exclude_id=exclude_id):
        emit_event(
            "assessment.duplicate_rejected",
            assessment_id=exclude_id,
            player_id=player_id,
            attributes={"periodKey": key, "stage": "pre-check"},
        )
        raise ConflictError(duplicate_message(assessment_date), code=DUPLICATE_ASSESSMENT)
