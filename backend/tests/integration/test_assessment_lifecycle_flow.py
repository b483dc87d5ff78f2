from __future__ import annotations

import json
from datetime import date

import pytest

from academy.models.assessment import AssessmentUpdate, SkillRatingInput
from academy.services.errors import (
    AccessDeniedError,
    ConflictError,
    NotFoundError,
    ValidationError,
)

FULL_DEVELOPMENT_SET = {f"dev-{index}": 7 for index in range(1, 17)}


def _events(caplog, name):
    payloads = []
    for record in caplog.records:
        if record.name != "academy.telemetry":
            continue
        payload = json.loads(record.message)
        if payload.get("name") == name:
            payloads.append(payload)
    return payloads


@pytest.mark.asyncio
async def test_coach_creates_draft_for_own_player(service, actors, make_create, lean, caplog):
    caplog.set_level("INFO")

    record = await service.create(make_create(comments="Strong first touch"), actors["coach_a"])

    stored = lean.classes["Assessment"][record.id]
    assert stored["assessorId"] == "coach-a"
    assert stored["periodKey"] == "p1:2024-03"
    assert stored["finalized"] is False
    assert record.finalized is False
    assert record.comments == "Strong first touch"
    assert {score.skill_id for score in record.skill_scores} == {"dev-1", "dev-2"}
    assert all(score.previous_score is None for score in record.skill_scores)
    assert _events(caplog, "assessment.created")[0]["assessmentId"] == record.id


@pytest.mark.asyncio
async def test_create_as_finalized(service, actors, make_create):
    record = await service.create(make_create(isFinalized=True), actors["admin"])
    assert record.finalized is True


@pytest.mark.asyncio
async def test_second_assessment_in_same_month_is_rejected(service, actors, make_create, lean):
    await service.create(make_create(on="2024-03-01"), actors["coach_a"])

    with pytest.raises(ConflictError) as exc:
        await service.create(make_create(on="2024-03-31"), actors["admin"])

    assert exc.value.code == "DUPLICATE_ASSESSMENT"
    assert exc.value.message == "An assessment already exists for this player in MARCH 2024"
    assert len(lean.classes["Assessment"]) == 1


@pytest.mark.asyncio
async def test_store_unique_index_catches_a_missed_precheck(
    service, actors, make_create, lean, monkeypatch
):
    await service.create(make_create(), actors["coach_a"])

    async def _never_exists(key, *, exclude_id=None):
        return False

    monkeypatch.setattr(service.assessment_repo, "exists_for_period", _never_exists)

    with pytest.raises(ConflictError) as exc:
        await service.create(make_create(on="2024-03-20"), actors["coach_a"])

    assert exc.value.code == "DUPLICATE_ASSESSMENT"
    assert len(lean.classes["Assessment"]) == 1


@pytest.mark.asyncio
async def test_improvement_is_measured_against_previous_assessment(service, actors, make_create):
    await service.create(
        make_create(on="2024-01-10", scores={"dev-1": 4, "dev-2": 6}), actors["coach_a"]
    )
    await service.create(make_create(on="2024-02-10", scores={"dev-2": 8}), actors["coach_a"])

    march = await service.create(
        make_create(on="2024-03-10", scores={"dev-1": 7, "dev-2": 5, "dev-3": 6}),
        actors["coach_a"],
    )

    by_skill = {score.skill_id: score for score in march.skill_scores}
    assert (by_skill["dev-1"].previous_score, by_skill["dev-1"].improvement) == (4, 3)
    assert (by_skill["dev-2"].previous_score, by_skill["dev-2"].improvement) == (8, -3)
    assert by_skill["dev-3"].previous_score is None


@pytest.mark.asyncio
async def test_replacing_scores_recomputes_improvement(service, actors, make_create, lean):
    await service.create(make_create(on="2024-02-10", scores={"dev-1": 4}), actors["coach_a"])
    march = await service.create(
        make_create(on="2024-03-10", scores={"dev-1": 5}), actors["coach_a"]
    )

    updated = await service.update(
        march.id,
        AssessmentUpdate(
            skillRatings=[
                SkillRatingInput(skillId="dev-1", score=8),
                SkillRatingInput(skillId="dev-2", score=6),
            ]
        ),
        actors["coach_a"],
    )

    by_skill = {score.skill_id: score for score in updated.skill_scores}
    assert (by_skill["dev-1"].previous_score, by_skill["dev-1"].improvement) == (4, 4)
    assert by_skill["dev-2"].previous_score is None
    assert by_skill["dev-2"].improvement is None
    stored = {item["skillId"]: item for item in lean.classes["Assessment"][march.id]["skillScores"]}
    assert stored["dev-1"]["improvement"] == 4


@pytest.mark.asyncio
async def test_create_permission_failures(service, actors, make_create):
    with pytest.raises(AccessDeniedError):
        await service.create(make_create(player_id="p2"), actors["coach_a"])
    with pytest.raises(AccessDeniedError):
        await service.create(make_create(), actors["parent"])
    with pytest.raises(AccessDeniedError, match="no assigned coach"):
        await service.create(make_create(player_id="p4"), actors["coach_a"])
    with pytest.raises(NotFoundError, match="Player not found with ID: nobody"):
        await service.create(make_create(player_id="nobody"), actors["admin"])


@pytest.mark.asyncio
async def test_invalid_rating_persists_nothing(service, actors, make_create, lean):
    with pytest.raises(ValidationError, match="not applicable for Development level"):
        await service.create(
            make_create(scores={"dev-1": 6, "adv-1": 7}), actors["coach_a"]
        )
    with pytest.raises(ValidationError, match="must be between 1 and 10"):
        await service.create(make_create(scores={"dev-1": 6, "dev-2": 11}), actors["coach_a"])
    with pytest.raises(NotFoundError, match="One or more skills not found"):
        await service.create(make_create(scores={"ghost": 6}), actors["coach_a"])

    assert lean.classes["Assessment"] == {}


@pytest.mark.asyncio
async def test_advanced_player_uses_advanced_catalog(service, actors, make_create):
    record = await service.create(
        make_create(player_id="p3", scores={"adv-1": 8}), actors["coach_a"]
    )
    assert record.player_id == "p3"


@pytest.mark.asyncio
async def test_update_draft_fields_and_replace_scores(service, actors, make_create):
    record = await service.create(
        make_create(scores={"dev-1": 5, "dev-2": 5, "dev-3": 5}), actors["coach_a"]
    )

    updated = await service.update(
        record.id,
        AssessmentUpdate(
            comments="Better positioning",
            skillRatings=[SkillRatingInput(skillId="dev-4", score=9)],
        ),
        actors["coach_a"],
    )

    assert updated.comments == "Better positioning"
    assert [score.skill_id for score in updated.skill_scores] == ["dev-4"]
    assert updated.skill_scores[0].score == 9


@pytest.mark.asyncio
async def test_update_requires_some_field(service, actors, make_create):
    record = await service.create(make_create(), actors["coach_a"])

    with pytest.raises(ValidationError, match="no fields"):
        await service.update(record.id, AssessmentUpdate(), actors["coach_a"])


@pytest.mark.asyncio
async def test_update_date_into_taken_month_conflicts(service, actors, make_create):
    await service.create(make_create(on="2024-03-10"), actors["coach_a"])
    april = await service.create(make_create(on="2024-04-10"), actors["coach_a"])

    with pytest.raises(ConflictError) as exc:
        await service.update(
            april.id, AssessmentUpdate(assessmentDate=date(2024, 3, 20)), actors["coach_a"]
        )
    assert exc.value.code == "DUPLICATE_ASSESSMENT"

    moved = await service.update(
        april.id, AssessmentUpdate(assessmentDate=date(2024, 4, 28)), actors["coach_a"]
    )
    assert moved.assessment_date == date(2024, 4, 28)


@pytest.mark.asyncio
async def test_other_coach_cannot_edit(service, actors, make_create):
    record = await service.create(make_create(), actors["coach_a"])

    with pytest.raises(AccessDeniedError):
        await service.update(record.id, AssessmentUpdate(comments="x"), actors["coach_b"])


@pytest.mark.asyncio
async def test_finalize_locks_assessment_for_coach(service, actors, make_create):
    record = await service.create(make_create(), actors["coach_a"])

    finalized = await service.finalize(record.id, actors["coach_a"])
    assert finalized.finalized is True

    with pytest.raises(ConflictError, match="Cannot edit finalized assessment"):
        await service.update(record.id, AssessmentUpdate(comments="late"), actors["coach_a"])
    with pytest.raises(ConflictError, match="already finalized"):
        await service.finalize(record.id, actors["coach_a"])
    with pytest.raises(ConflictError, match="Cannot delete finalized assessment"):
        await service.delete(record.id, actors["coach_a"])

    edited = await service.update(
        record.id, AssessmentUpdate(coachNotes="Reviewed"), actors["manager"]
    )
    assert edited.coach_notes == "Reviewed"
    assert edited.finalized is True


@pytest.mark.asyncio
async def test_partial_finalize_warns_and_reports(service, actors, make_create, caplog):
    caplog.set_level("INFO")
    record = await service.create(make_create(), actors["coach_a"])

    await service.finalize(record.id, actors["coach_a"])

    assert any(
        "partial assessment" in item.getMessage() and item.levelname == "WARNING"
        for item in caplog.records
    )
    event = _events(caplog, "assessment.finalized")[0]
    assert event["attributes"]["partial"] is True
    assert event["attributes"]["missingSkills"] == 14


@pytest.mark.asyncio
async def test_complete_finalize_is_not_partial(service, actors, make_create, caplog):
    caplog.set_level("INFO")
    record = await service.create(make_create(scores=FULL_DEVELOPMENT_SET), actors["coach_a"])

    await service.finalize(record.id, actors["coach_a"])

    assert _events(caplog, "assessment.finalized")[0]["attributes"]["partial"] is False


@pytest.mark.asyncio
async def test_delete_rules(service, actors, make_create, lean):
    draft = await service.create(make_create(on="2024-03-10"), actors["coach_a"])
    with pytest.raises(AccessDeniedError):
        await service.delete(draft.id, actors["coach_a"])

    final = await service.create(make_create(on="2024-04-10", isFinalized=True), actors["coach_a"])
    await service.delete(final.id, actors["admin"])
    await service.delete(draft.id, actors["manager"])

    assert lean.classes["Assessment"] == {}
    with pytest.raises(NotFoundError, match="Assessment not found"):
        await service.get(draft.id, actors["admin"])


@pytest.mark.asyncio
async def test_reads_respect_coach_scope(service, actors, make_create):
    mine = await service.create(make_create(player_id="p1"), actors["coach_a"])
    theirs = await service.create(make_create(player_id="p2"), actors["coach_b"])

    assert (await service.get(mine.id, actors["coach_a"])).id == mine.id
    with pytest.raises(AccessDeniedError):
        await service.get(theirs.id, actors["coach_a"])
    with pytest.raises(AccessDeniedError):
        await service.list_for_player("p2", actors["coach_a"])
    with pytest.raises(AccessDeniedError):
        await service.list_for_assessor("coach-b", actors["coach_a"])

    assert [item.id for item in await service.list_for_assessor("coach-b", actors["admin"])] == [
        theirs.id
    ]
    with pytest.raises(NotFoundError, match="Coach not found"):
        await service.list_for_assessor("nobody", actors["admin"])

    assert [item.id for item in await service.list_mine(actors["coach_a"])] == [mine.id]
    assert {item.id for item in await service.list_mine(actors["admin"])} == {mine.id, theirs.id}
    with pytest.raises(AccessDeniedError):
        await service.list_mine(actors["parent"])


@pytest.mark.asyncio
async def test_player_listing_is_newest_first(service, actors, make_create):
    for day in ("2024-01-05", "2024-03-05", "2024-02-05"):
        await service.create(make_create(on=day), actors["coach_a"])

    listed = await service.list_for_player("p1", actors["coach_a"])

    assert [item.assessment_date.month for item in listed] == [3, 2, 1]


@pytest.mark.asyncio
async def test_date_range_listing(service, actors, make_create):
    await service.create(make_create(player_id="p1", on="2024-02-10"), actors["coach_a"])
    await service.create(make_create(player_id="p1", on="2024-05-10"), actors["coach_a"])
    await service.create(make_create(player_id="p2", on="2024-02-11"), actors["coach_b"])

    start, end = date(2024, 2, 1), date(2024, 3, 31)
    coach_view = await service.list_in_date_range(start, end, actors["coach_a"])
    admin_view = await service.list_in_date_range(start, end, actors["admin"])

    assert [(item.player_id, item.assessment_date.month) for item in coach_view] == [("p1", 2)]
    assert {item.player_id for item in admin_view} == {"p1", "p2"}
    with pytest.raises(ValidationError):
        await service.list_in_date_range(end, start, actors["admin"])


@pytest.mark.asyncio
async def test_can_assess_reflects_existing_month(service, actors, make_create):
    allowed, message = await service.can_assess("p1", 2024, 3, actors["coach_a"])
    assert allowed is True
    assert message == "Player can be assessed for 3/2024"

    await service.create(make_create(on="2024-03-15"), actors["coach_a"])

    allowed, message = await service.can_assess("p1", 2024, 3, actors["coach_a"])
    assert allowed is False
    assert message == "An assessment already exists for this player in MARCH 2024"

    with pytest.raises(ValidationError, match="Invalid month"):
        await service.can_assess("p1", 2024, 13, actors["coach_a"])
    with pytest.raises(AccessDeniedError):
        await service.can_assess("p2", 2024, 3, actors["coach_a"])
