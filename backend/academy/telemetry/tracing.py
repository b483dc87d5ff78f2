from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger("academy.telemetry")


def build_actor_attributes(
    actor_id: str, role: str | None, extra: dict[str, Any] | None = None
) -> dict[str, Any]:
    attributes = {"actorId": actor_id, "role": role}
    if extra:
        attributes.update(extra)
    return attributes


def build_event(
    name: str,
    *,
    assessment_id: str | None = None,
    player_id: str | None = None,
    attributes: dict[str, Any] | None = None,
) -> dict[str, Any]:
    payload = {
        "type": "event",
        "name": name,
        "assessmentId": assessment_id,
        "playerId": player_id,
        "attributes": attributes or {},
    }
    return payload


def emit_event(
    name: str,
    *,
    assessment_id: str | None = None,
    player_id: str | None = None,
    attributes: dict[str, Any] | None = None,
) -> dict[str, Any]:
    payload = build_event(
        name,
        assessment_id=assessment_id,
        player_id=player_id,
        attributes=attributes,
    )
    logger.info(json.dumps(payload, sort_keys=True, default=str))
    return payload


def build_metric(
    name: str,
    value: float,
    *,
    assessment_id: str | None = None,
    player_id: str | None = None,
    attributes: dict[str, Any] | None = None,
) -> dict[str, Any]:
    payload = {
        "type": "metric",
        "name": name,
        "value": value,
        "assessmentId": assessment_id,
        "playerId": player_id,
        "attributes": attributes or {},
    }
    return payload


def emit_metric(
    name: str,
    value: float,
    *,
    assessment_id: str | None = None,
    player_id: str | None = None,
    attributes: dict[str, Any] | None = None,
) -> dict[str, Any]:
    payload = build_metric(
        name,
        value,
        assessment_id=assessment_id,
        player_id=player_id,
        attributes=attributes,
    )
    logger.info(json.dumps(payload, sort_keys=True, default=str))
    return payload
