from __future__ import annotations

import json
import logging
from typing import Any

from quarry.models import RouteDecision

DEFAULT_TELEMETRY_TAG = "retrieval-orchestration"


def build_graph_invoke_config(request_id: str) -> dict[str, Any]:
    return {
        "tags": [DEFAULT_TELEMETRY_TAG],
        "metadata": {
            "request_id": request_id,
            "component": "retrieval_orchestration",
        },
    }


def emit_orchestration_telemetry(
    state: dict[str, Any],
    logger: logging.Logger | None = None,
) -> None:
    active_logger = logger or logging.getLogger(__name__)
    request_id = _request_id(state)
    strategy = _strategy_value(state.get("route"))

    for event in _events(state.get("telemetry_events")):
        payload = {
            "request_id": request_id,
            "strategy": strategy,
            **event,
        }
        active_logger.info(
            "orchestration_event %s", json.dumps(payload, sort_keys=True)
        )


def _request_id(state: dict[str, Any]) -> str:
    request_id = state.get("request_id")
    if isinstance(request_id, str) and request_id.strip():
        return request_id
    return "unknown"


def _strategy_value(route: Any) -> str | None:
    if isinstance(route, RouteDecision):
        return route.strategy.value
    return None


def _events(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [event for event in value if isinstance(event, dict)]
