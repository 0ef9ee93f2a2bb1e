from __future__ import annotations

import operator
from typing import Annotated, Any, TypedDict

from quarry.models import (
    CorpusStats,
    ExperimentVariant,
    Query,
    RetrievalConfig,
    RouteDecision,
)
from quarry.monitoring import SearchTrace
from quarry.retrievers.cascade import CascadeResult


class OrchestrationState(TypedDict, total=False):
    request_id: str
    raw_query: str
    org_id: str
    user_id: str
    recording_ids: tuple[str, ...] | None
    deadline: float | None
    trace: SearchTrace | None
    query: Query | None
    corpus_stats: CorpusStats | None
    route: RouteDecision | None
    variant: ExperimentVariant | None
    retrieval_config: RetrievalConfig | None
    cascade: CascadeResult | None
    search_failure_alert: dict[str, Any] | None
    telemetry_events: Annotated[list[dict[str, Any]], operator.add]
    errors: Annotated[list[str], operator.add]


def create_initial_state(
    raw_query: str,
    org_id: str,
    user_id: str,
    request_id: str = "unknown",
    recording_ids: tuple[str, ...] | None = None,
    deadline: float | None = None,
    trace: SearchTrace | None = None,
) -> OrchestrationState:
    return {
        "request_id": request_id,
        "raw_query": raw_query,
        "org_id": org_id,
        "user_id": user_id,
        "recording_ids": recording_ids,
        "deadline": deadline,
        "trace": trace,
        "query": None,
        "corpus_stats": None,
        "route": None,
        "variant": None,
        "retrieval_config": None,
        "cascade": None,
        "search_failure_alert": None,
        "telemetry_events": [],
        "errors": [],
    }
