"""Per-query search-quality telemetry.

A ``SearchTrace`` accumulates one query's configuration, retries and outcome
while the cascade runs; closing it produces an immutable
``SearchQualityRecord`` that is handed to ``SearchMonitor`` exactly once.
The monitor is a sink: it evaluates alert conditions, logs structured lines
and keeps a bounded buffer of recent records for summaries.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict

from quarry.models import SearchMethod

LOGGER = logging.getLogger(__name__)

SLOW_SEARCH_MS = 3000
LOW_SIMILARITY = 0.5
SEARCH_FAILURE_RECOMMENDATION = (
    "Library has content but no rung matched; review chunking, embeddings "
    "or the cascade thresholds for this query shape."
)
_SEVERITY_LEVELS = {
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class SearchQualityRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    query_id: str
    started_at: datetime
    org_id: str
    user_id: str
    query: str
    query_length: int
    query_word_count: int
    strategy: str | None = None
    threshold_final: float | None = None
    use_hybrid: bool = False
    use_agentic: bool = False
    attempts: int = 0
    retried_with_lower_threshold: bool = False
    retried_with_hybrid: bool = False
    retried_with_keyword: bool = False
    sources_found: int = 0
    avg_similarity: float = 0.0
    min_similarity: float = 0.0
    max_similarity: float = 0.0
    total_time_ms: int = 0
    success: bool = False
    used_tool_fallback: bool = False
    search_failure_alerted: bool = False
    variant_id: str | None = None


_RETRY_FLAGS = {
    SearchMethod.THRESHOLD_LOWERED: "retried_with_lower_threshold",
    SearchMethod.HYBRID_FORCED: "retried_with_hybrid",
    SearchMethod.KEYWORD_FALLBACK: "retried_with_keyword",
}
_PATCHABLE_FIELDS = {
    "strategy",
    "threshold_final",
    "use_hybrid",
    "use_agentic",
    "attempts",
    "used_tool_fallback",
    "search_failure_alerted",
    "variant_id",
}


@dataclass
class SearchTrace:
    query_id: str
    org_id: str
    user_id: str
    query: str
    started_at: datetime
    started_clock: float
    fields: dict[str, Any] = field(default_factory=dict)
    record: SearchQualityRecord | None = None

    @property
    def closed(self) -> bool:
        return self.record is not None

    def update_config(self, **fields: Any) -> None:
        unknown = set(fields) - _PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown search trace fields: {sorted(unknown)}")
        if self.closed:
            return
        self.fields.update(fields)

    def record_retry(self, method: SearchMethod) -> None:
        if self.closed:
            return
        self.fields["attempts"] = int(self.fields.get("attempts", 0)) + 1
        flag = _RETRY_FLAGS.get(method)
        if flag is not None:
            self.fields[flag] = True
        LOGGER.debug(
            "Search retry recorded",
            extra={
                "query_id": self.query_id,
                "method": method.value,
                "attempt": self.fields["attempts"],
            },
        )

    def end_search(
        self,
        *,
        success: bool,
        total_time_ms: int | None = None,
        sources_found: int | None = None,
        similarities: tuple[float, ...] | list[float] = (),
    ) -> SearchQualityRecord:
        if self.record is not None:
            return self.record

        found = sources_found if sources_found is not None else len(similarities)
        if total_time_ms is None:
            total_time_ms = int((time.perf_counter() - self.started_clock) * 1000)
        values = list(similarities)
        self.record = SearchQualityRecord(
            query_id=self.query_id,
            started_at=self.started_at,
            org_id=self.org_id,
            user_id=self.user_id,
            query=self.query,
            query_length=len(self.query),
            query_word_count=len(self.query.split()),
            sources_found=found,
            avg_similarity=(sum(values) / len(values)) if values else 0.0,
            min_similarity=min(values) if values else 0.0,
            max_similarity=max(values) if values else 0.0,
            total_time_ms=max(total_time_ms, 0),
            success=success and found > 0,
            **self.fields,
        )
        return self.record


def start_search(query_id: str, query: str, org_id: str, user_id: str) -> SearchTrace:
    return SearchTrace(
        query_id=query_id,
        org_id=org_id,
        user_id=user_id,
        query=query,
        started_at=datetime.now(timezone.utc),
        started_clock=time.perf_counter(),
    )


@dataclass(frozen=True)
class AlertCondition:
    name: str
    severity: str
    condition: Callable[[SearchQualityRecord], bool]
    message: Callable[[SearchQualityRecord], str]


def default_alert_conditions() -> list[AlertCondition]:
    return [
        AlertCondition(
            name="slow_search",
            severity="warning",
            condition=lambda m: m.total_time_ms > SLOW_SEARCH_MS,
            message=lambda m: (
                f"Slow search detected: {m.total_time_ms}ms for query "
                f'"{m.query[:50]}"'
            ),
        ),
        AlertCondition(
            name="low_similarity",
            severity="warning",
            condition=lambda m: m.success and m.avg_similarity < LOW_SIMILARITY,
            message=lambda m: (
                f"Low similarity results: avg {m.avg_similarity:.3f} for query "
                f'"{m.query[:50]}"'
            ),
        ),
        AlertCondition(
            name="retry_failure",
            severity="error",
            condition=lambda m: not m.success and m.attempts > 2,
            message=lambda m: (
                f'Search failed after {m.attempts} attempts: "{m.query[:50]}"'
            ),
        ),
        AlertCondition(
            name="excessive_retries",
            severity="info",
            condition=lambda m: m.attempts >= 3,
            message=lambda m: f"Search required {m.attempts} attempts",
        ),
        AlertCondition(
            name="tool_fallback",
            severity="info",
            condition=lambda m: m.used_tool_fallback,
            message=lambda m: (
                f'Search used tool fallback for query: "{m.query[:50]}"'
            ),
        ),
    ]


class SearchMonitor:
    def __init__(
        self,
        buffer_size: int = 100,
        alert_conditions: list[AlertCondition] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._records: deque[SearchQualityRecord] = deque(maxlen=max(buffer_size, 1))
        self._alert_conditions = (
            list(alert_conditions)
            if alert_conditions is not None
            else default_alert_conditions()
        )
        self._logger = logger or LOGGER
        self._lock = threading.Lock()

    def register_alert(self, alert: AlertCondition) -> None:
        with self._lock:
            self._alert_conditions.append(alert)

    def submit(self, record: SearchQualityRecord) -> list[str]:
        self._logger.info(
            "search_quality %s",
            json.dumps(_record_payload(record), sort_keys=True),
        )
        triggered = self._check_alerts(record)
        with self._lock:
            self._records.append(record)
        return triggered

    def recent(self, limit: int = 10, org_id: str | None = None) -> list[SearchQualityRecord]:
        with self._lock:
            records = list(self._records)
        if org_id is not None:
            records = [record for record in records if record.org_id == org_id]
        return records[-limit:] if limit > 0 else []

    def summary(self, org_id: str | None = None) -> dict[str, float | int]:
        records = self.recent(limit=len(self._records) or 1, org_id=org_id)
        if not records:
            return {
                "total_searches": 0,
                "success_rate": 0.0,
                "avg_similarity": 0.0,
                "avg_time_ms": 0.0,
                "retry_rate": 0.0,
            }
        successful = [record for record in records if record.success]
        with_retries = [record for record in records if record.attempts > 1]
        return {
            "total_searches": len(records),
            "success_rate": len(successful) / len(records),
            "avg_similarity": (
                sum(record.avg_similarity for record in successful)
                / max(len(successful), 1)
            ),
            "avg_time_ms": sum(record.total_time_ms for record in records)
            / len(records),
            "retry_rate": len(with_retries) / len(records),
        }

    def clear(self, org_id: str | None = None) -> None:
        with self._lock:
            if org_id is None:
                self._records.clear()
                return
            kept = [record for record in self._records if record.org_id != org_id]
            self._records.clear()
            self._records.extend(kept)

    def _check_alerts(self, record: SearchQualityRecord) -> list[str]:
        with self._lock:
            alert_conditions = list(self._alert_conditions)
        triggered: list[str] = []
        for alert in alert_conditions:
            if not alert.condition(record):
                continue
            triggered.append(alert.name)
            payload = {
                "alert": alert.name,
                "severity": alert.severity,
                "message": alert.message(record),
                "query_id": record.query_id,
                "org_id": record.org_id[:8],
            }
            self._logger.log(
                _SEVERITY_LEVELS.get(alert.severity, logging.INFO),
                "search_alert %s",
                json.dumps(payload, sort_keys=True),
            )
        return triggered


def should_alert_search_failure(sources_found: int, corpus_item_count: int) -> bool:
    return sources_found == 0 and corpus_item_count > 0


def emit_search_failure_alert(
    *,
    query: str,
    org_id: str,
    corpus_item_count: int,
    retrieval_attempts: int,
    logger: logging.Logger | None = None,
) -> dict[str, Any]:
    payload = {
        "query": query,
        "org_id": org_id,
        "recordings_in_library": corpus_item_count,
        "retrieval_attempts": retrieval_attempts,
        "recommendation": SEARCH_FAILURE_RECOMMENDATION,
    }
    (logger or LOGGER).warning(
        "SEARCH FAILURE ALERT %s", json.dumps(payload, sort_keys=True)
    )
    return payload


def _record_payload(record: SearchQualityRecord) -> dict[str, Any]:
    payload = record.model_dump(mode="json")
    payload["query"] = record.query[:50]
    payload["org_id"] = record.org_id[:8]
    payload["user_id"] = record.user_id[:8]
    return payload


def guard_monitor(action: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    try:
        return action(*args, **kwargs)
    except Exception as exc:  # noqa: BLE001
        LOGGER.warning(
            "Search monitor call failed",
            extra={"action": getattr(action, "__name__", repr(action))},
            exc_info=exc,
        )
        return None
