from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from quarry.models import (
    ChunkResult,
    RetrievalAttempt,
    RetrievalConfig,
    RetrievalContext,
    SearchMethod,
)
from quarry.monitoring import SearchTrace, guard_monitor
from quarry.retrievers.backend import (
    ContentSearchBackend,
    HybridSearchOptions,
    SemanticSearchOptions,
)
from quarry.retrievers.context import assemble_context

LOGGER = logging.getLogger(__name__)

LOWERED_THRESHOLD = 0.5
HYBRID_THRESHOLD = 0.5
KEYWORD_THRESHOLD = 0.3
MAX_BACKEND_CALLS = 4
DEFAULT_RUNG_TIMEOUT_SECONDS = 8.0


@dataclass(frozen=True)
class RungCall:
    query: str
    org_id: str
    config: RetrievalConfig
    backend: ContentSearchBackend
    recording_ids: tuple[str, ...] | None


@dataclass(frozen=True)
class Rung:
    method: SearchMethod
    threshold_for: Callable[[RetrievalConfig], float]
    should_run: Callable[[RetrievalConfig], bool]
    uses_hybrid: Callable[[RetrievalConfig], bool]
    execute: Callable[[RungCall], Awaitable[tuple[ChunkResult, ...]]]


@dataclass(frozen=True)
class CascadeResult:
    context: RetrievalContext
    attempts: tuple[RetrievalAttempt, ...]
    final_threshold: float
    final_config: RetrievalConfig

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def sources_found(self) -> int:
        return self.context.total_chunks


async def _semantic(call: RungCall) -> tuple[ChunkResult, ...]:
    result = await call.backend.semantic_search(
        call.query,
        call.org_id,
        SemanticSearchOptions(
            threshold=call.config.threshold,
            max_chunks=call.config.max_chunks,
            recording_ids=call.recording_ids,
            use_agentic=call.config.use_agentic,
            use_reranking=call.config.use_reranking,
            use_hierarchical=call.config.use_hierarchical,
        ),
    )
    return tuple(result.sources)


async def _hybrid(call: RungCall) -> tuple[ChunkResult, ...]:
    chunks = await call.backend.hybrid_search(
        call.query,
        HybridSearchOptions(
            org_id=call.org_id,
            limit=call.config.max_chunks,
            threshold=call.config.threshold,
            recording_ids=call.recording_ids,
        ),
    )
    return tuple(chunks)


async def _initial(call: RungCall) -> tuple[ChunkResult, ...]:
    if call.config.use_hybrid:
        return await _hybrid(call)
    return await _semantic(call)


def _always(config: RetrievalConfig) -> bool:
    _ = config
    return True


def _never(config: RetrievalConfig) -> bool:
    _ = config
    return False


RUNGS: tuple[Rung, ...] = (
    # Keeps the semantic_default label when a variant starts on hybrid search;
    # the attempt's used_hybrid flag records the call that ran.
    Rung(
        method=SearchMethod.SEMANTIC_DEFAULT,
        threshold_for=lambda config: config.threshold,
        should_run=_always,
        uses_hybrid=lambda config: config.use_hybrid,
        execute=_initial,
    ),
    # Nothing to lower when the starting threshold is already at the floor.
    Rung(
        method=SearchMethod.THRESHOLD_LOWERED,
        threshold_for=lambda config: LOWERED_THRESHOLD,
        should_run=lambda config: config.threshold > LOWERED_THRESHOLD,
        uses_hybrid=_never,
        execute=_semantic,
    ),
    Rung(
        method=SearchMethod.HYBRID_FORCED,
        threshold_for=lambda config: HYBRID_THRESHOLD,
        should_run=_always,
        uses_hybrid=_always,
        execute=_hybrid,
    ),
    Rung(
        method=SearchMethod.KEYWORD_FALLBACK,
        threshold_for=lambda config: KEYWORD_THRESHOLD,
        should_run=_always,
        uses_hybrid=_always,
        execute=_hybrid,
    ),
)


async def run_cascade(
    query: str,
    org_id: str,
    config: RetrievalConfig,
    backend: ContentSearchBackend,
    *,
    recording_ids: tuple[str, ...] | None = None,
    trace: SearchTrace | None = None,
    rung_timeout_seconds: float = DEFAULT_RUNG_TIMEOUT_SECONDS,
    deadline: float | None = None,
    rungs: tuple[Rung, ...] = RUNGS,
) -> CascadeResult:
    """Walk the fallback ladder until a rung returns at least one chunk.

    ``deadline`` is an absolute ``loop.time()`` value; each rung gets the
    smaller of ``rung_timeout_seconds`` and the remaining request budget.
    Backend errors and timeouts count as empty rungs.
    """
    loop = asyncio.get_running_loop()
    attempts: list[RetrievalAttempt] = []
    chunks: tuple[ChunkResult, ...] = ()
    final_config = config

    for rung in rungs[:MAX_BACKEND_CALLS]:
        if chunks:
            break
        if not rung.should_run(config):
            continue

        rung_config = config.model_copy(update={"threshold": rung.threshold_for(config)})
        final_config = rung_config
        attempt_number = len(attempts) + 1
        if trace is not None:
            if attempt_number == 1:
                guard_monitor(
                    trace.update_config,
                    threshold_final=rung_config.threshold,
                    use_hybrid=rung_config.use_hybrid,
                    use_agentic=rung_config.use_agentic,
                    attempts=1,
                )
            else:
                guard_monitor(trace.record_retry, rung.method)
                guard_monitor(trace.update_config, threshold_final=rung_config.threshold)

        call = RungCall(
            query=query,
            org_id=org_id,
            config=rung_config,
            backend=backend,
            recording_ids=recording_ids,
        )
        chunks, error, timed_out = await _run_rung(
            rung,
            call,
            _rung_timeout(loop, rung_timeout_seconds, deadline),
        )
        attempts.append(
            RetrievalAttempt(
                attempt_number=attempt_number,
                method=rung.method,
                threshold_used=rung_config.threshold,
                result_count=len(chunks),
                used_hybrid=rung.uses_hybrid(rung_config),
                error=error,
                timed_out=timed_out,
            )
        )
        LOGGER.info(
            "Retrieval rung completed",
            extra={
                "method": rung.method.value,
                "attempt": attempt_number,
                "threshold": rung_config.threshold,
                "result_count": len(chunks),
                "used_hybrid": rung.uses_hybrid(rung_config),
            },
        )

    return CascadeResult(
        context=assemble_context(query, chunks),
        attempts=tuple(attempts),
        final_threshold=final_config.threshold,
        final_config=final_config,
    )


async def _run_rung(
    rung: Rung,
    call: RungCall,
    timeout: float,
) -> tuple[tuple[ChunkResult, ...], str | None, bool]:
    if timeout <= 0:
        _log_rung_failure(rung, call, "request deadline exhausted")
        return (), "request deadline exhausted", True
    try:
        chunks = await asyncio.wait_for(rung.execute(call), timeout=timeout)
    except asyncio.TimeoutError:
        _log_rung_failure(rung, call, f"timed out after {timeout:.2f}s")
        return (), "timeout", True
    except Exception as exc:  # noqa: BLE001
        _log_rung_failure(rung, call, str(exc), exc)
        return (), f"{exc.__class__.__name__}: {exc}", False
    return tuple(chunks), None, False


def _rung_timeout(
    loop: asyncio.AbstractEventLoop,
    rung_timeout_seconds: float,
    deadline: float | None,
) -> float:
    if deadline is None:
        return rung_timeout_seconds
    return min(rung_timeout_seconds, deadline - loop.time())


def _log_rung_failure(
    rung: Rung,
    call: RungCall,
    error: str,
    exc: Exception | None = None,
) -> None:
    LOGGER.warning(
        "Retrieval rung failed; continuing cascade",
        extra={
            "query": call.query,
            "org_id": call.org_id,
            "method": rung.method.value,
            "config": call.config.model_dump(),
            "error": error,
        },
        exc_info=exc,
    )
