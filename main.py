from __future__ import annotations

from functools import lru_cache

from fastapi import FastAPI, Header, HTTPException, Query
from fastapi.responses import JSONResponse, RedirectResponse

from quarry.config import load_config, normalize_header_id
from quarry.models import QueryRequest, RetrievalResponse
from quarry.monitoring import SearchMonitor
from quarry.readiness import build_readiness_report
from quarry.service import RetrievalService

app = FastAPI(title="Quarry Retrieval Orchestrator", version="0.1.0")


@lru_cache(maxsize=1)
def get_search_monitor() -> SearchMonitor:
    config = load_config()
    return SearchMonitor(buffer_size=config.search_metrics_buffer_size)


@app.get("/")
async def root() -> RedirectResponse:
    return RedirectResponse(url="/docs", status_code=307)


@app.get("/health")
async def health() -> dict[str, bool]:
    return {"ok": True}


@app.get("/ready")
async def readiness() -> JSONResponse:
    report = build_readiness_report(load_config())
    status_code = 200 if bool(report.get("ready")) else 503
    return JSONResponse(content=report, status_code=status_code)


@app.post("/api/retrieval/query")
async def query_retrieval(
    payload: QueryRequest,
    x_org_id: str | None = Header(default=None, alias="X-Org-Id"),
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
) -> JSONResponse:
    org_id = normalize_header_id(x_org_id)
    user_id = normalize_header_id(x_user_id)
    if org_id is None or user_id is None:
        raise HTTPException(
            status_code=400,
            detail="X-Org-Id and X-User-Id headers are required",
        )

    config = load_config()
    monitor = get_search_monitor() if config.enable_search_monitoring else None
    service = RetrievalService(config, monitor=monitor)
    result = await service.run_query(
        payload.query,
        org_id=org_id,
        user_id=user_id,
        recording_ids=payload.recording_ids,
    )
    return JSONResponse(
        content=result.model_dump(mode="json"),
        headers=diagnostic_headers(result),
    )


@app.get("/api/retrieval/metrics/summary")
async def metrics_summary(
    x_org_id: str | None = Header(default=None, alias="X-Org-Id"),
) -> dict[str, float | int]:
    return get_search_monitor().summary(org_id=normalize_header_id(x_org_id))


@app.get("/api/retrieval/metrics/recent")
async def metrics_recent(
    limit: int = Query(default=10, ge=1, le=100),
    x_org_id: str | None = Header(default=None, alias="X-Org-Id"),
) -> JSONResponse:
    records = get_search_monitor().recent(
        limit=limit, org_id=normalize_header_id(x_org_id)
    )
    return JSONResponse(
        content={"records": [record.model_dump(mode="json") for record in records]}
    )


def diagnostic_headers(result: RetrievalResponse) -> dict[str, str]:
    diagnostics = result.diagnostics
    final_threshold = diagnostics.final_threshold
    return {
        "X-Search-Strategy": diagnostics.strategy_used.value,
        "X-Retrieval-Attempts": str(diagnostics.attempt_count),
        "X-Threshold-Used": (
            f"{final_threshold:.2f}" if final_threshold is not None else "none"
        ),
        "X-Similarity-Avg": f"{diagnostics.avg_similarity:.3f}",
        "X-Sources-Count": str(diagnostics.sources_found),
    }
