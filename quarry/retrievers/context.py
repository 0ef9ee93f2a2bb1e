from __future__ import annotations

from typing import Any

from quarry.models import ChunkResult, RetrievalContext, SourceKind

VISUAL_CONTEXT_MARKER = " [Video with screen context]"


def assemble_context(
    query: str,
    chunks: list[ChunkResult] | tuple[ChunkResult, ...],
) -> RetrievalContext:
    sources = tuple(chunks)
    blocks = [
        render_citation_block(index, chunk)
        for index, chunk in enumerate(sources, start=1)
    ]
    return RetrievalContext(
        query=query,
        rendered_text="\n".join(blocks),
        sources=sources,
        total_chunks=len(sources),
    )


def empty_context(query: str) -> RetrievalContext:
    return RetrievalContext(query=query, rendered_text="", sources=(), total_chunks=0)


def render_citation_block(number: int, chunk: ChunkResult) -> str:
    visual = VISUAL_CONTEXT_MARKER if chunk.has_visual_context else ""
    block = (
        f"[{number}] {chunk.content_title}{_time_info(chunk)}{visual}:\n"
        f"{chunk.text}"
    )
    description = chunk.visual_description
    if description and description not in chunk.text:
        block += f"\nVisual context: {description}"
    return block + "\n"


def format_timestamp(seconds: float) -> str:
    total = int(seconds)
    minutes, secs = divmod(total, 60)
    return f"{minutes}:{secs:02d}"


def chunk_from_row(row: dict[str, Any], source_kind: SourceKind) -> ChunkResult | None:
    chunk_id = row.get("id") or row.get("chunk_id")
    content_id = row.get("recording_id") or row.get("content_id")
    text = row.get("chunk_text") or row.get("content") or row.get("text")
    if not isinstance(chunk_id, (str, int)) or not isinstance(content_id, (str, int)):
        return None
    if not isinstance(text, str) or not text.strip():
        return None

    metadata = row.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}
    return ChunkResult(
        content_id=str(content_id),
        content_title=_row_title(row),
        chunk_id=str(chunk_id),
        text=text,
        similarity=_row_similarity(row),
        time_range=_optional_str(
            metadata.get("timestampRange") or metadata.get("time_range")
        ),
        timestamp_seconds=_optional_float(
            metadata.get("startTime", metadata.get("start_time"))
        ),
        has_visual_context=bool(
            metadata.get("hasVisualContext") or metadata.get("has_visual_context")
        ),
        visual_description=_optional_str(
            metadata.get("visualDescription") or metadata.get("visual_description")
        ),
        source_kind=source_kind,
    )


def chunks_from_rows(rows: Any, source_kind: SourceKind) -> list[ChunkResult]:
    if not isinstance(rows, list):
        return []
    chunks: list[ChunkResult] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        chunk = chunk_from_row(row, source_kind)
        if chunk is not None:
            chunks.append(chunk)
    return chunks


def similarity_stats(chunks: tuple[ChunkResult, ...]) -> tuple[float, float, float]:
    if not chunks:
        return 0.0, 0.0, 0.0
    values = [chunk.similarity for chunk in chunks]
    return sum(values) / len(values), min(values), max(values)


def _time_info(chunk: ChunkResult) -> str:
    if chunk.time_range:
        return f" ({chunk.time_range})"
    if chunk.timestamp_seconds:
        return f" (at {format_timestamp(chunk.timestamp_seconds)})"
    return ""


def _row_title(row: dict[str, Any]) -> str:
    for key in ("recording_title", "content_title", "title"):
        value = row.get(key)
        if isinstance(value, str) and value.strip():
            return value
    nested = row.get("recordings")
    if isinstance(nested, list) and nested:
        nested = nested[0]
    if isinstance(nested, dict):
        title = nested.get("title")
        if isinstance(title, str) and title.strip():
            return title
    return "Untitled"


def _row_similarity(row: dict[str, Any]) -> float:
    for key in ("similarity", "score", "rank"):
        value = row.get(key)
        if isinstance(value, (int, float)):
            return float(value)
    return 0.0


def _optional_str(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _optional_float(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None
