from __future__ import annotations

import re

from quarry.models import Query, RewriteKind

META_QUESTION_PATTERNS = [
    r"^(?:do|did) (?:i|we) (?:have|own)\b",
    r"^(?:do|does|did) (?:you|it) (?:have|know)(?: anything)?\b",
    r"^what (?:do|did) (?:you|i|we) (?:have|know)\b",
    r"^(?:is|are) there (?:any|anything|some)\b",
    r"^have (?:i|we) (?:recorded|uploaded|saved|captured)\b",
    r"^(?:can|could) you (?:check|tell me) (?:if|whether) (?:i|we) have\b",
]
# Strips one leading object phrase; what follows is the topic. Object nouns
# are only dropped ahead of a preposition or at the end.
TOPIC_LEAD_PATTERN = re.compile(
    r"""^
    (?:(?:any|anything|something|some)(?:\s+|$))?
    (?:(?:content|contents|recordings?|videos?|documents?|notes?|meetings?
        |information|info|material|stuff)
       (?:\s+(?=(?:that|which|about|on|regarding|related|covering|mentioning
                  |discussing)\b)|$))?
    (?:(?:that|which)\s+(?:talks?|covers?|mentions?|discuss(?:es)?)(?:\s+|$))?
    (?:(?:about|on|regarding|related\s+to|covering|mentioning|discussing)(?:\s+|$))?
    (?:(?:the|my|our)(?:\s+|$))?
    """,
    re.IGNORECASE | re.VERBOSE,
)
TRAILING_LIBRARY_PATTERN = re.compile(
    r"\s+(?:in|from|within) (?:my|our|the) "
    r"(?:library|recordings?|content|videos?|documents?|notes?)$",
    re.IGNORECASE,
)
EXPANSION_PREFIX = "Content explaining "
TRAILING_PUNCTUATION = "?!.,;: "


def preprocess_query(raw: str | Query) -> Query:
    if isinstance(raw, Query):
        return raw if raw.was_rewritten else preprocess_query(raw.raw)

    stripped = raw.strip()
    if not stripped or stripped.startswith(EXPANSION_PREFIX):
        return _unchanged(raw)

    normalized = stripped.lower()
    match = _match_meta_question(normalized)
    if match is None:
        return _unchanged(raw)

    topic = extract_topic(stripped[match.end() :])
    if not topic:
        return _unchanged(raw)

    return Query(
        raw=raw,
        rewritten=f"{EXPANSION_PREFIX}{topic}",
        was_rewritten=True,
        rewrite_kind=RewriteKind.META_QUESTION_EXPANSION,
        topic=topic,
    )


def is_meta_question(text: str) -> bool:
    return _match_meta_question(text.strip().lower()) is not None


def extract_topic(span: str) -> str:
    topic = span.strip().rstrip(TRAILING_PUNCTUATION)
    topic = TOPIC_LEAD_PATTERN.sub("", topic, count=1).strip()
    topic = TRAILING_LIBRARY_PATTERN.sub("", topic).strip()
    return topic.rstrip(TRAILING_PUNCTUATION)


def _match_meta_question(normalized: str) -> re.Match[str] | None:
    for pattern in META_QUESTION_PATTERNS:
        match = re.match(pattern, normalized)
        if match is not None:
            return match
    return None


def _unchanged(raw: str) -> Query:
    return Query(raw=raw, rewritten=raw)
