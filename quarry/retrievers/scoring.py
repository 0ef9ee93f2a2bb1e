from __future__ import annotations

import re

STOP_WORDS = {
    "a",
    "about",
    "an",
    "and",
    "are",
    "content",
    "do",
    "does",
    "explaining",
    "for",
    "from",
    "how",
    "i",
    "in",
    "is",
    "it",
    "of",
    "on",
    "the",
    "to",
    "what",
    "with",
}


def tokenize(text: str) -> set[str]:
    return set(re.findall(r"[a-zA-Z0-9_]+", text.lower()))


def significant_tokens(text: str) -> set[str]:
    return {token for token in tokenize(text) if token not in STOP_WORDS}


def overlap_score(query: str, candidate: str) -> float:
    query_tokens = significant_tokens(query) or tokenize(query)
    if not query_tokens:
        return 0.0
    candidate_tokens = tokenize(candidate)
    hits = len(query_tokens.intersection(candidate_tokens))
    return hits / len(query_tokens)


def keyword_hit(query: str, candidate: str) -> bool:
    return bool(significant_tokens(query).intersection(tokenize(candidate)))
