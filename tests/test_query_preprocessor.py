import pytest

from quarry.models import Query, RewriteKind
from quarry.query_preprocessor import (
    EXPANSION_PREFIX,
    extract_topic,
    is_meta_question,
    preprocess_query,
)


@pytest.mark.parametrize(
    ("raw", "topic"),
    [
        ("Do I have anything about Kubernetes?", "Kubernetes"),
        ("do you know anything about the deployment pipeline?", "deployment pipeline"),
        ("Are there any recordings about pricing in my library?", "pricing"),
        ("What do you have on quarterly planning", "quarterly planning"),
        ("Have I recorded anything on OKRs?", "OKRs"),
    ],
)
def test_meta_question_is_rewritten_to_content_search(raw: str, topic: str) -> None:
    query = preprocess_query(raw)

    assert query.was_rewritten is True
    assert query.rewrite_kind == RewriteKind.META_QUESTION_EXPANSION
    assert query.topic == topic
    assert query.rewritten == f"{EXPANSION_PREFIX}{topic}"
    assert query.raw == raw


def test_plain_question_passes_through_unchanged() -> None:
    query = preprocess_query("What is the login process?")

    assert query.was_rewritten is False
    assert query.rewrite_kind == RewriteKind.NONE
    assert query.rewritten == "What is the login process?"
    assert query.topic is None


def test_rewritten_text_is_not_expanded_again() -> None:
    first = preprocess_query("Do I have anything about kubernetes?")

    second = preprocess_query(first.rewritten)

    assert second.was_rewritten is False
    assert second.rewritten == first.rewritten


def test_already_rewritten_query_is_returned_as_is() -> None:
    first = preprocess_query("Do I have anything about kubernetes?")

    assert preprocess_query(first) is first


def test_unrewritten_query_model_is_reprocessed_from_raw() -> None:
    query = preprocess_query(Query(raw="do we have notes on onboarding", rewritten="x"))

    assert query.was_rewritten is True
    assert query.topic == "onboarding"


@pytest.mark.parametrize("raw", ["Do I have?", "", "   ", "is there anything?"])
def test_match_without_topic_is_a_no_op(raw: str) -> None:
    query = preprocess_query(raw)

    assert query.was_rewritten is False
    assert query.rewritten == raw


def test_is_meta_question_ignores_case_and_whitespace() -> None:
    assert is_meta_question("  DO YOU HAVE anything on billing")
    assert not is_meta_question("Explain the billing cycle")


def test_extract_topic_strips_filler_and_trailing_library_phrase() -> None:
    assert extract_topic(" any videos about incident response in our recordings?") == (
        "incident response"
    )


@pytest.mark.parametrize(
    ("raw", "topic"),
    [
        ("Do I have recordings about meetings?", "meetings"),
        ("Do I have videos about notes?", "notes"),
        ("Do I have content about content moderation?", "content moderation"),
        ("Do we have notes on information security?", "information security"),
        ("Do I have content moderation videos?", "content moderation videos"),
    ],
)
def test_topic_words_that_name_content_types_are_kept(raw: str, topic: str) -> None:
    query = preprocess_query(raw)

    assert query.was_rewritten is True
    assert query.topic == topic
    assert query.rewritten == f"{EXPANSION_PREFIX}{topic}"


def test_bare_object_noun_has_no_topic() -> None:
    assert preprocess_query("Do I have recordings?").was_rewritten is False
