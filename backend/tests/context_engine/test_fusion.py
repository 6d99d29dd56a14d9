"""
Tests for fusion, deduplication and re-ranking
"""

import pytest

from context_recall.context_engine.fusion import (
    HISTORICAL_CONTEXT_KEY,
    SCORE_BREAKDOWN_KEY,
    combine_and_rerank,
    content_fingerprint,
    deduplicate_results,
    extract_entity_chain,
    extract_topic_chain,
    weight_historical_docs,
)
from context_recall.context_engine.models import (
    Message,
    MultiTurnRetrievalConfig,
    SearchResult,
    TurnContext,
)
from tests.doubles import result


LONG_TEXT = "Vector databases store embeddings and answer nearest neighbour queries quickly."


def _context(turn_index, weight, entities=(), topics=()):
    return TurnContext(
        turn_index=turn_index,
        user_message=Message("user", f"question {turn_index}"),
        context_weight=weight,
        extracted_entities=list(entities),
        key_topics=list(topics),
    )


def test_short_fingerprint_is_normalized_text():
    assert content_fingerprint("  Hello \n\t  World ") == "hello world"


def test_long_fingerprint_keeps_edges():
    text = "A" * 30 + " middle " + "B" * 30

    assert content_fingerprint(text) == "a" * 25 + "..." + "b" * 25


def test_duplicates_differing_only_in_case_whitespace_and_metadata_collapse():
    first = result("doc-1", LONG_TEXT, 0.9, file="a.pdf")
    second = result("doc-2", "  " + LONG_TEXT.upper().replace(" ", "   "), 0.4, file="b.pdf")

    unique = deduplicate_results([first, second])

    assert unique == [first]


def test_long_texts_sharing_edges_are_treated_as_duplicates():
    first = result("a", "x" * 30 + " alpha " + "y" * 30, 0.5)
    second = result("b", "x" * 30 + " beta " + "y" * 30, 0.5)

    assert len(deduplicate_results([first, second])) == 1


def test_historical_weighting_scales_scores_and_tags_metadata():
    docs = [result("doc-1", "Docker images", 0.5, file="docker.md")]

    weighted = weight_historical_docs(docs, _context(3, 0.8))

    assert weighted[0].score == pytest.approx(0.4)
    assert weighted[0].metadata["file"] == "docker.md"
    assert weighted[0].metadata[HISTORICAL_CONTEXT_KEY] == {
        "turn_index": 3,
        "context_weight": 0.8,
        "is_historical": True,
    }
    # Inputs are left untouched
    assert docs[0].score == 0.5
    assert HISTORICAL_CONTEXT_KEY not in docs[0].metadata


def test_entity_and_topic_boost_multiply():
    doc = result("sorting", "Python Quick Sort implementation", 0.5)

    combined = combine_and_rerank([doc], [], ["python"], ["sort"], MultiTurnRetrievalConfig())

    breakdown = combined[0].metadata[SCORE_BREAKDOWN_KEY]
    assert breakdown["boost"] == pytest.approx(1.3 * 1.2)
    assert breakdown["entity_matches"] == 1
    assert breakdown["topic_matches"] == 1
    assert breakdown["original_score"] == 0.5
    assert combined[0].score == pytest.approx(0.5 * 1.56)


def test_repeated_matches_compound():
    doc = result("stack", "Docker on AWS with Kubernetes", 1.0)

    combined = combine_and_rerank([doc], [], ["docker", "aws", "kubernetes"], [], MultiTurnRetrievalConfig())

    assert combined[0].score == pytest.approx(1.3 ** 3)


def test_historical_docs_are_discounted_by_turn_weight():
    current = result("current", "Unrelated current result", 0.5)
    historical = weight_historical_docs([result("old", "Older result text", 0.5)], _context(0, 0.5))

    combined = combine_and_rerank([current], historical, [], [], MultiTurnRetrievalConfig())

    by_id = {doc.id: doc for doc in combined}
    # Weighted once on retrieval, once more when boosting
    assert by_id["old"].score == pytest.approx(0.5 * 0.5 * 0.5)
    assert by_id["old"].metadata[SCORE_BREAKDOWN_KEY]["boost"] == pytest.approx(0.5)
    assert [doc.id for doc in combined] == ["current", "old"]


def test_current_docs_win_deduplication():
    current = result("current", LONG_TEXT, 0.3)
    historical = weight_historical_docs([result("old", LONG_TEXT, 0.9)], _context(0, 1.0))

    combined = combine_and_rerank([current], historical, [], [], MultiTurnRetrievalConfig())

    assert [doc.id for doc in combined] == ["current"]
    assert HISTORICAL_CONTEXT_KEY not in combined[0].metadata


def test_combined_results_are_capped_at_fifteen():
    docs = [result(f"doc-{i}", f"Unique document number {i}", i / 100) for i in range(40)]

    combined = combine_and_rerank(docs[:20], docs[20:], [], [], MultiTurnRetrievalConfig())

    assert len(combined) == 15
    assert combined[0].id == "doc-39"
    assert all(a.score >= b.score for a, b in zip(combined, combined[1:]))


def test_equal_scores_keep_input_order():
    docs = [result(f"doc-{i}", f"Document body {i}", 0.5) for i in range(5)]

    combined = combine_and_rerank(docs, [], [], [], MultiTurnRetrievalConfig())

    assert [doc.id for doc in combined] == [f"doc-{i}" for i in range(5)]


def test_rerank_is_deterministic():
    docs = [result(f"doc-{i}", f"Python sort variant {i}", 0.5 if i % 2 else 0.4) for i in range(10)]
    config = MultiTurnRetrievalConfig()

    first = combine_and_rerank(docs, [], ["python"], ["sort"], config)
    second = combine_and_rerank(docs, [], ["python"], ["sort"], config)

    assert [doc.to_dict() for doc in first] == [doc.to_dict() for doc in second]


def test_missing_scores_count_as_zero():
    doc = SearchResult(id="empty", text="No score", score=None)

    combined = combine_and_rerank([doc], [], [], [], MultiTurnRetrievalConfig())

    assert combined[0].score == 0.0


def test_entity_chain_ranks_by_weighted_frequency():
    contexts = [
        _context(0, 0.64, entities=["Docker", "AWS"]),
        _context(1, 0.8, entities=["AWS"]),
        _context(2, 1.0, entities=["Kubernetes"]),
    ]

    assert extract_entity_chain(contexts) == ["aws", "kubernetes", "docker"]


def test_chains_are_capped():
    entities = [f"Entity{i}" for i in range(12)]
    topics = [f"topic {i}" for i in range(12)]
    contexts = [_context(0, 1.0, entities=entities, topics=topics)]

    assert len(extract_entity_chain(contexts)) == 10
    assert len(extract_topic_chain(contexts)) == 8


def test_topic_chain_merges_case_variants():
    contexts = [
        _context(0, 0.8, topics=["Docker"]),
        _context(1, 1.0, topics=["docker", "aws"]),
    ]

    assert extract_topic_chain(contexts) == ["docker", "aws"]
