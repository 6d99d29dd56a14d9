"""
Fusion & Re-ranking

Merges current-turn and historical candidates into one list:

1. Deduplicate by a normalized-text fingerprint (first occurrence wins)
2. Boost by entity/topic chain overlap and historical recency weight
3. Stable sort by boosted score, keep the top 15

Also aggregates per-turn entities/topics into the cross-turn chains used
for boosting.
"""

import re
from typing import Dict, Iterable, List, Sequence

from .models import (
    MAX_COMBINED_DOCS,
    MAX_ENTITY_CHAIN,
    MAX_TOPIC_CHAIN,
    MultiTurnRetrievalConfig,
    SearchResult,
    TurnContext,
)


FINGERPRINT_MIN_LENGTH = 50
FINGERPRINT_EDGE_CHARS = 25

HISTORICAL_CONTEXT_KEY = "multi_turn_context"
SCORE_BREAKDOWN_KEY = "multi_turn_score"

_WHITESPACE = re.compile(r"\s+")


def content_fingerprint(text: str) -> str:
    """Lowercased, whitespace-collapsed text; long texts keep only their first and last 25 chars"""
    normalized = _WHITESPACE.sub(" ", text.lower()).strip()
    if len(normalized) < FINGERPRINT_MIN_LENGTH:
        return normalized
    return normalized[:FINGERPRINT_EDGE_CHARS] + "..." + normalized[-FINGERPRINT_EDGE_CHARS:]


def deduplicate_results(docs: Iterable[SearchResult]) -> List[SearchResult]:
    seen = set()
    unique: List[SearchResult] = []
    for doc in docs:
        fingerprint = content_fingerprint(doc.text)
        if fingerprint not in seen:
            seen.add(fingerprint)
            unique.append(doc)
    return unique


def weight_historical_docs(docs: Iterable[SearchResult], context: TurnContext) -> List[SearchResult]:
    """Scale scores by the turn's weight and tag each doc with where it came from"""
    return [
        doc.with_score((doc.score or 0.0) * context.context_weight).with_metadata(
            **{
                HISTORICAL_CONTEXT_KEY: {
                    "turn_index": context.turn_index,
                    "context_weight": context.context_weight,
                    "is_historical": True,
                }
            }
        )
        for doc in docs
    ]


def is_historical(doc: SearchResult) -> bool:
    context = doc.metadata.get(HISTORICAL_CONTEXT_KEY)
    return isinstance(context, dict) and bool(context.get("is_historical"))


def _historical_weight(doc: SearchResult) -> float:
    # A zero weight falls back to 1.0
    return doc.metadata[HISTORICAL_CONTEXT_KEY].get("context_weight") or 1.0


def _weighted_chain(contexts: Sequence[TurnContext], attr: str, limit: int) -> List[str]:
    counts: Dict[str, float] = {}
    for context in contexts:
        for term in getattr(context, attr):
            normalized = term.lower()
            counts[normalized] = counts.get(normalized, 0.0) + context.context_weight

    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [term for term, _ in ranked[:limit]]


def extract_entity_chain(contexts: Sequence[TurnContext]) -> List[str]:
    """Entities across turns ranked by summed context weight (max 10)"""
    return _weighted_chain(contexts, "extracted_entities", MAX_ENTITY_CHAIN)


def extract_topic_chain(contexts: Sequence[TurnContext]) -> List[str]:
    """Topics across turns ranked by summed context weight (max 8)"""
    return _weighted_chain(contexts, "key_topics", MAX_TOPIC_CHAIN)


def count_matches(content: str, terms: Sequence[str]) -> int:
    return sum(1 for term in terms if term.lower() in content)


def rescore(
    doc: SearchResult,
    entity_chain: Sequence[str],
    topic_chain: Sequence[str],
    config: MultiTurnRetrievalConfig,
) -> SearchResult:
    """Apply the multi-turn boost and record its breakdown in metadata"""
    content = doc.text.lower()
    entity_matches = count_matches(content, entity_chain)
    topic_matches = count_matches(content, topic_chain)

    boost = 1.0
    if entity_matches:
        boost *= config.entity_boost_factor ** entity_matches
    if topic_matches:
        boost *= config.topic_boost_factor ** topic_matches
    if is_historical(doc):
        boost *= _historical_weight(doc)

    original_score = doc.score or 0.0
    final_score = original_score * boost
    return doc.with_score(final_score).with_metadata(
        **{
            SCORE_BREAKDOWN_KEY: {
                "original_score": original_score,
                "boost": boost,
                "final_score": final_score,
                "entity_matches": entity_matches,
                "topic_matches": topic_matches,
            }
        }
    )


def combine_and_rerank(
    current_docs: Sequence[SearchResult],
    historical_docs: Sequence[SearchResult],
    entity_chain: Sequence[str],
    topic_chain: Sequence[str],
    config: MultiTurnRetrievalConfig,
    limit: int = MAX_COMBINED_DOCS,
) -> List[SearchResult]:
    """
    Fuse candidates into the final ranked list.

    Args:
        current_docs: Baseline results for the current query
        historical_docs: Weighted results from per-turn re-queries
        entity_chain: Cross-turn entities used for boosting
        topic_chain: Cross-turn topics used for boosting
        config: Boost factors
        limit: Maximum results kept

    Returns:
        Deduplicated results sorted by boosted score. Equal scores keep
        their input order.
    """
    unique = deduplicate_results([*current_docs, *historical_docs])
    rescored = [rescore(doc, entity_chain, topic_chain, config) for doc in unique]
    rescored.sort(key=lambda doc: doc.score or 0.0, reverse=True)
    return rescored[:limit]
