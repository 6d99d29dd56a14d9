"""
Relevance metrics for a multi-turn retrieval call
"""

from typing import List, Sequence

from .fusion import SCORE_BREAKDOWN_KEY, is_historical
from .models import MultiTurnResults, RelevanceMetrics, SearchResult, TurnContext


def _repetition_ratio(items: List[str]) -> float:
    """Share of mentions that repeat an earlier one: (total - unique) / total"""
    if not items:
        return 0.0
    return (len(items) - len(set(items))) / len(items)


def _boost(doc: SearchResult) -> float:
    breakdown = doc.metadata.get(SCORE_BREAKDOWN_KEY) or {}
    return breakdown.get("boost") or 1.0


def calculate_relevance_metrics(
    turn_contexts: Sequence[TurnContext],
    combined_docs: Sequence[SearchResult],
) -> RelevanceMetrics:
    """
    Measure how connected the conversation is.

    - entity_overlap: how often entities recur across retained turns
    - topic_continuity: the same ratio over topics
    - contextual_relevance: how much historical docs in the final list were
      boosted, ``clamp((mean_boost - 1) * 2, 0, 1)``

    All values are rounded to two decimals; no retained turns means zeros.
    """
    if not turn_contexts:
        return RelevanceMetrics()

    entities = [entity for ctx in turn_contexts for entity in ctx.extracted_entities]
    topics = [topic for ctx in turn_contexts for topic in ctx.key_topics]

    historical_boosts = [_boost(doc) for doc in combined_docs if is_historical(doc)]
    mean_boost = sum(historical_boosts) / len(historical_boosts) if historical_boosts else 1.0
    contextual_relevance = min(max((mean_boost - 1.0) * 2.0, 0.0), 1.0)

    return RelevanceMetrics(
        entity_overlap=round(_repetition_ratio(entities), 2),
        topic_continuity=round(_repetition_ratio(topics), 2),
        contextual_relevance=round(contextual_relevance, 2),
    )


def format_multi_turn_summary(results: MultiTurnResults) -> str:
    """Short bullet summary of a multi-turn retrieval for status displays"""
    metrics = results.relevance_metrics

    lines = [
        "Multi-turn context analysis:",
        f"• Analyzed {len(results.turn_contexts)} previous turns",
    ]
    if results.entity_chain:
        lines.append(f"• Key entities: {', '.join(results.entity_chain[:5])}")
    if results.topic_chain:
        lines.append(f"• Main topics: {', '.join(results.topic_chain[:3])}")
    lines.append(f"• Entity continuity: {metrics.entity_overlap * 100:.0f}%")
    lines.append(f"• Topic continuity: {metrics.topic_continuity * 100:.0f}%")
    lines.append(f"• Contextual relevance: {metrics.contextual_relevance * 100:.0f}%")

    return "\n".join(lines)
