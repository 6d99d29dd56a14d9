"""
Context Engine - Multi-turn context for retrieval

Decides, turn by turn, which parts of the conversation still matter for the
current question and folds them into retrieval.

Layers:
    1. Turn Context - recent turns, reply pairing, recency decay
    2. Extraction - entities and topics per turn (pluggable)
    3. Fusion - dedup, entity/topic boosting, re-ranking
    4. Metrics - entity overlap, topic continuity, contextual relevance
"""

from .models import (
    Message,
    MultiTurnResults,
    MultiTurnRetrievalConfig,
    PairingStrategy,
    PhaseType,
    RelevanceMetrics,
    RetrievalPhase,
    SearchResult,
    TurnContext,
)
from .extraction import Extractor, RegexEntityTopicExtractor
from .turn_context import build_contextual_query, build_turn_contexts, context_weight
from .fusion import combine_and_rerank, content_fingerprint, deduplicate_results
from .metrics import calculate_relevance_metrics, format_multi_turn_summary

__all__ = [
    "Message",
    "MultiTurnResults",
    "MultiTurnRetrievalConfig",
    "PairingStrategy",
    "PhaseType",
    "RelevanceMetrics",
    "RetrievalPhase",
    "SearchResult",
    "TurnContext",
    "Extractor",
    "RegexEntityTopicExtractor",
    "build_contextual_query",
    "build_turn_contexts",
    "context_weight",
    "combine_and_rerank",
    "content_fingerprint",
    "deduplicate_results",
    "calculate_relevance_metrics",
    "format_multi_turn_summary",
]

__version__ = "0.1.0"
