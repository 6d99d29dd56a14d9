"""
Context Recall - multi-turn contextual retrieval for conversational agents.
"""

from .context_engine import MultiTurnResults, MultiTurnRetrievalConfig, SearchResult
from .services.multi_turn_retrieval import MultiTurnRetrievalService, perform_multi_turn_retrieval
from .services.vector_retriever import VectorStoreRetriever
from .core.logging_config import setup_logging

__all__ = [
    "MultiTurnResults",
    "MultiTurnRetrievalConfig",
    "MultiTurnRetrievalService",
    "SearchResult",
    "VectorStoreRetriever",
    "perform_multi_turn_retrieval",
    "setup_logging",
]
