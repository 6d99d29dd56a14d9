"""
Vector Store Abstraction Layer

The retrieval engine only needs one capability from a vector database:
query by text with optional filters. Embedding and indexing stay behind
this interface.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..context_engine.models import SearchResult


# Filter keys understood by every store; anything else is a metadata equality filter
TOP_K_FILTER = "top_k"
SOURCE_FILTER = "source"


class VectorStoreInterface(ABC):
    """Abstract base class for vector store implementations"""

    @abstractmethod
    async def search(
        self,
        query: str,
        filters: Optional[Dict[str, Any]] = None
    ) -> List[SearchResult]:
        """Return results for ``query`` ordered by score descending"""
        pass

    async def get_stats(self) -> Dict[str, Any]:
        """Get vector store statistics"""
        return {}

    async def health_check(self) -> bool:
        """Check if the vector store is healthy"""
        return True
