from .cached_store import CachedVectorStore
from .in_memory_store import BM25, InMemoryVectorStore

__all__ = ["BM25", "CachedVectorStore", "InMemoryVectorStore"]
