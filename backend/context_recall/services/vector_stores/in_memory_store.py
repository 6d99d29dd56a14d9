"""
In-memory keyword vector store.

Implements the store contract with BM25 scoring so the retriever and the
multi-turn service can run without an external index (local development,
demos and tests). Scores are squashed into [0, 1) with ``s / (s + 1)``.
"""

import math
import uuid
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional

import numpy as np

from ...context_engine.models import Message, MessageLike, SearchResult, coerce_message
from ...core.config import settings
from ..vector_store_base import SOURCE_FILTER, TOP_K_FILTER, VectorStoreInterface


class BM25:
    """
    BM25 (Best Matching 25) - Sparse keyword retrieval.
    """

    def __init__(self, k1: float = 1.5, b: float = 0.75):
        """
        Args:
            k1: Term frequency saturation parameter (1.2-2.0 typical)
            b: Length normalization parameter (0.75 typical)
        """
        self.k1 = k1
        self.b = b
        self.corpus_size = 0
        self.avgdl = 0.0
        self.doc_freqs: List[Counter] = []
        self.idf: Dict[str, float] = {}
        self.doc_lengths: List[int] = []

    def fit(self, corpus: List[str]) -> None:
        """Build the index from scratch"""
        self.corpus_size = len(corpus)
        self.doc_freqs = []
        self.doc_lengths = []
        document_frequency: Counter = Counter()

        for doc in corpus:
            tokens = self._tokenize(doc)
            self.doc_lengths.append(len(tokens))
            self.doc_freqs.append(Counter(tokens))
            document_frequency.update(set(tokens))

        self.avgdl = sum(self.doc_lengths) / self.corpus_size if self.corpus_size > 0 else 0.0

        # IDF = log((N - df + 0.5) / (df + 0.5) + 1)
        self.idf = {
            term: math.log((self.corpus_size - df + 0.5) / (df + 0.5) + 1.0)
            for term, df in document_frequency.items()
        }

    def scores(self, query: str) -> np.ndarray:
        """BM25 score of every document for ``query``"""
        query_tokens = self._tokenize(query)
        scores = np.zeros(self.corpus_size)
        if not self.avgdl:
            return scores

        for doc_id in range(self.corpus_size):
            doc_len = self.doc_lengths[doc_id]
            term_freqs = self.doc_freqs[doc_id]
            score = 0.0

            for token in query_tokens:
                idf = self.idf.get(token)
                if idf is None:
                    continue
                tf = term_freqs.get(token, 0)
                numerator = tf * (self.k1 + 1)
                denominator = tf + self.k1 * (1 - self.b + self.b * (doc_len / self.avgdl))
                score += idf * (numerator / denominator)

            scores[doc_id] = score

        return scores

    @staticmethod
    def _tokenize(text: str) -> List[str]:
        tokens = [''.join(c for c in token if c.isalnum()) for token in text.lower().split()]
        return [t for t in tokens if t]


class InMemoryVectorStore(VectorStoreInterface):
    """Keyword store holding both the document corpus and conversation exchanges"""

    def __init__(self, k1: float = 1.5, b: float = 0.75):
        self._entries: List[SearchResult] = []
        self._bm25 = BM25(k1=k1, b=b)
        self._dirty = False

    def add_documents(self, documents: Iterable[Any], source: Optional[str] = None) -> List[str]:
        """
        Add documents to the store.

        Args:
            documents: ``SearchResult`` objects, ``{"id", "text", "metadata"}``
                dicts or plain strings
            source: Corpus tag stored under ``metadata["source"]``; defaults to
                the document corpus

        Returns:
            Ids of the stored entries
        """
        source = source or settings.DOCUMENT_SOURCE
        ids = []
        for document in documents:
            entry = self._to_entry(document, source)
            self._entries.append(entry)
            ids.append(entry.id)
        self._dirty = True
        return ids

    def add_conversation(self, conversation_id: str, messages: Iterable[MessageLike]) -> List[str]:
        """Store user/assistant exchanges of a conversation in the history corpus"""
        pending_user: Optional[Message] = None
        exchanges = []
        for message in (coerce_message(m) for m in messages):
            if message.role == "user":
                pending_user = message
            elif message.role == "assistant" and pending_user is not None:
                exchanges.append({
                    "id": f"{conversation_id}-{len(exchanges)}",
                    "text": f"User: {pending_user.content}\nAssistant: {message.content}",
                    "metadata": {"conversation_id": conversation_id},
                })
                pending_user = None
        return self.add_documents(exchanges, source=settings.CONVERSATION_SOURCE)

    async def search(
        self,
        query: str,
        filters: Optional[Dict[str, Any]] = None
    ) -> List[SearchResult]:
        filters = dict(filters or {})
        top_k = int(filters.pop(TOP_K_FILTER, settings.RETRIEVER_TOP_K))
        if top_k <= 0 or not self._entries:
            return []

        if self._dirty:
            self._bm25.fit([entry.text for entry in self._entries])
            self._dirty = False

        raw_scores = self._bm25.scores(query)
        # Stable ordering for equal scores: insertion order
        order = np.argsort(-raw_scores, kind="stable")

        results = []
        for idx in order:
            raw = float(raw_scores[idx])
            if raw <= 0:
                break
            entry = self._entries[int(idx)]
            if not self._matches(entry, filters):
                continue
            results.append(entry.with_score(raw / (raw + 1.0)))
            if len(results) >= top_k:
                break

        return results

    async def get_stats(self) -> Dict[str, Any]:
        by_source = Counter(entry.metadata.get(SOURCE_FILTER) for entry in self._entries)
        return {
            "total_docs": len(self._entries),
            "by_source": dict(by_source),
        }

    @staticmethod
    def _matches(entry: SearchResult, filters: Dict[str, Any]) -> bool:
        return all(entry.metadata.get(key) == value for key, value in filters.items())

    @staticmethod
    def _to_entry(document: Any, source: str) -> SearchResult:
        if isinstance(document, str):
            return SearchResult(id=str(uuid.uuid4()), text=document, score=0.0, metadata={SOURCE_FILTER: source})
        if isinstance(document, SearchResult):
            return document.with_metadata(**{SOURCE_FILTER: source})
        return SearchResult(
            id=str(document.get("id") or uuid.uuid4()),
            text=document["text"],
            score=0.0,
            metadata={**(document.get("metadata") or {}), SOURCE_FILTER: source},
        )
