"""
Vector Store Retriever - Documents + Conversation History

One retrieval surface over two corpora:
- the document store (ingested files, knowledge base)
- the conversation-history store (past user/assistant exchanges)

``top_k`` is split 70/30 between the two, both are searched concurrently,
and the merged list is ranked by score. Store failures never reach the
caller: they become empty results and are reported to the logger and the
optional ``on_error`` hook.
"""

import asyncio
import math
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from ..context_engine.models import PhaseType, RetrievalPhase, SearchResult
from ..core.config import settings
from ..core.exceptions import ErrorHook, VectorStoreError, notify_error
from ..core.logging_config import LoggerMixin
from .vector_store_base import SOURCE_FILTER, TOP_K_FILTER, VectorStoreInterface


DOCUMENT_CORPUS = "documents"
CONVERSATION_CORPUS = "conversations"


def split_top_k(top_k: int, document_share: float = 0.7) -> Tuple[int, int]:
    """
    Split ``top_k`` into (document slots, conversation slots).

    The document corpus always gets at least one slot.
    """
    doc_k = min(top_k, max(1, math.floor(top_k * document_share + 0.5)))
    return doc_k, max(0, top_k - doc_k)


def merge_ranked(
    document_results: List[SearchResult],
    conversation_results: List[SearchResult],
    top_k: int,
) -> List[SearchResult]:
    """Documents first, then conversations; stable sort keeps that order for equal scores"""
    combined = [*document_results, *conversation_results]
    combined.sort(key=lambda result: result.score or 0.0, reverse=True)
    return combined[:top_k]


class VectorStoreRetriever(LoggerMixin):
    """Blend document search and conversation-history search into one ranked list"""

    def __init__(
        self,
        document_store: VectorStoreInterface,
        conversation_store: Optional[VectorStoreInterface] = None,
        top_k: Optional[int] = None,
        filters: Optional[Dict[str, Any]] = None,
        document_share: Optional[float] = None,
        on_error: Optional[ErrorHook] = None,
    ):
        """
        Args:
            document_store: Store holding the document corpus
            conversation_store: Store holding past exchanges; defaults to
                ``document_store``, with the corpora told apart by the
                ``source`` metadata filter
            top_k: Results returned by ``get_relevant_documents``
            filters: Extra filters passed to every search
            document_share: Share of ``top_k`` given to the document corpus
            on_error: Called with ``(stage, exception)`` for every swallowed failure
        """
        self.document_store = document_store
        self.conversation_store = conversation_store or document_store
        self.top_k = settings.RETRIEVER_TOP_K if top_k is None else top_k
        self.filters = dict(filters or {})
        self.on_error = on_error
        self.document_k, self.conversation_k = split_top_k(
            self.top_k,
            settings.DOCUMENT_SHARE if document_share is None else document_share,
        )

    async def get_relevant_documents(
        self,
        query: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[SearchResult]:
        """Search both corpora concurrently and return the merged top ``top_k``"""
        document_results, conversation_results = await asyncio.gather(
            self._search_documents(query, self.document_k, cancel_event),
            self._search_conversations(query, self.conversation_k, cancel_event),
        )
        return merge_ranked(document_results, conversation_results, self.top_k)

    async def get_document_results(self, query: str) -> List[SearchResult]:
        """Document corpus only, up to ``top_k`` results"""
        return await self._search_documents(query, self.top_k)

    async def get_conversation_results(self, query: str) -> List[SearchResult]:
        """Conversation-history corpus only, up to ``top_k`` results"""
        return await self._search_conversations(query, self.top_k)

    async def get_relevant_documents_incremental(
        self,
        query: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[RetrievalPhase]:
        """
        Yield partial results as each corpus finishes.

        Exactly three phases, in order: ``documents``, ``conversations`` and
        ``complete`` (merged and ranked), with progress 0, 1 and 2. The
        history search starts right away so it runs while the caller handles
        the first phase. Closing the generator early cancels it.
        """
        conversation_task = asyncio.ensure_future(
            self._search_conversations(query, self.conversation_k, cancel_event)
        )
        try:
            document_results = await self._search_documents(query, self.document_k, cancel_event)
            yield RetrievalPhase(type=PhaseType.DOCUMENTS, results=document_results, progress=0)

            conversation_results = await conversation_task
            yield RetrievalPhase(type=PhaseType.CONVERSATIONS, results=conversation_results, progress=1)

            yield RetrievalPhase(
                type=PhaseType.COMPLETE,
                results=merge_ranked(document_results, conversation_results, self.top_k),
                progress=2,
            )
        finally:
            if not conversation_task.done():
                conversation_task.cancel()

    async def _search_documents(
        self,
        query: str,
        k: int,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[SearchResult]:
        return await self._search_corpus(
            DOCUMENT_CORPUS, self.document_store, query, k, settings.DOCUMENT_SOURCE, cancel_event
        )

    async def _search_conversations(
        self,
        query: str,
        k: int,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[SearchResult]:
        return await self._search_corpus(
            CONVERSATION_CORPUS, self.conversation_store, query, k, settings.CONVERSATION_SOURCE, cancel_event
        )

    async def _search_corpus(
        self,
        corpus: str,
        store: VectorStoreInterface,
        query: str,
        k: int,
        source: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[SearchResult]:
        """Run one store search; failures become an empty list"""
        if k <= 0 or (cancel_event is not None and cancel_event.is_set()):
            return []

        filters = {**self.filters, TOP_K_FILTER: k, SOURCE_FILTER: source}
        try:
            results = await store.search(query, filters)
            if not isinstance(results, list):
                raise VectorStoreError(
                    f"Store returned {type(results).__name__} instead of a list",
                    corpus=corpus,
                )
            return results[:k]
        except Exception as exc:
            self.log_error(
                "Vector store search failed",
                corpus=corpus,
                query_length=len(query),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            notify_error(self.on_error, f"retriever.{corpus}", exc, self.logger)
            return []
