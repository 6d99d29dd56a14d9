"""
Multi-Turn Retrieval Service

Retrieval that remembers what the conversation has been about. For every
user turn:

1. Build weighted contexts for the recent turns (recency decay)
2. Retrieve for the current query alone (baseline)
3. Re-query once per retained turn with that turn's entities/topics,
   concurrently, scaling scores by the turn weight
4. Rank entities/topics across turns into chains
5. Fuse, deduplicate and boost everything into one list
6. Score how connected the conversation is

Any failure degrades to the baseline results; the caller never sees an
exception, but the error is logged and sent to the ``on_error`` hook.

One ``cancel_event`` covers the whole call: it is raced against the
baseline and every per-turn query, and handed on to retrievers whose
``get_relevant_documents`` takes a ``cancel_event`` keyword.
"""

import asyncio
import inspect
from typing import Any, Awaitable, List, Mapping, Optional, Protocol, Sequence, Tuple, TypeVar, Union

from ..context_engine.extraction import Extractor, default_extractor
from ..context_engine.fusion import (
    combine_and_rerank,
    extract_entity_chain,
    extract_topic_chain,
    weight_historical_docs,
)
from ..context_engine.metrics import calculate_relevance_metrics, format_multi_turn_summary
from ..context_engine.models import (
    MessageLike,
    MultiTurnResults,
    MultiTurnRetrievalConfig,
    SearchResult,
    TurnContext,
)
from ..context_engine.turn_context import build_contextual_query, build_turn_contexts
from ..core.exceptions import ErrorHook, notify_error
from ..core.logging_config import LoggerMixin


T = TypeVar("T")


class Retriever(Protocol):
    """
    Anything with ``async get_relevant_documents(query)``.

    Retrievers that also accept ``cancel_event=`` (like
    ``VectorStoreRetriever``) receive the caller's event.
    """

    async def get_relevant_documents(self, query: str) -> List[SearchResult]:
        ...


ConfigInput = Optional[Union[MultiTurnRetrievalConfig, Mapping[str, Any]]]


def accepts_cancel_event(retriever: Any) -> bool:
    """Whether ``retriever.get_relevant_documents`` takes a ``cancel_event`` keyword"""
    try:
        parameters = inspect.signature(retriever.get_relevant_documents).parameters
    except (TypeError, ValueError):
        return False
    return "cancel_event" in parameters or any(
        p.kind is inspect.Parameter.VAR_KEYWORD for p in parameters.values()
    )


def _is_set(cancel_event: Optional[asyncio.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


class MultiTurnRetrievalService(LoggerMixin):
    """Stateless multi-turn retrieval; safe to share across conversations"""

    def __init__(
        self,
        extractor: Optional[Extractor] = None,
        on_error: Optional[ErrorHook] = None,
    ):
        self.extractor = extractor or default_extractor
        self.on_error = on_error

    async def perform_multi_turn_retrieval(
        self,
        current_query: str,
        conversation_history: Sequence[MessageLike],
        retriever: Retriever,
        config: ConfigInput = None,
        *,
        extractor: Optional[Extractor] = None,
        on_error: Optional[ErrorHook] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> MultiTurnResults:
        """
        Retrieve for ``current_query`` using the conversation so far.

        Args:
            current_query: The user's latest message
            conversation_history: Ordered ``{role, content}`` messages
            retriever: Anything with ``async get_relevant_documents(query)``
            config: Full config or a partial mapping over the defaults
            extractor: Overrides the service's entity/topic extractor
            on_error: Overrides the service's error hook
            cancel_event: Once set, outstanding queries are abandoned and the
                call returns what it has with ``cancelled=True``. Set before
                the baseline finished, that is no documents at all.

        Returns:
            The full result bundle. On failure: baseline docs only, empty
            chains, zeroed metrics and ``error`` set.
        """
        hook = on_error or self.on_error
        current_turn_docs: Optional[List[SearchResult]] = None

        if _is_set(cancel_event):
            return MultiTurnResults.baseline_only([], cancelled=True)

        try:
            final_config = MultiTurnRetrievalConfig.merged(config)

            turn_contexts = build_turn_contexts(
                conversation_history, final_config, extractor or self.extractor
            )

            baseline, cancelled = await self._until_cancelled(
                self._query(retriever, current_query, cancel_event), cancel_event
            )
            if cancelled:
                self.log_info(
                    "Multi-turn retrieval cancelled before the baseline completed",
                    query_length=len(current_query),
                )
                return MultiTurnResults.baseline_only([], cancelled=True)
            current_turn_docs = baseline

            historical_docs, cancelled = await self._retrieve_historical_context(
                current_query, turn_contexts, retriever, final_config, cancel_event
            )

            entity_chain = extract_entity_chain(turn_contexts)
            topic_chain = extract_topic_chain(turn_contexts)

            combined_docs = combine_and_rerank(
                current_turn_docs, historical_docs, entity_chain, topic_chain, final_config
            )

            relevance_metrics = calculate_relevance_metrics(turn_contexts, combined_docs)

            self.log_info(
                "Multi-turn retrieval complete",
                turn_count=len(turn_contexts),
                result_count=len(combined_docs),
                query_length=len(current_query),
            )

            return MultiTurnResults(
                current_turn_docs=current_turn_docs,
                historical_docs=historical_docs,
                combined_docs=combined_docs,
                turn_contexts=turn_contexts,
                entity_chain=entity_chain,
                topic_chain=topic_chain,
                relevance_metrics=relevance_metrics,
                cancelled=cancelled,
            )

        except Exception as exc:
            self.log_error(
                "Multi-turn retrieval failed, falling back to single-turn retrieval",
                stage="multi_turn",
                query_length=len(current_query),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            notify_error(hook, "multi_turn", exc, self.logger)

            if current_turn_docs is None and not _is_set(cancel_event):
                current_turn_docs = await self._baseline(current_query, retriever, hook, cancel_event)
            return MultiTurnResults.baseline_only(
                current_turn_docs or [],
                cancelled=_is_set(cancel_event),
                error=str(exc),
            )

    async def _query(
        self,
        retriever: Retriever,
        query: str,
        cancel_event: Optional[asyncio.Event],
    ) -> List[SearchResult]:
        if cancel_event is not None and accepts_cancel_event(retriever):
            return await retriever.get_relevant_documents(query, cancel_event=cancel_event)
        return await retriever.get_relevant_documents(query)

    async def _baseline(
        self,
        current_query: str,
        retriever: Retriever,
        hook: Optional[ErrorHook],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[SearchResult]:
        """Single-turn retrieval used as the fallback; an empty list if that fails too"""
        try:
            docs, _ = await self._until_cancelled(
                self._query(retriever, current_query, cancel_event), cancel_event
            )
            return list(docs or [])
        except Exception as exc:
            self.log_error(
                "Fallback retrieval failed",
                stage="multi_turn.fallback",
                query_length=len(current_query),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            notify_error(hook, "multi_turn.fallback", exc, self.logger)
            return []

    @staticmethod
    async def _until_cancelled(
        awaitable: Awaitable[T],
        cancel_event: Optional[asyncio.Event],
    ) -> Tuple[Optional[T], bool]:
        """
        Await ``awaitable`` unless ``cancel_event`` fires first.

        Returns:
            (result, False) when it finished, (None, True) when it was
            abandoned. A finished result wins over a simultaneous cancel.
        """
        if cancel_event is None:
            return await awaitable, False

        task = asyncio.ensure_future(awaitable)
        cancel_waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({task, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
            if task.done():
                return task.result(), False
            return None, True
        finally:
            cancel_waiter.cancel()
            if not task.done():
                task.cancel()

    async def _retrieve_historical_context(
        self,
        current_query: str,
        turn_contexts: List[TurnContext],
        retriever: Retriever,
        config: MultiTurnRetrievalConfig,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Tuple[List[SearchResult], bool]:
        """
        Re-query once per turn with at most ``max_concurrency`` in flight.

        Results are merged in turn order, never completion order, so the
        output does not depend on scheduling. If several turns fail, the
        earliest turn's error is raised and the others are logged.

        Returns:
            (weighted historical docs, whether the call was cancelled)
        """
        semaphore = asyncio.Semaphore(config.max_concurrency)

        async def query_turn(context: TurnContext) -> Optional[List[SearchResult]]:
            async with semaphore:
                if _is_set(cancel_event):
                    return None
                enhanced_query = build_contextual_query(current_query, context, config)
                turn_docs = await self._query(retriever, enhanced_query, cancel_event)
                return weight_historical_docs(turn_docs, context)

        tasks = [asyncio.ensure_future(query_turn(context)) for context in turn_contexts]
        try:
            cancelled = await self._wait_for_turns(tasks, cancel_event)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

        historical_docs: List[SearchResult] = []
        first_error: Optional[BaseException] = None
        for context, task in zip(turn_contexts, tasks):
            if not task.done() or task.cancelled():
                continue
            error = task.exception()
            if error is not None:
                if first_error is None:
                    first_error = error
                else:
                    self.log_warning(
                        "Additional turn re-query failed",
                        turn_index=context.turn_index,
                        error=str(error),
                        error_type=type(error).__name__,
                    )
                continue
            weighted_docs = task.result()
            if weighted_docs is None:
                continue
            context.relevant_docs = weighted_docs
            historical_docs.extend(weighted_docs)

        if first_error is not None:
            raise first_error

        return historical_docs, cancelled or _is_set(cancel_event)

    @staticmethod
    async def _wait_for_turns(
        tasks: List["asyncio.Future[Any]"],
        cancel_event: Optional[asyncio.Event],
    ) -> bool:
        """Wait for every turn query, or stop early once ``cancel_event`` is set"""
        if not tasks:
            return False
        if cancel_event is None:
            await asyncio.wait(tasks)
            return False

        cancel_waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            remaining = set(tasks)
            while remaining:
                done, _ = await asyncio.wait(
                    remaining | {cancel_waiter}, return_when=asyncio.FIRST_COMPLETED
                )
                remaining -= done
                if cancel_waiter in done:
                    return True
            return False
        finally:
            cancel_waiter.cancel()

    @staticmethod
    def format_multi_turn_summary(results: MultiTurnResults) -> str:
        return format_multi_turn_summary(results)


multi_turn_retrieval_service = MultiTurnRetrievalService()


async def perform_multi_turn_retrieval(
    current_query: str,
    conversation_history: Sequence[MessageLike],
    retriever: Retriever,
    config: ConfigInput = None,
    **kwargs: Any,
) -> MultiTurnResults:
    """Module-level shortcut for the shared service"""
    return await multi_turn_retrieval_service.perform_multi_turn_retrieval(
        current_query, conversation_history, retriever, config, **kwargs
    )
