"""
Tests for the two-corpus vector store retriever
"""

import asyncio
import logging

import pytest

from context_recall.context_engine.models import PhaseType
from context_recall.core.config import settings
from context_recall.core.exceptions import VectorStoreError
from context_recall.services.vector_retriever import (
    VectorStoreRetriever,
    merge_ranked,
    split_top_k,
)
from tests.doubles import BrokenStore, RecordingStore, result


DOCS = [result(f"doc-{i}", f"document {i}", score, source="documents") for i, score in enumerate([0.9, 0.6, 0.5, 0.3])]
CHATS = [result(f"chat-{i}", f"exchange {i}", score, source="chat-history") for i, score in enumerate([0.7, 0.5])]


@pytest.mark.parametrize(
    "top_k, expected",
    [(1, (1, 0)), (3, (2, 1)), (5, (4, 1)), (10, (7, 3))],
)
def test_split_top_k(top_k, expected):
    assert split_top_k(top_k) == expected


def test_document_corpus_always_gets_a_slot():
    assert split_top_k(2, document_share=0.1) == (1, 1)


def test_merge_prefers_documents_on_ties():
    docs = [result("doc", "doc", 0.5)]
    chats = [result("chat", "chat", 0.5), result("chat-high", "chat", 0.8)]

    merged = merge_ranked(docs, chats, top_k=3)

    assert [doc.id for doc in merged] == ["chat-high", "doc", "chat"]


@pytest.mark.asyncio
async def test_relevant_documents_blend_both_corpora():
    store = RecordingStore({"documents": DOCS, "chat-history": CHATS})
    retriever = VectorStoreRetriever(store, top_k=5)

    results = await retriever.get_relevant_documents("query")

    # 4 document slots, 1 conversation slot
    assert [doc.id for doc in results] == ["doc-0", "chat-0", "doc-1", "doc-2", "doc-3"]
    assert all(a.score >= b.score for a, b in zip(results, results[1:]))


@pytest.mark.asyncio
async def test_filters_carry_slot_counts_and_source():
    store = RecordingStore({"documents": DOCS, "chat-history": CHATS})
    retriever = VectorStoreRetriever(store, top_k=10, filters={"agent_id": 7})

    await retriever.get_relevant_documents("query")

    filters = sorted((call["filters"] for call in store.calls), key=lambda f: f["source"])
    assert filters == [
        {"agent_id": 7, "top_k": 3, "source": "chat-history"},
        {"agent_id": 7, "top_k": 7, "source": "documents"},
    ]


@pytest.mark.asyncio
async def test_separate_conversation_store():
    documents = RecordingStore({"documents": DOCS})
    conversations = RecordingStore({"chat-history": CHATS})
    retriever = VectorStoreRetriever(documents, conversations, top_k=3)

    results = await retriever.get_relevant_documents("query")

    assert len(documents.calls) == 1
    assert len(conversations.calls) == 1
    assert [doc.id for doc in results] == ["doc-0", "chat-0", "doc-1"]


@pytest.mark.asyncio
async def test_single_corpus_queries_use_full_top_k():
    store = RecordingStore({"documents": DOCS, "chat-history": CHATS})
    retriever = VectorStoreRetriever(store, top_k=3)

    documents = await retriever.get_document_results("query")
    conversations = await retriever.get_conversation_results("query")

    assert [doc.id for doc in documents] == ["doc-0", "doc-1", "doc-2"]
    assert [doc.id for doc in conversations] == ["chat-0", "chat-1"]


@pytest.mark.asyncio
async def test_store_failures_become_empty_results(caplog):
    errors = []
    retriever = VectorStoreRetriever(BrokenStore(), top_k=5, on_error=lambda stage, exc: errors.append((stage, exc)))

    with caplog.at_level(logging.ERROR):
        results = await retriever.get_relevant_documents("query")

    assert results == []
    assert sorted(stage for stage, _ in errors) == ["retriever.conversations", "retriever.documents"]
    assert all(isinstance(exc, ConnectionError) for _, exc in errors)
    assert {record.corpus for record in caplog.records} == {"documents", "conversations"}


@pytest.mark.asyncio
async def test_one_failing_corpus_does_not_hide_the_other():
    documents = RecordingStore({"documents": DOCS})
    retriever = VectorStoreRetriever(documents, BrokenStore(), top_k=5)

    results = await retriever.get_relevant_documents("query")

    assert [doc.id for doc in results] == ["doc-0", "doc-1", "doc-2", "doc-3"]


@pytest.mark.asyncio
async def test_non_list_results_are_reported_as_store_errors():
    class TupleStore(RecordingStore):
        async def search(self, query, filters=None):
            return tuple(DOCS)

    errors = []
    retriever = VectorStoreRetriever(TupleStore(), top_k=2, on_error=lambda stage, exc: errors.append(exc))

    assert await retriever.get_relevant_documents("query") == []
    assert all(isinstance(exc, VectorStoreError) for exc in errors)
    assert errors[0].code == "VECTOR_STORE_ERROR"


@pytest.mark.asyncio
async def test_failing_error_hook_is_ignored():
    def hook(stage, exc):
        raise RuntimeError("hook bug")

    retriever = VectorStoreRetriever(BrokenStore(), top_k=2, on_error=hook)

    assert await retriever.get_relevant_documents("query") == []


@pytest.mark.asyncio
async def test_cancelled_retrieval_skips_the_store():
    store = RecordingStore({"documents": DOCS, "chat-history": CHATS})
    retriever = VectorStoreRetriever(store, top_k=5)
    cancel_event = asyncio.Event()
    cancel_event.set()

    assert await retriever.get_relevant_documents("query", cancel_event=cancel_event) == []
    assert store.calls == []


@pytest.mark.asyncio
async def test_incremental_phases_in_order():
    store = RecordingStore({"documents": DOCS, "chat-history": CHATS})
    retriever = VectorStoreRetriever(store, top_k=5)

    phases = [phase async for phase in retriever.get_relevant_documents_incremental("query")]

    assert [phase.type for phase in phases] == [PhaseType.DOCUMENTS, PhaseType.CONVERSATIONS, PhaseType.COMPLETE]
    assert [phase.progress for phase in phases] == [0, 1, 2]
    assert all(phase.total == 2 for phase in phases)
    assert [doc.id for doc in phases[0].results] == ["doc-0", "doc-1", "doc-2", "doc-3"]
    assert [doc.id for doc in phases[1].results] == ["chat-0"]
    assert phases[2].results == await retriever.get_relevant_documents("query")


@pytest.mark.asyncio
async def test_incremental_complete_phase_survives_failures():
    retriever = VectorStoreRetriever(BrokenStore(), top_k=5)

    phases = [phase async for phase in retriever.get_relevant_documents_incremental("query")]

    assert len(phases) == 3
    assert all(phase.results == [] for phase in phases)


@pytest.mark.asyncio
async def test_closing_incremental_stream_cancels_history_search():
    documents = RecordingStore({"documents": DOCS}, delay=0.01)
    conversations = RecordingStore({"chat-history": CHATS}, delay=5)
    retriever = VectorStoreRetriever(documents, conversations, top_k=5)

    stream = retriever.get_relevant_documents_incremental("query")
    first = await stream.__anext__()
    await stream.aclose()
    await asyncio.sleep(0.01)

    assert first.type is PhaseType.DOCUMENTS
    assert len(conversations.calls) == 1
    assert conversations.cancelled


@pytest.mark.asyncio
async def test_explicit_zero_top_k_is_kept():
    store = RecordingStore({"documents": DOCS, "chat-history": CHATS})
    retriever = VectorStoreRetriever(store, top_k=0)

    assert retriever.top_k == 0
    assert await retriever.get_relevant_documents("query") == []
    assert store.calls == []


def test_missing_top_k_uses_settings(monkeypatch):
    monkeypatch.setattr(settings, "RETRIEVER_TOP_K", 10)

    retriever = VectorStoreRetriever(RecordingStore())

    assert retriever.top_k == 10
    assert (retriever.document_k, retriever.conversation_k) == (7, 3)
