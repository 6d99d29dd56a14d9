"""
Global pytest configuration and fixtures.
"""

import sys
from pathlib import Path
from typing import Dict, List

import pytest

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from context_recall.context_engine.models import SearchResult  # noqa: E402
from tests.doubles import FailingRetriever, StubRetriever  # noqa: E402


@pytest.fixture
def sample_documents() -> List[SearchResult]:
    """Sample search results for testing."""
    return [
        SearchResult(
            id="ml-basics",
            text="Machine learning is a subset of artificial intelligence.",
            metadata={"source": "documents", "file": "ml_basics.pdf", "page": 1},
            score=0.8,
        ),
        SearchResult(
            id="dl-guide",
            text="Deep learning uses neural networks with multiple layers.",
            metadata={"source": "documents", "file": "dl_guide.pdf", "page": 3},
            score=0.7,
        ),
        SearchResult(
            id="nlp-intro",
            text="Natural language processing involves text analysis.",
            metadata={"source": "documents", "file": "nlp_intro.pdf", "page": 1},
            score=0.6,
        ),
    ]


@pytest.fixture
def sample_chat_messages() -> List[Dict[str, str]]:
    """Sample chat messages for testing."""
    return [
        {"role": "user", "content": "What is machine learning in Python?"},
        {"role": "assistant", "content": "Machine learning lets Python programs learn from data with libraries like TensorFlow."},
        {"role": "user", "content": "How does Docker help deploy it on AWS?"},
        {"role": "assistant", "content": "Docker packages the model so AWS ECS can run it."},
        {"role": "user", "content": "What about Kubernetes?"},
    ]


@pytest.fixture
def stub_retriever(sample_documents) -> StubRetriever:
    return StubRetriever(default=sample_documents)


@pytest.fixture
def failing_retriever() -> FailingRetriever:
    return FailingRetriever()
