"""
Data model for multi-turn retrieval

Search results, conversation messages, per-turn context, configuration and
the result bundle handed back to the orchestrator. Everything exposes a
``to_dict`` so callers can forward it to a UI or a log without importing
these types.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from ..core.config import settings
from ..core.exceptions import ConfigurationError


MAX_COMBINED_DOCS = 15
MAX_ENTITY_CHAIN = 10
MAX_TOPIC_CHAIN = 8


@dataclass(frozen=True)
class SearchResult:
    """A single hit from a vector store search"""
    id: str
    text: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    def with_score(self, score: float) -> "SearchResult":
        return replace(self, score=score)

    def with_metadata(self, **updates: Any) -> "SearchResult":
        """Return a copy with ``updates`` merged over the existing metadata"""
        return replace(self, metadata={**self.metadata, **updates})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "score": self.score,
            "metadata": dict(self.metadata),
        }


@dataclass
class Message:
    role: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


MessageLike = Union[Message, Mapping[str, Any]]


def coerce_message(message: MessageLike) -> Message:
    """Accept ``Message`` objects, ``{"role", "content"}`` dicts or anything with those attributes"""
    if isinstance(message, Message):
        return message
    if isinstance(message, Mapping):
        return Message(role=str(message.get("role", "")), content=str(message.get("content") or ""))
    return Message(role=str(getattr(message, "role", "")), content=str(getattr(message, "content", "") or ""))


@dataclass
class TurnContext:
    """
    One retained user turn from the conversation history.

    ``relevant_docs`` starts empty and is filled by the historical re-query
    stage of the same retrieval call.
    """
    turn_index: int
    user_message: Message
    context_weight: float
    assistant_message: Optional[Message] = None
    relevant_docs: List[SearchResult] = field(default_factory=list)
    extracted_entities: List[str] = field(default_factory=list)
    key_topics: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "turn_index": self.turn_index,
            "user_message": self.user_message.to_dict(),
            "assistant_message": self.assistant_message.to_dict() if self.assistant_message else None,
            "relevant_docs": [doc.to_dict() for doc in self.relevant_docs],
            "extracted_entities": list(self.extracted_entities),
            "key_topics": list(self.key_topics),
            "context_weight": self.context_weight,
        }


class PairingStrategy(str, Enum):
    """How an assistant reply is matched to a user turn"""
    WINDOWED = "windowed"  # i-th retained user turn <-> i-th assistant message of the whole history
    POSITIONAL = "positional"  # i-th user message <-> i-th assistant message
    ADJACENT = "adjacent"  # first assistant message before the next user message


def _default_max_concurrency() -> int:
    return settings.MAX_CONCURRENCY


class MultiTurnRetrievalConfig(BaseModel):
    """Immutable tuning knobs for one multi-turn retrieval call.

    Accepts snake_case or camelCase keys so partial configs coming from a
    UI settings payload can be applied directly.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    max_turns: int = Field(5, ge=1, description="Previous user turns considered")
    entity_extraction_enabled: bool = True
    topic_tracking_enabled: bool = True
    context_decay_rate: float = Field(0.8, gt=0.0, lt=1.0, description="Weight multiplier per turn of distance")
    min_context_weight: float = Field(0.1, ge=0.0, le=1.0, description="Turns weighted below this are dropped")
    entity_boost_factor: float = Field(1.3, ge=1.0)
    topic_boost_factor: float = Field(1.2, ge=1.0)
    max_concurrency: int = Field(
        default_factory=_default_max_concurrency, ge=1, description="Concurrent per-turn re-queries"
    )
    context_snippet_chars: int = Field(100, ge=0, description="Characters of the past user message added to re-queries")
    pairing_strategy: PairingStrategy = PairingStrategy.WINDOWED

    @classmethod
    def merged(
        cls,
        partial: Optional[Union["MultiTurnRetrievalConfig", Mapping[str, Any]]] = None,
    ) -> "MultiTurnRetrievalConfig":
        """
        Apply a partial mapping over the defaults.

        Raises:
            ConfigurationError: A value is out of range or a key is unknown
        """
        if partial is None:
            return cls()
        if isinstance(partial, cls):
            return partial
        try:
            return cls.model_validate(dict(partial))
        except ValidationError as exc:
            first = exc.errors()[0]
            field_name = ".".join(str(part) for part in first["loc"])
            raise ConfigurationError(
                f"Invalid multi-turn retrieval config: {field_name}: {first['msg']}",
                field=field_name,
            ) from exc

    @classmethod
    def adaptive_for_history(cls, message_count: int, **overrides: Any) -> "MultiTurnRetrievalConfig":
        """Deeper history for longer conversations: between 3 and 10 turns"""
        max_turns = min(10, max(3, message_count // 2))
        return cls.merged({"max_turns": max_turns, **overrides})


@dataclass
class RelevanceMetrics:
    entity_overlap: float = 0.0
    topic_continuity: float = 0.0
    contextual_relevance: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "entity_overlap": self.entity_overlap,
            "topic_continuity": self.topic_continuity,
            "contextual_relevance": self.contextual_relevance,
        }


@dataclass
class MultiTurnResults:
    """Everything one multi-turn retrieval call produced"""
    current_turn_docs: List[SearchResult]
    historical_docs: List[SearchResult] = field(default_factory=list)
    combined_docs: List[SearchResult] = field(default_factory=list)
    turn_contexts: List[TurnContext] = field(default_factory=list)
    entity_chain: List[str] = field(default_factory=list)
    topic_chain: List[str] = field(default_factory=list)
    relevance_metrics: RelevanceMetrics = field(default_factory=RelevanceMetrics)
    cancelled: bool = False
    error: Optional[str] = None

    @classmethod
    def baseline_only(
        cls,
        docs: List[SearchResult],
        *,
        cancelled: bool = False,
        error: Optional[str] = None,
    ) -> "MultiTurnResults":
        """Single-turn results: the baseline docs are also the combined docs"""
        return cls(
            current_turn_docs=list(docs),
            combined_docs=list(docs),
            cancelled=cancelled,
            error=error,
        )

    @property
    def degraded(self) -> bool:
        return self.error is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_turn_docs": [doc.to_dict() for doc in self.current_turn_docs],
            "historical_docs": [doc.to_dict() for doc in self.historical_docs],
            "combined_docs": [doc.to_dict() for doc in self.combined_docs],
            "turn_contexts": [ctx.to_dict() for ctx in self.turn_contexts],
            "entity_chain": list(self.entity_chain),
            "topic_chain": list(self.topic_chain),
            "relevance_metrics": self.relevance_metrics.to_dict(),
            "cancelled": self.cancelled,
            "error": self.error,
        }


class PhaseType(str, Enum):
    DOCUMENTS = "documents"
    CONVERSATIONS = "conversations"
    COMPLETE = "complete"


@dataclass(frozen=True)
class RetrievalPhase:
    """Partial result from the incremental retriever"""
    type: PhaseType
    results: List[SearchResult]
    progress: int
    total: int = 2

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "results": [doc.to_dict() for doc in self.results],
            "progress": self.progress,
            "total": self.total,
        }
