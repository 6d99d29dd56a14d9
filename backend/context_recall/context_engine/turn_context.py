"""
Turn context construction

Turns the raw conversation history into weighted ``TurnContext`` objects:
recent user turns, their assistant replies, a recency weight and the
entities/topics each turn talks about.
"""

from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..core.exceptions import ExtractionError
from .extraction import Extractor, default_extractor
from .models import (
    Message,
    MessageLike,
    MultiTurnRetrievalConfig,
    PairingStrategy,
    TurnContext,
    coerce_message,
)


TurnPair = Tuple[Message, Optional[Message]]


def context_weight(decay_rate: float, turns_from_current: int) -> float:
    """Recency weight: 1.0 for the latest turn, ``decay_rate`` per step back"""
    return decay_rate ** turns_from_current


def pair_windowed(messages: Sequence[Message], max_turns: Optional[int] = None) -> List[TurnPair]:
    """
    Pair the retained user turns with assistant messages by window position.

    The i-th of the last ``max_turns`` user messages gets the i-th assistant
    message of the whole history, so once the history is longer than the
    window the replies come from earlier in the conversation.
    """
    user_messages = [m for m in messages if m.role == "user"]
    assistant_messages = [m for m in messages if m.role == "assistant"]
    recent = user_messages[-max_turns:] if max_turns else user_messages
    return [
        (user, assistant_messages[i] if i < len(assistant_messages) else None)
        for i, user in enumerate(recent)
    ]


def pair_positional(messages: Sequence[Message], max_turns: Optional[int] = None) -> List[TurnPair]:
    """
    Pair the i-th user message with the i-th assistant message.

    Both lists are filtered by role first, so consecutive user messages or
    a trailing unanswered question shift every later pairing by one.
    """
    user_messages = [m for m in messages if m.role == "user"]
    assistant_messages = [m for m in messages if m.role == "assistant"]
    pairs = [
        (user, assistant_messages[i] if i < len(assistant_messages) else None)
        for i, user in enumerate(user_messages)
    ]
    return pairs[-max_turns:] if max_turns else pairs


def pair_adjacent(messages: Sequence[Message], max_turns: Optional[int] = None) -> List[TurnPair]:
    """Pair each user message with the first assistant reply before the next user message"""
    pairs: List[TurnPair] = []
    for message in messages:
        if message.role == "user":
            pairs.append((message, None))
        elif message.role == "assistant" and pairs and pairs[-1][1] is None:
            pairs[-1] = (pairs[-1][0], message)
    return pairs[-max_turns:] if max_turns else pairs


PAIRING_STRATEGIES: Dict[PairingStrategy, Callable[[Sequence[Message], Optional[int]], List[TurnPair]]] = {
    PairingStrategy.WINDOWED: pair_windowed,
    PairingStrategy.POSITIONAL: pair_positional,
    PairingStrategy.ADJACENT: pair_adjacent,
}


def build_turn_contexts(
    conversation_history: Sequence[MessageLike],
    config: MultiTurnRetrievalConfig,
    extractor: Optional[Extractor] = None,
) -> List[TurnContext]:
    """
    Build weighted contexts for the most recent user turns.

    Args:
        conversation_history: Ordered ``{role, content}`` messages
        config: Retrieval configuration
        extractor: Entity/topic extractor (defaults to the regex extractor)

    Returns:
        Contexts oldest first; turns weighted below ``min_context_weight``
        are left out.
    """
    extractor = extractor or default_extractor
    messages = [coerce_message(m) for m in conversation_history]
    recent = PAIRING_STRATEGIES[config.pairing_strategy](messages, config.max_turns)
    user_count = sum(1 for m in messages if m.role == "user")
    first_index = user_count - len(recent)

    contexts: List[TurnContext] = []
    for i, (user_message, assistant_message) in enumerate(recent):
        turns_from_current = len(recent) - 1 - i
        weight = context_weight(config.context_decay_rate, turns_from_current)
        if weight < config.min_context_weight:
            continue

        assistant_content = assistant_message.content if assistant_message else None
        try:
            entities = (
                extractor.extract_entities(user_message.content, assistant_content)
                if config.entity_extraction_enabled else []
            )
            topics = (
                extractor.extract_topics(user_message.content, assistant_content)
                if config.topic_tracking_enabled else []
            )
        except Exception as exc:
            raise ExtractionError(
                f"Extraction failed for turn {first_index + i}: {exc}",
                extractor=type(extractor).__name__,
            ) from exc

        contexts.append(
            TurnContext(
                turn_index=first_index + i,
                user_message=user_message,
                assistant_message=assistant_message,
                extracted_entities=list(entities),
                key_topics=list(topics),
                context_weight=weight,
            )
        )

    return contexts


def build_contextual_query(
    current_query: str,
    context: TurnContext,
    config: MultiTurnRetrievalConfig,
) -> str:
    """Current query enriched with a past turn's entities, topics and opening words"""
    parts = [current_query]

    if config.entity_extraction_enabled and context.extracted_entities:
        parts.append(" ".join(context.extracted_entities))

    if config.topic_tracking_enabled and context.key_topics:
        parts.append(" ".join(context.key_topics))

    parts.append(context.user_message.content[: config.context_snippet_chars])

    return " ".join(parts).strip()
