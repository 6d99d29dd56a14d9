"""
Entity & Topic Extraction

Heuristic extraction of the concepts a conversation turn is about:

- Entities: proper-noun runs, acronyms, sized quantities, file extensions
  and domains ("Pinecone", "AWS", "16 GB", ".py", "docs.python.org")
- Topics: a fixed technology/domain vocabulary plus the phrase following
  question openers ("how to deploy flask" -> "deploy flask")

Any object with ``extract_entities``/``extract_topics`` can replace the
default extractor, e.g. one backed by an NLP tokenizer.
"""

import re
from typing import Iterable, List, Optional, Pattern, Protocol, runtime_checkable


MAX_ENTITIES_PER_TURN = 10
MAX_TOPICS_PER_TURN = 8


@runtime_checkable
class Extractor(Protocol):
    """Extracts entities and topics from a user message and its reply"""

    def extract_entities(self, user_content: str, assistant_content: Optional[str] = None) -> List[str]:
        ...

    def extract_topics(self, user_content: str, assistant_content: Optional[str] = None) -> List[str]:
        ...


COMMON_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "this", "that", "these", "those", "is", "are", "was", "were",
    "be", "been", "being", "have", "has", "had", "do", "does", "did", "will",
    "would", "could", "should", "can", "may", "might", "must", "shall",
    "i", "you", "he", "she", "it", "we", "they", "me", "him", "her", "us",
    "them", "my", "your", "his", "its", "our", "their",
})

# All patterns use ASCII \w, \d and \b; non-ASCII letters count as separators
ENTITY_PATTERNS: List[Pattern[str]] = [
    # Capitalized word runs (proper nouns)
    re.compile(r"\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*\b", re.ASCII),
    # Acronyms
    re.compile(r"\b[A-Z]{2,}\b", re.ASCII),
    # Numbers with units
    re.compile(r"\b\d+(?:\.\d+)?\s*(?:(?:GB|MB|KB|TB|GHz|MHz|°C|°F)\b|%)", re.IGNORECASE | re.ASCII),
    # File extensions
    re.compile(r"\.\w{2,4}\b", re.ASCII),
    # URLs and domains
    re.compile(r"(?:https?://)?(?:www\.)?[\w-]+\.[\w-]+", re.IGNORECASE | re.ASCII),
]

PROGRAMMING_LANGUAGES = (
    "javascript", "typescript", "python", "java", "c++", "c#", "php", "ruby",
    "go", "rust", "swift", "kotlin",
)
FRAMEWORKS = (
    "react", "vue", "angular", "express", "django", "flask", "spring",
    "laravel", "rails",
)
TECHNOLOGIES = (
    "docker", "kubernetes", "aws", "azure", "gcp", "database", "api", "rest",
    "graphql", "sql", "nosql",
)
CONCEPTS = (
    "algorithm", "optimization", "performance", "security", "authentication",
    "authorization",
)
GENERAL_TOPICS = (
    "machine learning", "artificial intelligence", "data science",
    "web development", "mobile", "frontend", "backend",
)

QUESTION_OPENERS = ("how to", "what is", "how does", "why does", "when to")


def _vocabulary_pattern(terms: Iterable[str]) -> Pattern[str]:
    # Lookarounds instead of \b so "c++" and "c#" still match at a word end
    alternation = "|".join(re.escape(term) for term in terms)
    return re.compile(rf"(?<!\w)(?:{alternation})(?!\w)", re.ASCII)


TOPIC_PATTERNS: List[Pattern[str]] = [
    _vocabulary_pattern(PROGRAMMING_LANGUAGES),
    _vocabulary_pattern(FRAMEWORKS),
    _vocabulary_pattern(TECHNOLOGIES),
    _vocabulary_pattern(CONCEPTS),
    _vocabulary_pattern(GENERAL_TOPICS),
]

_OPENERS = "|".join(re.escape(opener) for opener in QUESTION_OPENERS)
QUESTION_PHRASE_PATTERN = re.compile(rf"\b(?:{_OPENERS})\s+[\w\s]{{3,20}}\b", re.ASCII)
QUESTION_OPENER_PREFIX = re.compile(rf"^(?:{_OPENERS})\s+")


def is_common_word(word: str) -> bool:
    return word.lower() in COMMON_WORDS


def _unique(items: Iterable[str]) -> List[str]:
    seen = set()
    unique = []
    for item in items:
        if item not in seen:
            seen.add(item)
            unique.append(item)
    return unique


def _combine(user_content: str, assistant_content: Optional[str]) -> str:
    return f"{user_content} {assistant_content or ''}"


class RegexEntityTopicExtractor:
    """Default regex and fixed-vocabulary extractor"""

    def __init__(
        self,
        max_entities: int = MAX_ENTITIES_PER_TURN,
        max_topics: int = MAX_TOPICS_PER_TURN,
    ):
        self.max_entities = max_entities
        self.max_topics = max_topics

    def extract_entities(self, user_content: str, assistant_content: Optional[str] = None) -> List[str]:
        """
        Extract entities in pattern order, first match wins.

        Returns:
            At most ``max_entities`` unique entities longer than two
            characters that are not stop words.
        """
        content = _combine(user_content, assistant_content)

        matches: List[str] = []
        for pattern in ENTITY_PATTERNS:
            matches.extend(match.group(0) for match in pattern.finditer(content))

        entities = [
            entity for entity in _unique(matches)
            if len(entity) > 2 and not is_common_word(entity)
        ]
        return entities[: self.max_entities]

    def extract_topics(self, user_content: str, assistant_content: Optional[str] = None) -> List[str]:
        """
        Extract vocabulary topics, then the subject of question phrases.

        Returns:
            At most ``max_topics`` unique lowercased topics.
        """
        content = _combine(user_content, assistant_content).lower()

        topics: List[str] = []
        for pattern in TOPIC_PATTERNS:
            topics.extend(match.group(0) for match in pattern.finditer(content))

        for match in QUESTION_PHRASE_PATTERN.finditer(content):
            phrase = QUESTION_OPENER_PREFIX.sub("", match.group(0)).strip()
            if phrase:
                topics.append(phrase)

        return _unique(topics)[: self.max_topics]


default_extractor = RegexEntityTopicExtractor()
