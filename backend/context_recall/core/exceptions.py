"""
Internal exception types for the retrieval engine.

None of these cross the public boundary: the retriever and the multi-turn
service degrade to empty or baseline results instead. They are what error
hooks and logs receive when the engine itself detects a fault.
"""

from typing import Any, Callable, Dict, Optional


class RetrievalError(Exception):
    """Base exception for retrieval errors"""
    def __init__(self, message: str, code: str = None, details: Dict[str, Any] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class VectorStoreError(RetrievalError):
    """The vector store failed or returned something unusable"""
    def __init__(self, message: str, corpus: str = None):
        details = {}
        if corpus:
            details["corpus"] = corpus
        super().__init__(message, code="VECTOR_STORE_ERROR", details=details)


class ExtractionError(RetrievalError):
    """Entity/topic extraction failed"""
    def __init__(self, message: str, extractor: str = None):
        details = {}
        if extractor:
            details["extractor"] = extractor
        super().__init__(message, code="EXTRACTION_ERROR", details=details)


class ConfigurationError(RetrievalError):
    """Invalid retrieval configuration"""
    def __init__(self, message: str, field: str = None):
        details = {}
        if field:
            details["field"] = field
        super().__init__(message, code="CONFIGURATION_ERROR", details=details)


# Observability hook: receives the stage name and the original exception
ErrorHook = Callable[[str, BaseException], None]


def notify_error(hook: Optional[ErrorHook], stage: str, error: BaseException, logger=None) -> None:
    """Forward an error to the hook without letting the hook break the caller"""
    if hook is None:
        return
    try:
        hook(stage, error)
    except Exception as hook_error:  # pragma: no cover - defensive logging
        if logger is not None:
            logger.warning(
                "Error hook raised",
                extra={"error": str(hook_error), "error_type": type(hook_error).__name__},
            )
