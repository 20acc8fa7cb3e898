"""
Error taxonomy and the tagged result returned at the lifecycle boundary.

Inner components raise the exceptions below. ``LifecycleManager`` turns
them into :class:`OperationResult` values, so callers branch on
``result.kind`` instead of catching.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorKind(Enum):
    """Distinguishable failure kinds."""

    CONFIG = "config_error"
    DIMENSION_MISMATCH = "dimension_mismatch"
    NOT_FOUND = "not_found"
    CORRUPT_INDEX = "corrupt_index"
    INDEX_UNAVAILABLE = "index_unavailable"
    STALE_RETRIEVER = "stale_retriever"
    EMBEDDING_FAILURE = "embedding_failure"
    GENERATION_FAILURE = "generation_failure"
    FETCH_FAILURE = "fetch_failure"
    IO_ERROR = "io_error"


class HnswRagError(Exception):
    """Base class for every recoverable error in the package."""

    kind: ErrorKind

    def __init__(self, message: str = "", **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details


class ConfigError(HnswRagError, ValueError):
    kind = ErrorKind.CONFIG


class DimensionMismatch(HnswRagError, ValueError):
    kind = ErrorKind.DIMENSION_MISMATCH

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"vector dimension {actual} does not match index dimension {expected}",
            expected=expected,
            actual=actual,
        )
        self.expected = expected
        self.actual = actual


class NotFound(HnswRagError):
    kind = ErrorKind.NOT_FOUND


class CorruptIndex(HnswRagError):
    kind = ErrorKind.CORRUPT_INDEX


class IndexUnavailable(HnswRagError):
    kind = ErrorKind.INDEX_UNAVAILABLE


class StaleRetriever(HnswRagError):
    kind = ErrorKind.STALE_RETRIEVER


class EmbeddingFailure(HnswRagError):
    kind = ErrorKind.EMBEDDING_FAILURE


class GenerationFailure(HnswRagError):
    kind = ErrorKind.GENERATION_FAILURE


class FetchFailure(HnswRagError):
    kind = ErrorKind.FETCH_FAILURE


class IndexIOError(HnswRagError):
    """Persistence failure other than a missing or corrupt bundle."""

    kind = ErrorKind.IO_ERROR


@dataclass
class OperationResult:
    """Tagged outcome of a lifecycle operation."""

    ok: bool
    operation: str
    value: Any = None
    kind: ErrorKind | None = None
    message: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, operation: str, value: Any = None, message: str = "", **metadata: Any):
        return cls(ok=True, operation=operation, value=value, message=message, metadata=metadata)

    @classmethod
    def failure(cls, operation: str, error: HnswRagError) -> "OperationResult":
        return cls(
            ok=False,
            operation=operation,
            kind=error.kind,
            message=error.message or str(error),
            metadata=dict(error.details),
        )
