"""
Recursive character chunking with exact source offsets.

A chunk is closed at the coarsest separator that still fits the size budget
(paragraph, line, sentence end, word, then single characters). The next
chunk starts exactly ``overlap`` characters before the previous one ended,
so ``text[chunk.start_offset:chunk.end_offset] == chunk.text`` always holds.
"""

import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from ..core.errors import ConfigError
from ..observability.logging import get_logger

logger = get_logger(__name__)

# Coarsest to finest; the implicit last level is "any character"
DEFAULT_SEPARATORS: tuple[str, ...] = ("\n\n", "\n", ". ", "! ", "? ", " ")


@dataclass(frozen=True)
class Document:
    """A fetched source document. Discarded once chunked."""

    id: str
    source_uri: str
    text: str

    @classmethod
    def from_source(cls, source_uri: str, text: str) -> "Document":
        doc_id = hashlib.md5(source_uri.encode("utf-8")).hexdigest()[:16]
        return cls(id=doc_id, source_uri=source_uri, text=text)


@dataclass(frozen=True)
class Chunk:
    """A bounded slice of a document; the unit of retrieval."""

    id: str
    document_id: str
    text: str
    start_offset: int
    length: int
    metadata: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def end_offset(self) -> int:
        return self.start_offset + self.length

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "text": self.text,
            "start_offset": self.start_offset,
            "length": self.length,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Chunk":
        return cls(
            id=data["id"],
            document_id=data["document_id"],
            text=data["text"],
            start_offset=int(data["start_offset"]),
            length=int(data["length"]),
            metadata=dict(data.get("metadata") or {}),
        )


def validate_chunking(chunk_size: int, overlap: int) -> None:
    """Reject impossible size/overlap combinations before any work starts."""
    if chunk_size <= 0:
        raise ConfigError(f"chunk_size must be positive, got {chunk_size}")
    if overlap < 0:
        raise ConfigError(f"overlap must not be negative, got {overlap}")
    if overlap >= chunk_size:
        raise ConfigError(f"overlap ({overlap}) must be smaller than chunk_size ({chunk_size})")


class ChunkingStrategy(ABC):
    """Abstract base class for chunking strategies."""

    def __init__(self, chunk_size: int = 1000, overlap: int = 200):
        validate_chunking(chunk_size, overlap)
        self.chunk_size = chunk_size
        self.overlap = overlap

    @abstractmethod
    def spans(self, text: str) -> list[tuple[int, int]]:
        """Return ``(start, end)`` offsets of each chunk, in order."""
        ...

    def split(self, text: str, document_id: str = "", metadata: dict[str, Any] | None = None) -> list[Chunk]:
        """Split ``text`` into ordered chunks."""
        chunks = []
        for ordinal, (start, end) in enumerate(self.spans(text)):
            chunks.append(
                Chunk(
                    id=f"{document_id}:{ordinal}" if document_id else str(ordinal),
                    document_id=document_id,
                    text=text[start:end],
                    start_offset=start,
                    length=end - start,
                    metadata=dict(metadata or {}),
                )
            )
        return chunks

    def split_document(self, document: Document) -> list[Chunk]:
        chunks = self.split(document.text, document.id, {"source": document.source_uri})
        logger.debug(
            "Chunked document",
            document_id=document.id,
            chars=len(document.text),
            chunks=len(chunks),
        )
        return chunks


class RecursiveCharacterChunker(ChunkingStrategy):
    """Separator-aware splitter with character-exact overlap."""

    def __init__(
        self,
        chunk_size: int = 1000,
        overlap: int = 200,
        separators: tuple[str, ...] = DEFAULT_SEPARATORS,
    ):
        super().__init__(chunk_size, overlap)
        self.separators = separators

    def spans(self, text: str) -> list[tuple[int, int]]:
        if not text.strip():
            return []
        if len(text) <= self.chunk_size:
            return [(0, len(text))]

        spans = []
        start = 0
        while True:
            end = self._find_end(text, start)
            # Blank stretches are kept: every consecutive pair overlaps by `overlap`
            spans.append((start, end))
            if end >= len(text):
                break
            start = end - self.overlap
        return spans

    def _find_end(self, text: str, start: int) -> int:
        """Pick where the chunk starting at ``start`` closes.

        The cut lands right after the last occurrence of the coarsest
        separator inside the window, and strictly after ``start + overlap``
        so the following chunk always advances.
        """
        limit = start + self.chunk_size
        if limit >= len(text):
            return len(text)

        floor = start + self.overlap
        for sep in self.separators:
            lo = max(start, floor - len(sep) + 1)
            idx = text.rfind(sep, lo, limit)
            if idx != -1:
                return idx + len(sep)

        # Character level: a single character always fits
        return limit
