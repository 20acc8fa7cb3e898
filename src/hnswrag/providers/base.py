"""
Collaborator interfaces the core depends on.

The core only ever talks to these protocols; concrete HTTP clients live in
sibling modules and tests substitute in-memory fakes.
"""

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from ..rag.chunking import Document

Vector = Sequence[float]


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Maps text to fixed-dimension vectors. Raises ``EmbeddingFailure``."""

    async def embed(self, texts: list[str]) -> list[Vector]:
        ...

    async def embed_query(self, text: str) -> Vector:
        ...


@runtime_checkable
class GenerationProvider(Protocol):
    """Produces an answer for a fully formatted prompt. Raises ``GenerationFailure``."""

    async def generate(self, prompt: str) -> str:
        ...


@runtime_checkable
class DocumentSource(Protocol):
    """Fetches a document by URI. Raises ``FetchFailure``."""

    async def fetch(self, uri: str) -> Document:
        ...
