"""
Turn retrieval results into a prompt for the generation collaborator.
"""

import re
from dataclasses import dataclass, field
from typing import Any

from ..config.settings import DEFAULT_PROMPT_TEMPLATE
from ..observability.logging import get_logger
from .chunking import Chunk
from .retriever import RetrievalResult

logger = get_logger(__name__)

CHUNK_SEPARATOR = "\n\n"
_PLACEHOLDER_RE = re.compile(r"\{(context|question)\}")


@dataclass
class IntegratedContext:
    """Deduplicated context block ready to be placed in a prompt."""

    content: str
    chunks: list[Chunk]
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)


class ContextBuilder:
    """Concatenates retrieved chunks nearest-first and fills the prompt template."""

    def __init__(self, prompt_template: str = DEFAULT_PROMPT_TEMPLATE, separator: str = CHUNK_SEPARATOR):
        self.prompt_template = prompt_template
        self.separator = separator

    def build_context(self, results: list[RetrievalResult]) -> IntegratedContext:
        """Keep the first occurrence of each chunk id, preserving order."""
        seen: set[str] = set()
        chunks: list[Chunk] = []
        for result in sorted(results, key=lambda r: (r.distance, r.rank)):
            if result.chunk.id in seen:
                continue
            seen.add(result.chunk.id)
            chunks.append(result.chunk)

        duplicates = len(results) - len(chunks)
        if duplicates:
            logger.debug("Dropped duplicate chunks", duplicates=duplicates)

        return IntegratedContext(
            content=self.separator.join(chunk.text for chunk in chunks),
            chunks=chunks,
            metadata={"duplicates_dropped": duplicates},
        )

    def format_prompt(self, question: str, context: IntegratedContext) -> str:
        # Single pass, so braces inside retrieved text are never re-expanded
        values = {"context": context.content, "question": question}
        return _PLACEHOLDER_RE.sub(lambda m: values[m.group(1)], self.prompt_template)
