"""
Question answering over a loaded index.

One pass per question: embed, retrieve, build context, format the prompt,
generate. The generated text is returned verbatim.
"""

import time
from dataclasses import dataclass, field
from typing import Any

from ..observability.logging import get_logger
from ..providers.base import EmbeddingProvider, GenerationProvider
from ..rag.chunking import Chunk
from ..rag.context import ContextBuilder
from ..rag.retriever import Retriever

logger = get_logger(__name__)


@dataclass
class RAGAnswer:
    """Generated answer plus the chunks it was grounded on."""

    question: str
    answer: str
    chunks: list[Chunk]
    prompt: str
    execution_time: float
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def sources(self) -> list[str]:
        return [chunk.id for chunk in self.chunks]


class RAGOrchestrator:
    """Runs the retrieve-then-generate flow against a given retriever."""

    def __init__(
        self,
        embeddings: EmbeddingProvider,
        generator: GenerationProvider,
        context_builder: ContextBuilder | None = None,
        default_k: int = 4,
        ef: int | None = None,
    ):
        self.embeddings = embeddings
        self.generator = generator
        self.context_builder = context_builder or ContextBuilder()
        self.default_k = default_k
        self.ef = ef

    async def run(self, question: str, retriever: Retriever, k: int | None = None) -> RAGAnswer:
        """Answer ``question`` from ``retriever``'s index.

        Raises:
            StaleRetriever: ``retriever`` was invalidated. Checked before any
                collaborator is called.
            EmbeddingFailure, GenerationFailure, DimensionMismatch: from the
                collaborators or the index.
        """
        start = time.perf_counter()
        retriever.ensure_valid()

        query_vector = await self.embeddings.embed_query(question)
        results = retriever.retrieve(query_vector, k or self.default_k, ef=self.ef)
        context = self.context_builder.build_context(results)
        prompt = self.context_builder.format_prompt(question, context)
        answer = await self.generator.generate(prompt)

        elapsed = time.perf_counter() - start
        logger.info(
            "Answered question",
            chunks=context.chunk_count,
            prompt_chars=len(prompt),
            ms=elapsed * 1000.0,
        )
        return RAGAnswer(
            question=question,
            answer=answer,
            chunks=context.chunks,
            prompt=prompt,
            execution_time=elapsed,
            metadata={"k": k or self.default_k, **context.metadata},
        )

    async def answer(self, question: str, retriever: Retriever) -> str:
        return (await self.run(question, retriever)).answer
