"""
Lifecycle manager: the single owner of the active index.

Every public operation returns an :class:`OperationResult`. Errors from the
taxonomy in :mod:`hnswrag.core.errors` become failed results. Cancellation
and unexpected exceptions propagate, and in every failure case the
in-memory state is the one that existed before the operation started
(``load`` of a corrupt bundle and ``delete`` are the deliberate exceptions:
both end in ``NOT_LOADED``).
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import numpy as np

from ..config.settings import DEFAULT_SOURCE_URL, IndexConfig
from ..observability.logging import get_logger
from ..observability.metrics import get_metrics_collector, timer
from ..providers.base import DocumentSource, EmbeddingProvider
from ..rag.chunking import Chunk, ChunkingStrategy, RecursiveCharacterChunker
from ..rag.hnsw import HNSWIndex
from ..rag.retriever import Retriever
from ..storage.bundle import BundleStore
from .errors import (
    CorruptIndex,
    EmbeddingFailure,
    FetchFailure,
    HnswRagError,
    IndexUnavailable,
    NotFound,
    OperationResult,
)
from .locks import ReadWriteLock
from .orchestrator import RAGOrchestrator
from .state_machine import IndexState, IndexStateMachine, IndexStatus

logger = get_logger(__name__)


class LifecycleManager:
    """Build, load, query and delete one persisted index.

    ``build``, ``load`` and ``delete`` hold the lock exclusively; ``query``
    holds it shared. Graph work is synchronous, so the only suspension
    points are collaborator calls.
    """

    def __init__(
        self,
        store: BundleStore,
        source: DocumentSource,
        embeddings: EmbeddingProvider,
        orchestrator: RAGOrchestrator,
        chunker: ChunkingStrategy | None = None,
        index_config: IndexConfig | None = None,
        default_source: str = DEFAULT_SOURCE_URL,
        embedding_batch_size: int = 64,
    ):
        self.store = store
        self.source = source
        self.embeddings = embeddings
        self.orchestrator = orchestrator
        self.chunker = chunker or RecursiveCharacterChunker()
        self.index_config = index_config or IndexConfig()
        self.default_source = default_source
        self.embedding_batch_size = embedding_batch_size

        self._machine = IndexStateMachine()
        self._lock = ReadWriteLock()
        self._generation = 0
        self._closed = False

    @property
    def state(self) -> IndexState:
        return self._machine.state

    @property
    def index_status(self) -> IndexStatus:
        return self._machine.state.status

    @property
    def state_machine(self) -> IndexStateMachine:
        return self._machine

    async def _guarded(
        self, operation: str, body: Callable[[], Awaitable[OperationResult]]
    ) -> OperationResult:
        """Run ``body`` under a metrics timer, converting taxonomy errors."""
        with timer(operation) as t:
            try:
                result = await body()
            except HnswRagError as e:
                t["outcome"] = e.kind.value
                logger.warning(f"{operation} failed", kind=e.kind.value, error=e.message)
                return OperationResult.failure(operation, e)
            except asyncio.CancelledError:
                logger.info(f"{operation} cancelled; state unchanged", status=self.index_status.value)
                raise
            except Exception as e:
                logger.exception(f"Unexpected error during {operation}", error_type=type(e).__name__)
                raise
            if not result.ok and result.kind is not None:
                t["outcome"] = result.kind.value
            return result

    # -- build ------------------------------------------------------------

    async def build(self, source: str | None = None) -> OperationResult:
        """Fetch, chunk, embed and index ``source``, then persist and activate it."""
        uri = source or self.default_source

        async def body() -> OperationResult:
            async with self._lock.write():
                return await self._build(uri)

        return await self._guarded("build", body)

    async def _build(self, uri: str) -> OperationResult:
        document = await self.source.fetch(uri)
        chunks = self.chunker.split_document(document)
        if not chunks:
            raise FetchFailure(f"{uri} has no indexable text", uri=uri)

        vectors = await self._embed_chunks(chunks)

        cfg = self.index_config
        index = HNSWIndex(
            m=cfg.m,
            ef_construction=cfg.ef_construction,
            ef_search=cfg.ef_search,
            metric=cfg.metric,
            seed=cfg.seed,
        )
        for chunk, vector in zip(chunks, vectors, strict=True):
            index.insert(vector, chunk.id)
        get_metrics_collector().record_inserts(len(index))

        # Synchronous: nothing below can be interrupted by cancellation
        ref = self.store.save(index, chunks)
        self._activate(index, {chunk.id: chunk for chunk in chunks}, event="build")

        logger.info("Index built", source=uri, chunks=len(chunks), dim=index.dim)
        return OperationResult.success(
            "build",
            value=ref,
            message=f"Indexed {len(chunks)} chunks from {uri}",
            source=uri,
            entries=len(index),
            dim=index.dim,
            path=str(ref.path),
        )

    async def _embed_chunks(self, chunks: list[Chunk]) -> list[np.ndarray]:
        vectors: list[np.ndarray] = []
        batch_size = self.embedding_batch_size
        for start in range(0, len(chunks), batch_size):
            batch = [chunk.text for chunk in chunks[start : start + batch_size]]
            embedded = await self.embeddings.embed(batch)
            if len(embedded) != len(batch):
                raise EmbeddingFailure(
                    f"expected {len(batch)} embeddings, got {len(embedded)}",
                    expected=len(batch),
                    actual=len(embedded),
                )
            vectors.extend(np.asarray(v, dtype=np.float32) for v in embedded)
            logger.debug("Embedded chunks", done=len(vectors), total=len(chunks))
        return vectors

    def _activate(self, index: HNSWIndex, chunks: dict[str, Chunk], event: str) -> None:
        self._generation += 1
        retriever = Retriever(index, chunks, generation=self._generation)
        self._machine.transition(IndexState.ready(retriever), event=event)

    # -- load -------------------------------------------------------------

    async def load(self) -> OperationResult:
        """Load the persisted bundle and make it the active index."""

        async def body() -> OperationResult:
            async with self._lock.write():
                try:
                    bundle = self.store.load()
                except NotFound:
                    self._machine.transition(IndexState.not_loaded(), event="load")
                    return OperationResult.success(
                        "load",
                        message=f"No index found at {self.store.path}",
                        found=False,
                        path=str(self.store.path),
                    )
                except CorruptIndex:
                    self._machine.transition(IndexState.not_loaded(), event="load")
                    raise

                self._activate(bundle.index, bundle.chunks, event="load")
                return OperationResult.success(
                    "load",
                    message=f"Loaded index with {len(bundle.index)} entries",
                    found=True,
                    entries=len(bundle.index),
                    dim=bundle.index.dim,
                    path=str(bundle.path),
                )

        return await self._guarded("load", body)

    # -- query ------------------------------------------------------------

    async def query(self, question: str, k: int | None = None) -> OperationResult:
        """Answer ``question`` from the active index."""

        async def body() -> OperationResult:
            async with self._lock.read():
                state = self._machine.state
                if not state.is_ready:
                    raise IndexUnavailable(
                        "no index is loaded; build or load one first",
                        status=state.status.value,
                    )
                answer = await self.orchestrator.run(question, state.retriever, k=k)
                return OperationResult.success(
                    "query",
                    value=answer.answer,
                    sources=answer.sources,
                    chunks=len(answer.chunks),
                )

        return await self._guarded("query", body)

    # -- delete -----------------------------------------------------------

    async def delete(self) -> OperationResult:
        """Remove the persisted bundle and drop the active index."""

        async def body() -> OperationResult:
            async with self._lock.write():
                try:
                    removed = self.store.delete()
                finally:
                    self._machine.transition(IndexState.not_loaded(), event="delete")
                return OperationResult.success(
                    "delete",
                    value=removed,
                    message="Index deleted" if removed else "No index to delete",
                    removed=removed,
                    path=str(self.store.path),
                )

        return await self._guarded("delete", body)

    # -- status / close ---------------------------------------------------

    async def status(self) -> OperationResult:
        """Current state, entry count and whether a bundle exists on disk."""
        state = self._machine.state
        info: dict[str, Any] = {
            **self._machine.get_current_state_info(),
            "entries": state.retriever.size if state.retriever else 0,
            "dim": state.retriever.dim if state.retriever else None,
            "bundle_path": str(self.store.path),
            "bundle_exists": self.store.exists(),
        }
        return OperationResult.success("status", value=info)

    async def close(self) -> None:
        """Drop the active index and release collaborator clients."""
        if self._closed:
            return
        self._closed = True
        if self._machine.state.is_ready:
            self._machine.transition(IndexState.not_loaded(), event="close")

        seen: set[int] = set()
        for collaborator in (self.source, self.embeddings, self.orchestrator.generator):
            aclose = getattr(collaborator, "aclose", None)
            if aclose is None or id(collaborator) in seen:
                continue
            seen.add(id(collaborator))
            await aclose()
        logger.debug("Lifecycle manager closed")
