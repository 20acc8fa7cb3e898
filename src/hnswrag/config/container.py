"""
Dependency injection container wiring settings into collaborators and the
lifecycle manager.
"""

from contextlib import asynccontextmanager
from typing import Any

from ..observability.logging import get_logger
from .settings import Settings, get_settings

logger = get_logger(__name__)


class Container:
    """Lazily built services with async cleanup."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._services: dict[str, Any] = {}
        self._factories: dict[str, Any] = {}
        self._singletons: dict[str, Any] = {}

    def register_factory(self, name: str, factory: Any) -> None:
        """Register a factory ``factory(container) -> service``."""
        self._factories[name] = factory

    def register_singleton(self, name: str, instance: Any) -> None:
        """Register a ready-made instance; it takes precedence over factories."""
        self._singletons[name] = instance

    def get(self, name: str, default: Any = None) -> Any:
        if name in self._singletons:
            return self._singletons[name]

        if name in self._services:
            return self._services[name]

        if name in self._factories:
            instance = self._factories[name](self)
            self._services[name] = instance
            return instance

        return default

    async def cleanup(self) -> None:
        """Close built services in reverse creation order."""
        for name, service in reversed(list(self._services.items())):
            closer = getattr(service, "aclose", None) or getattr(service, "close", None)
            if closer is None:
                continue
            try:
                result = closer()
                if hasattr(result, "__await__"):
                    await result
            except Exception as e:
                # Keep closing the rest
                logger.warning("Error cleaning up service", service=name, error=str(e))
        self._services.clear()

    @asynccontextmanager
    async def lifespan(self):
        try:
            yield self
        finally:
            await self.cleanup()


def setup_container(settings: Settings | None = None) -> Container:
    """Container with the default HTTP-backed collaborators."""
    container = Container(settings)

    def _embeddings_factory(c: Container):
        from ..providers.openai import OpenAIEmbeddings

        return OpenAIEmbeddings.from_config(c.settings.models)

    def _generator_factory(c: Container):
        from ..providers.openai import OpenAIChatGenerator

        return OpenAIChatGenerator.from_config(c.settings.models)

    def _source_factory(c: Container):
        from ..providers.web import WebPageSource

        return WebPageSource.from_config(c.settings.source)

    def _chunker_factory(c: Container):
        from ..rag.chunking import RecursiveCharacterChunker

        chunking = c.settings.chunking
        return RecursiveCharacterChunker(chunk_size=chunking.chunk_size, overlap=chunking.overlap)

    def _store_factory(c: Container):
        from ..storage.bundle import BundleStore

        return BundleStore(c.settings.store.bundle_path)

    def _orchestrator_factory(c: Container):
        from ..core.orchestrator import RAGOrchestrator
        from ..rag.context import ContextBuilder

        retrieval = c.settings.retrieval
        return RAGOrchestrator(
            embeddings=c.get("embeddings"),
            generator=c.get("generator"),
            context_builder=ContextBuilder(retrieval.prompt_template),
            default_k=retrieval.default_k,
        )

    def _lifecycle_factory(c: Container):
        from ..core.lifecycle import LifecycleManager

        return LifecycleManager(
            store=c.get("store"),
            source=c.get("source"),
            embeddings=c.get("embeddings"),
            orchestrator=c.get("orchestrator"),
            chunker=c.get("chunker"),
            index_config=c.settings.index,
            default_source=c.settings.source.default_url,
            embedding_batch_size=c.settings.models.embedding_batch_size,
        )

    container.register_factory("embeddings", _embeddings_factory)
    container.register_factory("generator", _generator_factory)
    container.register_factory("source", _source_factory)
    container.register_factory("chunker", _chunker_factory)
    container.register_factory("store", _store_factory)
    container.register_factory("orchestrator", _orchestrator_factory)
    container.register_factory("lifecycle", _lifecycle_factory)

    return container
