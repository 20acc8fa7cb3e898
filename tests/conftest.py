"""
Shared fixtures: deterministic seeds, fake collaborators, temporary bundles.
"""

import hashlib
import logging
import random
import re

import numpy as np
import pytest

from hnswrag.config.settings import IndexConfig, get_settings
from hnswrag.core.errors import EmbeddingFailure, FetchFailure, GenerationFailure
from hnswrag.core.lifecycle import LifecycleManager
from hnswrag.core.orchestrator import RAGOrchestrator
from hnswrag.observability.logging import clear_op_id
from hnswrag.observability.metrics import _reset_metrics_for_tests
from hnswrag.rag.chunking import Document, RecursiveCharacterChunker
from hnswrag.storage.bundle import BundleStore

FAKE_DIM = 512
_TOKEN_RE = re.compile(r"[a-z0-9]+")


def reset_all_global_state():
    """Reseed RNGs and drop cached singletons."""
    random.seed(1337)
    np.random.seed(1337)
    _reset_metrics_for_tests()
    get_settings.cache_clear()
    clear_op_id()


@pytest.fixture(autouse=True)
def test_isolation():
    """Per-test reset; also undoes any setup_logging() a test triggered."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    reset_all_global_state()
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def bag_of_words(text: str, dim: int = FAKE_DIM) -> list[float]:
    """Deterministic hashed bag-of-words vector."""
    vec = [0.0] * dim
    for token in _TOKEN_RE.findall(text.lower()):
        slot = int(hashlib.md5(token.encode()).hexdigest(), 16) % dim
        vec[slot] += 1.0
    return vec


class FakeEmbeddings:
    """In-memory embedding collaborator that counts calls."""

    def __init__(self, dim: int = FAKE_DIM):
        self.dim = dim
        self.embed_calls = 0
        self.query_calls = 0
        self.batch_sizes: list[int] = []
        self.fail = False
        self.closed = False

    @property
    def calls(self) -> int:
        return self.embed_calls + self.query_calls

    async def embed(self, texts):
        self.embed_calls += 1
        self.batch_sizes.append(len(texts))
        if self.fail:
            raise EmbeddingFailure("embedding service unavailable")
        return [bag_of_words(t, self.dim) for t in texts]

    async def embed_query(self, text):
        self.query_calls += 1
        if self.fail:
            raise EmbeddingFailure("embedding service unavailable")
        return bag_of_words(text, self.dim)

    async def aclose(self):
        self.closed = True


class FakeGenerator:
    """Echoes a canned answer and remembers every prompt."""

    def __init__(self, answer: str = "Next.js is a React framework."):
        self.answer = answer
        self.prompts: list[str] = []
        self.fail = False
        self.closed = False

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def generate(self, prompt):
        self.prompts.append(prompt)
        if self.fail:
            raise GenerationFailure("model overloaded")
        return self.answer

    async def aclose(self):
        self.closed = True


class FakeSource:
    """Serves documents from a dict keyed by URI."""

    def __init__(self, documents: dict[str, str] | None = None):
        self.documents = dict(documents or {})
        self.fetched: list[str] = []
        self.closed = False

    @property
    def calls(self) -> int:
        return len(self.fetched)

    async def fetch(self, uri):
        self.fetched.append(uri)
        if uri not in self.documents:
            raise FetchFailure(f"cannot fetch {uri}", uri=uri)
        return Document.from_source(uri, self.documents[uri])

    async def aclose(self):
        self.closed = True


HANDBOOK_URL = "https://docs.example.com/handbook"
COOKBOOK_URL = "https://docs.example.com/cookbook"

HANDBOOK_TEXT = "\n\n".join(
    [
        "Routing in the framework is file based. Every file in the pages folder becomes a route.",
        "Server side rendering renders a page on every request. Use it for data that changes often.",
        "Static generation renders pages at build time. The output can be cached by a CDN.",
        "API routes let you build endpoints inside the same project. They run on the server only.",
        "Images are optimized automatically by the image component. Sizes are served on demand.",
        "Middleware runs before a request is completed. It can rewrite or redirect requests.",
    ]
)

COOKBOOK_TEXT = "\n\n".join(
    [
        "Boil the pasta in salted water until it is al dente.",
        "Fry garlic in olive oil, then add tomatoes and simmer the sauce.",
        "Toss the pasta with the sauce and finish with fresh basil.",
    ]
)


@pytest.fixture
def embeddings():
    return FakeEmbeddings()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def source():
    return FakeSource({HANDBOOK_URL: HANDBOOK_TEXT, COOKBOOK_URL: COOKBOOK_TEXT})


@pytest.fixture
def bundle_path(tmp_path):
    return tmp_path / "hnswlib_rag_index"


@pytest.fixture
def store(bundle_path):
    return BundleStore(bundle_path)


@pytest.fixture
def lifecycle(store, source, embeddings, generator):
    orchestrator = RAGOrchestrator(embeddings=embeddings, generator=generator, default_k=2)
    return LifecycleManager(
        store=store,
        source=source,
        embeddings=embeddings,
        orchestrator=orchestrator,
        chunker=RecursiveCharacterChunker(chunk_size=120, overlap=20),
        index_config=IndexConfig(m=4, ef_construction=20, ef_search=10, seed=7),
        default_source=HANDBOOK_URL,
        embedding_batch_size=4,
    )
