"""
hnswrag: a persistent HNSW vector index with retrieval-augmented question
answering on top.

Quick Start:
    >>> from hnswrag.config.container import setup_container
    >>>
    >>> container = setup_container()
    >>> lifecycle = container.get("lifecycle")
    >>> result = await lifecycle.build("https://example.com/handbook")
    >>> answer = await lifecycle.query("What is server-side rendering?")
    >>> print(answer.value if answer.ok else answer.kind)

Interactive shell:
    $ hnswrag --bundle-path ./my_index
    $ python -m hnswrag

Configuration:
    Environment variables with the HNSWRAG_ prefix, nested with "__":
    - HNSWRAG_CHUNKING__CHUNK_SIZE=1000
    - HNSWRAG_INDEX__EF_SEARCH=50
    - HNSWRAG_STORE__BUNDLE_PATH=./hnswlib_rag_index
    - OPENAI_API_KEY=... (or HNSWRAG_MODELS__API_KEY)
"""

__version__ = "1.0.0"

from .config.settings import Settings
from .core.errors import ErrorKind, HnswRagError, OperationResult
from .core.lifecycle import LifecycleManager
from .rag.hnsw import HNSWIndex

__all__ = [
    "ErrorKind",
    "HNSWIndex",
    "HnswRagError",
    "LifecycleManager",
    "OperationResult",
    "Settings",
]
