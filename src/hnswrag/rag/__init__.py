"""
Chunking, the HNSW graph, retrieval and prompt context.
"""

from .chunking import Chunk, ChunkingStrategy, Document, RecursiveCharacterChunker
from .context import ContextBuilder, IntegratedContext
from .hnsw import HNSWIndex
from .retriever import RetrievalResult, Retriever

__all__ = [
    "Chunk",
    "ChunkingStrategy",
    "ContextBuilder",
    "Document",
    "HNSWIndex",
    "IntegratedContext",
    "RecursiveCharacterChunker",
    "RetrievalResult",
    "Retriever",
]
