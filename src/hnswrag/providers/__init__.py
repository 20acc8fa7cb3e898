"""
Embedding, generation and document-source collaborators.
"""

from .base import DocumentSource, EmbeddingProvider, GenerationProvider
from .openai import OpenAIChatGenerator, OpenAIEmbeddings
from .web import WebPageSource

__all__ = [
    "DocumentSource",
    "EmbeddingProvider",
    "GenerationProvider",
    "OpenAIChatGenerator",
    "OpenAIEmbeddings",
    "WebPageSource",
]
