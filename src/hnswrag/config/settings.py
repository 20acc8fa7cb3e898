"""
Typed configuration with Pydantic Settings.

Every field can be overridden from the environment with the ``HNSWRAG_``
prefix and ``__`` as the nested delimiter, e.g.
``HNSWRAG_CHUNKING__CHUNK_SIZE=800`` or ``HNSWRAG_INDEX__EF_SEARCH=100``.
A ``.env`` file in the working directory is read as well.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SOURCE_URL = "https://www.freecodecamp.org/news/the-next-js-handbook/"

DEFAULT_PROMPT_TEMPLATE = (
    "You are an assistant for question-answering tasks. Use the following pieces of "
    "retrieved context to answer the question. If you don't know the answer, just say "
    "that you don't know. Use three sentences maximum and keep the answer concise.\n"
    "Question: {question}\n"
    "Context: {context}\n"
    "Answer:"
)


class ChunkingConfig(BaseModel):
    """Text splitting parameters."""

    chunk_size: int = Field(1000, gt=0)
    overlap: int = Field(200, ge=0)

    @model_validator(mode="after")
    def check_overlap(self):
        if self.overlap >= self.chunk_size:
            raise ValueError(
                f"overlap ({self.overlap}) must be smaller than chunk_size ({self.chunk_size})"
            )
        return self


class IndexConfig(BaseModel):
    """HNSW graph parameters, fixed when an index is created."""

    m: int = Field(16, ge=2)
    ef_construction: int = Field(200, gt=0)
    ef_search: int = Field(50, gt=0)
    metric: Literal["cosine", "euclidean"] = Field("cosine")
    seed: int | None = Field(1337)


class RetrievalConfig(BaseModel):
    """Query-time settings."""

    default_k: int = Field(4, gt=0)
    prompt_template: str = Field(DEFAULT_PROMPT_TEMPLATE)

    @field_validator("prompt_template")
    @classmethod
    def validate_template(cls, v):
        if "{context}" not in v or "{question}" not in v:
            raise ValueError("prompt_template must contain {context} and {question}")
        return v


class StoreConfig(BaseModel):
    """Where the persisted bundle lives."""

    bundle_path: Path = Field(Path("./hnswlib_rag_index"))


class ModelsConfig(BaseModel):
    """OpenAI-compatible embedding and chat endpoints."""

    base_url: str = Field("https://api.openai.com/v1")
    api_key: str | None = Field(default_factory=lambda: os.getenv("OPENAI_API_KEY"))
    embedding_model: str = Field("text-embedding-3-small")
    chat_model: str = Field("gpt-3.5-turbo")
    temperature: float = Field(0.0, ge=0.0, le=2.0)
    timeout: float = Field(60.0, gt=0)
    max_retries: int = Field(3, ge=1)
    embedding_batch_size: int = Field(64, gt=0)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v):
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")


class SourceConfig(BaseModel):
    """Document fetching."""

    default_url: str = Field(DEFAULT_SOURCE_URL)
    timeout: float = Field(30.0, gt=0)
    user_agent: str = Field("hnswrag/1.0")


class ObservabilityConfig(BaseModel):
    log_level: str = Field("INFO")
    enable_metrics: bool = Field(True)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {sorted(allowed)}")
        return v.upper()


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="HNSWRAG_",
        env_nested_delimiter="__",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    models: ModelsConfig = Field(default_factory=ModelsConfig)
    source: SourceConfig = Field(default_factory=SourceConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
