"""
OpenAI-compatible embedding and chat clients over httpx.

Transient transport errors (timeouts, refused connections) are retried with
exponential backoff. Everything else surfaces immediately as the
collaborator's failure type; the core never retries on its own.
"""

from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config.settings import ModelsConfig
from ..core.errors import EmbeddingFailure, GenerationFailure, HnswRagError
from ..observability.logging import get_logger
from ..observability.metrics import get_metrics_collector

logger = get_logger(__name__)

TRANSIENT_ERRORS = (httpx.TimeoutException, httpx.ConnectError)


class _OpenAIClient:
    """Shared HTTP plumbing: owned-or-borrowed client, auth headers, retries."""

    failure_type: type[HnswRagError] = HnswRagError

    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        timeout: float = 60.0,
        max_retries: int = 3,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.max_retries = max_retries
        self._timeout = timeout
        self._http_client = http_client
        self._owned_client = http_client is None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=2),
            )
        return self._http_client

    async def aclose(self) -> None:
        if self._owned_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _get_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.api_key:
            raise self.failure_type("no API key configured (set OPENAI_API_KEY)")

        url = f"{self.base_url}{path}"
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_retries),
                wait=wait_exponential(multiplier=1, min=1, max=10),
                retry=retry_if_exception_type(TRANSIENT_ERRORS),
                reraise=True,
            ):
                with attempt:
                    response = await self._client().post(
                        url, json=payload, headers=self._get_headers()
                    )
                    response.raise_for_status()
                    return response.json()
        except httpx.HTTPStatusError as e:
            get_metrics_collector().record_collaborator_failure(self.failure_type.kind.value)
            logger.error(
                "Model API returned an error", url=url, status=e.response.status_code
            )
            raise self.failure_type(
                f"{path} returned HTTP {e.response.status_code}: {e.response.text[:200]}",
                status=e.response.status_code,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            get_metrics_collector().record_collaborator_failure(self.failure_type.kind.value)
            logger.error("Model API call failed", url=url, error=type(e).__name__)
            raise self.failure_type(f"{path} failed: {e}") from e
        raise self.failure_type(f"{path} made no attempt")


class OpenAIEmbeddings(_OpenAIClient):
    """``POST /embeddings``. Callers bound the request size."""

    failure_type = EmbeddingFailure

    def __init__(self, model: str = "text-embedding-3-small", **kwargs):
        super().__init__(**kwargs)
        self.model = model

    @classmethod
    def from_config(cls, config: ModelsConfig, http_client: httpx.AsyncClient | None = None):
        return cls(
            model=config.embedding_model,
            base_url=config.base_url,
            api_key=config.api_key,
            timeout=config.timeout,
            max_retries=config.max_retries,
            http_client=http_client,
        )

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return await self._embed_batch(texts)

    async def embed_query(self, text: str) -> list[float]:
        return (await self._embed_batch([text]))[0]

    async def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        data = await self._post("/embeddings", {"model": self.model, "input": batch})
        try:
            rows = sorted(data["data"], key=lambda row: row["index"])
            vectors = [[float(x) for x in row["embedding"]] for row in rows]
        except (KeyError, TypeError, ValueError) as e:
            raise EmbeddingFailure(f"malformed embeddings response: {e}") from e
        if len(vectors) != len(batch):
            raise EmbeddingFailure(
                f"expected {len(batch)} embeddings, got {len(vectors)}",
                expected=len(batch),
                actual=len(vectors),
            )
        logger.debug("Embedded batch", size=len(batch), model=self.model)
        return vectors


class OpenAIChatGenerator(_OpenAIClient):
    """``POST /chat/completions`` with a single user message."""

    failure_type = GenerationFailure

    def __init__(self, model: str = "gpt-3.5-turbo", temperature: float = 0.0, **kwargs):
        super().__init__(**kwargs)
        self.model = model
        self.temperature = temperature

    @classmethod
    def from_config(cls, config: ModelsConfig, http_client: httpx.AsyncClient | None = None):
        return cls(
            model=config.chat_model,
            temperature=config.temperature,
            base_url=config.base_url,
            api_key=config.api_key,
            timeout=config.timeout,
            max_retries=config.max_retries,
            http_client=http_client,
        )

    async def generate(self, prompt: str) -> str:
        data = await self._post(
            "/chat/completions",
            {
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": self.temperature,
            },
        )
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise GenerationFailure(f"malformed chat completion response: {e}") from e
        if content is None:
            raise GenerationFailure("chat completion returned no content")
        return content
