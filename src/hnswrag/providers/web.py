"""
Document source for web pages and local files.
"""

import asyncio
import re
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx
from bs4 import BeautifulSoup

from ..config.settings import SourceConfig
from ..core.errors import FetchFailure
from ..observability.logging import get_logger
from ..observability.metrics import get_metrics_collector
from ..rag.chunking import Document

logger = get_logger(__name__)

_INVISIBLE_TAGS = ("script", "style", "noscript")
_BLANK_RUNS = re.compile(r"\n{3,}")


def extract_text(html: str) -> str:
    """Visible text of an HTML page, one block per line."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(_INVISIBLE_TAGS):
        tag.decompose()
    root = soup.body or soup
    lines = (line.strip() for line in root.get_text("\n").splitlines())
    text = "\n".join(lines)
    return _BLANK_RUNS.sub("\n\n", text).strip()


class WebPageSource:
    """Fetch ``http(s)://`` pages, ``file://`` URIs and plain local paths."""

    def __init__(
        self,
        timeout: float = 30.0,
        user_agent: str = "hnswrag/1.0",
        http_client: httpx.AsyncClient | None = None,
    ):
        self.timeout = timeout
        self.user_agent = user_agent
        self._http_client = http_client
        self._owned_client = http_client is None

    @classmethod
    def from_config(cls, config: SourceConfig, http_client: httpx.AsyncClient | None = None):
        return cls(timeout=config.timeout, user_agent=config.user_agent, http_client=http_client)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owned_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={"User-Agent": self.user_agent},
            )
        return self._http_client

    async def fetch(self, uri: str) -> Document:
        parsed = urlparse(uri)
        if parsed.scheme in ("http", "https"):
            text = await self._fetch_url(uri)
        elif parsed.scheme == "file":
            text = await self._read_file(Path(unquote(parsed.path)), uri)
        elif parsed.scheme == "" or len(parsed.scheme) == 1:
            # Bare paths, including Windows drive letters
            text = await self._read_file(Path(uri), uri)
        else:
            raise FetchFailure(f"unsupported source scheme {parsed.scheme!r}", uri=uri)

        logger.info("Fetched document", uri=uri, chars=len(text))
        return Document.from_source(uri, text)

    async def _fetch_url(self, uri: str) -> str:
        try:
            response = await self._client().get(uri, follow_redirects=True)
        except httpx.HTTPError as e:
            get_metrics_collector().record_collaborator_failure(FetchFailure.kind.value)
            raise FetchFailure(f"failed to fetch {uri}: {e}", uri=uri) from e

        if response.status_code >= 400:
            get_metrics_collector().record_collaborator_failure(FetchFailure.kind.value)
            raise FetchFailure(
                f"fetching {uri} returned HTTP {response.status_code}",
                uri=uri,
                status=response.status_code,
            )

        content_type = response.headers.get("content-type", "")
        if "html" in content_type or not content_type:
            return extract_text(response.text)
        return response.text

    async def _read_file(self, path: Path, uri: str) -> str:
        try:
            raw = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            get_metrics_collector().record_collaborator_failure(FetchFailure.kind.value)
            raise FetchFailure(f"failed to read {path}: {e}", uri=uri) from e
        if path.suffix.lower() in (".html", ".htm"):
            return extract_text(raw)
        return raw
