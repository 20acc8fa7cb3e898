"""
Tests for the HTTP collaborators against ``httpx.MockTransport``.
"""

import json

import httpx
import pytest

from hnswrag.config.settings import ModelsConfig
from hnswrag.core.errors import EmbeddingFailure, FetchFailure, GenerationFailure
from hnswrag.observability.metrics import get_metrics_collector
from hnswrag.providers.base import DocumentSource, EmbeddingProvider, GenerationProvider
from hnswrag.providers.openai import OpenAIChatGenerator, OpenAIEmbeddings
from hnswrag.providers.web import WebPageSource, extract_text

BASE_URL = "https://api.test/v1"


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def embeddings_with(handler, **kwargs) -> OpenAIEmbeddings:
    kwargs.setdefault("api_key", "sk-test")
    return OpenAIEmbeddings(base_url=BASE_URL, http_client=mock_client(handler), **kwargs)


class TestOpenAIEmbeddings:
    """``POST /embeddings``."""

    @pytest.mark.asyncio
    async def test_embed_orders_by_index(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "data": [
                        {"index": 1, "embedding": [0.0, 1.0]},
                        {"index": 0, "embedding": [1.0, 0.0]},
                    ]
                },
            )

        provider = embeddings_with(handler, model="embed-small")
        vectors = await provider.embed(["first", "second"])

        assert vectors == [[1.0, 0.0], [0.0, 1.0]]
        assert seen["url"] == f"{BASE_URL}/embeddings"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"] == {"model": "embed-small", "input": ["first", "second"]}

    @pytest.mark.asyncio
    async def test_embed_query(self):
        def handler(request):
            return httpx.Response(200, json={"data": [{"index": 0, "embedding": [0.5, 0.5]}]})

        provider = embeddings_with(handler)
        assert await provider.embed_query("hi") == [0.5, 0.5]

    @pytest.mark.asyncio
    async def test_empty_input_makes_no_request(self):
        def handler(request):
            raise AssertionError("no request expected")

        assert await embeddings_with(handler).embed([]) == []

    @pytest.mark.asyncio
    async def test_http_error_becomes_embedding_failure(self):
        def handler(request):
            return httpx.Response(500, text="upstream exploded")

        with pytest.raises(EmbeddingFailure) as exc_info:
            await embeddings_with(handler).embed(["x"])

        assert exc_info.value.details["status"] == 500
        assert get_metrics_collector().totals["failure.embedding_failure"] == 1

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={})

        with pytest.raises(EmbeddingFailure, match="API key"):
            await embeddings_with(handler, api_key=None).embed(["x"])
        assert calls == []

    @pytest.mark.asyncio
    async def test_malformed_response(self):
        def handler(request):
            return httpx.Response(200, json={"unexpected": True})

        with pytest.raises(EmbeddingFailure):
            await embeddings_with(handler).embed(["x"])

    @pytest.mark.asyncio
    async def test_count_mismatch(self):
        def handler(request):
            return httpx.Response(200, json={"data": [{"index": 0, "embedding": [1.0]}]})

        with pytest.raises(EmbeddingFailure):
            await embeddings_with(handler).embed(["a", "b"])

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"data": [{"index": 0, "embedding": [1.0]}]})

        provider = embeddings_with(handler, max_retries=2)
        assert await provider.embed(["x"]) == [[1.0]]
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(401, json={"error": "bad key"})

        with pytest.raises(EmbeddingFailure):
            await embeddings_with(handler).embed(["x"])
        assert len(attempts) == 1

    def test_from_config(self):
        config = ModelsConfig(api_key="k", base_url="https://proxy.local/v1/", embedding_model="e5")
        provider = OpenAIEmbeddings.from_config(config)

        assert provider.base_url == "https://proxy.local/v1"
        assert provider.model == "e5"
        assert isinstance(provider, EmbeddingProvider)


class TestOpenAIChatGenerator:
    """``POST /chat/completions``."""

    @pytest.mark.asyncio
    async def test_generate_returns_content_verbatim(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200, json={"choices": [{"message": {"role": "assistant", "content": "  An answer.\n"}}]}
            )

        generator = OpenAIChatGenerator(
            base_url=BASE_URL, api_key="sk", model="gpt-test", http_client=mock_client(handler)
        )
        answer = await generator.generate("the prompt")

        assert answer == "  An answer.\n"
        assert seen["body"]["messages"] == [{"role": "user", "content": "the prompt"}]
        assert seen["body"]["temperature"] == 0.0
        assert isinstance(generator, GenerationProvider)

    @pytest.mark.asyncio
    async def test_malformed_completion(self):
        def handler(request):
            return httpx.Response(200, json={"choices": []})

        generator = OpenAIChatGenerator(base_url=BASE_URL, api_key="sk", http_client=mock_client(handler))
        with pytest.raises(GenerationFailure):
            await generator.generate("p")

    @pytest.mark.asyncio
    async def test_borrowed_client_is_not_closed(self):
        client = mock_client(lambda request: httpx.Response(200))
        generator = OpenAIChatGenerator(base_url=BASE_URL, api_key="sk", http_client=client)

        async with generator:
            pass

        assert not client.is_closed
        await client.aclose()


class TestWebPageSource:
    """Fetching pages and files."""

    @pytest.mark.asyncio
    async def test_html_is_reduced_to_visible_text(self):
        page = """
        <html><head><title>T</title><style>body {color: red}</style></head>
        <body><h1>Handbook</h1><script>var x = 1;</script>
        <p>First paragraph.</p><noscript>enable js</noscript><p>Second paragraph.</p></body></html>
        """

        def handler(request):
            return httpx.Response(200, text=page, headers={"content-type": "text/html; charset=utf-8"})

        source = WebPageSource(http_client=mock_client(handler))
        doc = await source.fetch("https://example.com/handbook")

        assert "Handbook" in doc.text
        assert "First paragraph." in doc.text and "Second paragraph." in doc.text
        assert "var x" not in doc.text
        assert "color: red" not in doc.text
        assert "enable js" not in doc.text
        assert doc.source_uri == "https://example.com/handbook"
        assert isinstance(source, DocumentSource)

    @pytest.mark.asyncio
    async def test_redirects_are_followed(self):
        def handler(request):
            if request.url.path == "/old":
                return httpx.Response(301, headers={"location": "https://example.com/new"})
            return httpx.Response(200, text="moved here", headers={"content-type": "text/plain"})

        doc = await WebPageSource(http_client=mock_client(handler)).fetch("https://example.com/old")
        assert doc.text == "moved here"

    @pytest.mark.asyncio
    async def test_error_status_is_fetch_failure(self):
        def handler(request):
            return httpx.Response(404)

        with pytest.raises(FetchFailure) as exc_info:
            await WebPageSource(http_client=mock_client(handler)).fetch("https://example.com/nope")
        assert exc_info.value.details["status"] == 404

    @pytest.mark.asyncio
    async def test_transport_error_is_fetch_failure(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        with pytest.raises(FetchFailure):
            await WebPageSource(http_client=mock_client(handler)).fetch("https://example.com/")

    @pytest.mark.asyncio
    async def test_local_path_and_file_uri(self, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("plain notes\nsecond line", encoding="utf-8")
        source = WebPageSource()

        by_path = await source.fetch(str(path))
        by_uri = await source.fetch(path.as_uri())

        assert by_path.text == by_uri.text == "plain notes\nsecond line"
        await source.aclose()

    @pytest.mark.asyncio
    async def test_local_html_file_is_extracted(self, tmp_path):
        path = tmp_path / "page.html"
        path.write_text("<html><body><p>Hello</p><script>nope()</script></body></html>", encoding="utf-8")

        doc = await WebPageSource().fetch(str(path))

        assert doc.text == "Hello"

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        with pytest.raises(FetchFailure):
            await WebPageSource().fetch(str(tmp_path / "absent.txt"))

    @pytest.mark.asyncio
    async def test_unsupported_scheme(self):
        with pytest.raises(FetchFailure):
            await WebPageSource().fetch("ftp://example.com/file.txt")

    def test_extract_text_collapses_blank_lines(self):
        text = extract_text("<body><p>a</p>\n\n\n\n<p>b</p></body>")
        assert "\n\n\n" not in text
        assert text.startswith("a") and text.endswith("b")
