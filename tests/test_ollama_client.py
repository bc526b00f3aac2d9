"""
Tests for the Ollama inference client (httpx.MockTransport, no live server)
"""

import asyncio
import json

import httpx
import pytest

from aster_core.config import InferenceConfig
from aster_core.ollama_client import (
    BackendHTTPError,
    BackendUnreachableError,
    CancellationToken,
    InferenceCancelled,
    InferenceClient,
    InferenceError,
    InferenceTimeoutError,
    InvalidResponseError,
    compute_timeout,
    heartbeat_interval,
    select_context_window,
)


def make_client(handler, **config) -> InferenceClient:
    return InferenceClient(InferenceConfig(**config), transport=httpx.MockTransport(handler))


def stream_body(*chunks) -> bytes:
    return "".join(
        (c if isinstance(c, str) else json.dumps(c)) + "\n" for c in chunks
    ).encode("utf-8")


class TestRequestShaping:
    """Tests for timeout and context window tiers."""

    @pytest.mark.parametrize("length,streaming,expected", [
        (1000, False, 120),
        (250000, False, 250),
        (400000, False, 300),
        (1000, True, 180),
        (200000, True, 400),
        (400000, True, 600),
    ])
    def test_compute_timeout(self, length, streaming, expected):
        assert compute_timeout(length, streaming) == expected

    @pytest.mark.parametrize("length,expected", [
        (1000, 4096),
        (20000, 4096),
        (20001, 8192),
        (50001, 16384),
    ])
    def test_select_context_window(self, length, expected):
        assert select_context_window(length) == expected

    def test_heartbeat_widens(self):
        assert heartbeat_interval(0) == 3.0
        assert heartbeat_interval(30) == 5.0
        assert heartbeat_interval(61) == 10.0

    def test_cancellation_is_not_an_error(self):
        assert not issubclass(InferenceCancelled, InferenceError)


class TestSingleShot:
    """Tests for non-streaming queries."""

    @pytest.mark.asyncio
    async def test_query(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"response": "  Hello there \n"})

        client = make_client(handler, port=12345, model="llama3")
        messages = []
        answer = await client.query("Hi?", on_progress=messages.append)

        assert answer == "Hello there"
        assert seen["url"] == "http://localhost:12345/api/generate"
        body = seen["body"]
        assert body["model"] == "llama3"
        assert body["stream"] is False
        assert body["options"] == {"temperature": 0.7, "num_ctx": 4096}
        assert body["prompt"].startswith("System: You are ASTER")
        assert body["prompt"].endswith("\n\nHuman: Hi?\n\nAssistant:")
        assert messages[:2] == ["Preparing files...", "Files processed, sending to Ollama..."]

    @pytest.mark.asyncio
    async def test_model_override(self):
        def handler(request):
            return httpx.Response(200, json={"response": json.loads(request.content)["model"]})

        client = make_client(handler)
        assert await client.query("q", model_override="mistral") == "mistral"

    @pytest.mark.asyncio
    async def test_http_error(self):
        client = make_client(lambda request: httpx.Response(500, text="model not found"))
        with pytest.raises(BackendHTTPError) as exc_info:
            await client.query("q")
        assert exc_info.value.status_code == 500
        assert exc_info.value.body == "model not found"

    @pytest.mark.asyncio
    async def test_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)
        with pytest.raises(BackendUnreachableError) as exc_info:
            await client.query("q")
        assert "Check that the inference backend is running" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_missing_response_field(self):
        client = make_client(lambda request: httpx.Response(200, json={"done": True}))
        with pytest.raises(InvalidResponseError):
            await client.query("q")

    @pytest.mark.asyncio
    async def test_timeout(self):
        async def handler(request):
            await asyncio.sleep(5)
            return httpx.Response(200, json={"response": "late"})

        client = make_client(handler, request_timeout=0.1)
        with pytest.raises(InferenceTimeoutError):
            await client.query("q")


class TestStreaming:
    """Tests for streaming queries."""

    @pytest.mark.asyncio
    async def test_accumulates_fragments(self):
        def handler(request):
            assert json.loads(request.content)["stream"] is True
            body = stream_body(
                {"response": "Hel"},
                "not json",
                {"response": "lo"},
                {"response": "", "done": True},
                {"response": "ignored"},
            )
            return httpx.Response(200, content=body)

        client = make_client(handler, streaming=True)
        messages = []
        assert await client.query("q", on_progress=messages.append) == "Hello"
        assert "First tokens received, generating response..." in messages

    @pytest.mark.asyncio
    async def test_progress_every_twenty_tokens(self):
        def handler(request):
            return httpx.Response(200, content=stream_body(*[{"response": "x"} for _ in range(45)], {"done": True}))

        client = make_client(handler, streaming=True)
        messages = []
        assert await client.query("q", on_progress=messages.append) == "x" * 45
        generating = [m for m in messages if m.startswith("Generating response...")]
        assert generating[0].startswith("Generating response... (21 tokens")
        assert len(generating) == 2

    @pytest.mark.asyncio
    async def test_large_input_forces_streaming(self):
        def handler(request):
            assert json.loads(request.content)["stream"] is True
            return httpx.Response(200, content=stream_body({"response": "ok"}, {"done": True}))

        client = make_client(handler)
        messages = []
        assert await client.query("x" * 100001, on_progress=messages.append) == "ok"
        assert "Large input detected - using streaming mode..." in messages

    @pytest.mark.asyncio
    async def test_stream_http_error(self):
        client = make_client(lambda request: httpx.Response(404, text="no such model"), streaming=True)
        with pytest.raises(BackendHTTPError) as exc_info:
            await client.query("q")
        assert exc_info.value.body == "no such model"

    @pytest.mark.asyncio
    async def test_empty_stream(self):
        client = make_client(lambda request: httpx.Response(200, content=stream_body({"done": True})), streaming=True)
        with pytest.raises(InvalidResponseError):
            await client.query("q")


class TestCancellation:
    """Tests for cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_in_flight(self):
        started = asyncio.Event()

        async def handler(request):
            started.set()
            await asyncio.sleep(10)
            return httpx.Response(200, json={"response": "too late"})

        client = make_client(handler)
        token = CancellationToken()
        task = asyncio.create_task(client.query("q", cancel=token))
        await asyncio.wait_for(started.wait(), timeout=2)
        token.cancel()

        with pytest.raises(InferenceCancelled):
            await asyncio.wait_for(task, timeout=2)

    @pytest.mark.asyncio
    async def test_already_cancelled(self):
        calls = []
        client = make_client(lambda request: calls.append(request) or httpx.Response(200, json={"response": "x"}))
        token = CancellationToken()
        token.cancel()
        with pytest.raises(InferenceCancelled):
            await client.query("q", cancel=token)
        assert calls == []


class TestDiscovery:
    """Tests for model listing."""

    @pytest.mark.asyncio
    async def test_list_models(self):
        def handler(request):
            assert request.url.path == "/api/tags"
            return httpx.Response(200, json={"models": [{"name": "phi3:medium"}, {"name": "llama3"}, {}]})

        client = make_client(handler)
        assert await client.list_models() == ["phi3:medium", "llama3"]
        assert await client.is_available() is True

    @pytest.mark.asyncio
    async def test_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert await make_client(handler).is_available() is False
