import asyncio
import json

import httpx
import pytest

from docrag.client import RemoteCompletionClient, is_rate_limited
from docrag.config import PipelineSettings
from docrag.errors import ConfigurationError, RateLimitError, RemotePayloadError, RemoteServiceError
from docrag.finalizer import iter_fragments

BASE_URL = "https://functions.example.test/v1"


def _client(handler, token: str | None = "secret-token") -> RemoteCompletionClient:
    return RemoteCompletionClient(BASE_URL, token, transport=httpx.MockTransport(handler))


def test_analyze_chunk_sends_wire_fields() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"analysis": "chunk summary"})

    async def run() -> str:
        async with _client(handler) as client:
            return await client.analyze_chunk("chunk text", 0, 2, 10)

    assert asyncio.run(run()) == "chunk summary"
    assert seen["path"] == "/v1/rag-analyze-chunk"
    assert seen["auth"] == "Bearer secret-token"
    assert seen["body"] == {"chunk": "chunk text", "chunkIndex": 0, "totalChunks": 2, "totalPages": 10}


def test_synthesize_section_and_detect_type() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if request.url.path.endswith("rag-synthesize-section"):
            assert body == {"analyses": ["a", "b"], "sectionIndex": 1, "totalSections": 3}
            return httpx.Response(200, json={"synthesis": "merged"})
        assert body == {"contentSample": "Curriculum vitae", "fileName": "cv.pdf"}
        return httpx.Response(200, json={"type": "resume", "confidence": 0.8, "reasoning": "headings"})

    async def run():
        async with _client(handler) as client:
            merged = await client.synthesize_section(["a", "b"], 1, 3)
            detected = await client.detect_document_type("Curriculum vitae", "cv.pdf")
            return merged, detected

    merged, detected = asyncio.run(run())
    assert merged == "merged"
    assert detected.type == "resume"
    assert detected.confidence == pytest.approx(0.8)


@pytest.mark.parametrize(
    ("status", "body"),
    [(429, "slow down"), (500, '{"error": "Rate limit exceeded for model"}')],
)
def test_rate_limit_responses_raise_rate_limit_error(status: int, body: str) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, text=body)

    async def run() -> None:
        async with _client(handler) as client:
            await client.analyze_chunk("chunk", 0, 1, 1)

    with pytest.raises(RateLimitError) as excinfo:
        asyncio.run(run())
    assert excinfo.value.status_code == status


def test_server_error_raises_remote_service_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="internal error")

    async def run() -> None:
        async with _client(handler) as client:
            await client.analyze_chunk("chunk", 0, 1, 1)

    with pytest.raises(RemoteServiceError) as excinfo:
        asyncio.run(run())
    assert not isinstance(excinfo.value, RateLimitError)
    assert excinfo.value.body == "internal error"


def test_unexpected_payload_raises_payload_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"summary": "wrong field"})

    async def run() -> None:
        async with _client(handler) as client:
            await client.analyze_chunk("chunk", 0, 1, 1)

    with pytest.raises(RemotePayloadError):
        asyncio.run(run())


def test_transport_failure_is_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def run() -> None:
        async with _client(handler) as client:
            await client.synthesize_section(["a"], 0, 1)

    with pytest.raises(RemoteServiceError, match="connection refused"):
        asyncio.run(run())


def test_missing_credentials_fail_before_any_request() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"analysis": "never"})

    async def run() -> None:
        async with _client(handler, token=None) as client:
            await client.analyze_chunk("chunk", 0, 1, 1)

    with pytest.raises(ConfigurationError):
        asyncio.run(run())
    assert calls == []

    with pytest.raises(ConfigurationError):
        RemoteCompletionClient.from_settings(PipelineSettings(remote_api_token="token"))


def test_consolidate_stream_yields_event_lines() -> None:
    seen: dict = {}
    body = (
        'data: {"choices":[{"delta":{"content":"Final"}}]}\n\n'
        'data: {"choices":[{"delta":{"content":" answer"}}]}\n\n'
        "data: [DONE]\n\n"
    )

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        seen["accept"] = request.headers.get("Accept")
        return httpx.Response(200, text=body, headers={"Content-Type": "text/event-stream"})

    async def run() -> list[str]:
        async with _client(handler) as client:
            lines = client.consolidate_stream(["s1"], "What changed?", "notes.txt", 3)
            return [text async for text in iter_fragments(lines)]

    assert asyncio.run(run()) == ["Final", " answer"]
    assert seen["accept"] == "text/event-stream"
    assert seen["body"] == {
        "sections": ["s1"],
        "userMessage": "What changed?",
        "fileName": "notes.txt",
        "totalPages": 3,
    }


def test_consolidate_stream_error_includes_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="gateway timeout upstream")

    async def run() -> None:
        async with _client(handler) as client:
            async for _ in client.consolidate_stream(["s1"], "q", "doc", 1):
                pass

    with pytest.raises(RemoteServiceError) as excinfo:
        asyncio.run(run())
    assert excinfo.value.status_code == 502
    assert "gateway timeout upstream" in str(excinfo.value)


class _ResetAfterFirstEvent(httpx.AsyncByteStream):
    async def __aiter__(self):
        yield b'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\n'
        raise httpx.ReadError("connection reset")

    async def aclose(self) -> None:
        pass


def test_consolidate_stream_read_error_after_first_event() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            stream=_ResetAfterFirstEvent(),
            headers={"Content-Type": "text/event-stream"},
        )

    received: list[str] = []

    async def run() -> None:
        async with _client(handler) as client:
            lines = client.consolidate_stream(["s1"], "q", "doc", 1)
            async for text in iter_fragments(lines):
                received.append(text)

    with pytest.raises(RemoteServiceError, match="connection reset") as excinfo:
        asyncio.run(run())
    assert received == ["Hi"]
    assert isinstance(excinfo.value.__cause__, httpx.ReadError)


def test_is_rate_limited() -> None:
    assert is_rate_limited(429, None)
    assert is_rate_limited(503, "RATE LIMIT reached")
    assert not is_rate_limited(500, "oops")
    assert not is_rate_limited(None, None)
