from __future__ import annotations

import inspect
from typing import Any, AsyncIterator, Callable, Optional, Sequence

import pytest

from docrag.models import DocumentTypeResponse

DEFAULT_STREAM_LINES = [
    'data: {"choices":[{"delta":{"content":"Hello"}}]}',
    "",
    'data: {"choices":[{"delta":{"content":" world"}}]}',
    "",
    "data: [DONE]",
]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class FakeCompletionService:
    """In-memory stand-in for the remote completion service."""

    def __init__(self) -> None:
        self.analyze_handler: Optional[Callable[[str, int], Any]] = None
        self.synthesize_handler: Optional[Callable[[list[str], int, int], Any]] = None
        self.detected_type = "general"
        self.detect_error: Optional[Exception] = None
        # Exception items are raised in place, after the lines before them.
        self.stream_lines: list[Any] = list(DEFAULT_STREAM_LINES)
        self.stream_error: Optional[Exception] = None
        self.stream_closed = False

        self.analyze_calls: list[int] = []
        self.synthesize_calls: list[list[str]] = []
        self.detect_calls: list[str] = []
        self.consolidate_calls: list[dict[str, Any]] = []

    async def analyze_chunk(self, chunk: str, chunk_index: int, total_chunks: int, total_pages: int) -> str:
        self.analyze_calls.append(chunk_index)
        if self.analyze_handler is not None:
            return await _maybe_await(self.analyze_handler(chunk, chunk_index))
        return f"analysis {chunk_index}"

    async def synthesize_section(self, texts: Sequence[str], group_index: int, total_groups: int) -> str:
        self.synthesize_calls.append(list(texts))
        if self.synthesize_handler is not None:
            return await _maybe_await(self.synthesize_handler(list(texts), group_index, total_groups))
        return f"section {group_index + 1}/{total_groups} of {len(texts)} inputs"

    async def detect_document_type(self, content_sample: str, file_name: str) -> DocumentTypeResponse:
        self.detect_calls.append(file_name)
        if self.detect_error is not None:
            raise self.detect_error
        return DocumentTypeResponse(type=self.detected_type, confidence=0.9, reasoning="fake")

    async def consolidate_stream(
        self,
        sections: Sequence[str],
        user_question: str,
        document_name: str,
        total_pages: int,
    ) -> AsyncIterator[str]:
        self.consolidate_calls.append(
            {
                "sections": list(sections),
                "question": user_question,
                "document_name": document_name,
                "total_pages": total_pages,
            }
        )
        if self.stream_error is not None:
            raise self.stream_error
        try:
            for line in self.stream_lines:
                if isinstance(line, Exception):
                    raise line
                yield line
        finally:
            self.stream_closed = True


class SleepRecorder:
    """Replacement for ``asyncio.sleep`` that records requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def fake_client() -> FakeCompletionService:
    return FakeCompletionService()


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()
