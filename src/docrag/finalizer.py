"""Stream the final consolidated answer from the remote service."""
from __future__ import annotations

import json
import logging
from typing import AsyncIterable, AsyncIterator, Optional, Sequence

from docrag.client import CompletionService
from docrag.models import StreamEnd, StreamEvent, StreamFragment

LOGGER = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_MARKER = "[DONE]"


def parse_event_line(line: str) -> Optional[StreamEvent]:
    """Parse one server-sent-events line.

    Returns ``None`` for lines that carry no text: comments, blank lines,
    payloads without ``choices[0].delta.content`` and malformed JSON.
    """

    if not line.startswith(DATA_PREFIX):
        return None
    data = line[len(DATA_PREFIX) :].strip()
    if data == DONE_MARKER:
        return StreamEnd()
    try:
        payload = json.loads(data)
    except (ValueError, RecursionError):
        LOGGER.debug("Skipping malformed stream line: %.80s", data)
        return None

    try:
        content = payload["choices"][0]["delta"]["content"]
    except (KeyError, IndexError, TypeError):
        return None
    if not isinstance(content, str) or not content:
        return None
    return StreamFragment(text=content)


async def iter_fragments(lines: AsyncIterable[str]) -> AsyncIterator[str]:
    """Yield fragment texts in order until the end-of-stream marker."""

    async for line in lines:
        event = parse_event_line(line)
        if event is None:
            continue
        if isinstance(event, StreamEnd):
            return
        yield event.text


class StreamingFinalizer:
    """Issue the streamed consolidation request and relay its fragments."""

    def __init__(self, client: CompletionService) -> None:
        self._client = client

    async def consolidate_and_stream(
        self,
        sections: Sequence[str],
        user_question: str,
        document_name: str,
        total_pages: int,
    ) -> AsyncIterator[str]:
        lines = self._client.consolidate_stream(sections, user_question, document_name, total_pages)
        fragments = 0
        try:
            async for text in iter_fragments(lines):
                fragments += 1
                yield text
        finally:
            close = getattr(lines, "aclose", None)
            if close is not None:
                await close()
            LOGGER.info("Final answer stream closed after %s fragments", fragments)


__all__ = [
    "DATA_PREFIX",
    "DONE_MARKER",
    "StreamingFinalizer",
    "iter_fragments",
    "parse_event_line",
]
