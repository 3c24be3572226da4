"""Per-chunk remote analysis with bounded concurrency and retries."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from docrag.cache import DocumentCache
from docrag.cancellation import CancellationToken
from docrag.client import CompletionService
from docrag.config import PipelineSettings
from docrag.errors import ConfigurationError, RateLimitError
from docrag.models import Chunk, ChunkAnalyses, ProgressEvent

LOGGER = logging.getLogger(__name__)

ANALYSES_PHASE = "analyses"

ProgressCallback = Callable[[ProgressEvent], None]
SleepFunc = Callable[[float], Awaitable[None]]


def failure_placeholder(index: int, error: BaseException) -> str:
    """Return the text standing in for a chunk whose analysis failed."""

    reason = str(error).strip() or error.__class__.__name__
    return f"[Chunk {index + 1} analysis failed: {reason}]"


def is_failure_placeholder(text: str, index: int) -> bool:
    return text.startswith(f"[Chunk {index + 1} analysis failed:")


class ChunkAnalyzer:
    """Send chunks to the ``analyze_chunk`` operation in small batches.

    Chunks of a batch run concurrently and results are stored by chunk
    index, so the output order never depends on completion order. A chunk
    that keeps failing after ``max_attempts`` is replaced by a placeholder
    instead of aborting the run.
    """

    def __init__(
        self,
        client: CompletionService,
        cache: Optional[DocumentCache] = None,
        settings: Optional[PipelineSettings] = None,
        *,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self._client = client
        self._cache = cache
        self._settings = settings or PipelineSettings()
        self._sleep = sleep

    async def analyze_chunks(
        self,
        chunks: Sequence[Chunk],
        total_pages: int,
        on_progress: Optional[ProgressCallback] = None,
        *,
        fingerprint: str | None = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ChunkAnalyses:
        cached = self._load_cached(fingerprint, len(chunks))
        if cached is not None:
            return ChunkAnalyses(analyses=cached)

        total = len(chunks)
        batch_size = max(self._settings.batch_size, 1)
        results: List[Optional[str]] = [None] * total
        failed: List[int] = []

        for batch_start in range(0, total, batch_size):
            if batch_start > 0 and self._settings.inter_batch_delay_seconds > 0:
                await self._sleep(self._settings.inter_batch_delay_seconds)
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            batch = chunks[batch_start : batch_start + batch_size]
            batch_end = batch_start + len(batch)
            if on_progress is not None:
                on_progress(
                    ProgressEvent(
                        current=batch_start,
                        total=total,
                        status=f"Analyzing chunks {batch_start + 1}-{batch_end} of {total}",
                    )
                )

            outcomes = await asyncio.gather(
                *(
                    self._analyze_with_retry(chunk, batch_start + offset, total, total_pages)
                    for offset, chunk in enumerate(batch)
                ),
                return_exceptions=True,
            )
            for offset, outcome in enumerate(outcomes):
                index = batch_start + offset
                if isinstance(outcome, BaseException):
                    if isinstance(outcome, ConfigurationError) or not isinstance(outcome, Exception):
                        raise outcome
                    LOGGER.error("Chunk %s/%s failed after retries: %s", index + 1, total, outcome)
                    results[index] = failure_placeholder(index, outcome)
                    failed.append(index)
                else:
                    results[index] = outcome

        analyses = [text or "" for text in results]
        if failed:
            LOGGER.warning("%s of %s chunks replaced by placeholders: %s", len(failed), total, failed)
        elif self._cache is not None and fingerprint:
            self._cache.save(fingerprint, ANALYSES_PHASE, analyses)
        return ChunkAnalyses(analyses=analyses, failed=failed)

    def _load_cached(self, fingerprint: str | None, expected: int) -> Optional[List[str]]:
        if self._cache is None or not fingerprint:
            return None
        cached = self._cache.load(fingerprint, ANALYSES_PHASE)
        if not isinstance(cached, list) or len(cached) != expected:
            return None
        if not all(isinstance(item, str) for item in cached):
            return None
        LOGGER.info("Reusing %s cached chunk analyses for %s", expected, fingerprint)
        return list(cached)

    async def _analyze_with_retry(
        self,
        chunk: Chunk,
        index: int,
        total: int,
        total_pages: int,
    ) -> str:
        max_attempts = max(self._settings.max_attempts, 1)
        delay = self._settings.initial_backoff_seconds
        attempt = 1
        while True:
            try:
                return await self._client.analyze_chunk(chunk.prompt_text, index, total, total_pages)
            except ConfigurationError:
                raise
            except Exception as error:
                if attempt >= max_attempts:
                    raise
                kind = "rate limited" if isinstance(error, RateLimitError) else "failed"
                LOGGER.warning(
                    "Chunk %s/%s %s on attempt %s/%s; retrying in %.1fs: %s",
                    index + 1,
                    total,
                    kind,
                    attempt,
                    max_attempts,
                    delay,
                    error,
                )
                await self._sleep(delay)
                delay *= 2
                attempt += 1


__all__ = [
    "ANALYSES_PHASE",
    "ChunkAnalyzer",
    "ProgressCallback",
    "failure_placeholder",
    "is_failure_placeholder",
]
