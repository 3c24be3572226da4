"""HTTP client for the hosted completion service backing the pipeline."""
from __future__ import annotations

import logging
import time
from typing import AsyncIterator, Optional, Protocol, Sequence, Type, TypeVar, runtime_checkable

import httpx
from pydantic import BaseModel

from docrag.config import PipelineSettings
from docrag.errors import ConfigurationError, RateLimitError, RemotePayloadError, RemoteServiceError
from docrag.models import (
    AnalyzeChunkRequest,
    AnalyzeChunkResponse,
    ConsolidateRequest,
    DocumentTypeRequest,
    DocumentTypeResponse,
    SynthesizeSectionRequest,
    SynthesizeSectionResponse,
)
from docrag.telemetry import emit_remote_call

LOGGER = logging.getLogger(__name__)

ResponseModel = TypeVar("ResponseModel", bound=BaseModel)

ANALYZE_CHUNK_PATH = "rag-analyze-chunk"
SYNTHESIZE_SECTION_PATH = "rag-synthesize-section"
CONSOLIDATE_PATH = "rag-consolidate"
DETECT_DOC_TYPE_PATH = "detect-doc-type"

_BODY_PREVIEW_CHARS = 500


def is_rate_limited(status_code: int | None, body: str | None) -> bool:
    """Best-effort rate-limit detection.

    HTTP 429 is authoritative; the "rate limit" substring check covers
    providers that report throttling with other status codes and may miss
    differently worded messages.
    """

    if status_code == 429:
        return True
    return bool(body) and "rate limit" in body.lower()


@runtime_checkable
class CompletionService(Protocol):
    """Operations the pipeline needs from the remote completion service."""

    async def analyze_chunk(self, chunk: str, chunk_index: int, total_chunks: int, total_pages: int) -> str:
        ...

    async def synthesize_section(self, texts: Sequence[str], group_index: int, total_groups: int) -> str:
        ...

    async def detect_document_type(self, content_sample: str, file_name: str) -> DocumentTypeResponse:
        ...

    def consolidate_stream(
        self,
        sections: Sequence[str],
        user_question: str,
        document_name: str,
        total_pages: int,
    ) -> AsyncIterator[str]:
        ...


def _error_from_response(operation: str, status_code: int, body: str) -> RemoteServiceError:
    preview = body[:_BODY_PREVIEW_CHARS]
    error_cls = RateLimitError if is_rate_limited(status_code, body) else RemoteServiceError
    return error_cls(
        f"{operation} returned HTTP {status_code}: {preview}",
        status_code=status_code,
        body=body,
    )


class RemoteCompletionClient:
    """Async wrapper around the summarisation endpoints.

    Every response is validated into a typed model before it leaves this
    class. The instance owns an :class:`httpx.AsyncClient`; close it with
    :meth:`aclose` or use the client as an async context manager.
    """

    def __init__(
        self,
        base_url: str | None,
        api_token: str | None,
        *,
        timeout: float = 90.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not base_url:
            raise ConfigurationError("Remote completion base URL is not configured")
        self.base_url = base_url.rstrip("/") + "/"
        self._api_token = api_token
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: PipelineSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "RemoteCompletionClient":
        return cls(
            settings.remote_base_url,
            settings.remote_api_token,
            timeout=settings.request_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "RemoteCompletionClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        if not self._api_token:
            raise ConfigurationError("Remote completion API token is not configured")
        return {"Authorization": f"Bearer {self._api_token}"}

    async def _post_json(
        self,
        operation: str,
        path: str,
        payload: BaseModel,
        response_model: Type[ResponseModel],
    ) -> ResponseModel:
        headers = self._headers()
        started = time.perf_counter()
        try:
            response = await self._client.post(
                path,
                json=payload.model_dump(by_alias=True),
                headers=headers,
            )
        except httpx.HTTPError as error:
            emit_remote_call(
                operation=operation,
                status_code=None,
                duration_ms=(time.perf_counter() - started) * 1000.0,
                error=error,
            )
            raise RemoteServiceError(f"{operation} request failed: {error}", cause=error) from error

        duration_ms = (time.perf_counter() - started) * 1000.0
        if response.is_error:
            error = _error_from_response(operation, response.status_code, response.text)
            emit_remote_call(
                operation=operation,
                status_code=response.status_code,
                duration_ms=duration_ms,
                error=error,
            )
            raise error

        emit_remote_call(operation=operation, status_code=response.status_code, duration_ms=duration_ms)
        try:
            return response_model.model_validate(response.json())
        except ValueError as error:
            raise RemotePayloadError(
                f"{operation} returned an unexpected payload: {error}",
                status_code=response.status_code,
                body=response.text,
                cause=error,
            ) from error

    async def analyze_chunk(
        self,
        chunk: str,
        chunk_index: int,
        total_chunks: int,
        total_pages: int,
    ) -> str:
        request = AnalyzeChunkRequest(
            chunk=chunk,
            chunk_index=chunk_index,
            total_chunks=total_chunks,
            total_pages=total_pages,
        )
        response = await self._post_json("analyze_chunk", ANALYZE_CHUNK_PATH, request, AnalyzeChunkResponse)
        return response.analysis

    async def synthesize_section(
        self,
        texts: Sequence[str],
        group_index: int,
        total_groups: int,
    ) -> str:
        request = SynthesizeSectionRequest(
            analyses=list(texts),
            section_index=group_index,
            total_sections=total_groups,
        )
        response = await self._post_json(
            "synthesize_section", SYNTHESIZE_SECTION_PATH, request, SynthesizeSectionResponse
        )
        return response.synthesis

    async def detect_document_type(self, content_sample: str, file_name: str) -> DocumentTypeResponse:
        request = DocumentTypeRequest(content_sample=content_sample, file_name=file_name)
        return await self._post_json("detect_document_type", DETECT_DOC_TYPE_PATH, request, DocumentTypeResponse)

    async def consolidate_stream(
        self,
        sections: Sequence[str],
        user_question: str,
        document_name: str,
        total_pages: int,
    ) -> AsyncIterator[str]:
        """Yield raw ``text/event-stream`` lines of the final consolidation.

        Exactly one request is issued per call. Closing the generator closes
        the underlying response.
        """

        request = ConsolidateRequest(
            sections=list(sections),
            user_message=user_question,
            file_name=document_name,
            total_pages=total_pages,
        )
        headers = {**self._headers(), "Accept": "text/event-stream"}
        started = time.perf_counter()
        try:
            async with self._client.stream(
                "POST",
                CONSOLIDATE_PATH,
                json=request.model_dump(by_alias=True),
                headers=headers,
            ) as response:
                if response.is_error:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    error = _error_from_response("consolidate", response.status_code, body)
                    emit_remote_call(
                        operation="consolidate",
                        status_code=response.status_code,
                        duration_ms=(time.perf_counter() - started) * 1000.0,
                        error=error,
                    )
                    raise error
                emit_remote_call(
                    operation="consolidate",
                    status_code=response.status_code,
                    duration_ms=(time.perf_counter() - started) * 1000.0,
                )
                async for line in response.aiter_lines():
                    yield line
        except httpx.HTTPError as error:
            LOGGER.warning("Consolidation stream failed: %s", error)
            raise RemoteServiceError(f"consolidate stream failed: {error}", cause=error) from error


__all__ = [
    "ANALYZE_CHUNK_PATH",
    "CONSOLIDATE_PATH",
    "CompletionService",
    "DETECT_DOC_TYPE_PATH",
    "RemoteCompletionClient",
    "SYNTHESIZE_SECTION_PATH",
    "is_rate_limited",
]
