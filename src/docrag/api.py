"""API router exposing the document analysis endpoints."""
from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from docrag.cache import DocumentCache
from docrag.client import RemoteCompletionClient
from docrag.config import PipelineSettings
from docrag.errors import (
    ConfigurationError,
    ExtractionError,
    PipelineCancelledError,
    PipelineStageError,
)
from docrag.extract import extract_document
from docrag.models import Document, DocumentType, PreparedDocument
from docrag.pipeline import DocumentPipeline

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["documents"])

SSE_MEDIA_TYPE = "text/event-stream"

_PIPELINE: Optional[DocumentPipeline] = None


class AnalyzeRequest(BaseModel):
    """Request body accepted by the analyze endpoint."""

    text: str = Field(..., min_length=1, description="Full extracted document text.")
    total_pages: int = Field(1, ge=1, description="Page count of the source document.")
    question: str = Field(..., min_length=1, description="User question answered from the document.")
    document_name: str = Field("document", min_length=1, description="Display name sent to the remote service.")
    doc_type: Optional[DocumentType] = Field(
        DocumentType.GENERAL,
        description="Chunking strategy; null requests detection when enabled.",
    )


def get_pipeline() -> DocumentPipeline:
    """FastAPI dependency returning the shared :class:`DocumentPipeline`."""

    global _PIPELINE

    if _PIPELINE is not None:
        return _PIPELINE

    settings = PipelineSettings.from_env()
    try:
        client = RemoteCompletionClient.from_settings(settings)
    except ConfigurationError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    cache = DocumentCache(settings.cache_dir, ttl_seconds=settings.cache_ttl_seconds)
    _PIPELINE = DocumentPipeline(client, cache, settings)
    return _PIPELINE


async def shutdown_pipeline() -> None:
    global _PIPELINE

    if _PIPELINE is None:
        return
    pipeline, _PIPELINE = _PIPELINE, None
    await pipeline.aclose()


def _format_event(payload: dict) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def _stage_error_status(error: PipelineStageError) -> int:
    return 422 if error.phase == "chunking" else 502


async def _prepare(pipeline: DocumentPipeline, document: Document, refresh: bool) -> PreparedDocument:
    if refresh:
        pipeline.forget(document)
    try:
        return await pipeline.prepare(document)
    except ConfigurationError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except PipelineCancelledError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except PipelineStageError as exc:
        raise HTTPException(
            status_code=_stage_error_status(exc),
            detail={"phase": exc.phase, "message": str(exc)},
        ) from exc


async def _stream_response(
    pipeline: DocumentPipeline,
    prepared: PreparedDocument,
    question: str,
    document: Document,
) -> StreamingResponse:
    """Open the final answer stream and surface request failures as HTTP errors.

    The first fragment is awaited before the response starts so that a
    rejected finalization request maps to a status code instead of a broken
    event stream.
    """

    fragments = pipeline.stream_answer(prepared, question, document)
    try:
        first: Optional[str] = await fragments.__anext__()
    except StopAsyncIteration:
        first = None
    except PipelineStageError as exc:
        raise HTTPException(
            status_code=_stage_error_status(exc),
            detail={"phase": exc.phase, "message": str(exc)},
        ) from exc

    async def _relay() -> AsyncIterator[str]:
        try:
            if first is not None:
                yield _format_event({"content": first})
                async for text in fragments:
                    yield _format_event({"content": text})
        except PipelineStageError as exc:
            LOGGER.error("Answer stream for %s interrupted: %s", document.name, exc)
            yield _format_event({"error": str(exc), "phase": exc.phase})
        finally:
            await fragments.aclose()
        yield "data: [DONE]\n\n"

    headers = {
        "Cache-Control": "no-cache",
        "X-Document-Fingerprint": prepared.fingerprint,
        "X-Chunk-Count": str(prepared.chunk_count),
    }
    if prepared.placeholders:
        headers["X-Failed-Chunks"] = ",".join(str(index) for index in prepared.placeholders)
    return StreamingResponse(_relay(), media_type=SSE_MEDIA_TYPE, headers=headers)


@router.post("/analyze")
async def analyze_document(
    request: AnalyzeRequest,
    refresh: bool = Query(False, description="Discard cached intermediate results first."),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> StreamingResponse:
    """Answer a question about already extracted document text."""

    if not request.text.strip():
        raise HTTPException(status_code=422, detail="Document text must not be empty")
    if not request.question.strip():
        raise HTTPException(status_code=422, detail="Question must not be empty")

    document = Document(
        text=request.text,
        total_pages=request.total_pages,
        name=request.document_name,
        doc_type=request.doc_type,
    )
    prepared = await _prepare(pipeline, document, refresh)
    return await _stream_response(pipeline, prepared, request.question, document)


@router.post("/upload")
async def upload_document(
    file: UploadFile = File(...),
    question: str = Form(...),
    doc_type: Optional[str] = Form(None),
    refresh: bool = Query(False, description="Discard cached intermediate results first."),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> StreamingResponse:
    """Extract an uploaded file and answer a question about it."""

    if not question.strip():
        raise HTTPException(status_code=422, detail="Question must not be empty")

    resolved_type = DocumentType.parse(doc_type) if doc_type else None
    with tempfile.TemporaryDirectory(prefix="docrag-upload-") as workdir:
        # Only the suffix is kept; extraction dispatches on it.
        path = Path(workdir) / f"upload{Path(file.filename or '').suffix.lower()}"
        path.write_bytes(await file.read())
        try:
            document = extract_document(path, name=file.filename or path.name, doc_type=resolved_type)
        except ExtractionError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    prepared = await _prepare(pipeline, document, refresh)
    return await _stream_response(pipeline, prepared, question, document)


__all__ = ["AnalyzeRequest", "get_pipeline", "router", "shutdown_pipeline"]
