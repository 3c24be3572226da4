"""High level orchestration of the document summarisation pipeline."""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import AsyncIterator, List, Optional, Tuple

from docrag.analyzer import ChunkAnalyzer, ProgressCallback, SleepFunc
from docrag.cache import DocumentCache, fingerprint
from docrag.cancellation import CancellationToken
from docrag.chunker import create_chunks
from docrag.client import CompletionService
from docrag.config import PipelineSettings
from docrag.consolidator import HierarchicalConsolidator
from docrag.errors import ConfigurationError, PipelineStageError, RemoteServiceError
from docrag.finalizer import StreamingFinalizer
from docrag.logging_config import AUDIT_LOGGER_NAME
from docrag.models import Document, DocumentType, PreparedDocument, ProgressEvent
from docrag.synthesizer import SECTIONS_PHASE, SectionSynthesizer
from docrag.telemetry import emit_phase_event, emit_stage_failure, traced_run

LOGGER = logging.getLogger(__name__)
AUDIT_LOGGER = logging.getLogger(AUDIT_LOGGER_NAME)

DOC_TYPE_SAMPLE_CHARS = 3000


class DocumentPipeline:
    """Run chunking, analysis, synthesis, consolidation and the streamed answer.

    The remote client and the cache are injected so tests can substitute
    fakes. Earlier phases are cached per document fingerprint: a retried run
    resumes from the synthesized sections or the chunk analyses when they
    are still fresh.
    """

    def __init__(
        self,
        client: CompletionService,
        cache: Optional[DocumentCache] = None,
        settings: Optional[PipelineSettings] = None,
        *,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.settings = settings or PipelineSettings()
        self._client = client
        self._cache = cache
        self.analyzer = ChunkAnalyzer(client, cache, self.settings, sleep=sleep)
        self.synthesizer = SectionSynthesizer(client, self.settings)
        self.consolidator = HierarchicalConsolidator(client, self.settings)
        self.finalizer = StreamingFinalizer(client)

    async def resolve_document_type(self, document: Document) -> DocumentType:
        if document.doc_type is not None:
            return document.doc_type
        if not self.settings.detect_document_type:
            return DocumentType.GENERAL
        try:
            response = await self._client.detect_document_type(
                document.text[:DOC_TYPE_SAMPLE_CHARS], document.name
            )
        except ConfigurationError:
            raise
        except Exception as error:
            LOGGER.warning("Document type detection failed for %s; using general: %s", document.name, error)
            return DocumentType.GENERAL
        doc_type = DocumentType.parse(response.type)
        LOGGER.info(
            "Detected document type %s for %s (confidence=%s)",
            doc_type.value,
            document.name,
            response.confidence,
        )
        return doc_type

    async def prepare(
        self,
        document: Document,
        on_progress: Optional[ProgressCallback] = None,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> PreparedDocument:
        """Reduce *document* to sections that fit the final request."""

        run_id = uuid.uuid4().hex
        document_fingerprint = fingerprint(document.text)

        with traced_run(
            "pipeline.prepare",
            run_id=run_id,
            document=document.name,
            pages=document.total_pages,
        ) as summary:
            cached = self._load_sections(document_fingerprint, document.doc_type)
            if cached is not None:
                doc_type, sections = cached
            else:
                doc_type = await self.resolve_document_type(document)
                sections = None

            chunks = create_chunks(document.text, document.total_pages, doc_type, self.settings)
            if not chunks:
                error = PipelineStageError("chunking", f"{document.name} contains no extractable text")
                emit_stage_failure(error, run_id=run_id)
                raise error
            summary.update(chunks=len(chunks), doc_type=doc_type.value)
            if on_progress is not None:
                on_progress(
                    ProgressEvent(
                        current=len(chunks),
                        total=len(chunks),
                        status=f"Split {document.name} into {len(chunks)} chunks",
                        phase="chunking",
                    )
                )

            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            placeholders: List[int] = []
            if sections is None:
                result = await self.analyzer.analyze_chunks(
                    chunks,
                    document.total_pages,
                    on_progress,
                    fingerprint=document_fingerprint,
                    cancel_token=cancel_token,
                )
                placeholders = result.failed
                emit_phase_event("analysis", run_id=run_id, analyses=len(result.analyses), failed=placeholders)

                try:
                    sections = await self.synthesizer.synthesize_sections(
                        result.analyses, on_progress, cancel_token=cancel_token
                    )
                except PipelineStageError as error:
                    emit_stage_failure(error, run_id=run_id)
                    raise
                if self._cache is not None and not placeholders:
                    self._cache.save(
                        document_fingerprint,
                        SECTIONS_PHASE,
                        {"doc_type": doc_type.value, "sections": sections},
                    )
            else:
                LOGGER.info("Reusing %s cached sections for %s", len(sections), document_fingerprint)

            try:
                consolidation = await self.consolidator.consolidate(
                    sections, on_progress, cancel_token=cancel_token
                )
            except PipelineStageError as error:
                emit_stage_failure(error, run_id=run_id)
                raise
            summary.update(
                placeholders=placeholders,
                rounds=consolidation.rounds,
                forced_truncation=consolidation.forced_truncation,
            )

        AUDIT_LOGGER.info(
            {
                "event": "prepare",
                "run_id": run_id,
                "document": document.name,
                "fingerprint": document_fingerprint,
                "pages": document.total_pages,
                "chunks": len(chunks),
                "placeholders": placeholders,
                "cached_sections": cached is not None,
            }
        )
        return PreparedDocument(
            fingerprint=document_fingerprint,
            chunk_count=len(chunks),
            sections=consolidation.sections,
            consolidation=consolidation,
            doc_type=doc_type,
            placeholders=placeholders,
        )

    async def stream_answer(
        self,
        prepared: PreparedDocument,
        question: str,
        document: Document,
    ) -> AsyncIterator[str]:
        """Relay the final answer fragments for a prepared document."""

        try:
            async for text in self.finalizer.consolidate_and_stream(
                prepared.sections,
                question,
                document.name,
                document.total_pages,
            ):
                yield text
        except RemoteServiceError as error:
            failure = PipelineStageError("finalization", str(error), cause=error)
            emit_stage_failure(failure)
            raise failure from error

    async def run(
        self,
        document: Document,
        question: str,
        on_progress: Optional[ProgressCallback] = None,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[str]:
        prepared = await self.prepare(document, on_progress, cancel_token=cancel_token)
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        async for text in self.stream_answer(prepared, question, document):
            yield text

    def forget(self, document: Document) -> None:
        """Drop cached intermediate results for *document*."""

        if self._cache is not None:
            self._cache.clear(fingerprint(document.text))

    async def aclose(self) -> None:
        close = getattr(self._client, "aclose", None)
        if close is not None:
            await close()

    def _load_sections(
        self, document_fingerprint: str, requested: Optional[DocumentType]
    ) -> Optional[Tuple[DocumentType, List[str]]]:
        """Return ``(doc_type, sections)`` from the cache, or ``None``.

        Sections chunked under a different explicitly requested type are a miss.
        """

        if self._cache is None:
            return None
        cached = self._cache.load(document_fingerprint, SECTIONS_PHASE)
        if not isinstance(cached, dict):
            return None
        sections = cached.get("sections")
        if not isinstance(sections, list) or not sections:
            return None
        if not all(isinstance(item, str) for item in sections):
            return None
        doc_type = DocumentType.parse(cached.get("doc_type"))
        if requested is not None and requested is not doc_type:
            return None
        return doc_type, list(sections)


__all__ = ["DocumentPipeline"]
