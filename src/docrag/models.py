"""Data models used by the document pipeline and its remote client."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class DocumentType(str, Enum):
    """Document categories used to pick a chunking strategy."""

    GENERAL = "general"
    RESUME = "resume"
    PAPER = "paper"
    TABLE = "table"
    QA = "qa"
    CONTRACT = "contract"
    MANUAL = "manual"

    @classmethod
    def parse(cls, value: str | None) -> "DocumentType":
        """Return the matching member, falling back to ``GENERAL``."""

        if not value:
            return cls.GENERAL
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.GENERAL


@dataclass(frozen=True, slots=True)
class Document:
    """Extracted document text and the facts the pipeline needs about it."""

    text: str
    total_pages: int
    name: str = "document"
    doc_type: Optional[DocumentType] = DocumentType.GENERAL


@dataclass(slots=True)
class Chunk:
    """Contiguous slice of a document analysed in one remote call."""

    content: str
    index: int
    strategy: str
    header: Optional[str] = None

    @property
    def prompt_text(self) -> str:
        if self.header and not self.content.startswith(self.header):
            return f"{self.header}\n{self.content}"
        return self.content


@dataclass(slots=True)
class ProgressEvent:
    """Progress notification delivered to ``on_progress`` observers."""

    current: int
    total: int
    status: str
    phase: str = "analysis"


@dataclass(slots=True)
class ChunkAnalyses:
    """Analyses in chunk order plus the indices that hold failure placeholders."""

    analyses: list[str]
    failed: list[int] = field(default_factory=list)


@dataclass(slots=True)
class CacheEntry:
    """Snapshot of one phase result stored for a document fingerprint."""

    fingerprint: str
    phase: str
    data: Any
    timestamp: float


@dataclass(slots=True)
class ConsolidationResult:
    """Outcome of hierarchical consolidation."""

    sections: list[str]
    rounds: int
    forced_truncation: bool = False


@dataclass(slots=True)
class PreparedDocument:
    """Reduced sections ready for the streamed final answer."""

    fingerprint: str
    chunk_count: int
    sections: list[str]
    consolidation: ConsolidationResult
    doc_type: DocumentType = DocumentType.GENERAL
    placeholders: list[int] = field(default_factory=list)


# Wire models -----------------------------------------------------------------


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class AnalyzeChunkRequest(_WireModel):
    chunk: str
    chunk_index: int = Field(..., alias="chunkIndex")
    total_chunks: int = Field(..., alias="totalChunks")
    total_pages: int = Field(..., alias="totalPages")


class AnalyzeChunkResponse(_WireModel):
    analysis: str


class SynthesizeSectionRequest(_WireModel):
    analyses: list[str]
    section_index: int = Field(..., alias="sectionIndex")
    total_sections: int = Field(..., alias="totalSections")


class SynthesizeSectionResponse(_WireModel):
    synthesis: str


class ConsolidateRequest(_WireModel):
    sections: list[str]
    user_message: str = Field(..., alias="userMessage")
    file_name: str = Field(..., alias="fileName")
    total_pages: int = Field(..., alias="totalPages")


class DocumentTypeRequest(_WireModel):
    content_sample: str = Field(..., alias="contentSample")
    file_name: str = Field(..., alias="fileName")


class DocumentTypeResponse(_WireModel):
    type: str = DocumentType.GENERAL.value
    confidence: float | None = None
    reasoning: str | None = None


@dataclass(frozen=True, slots=True)
class StreamFragment:
    """Incremental piece of the final answer."""

    text: str


@dataclass(frozen=True, slots=True)
class StreamEnd:
    """Explicit end-of-stream marker."""


StreamEvent = Union[StreamFragment, StreamEnd]


__all__ = [
    "AnalyzeChunkRequest",
    "AnalyzeChunkResponse",
    "CacheEntry",
    "Chunk",
    "ChunkAnalyses",
    "ConsolidateRequest",
    "ConsolidationResult",
    "Document",
    "DocumentType",
    "DocumentTypeRequest",
    "DocumentTypeResponse",
    "PreparedDocument",
    "ProgressEvent",
    "StreamEnd",
    "StreamEvent",
    "StreamFragment",
    "SynthesizeSectionRequest",
    "SynthesizeSectionResponse",
]
