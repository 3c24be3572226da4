"""Split extracted document text into chunks sized for one remote call."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from docrag.config import PipelineSettings
from docrag.models import Chunk, DocumentType

LOGGER = logging.getLogger(__name__)

TABLE_ROWS_PER_CHUNK = 100
TABLE_HEADER_SCAN_LINES = 10


@dataclass(frozen=True, slots=True)
class BoundaryRule:
    """Line patterns that open a new chunk once ``min_chars`` are buffered."""

    strategy: str
    patterns: tuple[re.Pattern[str], ...]
    min_chars: int


def _compile(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(pattern, re.IGNORECASE) for pattern in patterns)


BOUNDARY_RULES: Dict[DocumentType, BoundaryRule] = {
    DocumentType.RESUME: BoundaryRule(
        "resume_section",
        _compile(
            r"experience|experiência|trabalho|professional",
            r"education|educação|formação|academic",
            r"skills|habilidades|competências|technical",
            r"projects|projetos|portfolio",
            r"certifications|certificações|cursos",
        ),
        1000,
    ),
    DocumentType.PAPER: BoundaryRule(
        "paper_section",
        _compile(
            r"abstract|resumo",
            r"introduction|introdução",
            r"methodology|methods|métodos|metodologia",
            r"results|resultados",
            r"discussion|discussão",
            r"conclusion|conclusão",
            r"references|referências|bibliografia",
        ),
        2000,
    ),
    DocumentType.QA: BoundaryRule(
        "qa_pair",
        _compile(r"^\d+\.\s", r"^Q\d*[:.]?\s", r"^pergunta", r"^\?\s"),
        500,
    ),
    DocumentType.CONTRACT: BoundaryRule(
        "contract_clause",
        _compile(r"^(\d+\.)+\s"),
        1500,
    ),
    DocumentType.MANUAL: BoundaryRule(
        "manual_section",
        _compile(r"^(?:chapter|capítulo)", r"^(?:step|passo|etapa)", r"^\d+\.", r"^(?:section|seção)"),
        2000,
    ),
}


def chunk_budget(total_pages: int, settings: Optional[PipelineSettings] = None) -> int:
    """Return the character budget of one chunk for a document of ``total_pages``."""

    settings = settings or PipelineSettings()
    pages = settings.pages_per_chunk(max(total_pages, 1))
    return min(pages * settings.chars_per_page, settings.max_chunk_chars)


def chunk_fixed_size(content: str, chunk_size: int, overlap_ratio: float = 0.15) -> List[Chunk]:
    """Slice *content* into windows of ``chunk_size`` chars overlapping by ``overlap_ratio``."""

    if chunk_size <= 0:
        raise ValueError("chunk_size must be a positive integer")
    if not 0 <= overlap_ratio < 1:
        raise ValueError("overlap_ratio must be within [0, 1)")
    if not content:
        return []

    overlap = int(chunk_size * overlap_ratio)
    step = max(chunk_size - overlap, 1)
    text_length = len(content)
    chunks: List[Chunk] = []
    start = 0

    while start < text_length:
        end = min(start + chunk_size, text_length)
        chunks.append(Chunk(content=content[start:end], index=len(chunks), strategy="fixed_size"))
        if end == text_length:
            break
        start += step

    return chunks


class _LineBuffer:
    """Accumulates lines and emits them as chunks in input order.

    ``max_size`` bounds the content of every emitted chunk: the buffer is
    flushed before a line that would overflow it, and a single line longer
    than the budget is sliced into budget-sized windows of its own.
    """

    def __init__(self, strategy: str, max_size: int, header: Optional[str] = None) -> None:
        self.strategy = strategy
        self.header = header
        self.max_size = max_size
        self.lines: List[str] = []
        self.size = 0
        self.chunks: List[Chunk] = []

    def add(self, line: str) -> None:
        if len(line) > self.max_size:
            self.flush()
            self._add_oversized(line)
            return
        if self.lines and self.size + len(line) > self.max_size:
            self.flush()
        self.lines.append(line)
        self.size += len(line) + 1

    def has_content(self) -> bool:
        return any(line.strip() for line in self.lines)

    def flush(self) -> None:
        text = "\n".join(self.lines).strip()
        if text:
            self._emit(text)
        self.lines = []
        self.size = 0

    def _add_oversized(self, line: str) -> None:
        for piece in chunk_fixed_size(line.strip(), self.max_size, overlap_ratio=0.0):
            if piece.content.strip():
                self._emit(piece.content)

    def _emit(self, text: str) -> None:
        self.chunks.append(Chunk(content=text, index=len(self.chunks), strategy=self.strategy, header=self.header))


def chunk_by_boundaries(content: str, max_size: int, rule: BoundaryRule) -> List[Chunk]:
    """Group lines into chunks, starting a new one at lines matching ``rule``."""

    buffer = _LineBuffer(rule.strategy, max_size)
    for line in content.split("\n"):
        stripped = line.strip()
        is_boundary = any(pattern.search(stripped) for pattern in rule.patterns)
        if is_boundary and buffer.has_content() and buffer.size > rule.min_chars:
            buffer.flush()
        buffer.add(line)
    buffer.flush()
    return buffer.chunks


def _detect_table_header(lines: Sequence[str]) -> Optional[str]:
    for line in lines[:TABLE_HEADER_SCAN_LINES]:
        if "|" in line or "\t" in line:
            return line.strip() or None
    return None


def chunk_by_table_rows(content: str, max_size: int) -> List[Chunk]:
    """Group table rows; the detected header travels with every chunk as context."""

    lines = content.split("\n")
    header = _detect_table_header(lines)
    if header is not None and len(header) > max_size // 2:
        LOGGER.warning("Table header of %s chars exceeds half the chunk budget; not repeating it", len(header))
        header = None
    # The header is prepended to every request, so it counts against the budget.
    row_budget = max(max_size - len(header) - 1, 1) if header else max_size
    buffer = _LineBuffer("table_rows", row_budget, header=header)
    for line in lines:
        buffer.add(line)
        if len(buffer.lines) >= TABLE_ROWS_PER_CHUNK:
            buffer.flush()
    buffer.flush()
    return buffer.chunks


def create_chunks(
    content: str,
    total_pages: int,
    doc_type: DocumentType = DocumentType.GENERAL,
    settings: Optional[PipelineSettings] = None,
) -> List[Chunk]:
    """Split *content* using the strategy registered for ``doc_type``.

    The chunk budget follows the page-count heuristic from
    :func:`chunk_budget`; general documents are sliced with a sliding window,
    the other types by line boundaries with a forced flush at the budget.
    """

    settings = settings or PipelineSettings()
    budget = chunk_budget(total_pages, settings)
    if not content.strip():
        LOGGER.info("No text to chunk (%s pages, type=%s)", total_pages, doc_type.value)
        return []

    if doc_type == DocumentType.TABLE:
        chunks = chunk_by_table_rows(content, budget)
    elif doc_type in BOUNDARY_RULES:
        chunks = chunk_by_boundaries(content, budget, BOUNDARY_RULES[doc_type])
    else:
        chunks = chunk_fixed_size(content, budget, settings.overlap_ratio)

    LOGGER.info(
        "Chunked %s chars (%s pages, type=%s) into %s chunks of <= %s chars",
        len(content),
        total_pages,
        doc_type.value,
        len(chunks),
        budget,
    )
    return chunks


__all__ = [
    "BOUNDARY_RULES",
    "BoundaryRule",
    "chunk_budget",
    "chunk_by_boundaries",
    "chunk_by_table_rows",
    "chunk_fixed_size",
    "create_chunks",
]
