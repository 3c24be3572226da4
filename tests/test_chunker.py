import re

import pytest

from docrag.chunker import chunk_budget, chunk_fixed_size, create_chunks
from docrag.config import PipelineSettings
from docrag.models import DocumentType


def _alphabet(length: int) -> str:
    return "".join(chr(97 + index % 26) for index in range(length))


def test_fixed_size_chunks_cover_content_with_overlap() -> None:
    content = _alphabet(10_000)
    chunks = chunk_fixed_size(content, 1000, overlap_ratio=0.15)

    assert [chunk.index for chunk in chunks] == list(range(len(chunks)))
    assert all(len(chunk.content) <= 1000 for chunk in chunks)
    assert content.startswith(chunks[0].content)
    assert content.endswith(chunks[-1].content)

    for previous, current in zip(chunks, chunks[1:]):
        assert previous.content[-150:] == current.content[:150]

    rebuilt = chunks[0].content + "".join(chunk.content[150:] for chunk in chunks[1:])
    assert rebuilt == content


def test_forty_five_page_document_yields_five_chunks() -> None:
    content = "x" * 200_000
    chunks = create_chunks(content, 45)

    assert len(chunks) == 5
    assert all(chunk.strategy == "fixed_size" for chunk in chunks)
    assert all(len(chunk.content) <= 15 * 3500 for chunk in chunks)


def test_short_document_is_single_chunk() -> None:
    chunks = create_chunks("A short memo about lunch.", 1)

    assert len(chunks) == 1
    assert chunks[0].content == "A short memo about lunch."


@pytest.mark.parametrize("content", ["", "   \n\n  "])
def test_blank_document_has_no_chunks(content: str) -> None:
    assert create_chunks(content, 3) == []


def test_fixed_size_rejects_invalid_arguments() -> None:
    with pytest.raises(ValueError):
        chunk_fixed_size("abc", 0)
    with pytest.raises(ValueError):
        chunk_fixed_size("abc", 10, overlap_ratio=1.0)


@pytest.mark.parametrize(
    ("total_pages", "expected_pages"),
    [(10, 15), (50, 15), (51, 20), (100, 20), (400, 25), (600, 30)],
)
def test_pages_per_chunk_steps(total_pages: int, expected_pages: int) -> None:
    settings = PipelineSettings()

    assert settings.pages_per_chunk(total_pages) == expected_pages
    assert chunk_budget(total_pages, settings) == expected_pages * 3500


def test_chunk_budget_is_capped() -> None:
    assert chunk_budget(1000, PipelineSettings(chars_per_page=5000)) == 120_000


def _numbered_document(sections: int = 40) -> str:
    lines = []
    for index in range(sections):
        lines.append(f"{index + 1}. Heading number {index}")
        lines.append("Experience with results and discussion " * 8)
        lines.append("")
    return "\n".join(lines)


@pytest.mark.parametrize(
    "doc_type",
    [
        DocumentType.RESUME,
        DocumentType.PAPER,
        DocumentType.QA,
        DocumentType.CONTRACT,
        DocumentType.MANUAL,
        DocumentType.TABLE,
    ],
)
def test_line_strategies_keep_every_line_exactly_once(doc_type: DocumentType) -> None:
    content = _numbered_document()
    chunks = create_chunks(content, 2, doc_type)

    expected = [line.strip() for line in content.split("\n") if line.strip()]
    produced = [
        line.strip()
        for chunk in chunks
        for line in chunk.content.split("\n")
        if line.strip()
    ]
    assert produced == expected
    assert all(chunk.content.strip() for chunk in chunks)


def test_contract_chunks_start_at_clause_boundaries() -> None:
    clauses = []
    for index in range(12):
        clauses.append(f"{index + 1}. Clause title {index}")
        clauses.append("filler text " * 70)
    content = "\n".join(clauses)

    chunks = create_chunks(content, 5, DocumentType.CONTRACT)

    assert len(chunks) > 1
    assert all(chunk.strategy == "contract_clause" for chunk in chunks)
    assert all(re.match(r"^\d+\.\s", chunk.content) for chunk in chunks)


def test_boundary_strategy_forces_flush_at_budget() -> None:
    settings = PipelineSettings(chars_per_page=100, max_chunk_chars=1000)
    content = "\n".join("plain line without any heading " * 3 for _ in range(60))

    chunks = create_chunks(content, 1, DocumentType.PAPER, settings)

    assert len(chunks) > 1
    longest_line = max(len(line) for line in content.split("\n"))
    assert all(len(chunk.content) <= 1000 for chunk in chunks)


@pytest.mark.parametrize("doc_type", [DocumentType.CONTRACT, DocumentType.PAPER, DocumentType.QA])
def test_single_line_longer_than_budget_is_split(doc_type: DocumentType) -> None:
    content = "word " * 60_000

    chunks = create_chunks(content, 600, doc_type)

    budget = chunk_budget(600)
    assert len(chunks) == 3
    assert all(len(chunk.content) <= budget for chunk in chunks)
    assert [chunk.index for chunk in chunks] == [0, 1, 2]
    assert "".join(chunk.content for chunk in chunks) == content.strip()


def test_oversized_line_keeps_surrounding_order() -> None:
    settings = PipelineSettings(chars_per_page=100, max_chunk_chars=1000)
    content = "\n".join(["1. Parties", "x" * 2500, "2. Term"])

    chunks = create_chunks(content, 1, DocumentType.CONTRACT, settings)

    assert [chunk.content for chunk in chunks] == ["1. Parties", "x" * 1000, "x" * 1000, "x" * 500, "2. Term"]
    assert all(chunk.strategy == "contract_clause" for chunk in chunks)


def test_table_rows_carry_header_as_context() -> None:
    rows = [f"row {index} | {index * 2}" for index in range(250)]
    content = "\n".join(["Name | Value"] + rows)

    chunks = create_chunks(content, 1, DocumentType.TABLE)

    assert len(chunks) == 3
    assert all(chunk.header == "Name | Value" for chunk in chunks)
    assert chunks[0].prompt_text == chunks[0].content
    assert chunks[1].prompt_text.startswith("Name | Value\nrow 99 |")
    assert sum(chunk.content.count("Name | Value") for chunk in chunks) == 1


def test_table_row_longer_than_budget_is_split() -> None:
    settings = PipelineSettings(chars_per_page=100, max_chunk_chars=1000)
    content = "\n".join(["Name | Value", "long | " + "v" * 3000, "short | 1"])

    chunks = create_chunks(content, 1, DocumentType.TABLE, settings)

    assert all(len(chunk.prompt_text) <= 1000 for chunk in chunks)
    assert chunks[0].content == "Name | Value"
    assert chunks[-1].content == "short | 1"
    assert "".join(chunk.content for chunk in chunks[1:-1]) == "long | " + "v" * 3000
