"""Command line entry points: answer a question about a local file or serve the API."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from docrag.cache import DocumentCache
from docrag.client import RemoteCompletionClient
from docrag.config import PipelineSettings
from docrag.errors import DocragError
from docrag.extract import extract_document
from docrag.logging_config import configure_logging
from docrag.models import DocumentType, ProgressEvent
from docrag.pipeline import DocumentPipeline


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="docrag", description=__doc__)
    subcommands = parser.add_subparsers(dest="command", required=True)

    ask = subcommands.add_parser("ask", help="Answer a question about a document on disk.")
    ask.add_argument("path", type=Path, help="Text, Word or PDF file to analyse.")
    ask.add_argument("question", help="Question to answer from the document.")
    ask.add_argument(
        "--doc-type",
        choices=[item.value for item in DocumentType],
        default=None,
        help="Chunking strategy; detected remotely when omitted and detection is enabled.",
    )
    ask.add_argument("--refresh", action="store_true", help="Ignore cached intermediate results.")

    serve = subcommands.add_parser("serve", help="Run the HTTP API with uvicorn.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    return parser.parse_args(argv)


def _print_progress(event: ProgressEvent) -> None:
    payload = {
        "phase": event.phase,
        "current": event.current,
        "total": event.total,
        "status": event.status,
    }
    print(json.dumps(payload, ensure_ascii=False), file=sys.stderr)


async def _ask(args: argparse.Namespace) -> int:
    settings = PipelineSettings.from_env()
    doc_type = DocumentType(args.doc_type) if args.doc_type else None
    document = extract_document(args.path, doc_type=doc_type)

    client = RemoteCompletionClient.from_settings(settings)
    pipeline = DocumentPipeline(
        client,
        DocumentCache(settings.cache_dir, ttl_seconds=settings.cache_ttl_seconds),
        settings,
    )
    try:
        if args.refresh:
            pipeline.forget(document)
        async for text in pipeline.run(document, args.question, _print_progress):
            sys.stdout.write(text)
            sys.stdout.flush()
    finally:
        await pipeline.aclose()
    sys.stdout.write("\n")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    configure_logging()

    if args.command == "serve":
        import uvicorn

        uvicorn.run("docrag.main:app", host=args.host, port=args.port)
        return 0

    try:
        return asyncio.run(_ask(args))
    except DocragError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
