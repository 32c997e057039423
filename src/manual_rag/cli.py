"""Command-line interface — ingest manuals, serve and query the index."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

SEED_TEXT = (
    "To defog the windshield, set the heater/AC to DEFROST, direct airflow to the windshield, "
    "set temperature to warm, and increase blower speed as needed."
)


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="manual-rag",
        description="Searchable index and grounded Q&A over scanned manuals",
    )
    parser.add_argument(
        "--config", default=None,
        help="Optional YAML settings file (environment variables still override it)",
    )

    # Global logging verbosity flags
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging output",
    )
    verbosity.add_argument(
        "--quiet", "-q", action="store_true",
        help="Suppress all output except warnings and errors",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.required = True

    ingest_parser = subparsers.add_parser(
        "ingest",
        help="Extract, chunk, embed and index every PDF in the docs directory",
    )
    ingest_parser.add_argument(
        "--docs-dir", default=None, help="Directory of PDFs (default: settings docs_dir)"
    )
    ingest_parser.add_argument(
        "--output-dir", default=None,
        help="Also write {doc_id}_chunks.jsonl files to this directory",
    )
    ingest_parser.add_argument(
        "--strict", action="store_true", default=False,
        help="Exit non-zero if any page or document failed",
    )

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP query service")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: settings host)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port (default: settings port)")

    ask_parser = subparsers.add_parser("ask", help="Answer one question and print the JSON response")
    ask_parser.add_argument("question", help="Natural-language question")

    embed_parser = subparsers.add_parser("embed", help="Print the embedding of a text")
    embed_parser.add_argument("text", help="Text to embed")

    seed_parser = subparsers.add_parser(
        "seed", help="Index a single ad-hoc text chunk for smoke testing",
    )
    seed_parser.add_argument("--text", default=SEED_TEXT, help="Chunk text")
    seed_parser.add_argument("--filename", default="test.txt", help="Filename recorded in the payload")
    seed_parser.add_argument("--page", type=int, default=1, help="Page recorded in the payload")

    ocr_parser = subparsers.add_parser(
        "ocr-check", help="Rasterize one PDF page, OCR it, and print the start of the text",
    )
    ocr_parser.add_argument("pdf", help="Path to a PDF file")
    ocr_parser.add_argument("--page", type=int, default=1, help="1-based page number")

    return parser


def cmd_ingest(args: argparse.Namespace, settings) -> int:
    """Ingest every PDF in the docs directory.

    Returns exit code (0 = success).
    """
    from .embeddings import batcher_from_settings
    from .ingest import Ingestor
    from .vector_store import create_client

    docs_dir = Path(args.docs_dir or settings.docs_dir)
    output_dir = Path(args.output_dir) if args.output_dir else None

    ingestor = Ingestor.from_settings(
        settings,
        client=create_client(settings.qdrant_url),
        batcher=batcher_from_settings(settings),
        output_dir=output_dir,
    )
    report = ingestor.ingest_directory(docs_dir)

    logger.info(
        "Ingested %d documents: %d chunks, %d points upserted",
        len(report.documents), report.total_chunks, report.total_upserted,
    )
    if report.failures:
        logger.warning("%d page/document failures", len(report.failures))
        if args.strict:
            return 1
    return 0


def cmd_serve(args: argparse.Namespace, settings) -> int:
    """Run the query service under uvicorn (blocks until interrupted)."""
    import uvicorn

    from .server import Services, create_app

    host = args.host or settings.host
    port = args.port or settings.port
    logger.info("RAG server on %s:%d", host, port)
    uvicorn.run(create_app(Services(settings)), host=host, port=port)
    return 0


def cmd_ask(args: argparse.Namespace, settings) -> int:
    from .answer import AnswerComposer, answer_question
    from .embeddings import batcher_from_settings
    from .retrieval import QueryRetriever
    from .vector_store import create_client

    retriever = QueryRetriever.from_settings(
        settings, batcher_from_settings(settings), create_client(settings.qdrant_url)
    )
    result = answer_question(args.question, retriever, AnswerComposer.from_settings(settings))
    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    return 0


def cmd_embed(args: argparse.Namespace, settings) -> int:
    from .embeddings import batcher_from_settings

    vector = batcher_from_settings(settings).embed_one(args.text)
    print(json.dumps({"dim": len(vector), "vector": vector}))
    return 0


def cmd_seed(args: argparse.Namespace, settings) -> int:
    """Embed one text and upsert it as a single point."""
    from .chunk_assembly import Chunk, make_chunk_id
    from .embeddings import batcher_from_settings
    from .ingest import document_id
    from .vector_store import create_client, ensure_collection, upsert_chunks

    client = create_client(settings.qdrant_url)
    ensure_collection(client, settings.collection, settings.embed_dim)

    doc_id = document_id(args.filename)
    chunk = Chunk(
        id=make_chunk_id(doc_id, args.page, 0, settings.stable_ids),
        doc_id=doc_id,
        filename=args.filename,
        page=args.page,
        text=args.text,
    )
    vector = batcher_from_settings(settings).embed_one(chunk.text)
    upsert_chunks(client, settings.collection, [chunk], [vector])
    logger.info("Seeded one test chunk with id: %s", chunk.id)
    return 0


def cmd_ocr_check(args: argparse.Namespace, settings) -> int:
    from .acquisition import PdfDocument, TesseractRecognizer

    pdf_path = Path(args.pdf)
    if not pdf_path.exists():
        logger.error("File not found: %s", pdf_path)
        return 1

    recognizer = TesseractRecognizer(lang=settings.ocr_lang, psm=settings.ocr_psm)
    with PdfDocument(pdf_path) as document:
        text = recognizer(document.rasterize(args.page, dpi=settings.ocr_dpi))

    print(f"[RESULT] OCR (first 500 chars):\n\n{text[:500]}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()

    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        # Return the exit code from argparse (0 for --help, 2 for errors)
        return e.code if isinstance(e.code, int) else 1

    # Configure root logger based on verbosity flags
    if getattr(args, "verbose", False):
        log_level = logging.DEBUG
    elif getattr(args, "quiet", False):
        log_level = logging.WARNING
    else:
        log_level = logging.INFO

    logging.basicConfig(
        level=log_level,
        format="%(levelname)s: %(message)s",
    )

    from .config import load_settings, validate_settings

    command_handlers = {
        "ingest": cmd_ingest,
        "serve": cmd_serve,
        "ask": cmd_ask,
        "embed": cmd_embed,
        "seed": cmd_seed,
        "ocr-check": cmd_ocr_check,
    }

    handler = command_handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    try:
        settings = load_settings(args.config)
        errors = validate_settings(settings)
        if errors:
            for err in errors:
                logger.error("Config error: %s", err)
            return 1
        return handler(args, settings)
    except Exception as e:
        logger.error("%s", e)
        return 1
