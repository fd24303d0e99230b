"""Command-line entry points.

Usage:
    docrag-parse document.html -o parsed_chunks.json   # Segment only
    docrag-ingest [document.html | parsed_chunks.json] # Embed and store
    docrag-ask How do I refund a payment?              # Answer a question
"""
import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import httpx
import structlog
from dotenv import find_dotenv, load_dotenv

from docrag.config import Settings
from docrag.errors import DocRagError, StageFailed
from docrag.llm_client import get_provider
from docrag.rag.answer import QueryPipeline, render_answer
from docrag.rag.chunker import TextChunker
from docrag.rag.html_parser import HtmlSegmenter, Section, save_sections
from docrag.rag.ingest import IngestPipeline, IngestReport
from docrag.rag.retriever import ContextAssembler, Retriever
from docrag.rag.store_chroma import ChromaStore

logger = structlog.get_logger()


def configure_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging on stderr (stdout is for results)."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=log_level, force=True)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if log_level == logging.DEBUG else logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


def load_settings() -> Settings:
    """Load ``.env`` from the working directory, then read the environment."""
    load_dotenv(find_dotenv(usecwd=True))
    return Settings.from_env()


def build_ingest_pipeline(
    settings: Settings,
    output_path: Optional[Path] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> IngestPipeline:
    """Wire the ingest pipeline for the configured provider and store mode."""
    provider = get_provider(settings, transport=transport)
    chunker = TextChunker(settings.chunk_size, settings.chunk_overlap)

    if settings.use_chroma_db:
        return IngestPipeline(
            provider=provider,
            chunker=chunker,
            store=ChromaStore.from_settings(settings, transport=transport),
            collection_name=settings.chroma_collection,
        )
    return IngestPipeline(
        provider=provider,
        chunker=chunker,
        output_path=output_path or settings.embedded_chunks_path,
    )


def build_query_pipeline(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> QueryPipeline:
    """Wire the query pipeline; top-k and budget default to the provider profile."""
    provider = get_provider(settings, transport=transport)
    retriever = Retriever(
        provider=provider,
        store=ChromaStore.from_settings(settings, transport=transport),
        collection_name=settings.chroma_collection,
        top_k=settings.retrieval_top_k,
    )
    budget = settings.max_context_chars or provider.context_char_budget
    return QueryPipeline(provider, retriever, ContextAssembler(budget))


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        """Start progress reporting."""
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, section_index: int, section: Section):
        """Report the section being processed."""
        end = "\n" if self.verbose else ""
        print(f"\r  📄 Section {section_index + 1}: {section.title[:40]:<40}", end=end, flush=True)

    def finish(self, report: IngestReport):
        """Finish progress reporting."""
        print("\n")
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"{'=' * 60}")
        print("  Ingestion Complete!")
        print(f"{'=' * 60}\n")
        print(f"  📁 Sections processed:   {report.sections_processed}")
        print(f"  📝 Chunks created:       {report.chunks_created}")
        print(f"  🧮 Embeddings generated: {report.embeddings_generated}")
        print(f"  ✅ Chunks stored:        {report.chunks_stored}")
        print(f"  ❌ Chunks skipped:       {report.chunks_skipped}")
        print(f"  ⏱️  Time elapsed:         {elapsed_seconds:.1f}s")
        print(f"\n{'=' * 60}\n")

        if report.chunks_skipped > 0:
            print(f"⚠️  Warning: {report.chunks_skipped} chunk(s) were skipped.")
            print("   Check logs for details.\n")

        if report.output_path is not None:
            print(f"✅ Saved to: {report.output_path}\n")


def parse_main(argv: Optional[List[str]] = None) -> int:
    """Segment an HTML document into a JSON sections file."""
    parser = argparse.ArgumentParser(
        prog="docrag-parse",
        description="Split an HTML document into titled sections",
    )
    parser.add_argument("document", type=Path, help="HTML document to parse")
    parser.add_argument(
        "-o", "--output",
        type=Path,
        default=Path("parsed_chunks.json"),
        help="Where to write the sections (default: parsed_chunks.json)",
    )
    parser.add_argument("--heading-tag", default="h2", help="Tag that starts a section (default: h2)")
    args = parser.parse_args(argv)

    configure_logging()

    try:
        sections = HtmlSegmenter(heading_tag=args.heading_tag).parse_file(args.document)
        count = save_sections(args.output, sections)
    except (FileNotFoundError, UnicodeDecodeError) as e:
        print(f"\n❌ Error: {e}\n", file=sys.stderr)
        return 1

    print(f"✅ Parsed {count} section(s) into {args.output}")
    return 0


def ingest_main(argv: Optional[List[str]] = None) -> int:
    """Embed a document into Chroma or a flat JSON file."""
    parser = argparse.ArgumentParser(
        prog="docrag-ingest",
        description="Chunk, embed and store a document",
    )
    parser.add_argument(
        "document",
        type=Path,
        nargs="?",
        default=None,
        help="HTML document or parsed sections .json (default: DOCUMENT_PATH)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Embedded chunks file when Chroma is disabled (default: EMBEDDED_CHUNKS_PATH)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Show verbose progress output")
    args = parser.parse_args(argv)

    try:
        settings = load_settings()
        configure_logging(settings.log_level)
        document = args.document or settings.document_path

        print("\n📋 Configuration:")
        print(f"   Document:         {document}")
        print(f"   Provider:         {settings.embedding_provider}")
        print(f"   Chunk size:       {settings.chunk_size} chars")
        print(f"   Chunk overlap:    {settings.chunk_overlap} chars")
        print(f"   Store:            {'chroma/' + settings.chroma_collection if settings.use_chroma_db else 'file'}")

        pipeline = build_ingest_pipeline(settings, output_path=args.output)

        progress = ProgressReporter(verbose=args.verbose)
        progress.start("Embedding Document")
        report = asyncio.run(pipeline.ingest_file(document, progress_callback=progress.update))
        progress.finish(report)

    except KeyboardInterrupt:
        print("\n\n⚠️  Ingestion cancelled by user.\n")
        return 1

    except StageFailed as e:
        print(f"\n❌ Ingestion failed at {e.stage}: {e.error}\n", file=sys.stderr)
        logger.error("ingest_failed", stage=e.stage, error=str(e.error))
        return 1

    except (DocRagError, FileNotFoundError, ValueError) as e:
        print(f"\n❌ Error: {e}\n", file=sys.stderr)
        return 1

    return 0


def ask_main(argv: Optional[List[str]] = None) -> int:
    """Answer the question given as trailing command-line words."""
    parser = argparse.ArgumentParser(
        prog="docrag-ask",
        description="Answer a question from the indexed document",
    )
    parser.add_argument("question", nargs="*", help="Question text")
    args = parser.parse_args(argv)

    question = " ".join(args.question).strip()
    if not question:
        print("❌ Please provide a question as a command-line argument.", file=sys.stderr)
        return 1

    try:
        settings = load_settings()
        configure_logging(settings.log_level)
        pipeline = build_query_pipeline(settings)
        result = asyncio.run(pipeline.answer(question))

    except StageFailed as e:
        print(f"\n❌ {e.stage} failed: {e.error}\n", file=sys.stderr)
        logger.error("answer_failed", stage=e.stage, error=str(e.error))
        return 1

    except DocRagError as e:
        print(f"\n❌ Error: {e}\n", file=sys.stderr)
        return 1

    print(render_answer(result))
    return 0
