"""Ingest pipeline for indexing a sectioned document.

Orchestrates:
- Collection provisioning (Chroma mode)
- Text chunking
- Embedding generation
- Vector storage (Chroma) or buffering to a flat JSON file
"""
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Iterable, List, Optional

import structlog

from docrag import __version__
from docrag.errors import EmbeddingError, StageFailed, StoreError
from docrag.llm_client import ProviderClient
from docrag.rag.chunker import Chunk, TextChunker, chunk_id
from docrag.rag.html_parser import HtmlSegmenter, Section, load_sections
from docrag.rag.store_chroma import ChromaStore, CollectionHandle
from docrag.rag.store_json import write_embedded_chunks

logger = structlog.get_logger()


@dataclass
class IngestReport:
    """Outcome of one ingestion run."""

    sections_processed: int = 0
    chunks_created: int = 0
    embeddings_generated: int = 0
    embeddings_failed: int = 0
    inserts_failed: int = 0
    stored: List[Chunk] = field(default_factory=list)
    output_path: Optional[Path] = None

    @property
    def chunks_stored(self) -> int:
        return len(self.stored)

    @property
    def chunks_skipped(self) -> int:
        return self.embeddings_failed + self.inserts_failed


class IngestPipeline:
    """Pipeline for embedding a document into Chroma or a JSON file."""

    def __init__(
        self,
        provider: ProviderClient,
        chunker: TextChunker,
        store: Optional[ChromaStore] = None,
        collection_name: Optional[str] = None,
        output_path: Optional[Path] = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            provider: Embedding provider client
            chunker: Chunker with validated size/overlap
            store: Chroma store; None selects flat-file mode
            collection_name: Collection to fill (required with a store)
            output_path: Destination of the JSON file in flat-file mode
        """
        if store is not None and not collection_name:
            raise ValueError("collection_name is required when a store is given")
        if store is None and output_path is None:
            raise ValueError("output_path is required without a store")

        self.provider = provider
        self.chunker = chunker
        self.store = store
        self.collection_name = collection_name
        self.output_path = output_path

        logger.info(
            "ingest_pipeline_initialized",
            provider=provider.name,
            mode="chroma" if store is not None else "file",
            chunk_size=chunker.chunk_size,
            chunk_overlap=chunker.chunk_overlap,
        )

    async def _prepare_collection(self) -> CollectionHandle:
        """Ensure namespace and collection exist and resolve the id once."""
        metadata = {"created_by": f"docrag {__version__}", "embedding_provider": self.provider.name}
        try:
            await self.store.ensure_namespace()
        except StoreError as e:
            raise StageFailed("ensure_namespace", e) from e
        try:
            if await self.store.collection_exists(self.collection_name):
                logger.info("collection_exists", name=self.collection_name)
            else:
                await self.store.create_collection(self.collection_name, metadata)
        except StoreError as e:
            raise StageFailed("ensure_collection", e) from e
        try:
            return await self.store.resolve_collection(self.collection_name)
        except StoreError as e:
            raise StageFailed("resolve_collection_id", e) from e

    async def ingest_sections(
        self,
        sections: Iterable[Section],
        progress_callback: Optional[Callable[[int, Section], None]] = None,
    ) -> IngestReport:
        """Chunk, embed and store every section.

        A chunk whose embedding (or insert) fails is logged and skipped; the
        run carries on with the remaining chunks.

        Args:
            sections: Sections in document order
            progress_callback: Optional callback(section_index, section)

        Returns:
            IngestReport with counters and the stored chunks

        Raises:
            StageFailed: If provisioning the collection or writing the file fails
        """
        report = IngestReport()
        handle = await self._prepare_collection() if self.store is not None else None
        dimension = handle.dimension if handle else None

        for section_index, section in enumerate(sections):
            if progress_callback:
                progress_callback(section_index, section)

            pieces = self.chunker.chunk_text(section.body)
            report.sections_processed += 1
            report.chunks_created += len(pieces)

            logger.info(
                "section_chunked",
                section_index=section_index,
                title=section.title,
                chunk_count=len(pieces),
            )

            for piece in pieces:
                chunk = Chunk(
                    id=chunk_id(section_index, piece.chunk_index),
                    title=section.title,
                    source_id=section.source_id,
                    text=piece.content,
                )

                try:
                    embedding = await self.provider.embed(chunk.text)
                    if dimension is None:
                        dimension = len(embedding)
                    elif len(embedding) != dimension:
                        raise EmbeddingError(
                            f"Embedding dimension {len(embedding)} does not match "
                            f"collection dimension {dimension}"
                        )
                except EmbeddingError as e:
                    logger.error("chunk_embedding_failed", chunk_id=chunk.id, error=str(e))
                    report.embeddings_failed += 1
                    continue

                report.embeddings_generated += 1
                chunk = replace(chunk, embedding=embedding)

                if handle is not None:
                    try:
                        await self.store.insert(
                            handle.id,
                            chunk.id,
                            embedding,
                            chunk.text,
                            {"title": chunk.title, "url": chunk.source_id},
                        )
                    except StoreError as e:
                        logger.error("chunk_insert_failed", chunk_id=chunk.id, error=str(e))
                        report.inserts_failed += 1
                        continue

                report.stored.append(chunk)
                logger.debug("chunk_embedded", chunk_id=chunk.id)

        if self.store is None:
            try:
                write_embedded_chunks(self.output_path, report.stored)
            except (OSError, RuntimeError) as e:
                raise StageFailed("flush", e) from e
            report.output_path = self.output_path

        logger.info(
            "ingest_completed",
            sections=report.sections_processed,
            chunks_created=report.chunks_created,
            chunks_stored=report.chunks_stored,
            chunks_skipped=report.chunks_skipped,
        )
        return report

    async def ingest_file(
        self,
        path: Path,
        progress_callback: Optional[Callable[[int, Section], None]] = None,
    ) -> IngestReport:
        """Ingest an HTML document or a pre-parsed ``.json`` sections file.

        Raises:
            FileNotFoundError: If the file doesn't exist
        """
        logger.info("ingesting_file", path=str(path))
        if path.suffix.lower() == ".json":
            sections: Iterable[Section] = load_sections(path)
        else:
            sections = HtmlSegmenter().parse_file(path)
        return await self.ingest_sections(sections, progress_callback=progress_callback)
