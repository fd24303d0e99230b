"""Retriever for semantic search over the indexed document.

Handles:
- Query embedding generation
- Collection id resolution
- Nearest-neighbour search in Chroma
- Context formatting within a character budget
"""
from typing import List, Optional, Sequence

import structlog

from docrag.errors import DocRagError, EmbeddingError, NotFound, StageFailed
from docrag.llm_client import ProviderClient
from docrag.rag.store_chroma import ChromaStore, CollectionHandle, QueryHit

logger = structlog.get_logger()

CONTEXT_DELIMITER = "\n\n---\n\n"


def format_hit(hit: QueryHit) -> str:
    """Format a hit as a titled context block (the URL is left out to save tokens)."""
    return f"### {hit.title}\n{hit.document}"


class ContextAssembler:
    """Joins retrieved hits into a context string under a character budget."""

    def __init__(self, max_chars: Optional[int] = None):
        """Initialize the assembler.

        Args:
            max_chars: Character budget (None = include every hit). This is an
                approximation of the provider's token limit, not an exact count.
        """
        if max_chars is not None and max_chars <= 0:
            raise ValueError(f"max_chars must be positive, got {max_chars}")
        self.max_chars = max_chars

    def assemble(self, hits: Sequence[QueryHit]) -> str:
        """Build the context from hits in retrieval order.

        With a budget, assembly stops before the first block that would push
        the context past it; blocks are never cut.

        Args:
            hits: Retrieved hits, closest first

        Returns:
            Context string, never longer than ``max_chars``
        """
        context = ""
        included = 0

        for hit in hits:
            block = format_hit(hit)
            candidate = f"{context}{CONTEXT_DELIMITER}{block}" if context else block

            if self.max_chars is not None and len(candidate) > self.max_chars:
                logger.warning(
                    "context_truncated",
                    max_chars=self.max_chars,
                    included=included,
                    dropped=len(hits) - included,
                )
                break

            context = candidate
            included += 1

        logger.debug("context_formatted", num_chunks=included, total_chars=len(context))
        return context


class Retriever:
    """Semantic retriever for the query pipeline."""

    def __init__(
        self,
        provider: ProviderClient,
        store: ChromaStore,
        collection_name: str,
        top_k: Optional[int] = None,
    ):
        """Initialize the retriever.

        Args:
            provider: Embedding provider client
            store: Chroma store
            collection_name: Collection to search
            top_k: Number of results to retrieve (default: provider profile)
        """
        self.provider = provider
        self.store = store
        self.collection_name = collection_name
        self.top_k = top_k or provider.default_top_k
        self._collection: Optional[CollectionHandle] = None

        logger.info(
            "retriever_initialized",
            collection=collection_name,
            top_k=self.top_k,
        )

    async def _get_collection(self) -> CollectionHandle:
        """Resolve the collection on first use and reuse it afterwards."""
        if self._collection is None:
            self._collection = await self.store.resolve_collection(self.collection_name)
        return self._collection

    async def retrieve(self, query: str) -> List[QueryHit]:
        """Retrieve the chunks closest to a query.

        Args:
            query: User query text

        Returns:
            Hits sorted by distance as returned by the store (best first)

        Raises:
            StageFailed: Naming ``embed_prompt``, ``resolve_collection_id`` or
                ``query_top_k`` if that stage fails or yields nothing
        """
        logger.info("retrieval_started", query_length=len(query), top_k=self.top_k)

        try:
            query_embedding = await self.provider.embed(query)
        except DocRagError as e:
            raise StageFailed("embed_prompt", e) from e

        try:
            collection = await self._get_collection()
        except DocRagError as e:
            raise StageFailed("resolve_collection_id", e) from e

        if collection.dimension is not None and collection.dimension != len(query_embedding):
            error = EmbeddingError(
                f"Query embedding has dimension {len(query_embedding)}, "
                f"collection '{collection.name}' stores {collection.dimension}"
            )
            raise StageFailed("embed_prompt", error) from error

        try:
            hits = await self.store.query(collection.id, query_embedding, self.top_k)
        except DocRagError as e:
            raise StageFailed("query_top_k", e) from e

        if not hits:
            error = NotFound(f"No documents retrieved from collection '{collection.name}'")
            raise StageFailed("query_top_k", error) from error

        logger.info(
            "retrieval_completed",
            results_returned=len(hits),
            top_distance=hits[0].distance,
        )
        return hits
