"""Chroma vector store over its REST API.

Handles:
- Tenant / database provisioning (idempotent)
- Collection creation and id lookup
- Vector insertion
- Nearest-neighbour queries
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
import structlog

from docrag.config import Settings
from docrag.errors import NotFound, StoreError

logger = structlog.get_logger()


@dataclass(frozen=True)
class CollectionHandle:
    """A resolved collection within a tenant/database."""

    tenant: str
    database: str
    name: str
    id: str
    dimension: Optional[int] = None


@dataclass(frozen=True)
class QueryHit:
    """A single retrieved document with its metadata and distance."""

    document: str
    title: str
    source_id: Optional[str]
    distance: float

    @property
    def similarity(self) -> float:
        """Similarity derived from the distance (1 = identical)."""
        return 1.0 - self.distance

    @property
    def similarity_label(self) -> str:
        return f"{self.similarity:.4f}"


class ChromaStore:
    """Client for a Chroma server's v2 REST surface."""

    def __init__(
        self,
        base_url: str,
        tenant: str,
        database: str,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the store client.

        Args:
            base_url: API root, e.g. ``http://localhost:8000/api/v2``
            tenant: Tenant name
            database: Database name within the tenant
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.tenant = tenant
        self.database = database
        self.timeout = timeout
        self._transport = transport

        logger.debug(
            "chroma_store_initialized",
            base_url=self.base_url,
            tenant=tenant,
            database=database,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ChromaStore":
        return cls(
            base_url=settings.chroma_url,
            tenant=settings.chroma_tenant,
            database=settings.chroma_database,
            timeout=settings.http_timeout,
            transport=transport,
        )

    @property
    def _collections_path(self) -> str:
        return f"/tenants/{self.tenant}/databases/{self.database}/collections"

    async def _request(
        self, method: str, path: str, json: Optional[Dict[str, Any]] = None
    ) -> httpx.Response:
        """Send a request; transport failures become StoreError."""
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                return await client.request(method, url, json=json)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error("chroma_connection_error", url=url, error=str(e))
            raise StoreError(f"Request to {url} failed: {e}") from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        logger.error(
            "chroma_request_failed",
            action=action,
            status_code=response.status_code,
            body=response.text[:200],
        )
        raise StoreError(
            f"{action} failed with status {response.status_code}: {response.text[:200]}"
        )

    @staticmethod
    def _json(response: httpx.Response, action: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise StoreError(f"{action} returned a non-JSON body") from e

    async def _create(self, path: str, payload: Dict[str, Any], kind: str) -> bool:
        """POST a create request, treating 409 Conflict as already present.

        Returns:
            True if created, False if it already existed
        """
        response = await self._request("POST", path, json=payload)
        if response.status_code == 409:
            logger.info(f"{kind}_exists", name=payload["name"])
            return False
        self._raise_for_status(response, f"Create {kind} '{payload['name']}'")
        logger.info(f"{kind}_created", name=payload["name"])
        return True

    async def ensure_namespace(self) -> None:
        """Create the tenant and database unless they already exist.

        Raises:
            StoreError: On any failure other than "already exists"
        """
        await self._create("/tenants", {"name": self.tenant}, "tenant")
        await self._create(
            f"/tenants/{self.tenant}/databases", {"name": self.database}, "database"
        )

    async def collection_exists(self, name: str) -> bool:
        """Check whether a collection with this name exists.

        Raises:
            StoreError: On failures other than 404
        """
        response = await self._request("GET", f"{self._collections_path}/{name}")
        if response.status_code == 404:
            return False
        self._raise_for_status(response, f"Look up collection '{name}'")
        return True

    async def create_collection(
        self, name: str, metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """Create a collection; an existing one is left untouched.

        Raises:
            StoreError: On any failure other than "already exists"
        """
        payload: Dict[str, Any] = {"name": name}
        if metadata:
            payload["metadata"] = metadata
        await self._create(self._collections_path, payload, "collection")

    async def resolve_collection(self, name: str) -> CollectionHandle:
        """Look up a collection by name.

        Raises:
            NotFound: If the collection doesn't exist
            StoreError: On other failures
        """
        response = await self._request("GET", f"{self._collections_path}/{name}")
        if response.status_code == 404:
            raise NotFound(
                f"Collection '{name}' not found in {self.tenant}/{self.database}"
            )
        self._raise_for_status(response, f"Look up collection '{name}'")

        data = self._json(response, f"Look up collection '{name}'")
        collection_id = data.get("id") if isinstance(data, dict) else None
        if not collection_id:
            raise NotFound(f"Collection '{name}' lookup returned no id")

        dimension = data.get("dimension")
        handle = CollectionHandle(
            tenant=self.tenant,
            database=self.database,
            name=name,
            id=str(collection_id),
            dimension=dimension if isinstance(dimension, int) else None,
        )
        logger.info("collection_resolved", name=name, collection_id=handle.id)
        return handle

    async def resolve_collection_id(self, name: str) -> str:
        return (await self.resolve_collection(name)).id

    async def insert(
        self,
        collection_id: str,
        record_id: str,
        embedding: List[float],
        document: str,
        metadata: Dict[str, Any],
    ) -> None:
        """Add one record to a collection.

        None-valued metadata entries are dropped.

        Raises:
            StoreError: If the store rejects the record
        """
        payload = {
            "ids": [record_id],
            "embeddings": [embedding],
            "documents": [document],
            "metadatas": [{k: v for k, v in metadata.items() if v is not None}],
        }
        response = await self._request(
            "POST", f"{self._collections_path}/{collection_id}/add", json=payload
        )
        self._raise_for_status(response, f"Add '{record_id}'")
        logger.debug("record_added", id=record_id, collection_id=collection_id)

    async def query(
        self, collection_id: str, embedding: List[float], top_k: int
    ) -> List[QueryHit]:
        """Find the ``top_k`` nearest records to an embedding.

        Returns:
            Hits in the order returned by the store (closest first)

        Raises:
            StoreError: On request failure or a malformed response
        """
        payload = {
            "query_embeddings": [embedding],
            "n_results": top_k,
            "include": ["documents", "metadatas", "distances"],
        }
        response = await self._request(
            "POST", f"{self._collections_path}/{collection_id}/query", json=payload
        )
        self._raise_for_status(response, "Query")
        hits = parse_query_response(self._json(response, "Query"))

        logger.info("vector_search_completed", top_k=top_k, results_found=len(hits))
        return hits


def parse_query_response(data: Any) -> List[QueryHit]:
    """Turn Chroma's per-query arrays into hits for the first query.

    Raises:
        StoreError: If the arrays are missing or not index-aligned
    """
    try:
        documents = data["documents"][0]
        metadatas = data["metadatas"][0]
        distances = data["distances"][0]
    except (KeyError, IndexError, TypeError) as e:
        raise StoreError(f"Malformed query response: {e}") from e

    if not (len(documents) == len(metadatas) == len(distances)):
        raise StoreError(
            "Malformed query response: documents, metadatas and distances "
            f"have lengths {len(documents)}, {len(metadatas)}, {len(distances)}"
        )

    hits = []
    try:
        for document, meta, distance in zip(documents, metadatas, distances):
            meta = meta or {}
            hits.append(
                QueryHit(
                    document=document or "",
                    title=meta.get("title") or "",
                    source_id=meta.get("url"),
                    distance=float(distance),
                )
            )
    except (TypeError, ValueError, AttributeError) as e:
        raise StoreError(f"Malformed query response: {e}") from e
    return hits
