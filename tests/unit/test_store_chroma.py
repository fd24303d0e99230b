"""Tests for the Chroma REST client."""
import httpx
import pytest

from docrag.errors import NotFound, StoreError
from docrag.rag.store_chroma import ChromaStore, QueryHit, parse_query_response
from helpers import CHROMA_URL, COLLECTIONS, json_body


def make_store(transport) -> ChromaStore:
    return ChromaStore(CHROMA_URL, "default-tenant", "default-db", transport=transport)


class TestProvisioning:
    """Tenant, database and collection creation."""

    @pytest.mark.asyncio
    async def test_ensure_namespace_twice_is_idempotent(self, make_transport):
        created = set()

        def handler(request):
            name = json_body(request)["name"]
            if name in created:
                return httpx.Response(409, json={"error": "already exists"})
            created.add(name)
            return httpx.Response(200, json={"name": name})

        transport = make_transport(handler)
        store = make_store(transport)

        await store.ensure_namespace()
        await store.ensure_namespace()

        assert [r.url.path for r in transport.calls] == [
            "/api/v2/tenants",
            "/api/v2/tenants/default-tenant/databases",
        ] * 2
        assert json_body(transport.calls[0]) == {"name": "default-tenant"}
        assert json_body(transport.calls[1]) == {"name": "default-db"}

    @pytest.mark.asyncio
    async def test_create_collection_twice_is_idempotent(self, make_transport):
        responses = iter([httpx.Response(200, json={"id": "c1"}), httpx.Response(409, json={})])
        transport = make_transport(lambda request: next(responses))
        store = make_store(transport)

        await store.create_collection("docs", {"created_by": "tests"})
        await store.create_collection("docs", {"created_by": "tests"})

        assert transport.calls[0].url.path == COLLECTIONS
        assert json_body(transport.calls[0]) == {"name": "docs", "metadata": {"created_by": "tests"}}

    @pytest.mark.asyncio
    async def test_other_errors_surface(self, make_transport):
        transport = make_transport(lambda request: httpx.Response(500, text="boom"))
        store = make_store(transport)

        with pytest.raises(StoreError):
            await store.ensure_namespace()
        with pytest.raises(StoreError):
            await store.create_collection("docs")

    @pytest.mark.asyncio
    async def test_connection_error_is_store_error(self, make_transport):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        store = make_store(make_transport(handler))

        with pytest.raises(StoreError):
            await store.ensure_namespace()


class TestLookup:
    """Collection existence checks and id resolution."""

    @pytest.mark.asyncio
    async def test_collection_exists(self, make_transport):
        def handler(request):
            if request.url.path.endswith("/docs"):
                return httpx.Response(200, json={"id": "c1", "name": "docs"})
            return httpx.Response(404, json={"error": "not found"})

        store = make_store(make_transport(handler))

        assert await store.collection_exists("docs") is True
        assert await store.collection_exists("other") is False

    @pytest.mark.asyncio
    async def test_resolve_collection(self, make_transport):
        transport = make_transport(
            lambda request: httpx.Response(200, json={"id": "c1", "name": "docs", "dimension": 3})
        )
        store = make_store(transport)

        handle = await store.resolve_collection("docs")

        assert handle.id == "c1"
        assert handle.dimension == 3
        assert (handle.tenant, handle.database, handle.name) == ("default-tenant", "default-db", "docs")
        assert transport.calls[0].url.path == f"{COLLECTIONS}/docs"
        assert await store.resolve_collection_id("docs") == "c1"

    @pytest.mark.asyncio
    async def test_missing_collection(self, make_transport):
        store = make_store(make_transport(lambda request: httpx.Response(404, json={})))

        with pytest.raises(NotFound):
            await store.resolve_collection_id("docs")

    @pytest.mark.asyncio
    async def test_lookup_without_id(self, make_transport):
        store = make_store(make_transport(lambda request: httpx.Response(200, json={"name": "docs"})))

        with pytest.raises(NotFound):
            await store.resolve_collection_id("docs")


class TestInsertAndQuery:
    """Record insertion and nearest-neighbour queries."""

    @pytest.mark.asyncio
    async def test_insert_payload(self, make_transport):
        transport = make_transport(lambda request: httpx.Response(201, json=True))
        store = make_store(transport)

        await store.insert("c1", "doc-0-chunk-0", [0.1, 0.2], "text", {"title": "T", "url": None})

        (request,) = transport.calls
        assert request.url.path == f"{COLLECTIONS}/c1/add"
        assert json_body(request) == {
            "ids": ["doc-0-chunk-0"],
            "embeddings": [[0.1, 0.2]],
            "documents": ["text"],
            "metadatas": [{"title": "T"}],
        }

    @pytest.mark.asyncio
    async def test_insert_failure(self, make_transport):
        store = make_store(make_transport(lambda request: httpx.Response(422, json={"error": "dimension"})))

        with pytest.raises(StoreError):
            await store.insert("c1", "doc-0-chunk-0", [0.1], "text", {"title": "T"})

    @pytest.mark.asyncio
    async def test_query(self, make_transport):
        body = {
            "ids": [["a", "b"]],
            "documents": [["first", "second"]],
            "metadatas": [[{"title": "A", "url": "id-a"}, {"title": "B"}]],
            "distances": [[0.2, 1.0]],
        }
        transport = make_transport(lambda request: httpx.Response(200, json=body))
        store = make_store(transport)

        hits = await store.query("c1", [0.5, 0.5], top_k=3)

        assert json_body(transport.calls[0]) == {
            "query_embeddings": [[0.5, 0.5]],
            "n_results": 3,
            "include": ["documents", "metadatas", "distances"],
        }
        assert transport.calls[0].url.path == f"{COLLECTIONS}/c1/query"
        assert hits == [
            QueryHit(document="first", title="A", source_id="id-a", distance=0.2),
            QueryHit(document="second", title="B", source_id=None, distance=1.0),
        ]


class TestQueryResponse:
    """Parsing of query responses."""

    def test_similarity_labels(self):
        assert QueryHit("d", "t", None, 0.2).similarity_label == "0.8000"
        assert QueryHit("d", "t", None, 1.0).similarity_label == "0.0000"

    def test_misaligned_arrays(self):
        body = {"documents": [["a", "b"]], "metadatas": [[{}]], "distances": [[0.1, 0.2]]}

        with pytest.raises(StoreError):
            parse_query_response(body)

    def test_missing_arrays(self):
        with pytest.raises(StoreError):
            parse_query_response({"documents": [["a"]]})

    def test_empty_result(self):
        assert parse_query_response({"documents": [[]], "metadatas": [[]], "distances": [[]]}) == []

    @pytest.mark.parametrize(
        "body",
        [
            {"documents": [["a"]], "metadatas": [[{"title": "A"}]], "distances": [[None]]},
            {"documents": [["a"]], "metadatas": [[{"title": "A"}]], "distances": [["far"]]},
            {"documents": [["a"]], "metadatas": [["A"]], "distances": [[0.1]]},
        ],
    )
    def test_malformed_hit(self, body):
        with pytest.raises(StoreError):
            parse_query_response(body)

    def test_null_title_becomes_empty(self):
        body = {"documents": [["a"]], "metadatas": [[{"title": None}]], "distances": [[0.1]]}

        assert parse_query_response(body)[0].title == ""


@pytest.mark.asyncio
async def test_malformed_base_url_is_store_error(make_transport):
    transport = make_transport(lambda request: httpx.Response(200, json={}))
    store = ChromaStore("http://chroma.test/api\x01v2", "default-tenant", "default-db", transport=transport)

    with pytest.raises(StoreError):
        await store.ensure_namespace()
    assert transport.calls == []
