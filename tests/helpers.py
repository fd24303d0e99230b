"""Shared fakes for HTTP-level tests."""
import json

import httpx

CHROMA_URL = "http://chroma.test/api/v2"
COLLECTIONS = "/api/v2/tenants/default-tenant/databases/default-db/collections"


def json_body(request: httpx.Request) -> dict:
    """Decode the JSON body of a captured request."""
    return json.loads(request.content)


def embedding_response(vector) -> httpx.Response:
    return httpx.Response(200, json={"data": [{"embedding": vector, "index": 0}]})


def chat_response(content: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


class FakeBackend:
    """In-memory stand-in for the provider API and the Chroma server.

    Use as an ``httpx.MockTransport`` handler. Embeddings are derived from
    the text length; queries return stored records in reverse insertion
    order with growing distances.
    """

    def __init__(self):
        self.calls = []
        self.namespaces = set()
        self.collections = {}
        self.records = []
        self.prompts = []
        self.failing_embeddings = set()
        self.failing_inserts = set()
        self.embedding_overrides = {}
        self.fail_tenant_creation = False
        self.answer = "Refunds take up to 5 days."

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    @property
    def embedded_texts(self):
        return [json_body(r)["input"] for r in self.calls if r.url.path.endswith("/embeddings")]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        path = request.url.path

        if path.endswith("/embeddings"):
            text = json_body(request)["input"]
            if text in self.failing_embeddings:
                return httpx.Response(500, json={"message": "embedding backend down"})
            vector = self.embedding_overrides.get(text, [float(len(text)), 1.0, 0.0])
            return embedding_response(vector)

        if path.endswith("/chat/completions"):
            self.prompts.append(json_body(request)["messages"][0]["content"])
            return chat_response(self.answer)

        return self._chroma(request, path)

    def _chroma(self, request, path):
        if request.method == "POST" and (path.endswith("/tenants") or path.endswith("/databases")):
            if self.fail_tenant_creation:
                return httpx.Response(500, text="tenant store unavailable")
            key = (path, json_body(request)["name"])
            if key in self.namespaces:
                return httpx.Response(409, json={"error": "UniqueConstraintError"})
            self.namespaces.add(key)
            return httpx.Response(200, json={"name": key[1]})

        if request.method == "POST" and path == COLLECTIONS:
            name = json_body(request)["name"]
            if name in self.collections:
                return httpx.Response(409, json={"error": "UniqueConstraintError"})
            self.collections[name] = f"id-{name}"
            return httpx.Response(200, json={"id": self.collections[name], "name": name})

        if request.method == "GET" and path.startswith(COLLECTIONS + "/"):
            name = path.rsplit("/", 1)[-1]
            if name not in self.collections:
                return httpx.Response(404, json={"error": "NotFoundError"})
            return httpx.Response(200, json={"id": self.collections[name], "name": name, "dimension": None})

        if path.endswith("/add"):
            body = json_body(request)
            if body["ids"][0] in self.failing_inserts:
                return httpx.Response(500, json={"error": "InternalError"})
            self.records.append(body)
            return httpx.Response(201, json=True)

        if path.endswith("/query"):
            n_results = json_body(request)["n_results"]
            found = list(reversed(self.records))[:n_results]
            return httpx.Response(
                200,
                json={
                    "ids": [[r["ids"][0] for r in found]],
                    "documents": [[r["documents"][0] for r in found]],
                    "metadatas": [[r["metadatas"][0] for r in found]],
                    "distances": [[0.1 * (i + 1) for i in range(len(found))]],
                },
            )

        return httpx.Response(404, json={"error": f"unexpected {request.method} {path}"})
