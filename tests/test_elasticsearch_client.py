"""Tests for the Elasticsearch REST client."""

import json
from collections.abc import Callable

import httpx
import pytest

from metasync.clients.elasticsearch import ElasticsearchClient
from metasync.config import ElasticsearchSettings
from metasync.errors import SearchIndexError
from metasync.models import BulkMutation, IndexedDocument


def make_client(
    handler: Callable[[httpx.Request], httpx.Response],
    **settings: object,
) -> tuple[ElasticsearchClient, list[httpx.Request]]:
    """Build a client whose requests are answered by ``handler`` and recorded."""
    requests: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = ElasticsearchClient(ElasticsearchSettings(base="http://es:9200", **settings))
    client._client = httpx.AsyncClient(
        base_url="http://es:9200", transport=httpx.MockTransport(recording)
    )
    return client, requests


class TestLifecycle:
    """Tests for connect/close."""

    def test_not_connected(self) -> None:
        """Test using the client before connect raises."""
        client = ElasticsearchClient(ElasticsearchSettings())

        with pytest.raises(RuntimeError, match="not connected"):
            _ = client.client

    async def test_connect_with_auth(self) -> None:
        """Test basic auth is configured when a user is set."""
        client = ElasticsearchClient(ElasticsearchSettings(user="elastic", password="secret"))

        await client.connect()
        try:
            assert isinstance(client.client.auth, httpx.BasicAuth)
            assert client.client.base_url.host == "elasticsearch"
        finally:
            await client.close()

        assert client._client is None


class TestDocuments:
    """Tests for single-document operations."""

    async def test_index_document(self) -> None:
        """Test documents are PUT under their id."""
        client, requests = make_client(lambda r: httpx.Response(201, json={"result": "created"}))

        await client.index_document("F1", {"id": "F1", "doc_type": "folder_metadata"})

        assert requests[0].method == "PUT"
        assert requests[0].url.path == "/data/_doc/F1"
        assert json.loads(requests[0].content)["doc_type"] == "folder_metadata"

    async def test_delete_document(self) -> None:
        """Test deleting an existing document returns True."""
        client, requests = make_client(lambda r: httpx.Response(200, json={"result": "deleted"}))

        assert await client.delete_document("F1") is True
        assert requests[0].method == "DELETE"
        assert requests[0].url.path == "/data/_doc/F1"

    async def test_delete_missing_document(self) -> None:
        """Test deleting a missing document returns False instead of raising."""
        client, _ = make_client(lambda r: httpx.Response(404, json={"result": "not_found"}))

        assert await client.delete_document("X1") is False

    async def test_error_status_raises(self) -> None:
        """Test non-2xx responses raise SearchIndexError with the status."""
        client, _ = make_client(lambda r: httpx.Response(503, text="unavailable"))

        with pytest.raises(SearchIndexError) as exc_info:
            await client.index_document("F1", {})
        assert exc_info.value.status_code == 503

    async def test_transport_error_raises(self) -> None:
        """Test connection failures raise SearchIndexError."""

        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = make_client(refuse)

        with pytest.raises(SearchIndexError, match="connection refused"):
            await client.delete_document("F1")


class TestBulk:
    """Tests for bulk submission."""

    async def test_bulk_body(self) -> None:
        """Test mutations are sent as NDJSON action and source lines."""
        client, requests = make_client(
            lambda r: httpx.Response(200, json={"errors": False, "items": []})
        )
        document = IndexedDocument(id="F1", doc_type="folder_metadata", target_type="folder")

        response = await client.bulk(
            [BulkMutation.upsert(document), BulkMutation.delete("file_metadata", "D1")]
        )

        assert response == {"errors": False, "items": []}
        request = requests[0]
        assert request.url.path == "/_bulk"
        assert request.headers["content-type"] == "application/x-ndjson"
        lines = request.content.decode().splitlines()
        assert [json.loads(line) for line in lines] == [
            {"index": {"_index": "data", "_id": "F1"}},
            document.to_source(),
            {"delete": {"_index": "data", "_id": "D1"}},
        ]
        assert request.content.endswith(b"\n")


class TestScroll:
    """Tests for scrolling over document ids."""

    async def test_scroll_ids(self) -> None:
        """Test every page is read and the scroll context is cleared."""
        pages = iter(
            [
                {"_scroll_id": "s1", "hits": {"hits": [{"_id": "F1"}, {"_id": "F2"}]}},
                {"_scroll_id": "s2", "hits": {"hits": [{"_id": "F3"}]}},
                {"_scroll_id": "s2", "hits": {"hits": []}},
            ]
        )

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "DELETE":
                return httpx.Response(200, json={"succeeded": True})
            return httpx.Response(200, json=next(pages))

        client, requests = make_client(handler, scroll_size=2)

        ids = [doc_id async for doc_id in client.scroll_ids("folder_metadata")]

        assert ids == ["F1", "F2", "F3"]
        first = requests[0]
        assert first.url.path == "/data/_search"
        assert first.url.params["scroll"] == "1m"
        body = json.loads(first.content)
        assert body["size"] == 2
        assert body["query"] == {"term": {"doc_type": "folder_metadata"}}
        assert requests[1].url.path == "/_search/scroll"
        assert json.loads(requests[1].content)["scroll_id"] == "s1"
        assert requests[-1].method == "DELETE"
        assert json.loads(requests[-1].content) == {"scroll_id": ["s2"]}

    async def test_scroll_cleared_when_abandoned(self) -> None:
        """Test the scroll context is cleared when iteration stops early."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "DELETE":
                return httpx.Response(200, json={"succeeded": True})
            return httpx.Response(
                200, json={"_scroll_id": "s1", "hits": {"hits": [{"_id": "F1"}, {"_id": "F2"}]}}
            )

        client, requests = make_client(handler)
        scroll = client.scroll_ids("file_metadata")

        assert await anext(scroll) == "F1"
        await scroll.aclose()

        assert requests[-1].method == "DELETE"

    async def test_scroll_error_raises(self) -> None:
        """Test a failing scroll page raises after clearing the context."""
        responses = iter(
            [
                httpx.Response(200, json={"_scroll_id": "s1", "hits": {"hits": [{"_id": "F1"}]}}),
                httpx.Response(500, text="shard failure"),
                httpx.Response(200, json={"succeeded": True}),
            ]
        )
        client, requests = make_client(lambda r: next(responses))

        with pytest.raises(SearchIndexError):
            _ = [doc_id async for doc_id in client.scroll_ids("file_metadata")]

        assert requests[-1].method == "DELETE"



class TestIndexSetup:
    """Tests for creating the index."""

    async def test_creates_missing_index(self) -> None:
        """Test a missing index is created with doc_type mapped as a keyword."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "HEAD":
                return httpx.Response(404)
            return httpx.Response(200, json={"acknowledged": True})

        client, requests = make_client(handler, index="data")

        assert await client.ensure_index() is True

        create = requests[-1]
        assert (create.method, create.url.path) == ("PUT", "/data")
        properties = json.loads(create.content)["mappings"]["properties"]
        assert properties["doc_type"] == {"type": "keyword"}

    async def test_existing_index_untouched(self) -> None:
        """Test an existing index is not recreated."""
        client, requests = make_client(lambda r: httpx.Response(200))

        assert await client.ensure_index() is False
        assert [r.method for r in requests] == ["HEAD"]

    async def test_create_failure_raises(self) -> None:
        """Test a rejected index creation raises."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "HEAD":
                return httpx.Response(404)
            return httpx.Response(403, json={"error": "forbidden"})

        client, _ = make_client(handler)

        with pytest.raises(SearchIndexError):
            await client.ensure_index()
