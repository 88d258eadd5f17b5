"""Async Elasticsearch REST client built on httpx."""

import json
import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

import httpx

from metasync.config import ElasticsearchSettings
from metasync.errors import SearchIndexError
from metasync.models import BulkMutation

logger = logging.getLogger(__name__)

# Fields matched exactly; everything else is mapped dynamically
INDEX_MAPPINGS: dict[str, Any] = {
    "properties": {
        "id": {"type": "keyword"},
        "doc_type": {"type": "keyword"},
        "target_type": {"type": "keyword"},
    }
}


class ElasticsearchClient:
    """Thin async client for the Elasticsearch document, bulk and scroll APIs.

    Documents live in a single index; the indexed type is stored in the
    ``doc_type`` field and the document ``_id`` is the object id.
    """

    def __init__(self, settings: ElasticsearchSettings) -> None:
        """Initialize the client.

        Args:
            settings: Elasticsearch section of the application settings.
        """
        self.settings = settings
        self.index = settings.index
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        """Create the underlying HTTP client."""
        if self._client is not None:
            return

        logger.info(f"Connecting to Elasticsearch at {self.settings.base} (index: {self.index})")
        auth = (self.settings.user, self.settings.password) if self.settings.user else None
        self._client = httpx.AsyncClient(
            base_url=self.settings.base,
            auth=auth,
            timeout=self.settings.timeout_seconds,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the underlying httpx client.

        Raises:
            RuntimeError: If the client is not connected.
        """
        if self._client is None:
            raise RuntimeError("Elasticsearch client not connected. Call connect() first.")
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        *,
        allow_not_found: bool = False,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, translating transport and HTTP errors into SearchIndexError."""
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise SearchIndexError(f"{method} {path} failed: {e}") from e

        if allow_not_found and response.status_code == 404:
            return response
        if response.is_error:
            raise SearchIndexError(
                f"{method} {path} returned {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )
        return response

    async def index_exists(self) -> bool:
        """Check whether the index exists."""
        response = await self._request("HEAD", f"/{self.index}", allow_not_found=True)
        return response.status_code != 404

    async def ensure_index(self) -> bool:
        """Create the index with keyword mappings if it does not exist.

        An existing index is left as it is, mapping included.

        Returns:
            True if the index was created, False if it already existed.
        """
        if await self.index_exists():
            logger.info(f"Index '{self.index}' already exists")
            return False

        logger.info(f"Creating index '{self.index}'")
        await self._request("PUT", f"/{self.index}", json={"mappings": INDEX_MAPPINGS})
        return True

    async def index_document(self, doc_id: str, document: dict[str, Any]) -> None:
        """Create or replace one document.

        Args:
            doc_id: Document id.
            document: Document body.
        """
        await self._request("PUT", f"/{self.index}/_doc/{doc_id}", json=document)

    async def delete_document(self, doc_id: str) -> bool:
        """Delete one document.

        Args:
            doc_id: Document id.

        Returns:
            True if a document was deleted, False if none existed.
        """
        response = await self._request(
            "DELETE", f"/{self.index}/_doc/{doc_id}", allow_not_found=True
        )
        return response.status_code != 404

    def _bulk_body(self, mutations: Sequence[BulkMutation]) -> bytes:
        lines: list[str] = []
        for mutation in mutations:
            meta = {"_index": self.index, "_id": mutation.id}
            lines.append(json.dumps({mutation.action: meta}))
            if mutation.action == "index":
                lines.append(json.dumps(mutation.document))
        return ("\n".join(lines) + "\n").encode("utf-8")

    async def bulk(self, mutations: Sequence[BulkMutation]) -> dict[str, Any]:
        """Submit mutations as one bulk request.

        Item-level failures do not raise; they are reported in the returned
        response (``errors`` and per-item ``error`` fields).

        Args:
            mutations: Mutations to submit, in order.

        Returns:
            Parsed bulk response.
        """
        response = await self._request(
            "POST",
            "/_bulk",
            content=self._bulk_body(mutations),
            headers={"Content-Type": "application/x-ndjson"},
        )
        return response.json()

    async def scroll_ids(self, doc_type: str) -> AsyncIterator[str]:
        """Iterate over the ids of every document of one indexed type.

        Uses the scroll API; the scroll context is cleared when iteration ends
        or is abandoned.

        Args:
            doc_type: Indexed type to scan (e.g. file_metadata).

        Yields:
            Document ids.
        """
        keep_alive = self.settings.scroll_keep_alive
        response = await self._request(
            "POST",
            f"/{self.index}/_search",
            params={"scroll": keep_alive},
            json={
                "size": self.settings.scroll_size,
                "_source": False,
                "sort": ["_doc"],
                "query": {"term": {"doc_type": doc_type}},
            },
        )
        page = response.json()
        scroll_id = page.get("_scroll_id")

        try:
            while True:
                hits = page.get("hits", {}).get("hits", [])
                if not hits:
                    break
                for hit in hits:
                    yield hit["_id"]

                response = await self._request(
                    "POST",
                    "/_search/scroll",
                    json={"scroll": keep_alive, "scroll_id": scroll_id},
                )
                page = response.json()
                scroll_id = page.get("_scroll_id", scroll_id)
        finally:
            if scroll_id:
                await self._clear_scroll(scroll_id)

    async def _clear_scroll(self, scroll_id: str) -> None:
        try:
            await self.client.request(
                "DELETE", "/_search/scroll", json={"scroll_id": [scroll_id]}
            )
        except httpx.HTTPError as e:
            logger.warning(f"Failed to clear scroll context: {e}")

    async def __aenter__(self) -> "ElasticsearchClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
