"""Async client for the storage network's gateway.

The gateway exposes a GraphQL endpoint for tag queries, plus plain HTTP
endpoints for record payloads and confirmation status. All reads are retried
on transient failures.
"""

import base64
import logging
from collections.abc import Sequence
from enum import Enum
from types import TracebackType
from typing import Any

import httpx
from pydantic import BaseModel

from podsync.config.schema import GatewayConfig
from podsync.network.tags import DEFAULT_TAG_PREFIX, to_tag_filters
from podsync.utils.errors import QueryError
from podsync.utils.retry import (
    GatewayConnectionError,
    GatewayTimeoutError,
    NonRetryableError,
    RetryableError,
    RetryConfig,
    classify_http_error,
    with_retry,
)

logger = logging.getLogger(__name__)

# The gateway returns at most this many nodes per query
MAX_QUERY_NODES = 100


class QueryField(str, Enum):
    """Optional fields of a queried record node, besides its id."""

    TAGS = "tags { name value }"
    BUNDLED_IN = "bundledIn { id }"
    OWNER_ADDRESS = "owner { address }"


class RecordStatus(BaseModel):
    """Confirmation status of a broadcast record."""

    status_code: int
    confirmations: int = 0

    @property
    def confirmed(self) -> bool:
        return self.status_code == 200

    @property
    def not_found(self) -> bool:
        return self.status_code == 404


def _tags_query(fields: Sequence[QueryField]) -> str:
    selection = " ".join(f.value for f in fields)
    return (
        "query GetRecords($tags: [TagFilter!]!) {"
        f" transactions(tags: $tags, first: {MAX_QUERY_NODES}, sort: HEIGHT_DESC) {{"
        f" edges {{ node {{ id {selection} }} }} }} }}"
    )


def _ids_query(fields: Sequence[QueryField]) -> str:
    selection = " ".join(f.value for f in fields)
    return (
        "query GetRecords($ids: [ID!]) {"
        f" transactions(ids: $ids, first: {MAX_QUERY_NODES}) {{"
        f" edges {{ node {{ id {selection} }} }} }} }}"
    )


def _b64url_decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


class GatewayClient:
    """Reads records from the network through a gateway.

    Example:
        >>> async with GatewayClient(GatewayConfig()) as gateway:
        ...     nodes = await gateway.query_by_tags({"feed_url": url, "kind": "metadataBatch"})
    """

    def __init__(
        self,
        config: GatewayConfig | None = None,
        prefix: str = DEFAULT_TAG_PREFIX,
        client: httpx.AsyncClient | None = None,
        retry_config: RetryConfig | None = None,
    ) -> None:
        """Initialize the gateway client.

        Args:
            config: Gateway configuration
            prefix: Application tag prefix used in tag filters
            client: Optional preconfigured httpx client, e.g. with a mock transport
            retry_config: Retry behavior for reads
        """
        self.config = config or GatewayConfig()
        self.prefix = prefix
        self.retry_config = retry_config or RetryConfig(max_attempts=self.config.max_retries)
        self._client = client or httpx.AsyncClient(
            base_url=self.config.url,
            timeout=self.config.timeout_seconds,
            headers={"Content-Type": "application/json"},
        )

    async def __aenter__(self) -> "GatewayClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _send(
        self, method: str, url: str, check_status: bool = True, **kwargs: Any
    ) -> httpx.Response:
        """Send one request, mapping failures onto the retry classification."""
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise GatewayTimeoutError(f"{method} {url} timed out: {e}") from e
        except httpx.TransportError as e:
            raise GatewayConnectionError(f"{method} {url} failed: {e}") from e

        if check_status and response.status_code >= 400:
            raise classify_http_error(response.status_code, response.text[:200])
        return response

    async def _request(
        self, method: str, url: str, check_status: bool = True, **kwargs: Any
    ) -> httpx.Response:
        try:
            return await with_retry(self.retry_config)(self._send)(
                method, url, check_status, **kwargs
            )
        except (RetryableError, NonRetryableError) as e:
            raise QueryError(f"Gateway request {method} {url} failed: {e}") from e

    async def _graphql(self, query: str, variables: dict[str, Any]) -> list[dict[str, Any]]:
        response = await self._request(
            "POST", "/graphql", json={"query": query, "variables": variables}
        )
        try:
            body = response.json()
            edges = body["data"]["transactions"]["edges"]
        except (ValueError, KeyError, TypeError) as e:
            raise QueryError(f"Unexpected GraphQL response: {e}") from e

        return [edge["node"] for edge in edges if edge and edge.get("node")]

    async def query_by_tags(
        self,
        filters: dict[str, str | list[str]],
        fields: Sequence[QueryField] = (QueryField.TAGS,),
    ) -> list[dict[str, Any]]:
        """Query the newest records matching all tag filters.

        Args:
            filters: ``{field: value}`` filters, in metadata field names
            fields: Node fields to fetch besides the id

        Returns:
            Up to ``MAX_QUERY_NODES`` record nodes, newest first

        Raises:
            QueryError: If the gateway is unreachable or returns an error
        """
        logger.debug(f"Querying records by tags: {filters}")
        variables = {"tags": to_tag_filters(filters, self.prefix)}
        return await self._graphql(_tags_query(fields), variables)

    async def query_by_ids(
        self,
        ids: Sequence[str],
        fields: Sequence[QueryField] = (QueryField.TAGS,),
    ) -> list[dict[str, Any]]:
        if not ids:
            return []
        return await self._graphql(_ids_query(fields), {"ids": list(ids)[:MAX_QUERY_NODES]})

    async def fetch_data(self, record_id: str, bundled_in: str | None = None) -> bytes:
        """Download a record's payload.

        Records bundled inside a parent record are served by the gateway's
        path resolver; others through the raw data endpoint.

        Raises:
            QueryError: If the payload cannot be downloaded
        """
        if bundled_in:
            response = await self._request("GET", f"/{record_id}")
            return response.content

        response = await self._request("GET", f"/tx/{record_id}/data")
        try:
            return _b64url_decode(response.text)
        except ValueError as e:
            raise QueryError(f"Malformed data for record {record_id}: {e}") from e

    async def get_status(self, record_id: str) -> RecordStatus:
        """Confirmation status of a record; 404 means not (yet) known to the network."""
        response = await self._request("GET", f"/tx/{record_id}/status", check_status=False)
        if response.status_code != 200:
            return RecordStatus(status_code=response.status_code)

        try:
            confirmations = int(response.json().get("number_of_confirmations", 0))
        except (ValueError, AttributeError) as e:
            raise QueryError(f"Unexpected status response for {record_id}: {e}") from e
        return RecordStatus(status_code=200, confirmations=confirmations)

    async def find_missing_ids(self, ids: Sequence[str]) -> list[str]:
        """Ids among the first ``MAX_QUERY_NODES`` that the gateway does not return."""
        candidates = list(ids)[:MAX_QUERY_NODES]
        nodes = await self.query_by_ids(candidates, (QueryField.BUNDLED_IN,))
        found = {node.get("id") for node in nodes}
        return [x for x in candidates if x not in found]
