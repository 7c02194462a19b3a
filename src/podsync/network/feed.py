"""Reconstructing podcast metadata and threads from published records."""

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, Field

from podsync.ids import is_valid_uuid
from podsync.models import QueryMetadata, RecordKind
from podsync.network.cache import RecordCache
from podsync.network.gateway import GatewayClient, QueryField
from podsync.network.records import decompress_metadata
from podsync.network.tags import DEFAULT_TAG_PREFIX, parse_tags
from podsync.sync.diff_merge import merge_batch_metadata, merge_batch_tags
from podsync.utils.errors import FeedFetchError, PayloadError, QueryError, ValidationError
from podsync.utils.metadata import Metadata, episodes_count, has_metadata

logger = logging.getLogger(__name__)

DEFAULT_MAX_BATCHES = 100

# Marks errors caused by the record's own data; such records are blocked
ERRONEOUS_DATA = "Erroneous data"

FULL_NODE_FIELDS = (QueryField.OWNER_ADDRESS, QueryField.TAGS, QueryField.BUNDLED_IN)


class ParsedRecord(BaseModel):
    """A queried record node with its tags parsed and, optionally, its payload decoded."""

    error_message: str | None = None
    metadata: Metadata = Field(default_factory=dict)
    tags: Metadata = Field(default_factory=dict)
    query_metadata: QueryMetadata | None = None

    @property
    def usable(self) -> bool:
        return bool(self.tags.get("id")) and self.query_metadata is not None


def _query_metadata(node: dict[str, Any]) -> QueryMetadata | None:
    record_id = node.get("id")
    owner = (node.get("owner") or {}).get("address")
    if not record_id or not owner:
        return None
    bundled_in = (node.get("bundledIn") or {}).get("id")
    return QueryMetadata(record_id=record_id, owner_address=owner, bundled_in=bundled_in)


class FeedFetcher:
    """Fetches published records of a podcast and merges them into canonical metadata.

    Every fetched record is registered in the record cache; records with
    malformed payloads are kept there as blocked, so they are skipped on
    later merges but remain available for inspection.
    """

    def __init__(
        self,
        gateway: GatewayClient,
        record_cache: RecordCache,
        prefix: str = DEFAULT_TAG_PREFIX,
        max_batches: int = DEFAULT_MAX_BATCHES,
    ) -> None:
        self.gateway = gateway
        self.record_cache = record_cache
        self.prefix = prefix
        self.max_batches = max_batches

    async def _fetch_payload(self, node: dict[str, Any], query_metadata: QueryMetadata | None) -> Metadata:
        record_id = node.get("id", "")
        bundled_in = query_metadata.bundled_in if query_metadata else None
        try:
            data = await self.gateway.fetch_data(record_id, bundled_in)
        except QueryError as e:
            raise QueryError(f"Error fetching data for record {record_id}: {e}") from e

        if not data:
            raise PayloadError(f"{ERRONEOUS_DATA} for record {record_id}: data is empty")
        try:
            return decompress_metadata(data)
        except PayloadError as e:
            raise PayloadError(f"{ERRONEOUS_DATA} for record {record_id}: {e}") from e

    async def _parse_node(self, node: dict[str, Any], get_data: bool) -> ParsedRecord:
        query_metadata = _query_metadata(node)
        try:
            tags = parse_tags(node.get("tags") or [], self.prefix)
        except ValidationError as e:
            message = f"Error parsing tags for record {node.get('id')}: {e}"
            logger.warning(message)
            return ParsedRecord(error_message=message, query_metadata=query_metadata)

        if not get_data:
            return ParsedRecord(tags=tags, query_metadata=query_metadata)

        try:
            metadata = await self._fetch_payload(node, query_metadata)
        except (QueryError, PayloadError) as e:
            logger.warning(str(e))
            return ParsedRecord(error_message=str(e), tags=tags, query_metadata=query_metadata)

        return ParsedRecord(metadata=metadata, tags=tags, query_metadata=query_metadata)

    async def query(
        self,
        filters: dict[str, str | list[str]],
        fields: Sequence[QueryField] = FULL_NODE_FIELDS,
        get_data: bool = True,
    ) -> list[ParsedRecord]:
        """Query records by tags and parse them concurrently.

        A failing query yields a single record carrying only the error message.
        """
        try:
            nodes = await self.gateway.query_by_tags(filters, fields)
        except QueryError as e:
            logger.warning(f"Query {filters} failed: {e}")
            return [ParsedRecord(error_message=str(e))]

        return list(await asyncio.gather(*(self._parse_node(node, get_data) for node in nodes)))

    def _filter_candidates(
        self, records: Sequence[ParsedRecord], error_messages: list[str]
    ) -> list[ParsedRecord]:
        """Select usable candidates among the records of one batch number.

        Records with network errors are skipped without blocking, so that they
        are retried on a later fetch. Records with erroneous data are cached
        and blocked. Candidates are sorted by most episodes first.
        """
        candidates = []
        for record in records:
            if record.error_message:
                error_messages.append(record.error_message)
                if ERRONEOUS_DATA not in record.error_message:
                    continue

            if not record.usable:
                continue

            cached = self.record_cache.get_or_create(
                record.query_metadata, record.tags, record.metadata
            )
            if cached is not None and not has_metadata(record.metadata):
                self.record_cache.block(cached.record_id)
            if cached is None or cached.blocked:
                continue

            candidates.append(record)

        return sorted(candidates, key=lambda r: episodes_count(r.metadata), reverse=True)

    async def get_podcast_feed(self, feed_url: str, feed_type: str = "rss2") -> Metadata:
        """Reconstruct a podcast's metadata from its published batches.

        Batches are fetched by increasing batch number until a batch number
        yields no records. Of each batch number, the valid record with the
        most episodes is used.

        Returns:
            The merged metadata; may be partial if a later batch failed

        Raises:
            FeedFetchError: If nothing could be fetched and errors occurred
        """
        error_messages: list[str] = []
        metadata_batches: list[Metadata] = []
        tag_batches: list[Metadata] = []

        # TODO: fetch negative batch numbers once retroactive insertion is supported
        for batch_number in range(self.max_batches):
            records = await self.query(
                {
                    "feed_url": feed_url,
                    "feed_type": feed_type,
                    "kind": RecordKind.METADATA_BATCH.value,
                    "batch_number": str(batch_number),
                }
            )
            if not records:
                break
            if not any(r.usable for r in records):
                # Query error, or no valid record for this batch number
                error_messages += [r.error_message for r in records if r.error_message]
                break

            candidates = self._filter_candidates(records, error_messages)
            if candidates:
                selected = candidates[0]
                metadata_batches.append(selected.metadata)
                tag_batches.append(selected.tags)

        logger.debug(f"Fetched {len(metadata_batches)} batches for {feed_url}")
        merged = {**merge_batch_metadata(metadata_batches), **merge_batch_tags(tag_batches)}
        if not has_metadata(merged) and error_messages:
            raise FeedFetchError(feed_url, error_messages)
        return merged

    async def fetch_podcast_id(self, feed_url: str, feed_type: str = "rss2") -> str:
        """Id of the podcast published for the feed, or an empty string."""
        records = await self.query(
            {"feed_url": feed_url, "feed_type": feed_type, "batch_number": "0"},
            (QueryField.TAGS,),
        )
        if not records:
            return ""

        first = records[0]
        if has_metadata(first.metadata) and first.tags:
            podcast_id = first.tags.get("id")
            return podcast_id if is_valid_uuid(podcast_id) else ""
        return ""

    async def get_all_threads(self, podcast_ids: Sequence[str]) -> list[Metadata]:
        """All published threads of the given podcasts."""
        if not podcast_ids:
            return []

        results = await asyncio.gather(
            *(
                self.query({"id": podcast_id, "kind": RecordKind.THREAD.value}, get_data=False)
                for podcast_id in podcast_ids
            )
        )

        threads = []
        for record in (r for records in results for r in records):
            tags = record.tags
            if not tags:
                continue
            thread = {
                "id": tags.get("thread_id") or "",
                "podcast_id": tags.get("id") or "",
                "episode_id": tags.get("episode_id"),
                "content": tags.get("content") or "",
                "type": tags.get("type") or "public",
                "subject": tags.get("subject") or "",
                "is_draft": False,
            }
            if (
                is_valid_uuid(thread["id"])
                and is_valid_uuid(thread["podcast_id"])
                and thread["subject"]
                and thread["content"]
            ):
                threads.append(thread)
        return threads
