"""In-memory caches built from network query results.

``RecordCache`` indexes previously observed records and flags malformed ones
as blocked. ``IdMappingCache`` maps feeds to the podcast id they are
published under. Both are owned by their caller; there are no module-level
instances.
"""

import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime

from podsync.ids import is_candidate_id, is_valid_uuid, new_candidate_id
from podsync.models import CachedRecord, QueryMetadata, RecordKind
from podsync.utils.errors import NotFoundError
from podsync.utils.metadata import Metadata, episodes_count, has_metadata, is_valid_integer

logger = logging.getLogger(__name__)


def _passes_simple_validation(record: CachedRecord) -> bool:
    return bool(record.record_id) and is_valid_uuid(record.podcast_id)


def _encloses_date(record: CachedRecord, date: datetime) -> bool:
    first = record.tags.get("first_episode_date")
    last = record.tags.get("last_episode_date")
    if not isinstance(first, datetime) or not isinstance(last, datetime):
        return False
    return first <= date <= last


def is_valid_record(record: CachedRecord, payload: Metadata | None = None) -> bool:
    """Whether a record is usable; invalid records get blocked.

    Args:
        record: The cached record to check
        payload: Decoded payload; validated only when given
    """
    kind = RecordKind.parse(record.kind)
    if kind is None:
        return False
    if payload is not None and kind.is_metadata and not has_metadata(payload):
        return False
    if not is_valid_uuid(record.podcast_id):
        return False
    if not has_metadata(record.tags):
        return False
    if not record.owner_address:
        return False
    return True


class RecordCache:
    """Index of previously observed network records.

    Example:
        >>> cache = RecordCache()
        >>> record = cache.get_or_create(query_metadata, tags, payload)
        >>> cache.resolve_batch_number(podcast_id, episode_date)
        2
    """

    def __init__(self, records: Iterable[CachedRecord] | None = None) -> None:
        self._records: list[CachedRecord] = []
        if records is not None:
            self.initialize(records)

    @property
    def records(self) -> tuple[CachedRecord, ...]:
        return tuple(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def initialize(self, records: Iterable[CachedRecord]) -> None:
        """Replace the cache contents, e.g. with records loaded from disk."""
        self._records = [r for r in records if _passes_simple_validation(r)]

    def clear(self) -> None:
        self._records = []

    def find(self, record_id: str) -> CachedRecord | None:
        return next((r for r in self._records if r.record_id == record_id), None)

    def get_or_create(
        self,
        query_metadata: QueryMetadata,
        tags: Metadata,
        payload: Metadata | None = None,
    ) -> CachedRecord | None:
        """Return the cached record for a query result, creating it if needed.

        A newly created record is blocked if it fails :func:`is_valid_record`.

        Args:
            query_metadata: Network-level facts about the record
            tags: Parsed tags of the record
            payload: Decoded payload, if it was fetched

        Returns:
            The cached record, or None if the query result lacks a record id,
            an owner address, or the id and kind tags
        """
        if (
            not tags.get("id")
            or not tags.get("kind")
            or not query_metadata.record_id
            or not query_metadata.owner_address
        ):
            logger.warning(
                f"Cannot cache record without id and kind tags or query metadata: "
                f"record_id={query_metadata.record_id!r}"
            )
            return None

        existing = self.find(query_metadata.record_id)
        if existing is not None:
            return existing

        other_tags = {k: v for k, v in tags.items() if k not in ("id", "kind")}
        record = CachedRecord(
            podcast_id=tags.get("id") or "",
            record_id=query_metadata.record_id,
            kind=str(tags.get("kind") or ""),
            tags=other_tags,
            owner_address=query_metadata.owner_address,
            num_episodes=episodes_count(payload),
            bundled_in=query_metadata.bundled_in,
        )
        record.blocked = not is_valid_record(record, payload)
        if record.blocked:
            logger.info(f"Blocking invalid record {record.record_id}")

        self._records.append(record)
        logger.debug(f"Cached record {record.record_id} ({len(self._records)} cached)")
        return record

    def block(self, record_id: str) -> None:
        record = self.find(record_id)
        if record is not None:
            record.blocked = True

    def remove_record_ids(self, record_ids: Iterable[str]) -> None:
        to_remove = set(record_ids)
        self._records = [r for r in self._records if r.record_id not in to_remove]

    def remove_unsubscribed(self, podcast_ids_to_keep: Iterable[str]) -> None:
        to_keep = set(podcast_ids_to_keep)
        self._records = [r for r in self._records if r.podcast_id in to_keep]

    def is_blocked(self, record_id: str) -> bool:
        record = self.find(record_id)
        return record is not None and record.blocked

    def resolve_batch_number(self, podcast_id: str, episode_date: datetime) -> int:
        """Lowest cached batch number whose date range encloses ``episode_date``.

        Raises:
            NotFoundError: If no cached batch of the podcast encloses the date
        """
        matching = [r for r in self._records if not r.blocked and r.podcast_id == podcast_id]
        batch_numbers = sorted(
            {
                r.tags["batch_number"]
                for r in matching
                if is_valid_integer(r.tags.get("batch_number"))
            }
        )

        for batch_number in batch_numbers:
            if any(
                r.tags.get("batch_number") == batch_number and _encloses_date(r, episode_date)
                for r in matching
            ):
                return batch_number

        raise NotFoundError(f"No cached batch of podcast {podcast_id} encloses {episode_date}")


FetchPodcastId = Callable[[str, str], Awaitable[str]]


class IdMappingCache:
    """Maps ``(feed_url, feed_type)`` to the id the podcast is published under."""

    def __init__(self) -> None:
        self._mappings: list[dict[str, str]] = []

    @property
    def mappings(self) -> list[dict[str, str]]:
        return [dict(m) for m in self._mappings]

    def initialize(self, mappings: Iterable[dict[str, str]]) -> None:
        self._mappings = []
        for mapping in mappings:
            self.update(mapping.get("id", ""), mapping.get("feed_url", ""), mapping.get("feed_type", ""))

    @staticmethod
    def mappings_from_metadata(podcasts: Iterable[Metadata]) -> list[dict[str, str]]:
        return [
            {"id": p["id"], "feed_url": p["feed_url"], "feed_type": p["feed_type"]}
            for p in podcasts
            if p.get("id") and p.get("feed_url") and p.get("feed_type")
        ]

    def clear(self) -> None:
        self._mappings = []

    def find(self, feed_url: str, feed_type: str = "rss2") -> str:
        for mapping in self._mappings:
            if mapping["feed_url"] == feed_url and mapping["feed_type"] == feed_type:
                return mapping["id"]
        return ""

    def update(self, podcast_id: str, feed_url: str, feed_type: str = "rss2") -> None:
        """Map the feed to ``podcast_id``, replacing any previous mapping of either."""
        if not is_valid_uuid(podcast_id) or not feed_url or not feed_type:
            logger.warning(f"Ignoring invalid id mapping {podcast_id!r} -> {feed_url!r}")
            return

        self._mappings = [
            m
            for m in self._mappings
            if m["id"] != podcast_id
            and not (m["feed_url"] == feed_url and m["feed_type"] == feed_type)
        ]
        self._mappings.append({"id": podcast_id, "feed_url": feed_url, "feed_type": feed_type})

    async def get_podcast_id(
        self,
        feed_url: str,
        feed_type: str = "rss2",
        old_id: str = "",
        fetch_id: FetchPodcastId | None = None,
    ) -> str:
        """Resolve the podcast id for a feed.

        Resolution order: a confirmed cached id, an id fetched from the
        network, a cached candidate id, ``old_id``, and finally a newly
        generated candidate id. Every resolved id is cached.

        Returns:
            The podcast id, or an empty string if ``feed_url`` or
            ``feed_type`` is missing
        """
        if not feed_url or not feed_type:
            return ""

        cached_id = self.find(feed_url, feed_type)
        if cached_id and not is_candidate_id(cached_id):
            return cached_id

        if fetch_id is not None:
            fetched_id = await fetch_id(feed_url, feed_type)
            if fetched_id:
                self.update(fetched_id, feed_url, feed_type)
                return fetched_id

        if cached_id:
            return cached_id

        podcast_id = old_id if is_valid_uuid(old_id) else new_candidate_id()
        self.update(podcast_id, feed_url, feed_type)
        return podcast_id
