"""Data models for podcast metadata, network records and sync transactions."""

from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from podsync.utils.datetime import UtcDatetime, unix_timestamp
from podsync.utils.metadata import Metadata


class RecordKind(str, Enum):
    """Kinds of records published by podsync."""

    METADATA_BATCH = "metadataBatch"
    CUSTOM_METADATA = "customMetadata"
    THREAD = "thread"
    THREAD_REPLY = "threadReply"

    @classmethod
    def parse(cls, value: Any) -> "RecordKind | None":
        """Return the kind for the given value, or None if it is not a known kind."""
        try:
            return cls(value)
        except ValueError:
            return None

    @property
    def is_metadata(self) -> bool:
        return self in (RecordKind.METADATA_BATCH, RecordKind.CUSTOM_METADATA)

    @property
    def is_thread(self) -> bool:
        return self in (RecordKind.THREAD, RecordKind.THREAD_REPLY)


# Fields whose tags each record kind must carry
MANDATORY_FIELDS: dict[RecordKind, tuple[str, ...]] = {
    RecordKind.METADATA_BATCH: ("id", "kind", "feed_type", "feed_url", "title"),
    RecordKind.CUSTOM_METADATA: ("id", "kind", "feed_type", "feed_url", "title"),
    RecordKind.THREAD: ("id", "kind", "thread_id", "type", "content", "subject"),
    RecordKind.THREAD_REPLY: ("id", "kind", "thread_id", "type", "content", "parent_thread_id"),
}

FEED_TYPES = ("rss2",)


class ThreadType(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class SyncStatus(IntEnum):
    """Stages of a sync transaction."""

    ERRORED = 0
    INITIALIZED = 1
    POSTED = 2
    CONFIRMED = 3
    REJECTED = 4

    @property
    def label(self) -> str:
        return {
            SyncStatus.ERRORED: "Error",
            SyncStatus.INITIALIZED: "Initialized",
            SyncStatus.POSTED: "Posted",
            SyncStatus.CONFIRMED: "Confirmed",
            SyncStatus.REJECTED: "Rejected",
        }[self]


class _WireModel(BaseModel):
    """Base for models exchanged in camelCase JSON form."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )


class Episode(_WireModel):
    """A single podcast episode; ``published_at`` identifies it within its podcast."""

    published_at: UtcDatetime
    title: str | None = None
    subtitle: str | None = None
    description: str | None = None
    content_html: str | None = None
    summary: str | None = None
    guid: str | None = None
    info_url: str | None = None
    media_url: str | None = None
    media_type: str | None = None
    media_length: str | None = None
    duration: str | None = None
    image_url: str | None = None
    image_title: str | None = None
    explicit: str | None = None
    categories: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)


class Post(_WireModel):
    """A discussion thread, or a reply when ``parent_thread_id`` is set."""

    id: str
    podcast_id: str
    content: str = ""
    type: ThreadType = ThreadType.PUBLIC
    subject: str | None = None
    episode_id: UtcDatetime | None = None
    parent_thread_id: str | None = None
    parent_post_id: str | None = None
    is_draft: bool | None = None

    @property
    def is_reply(self) -> bool:
        return bool(self.parent_thread_id)

    @property
    def kind(self) -> RecordKind:
        return RecordKind.THREAD_REPLY if self.is_reply else RecordKind.THREAD


class PodcastMetadata(_WireModel):
    """Podcast metadata; every field is optional so that diffs validate too."""

    id: str | None = None
    feed_type: str | None = None
    feed_url: str | None = None
    title: str | None = None
    description: str | None = None
    author: str | None = None
    summary: str | None = None
    explicit: str | None = None
    subtitle: str | None = None
    language: str | None = None
    creator: str | None = None
    owner_name: str | None = None
    owner_email: str | None = None
    managing_editor: str | None = None
    last_build_date: UtcDatetime | None = None
    image_url: str | None = None
    image_title: str | None = None
    info_url: str | None = None
    copyright: str | None = None
    categories: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    episodes_keywords: list[str] = Field(default_factory=list)
    episodes: list[Episode] = Field(default_factory=list)
    threads: list[Post] = Field(default_factory=list)
    first_episode_date: UtcDatetime | None = None
    last_episode_date: UtcDatetime | None = None
    batch_number: int | None = None
    last_mutated_at: int | None = None


def metadata_to_dto(metadata: Metadata) -> dict[str, Any]:
    """Convert partial metadata to its JSON-safe wire form (camelCase keys, ISO dates)."""
    return PodcastMetadata.model_validate(metadata).model_dump(
        mode="json", by_alias=True, exclude_unset=True
    )


def metadata_from_dto(dto: dict[str, Any]) -> Metadata:
    """Convert wire-form metadata back to partial metadata with aware datetimes."""
    return PodcastMetadata.model_validate(dto).model_dump(exclude_unset=True)


def post_to_dto(post: Metadata) -> dict[str, Any]:
    return Post.model_validate(post).model_dump(mode="json", by_alias=True, exclude_unset=True)


class QueryMetadata(BaseModel):
    """Network-level facts about a record, as returned by a tag query."""

    record_id: str = ""
    owner_address: str = ""
    bundled_in: str | None = None


class CachedRecord(BaseModel):
    """A previously observed network record.

    Created only from query results. ``tags`` holds the parsed tags minus
    ``id`` and ``kind``, which live on the record itself.
    """

    podcast_id: str
    record_id: str
    kind: str
    blocked: bool = False
    tags: Metadata = Field(default_factory=dict)
    owner_address: str = ""
    num_episodes: int = 0
    bundled_in: str | None = None


class Record(BaseModel):
    """A publication unit: compressed payload plus wire tags.

    ``id`` is assigned by the signer once the record is created.
    """

    id: str | None = None
    data: bytes = b""
    tags: list[tuple[str, str]] = Field(default_factory=list)


class DispatchResult(BaseModel):
    """Outcome of the batched dispatch path."""

    id: str
    type: str = "BASE"

    @property
    def bundled(self) -> bool:
        return self.type == "BUNDLED"


class SyncTransaction(BaseModel):
    """Tracks one record through build, sign, broadcast and confirmation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    podcast_id: str
    kind: RecordKind = RecordKind.METADATA_BATCH
    title: str = ""
    result: Record | BaseException | None = None
    dispatch_result: DispatchResult | None = None
    metadata: Metadata = Field(default_factory=dict)
    num_episodes: int = 0
    status: SyncStatus = SyncStatus.INITIALIZED
    timestamp: int = Field(default_factory=unix_timestamp)

    @property
    def record(self) -> Record | None:
        return self.result if isinstance(self.result, Record) else None

    @property
    def error(self) -> BaseException | None:
        return self.result if isinstance(self.result, BaseException) else None

    @property
    def record_id(self) -> str:
        """Id of the network record; the bundle id when dispatched as part of a bundle."""
        if self.dispatch_result and self.dispatch_result.bundled:
            return self.dispatch_result.id
        record = self.record
        return record.id if record and record.id else ""
