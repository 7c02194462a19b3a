"""Building publication records: tags, batch numbers and payloads.

Signing and broadcasting are delegated to a ``Signer``, an opaque capability
supplied by the caller. podsync never handles keys itself.
"""

import gzip
import json
import logging
import zlib
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from podsync.config.schema import PublishConfig
from podsync.ids import is_valid_uuid, remove_id_prefix
from podsync.models import (
    DispatchResult,
    Record,
    RecordKind,
    ThreadType,
    metadata_from_dto,
    metadata_to_dto,
    post_to_dto,
)
from podsync.network.cache import RecordCache
from podsync.network.tags import (
    DEFAULT_TAG_PREFIX,
    OPTIONAL_STRING_TAG_FIELDS,
    PLURAL_TAG_MAP,
    Tag,
    tag_name,
    to_tag,
    trim_tags,
)
from podsync.utils.datetime import is_valid_date, to_datetime, to_iso_string, unix_timestamp
from podsync.utils.errors import (
    ImplementationError,
    NotFoundError,
    PayloadError,
    PodsyncError,
    PublicationError,
    ValidationError,
)
from podsync.utils.metadata import (
    Metadata,
    get_first_episode_date,
    get_last_episode_date,
    is_valid_integer,
)

logger = logging.getLogger(__name__)

CONTENT_TYPE = "application/gzip"
COMPRESSION_LEVEL = 6


@runtime_checkable
class Signer(Protocol):
    """Creates, signs and broadcasts records on behalf of the user."""

    async def create_record(self, data: bytes, tags: list[Tag]) -> Record: ...

    async def sign_and_post(self, record: Record) -> Record: ...


@runtime_checkable
class DispatchingSigner(Signer, Protocol):
    """A signer that can also sign and send a record in one batched dispatch."""

    async def dispatch(self, record: Record) -> DispatchResult: ...


def supports_dispatch(signer: Signer) -> bool:
    return isinstance(signer, DispatchingSigner)


def _tag_value(value: Any) -> str:
    if isinstance(value, datetime):
        return to_iso_string(value)
    return f"{value}"


def _check_mandatory(tags: dict[str, str], description: str) -> None:
    for field, value in tags.items():
        if not value:
            raise ValidationError(field, f"Could not publish {description}: {field} is missing")


def format_metadata_tags(
    new: Metadata,
    cached: Metadata | None = None,
    kind: RecordKind = RecordKind.METADATA_BATCH,
    record_cache: RecordCache | None = None,
    prefix: str = DEFAULT_TAG_PREFIX,
) -> list[Tag]:
    """Format the tags of a podcast metadata record.

    Mandatory fields fall back to ``cached`` when absent from ``new``.
    List fields are emitted last, one singular tag per element, so that they
    are the first to go when the tag cap is reached.

    Args:
        new: Metadata of this batch
        cached: Currently known metadata of the podcast
        kind: Record kind; must be a metadata kind
        record_cache: Used to resolve batch numbers of overlapping batches
        prefix: Application tag prefix

    Returns:
        Unprefixed ``(name, value)`` tags

    Raises:
        ValidationError: If a mandatory field is missing
    """
    cached = cached or {}
    podcast_id = remove_id_prefix(new.get("id") or cached.get("id") or "")
    if not is_valid_uuid(podcast_id):
        podcast_id = ""

    mandatory = {
        "id": podcast_id,
        "kind": kind.value if isinstance(kind, RecordKind) and kind.is_metadata else "",
        "feed_type": new.get("feed_type") or cached.get("feed_type") or "",
        "feed_url": new.get("feed_url") or cached.get("feed_url") or "",
        "title": new.get("title") or cached.get("title") or "",
    }
    _check_mandatory(mandatory, mandatory["title"] or mandatory["feed_url"] or "podcast")

    tags: list[tuple[str, Any]] = [(tag_name(f), v) for f, v in mandatory.items()]
    for field in OPTIONAL_STRING_TAG_FIELDS:
        value = new.get(field)
        if value:
            tags.append((tag_name(field), _tag_value(value)))

    episodes = new.get("episodes") or []
    if episodes:
        first_date = episodes[-1]["published_at"]
        last_date = episodes[0]["published_at"]
        batch_number = new.get("batch_number")
        if not is_valid_integer(batch_number):
            batch_number = get_batch_number(podcast_id, cached, first_date, last_date, record_cache)
        tags += [
            ("firstEpisodeDate", to_iso_string(first_date)),
            ("lastEpisodeDate", to_iso_string(last_date)),
            ("batchNumber", str(batch_number)),
        ]

    for singular, plural in PLURAL_TAG_MAP.items():
        tags += [(singular, value) for value in new.get(plural) or []]

    return trim_tags(tags, prefix)


def format_thread_tags(
    post: Metadata,
    cached: Metadata | None = None,
    prefix: str = DEFAULT_TAG_PREFIX,
) -> list[Tag]:
    """Format the tags of a thread or thread reply record.

    Raises:
        ValidationError: If a mandatory field is missing or invalid
    """
    cached = cached or {}
    is_reply = bool(post.get("parent_thread_id"))
    podcast_id = post.get("podcast_id") or ""
    thread_id = post.get("id") or ""
    thread_type = post.get("type") or ThreadType.PUBLIC.value
    if isinstance(thread_type, ThreadType):
        thread_type = thread_type.value

    mandatory = {
        "id": podcast_id if is_valid_uuid(podcast_id) else "",
        "kind": (RecordKind.THREAD_REPLY if is_reply else RecordKind.THREAD).value,
        "thread_id": thread_id if is_valid_uuid(thread_id) else "",
        "type": thread_type if thread_type in {t.value for t in ThreadType} else "",
        "content": post.get("content") or "",
    }
    if is_reply:
        parent_id = post.get("parent_thread_id")
        mandatory["parent_thread_id"] = parent_id if is_valid_uuid(parent_id) else ""
        description = f"reply in {cached.get('title') or 'podcast'}"
    else:
        mandatory["subject"] = post.get("subject") or ""
        description = f"thread \"{post.get('subject')}\" in {cached.get('title') or 'podcast'}"
    _check_mandatory(mandatory, description)

    tags: list[tuple[str, Any]] = [(tag_name(f), v) for f, v in mandatory.items()]
    episode_date = to_datetime(post.get("episode_id"))
    if episode_date is not None:
        tags.append(("episodeId", to_iso_string(episode_date)))
    if is_reply and post.get("parent_post_id"):
        tags.append(("parentPostId", post["parent_post_id"]))

    return trim_tags(tags, prefix)


def get_batch_number(
    podcast_id: str,
    prior: Metadata | None,
    first_date: datetime | None,
    last_date: datetime | None,
    record_cache: RecordCache | None = None,
) -> int:
    """Batch number for a batch spanning ``[first_date, last_date]``.

    Args:
        podcast_id: Confirmed or candidate podcast id
        prior: Metadata of the batches published before this one
        first_date: Date of the oldest episode in the batch
        last_date: Date of the newest episode in the batch
        record_cache: Used to find the batch that already covers a range
            overlapping the prior batches

    Returns:
        0 for the first batch. For a range within the prior range, the lowest
        cached batch number enclosing ``first_date`` if known. Otherwise the
        prior batch number plus one.

    Raises:
        ValidationError: If the podcast id or a date is invalid
        ImplementationError: If the batch precedes the prior batches
    """
    prior = prior or {}
    name = prior.get("title") or podcast_id

    if not is_valid_uuid(podcast_id):
        raise ValidationError("id", f"Could not publish metadata for {name}: could not find podcast id")
    if not is_valid_date(first_date) or not is_valid_date(last_date):
        raise ValidationError(
            "published_at",
            f"Could not publish metadata for {name}: invalid date found for one of its episodes",
        )

    prior_batch_number = prior.get("batch_number")
    prior_first = prior.get("first_episode_date")
    prior_last = prior.get("last_episode_date")
    if (
        not is_valid_date(prior_first)
        or not is_valid_date(prior_last)
        or not is_valid_integer(prior_batch_number)
    ):
        return 0

    if first_date < prior_first:
        # TODO: support retroactive insertion with negative batch numbers
        raise ImplementationError(
            f"Could not publish metadata for {name}: "
            "retroactive insertion of metadata is not yet implemented"
        )

    if last_date <= prior_last and record_cache is not None:
        try:
            return record_cache.resolve_batch_number(remove_id_prefix(podcast_id), first_date)
        except NotFoundError as e:
            logger.warning(f"Could not find batch number for {name}: {e}")

    return prior_batch_number + 1


def with_batch_number(
    metadata: Metadata,
    prior: Metadata | None = None,
    record_cache: RecordCache | None = None,
) -> Metadata:
    """Copy of ``metadata`` with its episode date range and batch number attached."""
    prior = prior or {}
    first_date = get_first_episode_date(metadata)
    last_date = get_last_episode_date(metadata)
    podcast_id = remove_id_prefix(metadata.get("id") or prior.get("id") or "")
    batch_number = get_batch_number(podcast_id, prior, first_date, last_date, record_cache)

    return {
        **metadata,
        "first_episode_date": first_date,
        "last_episode_date": last_date,
        "batch_number": batch_number,
    }


def _compress(obj: Any) -> bytes:
    raw = json.dumps(obj, separators=(",", ":")).encode("utf-8")
    return gzip.compress(raw, compresslevel=COMPRESSION_LEVEL, mtime=0)


def compress_metadata(metadata: Metadata) -> bytes:
    """Gzip the JSON wire form of partial metadata."""
    return _compress(metadata_to_dto(metadata))


def compress_post(post: Metadata) -> bytes:
    return _compress(post_to_dto(post))


def decompress_metadata(data: bytes) -> Metadata:
    """Inverse of :func:`compress_metadata`.

    Raises:
        PayloadError: If the data is not gzipped JSON metadata
    """
    try:
        dto = json.loads(gzip.decompress(data).decode("utf-8"))
    except (OSError, EOFError, zlib.error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise PayloadError(f"Could not decode payload: {e}") from e

    if not isinstance(dto, dict):
        raise PayloadError(f"Expected a JSON object payload, got {type(dto).__name__}")
    try:
        return metadata_from_dto(dto)
    except ValueError as e:
        raise PayloadError(f"Invalid metadata payload: {e}") from e


def protocol_tags(settings: PublishConfig) -> list[Tag]:
    return [
        ("App-Name", settings.app_name),
        ("App-Version", settings.app_version),
        ("Content-Type", CONTENT_TYPE),
        ("Unix-Time", str(unix_timestamp())),
    ]


async def new_record(
    signer: Signer,
    data: bytes,
    tags: list[Tag],
    settings: PublishConfig | None = None,
) -> Record:
    """Create an unsigned record carrying the protocol tags plus prefixed ``tags``.

    Raises:
        PublicationError: If the signer fails to create the record
    """
    settings = settings or PublishConfig()
    wire_tags = protocol_tags(settings) + [
        (to_tag(name, settings.tag_prefix), f"{value}") for name, value in tags
    ]

    try:
        return await signer.create_record(data, wire_tags)
    except PodsyncError:
        raise
    except Exception as e:
        logger.error(f"Creating record failed: {e}")
        raise PublicationError(f"Creating record failed: {e}") from e


async def sign_and_post(signer: Signer, record: Record) -> Record:
    """Sign and broadcast a record.

    Raises:
        PublicationError: If signing or broadcasting fails
    """
    try:
        return await signer.sign_and_post(record)
    except PodsyncError:
        raise
    except Exception as e:
        logger.error(f"Signing/posting record failed: {e}")
        raise PublicationError(f"Signing/posting record failed: {e}") from e


async def dispatch(signer: DispatchingSigner, record: Record) -> DispatchResult:
    """Sign and send a record through the signer's batched dispatch path.

    Raises:
        PublicationError: If the dispatch fails
    """
    try:
        return await signer.dispatch(record)
    except PodsyncError:
        raise
    except Exception as e:
        logger.error(f"Dispatching record failed: {e}")
        raise PublicationError(f"Dispatching record failed: {e}") from e
