"""Wire tag codec.

Application tags are published as ``<prefix>-<camelCaseName>``. Protocol tags
are published unprefixed. List fields (categories, keywords, episodes
keywords) are published as one singular tag per element.
"""

import logging
from collections.abc import Iterable
from typing import Any

from pydantic.alias_generators import to_camel, to_snake

from podsync.utils.datetime import to_datetime
from podsync.utils.errors import ValidationError
from podsync.utils.metadata import Metadata, merge_arrays_lowercase

logger = logging.getLogger(__name__)

Tag = tuple[str, str]

DEFAULT_TAG_PREFIX = "podsync"

PROTOCOL_TAGS = ("App-Name", "App-Version", "Content-Type", "Unix-Time")

PLURAL_TAG_MAP = {
    "category": "categories",
    "keyword": "keywords",
    "episodesKeyword": "episodes_keywords",
}

# The protocol allows 128 tags per record; leave room for the protocol tags
MAX_TAGS = 120
MAX_TAG_VALUE_SIZE = 3072
_MAX_TAG_NAME_BYTES = 1024

MANDATORY_TAG_FIELDS = ("id", "kind")
METADATA_TAG_FIELDS = ("feed_type", "feed_url", "title")
OPTIONAL_STRING_TAG_FIELDS = (
    "description",
    "author",
    "summary",
    "explicit",
    "subtitle",
    "language",
    "creator",
    "owner_name",
    "owner_email",
    "managing_editor",
    "last_build_date",
)
BATCH_TAG_FIELDS = ("first_episode_date", "last_episode_date", "batch_number")
PLURAL_TAG_FIELDS = tuple(PLURAL_TAG_MAP.values())
THREAD_TAG_FIELDS = (
    "thread_id",
    "type",
    "content",
    "subject",
    "parent_thread_id",
    "parent_post_id",
    "episode_id",
)
ALLOWED_TAG_FIELDS = frozenset(
    MANDATORY_TAG_FIELDS
    + METADATA_TAG_FIELDS
    + OPTIONAL_STRING_TAG_FIELDS
    + BATCH_TAG_FIELDS
    + PLURAL_TAG_FIELDS
    + THREAD_TAG_FIELDS
)
DATE_TAG_FIELDS = frozenset(
    {"first_episode_date", "last_episode_date", "last_build_date", "episode_id"}
)


def tag_name(field: str) -> str:
    """Unprefixed tag name for a metadata field, e.g. ``feed_url`` -> ``feedUrl``."""
    return to_camel(field)


def to_tag(name: str, prefix: str = DEFAULT_TAG_PREFIX) -> str:
    """Wire name for a tag; protocol tags are not prefixed."""
    if name in PROTOCOL_TAGS:
        return name
    return f"{prefix}-{name}"


def from_tag(wire_name: str, prefix: str = DEFAULT_TAG_PREFIX) -> str:
    """Metadata field for a wire tag name.

    Strips the prefix and maps singular list tags to their plural field.
    Names without the prefix are returned unchanged.
    """
    head = f"{prefix}-"
    if not wire_name.startswith(head):
        return wire_name

    name = wire_name[len(head):]
    return PLURAL_TAG_MAP.get(name) or to_snake(name)


def max_tag_name_size(prefix: str = DEFAULT_TAG_PREFIX) -> int:
    return _MAX_TAG_NAME_BYTES - len(to_tag("", prefix).encode("utf-8"))


MAX_TAG_NAME_SIZE = max_tag_name_size()


def _truncate_bytes(text: str, max_bytes: int) -> str:
    """Cut ``text`` to at most ``max_bytes`` UTF-8 bytes without splitting a character."""
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[:max_bytes].decode("utf-8", errors="ignore")


def trim_tag(tag: tuple[str, Any], prefix: str = DEFAULT_TAG_PREFIX) -> Tag | None:
    """Trim a tag to the protocol size limits.

    Returns:
        The trimmed tag, or None if its name or value is empty
    """
    name, value = tag
    if not name or not isinstance(name, str) or value is None or value == "":
        return None

    name = _truncate_bytes(name, max_tag_name_size(prefix))
    text = _truncate_bytes(f"{value}", MAX_TAG_VALUE_SIZE)
    return name, text


def trim_tags(tags: Iterable[tuple[str, Any]], prefix: str = DEFAULT_TAG_PREFIX) -> list[Tag]:
    """Trim every tag and cap the list at ``MAX_TAGS``.

    Tags past the cap are dropped, so the least important tags must come last.
    """
    valid = [t for t in (trim_tag(tag, prefix) for tag in tags) if t is not None]
    if len(valid) > MAX_TAGS:
        logger.debug(f"Dropping {len(valid) - MAX_TAGS} tags over the limit of {MAX_TAGS}")
    return valid[:MAX_TAGS]


def calculate_tags_size(tags: Iterable[Tag], prefix: str = DEFAULT_TAG_PREFIX) -> int:
    """Size in bytes of the given tags once prefixed for the wire."""
    tags = list(tags)
    prefix_size = len(to_tag("", prefix).encode())
    size = sum(len(name.encode()) + len(value.encode()) for name, value in tags)
    return len(tags) * prefix_size + size


def to_tag_filters(filters: dict[str, str | list[str]], prefix: str = DEFAULT_TAG_PREFIX) -> list[dict]:
    """Convert ``{field: value}`` filters to the gateway's tag filter form."""
    return [
        {
            "name": to_tag(tag_name(field), prefix),
            "values": value if isinstance(value, list) else [value],
        }
        for field, value in filters.items()
    ]


def parse_tags(raw_tags: Iterable[dict], prefix: str = DEFAULT_TAG_PREFIX) -> Metadata:
    """Parse a record's raw ``[{name, value}]`` tags into partial metadata.

    Only known fields are kept. Dates become datetimes, the batch number an
    integer, and singular list tags are gathered (lowercased) into lists.

    Raises:
        ValidationError: If a date or batch number tag cannot be parsed
    """
    result: Metadata = {field: [] for field in PLURAL_TAG_FIELDS}

    for raw in raw_tags:
        field = from_tag(raw.get("name", ""), prefix)
        if field not in ALLOWED_TAG_FIELDS:
            continue

        value = raw.get("value", "")
        if field in PLURAL_TAG_FIELDS:
            result[field] = merge_arrays_lowercase(result[field], [value])
        elif field in DATE_TAG_FIELDS:
            parsed = to_datetime(value)
            if parsed is None:
                raise ValidationError(field, f"invalid date for {field}: {value!r}")
            result[field] = parsed
        elif field == "batch_number":
            try:
                result[field] = int(value)
            except (TypeError, ValueError) as e:
                raise ValidationError(field, f"invalid batch number: {value!r}") from e
        else:
            result[field] = value

    return result
