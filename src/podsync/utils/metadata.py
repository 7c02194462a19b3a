"""Helpers for partial podcast metadata.

Partial metadata is a plain dict with snake_case keys. Episodes are partial
metadata dicts as well, identified within a podcast by ``published_at``.
"""

import math
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from podsync.ids import add_id_prefix, is_candidate_id, remove_id_prefix

Metadata = dict[str, Any]

# Fields that never make a metadata object worth syncing on their own
IGNORED_METADATA_FIELDS = frozenset(
    {"id", "feed_type", "feed_url", "kind", "last_mutated_at", "published_at", "episodes"}
)


def value_present(value: Any) -> bool:
    """Whether a metadata value carries information.

    NaN, blank strings, empty containers and lists without any present
    element are absent. Zero and datetimes are present; False is absent.
    """
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return not math.isnan(value)
    if isinstance(value, int):
        return True
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple)):
        return any(value_present(x) for x in value)
    if isinstance(value, datetime):
        return True
    if isinstance(value, dict):
        return bool(value)
    return bool(value)


def has_metadata(metadata: Metadata | list | None) -> bool:
    """Whether the given metadata holds anything beyond identifying fields.

    A non-empty list always counts. A title or any episode counts. Otherwise
    any truthy value outside of ``IGNORED_METADATA_FIELDS`` counts.
    """
    if not metadata:
        return False
    if isinstance(metadata, list):
        return True
    if metadata.get("title"):
        return True
    if metadata.get("episodes"):
        return True

    for key, value in metadata.items():
        if key in IGNORED_METADATA_FIELDS:
            continue
        if isinstance(value, (list, tuple)):
            if any(value):
                return True
        elif value:
            return True
    return False


def omit_empty_metadata(metadata: Metadata | None) -> Metadata:
    """Drop absent values, and absent elements of list values."""
    if not metadata:
        return {}

    result: Metadata = {}
    for key, value in metadata.items():
        if isinstance(value, list):
            value = [x for x in value if value_present(x)]
        if value_present(value):
            result[key] = value
    return result


def sanitize_string(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def merge_arrays_lowercase(*arrays: Iterable[Any] | None) -> list[str]:
    """Union of the given arrays, lowercased and stripped, in first-seen order."""
    seen: dict[str, None] = {}
    for array in arrays:
        for item in array or []:
            text = sanitize_string(item).lower()
            if text:
                seen.setdefault(text, None)
    return list(seen)


def is_valid_integer(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def episodes_count(metadata: Metadata | None) -> int:
    if not metadata:
        return 0
    return len(metadata.get("episodes") or [])


def get_first_episode_date(metadata: Metadata) -> datetime | None:
    """Date of the oldest episode; episodes are sorted newest-first."""
    episodes = metadata.get("episodes") or []
    return episodes[-1].get("published_at") if episodes else None


def get_last_episode_date(metadata: Metadata) -> datetime | None:
    episodes = metadata.get("episodes") or []
    return episodes[0].get("published_at") if episodes else None


def find_metadata_by_id(podcast_id: str, metadata_list: Iterable[Metadata]) -> Metadata:
    """Find metadata by id, also matching the candidate or confirmed form of the id.

    Returns:
        The matching metadata, or an empty dict
    """
    candidates = [m for m in metadata_list if m]
    for metadata in candidates:
        if metadata.get("id") == podcast_id:
            return metadata

    for metadata in candidates:
        other_id = metadata.get("id")
        if not other_id:
            continue
        if is_candidate_id(podcast_id) and add_id_prefix(other_id) == podcast_id:
            return metadata
        if not is_candidate_id(podcast_id) and remove_id_prefix(other_id) == podcast_id:
            return metadata
    return {}


def find_metadata_by_feed_url(
    feed_url: str, feed_type: str, metadata_list: Iterable[Metadata]
) -> Metadata:
    for metadata in metadata_list:
        if metadata and metadata.get("feed_url") == feed_url and metadata.get("feed_type") == feed_type:
            return metadata
    return {}
