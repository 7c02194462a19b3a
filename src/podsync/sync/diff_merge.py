"""Diff and merge algebra over partial podcast metadata.

Merging reconstructs canonical metadata from a sequence of published batches,
where newer batches take precedence. Diffing computes the part of newer
metadata that is not already implied by older metadata, so that only that
part needs to be published.

Episode lists are always sorted newest-first and episodes are matched by
``published_at``. None of these functions mutate their arguments.
"""

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from podsync.ids import find_best_id
from podsync.utils.datetime import dates_equal, is_valid_date, to_datetime
from podsync.utils.metadata import (
    Metadata,
    has_metadata,
    merge_arrays_lowercase,
    omit_empty_metadata,
    sanitize_string,
    value_present,
)

DEFAULT_PERSISTENT_FIELDS = ("id", "feed_type", "feed_url")

# Recomputed for each batch, so never part of a diff
BATCH_RANGE_FIELDS = frozenset({"first_episode_date", "last_episode_date", "batch_number"})

MERGED_LIST_FIELDS = ("categories", "keywords", "episodes_keywords")


def _sorted_newest_first(episodes: Iterable[Metadata]) -> list[Metadata]:
    return sorted(episodes, key=lambda ep: ep["published_at"], reverse=True)


def merge_episode(old: Metadata, new: Metadata) -> Metadata:
    """Merge two versions of the same episode.

    Present values of ``new`` win, except for list fields, which are unioned.
    """
    result = dict(old)
    for key, value in new.items():
        if isinstance(value, list):
            value = merge_arrays_lowercase(old.get(key), value)
        if value_present(value):
            result[key] = value
    return result


def merge_episodes(old: Sequence[Metadata], new: Sequence[Metadata]) -> list[Metadata]:
    """Merge two newest-first episode lists.

    If ``old`` turns out to hold the newer episodes, the arguments are
    swapped. Lists whose date ranges do not overlap are concatenated.
    Otherwise duplicate episodes are merged by :func:`merge_episode`.
    """
    if not old:
        return list(new)
    if not new:
        return list(old)

    newest_new = new[0]["published_at"]
    oldest_new = new[-1]["published_at"]
    newest_old = old[0]["published_at"]
    if newest_old > newest_new:
        return merge_episodes(new, old)

    if newest_old < oldest_new:
        return list(new) + list(old)

    merged_old = list(old)
    duplicate_indices: set[int] = set()
    for old_index, old_episode in enumerate(old):
        # Older episodes than the oldest new one cannot have a duplicate
        if old_episode["published_at"] < oldest_new:
            break

        for new_index, new_episode in enumerate(new):
            if dates_equal(new_episode["published_at"], old_episode["published_at"]):
                duplicate_indices.add(new_index)
                merged_old[old_index] = merge_episode(old_episode, new_episode)
                break

    unique_new = [ep for i, ep in enumerate(new) if i not in duplicate_indices]
    return _sorted_newest_first(unique_new + merged_old)


def merge_episode_batches(batches: Iterable[Sequence[Metadata]]) -> list[Metadata]:
    result: list[Metadata] = []
    for batch in batches:
        result = merge_episodes(result, batch)
    return result


def merge_threads(
    list1: Sequence[Metadata] | None = None, list2: Sequence[Metadata] | None = None
) -> list[Metadata]:
    """Concatenate thread lists; a later thread replaces an earlier one with the same id."""
    result: list[Metadata] = []
    for thread in [*(list1 or []), *(list2 or [])]:
        sanitized = dict(thread)
        for key in ("id", "podcast_id", "subject", "content"):
            if key in sanitized:
                sanitized[key] = sanitize_string(sanitized[key])
        result = [t for t in result if t.get("id") != sanitized.get("id")]
        result.append(sanitized)
    return result


def _merge_special_tags(acc: Metadata, metadata: Metadata) -> Metadata:
    """Stack ``metadata`` on top of ``acc``, with field-specific merge rules.

    - id: a confirmed id wins over a candidate id
    - first_episode_date: minimum
    - last_episode_date and batch_number: maximum
    - categories, keywords and episodes_keywords: lowercase union
    - threads: merged by id
    - episodes: skipped; merged separately
    """
    result = dict(acc)
    for key, value in omit_empty_metadata(metadata).items():
        if key == "id":
            if isinstance(value, str):
                result["id"] = find_best_id([result.get("id") or "", value]) or value
        elif key == "episodes":
            continue
        elif key == "first_episode_date":
            date = to_datetime(value)
            if date and (not result.get("first_episode_date") or date < result["first_episode_date"]):
                result["first_episode_date"] = date
        elif key == "last_episode_date":
            date = to_datetime(value)
            if date and (not result.get("last_episode_date") or date > result["last_episode_date"]):
                result["last_episode_date"] = date
        elif key == "batch_number":
            result["batch_number"] = max(result.get("batch_number") or 0, int(value))
        elif key in MERGED_LIST_FIELDS:
            result[key] = merge_arrays_lowercase(result.get(key), value)
        elif key == "threads":
            result["threads"] = merge_threads(result.get("threads"), value)
        else:
            result[key] = value
    return result


def merge_batch_metadata(
    batches: Sequence[Metadata], apply_special_tags: bool = False
) -> Metadata:
    """Merge metadata batches, where newer (later) batches take precedence.

    Args:
        batches: Metadata batches, oldest first
        apply_special_tags: If False, each present field of a newer batch
            overrides the value of prior batches. If True, the field-specific
            rules of ``_merge_special_tags`` apply.

    Returns:
        The merged metadata, or an empty dict if no batch has metadata
    """
    if not batches or not any(has_metadata(batch) for batch in batches):
        return {}

    merged: Metadata = {}
    for batch in batches:
        if apply_special_tags:
            merged = _merge_special_tags(merged, batch)
        else:
            merged = {**merged, **omit_empty_metadata(batch)}

    merged["episodes"] = merge_episode_batches(batch.get("episodes") or [] for batch in batches)
    return merged


def merge_batch_tags(tag_batches: Sequence[Metadata]) -> Metadata:
    """Merge parsed tag batches with the special-tag rules."""
    merged: Metadata = {}
    for batch in tag_batches:
        merged = _merge_special_tags(merged, batch)
    return merged


def _episodes_right_diff(
    old_episodes: Sequence[Metadata] | None,
    new_episodes: Sequence[Metadata] | None,
    early_exit: bool = False,
) -> list[Metadata]:
    result: list[Metadata] = []
    old_episodes = old_episodes or []
    for new_episode in new_episodes or []:
        match = next(
            (
                old
                for old in old_episodes
                if dates_equal(old.get("published_at"), new_episode.get("published_at"))
            ),
            None,
        )
        if match is not None:
            diff = right_diff(match, new_episode, ("published_at",))
            if has_metadata(diff):
                result.append(diff)
        else:
            result.append(new_episode)

        if early_exit and has_metadata(result):
            return result
    return _sorted_newest_first(result)


def _list_right_diff(old: Sequence[Any] | None, new: Sequence[Any]) -> list[Any]:
    old = old or []
    return [x for x in new if x and x not in old]


def right_diff(
    old: Metadata,
    new: Metadata,
    persistent_fields: Sequence[str] = DEFAULT_PERSISTENT_FIELDS,
    early_exit: bool = False,
) -> Metadata:
    """The part of ``new`` that is not already present in ``old``.

    Args:
        old: Baseline metadata
        new: Newer metadata
        persistent_fields: Fields re-attached to a non-empty diff, taken from
            the diff itself, else ``new``, else ``old``
        early_exit: Return as soon as the diff holds any metadata, without
            computing the full diff

    Returns:
        ``new`` without what ``old`` already implies. Returns ``new`` if
        ``old`` has no metadata, and an empty dict if ``new`` has none.
    """
    if not has_metadata(old):
        return new
    if not has_metadata(new):
        return {}

    result: Metadata = {}
    for key, value in new.items():
        old_value = old.get(key)

        if key == "id":
            if value != old_value:
                result["id"] = find_best_id([value, old_value]) or value
        elif key in BATCH_RANGE_FIELDS:
            continue
        elif key == "episodes":
            episodes_diff = _episodes_right_diff(old_value, value, early_exit)
            if has_metadata(episodes_diff):
                result["episodes"] = episodes_diff
        elif isinstance(value, list):
            list_diff = _list_right_diff(old_value, value)
            if list_diff:
                result[key] = list_diff
        elif is_valid_date(value) and is_valid_date(old_value):
            if not dates_equal(value, old_value):
                result[key] = value
        elif value != old_value and value_present(value):
            result[key] = value

        if early_exit and has_metadata(result):
            return result

    if has_metadata(result):
        for field in persistent_fields:
            field_value = result.get(field) or new.get(field) or old.get(field)
            if field_value:
                result[field] = field_value
    return result


def has_diff(
    old: Metadata, new: Metadata, persistent_fields: Sequence[str] = ("id",)
) -> bool:
    """Whether ``new`` holds anything not already present in ``old``."""
    return has_metadata(right_diff(old, new, persistent_fields, early_exit=True))


def simple_diff(old: Metadata, new: Metadata) -> Metadata:
    """``new`` without the episodes whose dates already exist in ``old``.

    Returns:
        ``{"episodes": []}`` if there are no new episodes
    """
    empty: Metadata = {"episodes": []}
    if not has_metadata(old):
        return {**empty, **new}
    if not has_metadata(new):
        return empty

    old_dates: set[datetime] = {ep["published_at"] for ep in old.get("episodes") or []}
    new_episodes = [ep for ep in new.get("episodes") or [] if ep["published_at"] not in old_dates]
    if new_episodes:
        return {**new, "episodes": new_episodes}
    return empty
