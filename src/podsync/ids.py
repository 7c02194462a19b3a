"""Podcast id helpers.

A podcast id is a uuid. Ids generated locally, before the network confirmed
which id a feed is published under, carry the ``temp-`` prefix and are called
candidate ids. Once the network returns an id for the feed, the prefix is
dropped and data structures are updated accordingly.
"""

import uuid
from collections.abc import Iterable

CANDIDATE_ID_PREFIX = "temp-"

_HEX_DIGITS = frozenset("0123456789abcdef")


def remove_id_prefix(candidate_id: str) -> str:
    if candidate_id.startswith(CANDIDATE_ID_PREFIX):
        return candidate_id[len(CANDIDATE_ID_PREFIX):]
    return candidate_id


def add_id_prefix(podcast_id: str) -> str:
    """Useful for matching metadata lists against outdated ids."""
    return f"{CANDIDATE_ID_PREFIX}{remove_id_prefix(podcast_id)}"


def is_candidate_id(podcast_id: str) -> bool:
    return podcast_id.startswith(CANDIDATE_ID_PREFIX)


def new_candidate_id() -> str:
    """Generate a new candidate id (a uuid4 carrying the candidate prefix)."""
    return f"{CANDIDATE_ID_PREFIX}{uuid.uuid4()}"


def is_valid_uuid(value: object) -> bool:
    """Check for a 32 to 64 character hex id, ignoring dashes and the candidate prefix."""
    if not value or not isinstance(value, str):
        return False

    digits = remove_id_prefix(value).replace("-", "").lower()
    return 32 <= len(digits) <= 64 and all(char in _HEX_DIGITS for char in digits)


def find_best_id(ids: Iterable[str | None]) -> str:
    """Pick the preferred id among several ids for the same podcast.

    Confirmed ids win over candidate ids; ties go to the earliest id.

    Returns:
        The best valid id, or an empty string if none of the ids is valid
    """
    valid = [x for x in ids if is_valid_uuid(x)]
    for podcast_id in valid:
        if not is_candidate_id(podcast_id):
            return podcast_id
    return valid[0] if valid else ""
