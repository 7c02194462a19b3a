"""Tests for the diff and merge algebra."""

import copy
from datetime import datetime, timedelta, timezone

from podsync.ids import add_id_prefix
from podsync.sync.diff_merge import (
    has_diff,
    merge_batch_metadata,
    merge_batch_tags,
    merge_episodes,
    merge_threads,
    right_diff,
    simple_diff,
)

EP1 = datetime(2024, 1, 1, tzinfo=timezone.utc)
EP2 = EP1 + timedelta(days=1)
EP3 = EP1 + timedelta(days=2)
EP4 = EP1 + timedelta(days=3)


def episode(date: datetime, **fields) -> dict:
    return {"title": f"Episode {date.day}", "published_at": date, **fields}


def assert_strictly_descending(episodes: list[dict]) -> None:
    dates = [ep["published_at"] for ep in episodes]
    assert all(a > b for a, b in zip(dates, dates[1:]))


class TestMergeEpisodes:
    """Tests for merging episode lists."""

    def test_non_overlapping_lists_are_concatenated(self) -> None:
        older = [episode(EP2), episode(EP1)]
        newer = [episode(EP4), episode(EP3)]
        merged = merge_episodes(older, newer)
        assert [ep["published_at"] for ep in merged] == [EP4, EP3, EP2, EP1]

    def test_argument_order_does_not_change_result(self) -> None:
        older = [episode(EP2), episode(EP1)]
        newer = [episode(EP4), episode(EP3)]
        assert merge_episodes(older, newer) == merge_episodes(newer, older)

    def test_overlapping_episodes_are_merged_field_by_field(self) -> None:
        old = [episode(EP3), episode(EP2, description="old", keywords=["Alpha"])]
        new = [episode(EP4), episode(EP2, description="new", subtitle="", keywords=["alpha", "Beta"])]

        merged = merge_episodes(old, new)

        assert [ep["published_at"] for ep in merged] == [EP4, EP3, EP2]
        ep2 = merged[-1]
        assert ep2["description"] == "new"
        assert "subtitle" not in ep2
        assert ep2["keywords"] == ["alpha", "beta"]

    def test_empty_lists(self) -> None:
        episodes = [episode(EP1)]
        assert merge_episodes([], episodes) == episodes
        assert merge_episodes(episodes, []) == episodes

    def test_arguments_are_not_mutated(self) -> None:
        old = [episode(EP2, description="old")]
        new = [episode(EP2, description="new")]
        old_copy, new_copy = copy.deepcopy(old), copy.deepcopy(new)
        merge_episodes(old, new)
        assert old == old_copy
        assert new == new_copy


class TestMergeBatchMetadata:
    """Tests for merging metadata batches."""

    def test_non_overlapping_batches_with_special_tags(self) -> None:
        batch_a = {
            "first_episode_date": EP1,
            "last_episode_date": EP2,
            "episodes": [episode(EP2), episode(EP1)],
        }
        batch_b = {
            "first_episode_date": EP3,
            "last_episode_date": EP4,
            "episodes": [episode(EP4), episode(EP3)],
        }

        merged = merge_batch_metadata([batch_a, batch_b], apply_special_tags=True)

        assert [ep["published_at"] for ep in merged["episodes"]] == [EP4, EP3, EP2, EP1]
        assert merged["first_episode_date"] == EP1
        assert merged["last_episode_date"] == EP4

    def test_later_batches_override_present_fields(self) -> None:
        merged = merge_batch_metadata(
            [{"title": "Old", "description": "kept"}, {"title": "New", "description": ""}]
        )
        assert merged["title"] == "New"
        assert merged["description"] == "kept"

    def test_special_tags(self, podcast_id: str) -> None:
        batches = [
            {"id": podcast_id, "batch_number": 2, "categories": ["Tech"]},
            {"id": add_id_prefix(podcast_id), "batch_number": 1, "categories": ["news", "tech"]},
        ]
        merged = merge_batch_metadata(batches, apply_special_tags=True)

        assert merged["id"] == podcast_id
        assert merged["batch_number"] == 2
        assert merged["categories"] == ["tech", "news"]

    def test_empty_input(self) -> None:
        assert merge_batch_metadata([]) == {}
        assert merge_batch_metadata([{}, {}]) == {}

    def test_merge_is_idempotent(self) -> None:
        batches = [
            {"title": "A", "episodes": [episode(EP3), episode(EP2)]},
            {"description": "B", "episodes": [episode(EP4), episode(EP3, subtitle="s")]},
        ]
        merged = merge_batch_metadata(batches)
        assert merge_batch_metadata([merged]) == merged

    def test_episodes_strictly_descending_without_duplicates(self) -> None:
        batches = [
            {"episodes": [episode(EP3), episode(EP1)]},
            {"episodes": [episode(EP4), episode(EP2)]},
            {"episodes": [episode(EP3), episode(EP2)]},
        ]
        merged = merge_batch_metadata(batches)
        assert_strictly_descending(merged["episodes"])
        assert len(merged["episodes"]) == 4


class TestMergeTags:
    def test_merge_batch_tags_applies_special_rules(self) -> None:
        merged = merge_batch_tags(
            [
                {"title": "A", "first_episode_date": EP2, "batch_number": 0, "keywords": ["x"]},
                {"title": "B", "first_episode_date": EP1, "batch_number": 1, "keywords": ["y"]},
            ]
        )
        assert merged == {
            "title": "B",
            "first_episode_date": EP1,
            "batch_number": 1,
            "keywords": ["x", "y"],
        }

    def test_merge_threads_replaces_by_id(self) -> None:
        threads = merge_threads(
            [{"id": "t1", "subject": " First "}, {"id": "t2", "subject": "Second"}],
            [{"id": "t1", "subject": "Edited"}],
        )
        assert threads == [{"id": "t2", "subject": "Second"}, {"id": "t1", "subject": "Edited"}]


class TestRightDiff:
    """Tests for right_diff."""

    def test_edge_cases(self, podcast_factory) -> None:
        podcast = podcast_factory(2)
        assert right_diff({}, podcast) == podcast
        assert right_diff(podcast, {}) == {}

    def test_non_overlapping_diff_returns_new(self) -> None:
        old = {"title": "A", "episodes": [episode(EP2), episode(EP1)]}
        new = {"description": "B", "episodes": [episode(EP4), episode(EP3)]}
        assert right_diff(old, new) == new

    def test_scalar_and_list_fields(self, podcast_id: str) -> None:
        old = {"id": podcast_id, "title": "Same", "author": "Old", "keywords": ["a", "b"]}
        new = {"id": podcast_id, "title": "Same", "author": "New", "keywords": ["b", "c"]}
        assert right_diff(old, new) == {"id": podcast_id, "author": "New", "keywords": ["c"]}

    def test_persistent_fields_are_reattached(self, podcast_factory) -> None:
        old = podcast_factory(0, episodes=[])
        new = {**old, "description": "Changed"}
        diff = right_diff(old, new)
        assert diff == {
            "id": old["id"],
            "feed_type": "rss2",
            "feed_url": old["feed_url"],
            "description": "Changed",
        }

    def test_unchanged_metadata_has_empty_diff(self, podcast_factory) -> None:
        podcast = podcast_factory(3)
        assert right_diff(podcast, copy.deepcopy(podcast)) == {}
        assert not has_diff(podcast, copy.deepcopy(podcast))

    def test_batch_range_fields_are_never_diffed(self) -> None:
        old = {"title": "A", "first_episode_date": EP1, "batch_number": 0}
        new = {"title": "A", "first_episode_date": EP2, "last_episode_date": EP3, "batch_number": 4}
        assert right_diff(old, new) == {}

    def test_episodes_are_diffed_by_date(self) -> None:
        old = {"episodes": [episode(EP2), episode(EP1, description="same")]}
        new = {"episodes": [episode(EP3), episode(EP1, description="changed")]}

        diff = right_diff(old, new)

        assert diff["episodes"] == [
            episode(EP3),
            {"description": "changed", "published_at": EP1},
        ]

    def test_has_diff(self) -> None:
        old = {"title": "A", "episodes": [episode(EP1)]}
        assert has_diff(old, {"title": "A", "episodes": [episode(EP2)]})
        assert not has_diff(old, {"title": "A"})


class TestSimpleDiff:
    def test_keeps_only_new_episodes(self) -> None:
        old = {"episodes": [episode(EP2), episode(EP1)]}
        new = {"title": "A", "episodes": [episode(EP3), episode(EP2)]}
        assert simple_diff(old, new) == {"title": "A", "episodes": [episode(EP3)]}

    def test_no_new_episodes(self) -> None:
        old = {"title": "A", "episodes": [episode(EP1)]}
        assert simple_diff(old, {"title": "A", "episodes": [episode(EP1)]}) == {"episodes": []}
