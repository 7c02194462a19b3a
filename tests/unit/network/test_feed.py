"""Tests for reconstructing podcast metadata from published records."""

import uuid
from unittest.mock import AsyncMock, Mock

import pytest

from podsync.network.cache import RecordCache
from podsync.network.feed import FeedFetcher
from podsync.network.gateway import GatewayClient
from podsync.network.records import compress_metadata, format_metadata_tags, with_batch_number
from podsync.network.tags import to_tag
from podsync.utils.errors import FeedFetchError, QueryError

FEED_URL = "https://example.com/feed.rss"


def make_node(record_id: str, metadata: dict, owner: str = "owner-1") -> dict:
    tags = format_metadata_tags(metadata)
    return {
        "id": record_id,
        "owner": {"address": owner},
        "tags": [{"name": to_tag(name), "value": value} for name, value in tags],
    }


class FakeGateway:
    """Serves query results per batch number and payloads per record id."""

    def __init__(self, batches: dict[int, list[dict]], payloads: dict[str, bytes]) -> None:
        self.batches = batches
        self.payloads = payloads
        self.queried: list[dict] = []

    async def query_by_tags(self, filters, fields=()):
        self.queried.append(filters)
        batch_number = filters.get("batch_number")
        if batch_number is None:
            return [node for nodes in self.batches.values() for node in nodes]
        return self.batches.get(int(batch_number), [])

    async def fetch_data(self, record_id, bundled_in=None):
        return self.payloads[record_id]


def published_batches(podcast: dict, sizes: list[int]) -> tuple[list[dict], dict[str, bytes], dict]:
    """Split a podcast into numbered batches, oldest episodes first."""
    episodes = podcast["episodes"]
    main = {k: v for k, v in podcast.items() if k != "episodes"}
    batches, payloads = [], {}
    prior: dict = {}
    end = len(episodes)
    for number, size in enumerate(sizes):
        batch = with_batch_number({**main, "episodes": episodes[end - size:end]}, prior)
        end -= size
        prior = batch
        record_id = f"record-{number}"
        batches.append(make_node(record_id, batch))
        payloads[record_id] = compress_metadata(batch)
    return batches, payloads, main


class TestGetPodcastFeed:
    """Tests for FeedFetcher.get_podcast_feed."""

    @pytest.mark.asyncio
    async def test_merges_batches_until_an_empty_batch(self, podcast_factory) -> None:
        podcast = podcast_factory(6)
        nodes, payloads, _ = published_batches(podcast, [2, 2, 2])
        gateway = FakeGateway({0: [nodes[0]], 1: [nodes[1]], 2: [nodes[2]]}, payloads)
        cache = RecordCache()

        metadata = await FeedFetcher(gateway, cache).get_podcast_feed(FEED_URL)

        assert metadata["episodes"] == podcast["episodes"]
        assert metadata["title"] == "Test Podcast"
        assert metadata["id"] == podcast["id"]
        assert metadata["batch_number"] == 2
        assert metadata["first_episode_date"] == podcast["episodes"][-1]["published_at"]
        assert [q["batch_number"] for q in gateway.queried] == ["0", "1", "2", "3"]
        assert len(cache) == 3

    @pytest.mark.asyncio
    async def test_query_failure_returns_batches_merged_so_far(self, podcast_factory) -> None:
        podcast = podcast_factory(4)
        nodes, payloads, _ = published_batches(podcast, [2, 2])
        gateway = FakeGateway({0: [nodes[0]]}, payloads)
        gateway.query_by_tags = AsyncMock(side_effect=[[nodes[0]], QueryError("gateway down")])

        metadata = await FeedFetcher(gateway, RecordCache()).get_podcast_feed(FEED_URL)

        assert metadata["episodes"] == podcast["episodes"][2:]
        assert gateway.query_by_tags.await_count == 2

    @pytest.mark.asyncio
    async def test_raises_when_nothing_could_be_fetched(self) -> None:
        gateway = Mock(spec=GatewayClient)
        gateway.query_by_tags = AsyncMock(side_effect=QueryError("gateway down"))

        with pytest.raises(FeedFetchError) as exc_info:
            await FeedFetcher(gateway, RecordCache()).get_podcast_feed(FEED_URL)

        assert exc_info.value.messages == ["gateway down"]
        assert FEED_URL in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_batch_without_tags_stops_the_loop(self, podcast_factory) -> None:
        podcast = podcast_factory(6)
        nodes, payloads, _ = published_batches(podcast, [2, 2, 2])
        untagged = {"id": "untagged", "owner": {"address": "owner-1"}, "tags": []}
        payloads["untagged"] = payloads["record-1"]
        gateway = FakeGateway({0: [nodes[0]], 1: [untagged], 2: [nodes[2]]}, payloads)
        cache = RecordCache()

        metadata = await FeedFetcher(gateway, cache).get_podcast_feed(FEED_URL)

        assert metadata["episodes"] == podcast["episodes"][4:]
        assert [q["batch_number"] for q in gateway.queried] == ["0", "1"]
        assert cache.find("untagged") is None

    @pytest.mark.asyncio
    async def test_no_records_returns_empty_metadata(self) -> None:
        gateway = FakeGateway({}, {})
        assert await FeedFetcher(gateway, RecordCache()).get_podcast_feed(FEED_URL) == {}

    @pytest.mark.asyncio
    async def test_malformed_payload_is_blocked_and_skipped(self, podcast_factory) -> None:
        podcast = podcast_factory(4)
        nodes, payloads, _ = published_batches(podcast, [2, 2])
        bad_node = {**nodes[0], "id": "bad-record"}
        payloads["bad-record"] = b"not gzip"
        gateway = FakeGateway({0: [bad_node, nodes[0]], 1: [nodes[1]]}, payloads)
        cache = RecordCache()

        metadata = await FeedFetcher(gateway, cache).get_podcast_feed(FEED_URL)

        assert metadata["episodes"] == podcast["episodes"]
        assert cache.is_blocked("bad-record")
        assert not cache.is_blocked("record-0")

    @pytest.mark.asyncio
    async def test_prefers_record_with_most_episodes(self, podcast_factory) -> None:
        podcast = podcast_factory(3)
        small_nodes, small_payloads, _ = published_batches(podcast, [1])
        full_nodes, full_payloads, _ = published_batches(podcast, [3])
        small = {**small_nodes[0], "id": "small"}
        full = {**full_nodes[0], "id": "full"}
        gateway = FakeGateway(
            {0: [small, full]},
            {"small": small_payloads["record-0"], "full": full_payloads["record-0"]},
        )

        metadata = await FeedFetcher(gateway, RecordCache()).get_podcast_feed(FEED_URL)

        assert len(metadata["episodes"]) == 3


class TestPodcastIdAndThreads:
    @pytest.mark.asyncio
    async def test_fetch_podcast_id(self, podcast_factory) -> None:
        podcast = podcast_factory(2)
        nodes, payloads, _ = published_batches(podcast, [2])
        gateway = FakeGateway({0: nodes}, payloads)

        assert await FeedFetcher(gateway, RecordCache()).fetch_podcast_id(FEED_URL) == podcast["id"]

    @pytest.mark.asyncio
    async def test_fetch_podcast_id_without_records(self) -> None:
        gateway = FakeGateway({}, {})
        assert await FeedFetcher(gateway, RecordCache()).fetch_podcast_id(FEED_URL) == ""

    @pytest.mark.asyncio
    async def test_get_all_threads(self, podcast_id: str) -> None:
        thread_id = str(uuid.uuid4())
        node = {
            "id": "t1",
            "tags": [
                {"name": "podsync-id", "value": podcast_id},
                {"name": "podsync-kind", "value": "thread"},
                {"name": "podsync-threadId", "value": thread_id},
                {"name": "podsync-type", "value": "public"},
                {"name": "podsync-subject", "value": "Hello"},
                {"name": "podsync-content", "value": "World"},
            ],
        }
        invalid = {"id": "t2", "tags": [{"name": "podsync-subject", "value": "No ids"}]}
        gateway = Mock(spec=GatewayClient)
        gateway.query_by_tags = AsyncMock(return_value=[node, invalid])

        threads = await FeedFetcher(gateway, RecordCache()).get_all_threads([podcast_id])

        assert threads == [
            {
                "id": thread_id,
                "podcast_id": podcast_id,
                "episode_id": None,
                "content": "World",
                "type": "public",
                "subject": "Hello",
                "is_draft": False,
            }
        ]
