"""Shared fixtures for podsync tests."""

import secrets
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from podsync.models import DispatchResult, Record
from podsync.utils import retry

BASE_DATE = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_episodes(count: int, title_size: int = 16, start: datetime = BASE_DATE) -> list[dict]:
    """Episodes sorted newest-first, one hour apart, with random hex titles."""
    return [
        {
            "title": f"{secrets.token_hex(title_size)} {i}",
            "media_url": f"https://example.com/ep{i}.mp3",
            "published_at": start - timedelta(hours=i),
        }
        for i in range(count)
    ]


@pytest.fixture(autouse=True)
def fast_retry_config(monkeypatch: pytest.MonkeyPatch) -> None:
    """Use fast retry configuration for all tests to avoid long delays."""
    monkeypatch.setattr(retry, "DEFAULT_RETRY_CONFIG", retry.TEST_RETRY_CONFIG)


@pytest.fixture
def podcast_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def episode_factory() -> Callable[..., list[dict]]:
    return make_episodes


@pytest.fixture
def podcast_factory(podcast_id: str) -> Callable[..., dict]:
    """Build podcast metadata with the given number of episodes."""

    def factory(num_episodes: int = 3, **overrides: Any) -> dict:
        podcast = {
            "id": podcast_id,
            "feed_type": "rss2",
            "feed_url": "https://example.com/feed.rss",
            "title": "Test Podcast",
            "description": "A podcast used in tests",
            "episodes": make_episodes(num_episodes),
        }
        podcast.update(overrides)
        return podcast

    return factory


class FakeSigner:
    """Signer that records every call and assigns sequential record ids."""

    def __init__(self, fail_create: bool = False, fail_post: bool = False) -> None:
        self.fail_create = fail_create
        self.fail_post = fail_post
        self.created: list[Record] = []
        self.posted: list[Record] = []

    async def create_record(self, data: bytes, tags: list[tuple[str, str]]) -> Record:
        if self.fail_create:
            raise RuntimeError("wallet locked")
        record = Record(id=f"record-{len(self.created)}", data=data, tags=tags)
        self.created.append(record)
        return record

    async def sign_and_post(self, record: Record) -> Record:
        if self.fail_post:
            raise RuntimeError("broadcast rejected")
        self.posted.append(record)
        return record


class FakeDispatchingSigner(FakeSigner):
    """Signer that also offers the batched dispatch path."""

    def __init__(self, bundle_id: str = "bundle-1", **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.bundle_id = bundle_id
        self.dispatched: list[Record] = []

    async def dispatch(self, record: Record) -> DispatchResult:
        if self.fail_post:
            raise RuntimeError("dispatch failed")
        self.dispatched.append(record)
        return DispatchResult(id=self.bundle_id, type="BUNDLED")


@pytest.fixture
def signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def dispatching_signer() -> FakeDispatchingSigner:
    return FakeDispatchingSigner()


@pytest.fixture
def signer_factory() -> type[FakeSigner]:
    return FakeSigner


@pytest.fixture
def dispatching_signer_factory() -> type[FakeDispatchingSigner]:
    return FakeDispatchingSigner
