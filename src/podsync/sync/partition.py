"""Partitioning a podcast diff into size-bounded batches.

Published records have a hard size ceiling. A diff holding many episodes is
split into consecutive batches, oldest episodes first, each of which fits
under the ceiling once compressed and tagged.

Compressed size is not a closed-form function of the number of episodes, so
the size of each batch is found by a bounded search that aims for a fixed
fraction of the ceiling.
"""

import logging
import math

from pydantic import BaseModel, Field

from podsync.config.schema import DEFAULT_MAX_BATCH_SIZE, PartitionSettings
from podsync.models import RecordKind
from podsync.network.cache import RecordCache
from podsync.network.records import compress_metadata, format_metadata_tags, with_batch_number
from podsync.network.tags import DEFAULT_TAG_PREFIX, Tag, calculate_tags_size
from podsync.sync.diff_merge import DEFAULT_PERSISTENT_FIELDS, merge_batch_metadata, right_diff
from podsync.utils.errors import ImplementationError
from podsync.utils.metadata import Metadata, has_metadata

logger = logging.getLogger(__name__)


class PartitionedBatch(BaseModel):
    """A batch ready to become a record: its metadata, payload and tags."""

    podcast_id: str
    title: str = ""
    kind: RecordKind = RecordKind.METADATA_BATCH
    metadata: Metadata = Field(default_factory=dict)
    num_episodes: int = 0
    compressed_metadata: bytes = b""
    tags: list[Tag] = Field(default_factory=list)


class BatchPartitioner:
    """Splits pending podcast diffs into batches that fit the record size ceiling.

    Args:
        record_cache: Used to resolve batch numbers of overlapping batches
        max_batch_size: Size ceiling in bytes; None disables partitioning
        settings: Tunables of the size search
        prefix: Application tag prefix, counted towards the batch size
    """

    def __init__(
        self,
        record_cache: RecordCache | None = None,
        max_batch_size: int | None = DEFAULT_MAX_BATCH_SIZE,
        settings: PartitionSettings | None = None,
        prefix: str = DEFAULT_TAG_PREFIX,
    ) -> None:
        self.record_cache = record_cache
        self.max_batch_size = max_batch_size
        self.settings = settings or PartitionSettings()
        self.prefix = prefix

    def _format_tags(self, metadata: Metadata, cached: Metadata) -> list[Tag]:
        return format_metadata_tags(metadata, cached, record_cache=self.record_cache, prefix=self.prefix)

    def batch_size(self, compressed: bytes, tags: list[Tag]) -> int:
        return calculate_tags_size(tags, self.prefix) + len(compressed)

    def find_next_optimal_batch(
        self,
        template: PartitionedBatch,
        cached: Metadata,
        prior: Metadata,
        main_metadata: Metadata,
        episodes: list[Metadata],
    ) -> PartitionedBatch:
        """Find the batch of oldest episodes whose size best approaches the target.

        Each pass builds a candidate from the oldest ``n`` episodes and
        measures its relative size against the ceiling. Oversized candidates
        shrink ``n`` and undersized ones grow it, blending a proportional
        estimate with the tightest known bound and biasing further with every
        pass. The candidate closest to the target is returned, preferring
        candidates within the ceiling, even if no pass hits the target exactly.

        Raises:
            ImplementationError: If called without a ceiling or without episodes
        """
        if not self.max_batch_size:
            raise ImplementationError(
                f"find_next_optimal_batch called with max_batch_size={self.max_batch_size}"
            )
        if not episodes:
            raise ImplementationError("find_next_optimal_batch called without episodes")

        target = self.settings.target_ratio
        margin = self.settings.pass_margin
        total = len(episodes)

        result = template.model_copy()
        num_eps = min(total, self.settings.initial_episodes)
        min_eps = 1
        max_eps = math.inf
        best_score: tuple[bool, float] = (True, math.inf)

        for pass_number in range(1, self.settings.max_passes + 1):
            candidate = with_batch_number(
                {**main_metadata, "episodes": episodes[-num_eps:]}, prior, self.record_cache
            )
            tags = self._format_tags(candidate, cached)
            compressed = compress_metadata(candidate)

            relative_size = self.batch_size(compressed, tags) / self.max_batch_size
            logger.debug(
                f"Pass {pass_number}: {num_eps}/{total} episodes, relative size {relative_size:.3f}"
            )
            # Candidates within the ceiling always beat oversized ones
            score = (relative_size > 1, abs(target - relative_size))
            if pass_number == 1 or score < best_score:
                best_score = score
                result = template.model_copy(
                    update={
                        "num_episodes": num_eps,
                        "compressed_metadata": compressed,
                        "metadata": candidate,
                        "tags": tags,
                    }
                )

            if relative_size > 1:
                max_eps = min(max_eps, num_eps)
                num_eps = min(
                    total,
                    math.floor(
                        (1 - margin * pass_number) * ((num_eps / relative_size + max_eps) / 2)
                    ),
                )
            elif relative_size < target:
                if num_eps >= total:
                    break
                min_eps = max(min_eps, num_eps)
                num_eps = min(
                    total,
                    math.floor(
                        (1 + margin * pass_number) * ((num_eps / relative_size + min_eps) / 2)
                    ),
                )
            else:
                break

            # Bounds crossed: the best candidate was already seen
            if num_eps < min_eps or num_eps > max_eps or num_eps < 1:
                break

        return result

    def find_next_batch(
        self,
        cached: Metadata,
        prior: Metadata,
        main_metadata: Metadata,
        episodes: list[Metadata],
    ) -> PartitionedBatch:
        """Build the next batch from the oldest remaining episodes.

        Args:
            cached: Currently known metadata of the podcast
            prior: Merged metadata of the batches emitted so far
            main_metadata: Podcast fields of the diff, without episodes
            episodes: Remaining episodes, newest first

        Returns:
            The whole diff as one batch if there are no episodes or no size
            ceiling; otherwise the best-fitting batch of oldest episodes
        """
        all_metadata = dict(main_metadata)
        if episodes:
            all_metadata["episodes"] = episodes
        all_diff = right_diff(prior, all_metadata, DEFAULT_PERSISTENT_FIELDS)

        template = PartitionedBatch(
            podcast_id=main_metadata.get("id") or cached.get("id") or "",
            title=main_metadata.get("title") or cached.get("title") or "",
            num_episodes=len(episodes),
            metadata=all_diff,
        )

        if not episodes or not self.max_batch_size:
            metadata = all_diff
            if episodes:
                metadata = with_batch_number(metadata, prior, self.record_cache)
            return template.model_copy(
                update={
                    "metadata": metadata,
                    "compressed_metadata": compress_metadata(metadata),
                    "tags": self._format_tags(metadata, cached),
                }
            )

        return self.find_next_optimal_batch(template, cached, prior, main_metadata, episodes)

    def partition_metadata_batches(
        self, cached: Metadata, to_sync: Metadata
    ) -> list[PartitionedBatch]:
        """Partition a podcast diff into consecutive batches.

        The prior baseline starts from the batch range already known for the
        podcast, and grows with every emitted batch.

        Args:
            cached: Currently known metadata of the podcast
            to_sync: Pending diff of the podcast

        Returns:
            Batches which, merged, equal ``to_sync``. A single batch if there
            is no size ceiling or no episodes. Batches without metadata are
            dropped.
        """
        main_metadata = {k: v for k, v in to_sync.items() if k != "episodes"}
        remainder: list[Metadata] = list(to_sync.get("episodes") or [])

        prior: Metadata = {
            k: cached[k]
            for k in ("id", "first_episode_date", "last_episode_date", "batch_number")
            if cached.get(k) is not None
        }
        previous: Metadata = {}
        batches: list[PartitionedBatch] = []
        while True:
            prior = merge_batch_metadata([prior, previous], True) or prior
            batch = self.find_next_batch(cached, prior, main_metadata, remainder)
            batches.append(batch)
            previous = batch.metadata

            next_remainder = remainder[: len(remainder) - batch.num_episodes]
            if len(next_remainder) >= len(remainder):
                break
            remainder = next_remainder
            if not remainder:
                break

        result = [b for b in batches if has_metadata(b.metadata)]
        logger.info(
            f"Partitioned {len(to_sync.get('episodes') or [])} episodes of "
            f"{to_sync.get('title') or cached.get('title') or to_sync.get('id')} into {len(result)} batches"
        )
        return result
