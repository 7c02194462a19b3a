"""Sync orchestration: drives records through build, sign, broadcast and confirm.

Each record is tracked by a ``SyncTransaction``:

    INITIALIZED -> POSTED | ERRORED
    POSTED      -> CONFIRMED | REJECTED

Failures are captured per transaction and never abort sibling transactions.
Errored work is not retried here; it remains in the pending diff and is picked
up again on the next sync cycle.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence

from podsync.config.schema import PartitionSettings, PublishConfig, SyncConfig
from podsync.models import (
    DispatchResult,
    Record,
    RecordKind,
    SyncStatus,
    SyncTransaction,
)
from podsync.network.cache import RecordCache
from podsync.network.gateway import RecordStatus
from podsync.network.records import (
    Signer,
    compress_post,
    dispatch,
    format_thread_tags,
    new_record,
    sign_and_post,
    supports_dispatch,
)
from podsync.sync.diff_merge import DEFAULT_PERSISTENT_FIELDS, right_diff
from podsync.sync.partition import BatchPartitioner, PartitionedBatch
from podsync.utils.datetime import is_valid_date, unix_timestamp
from podsync.utils.errors import ImplementationError, PodsyncError, QueryError, ValidationError
from podsync.utils.metadata import Metadata, find_metadata_by_id, has_metadata

logger = logging.getLogger(__name__)

GetStatus = Callable[[str], Awaitable[RecordStatus]]


def is_initialized(tx: SyncTransaction) -> bool:
    return tx.status == SyncStatus.INITIALIZED


def is_posted(tx: SyncTransaction) -> bool:
    return tx.status == SyncStatus.POSTED


def is_confirmed(tx: SyncTransaction) -> bool:
    return tx.status == SyncStatus.CONFIRMED


def is_errored(tx: SyncTransaction) -> bool:
    return tx.status == SyncStatus.ERRORED


def status_to_string(status: SyncStatus) -> str:
    return status.label


def update_transactions(
    transactions: Sequence[SyncTransaction], updated: Sequence[SyncTransaction]
) -> list[SyncTransaction]:
    """Replace transactions by their updated versions, matched by id."""
    by_id = {tx.id: tx for tx in updated}
    return [by_id.get(tx.id, tx) for tx in transactions]


def transaction_to_string(
    tx: SyncTransaction,
    subscriptions: Sequence[Metadata] = (),
    pending_diffs: Sequence[Metadata] = (),
) -> str:
    """Short human-readable description of what a transaction publishes."""
    if tx.kind.is_thread:
        if tx.kind == RecordKind.THREAD_REPLY:
            parent_id = tx.metadata.get("parent_thread_id")
            for podcast in [*subscriptions, *pending_diffs]:
                for thread in podcast.get("threads") or []:
                    if thread.get("id") == parent_id:
                        return f"RE: {thread.get('subject')}"
            return "Reply"
        return f"{tx.metadata.get('subject')}"
    return f"{tx.num_episodes} new episodes"


class SyncOrchestrator:
    """Publishes pending podcast diffs as records.

    Args:
        signer: Creates, signs and broadcasts records
        record_cache: Cache of observed records, used for batch numbering
        config: Sync configuration
        partition_settings: Tunables of the batch size search
        publish: Protocol tags and tag prefix
    """

    def __init__(
        self,
        signer: Signer,
        record_cache: RecordCache | None = None,
        config: SyncConfig | None = None,
        partition_settings: PartitionSettings | None = None,
        publish: PublishConfig | None = None,
    ) -> None:
        self.signer = signer
        self.record_cache = record_cache or RecordCache()
        self.config = config or SyncConfig()
        self.publish = publish or PublishConfig()
        self.partitioner = BatchPartitioner(
            self.record_cache,
            self.config.max_batch_size,
            partition_settings,
            self.publish.tag_prefix,
        )

    def _thread_batch(self, thread: Metadata, cached: Metadata) -> PartitionedBatch:
        kind = RecordKind.THREAD_REPLY if thread.get("parent_thread_id") else RecordKind.THREAD
        return PartitionedBatch(
            podcast_id=thread.get("podcast_id") or "",
            title=thread.get("subject") or cached.get("title") or "",
            kind=kind,
            metadata=thread,
            compressed_metadata=compress_post(thread),
            tags=format_thread_tags(thread, cached, self.publish.tag_prefix),
        )

    def partition_podcast(
        self, subscriptions: Sequence[Metadata], diff: Metadata
    ) -> list[PartitionedBatch]:
        """Split one podcast's pending diff into batches.

        Each thread or reply becomes a batch of its own; the remaining podcast
        fields go through the partitioner.

        Raises:
            ValidationError: If the diff has no id, an episode has no publication
                date, or a mandatory field is missing
        """
        podcast_id = diff.get("id")
        if not podcast_id:
            raise ValidationError("id", "Could not find podcast id")
        cached = find_metadata_by_id(podcast_id, subscriptions)
        name = diff.get("title") or cached.get("title") or podcast_id
        for episode in diff.get("episodes") or []:
            if not is_valid_date(episode.get("published_at")):
                raise ValidationError(
                    "published_at",
                    f"Could not publish metadata for {name}: "
                    f"episode \"{episode.get('title')}\" has no valid publication date",
                )

        batches = [self._thread_batch(thread, cached) for thread in diff.get("threads") or []]
        podcast_diff = {k: v for k, v in diff.items() if k != "threads"}
        if has_metadata(podcast_diff):
            batches += self.partitioner.partition_metadata_batches(cached, podcast_diff)
        return batches

    async def _create_transaction(self, batch: PartitionedBatch) -> SyncTransaction:
        result: Record | PodsyncError
        try:
            result = await new_record(
                self.signer, batch.compressed_metadata, batch.tags, self.publish
            )
        except PodsyncError as e:
            result = e

        return SyncTransaction(
            id=str(uuid.uuid4()),
            podcast_id=batch.podcast_id,
            kind=batch.kind,
            title=batch.title,
            result=result,
            metadata=batch.metadata,
            num_episodes=batch.num_episodes,
            status=SyncStatus.ERRORED if isinstance(result, Exception) else SyncStatus.INITIALIZED,
            timestamp=unix_timestamp(),
        )

    async def init_sync(
        self, subscriptions: Sequence[Metadata], pending_diffs: Sequence[Metadata]
    ) -> list[SyncTransaction]:
        """Build one unsigned record per batch of every pending diff.

        A podcast whose diff cannot be partitioned is logged and skipped.
        Records are created concurrently.

        Returns:
            INITIALIZED transactions, or ERRORED ones holding the creation error
        """
        batches: list[PartitionedBatch] = []
        for diff in pending_diffs:
            if not has_metadata(diff):
                continue
            try:
                batches += self.partition_podcast(subscriptions, diff)
            except Exception as e:
                cached = find_metadata_by_id(diff.get("id") or "", subscriptions)
                name = cached.get("title") or diff.get("title") or diff.get("feed_url")
                logger.error(f"Failed to sync {name} due to: {e}")

        transactions = list(
            await asyncio.gather(*(self._create_transaction(batch) for batch in batches))
        )
        logger.debug(f"Initialized {len(transactions)} sync transactions")
        return transactions

    async def _post_transaction(self, tx: SyncTransaction) -> SyncTransaction:
        if not is_initialized(tx):
            return tx

        record = tx.record
        if record is None:
            error = ImplementationError(f"Transaction {tx.id} has no record to post")
            return tx.model_copy(update={"result": error, "status": SyncStatus.ERRORED})

        dispatch_result: DispatchResult | None = None
        try:
            if supports_dispatch(self.signer):
                dispatch_result = await dispatch(self.signer, record)
                posted = record
            else:
                posted = await sign_and_post(self.signer, record)
        except PodsyncError as e:
            return tx.model_copy(update={"result": e, "status": SyncStatus.ERRORED})

        return tx.model_copy(
            update={
                "result": posted,
                "dispatch_result": dispatch_result,
                "status": SyncStatus.POSTED,
            }
        )

    async def start_sync(self, transactions: Sequence[SyncTransaction]) -> list[SyncTransaction]:
        """Sign and broadcast every INITIALIZED transaction concurrently.

        Uses the signer's dispatch path when it offers one. Other transactions
        pass through untouched; order is preserved.
        """
        result = list(await asyncio.gather(*(self._post_transaction(tx) for tx in transactions)))
        posted = sum(1 for tx in result if is_posted(tx))
        logger.info(f"Posted {posted} of {len(result)} transactions")
        return result

    @staticmethod
    def format_next_diff(
        transactions: Sequence[SyncTransaction], previous_diffs: Sequence[Metadata]
    ) -> list[Metadata]:
        """Remove from the pending diffs what posted or confirmed transactions cover.

        Returns:
            The remaining diffs; a podcast whose diff is fully covered is dropped
        """
        diffs = list(previous_diffs)
        for tx in transactions:
            if not (is_posted(tx) or is_confirmed(tx)):
                continue

            previous = find_metadata_by_id(tx.podcast_id, diffs)
            next_diff: Metadata = {}
            if has_metadata(previous):
                if tx.kind.is_thread:
                    threads = [
                        t for t in previous.get("threads") or [] if t.get("id") != tx.metadata.get("id")
                    ]
                    next_diff = {**previous, "threads": threads}
                    if not threads:
                        del next_diff["threads"]
                else:
                    next_diff = right_diff(tx.metadata, previous, DEFAULT_PERSISTENT_FIELDS)

            diffs = [d for d in diffs if d is not previous and d.get("id") != tx.podcast_id]
            if has_metadata(next_diff):
                diffs.append(next_diff)
        return diffs

    async def _confirm_transaction(self, tx: SyncTransaction, get_status: GetStatus) -> SyncTransaction:
        record_id = tx.record_id
        if not is_posted(tx) or not record_id:
            return tx

        try:
            status = await get_status(record_id)
        except QueryError as e:
            logger.warning(f"Could not check status of record {record_id}: {e}")
            return tx

        if status.confirmed and status.confirmations >= self.config.min_confirmations:
            return tx.model_copy(update={"status": SyncStatus.CONFIRMED})
        if status.not_found and unix_timestamp() - tx.timestamp >= self.config.record_expiry_seconds:
            logger.warning(f"Record {record_id} was not accepted by the network")
            return tx.model_copy(update={"status": SyncStatus.REJECTED})
        return tx

    async def confirm_sync(
        self, transactions: Sequence[SyncTransaction], get_status: GetStatus
    ) -> list[SyncTransaction]:
        """Check confirmation status of every POSTED transaction concurrently.

        A record with enough confirmations becomes CONFIRMED. A record the
        network still does not know after the expiry period becomes REJECTED.
        """
        return list(
            await asyncio.gather(*(self._confirm_transaction(tx, get_status) for tx in transactions))
        )
