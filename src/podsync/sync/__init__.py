"""Sync engine: diff/merge algebra, batch partitioning and transaction orchestration."""

from .diff_merge import has_diff, merge_batch_metadata, right_diff
from .orchestrator import SyncOrchestrator
from .partition import BatchPartitioner, PartitionedBatch
from .store import TransactionStore

__all__ = [
    "right_diff",
    "has_diff",
    "merge_batch_metadata",
    "BatchPartitioner",
    "PartitionedBatch",
    "SyncOrchestrator",
    "TransactionStore",
]
