"""File-based history of sync transactions.

Transactions are kept in a single JSON file so that posted records can be
confirmed in a later session. Only the record id or error message of each
transaction's result is stored, and episode lists are left out of the stored
metadata.
"""

import asyncio
import json
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import aiofiles

from podsync.models import (
    Post,
    Record,
    RecordKind,
    SyncStatus,
    SyncTransaction,
    metadata_from_dto,
    metadata_to_dto,
)
from podsync.utils.errors import PodsyncError
from podsync.utils.paths import get_history_file

logger = logging.getLogger(__name__)


def transaction_to_dto(tx: SyncTransaction) -> dict[str, Any]:
    """JSON-safe form of a transaction, as stored in the history file."""
    metadata = {k: v for k, v in tx.metadata.items() if k != "episodes"}
    if tx.kind.is_thread:
        metadata = Post.model_validate(metadata).model_dump(
            mode="json", by_alias=True, exclude_unset=True
        )
    else:
        metadata = metadata_to_dto(metadata)

    error = tx.error
    return {
        "id": tx.id,
        "podcastId": tx.podcast_id,
        "kind": tx.kind.value,
        "title": tx.title,
        "status": int(tx.status),
        "timestamp": tx.timestamp,
        "numEpisodes": tx.num_episodes,
        "recordId": tx.record_id or None,
        "error": str(error) if error is not None else None,
        "metadata": metadata,
    }


def transaction_from_dto(dto: dict[str, Any]) -> SyncTransaction:
    """Inverse of :func:`transaction_to_dto`; the result keeps only the record id."""
    kind = RecordKind(dto["kind"])
    if kind.is_thread:
        metadata = Post.model_validate(dto.get("metadata") or {}).model_dump(exclude_unset=True)
    else:
        metadata = metadata_from_dto(dto.get("metadata") or {})

    result: Record | PodsyncError | None = None
    if dto.get("error"):
        result = PodsyncError(dto["error"])
    elif dto.get("recordId"):
        result = Record(id=dto["recordId"])

    return SyncTransaction(
        id=dto["id"],
        podcast_id=dto.get("podcastId") or "",
        kind=kind,
        title=dto.get("title") or "",
        result=result,
        metadata=metadata,
        num_episodes=dto.get("numEpisodes") or 0,
        status=SyncStatus(dto["status"]),
        timestamp=dto.get("timestamp") or 0,
    )


class TransactionStore:
    """JSON file holding every transaction that left the INITIALIZED stage.

    Example:
        >>> store = TransactionStore()
        >>> await store.save(transactions)
        >>> history = await store.load()
    """

    def __init__(self, path: Path | None = None) -> None:
        """Initialize the store.

        Args:
            path: History file (defaults to the XDG data dir)
        """
        self.path = path or get_history_file()

    async def load(self) -> list[SyncTransaction]:
        """Load the stored transactions, oldest first.

        A missing or corrupted history file yields an empty history.
        """
        if not self.path.exists():
            return []

        try:
            async with aiofiles.open(self.path, "r") as f:
                content = await f.read()
            entries = json.loads(content)
            return [transaction_from_dto(entry) for entry in entries]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable transaction history {self.path}: {e}")
            return []

    async def save(self, transactions: Sequence[SyncTransaction]) -> int:
        """Add or update transactions in the history, matched by id.

        INITIALIZED transactions are not stored.

        Returns:
            Number of transactions in the history after saving
        """
        history = await self.load()
        positions = {tx.id: i for i, tx in enumerate(history)}
        for tx in transactions:
            if tx.status == SyncStatus.INITIALIZED:
                continue
            if tx.id in positions:
                history[positions[tx.id]] = tx
            else:
                positions[tx.id] = len(history)
                history.append(tx)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.path.with_suffix(".tmp")
        try:
            async with aiofiles.open(temp_file, "w") as f:
                await f.write(json.dumps([transaction_to_dto(tx) for tx in history], indent=2))
            await asyncio.to_thread(temp_file.replace, self.path)
        except OSError:
            await asyncio.to_thread(temp_file.unlink, missing_ok=True)
            raise

        logger.debug(f"Saved {len(history)} transactions to {self.path}")
        return len(history)

    async def clear(self) -> None:
        await asyncio.to_thread(self.path.unlink, missing_ok=True)
