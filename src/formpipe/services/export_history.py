"""Bounded history of finished exports."""

import asyncio
import logging
from collections import Counter
from datetime import UTC, datetime
from typing import Any

from botocore.exceptions import ClientError

from formpipe.models.export import ExportHistoryEntry, ExportResult, ExportStatistics
from formpipe.utils.constants import EXPORT_HISTORY_CAPACITY, EXPORT_HISTORY_PERSISTED
from formpipe.utils.dynamodb_utils import from_dynamodb, to_dynamodb
from formpipe.utils.number_utils import round_half_up

logger = logging.getLogger(__name__)

RECENT_EXPORTS_COUNT = 5


class HistoryStoreError(Exception):
    """Export history could not be read from or written to its store."""

    pass


class DynamoDBHistoryStore:
    """Keeps the persisted export history as a single DynamoDB item."""

    def __init__(self, table, history_key: str = "export-history"):
        """Initialize the store with a DynamoDB table and the item's key."""
        self.table = table
        self.history_key = history_key

    def load(self) -> list[dict[str, Any]]:
        try:
            response = self.table.get_item(Key={"history_id": self.history_key})
        except ClientError as e:
            logger.error(f"Failed to load export history {self.history_key}: {e}")
            raise HistoryStoreError(f"Failed to load export history: {str(e)}") from e

        item = response.get("Item")
        if not item:
            return []
        return from_dynamodb(item.get("entries", []))

    def save(self, entries: list[dict[str, Any]]) -> None:
        item = {
            "history_id": self.history_key,
            "entries": entries,
            "updated_at": datetime.now(UTC).isoformat(),
        }
        try:
            self.table.put_item(Item=to_dynamodb(item))
        except ClientError as e:
            logger.error(f"Failed to save export history {self.history_key}: {e}")
            raise HistoryStoreError(f"Failed to save export history: {str(e)}") from e

    def clear(self) -> None:
        try:
            self.table.delete_item(Key={"history_id": self.history_key})
        except ClientError as e:
            logger.error(f"Failed to clear export history {self.history_key}: {e}")
            raise HistoryStoreError(f"Failed to clear export history: {str(e)}") from e


class ExportHistoryTracker:
    """Newest-first ring buffer of export outcomes.

    The in-memory buffer is the source of truth. A store, when given, receives
    the newest ``persisted_capacity`` entries after every change; store
    failures are logged and never affect the caller.
    """

    def __init__(
        self,
        store: DynamoDBHistoryStore | None = None,
        capacity: int = EXPORT_HISTORY_CAPACITY,
        persisted_capacity: int = EXPORT_HISTORY_PERSISTED,
    ):
        self.store = store
        self.capacity = capacity
        self.persisted_capacity = persisted_capacity
        self._entries: list[ExportHistoryEntry] = []

    async def record(self, result: ExportResult) -> ExportHistoryEntry:
        """Prepend an entry for ``result`` and persist the newest subset."""
        entry = ExportHistoryEntry.from_result(result)
        self._entries.insert(0, entry)
        del self._entries[self.capacity :]
        await self._persist()
        return entry

    async def load(self) -> list[ExportHistoryEntry]:
        """Replace the in-memory history with what the store holds."""
        if self.store is None:
            return self.get_history()
        try:
            raw_entries = await asyncio.to_thread(self.store.load)
        except HistoryStoreError as e:
            logger.warning(f"Could not load export history, starting empty: {e}")
            return self.get_history()

        entries = []
        for raw in raw_entries:
            try:
                entries.append(ExportHistoryEntry.model_validate(raw))
            except ValueError as e:
                logger.warning(f"Skipping unreadable export history entry: {e}")
        self._entries = entries[: self.capacity]
        logger.info(f"Loaded {len(self._entries)} export history entries")
        return self.get_history()

    async def clear(self) -> None:
        self._entries = []
        if self.store is None:
            return
        try:
            await asyncio.to_thread(self.store.clear)
        except HistoryStoreError as e:
            logger.warning(f"Could not clear persisted export history: {e}")

    def get_history(self) -> list[ExportHistoryEntry]:
        return list(self._entries)

    def get_statistics(self) -> ExportStatistics:
        """Totals and breakdowns over the in-memory history."""
        entries = self._entries
        if not entries:
            return ExportStatistics()

        total_records = sum(entry.record_count for entry in entries)
        successful = sum(1 for entry in entries if entry.success)
        return ExportStatistics(
            total_exports=len(entries),
            total_records=total_records,
            successful_exports=successful,
            failed_exports=len(entries) - successful,
            format_breakdown=dict(Counter(entry.format for entry in entries)),
            field_source_breakdown=dict(
                Counter(entry.field_source for entry in entries if entry.field_source)
            ),
            average_records_per_export=round_half_up(total_records / len(entries)),
            recent_exports=entries[:RECENT_EXPORTS_COUNT],
        )

    async def _persist(self) -> None:
        if self.store is None:
            return
        subset = [
            entry.model_dump(mode="json", by_alias=True)
            for entry in self._entries[: self.persisted_capacity]
        ]
        try:
            await asyncio.to_thread(self.store.save, subset)
        except HistoryStoreError as e:
            logger.warning(f"Could not persist export history: {e}")
