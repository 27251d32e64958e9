"""Change log recorder used by replica synchronization.

Entries only say that an entity changed and which source changed it; the
consumer reads the current row itself. A source tag is never interpreted
here.
"""
import logging
from typing import List, Optional, Union

from sqlalchemy import func, select

from notetree.models.db_models import sync_table
from notetree.models.schema import EntityKind, SyncEntry
from notetree.storage.gateway import SqlGateway, TransactionContext
from notetree.utils import ensure_timezone_aware, utc_now

logger = logging.getLogger(__name__)


class SyncLog:
    """Append-only log of entity changes, written inside the caller's transaction."""

    def __init__(self, gateway: SqlGateway):
        self.gateway = gateway

    def record_entity_change(
        self,
        tx: TransactionContext,
        kind: Union[EntityKind, str],
        entity_id: str,
        source_id: str,
    ) -> None:
        """Record that an entity changed."""
        kind = EntityKind(kind)
        self.gateway.insert(tx, sync_table, {
            "entity_name": kind.value,
            "entity_id": entity_id,
            "source_id": source_id,
            "sync_date": utc_now(),
        })
        logger.debug(f"Sync entry {kind.value}:{entity_id} from {source_id}")

    def add_note_sync(self, tx: TransactionContext, note_id: str, source_id: str) -> None:
        self.record_entity_change(tx, EntityKind.NOTE, note_id, source_id)

    def add_note_tree_sync(self, tx: TransactionContext, note_tree_id: str, source_id: str) -> None:
        self.record_entity_change(tx, EntityKind.NOTE_TREE, note_tree_id, source_id)

    def add_note_history_sync(self, tx: TransactionContext, note_history_id: str, source_id: str) -> None:
        self.record_entity_change(tx, EntityKind.NOTE_HISTORY, note_history_id, source_id)

    def add_note_reordering_sync(self, tx: TransactionContext, parent_note_id: str, source_id: str) -> None:
        """Record a reorder of all children of a parent as a single entry."""
        self.record_entity_change(tx, EntityKind.NOTE_REORDERING, parent_note_id, source_id)

    def get_entries(self, since_id: int = 0, limit: Optional[int] = None) -> List[SyncEntry]:
        """Entries with id greater than since_id, oldest first."""
        query = select(sync_table).where(sync_table.c.id > since_id).order_by(sync_table.c.id)
        if limit is not None:
            query = query.limit(limit)
        with self.gateway.transaction() as tx:
            rows = self.gateway.get_results(tx, query)
        return [
            SyncEntry(
                id=row["id"],
                entity_name=row["entity_name"],
                entity_id=row["entity_id"],
                source_id=row["source_id"],
                sync_date=ensure_timezone_aware(row["sync_date"]),
            )
            for row in rows
        ]

    def count_entries(
        self,
        kind: Optional[Union[EntityKind, str]] = None,
        entity_id: Optional[str] = None,
    ) -> int:
        """Count entries, optionally filtered by kind and entity id."""
        query = select(func.count()).select_from(sync_table)
        if kind is not None:
            query = query.where(sync_table.c.entity_name == EntityKind(kind).value)
        if entity_id is not None:
            query = query.where(sync_table.c.entity_id == entity_id)
        with self.gateway.transaction() as tx:
            return self.gateway.get_single_value(tx, query) or 0
