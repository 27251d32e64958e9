"""Repository for notes, tree placements and history snapshots.

Every method takes the caller's TransactionContext; none of them commit.
"""

import datetime
import logging
from typing import List, Optional

from sqlalchemy import and_, func, select, update

from notetree.exceptions import (
    HistoryNotFoundError,
    NoteNotFoundError,
    PlacementNotFoundError,
)
from notetree.models.db_models import (
    notes_history_table,
    notes_table,
    notes_tree_table,
)
from notetree.models.schema import Note, NoteHistory, NoteTree
from notetree.storage.gateway import SqlGateway, TransactionContext

logger = logging.getLogger(__name__)


class NoteRepository:
    """Row-level reads and writes used by the note service."""

    def __init__(self, gateway: SqlGateway):
        self.gateway = gateway

    # =========================================================================
    # Notes
    # =========================================================================

    def find_note(self, tx: TransactionContext, note_id: str) -> Optional[Note]:
        row = self.gateway.get_single_result(
            tx, select(notes_table).where(notes_table.c.note_id == note_id)
        )
        return Note.from_row(row) if row else None

    def get_note(self, tx: TransactionContext, note_id: str) -> Note:
        """Get a note, raising NoteNotFoundError if it does not exist."""
        note = self.find_note(tx, note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    def insert_note(self, tx: TransactionContext, note: Note) -> None:
        self.gateway.insert(tx, notes_table, note.model_dump())

    def update_note_content(
        self,
        tx: TransactionContext,
        note_id: str,
        note_title: str,
        note_text: str,
        is_protected: bool,
        date_modified: Optional[datetime.datetime] = None,
    ) -> None:
        values = {
            "note_title": note_title,
            "note_text": note_text,
            "is_protected": is_protected,
        }
        if date_modified is not None:
            values["date_modified"] = date_modified
        self.gateway.execute(
            tx, update(notes_table).where(notes_table.c.note_id == note_id).values(**values)
        )

    def mark_note_deleted(
        self, tx: TransactionContext, note_id: str, now: datetime.datetime
    ) -> None:
        self.gateway.execute(
            tx,
            update(notes_table)
            .where(notes_table.c.note_id == note_id)
            .values(is_deleted=True, date_modified=now),
        )

    # =========================================================================
    # Tree placements
    # =========================================================================

    def find_placement(self, tx: TransactionContext, note_tree_id: str) -> Optional[NoteTree]:
        row = self.gateway.get_single_result(
            tx, select(notes_tree_table).where(notes_tree_table.c.note_tree_id == note_tree_id)
        )
        return NoteTree.from_row(row) if row else None

    def get_placement(self, tx: TransactionContext, note_tree_id: str) -> NoteTree:
        """Get a placement, raising PlacementNotFoundError if it does not exist."""
        placement = self.find_placement(tx, note_tree_id)
        if placement is None:
            raise PlacementNotFoundError(note_tree_id)
        return placement

    def insert_placement(self, tx: TransactionContext, placement: NoteTree) -> None:
        self.gateway.insert(tx, notes_tree_table, placement.model_dump())

    def max_child_position(self, tx: TransactionContext, parent_note_id: str) -> Optional[int]:
        """Highest position among live placements under a parent, None if there are none."""
        return self.gateway.get_single_value(
            tx,
            select(func.max(notes_tree_table.c.note_position)).where(
                and_(
                    notes_tree_table.c.parent_note_id == parent_note_id,
                    notes_tree_table.c.is_deleted.is_(False),
                )
            ),
        )

    def shift_positions_after(
        self, tx: TransactionContext, parent_note_id: str, position: int
    ) -> int:
        """Move every live sibling above position up by one.

        date_modified is left alone so the shift travels as one reordering
        entry instead of a row sync per sibling.
        """
        return self.gateway.execute(
            tx,
            update(notes_tree_table)
            .where(
                and_(
                    notes_tree_table.c.parent_note_id == parent_note_id,
                    notes_tree_table.c.note_position > position,
                    notes_tree_table.c.is_deleted.is_(False),
                )
            )
            .values(note_position=notes_tree_table.c.note_position + 1),
        )

    def mark_placement_deleted(
        self, tx: TransactionContext, note_tree_id: str, now: datetime.datetime
    ) -> None:
        self.gateway.execute(
            tx,
            update(notes_tree_table)
            .where(notes_tree_table.c.note_tree_id == note_tree_id)
            .values(is_deleted=True, date_modified=now),
        )

    def count_live_placements(self, tx: TransactionContext, note_id: str) -> int:
        return self.gateway.get_single_value(
            tx,
            select(func.count()).select_from(notes_tree_table).where(
                and_(
                    notes_tree_table.c.note_id == note_id,
                    notes_tree_table.c.is_deleted.is_(False),
                )
            ),
        ) or 0

    def child_note_ids(self, tx: TransactionContext, parent_note_id: str) -> List[str]:
        """Distinct note ids placed under a parent, deleted placements included."""
        return self.gateway.get_flattened_results(
            tx,
            select(notes_tree_table.c.note_id)
            .where(notes_tree_table.c.parent_note_id == parent_note_id)
            .group_by(notes_tree_table.c.note_id)
            .order_by(func.min(notes_tree_table.c.note_position)),
        )

    def live_child_placement_ids(self, tx: TransactionContext, parent_note_id: str) -> List[str]:
        return self.gateway.get_flattened_results(
            tx,
            select(notes_tree_table.c.note_tree_id)
            .where(
                and_(
                    notes_tree_table.c.parent_note_id == parent_note_id,
                    notes_tree_table.c.is_deleted.is_(False),
                )
            )
            .order_by(notes_tree_table.c.note_position),
        )

    def live_child_placements(self, tx: TransactionContext, parent_note_id: str) -> List[NoteTree]:
        rows = self.gateway.get_results(
            tx,
            select(notes_tree_table)
            .where(
                and_(
                    notes_tree_table.c.parent_note_id == parent_note_id,
                    notes_tree_table.c.is_deleted.is_(False),
                )
            )
            .order_by(notes_tree_table.c.note_position),
        )
        return [NoteTree.from_row(row) for row in rows]

    def placements_of_note(self, tx: TransactionContext, note_id: str) -> List[NoteTree]:
        rows = self.gateway.get_results(
            tx, select(notes_tree_table).where(notes_tree_table.c.note_id == note_id)
        )
        return [NoteTree.from_row(row) for row in rows]

    # =========================================================================
    # History snapshots
    # =========================================================================

    def insert_history(self, tx: TransactionContext, history: NoteHistory) -> None:
        self.gateway.insert(tx, notes_history_table, history.model_dump())

    def get_history(self, tx: TransactionContext, note_history_id: str) -> NoteHistory:
        """Get a snapshot, raising HistoryNotFoundError if it does not exist."""
        row = self.gateway.get_single_result(
            tx,
            select(notes_history_table).where(
                notes_history_table.c.note_history_id == note_history_id
            ),
        )
        if row is None:
            raise HistoryNotFoundError(note_history_id)
        return NoteHistory.from_row(row)

    def has_history_since(
        self, tx: TransactionContext, note_id: str, cutoff: datetime.datetime
    ) -> bool:
        """Whether a snapshot for the note ends at or after cutoff."""
        history_id = self.gateway.get_single_value(
            tx,
            select(notes_history_table.c.note_history_id).where(
                and_(
                    notes_history_table.c.note_id == note_id,
                    notes_history_table.c.date_modified_to >= cutoff,
                )
            ).limit(1),
        )
        return history_id is not None

    def history_with_protection_other_than(
        self, tx: TransactionContext, note_id: str, is_protected: bool
    ) -> List[NoteHistory]:
        rows = self.gateway.get_results(
            tx,
            select(notes_history_table)
            .where(
                and_(
                    notes_history_table.c.note_id == note_id,
                    notes_history_table.c.is_protected != is_protected,
                )
            )
            .order_by(notes_history_table.c.date_modified_from),
        )
        return [NoteHistory.from_row(row) for row in rows]

    def note_history(self, tx: TransactionContext, note_id: str) -> List[NoteHistory]:
        rows = self.gateway.get_results(
            tx,
            select(notes_history_table)
            .where(notes_history_table.c.note_id == note_id)
            .order_by(notes_history_table.c.date_modified_from),
        )
        return [NoteHistory.from_row(row) for row in rows]

    def update_history_content(
        self,
        tx: TransactionContext,
        note_history_id: str,
        note_title: str,
        note_text: str,
        is_protected: bool,
    ) -> None:
        self.gateway.execute(
            tx,
            update(notes_history_table)
            .where(notes_history_table.c.note_history_id == note_history_id)
            .values(note_title=note_title, note_text=note_text, is_protected=is_protected),
        )
