"""Service layer for note lifecycle operations.

Creation, update with history snapshots, recursive protection and
reference-counted deletion. Each public operation is one transaction;
recursive steps receive the same TransactionContext and any error rolls
back everything written by the call.
"""

import datetime
import logging
from typing import Callable, List, Optional, Tuple

from notetree import crypto
from notetree.config import HISTORY_SNAPSHOT_INTERVAL_OPTION, config
from notetree.exceptions import (
    CryptoError,
    ErrorCode,
    InvalidArgumentError,
    StructuralError,
)
from notetree.models.schema import (
    CreatedNote,
    DeletionResult,
    InsertTarget,
    Note,
    NoteContent,
    NoteDraft,
    NoteHistory,
    NoteTree,
    ProtectionResult,
    UpdateResult,
)
from notetree.observability import traced
from notetree.storage.gateway import SqlGateway, TransactionContext
from notetree.storage.note_repository import NoteRepository
from notetree.storage.option_repository import OptionRepository
from notetree.storage.sync_log import SyncLog
from notetree.utils import (
    new_note_history_id,
    new_note_id,
    new_note_tree_id,
    to_utc,
    utc_now,
)

logger = logging.getLogger(__name__)

# Markers for the explicit traversal stack in protect_note_recursively
_ENTER = "enter"
_EXIT = "exit"


def _require_key(data_key: Optional[bytes], entity_id: str) -> bytes:
    if not data_key:
        raise InvalidArgumentError(
            f"A data key is required to change protection of '{entity_id}'",
            field="data_key",
        )
    return data_key


def encrypt_fields(
    data_key: Optional[bytes], entity_id: str, title: str, text: str
) -> Tuple[str, str]:
    """Encrypt title and text with IVs derived from entity_id."""
    key = _require_key(data_key, entity_id)
    return (
        crypto.encrypt(key, crypto.note_title_iv(entity_id), title),
        crypto.encrypt(key, crypto.note_text_iv(entity_id), text),
    )


def decrypt_fields(
    data_key: Optional[bytes], entity_id: str, title: str, text: str
) -> Tuple[str, str]:
    """Decrypt title and text, tagging failures with the entity and field."""
    key = _require_key(data_key, entity_id)
    try:
        plain_title = crypto.decrypt_string(key, crypto.note_title_iv(entity_id), title)
    except CryptoError as e:
        raise CryptoError(e.message, entity_id=entity_id, field="title", code=e.code) from e
    try:
        plain_text = crypto.decrypt_string(key, crypto.note_text_iv(entity_id), text)
    except CryptoError as e:
        raise CryptoError(e.message, entity_id=entity_id, field="text", code=e.code) from e
    return plain_title, plain_text


class NoteService:
    """Orchestrates note creation, update, protection and deletion."""

    def __init__(
        self,
        gateway: Optional[SqlGateway] = None,
        sync_log: Optional[SyncLog] = None,
        options: Optional[OptionRepository] = None,
        clock: Optional[Callable[[], datetime.datetime]] = None,
    ):
        """Initialize the service.

        Args:
            gateway: Persistence gateway. Created from config if None.
            sync_log: Change log recorder. Created on the gateway if None.
            options: Option store holding the snapshot interval.
            clock: Returns the current time; injectable for tests. Any
                offset is accepted, values are converted to UTC.
        """
        self.gateway = gateway or SqlGateway()
        self.repository = NoteRepository(self.gateway)
        self.sync_log = sync_log or SyncLog(self.gateway)
        self.options = options or OptionRepository(self.gateway)
        self._clock = clock or utc_now

    def _now(self) -> datetime.datetime:
        return to_utc(self._clock())

    # =========================================================================
    # Creation
    # =========================================================================

    @traced("create_note")
    def create_note(
        self,
        parent_note_id: str,
        draft: NoteDraft,
        source_id: str,
        data_key: Optional[bytes] = None,
    ) -> CreatedNote:
        """Create a note with an empty body and one placement under parent_note_id.

        Raises:
            InvalidArgumentError: Unknown target, reference placement under
                another parent, or a protected draft without a data key.
            PlacementNotFoundError: The 'after' reference does not exist.
        """
        try:
            target = InsertTarget(draft.target)
        except ValueError as e:
            raise InvalidArgumentError(
                f"Unknown target: {draft.target}",
                field="target",
                value=draft.target,
                code=ErrorCode.INVALID_TARGET,
            ) from e

        note_id = new_note_id()
        note_tree_id = new_note_tree_id()

        note_title, note_text = draft.note_title, ""
        if draft.is_protected:
            note_title, note_text = encrypt_fields(data_key, note_id, note_title, note_text)

        with self.gateway.transaction() as tx:
            if target is InsertTarget.INTO:
                max_position = self.repository.max_child_position(tx, parent_note_id)
                position = 0 if max_position is None else max_position + 1
            else:
                if not draft.target_note_tree_id:
                    raise InvalidArgumentError(
                        "Target 'after' needs target_note_tree_id",
                        field="target_note_tree_id",
                    )
                after = self.repository.get_placement(tx, draft.target_note_tree_id)
                if after.parent_note_id != parent_note_id:
                    raise InvalidArgumentError(
                        f"Placement '{after.note_tree_id}' is not under '{parent_note_id}'",
                        field="target_note_tree_id",
                        value=after.note_tree_id,
                    )
                position = after.note_position + 1
                self.repository.shift_positions_after(tx, parent_note_id, after.note_position)
                self.sync_log.add_note_reordering_sync(tx, parent_note_id, source_id)

            now = self._now()
            self.repository.insert_note(tx, Note(
                note_id=note_id,
                note_title=note_title,
                note_text=note_text,
                is_protected=draft.is_protected,
                date_created=now,
                date_modified=now,
            ))
            self.sync_log.add_note_sync(tx, note_id, source_id)

            self.repository.insert_placement(tx, NoteTree(
                note_tree_id=note_tree_id,
                note_id=note_id,
                parent_note_id=parent_note_id,
                note_position=position,
                is_expanded=False,
                date_modified=now,
            ))
            self.sync_log.add_note_tree_sync(tx, note_tree_id, source_id)

        logger.info(f"Created note {note_id} under {parent_note_id} at position {position}")
        return CreatedNote(note_id=note_id, note_tree_id=note_tree_id)

    # =========================================================================
    # Update with history snapshots
    # =========================================================================

    @traced("update_note")
    def update_note(
        self,
        note_id: str,
        content: NoteContent,
        data_key: Optional[bytes],
        source_id: str,
    ) -> UpdateResult:
        """Replace a note's content, snapshotting the previous version when due.

        A snapshot of the pre-update content is taken unless one already
        ends inside the last interval, or the note is younger than one
        interval. History is then brought to the new protection state.

        Raises:
            ConfigurationError: The snapshot interval option is missing or malformed.
            NoteNotFoundError: No such note.
            CryptoError: The data key does not decrypt existing content.
        """
        note_title, note_text = content.note_title, content.note_text
        if content.is_protected:
            note_title, note_text = encrypt_fields(data_key, note_id, note_title, note_text)

        interval = datetime.timedelta(
            seconds=self.options.get_option_int(HISTORY_SNAPSHOT_INTERVAL_OPTION)
        )
        now = self._now()
        cutoff = now - interval

        result = UpdateResult(note_id=note_id)
        with self.gateway.transaction() as tx:
            old_note = self.repository.get_note(tx, note_id)

            if (
                not self.repository.has_history_since(tx, note_id, cutoff)
                and now - old_note.date_created >= interval
            ):
                result.note_history_id = self._snapshot(tx, old_note, data_key, now, source_id)

            result.realigned_history_ids = self._protect_note_history(
                tx, note_id, data_key, content.is_protected, source_id
            )

            self.repository.update_note_content(
                tx, note_id, note_title, note_text, content.is_protected, date_modified=now
            )
            self.sync_log.add_note_sync(tx, note_id, source_id)

        return result

    def _snapshot(
        self,
        tx: TransactionContext,
        old_note: Note,
        data_key: Optional[bytes],
        now: datetime.datetime,
        source_id: str,
    ) -> str:
        """Store the note's current content as a plaintext snapshot.

        The snapshot starts unprotected; the history alignment that follows
        in the same transaction encrypts it if the note ends up protected.
        """
        title, text = old_note.note_title, old_note.note_text
        if old_note.is_protected:
            title, text = decrypt_fields(data_key, old_note.note_id, title, text)

        note_history_id = new_note_history_id()
        self.repository.insert_history(tx, NoteHistory(
            note_history_id=note_history_id,
            note_id=old_note.note_id,
            note_title=title,
            note_text=text,
            is_protected=False,
            date_modified_from=old_note.date_modified,
            date_modified_to=now,
        ))
        self.sync_log.add_note_history_sync(tx, note_history_id, source_id)
        logger.debug(f"Snapshot {note_history_id} taken for note {old_note.note_id}")
        return note_history_id

    # =========================================================================
    # Protection
    # =========================================================================

    @traced("protect_note")
    def protect_note(
        self, note_id: str, data_key: Optional[bytes], protect: bool, source_id: str
    ) -> ProtectionResult:
        """Protect or unprotect a single note and its history."""
        with self.gateway.transaction() as tx:
            note = self.repository.get_note(tx, note_id)
            return self._protect_note(tx, note, data_key, protect, source_id)

    @traced("protect_note_history")
    def protect_note_history(
        self, note_id: str, data_key: Optional[bytes], protect: bool, source_id: str
    ) -> List[str]:
        """Bring every history snapshot of a note to the given protection state."""
        with self.gateway.transaction() as tx:
            return self._protect_note_history(tx, note_id, data_key, protect, source_id)

    @traced("protect_note_recursively")
    def protect_note_recursively(
        self, note_id: str, data_key: Optional[bytes], protect: bool, source_id: str
    ) -> ProtectionResult:
        """Protect or unprotect a note and every note below it.

        Children are found through all placements under a note, deleted
        ones included. The walk uses an explicit stack; a note reached again
        while it is still on the current path is a cycle. A note shared by
        several parents is processed once.

        Raises:
            StructuralError: The placements form a cycle.
            NoteNotFoundError: A note in the subtree is missing.
            CryptoError: The data key does not decrypt a protected row.
        """
        result = ProtectionResult()
        with self.gateway.transaction() as tx:
            on_path: List[str] = []
            done = set()
            stack = [(_ENTER, note_id)]
            while stack:
                action, current_id = stack.pop()
                if action == _EXIT:
                    on_path.pop()
                    done.add(current_id)
                    continue
                if current_id in on_path:
                    raise StructuralError(
                        f"Cycle detected at note '{current_id}'",
                        note_id=current_id,
                        path=on_path + [current_id],
                    )
                if current_id in done:
                    continue

                note = self.repository.get_note(tx, current_id)
                result.merge(self._protect_note(tx, note, data_key, protect, source_id))

                on_path.append(current_id)
                stack.append((_EXIT, current_id))
                children = self.repository.child_note_ids(tx, current_id)
                stack.extend((_ENTER, child_id) for child_id in reversed(children))

        logger.info(
            f"{'Protected' if protect else 'Unprotected'} subtree of {note_id}: "
            f"{len(result.changed_note_ids)} notes, "
            f"{len(result.changed_history_ids)} history rows changed"
        )
        return result

    # Name used by callers that think in terms of toggling a subtree
    toggle_protection_recursive = protect_note_recursively

    def _protect_note(
        self,
        tx: TransactionContext,
        note: Note,
        data_key: Optional[bytes],
        protect: bool,
        source_id: str,
    ) -> ProtectionResult:
        result = ProtectionResult()
        changed = False

        if protect and not note.is_protected:
            note.note_title, note.note_text = encrypt_fields(
                data_key, note.note_id, note.note_title, note.note_text
            )
            changed = True
        elif not protect and note.is_protected:
            note.note_title, note.note_text = decrypt_fields(
                data_key, note.note_id, note.note_title, note.note_text
            )
            changed = True

        if changed:
            note.is_protected = protect
            self.repository.update_note_content(
                tx, note.note_id, note.note_title, note.note_text, note.is_protected
            )
            self.sync_log.add_note_sync(tx, note.note_id, source_id)
            result.changed_note_ids.append(note.note_id)

        # History follows the target state even when the note was already there
        result.changed_history_ids = self._protect_note_history(
            tx, note.note_id, data_key, protect, source_id
        )
        return result

    def _protect_note_history(
        self,
        tx: TransactionContext,
        note_id: str,
        data_key: Optional[bytes],
        protect: bool,
        source_id: str,
    ) -> List[str]:
        changed_ids = []
        for history in self.repository.history_with_protection_other_than(tx, note_id, protect):
            if protect:
                title, text = encrypt_fields(
                    data_key, history.note_history_id, history.note_title, history.note_text
                )
            else:
                title, text = decrypt_fields(
                    data_key, history.note_history_id, history.note_title, history.note_text
                )
            self.repository.update_history_content(
                tx, history.note_history_id, title, text, protect
            )
            self.sync_log.add_note_history_sync(tx, history.note_history_id, source_id)
            changed_ids.append(history.note_history_id)
        return changed_ids

    # =========================================================================
    # Deletion
    # =========================================================================

    @traced("delete_note")
    def delete_note(self, note_tree_id: str, source_id: str) -> DeletionResult:
        """Soft-delete a placement and cascade into notes left without placements.

        A note is deleted only when its last live placement goes; only then
        are the placements under it deleted, by the same rule.

        Raises:
            PlacementNotFoundError: No such placement.
        """
        result = DeletionResult()
        now = self._now()
        with self.gateway.transaction() as tx:
            deleted_placements = set()
            deleted_notes = set()
            pending = [note_tree_id]
            while pending:
                current_tree_id = pending.pop()
                if current_tree_id in deleted_placements:
                    continue

                placement = self.repository.get_placement(tx, current_tree_id)
                self.repository.mark_placement_deleted(tx, current_tree_id, now)
                self.sync_log.add_note_tree_sync(tx, current_tree_id, source_id)
                deleted_placements.add(current_tree_id)
                result.deleted_note_tree_ids.append(current_tree_id)

                note_id = placement.note_id
                if note_id in deleted_notes:
                    continue
                if self.repository.count_live_placements(tx, note_id):
                    continue

                self.repository.mark_note_deleted(tx, note_id, now)
                self.sync_log.add_note_sync(tx, note_id, source_id)
                deleted_notes.add(note_id)
                result.deleted_note_ids.append(note_id)

                children = self.repository.live_child_placement_ids(tx, note_id)
                pending.extend(reversed(children))

        logger.info(
            f"Deleted placement {note_tree_id}: {len(result.deleted_note_tree_ids)} "
            f"placements and {len(result.deleted_note_ids)} notes"
        )
        return result

    # Name used by callers that think in terms of placements
    delete_placement = delete_note

    # =========================================================================
    # Reads
    # =========================================================================

    def get_note(self, note_id: str, data_key: Optional[bytes] = None) -> Note:
        """Get a note as stored.

        With a data key, a protected note comes back as a plaintext copy
        whose is_protected is False, so the flag always describes the
        encoding of the fields it travels with.
        """
        with self.gateway.transaction() as tx:
            note = self.repository.get_note(tx, note_id)
        if data_key and note.is_protected:
            title, text = decrypt_fields(data_key, note.note_id, note.note_title, note.note_text)
            return note.model_copy(
                update={"note_title": title, "note_text": text, "is_protected": False}
            )
        return note

    def get_placement(self, note_tree_id: str) -> NoteTree:
        with self.gateway.transaction() as tx:
            return self.repository.get_placement(tx, note_tree_id)

    def get_child_placements(self, parent_note_id: Optional[str] = None) -> List[NoteTree]:
        """Live placements under a parent (the root by default), by position."""
        parent_note_id = parent_note_id or config.root_note_id
        with self.gateway.transaction() as tx:
            return self.repository.live_child_placements(tx, parent_note_id)

    def get_note_placements(self, note_id: str) -> List[NoteTree]:
        """All placements of a note, deleted ones included."""
        with self.gateway.transaction() as tx:
            return self.repository.placements_of_note(tx, note_id)

    def get_note_history(self, note_id: str) -> List[NoteHistory]:
        """History snapshots of a note, oldest first, as stored."""
        with self.gateway.transaction() as tx:
            return self.repository.note_history(tx, note_id)

    def get_history_entry(
        self, note_history_id: str, data_key: Optional[bytes] = None
    ) -> NoteHistory:
        """Get one history snapshot; decrypted like get_note when a key is given.

        Raises:
            HistoryNotFoundError: No such snapshot.
        """
        with self.gateway.transaction() as tx:
            history = self.repository.get_history(tx, note_history_id)
        if data_key and history.is_protected:
            title, text = decrypt_fields(
                data_key, history.note_history_id, history.note_title, history.note_text
            )
            return history.model_copy(
                update={"note_title": title, "note_text": text, "is_protected": False}
            )
        return history
