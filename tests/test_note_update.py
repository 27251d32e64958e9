"""Tests for note updates and history snapshotting."""

import datetime

import pytest

from notetree.config import HISTORY_SNAPSHOT_INTERVAL_OPTION
from notetree.exceptions import (
    ConfigurationError,
    CryptoError,
    ErrorCode,
    HistoryNotFoundError,
    InvalidArgumentError,
    NoteNotFoundError,
)
from notetree.models.schema import EntityKind, NoteContent, NoteDraft
from notetree.services.note_service import NoteService, decrypt_fields
from tests.conftest import DATA_KEY, OTHER_KEY, SNAPSHOT_INTERVAL, SOURCE_ID
from tests.fakes import FakeClock


@pytest.fixture
def note_id(note_service):
    created = note_service.create_note(
        "root", NoteDraft(note_title="Original", target="into"), SOURCE_ID
    )
    return created.note_id


def _content(title: str, text: str = "", protected: bool = False) -> NoteContent:
    return NoteContent(note_title=title, note_text=text, is_protected=protected)


class TestUpdateContent:
    """Tests for the note row written by an update."""

    def test_content_replaced_and_modified_bumped(self, note_service, note_id, clock):
        clock.advance(30)

        result = note_service.update_note(note_id, _content("New", "Body"), None, SOURCE_ID)

        note = note_service.get_note(note_id)
        assert result.note_id == note_id
        assert note.note_title == "New"
        assert note.note_text == "Body"
        assert note.date_modified == clock.now
        assert note.date_created < clock.now

    def test_update_logs_note_change(self, note_service, sync_log, note_id):
        before = sync_log.count_entries(EntityKind.NOTE, note_id)

        note_service.update_note(note_id, _content("New"), None, SOURCE_ID)

        assert sync_log.count_entries(EntityKind.NOTE, note_id) == before + 1

    def test_protected_update_stores_ciphertext(self, note_service, note_id):
        note_service.update_note(note_id, _content("Secret", "Body", True), DATA_KEY, SOURCE_ID)

        stored = note_service.get_note(note_id)
        assert stored.is_protected is True
        assert stored.note_title != "Secret"
        assert stored.note_text != "Body"

        decrypted = note_service.get_note(note_id, data_key=DATA_KEY)
        assert (decrypted.note_title, decrypted.note_text) == ("Secret", "Body")

    def test_protected_update_needs_key(self, note_service, note_id):
        with pytest.raises(InvalidArgumentError):
            note_service.update_note(note_id, _content("Secret", "", True), None, SOURCE_ID)

    def test_missing_note(self, note_service):
        with pytest.raises(NoteNotFoundError) as exc_info:
            note_service.update_note("missing", _content("X"), None, SOURCE_ID)
        assert exc_info.value.note_id == "missing"


class TestSnapshotPolicy:
    """Tests for when a history snapshot is taken."""

    def test_young_note_is_not_snapshotted(self, note_service, note_id, clock):
        clock.advance(SNAPSHOT_INTERVAL - 1)

        result = note_service.update_note(note_id, _content("New"), None, SOURCE_ID)

        assert result.note_history_id is None
        assert note_service.get_note_history(note_id) == []

    def test_snapshot_holds_previous_content(self, note_service, note_id, clock):
        created_at = clock.now
        clock.advance(SNAPSHOT_INTERVAL)

        result = note_service.update_note(note_id, _content("New", "Body"), None, SOURCE_ID)

        history = note_service.get_note_history(note_id)
        assert [h.note_history_id for h in history] == [result.note_history_id]
        snapshot = history[0]
        assert snapshot.note_title == "Original"
        assert snapshot.note_text == ""
        assert snapshot.is_protected is False
        assert snapshot.date_modified_from == created_at
        assert snapshot.date_modified_to == clock.now

    def test_snapshot_logged(self, note_service, sync_log, note_id, clock):
        clock.advance(SNAPSHOT_INTERVAL)

        result = note_service.update_note(note_id, _content("New"), None, SOURCE_ID)

        assert sync_log.count_entries(EntityKind.NOTE_HISTORY, result.note_history_id) == 1

    def test_updates_within_interval_make_one_snapshot(self, note_service, note_id, clock):
        clock.advance(SNAPSHOT_INTERVAL)
        note_service.update_note(note_id, _content("v1"), None, SOURCE_ID)
        clock.advance(SNAPSHOT_INTERVAL / 2)
        second = note_service.update_note(note_id, _content("v2"), None, SOURCE_ID)

        assert second.note_history_id is None
        assert len(note_service.get_note_history(note_id)) == 1

    def test_snapshot_after_interval_elapses(self, note_service, note_id, clock):
        clock.advance(SNAPSHOT_INTERVAL)
        note_service.update_note(note_id, _content("v1"), None, SOURCE_ID)
        clock.advance(10)
        note_service.update_note(note_id, _content("v2"), None, SOURCE_ID)
        clock.advance(SNAPSHOT_INTERVAL + 1)
        note_service.update_note(note_id, _content("v3"), None, SOURCE_ID)

        history = note_service.get_note_history(note_id)
        assert [h.note_title for h in history] == ["Original", "v2"]

    def test_snapshot_intervals_do_not_overlap(self, note_service, note_id, clock):
        for step in range(4):
            clock.advance(SNAPSHOT_INTERVAL + 1)
            note_service.update_note(note_id, _content(f"v{step}"), None, SOURCE_ID)

        history = note_service.get_note_history(note_id)
        assert len(history) == 4
        for earlier, later in zip(history, history[1:]):
            assert earlier.date_modified_from < earlier.date_modified_to
            assert earlier.date_modified_to <= later.date_modified_from

    def test_interval_read_from_option_store(self, note_service, options, note_id, clock):
        options.set_option(HISTORY_SNAPSHOT_INTERVAL_OPTION, "5")
        clock.advance(5)

        result = note_service.update_note(note_id, _content("New"), None, SOURCE_ID)

        assert result.note_history_id is not None

    def test_malformed_interval(self, note_service, options, note_id):
        options.set_option(HISTORY_SNAPSHOT_INTERVAL_OPTION, "ten minutes")

        with pytest.raises(ConfigurationError) as exc_info:
            note_service.update_note(note_id, _content("New"), None, SOURCE_ID)

        assert isinstance(exc_info.value, InvalidArgumentError)
        assert exc_info.value.code == ErrorCode.CONFIG_INVALID
        assert note_service.get_note(note_id).note_title == "Original"


class TestSnapshotProtection:
    """Tests for snapshots of protected notes and history alignment."""

    def test_protected_note_snapshot_is_reencrypted(self, note_service, note_id, clock):
        note_service.update_note(note_id, _content("Secret", "S1", True), DATA_KEY, SOURCE_ID)
        clock.advance(SNAPSHOT_INTERVAL)

        result = note_service.update_note(
            note_id, _content("Secret 2", "S2", True), DATA_KEY, SOURCE_ID
        )

        history = note_service.get_note_history(note_id)
        assert len(history) == 1
        snapshot = history[0]
        assert snapshot.is_protected is True
        assert snapshot.note_title != "Secret"
        assert result.realigned_history_ids == [snapshot.note_history_id]

        # Still readable through the history id's own IVs
        assert decrypt_fields(
            DATA_KEY, snapshot.note_history_id, snapshot.note_title, snapshot.note_text
        ) == ("Secret", "S1")

    def test_unprotecting_update_decrypts_history(self, note_service, note_id, clock):
        note_service.update_note(note_id, _content("Secret", "S1", True), DATA_KEY, SOURCE_ID)
        clock.advance(SNAPSHOT_INTERVAL)
        note_service.update_note(note_id, _content("Secret 2", "S2", True), DATA_KEY, SOURCE_ID)
        clock.advance(10)

        note_service.update_note(note_id, _content("Open", "O", False), DATA_KEY, SOURCE_ID)

        note = note_service.get_note(note_id)
        assert (note.note_title, note.is_protected) == ("Open", False)
        history = note_service.get_note_history(note_id)
        assert [(h.note_title, h.note_text, h.is_protected) for h in history] == [
            ("Secret", "S1", False)
        ]

    def test_history_matches_note_after_update(self, note_service, note_id, clock):
        for protected in (False, True, True, False, True):
            clock.advance(SNAPSHOT_INTERVAL)
            note_service.update_note(
                note_id, _content("t", "b", protected), DATA_KEY, SOURCE_ID
            )
            note = note_service.get_note(note_id)
            assert all(
                h.is_protected == note.is_protected
                for h in note_service.get_note_history(note_id)
            )

    def test_wrong_key_rolls_back(self, note_service, sync_log, note_id, clock):
        note_service.update_note(note_id, _content("Secret", "S1", True), DATA_KEY, SOURCE_ID)
        stored = note_service.get_note(note_id)
        entries_before = sync_log.count_entries()
        clock.advance(SNAPSHOT_INTERVAL)

        with pytest.raises(CryptoError) as exc_info:
            note_service.update_note(note_id, _content("X", "Y", True), OTHER_KEY, SOURCE_ID)

        assert exc_info.value.entity_id == note_id
        assert note_service.get_note(note_id) == stored
        assert note_service.get_note_history(note_id) == []
        assert sync_log.count_entries() == entries_before


class TestClockOffsets:
    """A clock that reports a non-UTC offset."""

    @pytest.fixture
    def offset_clock(self):
        return FakeClock(
            datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone(datetime.timedelta(hours=2)))
        )

    @pytest.fixture
    def offset_service(self, gateway, sync_log, options, offset_clock):
        return NoteService(gateway=gateway, sync_log=sync_log, options=options, clock=offset_clock)

    def test_timestamps_stored_as_same_instant(self, offset_service, offset_clock):
        created = offset_service.create_note(
            "root", NoteDraft(note_title="Original", target="into"), SOURCE_ID
        )

        note = offset_service.get_note(created.note_id)
        assert note.date_created == offset_clock.now
        assert note.date_created.utcoffset() == datetime.timedelta(0)
        assert note.date_created.hour == 10

    def test_snapshot_taken_once_interval_passed(self, offset_service, offset_clock):
        created = offset_service.create_note(
            "root", NoteDraft(note_title="Original", target="into"), SOURCE_ID
        )
        offset_clock.advance(SNAPSHOT_INTERVAL + 100)

        result = offset_service.update_note(created.note_id, _content("New"), None, SOURCE_ID)

        assert result.note_history_id is not None
        snapshot = offset_service.get_note_history(created.note_id)[0]
        assert snapshot.date_modified_to == offset_clock.now
        assert snapshot.date_modified_from < snapshot.date_modified_to

    def test_young_note_still_skipped(self, offset_service, offset_clock):
        created = offset_service.create_note(
            "root", NoteDraft(note_title="Original", target="into"), SOURCE_ID
        )
        offset_clock.advance(SNAPSHOT_INTERVAL - 1)

        result = offset_service.update_note(created.note_id, _content("New"), None, SOURCE_ID)

        assert result.note_history_id is None


class TestHistoryEntry:
    """Reading single snapshots."""

    def test_missing_snapshot(self, note_service):
        with pytest.raises(HistoryNotFoundError) as exc_info:
            note_service.get_history_entry("missing")
        assert exc_info.value.code == ErrorCode.HISTORY_NOT_FOUND
        assert exc_info.value.note_history_id == "missing"

    def test_protected_snapshot_view(self, note_service, note_id, clock):
        note_service.update_note(note_id, _content("Secret", "S1", True), DATA_KEY, SOURCE_ID)
        clock.advance(SNAPSHOT_INTERVAL)
        result = note_service.update_note(
            note_id, _content("Secret 2", "S2", True), DATA_KEY, SOURCE_ID
        )

        stored = note_service.get_history_entry(result.note_history_id)
        view = note_service.get_history_entry(result.note_history_id, data_key=DATA_KEY)

        assert stored.is_protected is True
        assert stored.note_title != "Secret"
        assert (view.note_title, view.note_text, view.is_protected) == ("Secret", "S1", False)
