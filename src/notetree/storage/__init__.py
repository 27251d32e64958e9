"""Storage layer for the note tree core."""

from notetree.storage.gateway import SqlGateway, TransactionContext
from notetree.storage.note_repository import NoteRepository
from notetree.storage.option_repository import OptionRepository
from notetree.storage.sync_log import SyncLog

__all__ = [
    "SqlGateway",
    "TransactionContext",
    "NoteRepository",
    "OptionRepository",
    "SyncLog",
]
