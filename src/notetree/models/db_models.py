"""SQLAlchemy database models for the note tree core."""
import datetime

from sqlalchemy import (Boolean, Column, DateTime, Index, Integer, String,
                        Text, create_engine, event)
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from notetree.config import config

# Create base class for SQLAlchemy models
Base = declarative_base()


class DBNote(Base):
    """Database model for a note.

    Title and text hold ciphertext when is_protected is set, plaintext otherwise.
    """
    __tablename__ = "notes"
    note_id = Column(String(64), primary_key=True)
    note_title = Column(Text, nullable=False, default="")
    note_text = Column(Text, nullable=False, default="")
    is_protected = Column(Boolean, nullable=False, default=False)
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    date_created = Column(DateTime, default=datetime.datetime.now, nullable=False)
    date_modified = Column(DateTime, default=datetime.datetime.now, nullable=False)

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(note_id='{self.note_id}', protected={self.is_protected})>"


class DBNoteTree(Base):
    """Database model for one placement of a note under a parent."""
    __tablename__ = "notes_tree"
    note_tree_id = Column(String(64), primary_key=True)
    note_id = Column(String(64), nullable=False, index=True)
    parent_note_id = Column(String(64), nullable=False, index=True)
    note_position = Column(Integer, nullable=False)
    is_expanded = Column(Boolean, nullable=False, default=False)
    is_deleted = Column(Boolean, nullable=False, default=False)
    date_modified = Column(DateTime, default=datetime.datetime.now, nullable=False)

    __table_args__ = (
        Index("ix_notes_tree_parent_live", "parent_note_id", "is_deleted"),
    )

    def __repr__(self) -> str:
        """Return string representation of placement."""
        return (
            f"<NoteTree(note_tree_id='{self.note_tree_id}', note='{self.note_id}', "
            f"parent='{self.parent_note_id}', position={self.note_position})>"
        )


class DBNoteHistory(Base):
    """Database model for a history snapshot covering [from, to)."""
    __tablename__ = "notes_history"
    note_history_id = Column(String(64), primary_key=True)
    note_id = Column(String(64), nullable=False, index=True)
    note_title = Column(Text, nullable=False, default="")
    note_text = Column(Text, nullable=False, default="")
    is_protected = Column(Boolean, nullable=False, default=False)
    date_modified_from = Column(DateTime, nullable=False)
    date_modified_to = Column(DateTime, nullable=False, index=True)

    def __repr__(self) -> str:
        """Return string representation of history snapshot."""
        return (
            f"<NoteHistory(note_history_id='{self.note_history_id}', "
            f"note='{self.note_id}')>"
        )


class DBOption(Base):
    """Database model for a key-value option."""
    __tablename__ = "options"
    opt_name = Column(String(255), primary_key=True)
    opt_value = Column(Text, nullable=True)
    date_modified = Column(DateTime, default=datetime.datetime.now, nullable=False)

    def __repr__(self) -> str:
        """Return string representation of option."""
        return f"<Option(name='{self.opt_name}', value='{self.opt_value}')>"


class DBSync(Base):
    """Database model for a change log entry consumed by replica sync."""
    __tablename__ = "sync"
    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_name = Column(String(50), nullable=False)
    entity_id = Column(String(64), nullable=False)
    source_id = Column(String(64), nullable=False)
    sync_date = Column(DateTime, default=datetime.datetime.now, nullable=False)

    __table_args__ = (
        Index("ix_sync_entity", "entity_name", "entity_id"),
    )

    def __repr__(self) -> str:
        """Return string representation of sync entry."""
        return (
            f"<Sync(id={self.id}, entity='{self.entity_name}:{self.entity_id}', "
            f"source='{self.source_id}')>"
        )


notes_table = DBNote.__table__
notes_tree_table = DBNoteTree.__table__
notes_history_table = DBNoteHistory.__table__
options_table = DBOption.__table__
sync_table = DBSync.__table__


def create_db_engine(in_memory: bool = False):
    """Create an engine with hardened configuration.

    File databases use WAL journaling and a small QueuePool; an in-memory
    database is bound to a single shared connection so every session sees
    the same data.
    """
    if in_memory:
        return create_engine(
            "sqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    # SQLite is single-writer, so a small pool is ideal
    engine = create_engine(
        config.get_db_url(),
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        # WAL mode: writes go to separate journal, preventing corruption on crash
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    return engine


def init_db(in_memory: bool = None):
    """Create the engine and all tables.

    Default options are seeded separately by OptionRepository so that
    callers who bring their own engine get the same defaults.
    """
    if in_memory is None:
        in_memory = config.in_memory_db
    engine = create_db_engine(in_memory=in_memory)
    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine=None):
    """Get a session factory for the database."""
    if engine is None:
        engine = create_engine(config.get_db_url())
    return sessionmaker(bind=engine)
