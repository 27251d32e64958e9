"""Transactional persistence primitives over a SQLAlchemy engine.

The transaction is not ambient: transaction() yields a TransactionContext
which every primitive takes as its first argument, and which services pass
down through recursive traversals so all writes share one boundary.
"""

import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, TypeVar

from sqlalchemy import Table
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from notetree.exceptions import ErrorCode, StorageError
from notetree.models.db_models import get_session_factory, init_db

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransactionContext:
    """Handle for one open transaction; wraps a single Session."""

    def __init__(self, session: Session):
        self.session = session
        self.statement_count = 0

    def __repr__(self) -> str:
        return f"<TransactionContext(statements={self.statement_count})>"


class SqlGateway:
    """Execute/insert/query primitives with all-or-nothing transactions."""

    def __init__(self, engine=None):
        """Initialize the gateway.

        Args:
            engine: SQLAlchemy engine. If None, uses default from config.
        """
        self.engine = engine if engine is not None else init_db()
        self.session_factory = get_session_factory(self.engine)

    @contextmanager
    def transaction(self) -> Iterator[TransactionContext]:
        """Open a transaction; commit on success, roll back on any error.

        SQLAlchemy errors are re-raised as StorageError, everything else
        propagates unchanged.
        """
        session = self.session_factory()
        tx = TransactionContext(session)
        try:
            yield tx
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Transaction rolled back after storage failure: {e}")
            raise StorageError(
                "Transaction failed",
                operation="commit",
                code=ErrorCode.TRANSACTION_FAILED,
                original_error=e,
            ) from e
        except Exception as e:
            session.rollback()
            logger.debug(
                f"Transaction rolled back after {tx.statement_count} statements: "
                f"{type(e).__name__}"
            )
            raise
        finally:
            session.close()

    def do_in_transaction(self, fn: Callable[[TransactionContext], T]) -> T:
        """Run fn(tx) inside a fresh transaction and return its result."""
        with self.transaction() as tx:
            return fn(tx)

    def _run(self, tx: TransactionContext, stmt: Any, operation: str, code: ErrorCode):
        try:
            result = tx.session.execute(stmt)
        except SQLAlchemyError as e:
            raise StorageError(
                f"Statement failed during {operation}",
                operation=operation,
                code=code,
                original_error=e,
            ) from e
        tx.statement_count += 1
        return result

    def execute(self, tx: TransactionContext, stmt: Any) -> int:
        """Run a write statement and return the number of affected rows."""
        result = self._run(tx, stmt, "execute", ErrorCode.STORAGE_WRITE_FAILED)
        return result.rowcount

    def insert(self, tx: TransactionContext, table: Table, row: Dict[str, Any]) -> None:
        """Insert one row into a table."""
        self._run(tx, table.insert().values(**row), "insert", ErrorCode.STORAGE_WRITE_FAILED)

    def get_single_value(self, tx: TransactionContext, query: Any) -> Optional[Any]:
        """First column of the first row, or None when there are no rows."""
        result = self._run(tx, query, "get_single_value", ErrorCode.STORAGE_READ_FAILED)
        row = result.first()
        return None if row is None else row[0]

    def get_single_result(self, tx: TransactionContext, query: Any) -> Optional[Dict[str, Any]]:
        """First row as a dict, or None when there are no rows."""
        result = self._run(tx, query, "get_single_result", ErrorCode.STORAGE_READ_FAILED)
        row = result.mappings().first()
        return None if row is None else dict(row)

    def get_results(self, tx: TransactionContext, query: Any) -> List[Dict[str, Any]]:
        """All rows as dicts."""
        result = self._run(tx, query, "get_results", ErrorCode.STORAGE_READ_FAILED)
        return [dict(row) for row in result.mappings().all()]

    def get_flattened_results(self, tx: TransactionContext, query: Any) -> List[Any]:
        """First column of every row."""
        result = self._run(tx, query, "get_flattened_results", ErrorCode.STORAGE_READ_FAILED)
        return list(result.scalars().all())
