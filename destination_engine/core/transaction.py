"""
Transaction wrapper around a pooled DB-API connection.

A transaction is opened per logical operation (single insert, bulk insert,
bulk merge, DDL batch), used by one thread only and closed exactly once by
``commit``, ``direct_commit`` or ``rollback``. Closing returns the
connection to the pool.
"""

from typing import Any, Dict, List, Optional, Sequence, Union

import structlog

from destination_engine.core.exceptions import DatabaseException, StatementError

logger = structlog.get_logger(__name__)

Params = Union[Sequence[Any], Dict[str, Any], None]


class Transaction:
    """Uniform commit/rollback/logging around a native transaction."""

    def __init__(self, dialect: str, connection: Any):
        self.dialect = dialect
        self._conn = connection
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def execute(self, statement: str, params: Params = None) -> int:
        """
        Execute one statement.

        Args:
            statement: SQL text
            params: Bound values in the driver's paramstyle

        Returns:
            Number of affected rows as reported by the driver (-1 if unknown)
        """
        cursor = self._cursor(statement, params)
        try:
            self._run(cursor, statement, params)
            return cursor.rowcount
        finally:
            cursor.close()

    def query(self, statement: str, params: Params = None) -> List[Dict[str, Any]]:
        """Execute a query and fetch all rows as dicts keyed by lower-cased column name."""
        cursor = self._cursor(statement, params)
        try:
            self._run(cursor, statement, params)
            rows = cursor.fetchall()
            names = [column[0].lower() for column in (cursor.description or [])]
            return [dict(zip(names, row)) for row in rows]
        finally:
            cursor.close()

    def commit(self) -> None:
        """Best-effort commit: failures are logged, not raised."""
        if self._closed:
            logger.warning("Commit on closed transaction ignored", dialect=self.dialect)
            return
        try:
            self._conn.commit()
        except Exception as e:
            logger.error(
                "Unable to commit transaction", dialect=self.dialect, error=str(e)
            )
        finally:
            self._close()

    def direct_commit(self) -> None:
        """Commit and propagate any failure to the caller."""
        if self._closed:
            raise DatabaseException(
                "Transaction is already closed", {"dialect": self.dialect}
            )
        try:
            self._conn.commit()
        except Exception as e:
            raise DatabaseException(
                f"Commit failed: {e}", {"dialect": self.dialect}
            ) from e
        finally:
            self._close()

    def rollback(self) -> None:
        """Best-effort rollback: failures are logged, not raised."""
        if self._closed:
            return
        try:
            self._conn.rollback()
        except Exception as e:
            logger.error(
                "Unable to rollback transaction", dialect=self.dialect, error=str(e)
            )
        finally:
            self._close()

    def _cursor(self, statement: str, params: Params) -> Any:
        if self._closed:
            raise StatementError(
                "Transaction is already closed", statement, _values(params)
            )
        try:
            return self._conn.cursor()
        except Exception as e:
            raise StatementError(
                f"Failed to open cursor: {e}", statement, _values(params)
            ) from e

    @staticmethod
    def _run(cursor: Any, statement: str, params: Params) -> None:
        try:
            if params is None:
                cursor.execute(statement)
            else:
                cursor.execute(statement, params)
        except Exception as e:
            raise StatementError(
                f"Statement execution failed: {e}", statement, _values(params)
            ) from e

    def _close(self) -> None:
        self._closed = True
        try:
            self._conn.close()
        except Exception as e:
            logger.warning(
                "Error returning connection to pool", dialect=self.dialect, error=str(e)
            )


def _values(params: Params) -> List[Any]:
    if params is None:
        return []
    if isinstance(params, dict):
        return list(params.values())
    return list(params)
