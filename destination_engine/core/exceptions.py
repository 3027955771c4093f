"""
Custom exceptions for the destination engine.
"""

from typing import Any, Optional, Sequence

NOT_EXIST_MARKERS = ("not exist", "doesn't exist")


class EngineException(Exception):
    """Base exception for all destination engine errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class DatabaseException(EngineException):
    """Exception for database-related errors."""
    pass


class ConfigurationException(EngineException):
    """Exception for configuration-related errors."""
    pass


class StatementError(DatabaseException):
    """A DDL/DML statement failed. Carries the statement and its bound values."""

    def __init__(
        self,
        message: str,
        statement: str,
        values: Optional[Sequence[Any]] = None,
        details: dict | None = None,
    ):
        self.statement = statement
        self.values = list(values) if values is not None else []
        merged = {"statement": statement, "values": self.values}
        merged.update(details or {})
        super().__init__(message, merged)


class PrimaryKeyRecoveryError(StatementError):
    """Primary key creation failed again after the nullable column recovery."""

    def __init__(self, original: BaseException, retry: StatementError):
        self.original = original
        self.retry = retry
        super().__init__(
            f"Failed to create primary key after nullable column recovery: "
            f"{retry.message} (original error: {original})",
            retry.statement,
            retry.values,
            {"original_error": str(original), "retry_error": retry.message},
        )


class TableNotExistError(DatabaseException):
    """The target table does not exist."""

    def __init__(self, table: str = "", details: dict | None = None):
        merged = {"table": table}
        merged.update(details or {})
        super().__init__("table doesn't exist", merged)
        self.table = table


class UnsupportedOperationError(EngineException):
    """The destination does not support the requested operation."""

    def __init__(self, destination: str, operation: str):
        super().__init__(
            f"{destination} does not support {operation}",
            {"destination": destination, "operation": operation},
        )
        self.destination = destination
        self.operation = operation


def is_not_exist_error(exc: Optional[BaseException]) -> bool:
    """Check whether an error (or anything it was raised from) reports a missing table."""
    seen = set()
    while exc is not None and id(exc) not in seen:
        if isinstance(exc, TableNotExistError):
            return True
        text = str(exc).lower()
        if any(marker in text for marker in NOT_EXIST_MARKERS):
            return True
        seen.add(id(exc))
        exc = exc.__cause__ or exc.__context__
    return False
