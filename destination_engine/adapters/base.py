"""
Capability interface every destination adapter implements.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from destination_engine.schema.conditions import DeleteConditions
from destination_engine.schema.table import Table


@dataclass
class EventContext:
    """One processed (flattened, typed) event and the table it goes to."""

    table: Table
    processed_event: Dict[str, Any] = field(default_factory=dict)
    event_id: str = ""


class SQLAdapter(ABC):
    """Abstract relational destination adapter."""

    @abstractmethod
    def get_table_schema(self, table_name: str) -> Table:
        """
        Read the live schema of a table.

        Returns:
            The table, or an empty Table (``exists() is False``) if it is absent
        """
        ...

    @abstractmethod
    def create_table(self, table: Table) -> None:
        ...

    @abstractmethod
    def patch_table_schema(self, patch: Table) -> None:
        """Add the patch columns and apply its primary key transition."""
        ...

    @abstractmethod
    def insert(self, event_context: EventContext) -> None:
        """Write one row: plain insert, or single-row upsert if the table has a primary key."""
        ...

    @abstractmethod
    def update(self, table: Table, row: Dict[str, Any], where_key: str, where_value: Any) -> None:
        """Update the rows whose where_key column equals where_value."""
        ...

    @abstractmethod
    def bulk_insert(self, table: Table, rows: List[Dict[str, Any]]) -> None:
        ...

    @abstractmethod
    def bulk_update(
        self,
        table: Table,
        rows: List[Dict[str, Any]],
        delete_conditions: Optional[DeleteConditions] = None,
    ) -> None:
        """Delete rows matching the conditions, then write the batch, in one transaction."""
        ...

    @abstractmethod
    def truncate(self, table_name: str) -> None:
        """
        Remove all rows.

        Raises:
            TableNotExistError: if the table does not exist
        """
        ...

    @abstractmethod
    def close(self) -> None:
        """Release the connection pool."""
        ...
