"""
Table and column model plus the schema diff algorithm.

A ``Table`` is both the live schema read from a destination and the schema
a batch requires. The result of ``Table.diff`` is also a ``Table``, read as
a patch: its columns are the columns to add and its primary key fields
describe a primary key transition.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

import structlog

logger = structlog.get_logger(__name__)


def build_constraint_name(schema: str, table_name: str) -> str:
    """Deterministic name of primary keys created by the engine."""
    return f"{schema}_{table_name}_pk"


@dataclass(frozen=True)
class SQLTypeOverride:
    """
    Per-field SQL type configured by the user.

    ``type`` is used as the cast type of placeholders, ``column_type`` in DDL.
    """

    type: str
    column_type: str = ""

    @property
    def ddl_type(self) -> str:
        return self.column_type or self.type


@dataclass(frozen=True)
class Column:
    """Physical SQL type of a column, with an optional placeholder cast type."""

    sql_type: str
    cast_type: Optional[str] = None


@dataclass
class Table:
    name: str
    schema: str = ""
    columns: Dict[str, Column] = field(default_factory=dict)
    pk_fields: Set[str] = field(default_factory=set)
    primary_key_name: str = ""
    delete_pk_fields: bool = False
    # False when the primary key was created outside of the engine
    pk_managed: bool = field(init=False, default=True)

    def __post_init__(self) -> None:
        self.pk_fields = set(self.pk_fields)
        self.pk_managed = (
            not self.primary_key_name
            or self.primary_key_name == self.constraint_name
        )

    @property
    def constraint_name(self) -> str:
        return build_constraint_name(self.schema, self.name)

    def exists(self) -> bool:
        return bool(self.columns) or bool(self.pk_fields) or self.delete_pk_fields

    def is_empty(self) -> bool:
        """True for a patch that neither adds columns nor changes the primary key."""
        return not self.exists()

    def sorted_column_names(self) -> List[str]:
        return sorted(self.columns)

    def sorted_pk_fields(self) -> List[str]:
        return sorted(self.pk_fields)

    def pk_constraint_name(self) -> str:
        return self.primary_key_name or self.constraint_name

    def copy(self) -> "Table":
        return Table(
            name=self.name,
            schema=self.schema,
            columns=dict(self.columns),
            pk_fields=set(self.pk_fields),
            primary_key_name=self.primary_key_name,
            delete_pk_fields=self.delete_pk_fields,
        )

    def diff(self, desired: "Table") -> "Table":
        """
        Compute the patch that brings this (live) table to the desired shape.

        Only columns missing from this table are reported. Column type changes
        are not detected. The primary key transition is skipped when this
        table's primary key is not managed by the engine.
        """
        patch = Table(name=desired.name, schema=desired.schema or self.schema)
        if not desired.exists():
            return patch

        for name, column in desired.columns.items():
            if name not in self.columns:
                patch.columns[name] = column

        if not self.pk_managed:
            logger.warning(
                "Table has a custom primary key not managed by the engine. "
                "Primary key configuration will be ignored for this table",
                schema=self.schema,
                table=self.name,
                primary_key_name=self.primary_key_name,
            )
            return patch

        constraint_name = build_constraint_name(patch.schema, patch.name)
        if self.pk_fields and not desired.pk_fields:
            patch.delete_pk_fields = True
            patch.primary_key_name = self.primary_key_name or constraint_name
        elif not self.pk_fields and desired.pk_fields:
            patch.pk_fields = set(desired.pk_fields)
            patch.primary_key_name = constraint_name
        elif self.pk_fields and self.pk_fields != desired.pk_fields:
            patch.delete_pk_fields = True
            patch.pk_fields = set(desired.pk_fields)
            patch.primary_key_name = constraint_name

        return patch

    def merged(self, patch: "Table") -> "Table":
        """Apply a patch locally and return the resulting table."""
        result = self.copy()
        result.columns.update(patch.columns)
        if patch.delete_pk_fields:
            result.pk_fields = set()
            result.primary_key_name = ""
        if patch.pk_fields:
            result.pk_fields = set(patch.pk_fields)
            result.primary_key_name = patch.primary_key_name
        return result
