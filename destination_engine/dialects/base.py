"""
Dialect strategy base.

A dialect turns the Table model into SQL text for one destination: identifier
quoting, placeholders and bound values, type defaults, DDL, DML and the
introspection queries used to read a live schema. Strategies never touch a
connection; the relational adapter executes what they generate.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from destination_engine.schema.conditions import DeleteConditions
from destination_engine.schema.table import Column, SQLTypeOverride, Table, build_constraint_name

Statement = Tuple[str, Any]


class DataType(str, Enum):
    """Type inferred upstream for a flattened event field."""

    STRING = "string"
    INT64 = "int64"
    FLOAT64 = "float64"
    TIMESTAMP = "timestamp"
    BOOL = "bool"
    UNKNOWN = "unknown"


TEXT_TYPE_MARKERS = ("char", "text", "string")


class Dialect:
    """Default (Postgres flavoured) SQL generation shared by all dialects."""

    name: str = ""
    value_limit: int = 65535
    supports_primary_keys: bool = True
    supports_transactions: bool = True
    supports_update: bool = True
    native_upsert: bool = True
    # staging tables belong to the session, not the transaction
    temp_tables_survive_rollback: bool = False
    has_distributed_tables: bool = False
    type_mapping: Mapping[DataType, str] = MappingProxyType({})

    def __init__(
        self,
        schema: str,
        sql_types: Optional[Mapping[str, SQLTypeOverride]] = None,
        value_limit: Optional[int] = None,
    ):
        self.schema = schema
        self.sql_types = MappingProxyType(dict(sql_types or {}))
        if value_limit is not None:
            if value_limit < 1:
                raise ValueError("value_limit must be positive")
            self.value_limit = value_limit

    # ─── Identifiers & types ──────────────────────────────────────────────

    def quote(self, identifier: str) -> str:
        return f'"{identifier}"'

    def table_ref(self, table_name: str) -> str:
        return f"{self.quote(self.schema)}.{self.quote(table_name)}"

    def sql_type(self, data_type: DataType) -> str:
        """Map an inferred type to this destination's column type."""
        return self.type_mapping.get(data_type, self.type_mapping[DataType.UNKNOWN])

    def column_for(self, name: str, data_type: DataType) -> Column:
        override = self.sql_types.get(name)
        if override is not None:
            return Column(override.ddl_type, override.type)
        return Column(self.sql_type(data_type))

    def column_type(self, name: str, column: Column) -> str:
        override = self.sql_types.get(name)
        if override is not None:
            return override.ddl_type
        return column.sql_type

    def cast_type(self, name: str, column: Optional[Column]) -> Optional[str]:
        override = self.sql_types.get(name)
        if override is not None:
            return override.type
        if column is not None:
            return column.cast_type
        return None

    def default_value(self, sql_type: str) -> str:
        lowered = sql_type.lower()
        if any(marker in lowered for marker in TEXT_TYPE_MARKERS):
            return "''"
        return "0"

    def column_ddl(self, name: str, column: Column, pk_fields: Set[str]) -> str:
        sql_type = self.column_type(name, column)
        ddl = f"{self.quote(name)} {sql_type}"
        if name in pk_fields:
            ddl += f" not null default {self.default_value(sql_type)}"
        return ddl

    # ─── Placeholders & values ────────────────────────────────────────────

    def placeholder(self, index: int, name: str, column: Optional[Column]) -> str:
        cast = self.cast_type(name, column)
        if cast:
            return f"%s::{cast}"
        return "%s"

    def bind(self, values: Sequence[Any]) -> Any:
        return tuple(values)

    def reformat_value(self, value: Any) -> Any:
        return value

    def row_values(self, table: Table, columns: Sequence[str], row: Mapping[str, Any]) -> List[Any]:
        return [self.reformat_value(row.get(name)) for name in columns]

    def placeholders(self, table: Table, columns: Sequence[str], start: int = 0) -> List[str]:
        return [
            self.placeholder(start + i, name, table.columns.get(name))
            for i, name in enumerate(columns)
        ]

    def values_clause(self, table: Table, columns: Sequence[str], start: int = 0) -> str:
        return "(" + ", ".join(self.placeholders(table, columns, start)) + ")"

    def quoted_columns(self, columns: Sequence[str]) -> str:
        return ", ".join(self.quote(name) for name in columns)

    # ─── DDL ──────────────────────────────────────────────────────────────

    def create_schema_statement(self) -> str:
        return f"CREATE SCHEMA IF NOT EXISTS {self.quote(self.schema)}"

    def columns_clause(self, table: Table) -> str:
        pk_fields = table.pk_fields if self.supports_primary_keys else set()
        lines = [
            self.column_ddl(name, table.columns[name], pk_fields)
            for name in table.sorted_column_names()
        ]
        return ", ".join(sorted(lines))

    def create_table_statement(self, table: Table) -> str:
        return f"CREATE TABLE {self.table_ref(table.name)} ({self.columns_clause(table)})"

    def create_temp_table_statement(self, table: Table) -> str:
        return self.create_table_statement(table)

    def drop_temp_table_statement(self, table_name: str, if_exists: bool = False) -> str:
        return self.drop_table_statement(table_name, if_exists)

    def add_column_statement(self, table: Table, name: str) -> str:
        ddl = self.column_ddl(name, table.columns[name], table.pk_fields)
        return f"ALTER TABLE {self.table_ref(table.name)} ADD COLUMN {ddl}"

    def create_primary_key_statement(self, table: Table) -> str:
        return (
            f"ALTER TABLE {self.table_ref(table.name)} "
            f"ADD CONSTRAINT {self.quote(table.pk_constraint_name())} "
            f"PRIMARY KEY ({self.quoted_columns(table.sorted_pk_fields())})"
        )

    def drop_primary_key_statement(self, table: Table) -> str:
        return (
            f"ALTER TABLE {self.table_ref(table.name)} "
            f"DROP CONSTRAINT {self.quote(table.pk_constraint_name())}"
        )

    def drop_table_statement(self, table_name: str, if_exists: bool = False) -> str:
        clause = "IF EXISTS " if if_exists else ""
        return f"DROP TABLE {clause}{self.table_ref(table_name)}"

    def truncate_statement(self, table_name: str) -> str:
        return f"TRUNCATE TABLE {self.table_ref(table_name)}"

    def rename_table_statement(self, table_name: str, new_name: str) -> str:
        return f"ALTER TABLE {self.table_ref(table_name)} RENAME TO {self.quote(new_name)}"

    # ─── DML ──────────────────────────────────────────────────────────────

    def insert_statement(self, table_name: str, columns: Sequence[str], values_clauses: Sequence[str]) -> str:
        return (
            f"INSERT INTO {self.table_ref(table_name)} ({self.quoted_columns(columns)}) "
            f"VALUES {', '.join(values_clauses)}"
        )

    def where_clause(self, table: Table, conditions: DeleteConditions) -> Tuple[str, List[Any]]:
        clauses = []
        values = []
        for i, condition in enumerate(conditions.conditions):
            placeholder = self.placeholder(i, condition.field, table.columns.get(condition.field))
            clauses.append(f"{self.quote(condition.field)} {condition.clause} {placeholder}")
            values.append(self.reformat_value(condition.value))
        return f" {conditions.join_condition} ".join(clauses), values

    def delete_statement(self, table: Table, conditions: DeleteConditions) -> Statement:
        where, values = self.where_clause(table, conditions)
        return f"DELETE FROM {self.table_ref(table.name)} WHERE {where}", self.bind(values)

    def update_statement(
        self, table: Table, columns: Sequence[str], row: Mapping[str, Any], where_key: str, where_value: Any
    ) -> Statement:
        """Update of the rows whose ``where_key`` column equals ``where_value``."""
        assignments = ", ".join(
            f"{self.quote(name)} = {placeholder}"
            for name, placeholder in zip(columns, self.placeholders(table, columns))
        )
        where = self.placeholder(len(columns), where_key, table.columns.get(where_key))
        values = self.row_values(table, columns, row) + [self.reformat_value(where_value)]
        return (
            f"UPDATE {self.table_ref(table.name)} SET {assignments} "
            f"WHERE {self.quote(where_key)} = {where}",
            self.bind(values),
        )

    def upsert_statement(self, table: Table, columns: Sequence[str], placeholders: Sequence[str]) -> str:
        """Single-row insert-or-update keyed by the primary key."""
        update = [
            f"{self.quote(name)} = excluded.{self.quote(name)}"
            for name in columns
            if name not in table.pk_fields
        ]
        action = "DO UPDATE SET " + ", ".join(update) if update else "DO NOTHING"
        return (
            f"INSERT INTO {self.table_ref(table.name)} ({self.quoted_columns(columns)}) "
            f"VALUES ({', '.join(placeholders)}) "
            f"ON CONFLICT ON CONSTRAINT {self.quote(table.pk_constraint_name())} {action}"
        )

    def merge_statements(self, table: Table, tmp_table_name: str, columns: Sequence[str]) -> List[str]:
        """Statements reconciling the target table with a staging table."""
        quoted = self.quoted_columns(columns)
        update = [
            f"{self.quote(name)} = excluded.{self.quote(name)}"
            for name in columns
            if name not in table.pk_fields
        ]
        action = "DO UPDATE SET " + ", ".join(update) if update else "DO NOTHING"
        return [
            f"INSERT INTO {self.table_ref(table.name)} ({quoted}) "
            f"SELECT {quoted} FROM {self.table_ref(tmp_table_name)} "
            f"ON CONFLICT ON CONSTRAINT {self.quote(table.pk_constraint_name())} {action}"
        ]

    # ─── Introspection ────────────────────────────────────────────────────

    def table_schema_query(self, table_name: str) -> Statement:
        """Query returning ``name`` and ``column_type`` rows."""
        raise NotImplementedError

    def primary_key_query(self, table_name: str) -> Optional[Statement]:
        """Query returning ``constraint_name`` and ``column_name`` rows, if supported."""
        return None

    def list_tables_query(self) -> Statement:
        return (
            "SELECT table_name AS name FROM information_schema.tables "
            "WHERE table_schema = %s AND table_type = 'BASE TABLE' ORDER BY table_name",
            (self.schema,),
        )

    def parse_columns(self, rows: Sequence[Mapping[str, Any]]) -> Dict[str, Column]:
        return {row["name"]: Column(row["column_type"]) for row in rows}

    def list_table_names(self, rows: Sequence[Mapping[str, Any]]) -> List[str]:
        return [row["name"] for row in rows]

    def parse_primary_key(self, table_name: str, rows: Sequence[Mapping[str, Any]]) -> Tuple[str, Set[str]]:
        fields = {row["column_name"] for row in rows}
        if not fields:
            return "", set()
        return self.normalize_pk_name(table_name, rows[0].get("constraint_name") or ""), fields

    def normalize_pk_name(self, table_name: str, raw_name: str) -> str:
        """Map the destination's spelling of the engine's constraint name back to it."""
        expected = build_constraint_name(self.schema, table_name)
        if not raw_name or raw_name.lower() == expected.lower():
            return expected
        return raw_name

    # ─── Nullable primary key recovery ────────────────────────────────────

    def is_nullable_pk_error(self, error: BaseException) -> bool:
        return False

    def nullable_pk_recovery_statements(self, live: Table, pk_fields: Set[str]) -> List[str]:
        return []
