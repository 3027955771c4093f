"""
Snowflake dialect.

Plain identifiers are left unquoted so Snowflake folds them to upper case;
anything else is quoted. Information schema lookups therefore use upper
cased names, and names read back are lower cased.
"""

import re
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from destination_engine.dialects.base import DataType, Dialect, Statement
from destination_engine.schema.table import Column, Table

PLAIN_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*$")


class SnowflakeDialect(Dialect):
    name = "snowflake"
    # statements are interpolated client side; the limit keeps them under the query size cap
    value_limit = 16384
    temp_tables_survive_rollback = True
    type_mapping = MappingProxyType(
        {
            DataType.STRING: "character varying(8192)",
            DataType.INT64: "bigint",
            DataType.FLOAT64: "numeric(38,18)",
            DataType.TIMESTAMP: "timestamp(6)",
            DataType.BOOL: "boolean",
            DataType.UNKNOWN: "character varying(8192)",
        }
    )

    def quote(self, identifier: str) -> str:
        if PLAIN_IDENTIFIER.match(identifier):
            return identifier
        return f'"{identifier}"'

    def create_temp_table_statement(self, table: Table) -> str:
        return f"CREATE TEMPORARY TABLE {self.table_ref(table.name)} ({self.columns_clause(table)})"

    def rename_table_statement(self, table_name: str, new_name: str) -> str:
        return f"ALTER TABLE {self.table_ref(table_name)} RENAME TO {self.table_ref(new_name)}"

    def upsert_statement(self, table: Table, columns: Sequence[str], placeholders: Sequence[str]) -> str:
        source = ", ".join(
            f"{placeholder} AS {self.quote(name)}"
            for placeholder, name in zip(placeholders, columns)
        )
        return self._merge(table, f"(SELECT {source})", columns)

    def merge_statements(self, table: Table, tmp_table_name: str, columns: Sequence[str]) -> List[str]:
        return [self._merge(table, self.table_ref(tmp_table_name), columns)]

    def _merge(self, table: Table, source: str, columns: Sequence[str]) -> str:
        on_clause = " AND ".join(
            f"T.{self.quote(name)} = S.{self.quote(name)}" for name in table.sorted_pk_fields()
        )
        update = ", ".join(
            f"T.{self.quote(name)} = S.{self.quote(name)}"
            for name in columns
            if name not in table.pk_fields
        )
        statement = f"MERGE INTO {self.table_ref(table.name)} T USING {source} S ON {on_clause} "
        if update:
            statement += f"WHEN MATCHED THEN UPDATE SET {update} "
        statement += (
            f"WHEN NOT MATCHED THEN INSERT ({self.quoted_columns(columns)}) "
            f"VALUES ({', '.join(f'S.{self.quote(name)}' for name in columns)})"
        )
        return statement

    def _lookup_name(self, identifier: str) -> str:
        if PLAIN_IDENTIFIER.match(identifier):
            return identifier.upper()
        return identifier

    def table_schema_query(self, table_name: str) -> Statement:
        return (
            "SELECT COLUMN_NAME AS NAME, DATA_TYPE AS COLUMN_TYPE "
            "FROM INFORMATION_SCHEMA.COLUMNS WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s",
            (self._lookup_name(self.schema), self._lookup_name(table_name)),
        )

    def primary_key_query(self, table_name: str) -> Optional[Statement]:
        return f"SHOW PRIMARY KEYS IN TABLE {self.table_ref(table_name)}", None

    def list_tables_query(self) -> Statement:
        return (
            "SELECT TABLE_NAME AS NAME FROM INFORMATION_SCHEMA.TABLES "
            "WHERE TABLE_SCHEMA = %s AND TABLE_TYPE = 'BASE TABLE' ORDER BY TABLE_NAME",
            (self._lookup_name(self.schema),),
        )

    def parse_columns(self, rows: Sequence[Mapping[str, Any]]) -> Dict[str, Column]:
        return {row["name"].lower(): Column(row["column_type"]) for row in rows}

    def parse_primary_key(self, table_name: str, rows: Sequence[Mapping[str, Any]]) -> Tuple[str, Set[str]]:
        fields = {row["column_name"].lower() for row in rows}
        if not fields:
            return "", set()
        return self.normalize_pk_name(table_name, rows[0].get("constraint_name") or ""), fields

    def list_table_names(self, rows: Sequence[Mapping[str, Any]]) -> List[str]:
        return [row["name"].lower() for row in rows]
