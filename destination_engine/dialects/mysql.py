"""
MySQL dialect.

The configured schema is the MySQL database. Primary keys have no
user-visible name, so a live primary key is always reported under the
engine's deterministic constraint name.
"""

from types import MappingProxyType
from typing import List, Optional, Sequence, Set

from destination_engine.dialects.base import DataType, Dialect, Statement
from destination_engine.schema.table import Column, Table

TABLE_SCHEMA_QUERY = (
    "SELECT column_name AS name, column_type AS column_type "
    "FROM information_schema.columns WHERE table_schema = %s AND table_name = %s"
)
PRIMARY_KEY_QUERY = (
    "SELECT column_name AS column_name FROM information_schema.columns "
    "WHERE table_schema = %s AND table_name = %s AND column_key = 'PRI'"
)

# TEXT columns can't be part of a primary key without a prefix length
PRIMARY_KEY_TYPES_MAPPING = MappingProxyType({"TEXT": "VARCHAR(255)"})


class MySQLDialect(Dialect):
    name = "mysql"
    value_limit = 65535
    temp_tables_survive_rollback = True
    type_mapping = MappingProxyType(
        {
            DataType.STRING: "TEXT",
            DataType.INT64: "BIGINT",
            DataType.FLOAT64: "DOUBLE",
            DataType.TIMESTAMP: "DATETIME",
            DataType.BOOL: "BOOLEAN",
            DataType.UNKNOWN: "TEXT",
        }
    )

    def quote(self, identifier: str) -> str:
        return f"`{identifier}`"

    def placeholder(self, index: int, name: str, column: Optional[Column]) -> str:
        return "%s"

    def column_ddl(self, name: str, column: Column, pk_fields: Set[str]) -> str:
        sql_type = self.column_type(name, column)
        if name in pk_fields:
            sql_type = PRIMARY_KEY_TYPES_MAPPING.get(sql_type.upper(), sql_type)
            return f"{self.quote(name)} {sql_type} not null default {self.default_value(sql_type)}"
        return f"{self.quote(name)} {sql_type}"

    def create_schema_statement(self) -> str:
        return f"CREATE DATABASE IF NOT EXISTS {self.quote(self.schema)}"

    def create_temp_table_statement(self, table: Table) -> str:
        return f"CREATE TEMPORARY TABLE {self.table_ref(table.name)} ({self.columns_clause(table)})"

    def drop_temp_table_statement(self, table_name: str, if_exists: bool = False) -> str:
        clause = "IF EXISTS " if if_exists else ""
        return f"DROP TEMPORARY TABLE {clause}{self.table_ref(table_name)}"

    def rename_table_statement(self, table_name: str, new_name: str) -> str:
        return f"RENAME TABLE {self.table_ref(table_name)} TO {self.table_ref(new_name)}"

    def create_primary_key_statement(self, table: Table) -> str:
        return (
            f"ALTER TABLE {self.table_ref(table.name)} "
            f"ADD CONSTRAINT PRIMARY KEY ({self.quoted_columns(table.sorted_pk_fields())})"
        )

    def drop_primary_key_statement(self, table: Table) -> str:
        return f"ALTER TABLE {self.table_ref(table.name)} DROP PRIMARY KEY"

    def upsert_statement(self, table: Table, columns: Sequence[str], placeholders: Sequence[str]) -> str:
        update = ", ".join(f"{self.quote(name)} = VALUES({self.quote(name)})" for name in columns)
        return (
            f"INSERT INTO {self.table_ref(table.name)} ({self.quoted_columns(columns)}) "
            f"VALUES ({', '.join(placeholders)}) ON DUPLICATE KEY UPDATE {update}"
        )

    def merge_statements(self, table: Table, tmp_table_name: str, columns: Sequence[str]) -> List[str]:
        aliases = ", ".join(f"{self.quote(name)} AS c_{i}" for i, name in enumerate(columns))
        update = ", ".join(f"{self.quote(name)} = c_{i}" for i, name in enumerate(columns))
        return [
            f"INSERT INTO {self.table_ref(table.name)} ({self.quoted_columns(columns)}) "
            f"SELECT * FROM (SELECT {aliases} FROM {self.table_ref(tmp_table_name)}) AS tmp "
            f"ON DUPLICATE KEY UPDATE {update}"
        ]

    def table_schema_query(self, table_name: str) -> Statement:
        return TABLE_SCHEMA_QUERY, (self.schema, table_name)

    def primary_key_query(self, table_name: str) -> Optional[Statement]:
        return PRIMARY_KEY_QUERY, (self.schema, table_name)
