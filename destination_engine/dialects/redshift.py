"""
Amazon Redshift dialect.

Redshift speaks the Postgres wire protocol but has no ``ON CONFLICT`` and
cannot turn a nullable column into a primary key column.
"""

from types import MappingProxyType
from typing import List, Sequence, Set

from destination_engine.core.exceptions import UnsupportedOperationError
from destination_engine.dialects.base import DataType
from destination_engine.dialects.postgres import PostgresDialect
from destination_engine.schema.table import Table

NULLABLE_PK_ERROR = "can not make a nullable column a primary key"


class RedshiftDialect(PostgresDialect):
    name = "redshift"
    value_limit = 32767
    native_upsert = False
    type_mapping = MappingProxyType(
        {
            DataType.STRING: "character varying(65535)",
            DataType.INT64: "bigint",
            DataType.FLOAT64: "double precision",
            DataType.TIMESTAMP: "timestamp",
            DataType.BOOL: "boolean",
            DataType.UNKNOWN: "character varying(65535)",
        }
    )

    def upsert_statement(self, table: Table, columns: Sequence[str], placeholders: Sequence[str]) -> str:
        raise UnsupportedOperationError(self.name, "single statement upsert")

    def merge_statements(self, table: Table, tmp_table_name: str, columns: Sequence[str]) -> List[str]:
        target = self.table_ref(table.name)
        staging = self.table_ref(tmp_table_name)
        join = " AND ".join(
            f"{target}.{self.quote(name)} = {staging}.{self.quote(name)}"
            for name in table.sorted_pk_fields()
        )
        quoted = self.quoted_columns(columns)
        return [
            f"DELETE FROM {target} USING {staging} WHERE {join}",
            f"INSERT INTO {target} ({quoted}) SELECT {quoted} FROM {staging}",
        ]

    def is_nullable_pk_error(self, error: BaseException) -> bool:
        return NULLABLE_PK_ERROR in str(error).lower()

    def nullable_pk_recovery_statements(self, live: Table, pk_fields: Set[str]) -> List[str]:
        """
        Recreate every nullable primary key column as NOT NULL.

        For each column: add ``<col>_tmp`` with the same type, NOT NULL and a
        default, copy the values over, drop the original and rename the copy.
        Columns unknown to the live table are skipped.
        """
        target = self.table_ref(live.name)
        statements = []
        for name in sorted(pk_fields):
            column = live.columns.get(name)
            if column is None:
                continue
            tmp_name = f"{name}_tmp"
            sql_type = column.sql_type
            statements.extend(
                [
                    f"ALTER TABLE {target} ADD COLUMN {self.quote(tmp_name)} {sql_type} "
                    f"not null default {self.default_value(sql_type)}",
                    f"UPDATE {target} SET {self.quote(tmp_name)} = {self.quote(name)}",
                    f"ALTER TABLE {target} DROP COLUMN {self.quote(name)}",
                    f"ALTER TABLE {target} RENAME COLUMN {self.quote(tmp_name)} TO {self.quote(name)}",
                ]
            )
        return statements
