"""
PostgreSQL dialect.
"""

from types import MappingProxyType
from typing import Optional

from destination_engine.dialects.base import DataType, Dialect, Statement

TABLE_SCHEMA_QUERY = """
SELECT pg_attribute.attname AS name,
       pg_catalog.format_type(pg_attribute.atttypid, pg_attribute.atttypmod) AS column_type
FROM pg_attribute
         JOIN pg_class ON pg_class.oid = pg_attribute.attrelid
         LEFT JOIN pg_namespace ON pg_namespace.oid = pg_class.relnamespace
WHERE pg_class.relkind = 'r'::char
  AND pg_namespace.nspname = %s
  AND pg_class.relname = %s
  AND pg_attribute.attnum > 0
  AND NOT pg_attribute.attisdropped
"""

PRIMARY_KEY_QUERY = """
SELECT tco.constraint_name AS constraint_name, kcu.column_name AS column_name
FROM information_schema.table_constraints tco
         JOIN information_schema.key_column_usage kcu
              ON kcu.constraint_name = tco.constraint_name
                  AND kcu.constraint_schema = tco.constraint_schema
WHERE tco.table_schema = %s
  AND tco.table_name = %s
  AND tco.constraint_type = 'PRIMARY KEY'
ORDER BY kcu.ordinal_position
"""


class PostgresDialect(Dialect):
    name = "postgres"
    value_limit = 65535
    type_mapping = MappingProxyType(
        {
            DataType.STRING: "text",
            DataType.INT64: "bigint",
            DataType.FLOAT64: "numeric(38,18)",
            DataType.TIMESTAMP: "timestamp",
            DataType.BOOL: "boolean",
            DataType.UNKNOWN: "text",
        }
    )

    def table_schema_query(self, table_name: str) -> Statement:
        return TABLE_SCHEMA_QUERY, (self.schema, table_name)

    def primary_key_query(self, table_name: str) -> Optional[Statement]:
        return PRIMARY_KEY_QUERY, (self.schema, table_name)
