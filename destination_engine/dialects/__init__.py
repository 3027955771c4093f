"""
Dialect strategies, one per destination type.
"""

from typing import Dict

from destination_engine.core.exceptions import ConfigurationException
from destination_engine.dialects.base import DataType, Dialect
from destination_engine.dialects.clickhouse import ClickHouseDialect, FieldExpression, TableEngine
from destination_engine.dialects.mysql import MySQLDialect
from destination_engine.dialects.postgres import PostgresDialect
from destination_engine.dialects.redshift import RedshiftDialect
from destination_engine.dialects.snowflake import SnowflakeDialect


class DialectRegistry:
    """Maps destination type strings to dialect implementations."""

    _registry: Dict[str, type] = {
        "POSTGRES": PostgresDialect,
        "POSTGRESQL": PostgresDialect,
        "REDSHIFT": RedshiftDialect,
        "MYSQL": MySQLDialect,
        "CLICKHOUSE": ClickHouseDialect,
        "SNOWFLAKE": SnowflakeDialect,
    }

    @classmethod
    def get_dialect_class(cls, destination_type: str) -> type:
        dialect_cls = cls._registry.get(destination_type.upper())
        if not dialect_cls:
            raise ConfigurationException(
                f"No dialect registered for destination type '{destination_type}'. "
                f"Available: {list(cls._registry.keys())}",
                {"destination_type": destination_type},
            )
        return dialect_cls

    @classmethod
    def register(cls, destination_type: str, dialect_class: type) -> None:
        """Register a new dialect (e.g., BigQuery)."""
        cls._registry[destination_type.upper()] = dialect_class


__all__ = [
    "ClickHouseDialect",
    "DataType",
    "Dialect",
    "DialectRegistry",
    "FieldExpression",
    "MySQLDialect",
    "PostgresDialect",
    "RedshiftDialect",
    "SnowflakeDialect",
    "TableEngine",
]
