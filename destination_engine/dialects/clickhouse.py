"""
ClickHouse dialect.

ClickHouse has neither primary key constraints nor transactions. Rows are
appended and duplicates are collapsed by the ReplacingMergeTree engine in
background merges. Non-Nullable columns can't store NULL, so missing values
are replaced with the type's default.

On a cluster, each local table is fronted by a Distributed table named
``dist_<table>`` that follows it through create, patch, truncate and drop.
"""

from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Set

from destination_engine.core.exceptions import UnsupportedOperationError
from destination_engine.dialects.base import DataType, Dialect, Statement
from destination_engine.schema.conditions import DeleteConditions
from destination_engine.schema.table import Column, SQLTypeOverride, Table

_INTEGER_TYPES = (
    "int8", "int16", "int32", "int64", "int128", "int256",
    "uint16", "uint32", "uint64", "uint128", "uint256",
)

DEFAULT_VALUES: Mapping[str, Any] = MappingProxyType(
    {
        **{name: 0 for name in _INTEGER_TYPES},
        **{f"lowcardinality({name})": 0 for name in _INTEGER_TYPES},
        "uint8": 0,
        "lowcardinality(uint8)": 0,
        "float32": 0.0,
        "float64": 0.0,
        "lowcardinality(float32)": 0.0,
        "lowcardinality(float64)": 0.0,
        "decimal": 0.0,
        "numeric": 0.0,
        "datetime": datetime(1970, 1, 1),
        "lowcardinality(datetime)": datetime(1970, 1, 1),
        "string": "",
        "lowcardinality(string)": "",
        "uuid": "00000000-0000-0000-0000-000000000000",
    }
)


@dataclass(frozen=True)
class FieldExpression:
    """Engine key field, optionally wrapped in a function (e.g. toYYYYMM)."""

    field: str
    function: str = ""

    def render(self) -> str:
        if self.function:
            return f"{self.function}({self.field})"
        return self.field


@dataclass(frozen=True)
class TableEngine:
    """Builds the engine part of CREATE TABLE statements."""

    database: str
    cluster: str = ""
    raw_statement: str = ""
    partition_fields: tuple = ()
    order_fields: tuple = ()
    primary_keys: tuple = ()

    def clauses(self, table: Table) -> str:
        if self.raw_statement:
            return self.raw_statement

        order_fields = [f.render() for f in self.order_fields] or table.sorted_pk_fields()
        if order_fields:
            if self.cluster:
                engine = (
                    f"ENGINE = ReplicatedReplacingMergeTree("
                    f"'/clickhouse/tables/{{shard}}/{self.database}/{table.name}', '{{replica}}')"
                )
            else:
                engine = "ENGINE = ReplacingMergeTree()"
            order_by = f"ORDER BY ({', '.join(order_fields)})"
        else:
            # nothing to deduplicate on: plain MergeTree without a sorting key
            if self.cluster:
                engine = (
                    f"ENGINE = ReplicatedMergeTree("
                    f"'/clickhouse/tables/{{shard}}/{self.database}/{table.name}', '{{replica}}')"
                )
            else:
                engine = "ENGINE = MergeTree()"
            order_by = "ORDER BY tuple()"

        parts = [engine]
        if self.partition_fields:
            parts.append(
                f"PARTITION BY ({', '.join(f.render() for f in self.partition_fields)})"
            )
        parts.append(order_by)
        if self.primary_keys:
            parts.append(f"PRIMARY KEY ({', '.join(self.primary_keys)})")
        return " ".join(parts)


class ClickHouseDialect(Dialect):
    name = "clickhouse"
    value_limit = 65535
    supports_primary_keys = False
    supports_transactions = False
    supports_update = False
    native_upsert = False
    type_mapping = MappingProxyType(
        {
            DataType.STRING: "String",
            DataType.INT64: "Int64",
            DataType.FLOAT64: "Float64",
            DataType.TIMESTAMP: "DateTime",
            DataType.BOOL: "UInt8",
            DataType.UNKNOWN: "String",
        }
    )

    def __init__(
        self,
        schema: str,
        sql_types: Optional[Mapping[str, SQLTypeOverride]] = None,
        value_limit: Optional[int] = None,
        cluster: str = "",
        engine: Optional[TableEngine] = None,
        nullable_fields: Iterable[str] = (),
    ):
        super().__init__(schema, sql_types, value_limit)
        self.cluster = cluster
        self.engine = engine or TableEngine(database=schema, cluster=cluster)
        self.nullable_fields = frozenset(nullable_fields)

    @property
    def on_cluster(self) -> str:
        if self.cluster:
            return f" ON CLUSTER {self.quote(self.cluster)}"
        return ""

    # ─── Distributed tables ───────────────────────────────────────────────

    @property
    def has_distributed_tables(self) -> bool:
        return bool(self.cluster)

    @staticmethod
    def distributed_table_name(table_name: str) -> str:
        return f"dist_{table_name}"

    def create_distributed_table_statement(self, table_name: str) -> str:
        """Distributed table over the local table on every shard of the cluster."""
        return (
            f"CREATE TABLE {self.table_ref(self.distributed_table_name(table_name))}{self.on_cluster} "
            f"AS {self.table_ref(table_name)} "
            f"ENGINE = Distributed('{self.cluster}', '{self.schema}', '{table_name}', rand())"
        )

    def add_distributed_columns_statement(self, patch: Table) -> str:
        additions = ", ".join(
            f"ADD COLUMN {self.column_ddl(name, patch.columns[name], patch.pk_fields)}"
            for name in patch.sorted_column_names()
        )
        return (
            f"ALTER TABLE {self.table_ref(self.distributed_table_name(patch.name))}{self.on_cluster} "
            f"{additions}"
        )

    def drop_distributed_table_statement(self, table_name: str) -> str:
        return self.drop_table_statement(self.distributed_table_name(table_name), if_exists=True)

    def truncate_distributed_table_statement(self, table_name: str) -> str:
        return (
            f"TRUNCATE TABLE IF EXISTS "
            f"{self.table_ref(self.distributed_table_name(table_name))}{self.on_cluster}"
        )

    # ─── Columns & values ─────────────────────────────────────────────────

    def column_ddl(self, name: str, column: Column, pk_fields: Set[str]) -> str:
        sql_type = self.column_type(name, column)
        if name in self.nullable_fields:
            sql_type = f"Nullable({sql_type})"
        return f"{self.quote(name)} {sql_type}"

    def placeholder(self, index: int, name: str, column: Optional[Column]) -> str:
        cast = self.cast_type(name, column)
        if cast:
            return f"cast(%(p{index})s, '{cast}')"
        return f"%(p{index})s"

    def bind(self, values: Sequence[Any]) -> Any:
        return {f"p{i}": value for i, value in enumerate(values)}

    def reformat_value(self, value: Any) -> Any:
        if isinstance(value, bool):
            return 1 if value else 0
        return value

    def row_values(self, table: Table, columns: Sequence[str], row: Mapping[str, Any]) -> List[Any]:
        values = []
        for name in columns:
            value = row.get(name)
            if value is None and name not in self.nullable_fields:
                column = table.columns.get(name)
                if column is not None:
                    value = self.missing_value(self.column_type(name, column))
            values.append(self.reformat_value(value))
        return values

    @staticmethod
    def missing_value(sql_type: str) -> Any:
        """Default for a non-Nullable column, or None when the type is Nullable or unknown."""
        lowered = sql_type.lower()
        if "nullable" in lowered:
            return None
        return DEFAULT_VALUES.get(lowered)

    def create_schema_statement(self) -> str:
        return f"CREATE DATABASE IF NOT EXISTS {self.quote(self.schema)}{self.on_cluster}"

    def create_table_statement(self, table: Table) -> str:
        return (
            f"CREATE TABLE {self.table_ref(table.name)}{self.on_cluster} "
            f"({self.columns_clause(table)}) {self.engine.clauses(table)}"
        )

    def add_column_statement(self, table: Table, name: str) -> str:
        ddl = self.column_ddl(name, table.columns[name], table.pk_fields)
        return f"ALTER TABLE {self.table_ref(table.name)}{self.on_cluster} ADD COLUMN {ddl}"

    def create_primary_key_statement(self, table: Table) -> str:
        raise UnsupportedOperationError(self.name, "primary key constraints")

    def drop_primary_key_statement(self, table: Table) -> str:
        raise UnsupportedOperationError(self.name, "primary key constraints")

    def drop_table_statement(self, table_name: str, if_exists: bool = False) -> str:
        clause = "IF EXISTS " if if_exists else ""
        return f"DROP TABLE {clause}{self.table_ref(table_name)}{self.on_cluster}"

    def truncate_statement(self, table_name: str) -> str:
        return f"TRUNCATE TABLE {self.table_ref(table_name)}{self.on_cluster}"

    def delete_statement(self, table: Table, conditions: DeleteConditions) -> Statement:
        where, values = self.where_clause(table, conditions)
        return (
            f"ALTER TABLE {self.table_ref(table.name)}{self.on_cluster} DELETE WHERE {where}",
            self.bind(values),
        )

    def upsert_statement(self, table: Table, columns: Sequence[str], placeholders: Sequence[str]) -> str:
        raise UnsupportedOperationError(self.name, "upsert")

    def merge_statements(self, table: Table, tmp_table_name: str, columns: Sequence[str]) -> List[str]:
        raise UnsupportedOperationError(self.name, "upsert")

    def update_statement(
        self, table: Table, columns: Sequence[str], row: Mapping[str, Any], where_key: str, where_value: Any
    ) -> Statement:
        raise UnsupportedOperationError(self.name, "update")

    def rename_table_statement(self, table_name: str, new_name: str) -> str:
        raise UnsupportedOperationError(self.name, "table replacement")

    def table_schema_query(self, table_name: str) -> Statement:
        return (
            "SELECT name AS name, type AS column_type FROM system.columns "
            "WHERE database = %(p0)s AND table = %(p1)s",
            self.bind([self.schema, table_name]),
        )

    def list_tables_query(self) -> Statement:
        return (
            "SELECT name AS name FROM system.tables WHERE database = %(p0)s ORDER BY name",
            self.bind([self.schema]),
        )
