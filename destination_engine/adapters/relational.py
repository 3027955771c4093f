"""
Relational destination adapter.

One adapter class serves every SQL destination; the dialect strategy chosen
at construction time supplies the SQL. Every write runs in a single
transaction that is either committed as a whole or rolled back:

    open transaction -> [delete by conditions] -> plain multi-row insert
                     -> or, with a primary key, per deduplicated bucket:
                        create staging table -> insert -> merge -> drop
    -> commit

Staging tables that belong to the session rather than the transaction
(MySQL and Snowflake temporary tables) are dropped explicitly when a merge
fails, before the rollback returns the connection to the pool.
"""

from __future__ import annotations

import random
import string
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

import structlog

from destination_engine.adapters.base import EventContext, SQLAdapter
from destination_engine.config.settings import get_settings
from destination_engine.core.exceptions import (
    PrimaryKeyRecoveryError,
    StatementError,
    TableNotExistError,
    UnsupportedOperationError,
    is_not_exist_error,
)
from destination_engine.core.logging import QueryLogger
from destination_engine.core.transaction import Transaction
from destination_engine.dialects.base import DataType, Dialect
from destination_engine.schema.conditions import DeleteConditions
from destination_engine.schema.deduplication import deduplicate
from destination_engine.schema.table import Table

logger = structlog.get_logger(__name__)

Row = Dict[str, Any]


class RelationalAdapter(SQLAdapter):
    """
    Transactional schema management and bulk writes for one destination.

    Args:
        dialect: SQL strategy of the destination
        data_source: Pool handing out DB-API connections (``connect``/``close``)
        destination_id: Identifier used in logs
        query_logger: SQL debug logger (defaults to one bound to destination_id)
        temp_table_prefix: Prefix of staging table names
    """

    def __init__(
        self,
        dialect: Dialect,
        data_source: Any,
        destination_id: str = "",
        query_logger: Optional[QueryLogger] = None,
        temp_table_prefix: Optional[str] = None,
    ):
        self.dialect = dialect
        self.destination_id = destination_id or dialect.name
        self.query_logger = query_logger or QueryLogger(self.destination_id)
        self.temp_table_prefix = temp_table_prefix or get_settings().temp_table_prefix
        self._data_source = data_source
        self._logger = logger.bind(destination_id=self.destination_id, dialect=dialect.name)

    # ─── Transactions ─────────────────────────────────────────────────────

    def open_tx(self) -> Transaction:
        return Transaction(self.dialect.name, self._data_source.connect())

    def _execute(self, tx: Transaction, statement: str, params: Any = None, ddl: bool = False) -> int:
        if ddl:
            self.query_logger.log_ddl(statement)
        elif params:
            values = params.values() if isinstance(params, dict) else params
            self.query_logger.log_query_with_values(statement, list(values))
        else:
            self.query_logger.log_query(statement)
        return tx.execute(statement, params)

    def _table(self, table: Table) -> Table:
        """Bind a table to the configured schema."""
        if table.schema == self.dialect.schema:
            return table
        return replace(table, schema=self.dialect.schema)

    def _has_primary_key(self, table: Table) -> bool:
        return bool(table.pk_fields) and self.dialect.supports_primary_keys

    # ─── Schema ───────────────────────────────────────────────────────────

    def get_table_schema(self, table_name: str) -> Table:
        tx = self.open_tx()
        try:
            query, params = self.dialect.table_schema_query(table_name)
            rows = tx.query(query, params)
            if not rows:
                tx.rollback()
                return Table(name=table_name, schema=self.dialect.schema)

            columns = self.dialect.parse_columns(rows)
            pk_name, pk_fields = "", set()
            pk_query = self.dialect.primary_key_query(table_name)
            if pk_query is not None:
                pk_rows = tx.query(*pk_query)
                pk_name, pk_fields = self.dialect.parse_primary_key(table_name, pk_rows)
        except Exception:
            tx.rollback()
            raise

        # read only
        tx.rollback()
        table = Table(
            name=table_name,
            schema=self.dialect.schema,
            columns=columns,
            pk_fields=pk_fields,
            primary_key_name=pk_name,
        )
        if not table.pk_managed:
            self._logger.warning(
                "Table has a custom primary key not managed by the engine",
                table=table_name,
                primary_key_name=pk_name,
            )
        return table

    def list_tables(self) -> List[str]:
        tx = self.open_tx()
        try:
            rows = tx.query(*self.dialect.list_tables_query())
        except Exception:
            tx.rollback()
            raise
        tx.rollback()
        return self.dialect.list_table_names(rows)

    def create_db_schema(self) -> None:
        tx = self.open_tx()
        try:
            self._execute(tx, self.dialect.create_schema_statement(), ddl=True)
        except Exception:
            tx.rollback()
            raise
        tx.direct_commit()

    def create_table(self, table: Table) -> None:
        table = self._table(table)
        tx = self.open_tx()
        try:
            self._create_table_in_tx(tx, table)
        except Exception:
            tx.rollback()
            raise
        tx.direct_commit()
        self._logger.info("Table created", table=table.name, columns=len(table.columns))
        if self.dialect.has_distributed_tables:
            self._run_distributed_ddl(
                table.name, [self.dialect.create_distributed_table_statement(table.name)]
            )

    def _create_table_in_tx(self, tx: Transaction, table: Table) -> None:
        self._execute(tx, self.dialect.create_table_statement(table), ddl=True)
        if self._has_primary_key(table):
            self._execute(tx, self.dialect.create_primary_key_statement(table), ddl=True)

    def patch_table_schema(self, patch: Table) -> None:
        patch = self._table(patch)
        if patch.is_empty():
            return

        tx = self.open_tx()
        try:
            self._patch_table_in_tx(tx, patch)
        except Exception as e:
            tx.rollback()
            if isinstance(e, StatementError) and self.dialect.is_nullable_pk_error(e):
                self._recover_nullable_primary_key(patch, e)
                return
            raise
        tx.direct_commit()
        self._logger.info(
            "Table schema patched",
            table=patch.name,
            added_columns=patch.sorted_column_names(),
            pk_fields=patch.sorted_pk_fields(),
            delete_pk_fields=patch.delete_pk_fields,
        )
        if self.dialect.has_distributed_tables and patch.columns:
            self._patch_distributed_table(patch)

    def _patch_table_in_tx(self, tx: Transaction, patch: Table) -> None:
        for name in patch.sorted_column_names():
            self._execute(tx, self.dialect.add_column_statement(patch, name), ddl=True)

        if not (patch.pk_fields or patch.delete_pk_fields):
            return
        if not self.dialect.supports_primary_keys:
            self._logger.info(
                "Destination has no primary key constraints, primary key change skipped",
                table=patch.name,
                pk_fields=patch.sorted_pk_fields(),
            )
            return

        if patch.delete_pk_fields:
            self._execute(tx, self.dialect.drop_primary_key_statement(patch), ddl=True)
        if patch.pk_fields:
            self._execute(tx, self.dialect.create_primary_key_statement(patch), ddl=True)

    def _recover_nullable_primary_key(self, patch: Table, error: StatementError) -> None:
        """Recreate nullable primary key columns as NOT NULL and retry the patch once."""
        self._logger.warning(
            "Primary key columns are nullable, recreating them as not null",
            table=patch.name,
            pk_fields=patch.sorted_pk_fields(),
            error=error.message,
        )
        live = self.get_table_schema(patch.name)
        statements = self.dialect.nullable_pk_recovery_statements(live, patch.pk_fields)

        tx = self.open_tx()
        try:
            for statement in statements:
                self._execute(tx, statement, ddl=True)
            self._patch_table_in_tx(tx, patch)
        except StatementError as retry_error:
            tx.rollback()
            raise PrimaryKeyRecoveryError(error, retry_error) from retry_error
        except Exception:
            tx.rollback()
            raise
        tx.direct_commit()
        self._logger.info("Primary key created after recovery", table=patch.name)

    def ensure_table(self, desired: Table) -> Table:
        """
        Bring the destination table to the desired shape.

        Returns:
            The resulting table: the live schema merged with what was added
        """
        desired = self._table(desired)
        live = self.get_table_schema(desired.name)
        if not live.exists():
            if desired.exists():
                self.create_table(desired)
            return desired.copy()

        patch = live.diff(desired)
        if not patch.is_empty():
            self.patch_table_schema(patch)
        return live.merged(patch)

    def drop_table(self, table_name: str, if_exists: bool = False) -> None:
        tx = self.open_tx()
        try:
            self._execute(tx, self.dialect.drop_table_statement(table_name, if_exists), ddl=True)
        except Exception:
            tx.rollback()
            raise
        tx.direct_commit()
        if self.dialect.has_distributed_tables:
            self._run_distributed_ddl(
                table_name, [self.dialect.drop_distributed_table_statement(table_name)]
            )

    def truncate(self, table_name: str) -> None:
        tx = self.open_tx()
        try:
            self._execute(tx, self.dialect.truncate_statement(table_name), ddl=True)
        except Exception as e:
            tx.rollback()
            if is_not_exist_error(e):
                raise TableNotExistError(table_name) from e
            raise
        tx.direct_commit()
        if self.dialect.has_distributed_tables:
            self._run_distributed_ddl(
                table_name, [self.dialect.truncate_distributed_table_statement(table_name)]
            )

    def replace_table(self, original: str, replacement: str, drop_old: bool = True) -> None:
        """
        Swap a fully loaded replacement table in under the original's name.

        Both renames run in one transaction. The previous table is renamed to
        ``deprecated_<original>_<timestamp>`` and dropped unless ``drop_old``
        is False.
        """
        if not self.dialect.supports_transactions:
            raise UnsupportedOperationError(self.dialect.name, "table replacement")

        live = self.get_table_schema(original)
        deprecated = f"deprecated_{original}_{datetime.now(timezone.utc):%Y%m%d_%H%M%S}"
        tx = self.open_tx()
        try:
            if live.exists():
                self._execute(tx, self.dialect.rename_table_statement(original, deprecated), ddl=True)
            self._execute(tx, self.dialect.rename_table_statement(replacement, original), ddl=True)
            if live.exists() and drop_old:
                self._execute(tx, self.dialect.drop_table_statement(deprecated), ddl=True)
        except Exception:
            tx.rollback()
            raise
        tx.direct_commit()
        self._logger.info(
            "Table replaced",
            table=original,
            replacement=replacement,
            deprecated_table=None if drop_old or not live.exists() else deprecated,
        )

    def table_for(
        self, table_name: str, field_types: Mapping[str, DataType], pk_fields: Sequence[str] = ()
    ) -> Table:
        """Table with the destination's column types for upstream inferred field types."""
        return Table(
            name=table_name,
            schema=self.dialect.schema,
            columns={
                name: self.dialect.column_for(name, data_type)
                for name, data_type in field_types.items()
            },
            pk_fields=set(pk_fields),
        )

    # ─── Distributed tables ───────────────────────────────────────────────

    def _run_distributed_ddl(self, table_name: str, statements: Sequence[str]) -> bool:
        """
        Run DDL against the distributed table in front of a local table.

        Failures are logged and reported as False; the local table is
        already in place and stays the source of truth.
        """
        tx = self.open_tx()
        try:
            for statement in statements:
                self._execute(tx, statement, ddl=True)
        except StatementError as e:
            tx.rollback()
            self._logger.error(
                "Distributed table statement failed",
                table=table_name,
                statement=e.statement,
                error=e.message,
            )
            return False
        tx.commit()
        return True

    def _patch_distributed_table(self, patch: Table) -> None:
        if self._run_distributed_ddl(
            patch.name, [self.dialect.add_distributed_columns_statement(patch)]
        ):
            return
        self._logger.warning("Recreating distributed table", table=patch.name)
        self._run_distributed_ddl(
            patch.name,
            [
                self.dialect.drop_distributed_table_statement(patch.name),
                self.dialect.create_distributed_table_statement(patch.name),
            ],
        )

    # ─── Writes ───────────────────────────────────────────────────────────

    def insert(self, event_context: EventContext) -> None:
        table = self._table(event_context.table)
        row = event_context.processed_event
        columns = sorted(row)
        if not columns:
            return

        tx = self.open_tx()
        try:
            if self._has_primary_key(table) and not self.dialect.native_upsert:
                self._bulk_merge_in_tx(tx, table, columns, [row])
            else:
                placeholders = self.dialect.placeholders(table, columns)
                if self._has_primary_key(table):
                    statement = self.dialect.upsert_statement(table, columns, placeholders)
                else:
                    statement = self.dialect.insert_statement(
                        table.name, columns, ["(" + ", ".join(placeholders) + ")"]
                    )
                values = self.dialect.row_values(table, columns, row)
                self._execute(tx, statement, self.dialect.bind(values))
        except Exception:
            tx.rollback()
            raise
        tx.direct_commit()

    def update(self, table: Table, row: Row, where_key: str, where_value: Any) -> None:
        """Set the row's columns on every row whose ``where_key`` equals ``where_value``."""
        table = self._table(table)
        columns = sorted(row)
        if not columns:
            return

        tx = self.open_tx()
        try:
            if self.dialect.supports_update:
                statement, params = self.dialect.update_statement(
                    table, columns, row, where_key, where_value
                )
                self._execute(tx, statement, params)
            else:
                # appended; the table engine collapses versions of the same key
                self._bulk_insert_in_tx(tx, table, columns, [row])
        except Exception:
            tx.rollback()
            raise
        tx.direct_commit()

    def bulk_insert(self, table: Table, rows: List[Row]) -> None:
        self.bulk_update(table, rows, None)

    def bulk_update(
        self,
        table: Table,
        rows: List[Row],
        delete_conditions: Optional[DeleteConditions] = None,
    ) -> None:
        table = self._table(table)
        has_deletes = delete_conditions is not None and not delete_conditions.is_empty()
        if not rows and not has_deletes:
            return
        if has_deletes and not self.dialect.supports_transactions:
            self._logger.warning(
                "Delete and insert are not atomic on this destination",
                table=table.name,
                rows=len(rows),
            )

        tx = self.open_tx()
        try:
            if has_deletes:
                statement, params = self.dialect.delete_statement(table, delete_conditions)
                self._execute(tx, statement, params)
            self._bulk_write_in_tx(tx, table, rows)
        except Exception:
            tx.rollback()
            raise
        tx.direct_commit()
        self._logger.debug("Batch written", table=table.name, rows=len(rows))

    def _bulk_write_in_tx(self, tx: Transaction, table: Table, rows: Sequence[Row]) -> None:
        if not rows:
            return
        columns = table.sorted_column_names()
        if not self._has_primary_key(table):
            self._bulk_insert_in_tx(tx, table, columns, rows)
            return

        for bucket in deduplicate(table.pk_fields, rows):
            self._bulk_merge_in_tx(tx, table, columns, bucket)

    def _bulk_insert_in_tx(
        self, tx: Transaction, table: Table, columns: Sequence[str], rows: Sequence[Row]
    ) -> int:
        """
        Multi-row insert split so no statement exceeds the dialect's value limit.

        Returns:
            Number of statements executed
        """
        limit = self.dialect.value_limit
        statements = 0
        values_clauses: List[str] = []
        values: List[Any] = []
        for row in rows:
            if values and len(values) + len(columns) > limit:
                self._flush_insert(tx, table, columns, values_clauses, values)
                statements += 1
                values_clauses, values = [], []
            values_clauses.append(self.dialect.values_clause(table, columns, start=len(values)))
            values.extend(self.dialect.row_values(table, columns, row))

        if values:
            self._flush_insert(tx, table, columns, values_clauses, values)
            statements += 1
        return statements

    def _flush_insert(
        self,
        tx: Transaction,
        table: Table,
        columns: Sequence[str],
        values_clauses: List[str],
        values: List[Any],
    ) -> None:
        statement = self.dialect.insert_statement(table.name, columns, values_clauses)
        self._execute(tx, statement, self.dialect.bind(values))

    def _bulk_merge_in_tx(
        self, tx: Transaction, table: Table, columns: Sequence[str], rows: Sequence[Row]
    ) -> None:
        """Load rows into a staging table and merge it into the target table."""
        tmp_table = Table(
            name=self._temp_table_name(),
            schema=table.schema,
            columns=dict(table.columns),
        )
        self._execute(tx, self.dialect.create_temp_table_statement(tmp_table), ddl=True)
        try:
            self._bulk_insert_in_tx(tx, tmp_table, columns, rows)
            for statement in self.dialect.merge_statements(table, tmp_table.name, columns):
                self._execute(tx, statement)
        except Exception:
            if self.dialect.temp_tables_survive_rollback:
                self._drop_staging_table_quietly(tx, tmp_table.name)
            raise
        self._execute(tx, self.dialect.drop_temp_table_statement(tmp_table.name), ddl=True)

    def _drop_staging_table_quietly(self, tx: Transaction, table_name: str) -> None:
        """Drop a session scoped staging table after a failed merge, keeping the original error."""
        try:
            self._execute(
                tx, self.dialect.drop_temp_table_statement(table_name, if_exists=True), ddl=True
            )
        except StatementError as e:
            self._logger.warning(
                "Failed to drop staging table", table=table_name, error=e.message
            )

    def _temp_table_name(self) -> str:
        suffix = "".join(random.choices(string.ascii_lowercase, k=8))
        return f"{self.temp_table_prefix}_{suffix}"

    def close(self) -> None:
        self._data_source.close()
        self._logger.info("Destination adapter closed")
