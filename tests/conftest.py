"""
Shared test fixtures.

A recording fake DB-API driver stands in for the destination databases:
every executed statement is captured, failures can be injected by statement
fragment and query results are served by statement fragment.
"""

import pytest

from destination_engine.adapters.relational import RelationalAdapter
from destination_engine.core.logging import QueryLogger
from destination_engine.dialects import (
    ClickHouseDialect,
    MySQLDialect,
    PostgresDialect,
    RedshiftDialect,
    SnowflakeDialect,
)


class FakeDriverError(Exception):
    """Error raised by the fake driver, like psycopg2.Error would be."""


class FakeDatabase:
    error_class = FakeDriverError

    def __init__(self):
        self.executed = []
        self.commits = 0
        self.rollbacks = 0
        self.connections_opened = 0
        self.connections_closed = 0
        self.commit_error = None
        self._failures = []
        self._results = []

    def fail_on(self, fragment, message="statement failed", times=None):
        """Raise FakeDriverError for statements containing fragment (``times`` times, or always)."""
        self._failures.append({"fragment": fragment, "message": message, "times": times})

    def respond(self, fragment, columns, rows):
        """Serve rows for queries containing fragment."""
        self._results.append((fragment, columns, rows))

    @property
    def statements(self):
        return [statement for statement, _ in self.executed]

    def statements_starting_with(self, prefix):
        return [s for s in self.statements if s.startswith(prefix)]

    def check_failure(self, statement):
        for failure in self._failures:
            if failure["fragment"] not in statement:
                continue
            if failure["times"] is None:
                raise FakeDriverError(failure["message"])
            if failure["times"] > 0:
                failure["times"] -= 1
                raise FakeDriverError(failure["message"])

    def result_for(self, statement):
        for fragment, columns, rows in self._results:
            if fragment in statement:
                return columns, rows
        return None, []


class FakeCursor:
    def __init__(self, db):
        self.db = db
        self.rowcount = -1
        self.description = None
        self._rows = []

    def execute(self, statement, params=None):
        self.db.executed.append((statement, params))
        self.db.check_failure(statement)
        columns, rows = self.db.result_for(statement)
        self.description = [(name,) for name in columns] if columns else None
        self._rows = [tuple(row) for row in rows]
        self.rowcount = len(rows) if columns else 1

    def fetchall(self):
        return list(self._rows)

    def close(self):
        pass


class FakeConnection:
    def __init__(self, db):
        self.db = db
        db.connections_opened += 1

    def cursor(self):
        return FakeCursor(self.db)

    def commit(self):
        if self.db.commit_error is not None:
            raise self.db.commit_error
        self.db.commits += 1

    def rollback(self):
        self.db.rollbacks += 1

    def close(self):
        self.db.connections_closed += 1


class FakeDataSource:
    def __init__(self, db):
        self.db = db
        self.closed = False

    def connect(self):
        return FakeConnection(self.db)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def quiet_query_logger():
    return QueryLogger("test", ddl_enabled=False, queries_enabled=False)


@pytest.fixture
def make_adapter(fake_db, quiet_query_logger):
    """Build a RelationalAdapter over the fake database for a dialect."""

    def _make(dialect):
        return RelationalAdapter(
            dialect,
            FakeDataSource(fake_db),
            destination_id="test",
            query_logger=quiet_query_logger,
            temp_table_prefix="engine_tmp",
        )

    return _make


@pytest.fixture
def postgres_adapter(make_adapter):
    return make_adapter(PostgresDialect("public"))


@pytest.fixture
def redshift_adapter(make_adapter):
    return make_adapter(RedshiftDialect("public"))


@pytest.fixture
def mysql_adapter(make_adapter):
    return make_adapter(MySQLDialect("events"))


@pytest.fixture
def clickhouse_adapter(make_adapter):
    return make_adapter(ClickHouseDialect("events"))


@pytest.fixture
def snowflake_adapter(make_adapter):
    return make_adapter(SnowflakeDialect("PUBLIC"))
