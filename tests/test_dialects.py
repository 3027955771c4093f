"""
Tests for per-dialect SQL generation.
"""

from datetime import datetime

import pytest

from destination_engine.dialects import (
    ClickHouseDialect,
    DataType,
    DialectRegistry,
    FieldExpression,
    MySQLDialect,
    PostgresDialect,
    RedshiftDialect,
    SnowflakeDialect,
    TableEngine,
)
from destination_engine.core.exceptions import ConfigurationException, UnsupportedOperationError
from destination_engine.schema.conditions import DeleteCondition, DeleteConditions
from destination_engine.schema.table import Column, SQLTypeOverride, Table


def users_table(schema="public", pk=("id",), **columns):
    columns = columns or {
        "id": Column("bigint"),
        "email": Column("text"),
        "age": Column("bigint"),
    }
    return Table(name="users", schema=schema, columns=columns, pk_fields=set(pk))


# ─── DDL ────────────────────────────────────────────────────────────────────

class TestColumnDDL:
    def test_create_table_is_byte_stable(self):
        dialect = PostgresDialect("public")
        first = users_table()
        second = Table(
            name="users",
            schema="public",
            columns=dict(reversed(list(first.columns.items()))),
            pk_fields={"id"},
        )
        assert dialect.create_table_statement(first) == dialect.create_table_statement(second)
        assert dialect.create_table_statement(first) == (
            'CREATE TABLE "public"."users" ("age" bigint, "email" text, '
            '"id" bigint not null default 0)'
        )

    def test_pk_text_column_defaults_to_empty_string(self):
        dialect = PostgresDialect("public")
        ddl = dialect.column_ddl("email", Column("text"), {"email"})
        assert ddl == "\"email\" text not null default ''"

    def test_override_replaces_inferred_type(self):
        dialect = PostgresDialect(
            "public", sql_types={"age": SQLTypeOverride("integer", "int4")}
        )
        assert dialect.column_ddl("age", Column("bigint"), set()) == '"age" int4'
        assert dialect.placeholder(0, "age", Column("bigint")) == "%s::integer"

    def test_column_cast_type_used_for_placeholder(self):
        dialect = PostgresDialect("public")
        assert dialect.placeholder(0, "payload", Column("jsonb", "jsonb")) == "%s::jsonb"
        assert dialect.placeholder(0, "email", Column("text")) == "%s"

    def test_type_mappings(self):
        assert PostgresDialect("s").sql_type(DataType.FLOAT64) == "numeric(38,18)"
        assert RedshiftDialect("s").sql_type(DataType.STRING) == "character varying(65535)"
        assert MySQLDialect("s").sql_type(DataType.TIMESTAMP) == "DATETIME"
        assert ClickHouseDialect("s").sql_type(DataType.BOOL) == "UInt8"
        assert SnowflakeDialect("s").sql_type(DataType.TIMESTAMP) == "timestamp(6)"

    def test_column_for_inferred_type(self):
        dialect = PostgresDialect("public", sql_types={"age": SQLTypeOverride("integer", "int4")})
        assert dialect.column_for("email", DataType.STRING) == Column("text")
        assert dialect.column_for("age", DataType.INT64) == Column("int4", "integer")
        assert MySQLDialect("s").column_for("seen", DataType.UNKNOWN) == Column("TEXT")

    def test_type_mapping_is_immutable(self):
        with pytest.raises(TypeError):
            PostgresDialect.type_mapping[DataType.STRING] = "varchar"

    def test_primary_key_statements(self):
        dialect = PostgresDialect("public")
        table = users_table(pk=("id", "email"))
        table.primary_key_name = "public_users_pk"
        assert dialect.create_primary_key_statement(table) == (
            'ALTER TABLE "public"."users" ADD CONSTRAINT "public_users_pk" '
            'PRIMARY KEY ("email", "id")'
        )
        assert dialect.drop_primary_key_statement(table) == (
            'ALTER TABLE "public"."users" DROP CONSTRAINT "public_users_pk"'
        )

    def test_add_column_for_pk_field_is_not_null(self):
        dialect = PostgresDialect("public")
        patch = Table(name="users", schema="public", columns={"id": Column("bigint")}, pk_fields={"id"})
        assert dialect.add_column_statement(patch, "id") == (
            'ALTER TABLE "public"."users" ADD COLUMN "id" bigint not null default 0'
        )


class TestValueLimits:
    def test_default_limits(self):
        assert PostgresDialect("s").value_limit == 65535
        assert RedshiftDialect("s").value_limit == 32767
        assert MySQLDialect("s").value_limit == 65535

    def test_override_limit(self):
        assert PostgresDialect("s", value_limit=10).value_limit == 10

    def test_invalid_limit(self):
        with pytest.raises(ValueError):
            PostgresDialect("s", value_limit=0)


# ─── DML ────────────────────────────────────────────────────────────────────

class TestPostgres:
    def test_upsert_statement(self):
        dialect = PostgresDialect("public")
        table = users_table()
        statement = dialect.upsert_statement(table, ["email", "id"], ["%s", "%s"])
        assert statement == (
            'INSERT INTO "public"."users" ("email", "id") VALUES (%s, %s) '
            'ON CONFLICT ON CONSTRAINT "public_users_pk" DO UPDATE SET "email" = excluded."email"'
        )

    def test_upsert_with_only_key_columns_does_nothing(self):
        dialect = PostgresDialect("public")
        statement = dialect.upsert_statement(users_table(), ["id"], ["%s"])
        assert statement.endswith("DO NOTHING")

    def test_merge_from_staging(self):
        dialect = PostgresDialect("public")
        [statement] = dialect.merge_statements(users_table(), "engine_tmp_abc", ["email", "id"])
        assert statement == (
            'INSERT INTO "public"."users" ("email", "id") '
            'SELECT "email", "id" FROM "public"."engine_tmp_abc" '
            'ON CONFLICT ON CONSTRAINT "public_users_pk" DO UPDATE SET "email" = excluded."email"'
        )

    def test_delete_statement(self):
        dialect = PostgresDialect("public")
        conditions = DeleteConditions(
            [
                DeleteCondition("_time_chunk", "=", "2024-01"),
                DeleteCondition("age", ">", 3),
            ],
            "or",
        )
        statement, params = dialect.delete_statement(users_table(), conditions)
        assert statement == (
            'DELETE FROM "public"."users" WHERE "_time_chunk" = %s OR "age" > %s'
        )
        assert params == ("2024-01", 3)

    def test_update_statement_casts_placeholders(self):
        dialect = PostgresDialect("public")
        table = users_table(id=Column("bigint"), payload=Column("jsonb", "jsonb"))
        statement, params = dialect.update_statement(table, ["payload"], {"payload": "{}"}, "id", 3)
        assert statement == 'UPDATE "public"."users" SET "payload" = %s::jsonb WHERE "id" = %s'
        assert params == ("{}", 3)

    def test_rename_keeps_schema(self):
        assert PostgresDialect("public").rename_table_statement("users_new", "users") == (
            'ALTER TABLE "public"."users_new" RENAME TO "users"'
        )

    def test_invalid_join_condition(self):
        with pytest.raises(ValueError):
            DeleteConditions([], "XOR")

    def test_normalize_pk_name(self):
        dialect = PostgresDialect("public")
        assert dialect.normalize_pk_name("users", "PUBLIC_USERS_PK") == "public_users_pk"
        assert dialect.normalize_pk_name("users", "users_pkey") == "users_pkey"


class TestRedshift:
    def test_merge_is_delete_then_insert(self):
        dialect = RedshiftDialect("public")
        statements = dialect.merge_statements(users_table(), "engine_tmp_abc", ["email", "id"])
        assert statements == [
            'DELETE FROM "public"."users" USING "public"."engine_tmp_abc" '
            'WHERE "public"."users"."id" = "public"."engine_tmp_abc"."id"',
            'INSERT INTO "public"."users" ("email", "id") '
            'SELECT "email", "id" FROM "public"."engine_tmp_abc"',
        ]

    def test_no_native_upsert(self):
        assert RedshiftDialect.native_upsert is False
        with pytest.raises(UnsupportedOperationError, match="redshift does not support"):
            RedshiftDialect("public").upsert_statement(users_table(), ["id"], ["%s"])

    def test_nullable_pk_error_detection(self):
        dialect = RedshiftDialect("public")
        assert dialect.is_nullable_pk_error(
            Exception("ERROR: Can not make a nullable column a primary key")
        )
        assert not dialect.is_nullable_pk_error(Exception("permission denied"))
        assert not PostgresDialect("public").is_nullable_pk_error(
            Exception("can not make a nullable column a primary key")
        )

    def test_recovery_statements(self):
        dialect = RedshiftDialect("public")
        live = Table(
            name="users",
            schema="public",
            columns={"id": Column("bigint"), "email": Column("character varying(65535)")},
        )
        statements = dialect.nullable_pk_recovery_statements(live, {"id", "missing"})
        assert statements == [
            'ALTER TABLE "public"."users" ADD COLUMN "id_tmp" bigint not null default 0',
            'UPDATE "public"."users" SET "id_tmp" = "id"',
            'ALTER TABLE "public"."users" DROP COLUMN "id"',
            'ALTER TABLE "public"."users" RENAME COLUMN "id_tmp" TO "id"',
        ]

    def test_default_recovery_hook_is_noop(self):
        assert PostgresDialect("public").nullable_pk_recovery_statements(users_table(), {"id"}) == []


class TestMySQL:
    def test_backtick_quoting_and_text_pk(self):
        dialect = MySQLDialect("events")
        table = users_table(
            schema="events",
            pk=("email",),
            email=Column("TEXT"),
            payload=Column("TEXT"),
        )
        assert dialect.create_table_statement(table) == (
            "CREATE TABLE `events`.`users` (`email` VARCHAR(255) not null default '', "
            "`payload` TEXT)"
        )

    def test_primary_key_statements(self):
        dialect = MySQLDialect("events")
        table = users_table(schema="events")
        assert dialect.create_primary_key_statement(table) == (
            "ALTER TABLE `events`.`users` ADD CONSTRAINT PRIMARY KEY (`id`)"
        )
        assert dialect.drop_primary_key_statement(table) == (
            "ALTER TABLE `events`.`users` DROP PRIMARY KEY"
        )

    def test_pk_without_name_maps_to_deterministic_name(self):
        dialect = MySQLDialect("events")
        name, fields = dialect.parse_primary_key("users", [{"column_name": "id"}])
        assert name == "events_users_pk"
        assert fields == {"id"}

    def test_temp_tables_are_temporary(self):
        dialect = MySQLDialect("events")
        tmp = Table(name="engine_tmp_x", schema="events", columns={"id": Column("BIGINT")})
        assert dialect.create_temp_table_statement(tmp).startswith("CREATE TEMPORARY TABLE")
        assert dialect.drop_temp_table_statement("engine_tmp_x") == (
            "DROP TEMPORARY TABLE `events`.`engine_tmp_x`"
        )
        assert dialect.drop_temp_table_statement("engine_tmp_x", if_exists=True) == (
            "DROP TEMPORARY TABLE IF EXISTS `events`.`engine_tmp_x`"
        )
        assert dialect.temp_tables_survive_rollback is True

    def test_update_statement(self):
        dialect = MySQLDialect("events")
        statement, params = dialect.update_statement(
            users_table(schema="events"), ["age", "email"], {"age": 30, "email": "a@b.c"}, "id", 7
        )
        assert statement == "UPDATE `events`.`users` SET `age` = %s, `email` = %s WHERE `id` = %s"
        assert params == (30, "a@b.c", 7)

    def test_rename_table(self):
        assert MySQLDialect("events").rename_table_statement("users", "users_old") == (
            "RENAME TABLE `events`.`users` TO `events`.`users_old`"
        )

    def test_bulk_merge_on_duplicate_key(self):
        dialect = MySQLDialect("events")
        [statement] = dialect.merge_statements(users_table(schema="events"), "engine_tmp_x", ["email", "id"])
        assert statement == (
            "INSERT INTO `events`.`users` (`email`, `id`) "
            "SELECT * FROM (SELECT `email` AS c_0, `id` AS c_1 FROM `events`.`engine_tmp_x`) AS tmp "
            "ON DUPLICATE KEY UPDATE `email` = c_0, `id` = c_1"
        )

    def test_single_upsert(self):
        dialect = MySQLDialect("events")
        statement = dialect.upsert_statement(users_table(schema="events"), ["id"], ["%s"])
        assert statement == (
            "INSERT INTO `events`.`users` (`id`) VALUES (%s) "
            "ON DUPLICATE KEY UPDATE `id` = VALUES(`id`)"
        )


class TestClickHouse:
    def test_named_placeholders_and_binding(self):
        dialect = ClickHouseDialect("events")
        assert dialect.placeholder(3, "a", Column("String")) == "%(p3)s"
        assert dialect.bind(["x", 1]) == {"p0": "x", "p1": 1}

    def test_cast_placeholder(self):
        dialect = ClickHouseDialect("events", sql_types={"ts": SQLTypeOverride("DateTime64(3)")})
        assert dialect.placeholder(0, "ts", Column("DateTime")) == "cast(%(p0)s, 'DateTime64(3)')"

    def test_booleans_become_integers(self):
        dialect = ClickHouseDialect("events")
        assert dialect.reformat_value(True) == 1
        assert dialect.reformat_value(False) == 0
        assert dialect.reformat_value("true") == "true"

    def test_missing_values_get_type_defaults(self):
        dialect = ClickHouseDialect("events", nullable_fields=["note"])
        table = Table(
            name="events",
            columns={
                "n": Column("Int64"),
                "s": Column("String"),
                "t": Column("DateTime"),
                "note": Column("String"),
            },
        )
        values = dialect.row_values(table, ["n", "note", "s", "t"], {"flag": True})
        assert values == [0, None, "", datetime(1970, 1, 1)]

    def test_nullable_fields_ddl_and_no_pk(self):
        dialect = ClickHouseDialect("events", nullable_fields=["email"])
        statement = dialect.create_table_statement(users_table(schema="events"))
        assert statement == (
            'CREATE TABLE "events"."users" ("age" bigint, "email" Nullable(text), "id" bigint) '
            "ENGINE = ReplacingMergeTree() ORDER BY (id)"
        )

    def test_engine_on_cluster(self):
        engine = TableEngine(
            database="events",
            cluster="main",
            partition_fields=(FieldExpression("_timestamp", "toYYYYMM"),),
            order_fields=(FieldExpression("event_id"),),
        )
        dialect = ClickHouseDialect("events", cluster="main", engine=engine)
        statement = dialect.create_table_statement(users_table(schema="events", pk=()))
        assert statement.startswith('CREATE TABLE "events"."users" ON CLUSTER "main" (')
        assert statement.endswith(
            "ENGINE = ReplicatedReplacingMergeTree('/clickhouse/tables/{shard}/events/users', '{replica}') "
            "PARTITION BY (toYYYYMM(_timestamp)) ORDER BY (event_id)"
        )

    def test_engine_without_keys_is_plain_merge_tree(self):
        engine = TableEngine(database="events")
        assert engine.clauses(users_table(pk=())) == "ENGINE = MergeTree() ORDER BY tuple()"

    def test_raw_engine_statement(self):
        engine = TableEngine(database="events", raw_statement="ENGINE = Log()")
        assert engine.clauses(users_table()) == "ENGINE = Log()"

    def test_delete_is_mutation(self):
        dialect = ClickHouseDialect("events")
        statement, params = dialect.delete_statement(
            users_table(schema="events"), DeleteConditions.single("age", "<", 18)
        )
        assert statement == 'ALTER TABLE "events"."users" DELETE WHERE "age" < %(p0)s'
        assert params == {"p0": 18}

    @pytest.mark.parametrize(
        "build",
        [
            lambda d: d.create_primary_key_statement(users_table()),
            lambda d: d.drop_primary_key_statement(users_table()),
            lambda d: d.upsert_statement(users_table(), ["id"], ["%(p0)s"]),
            lambda d: d.merge_statements(users_table(), "engine_tmp_x", ["id"]),
            lambda d: d.update_statement(users_table(), ["age"], {"age": 1}, "id", 1),
            lambda d: d.rename_table_statement("users", "users_old"),
        ],
    )
    def test_unsupported_statements(self, build):
        with pytest.raises(UnsupportedOperationError) as exc_info:
            build(ClickHouseDialect("events"))

        assert exc_info.value.destination == "clickhouse"

    def test_no_distributed_tables_without_cluster(self):
        assert ClickHouseDialect("events").has_distributed_tables is False
        assert ClickHouseDialect("events", cluster="main").has_distributed_tables is True

    def test_distributed_table_statements(self):
        dialect = ClickHouseDialect("events", cluster="main")
        patch = Table(
            name="users",
            schema="events",
            columns={"city": Column("String"), "age": Column("Int64")},
        )

        assert dialect.create_distributed_table_statement("users") == (
            'CREATE TABLE "events"."dist_users" ON CLUSTER "main" AS "events"."users" '
            "ENGINE = Distributed('main', 'events', 'users', rand())"
        )
        assert dialect.add_distributed_columns_statement(patch) == (
            'ALTER TABLE "events"."dist_users" ON CLUSTER "main" '
            'ADD COLUMN "age" Int64, ADD COLUMN "city" String'
        )
        assert dialect.drop_distributed_table_statement("users") == (
            'DROP TABLE IF EXISTS "events"."dist_users" ON CLUSTER "main"'
        )
        assert dialect.truncate_distributed_table_statement("users") == (
            'TRUNCATE TABLE IF EXISTS "events"."dist_users" ON CLUSTER "main"'
        )


class TestSnowflake:
    def test_identifier_quoting(self):
        dialect = SnowflakeDialect("PUBLIC")
        assert dialect.quote("email") == "email"
        assert dialect.quote("_col$1") == "_col$1"
        assert dialect.quote("1st") == '"1st"'
        assert dialect.quote("user-agent") == '"user-agent"'

    def test_schema_lookup_uses_upper_case(self):
        dialect = SnowflakeDialect("analytics")
        _, params = dialect.table_schema_query("users")
        assert params == ("ANALYTICS", "USERS")

    def test_merge_statement(self):
        dialect = SnowflakeDialect("PUBLIC")
        [statement] = dialect.merge_statements(users_table(schema="PUBLIC"), "engine_tmp_x", ["email", "id"])
        assert statement == (
            "MERGE INTO PUBLIC.users T USING PUBLIC.engine_tmp_x S ON T.id = S.id "
            "WHEN MATCHED THEN UPDATE SET T.email = S.email "
            "WHEN NOT MATCHED THEN INSERT (email, id) VALUES (S.email, S.id)"
        )

    def test_single_row_upsert_selects_placeholders(self):
        dialect = SnowflakeDialect("PUBLIC")
        statement = dialect.upsert_statement(users_table(schema="PUBLIC"), ["id"], ["%s"])
        assert statement == (
            "MERGE INTO PUBLIC.users T USING (SELECT %s AS id) S ON T.id = S.id "
            "WHEN NOT MATCHED THEN INSERT (id) VALUES (S.id)"
        )

    def test_rename_and_update(self):
        dialect = SnowflakeDialect("PUBLIC")
        assert dialect.rename_table_statement("users", "deprecated_users") == (
            "ALTER TABLE PUBLIC.users RENAME TO PUBLIC.deprecated_users"
        )
        statement, params = dialect.update_statement(
            users_table(schema="PUBLIC"), ["email"], {"email": "x"}, "id", 1
        )
        assert statement == "UPDATE PUBLIC.users SET email = %s WHERE id = %s"
        assert params == ("x", 1)
        assert dialect.drop_temp_table_statement("engine_tmp_x", if_exists=True) == (
            "DROP TABLE IF EXISTS PUBLIC.engine_tmp_x"
        )

    def test_parse_lower_cases_names(self):
        dialect = SnowflakeDialect("PUBLIC")
        columns = dialect.parse_columns([{"name": "EMAIL", "column_type": "TEXT"}])
        assert columns == {"email": Column("TEXT")}
        name, fields = dialect.parse_primary_key(
            "users", [{"column_name": "ID", "constraint_name": "PUBLIC_USERS_PK"}]
        )
        assert fields == {"id"}
        assert name == "PUBLIC_users_pk"


class TestDialectRegistry:
    def test_lookup_is_case_insensitive(self):
        assert DialectRegistry.get_dialect_class("redshift") is RedshiftDialect
        assert DialectRegistry.get_dialect_class("PostgreSQL") is PostgresDialect

    def test_unknown_type(self):
        with pytest.raises(ConfigurationException):
            DialectRegistry.get_dialect_class("bigquery")
