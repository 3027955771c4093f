"""
Destination configuration and adapter construction.

Config models validate the connection settings of each destination type;
``create_adapter`` builds the dialect, the pooled data source (with the
driver imported lazily) and the relational adapter.
"""

from typing import Any, Callable, Dict, List, Mapping, Optional

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from destination_engine.adapters.relational import RelationalAdapter
from destination_engine.config.settings import EngineSettings, get_settings
from destination_engine.core.database import DataSource
from destination_engine.core.exceptions import ConfigurationException
from destination_engine.core.logging import QueryLogger
from destination_engine.dialects import (
    ClickHouseDialect,
    DialectRegistry,
    FieldExpression,
    TableEngine,
)
from destination_engine.schema.table import SQLTypeOverride

logger = structlog.get_logger(__name__)

APPLICATION_NAME = "destination_engine"

DEFAULT_PORTS = {
    "POSTGRES": 5432,
    "POSTGRESQL": 5432,
    "REDSHIFT": 5439,
    "MYSQL": 3306,
}


class DataSourceConfig(BaseModel):
    """Postgres, Redshift and MySQL connection settings."""

    host: str = Field(..., min_length=1)
    port: Optional[int] = Field(None, gt=0, le=65535)
    db: str = Field(..., min_length=1)
    schema_name: str = Field("", alias="schema")
    username: str = ""
    password: str = ""
    parameters: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}

    @field_validator("host", "db")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class SnowflakeConfig(BaseModel):
    account: str = Field(..., min_length=1)
    port: int = Field(443, gt=0, le=65535)
    db: str = Field(..., min_length=1)
    schema_name: str = Field("PUBLIC", alias="schema")
    username: str = Field(..., min_length=1)
    password: str = ""
    private_key: str = ""
    private_key_passphrase: str = ""
    warehouse: str = Field(..., min_length=1)
    role: str = ""
    parameters: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def credentials_present(self) -> "SnowflakeConfig":
        if not self.password and not self.private_key:
            raise ValueError("password or private_key is required")
        return self


class FieldConfig(BaseModel):
    field: str = Field(..., min_length=1)
    function: str = ""


class EngineConfig(BaseModel):
    """ClickHouse table engine settings. raw_statement overrides the rest."""

    raw_statement: str = ""
    nullable_fields: List[str] = Field(default_factory=list)
    partition_fields: List[FieldConfig] = Field(default_factory=list)
    order_fields: List[FieldConfig] = Field(default_factory=list)
    primary_keys: List[str] = Field(default_factory=list)


class ClickHouseConfig(BaseModel):
    dsns: List[str] = Field(..., min_length=1)
    db: str = Field(..., min_length=1)
    cluster: str = ""
    engine: Optional[EngineConfig] = None

    @field_validator("dsns")
    @classmethod
    def dsns_not_blank(cls, v: List[str]) -> List[str]:
        v = [dsn.strip() for dsn in v]
        if any(not dsn for dsn in v):
            raise ValueError("DSNs values can't be empty")
        return v

    @model_validator(mode="after")
    def cluster_for_many_dsns(self) -> "ClickHouseConfig":
        if not self.cluster and len(self.dsns) > 1:
            raise ValueError("cluster is required parameter when dsns count > 1")
        return self

    def table_engine(self) -> TableEngine:
        engine = self.engine or EngineConfig()
        return TableEngine(
            database=self.db,
            cluster=self.cluster,
            raw_statement=engine.raw_statement,
            partition_fields=tuple(
                FieldExpression(f.field, f.function) for f in engine.partition_fields
            ),
            order_fields=tuple(
                FieldExpression(f.field, f.function) for f in engine.order_fields
            ),
            primary_keys=tuple(engine.primary_keys),
        )


CONFIG_MODELS = {
    "POSTGRES": DataSourceConfig,
    "POSTGRESQL": DataSourceConfig,
    "REDSHIFT": DataSourceConfig,
    "MYSQL": DataSourceConfig,
    "SNOWFLAKE": SnowflakeConfig,
    "CLICKHOUSE": ClickHouseConfig,
}


def parse_config(destination_type: str, config: Mapping[str, Any]) -> BaseModel:
    """Validate a raw destination config dict."""
    model = CONFIG_MODELS.get(destination_type.upper())
    if model is None:
        raise ConfigurationException(
            f"Unsupported destination type '{destination_type}'. "
            f"Available: {list(CONFIG_MODELS.keys())}",
            {"destination_type": destination_type},
        )
    try:
        return model.model_validate(dict(config))
    except ValidationError as e:
        raise ConfigurationException(
            f"Invalid {destination_type} config: {e}",
            {"destination_type": destination_type, "errors": e.errors()},
        ) from e


# ─── Driver connections ───────────────────────────────────────────────────────


def _postgres_creator(config: DataSourceConfig, port: int) -> Callable[[], Any]:
    def connect() -> Any:
        import psycopg2

        params = {"connect_timeout": 10, "application_name": APPLICATION_NAME}
        params.update(config.parameters)
        return psycopg2.connect(
            host=config.host,
            port=port,
            dbname=config.db,
            user=config.username,
            password=config.password,
            **params,
        )

    return connect


def _mysql_creator(config: DataSourceConfig, port: int) -> Callable[[], Any]:
    def connect() -> Any:
        import mysql.connector

        return mysql.connector.connect(
            host=config.host,
            port=port,
            database=config.db,
            user=config.username,
            password=config.password,
            autocommit=False,
            **config.parameters,
        )

    return connect


def _snowflake_creator(config: SnowflakeConfig) -> Callable[[], Any]:
    def connect() -> Any:
        import snowflake.connector

        conn_params: Dict[str, Any] = {
            "user": config.username,
            "account": config.account,
            "port": config.port,
            "warehouse": config.warehouse,
            "database": config.db,
            "schema": config.schema_name,
            "application": APPLICATION_NAME,
            "autocommit": False,
        }
        if config.role:
            conn_params["role"] = config.role

        if config.private_key:
            conn_params["private_key"] = load_private_key(
                config.private_key, config.private_key_passphrase
            )
        else:
            conn_params["password"] = config.password
        conn_params.update(config.parameters)
        return snowflake.connector.connect(**conn_params)

    return connect


def load_private_key(private_key: str, passphrase: str = "") -> bytes:
    """Convert a PEM private key into the DER bytes the Snowflake connector expects."""
    from cryptography.hazmat.backends import default_backend
    from cryptography.hazmat.primitives import serialization

    pem = private_key.strip().replace("\\n", "\n")
    try:
        p_key = serialization.load_pem_private_key(
            pem.encode(),
            password=passphrase.encode() if passphrase else None,
            backend=default_backend(),
        )
    except (ValueError, TypeError) as e:
        raise ConfigurationException(f"Invalid Snowflake private key: {e}") from e
    return p_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _clickhouse_creator(config: ClickHouseConfig) -> Callable[[], Any]:
    def connect() -> Any:
        from clickhouse_driver import dbapi

        return dbapi.connect(dsn=config.dsns[0])

    return connect


# ─── Factory ──────────────────────────────────────────────────────────────────


def create_adapter(
    destination_type: str,
    config: Mapping[str, Any],
    destination_id: str = "",
    sql_types: Optional[Mapping[str, SQLTypeOverride]] = None,
    settings: Optional[EngineSettings] = None,
) -> RelationalAdapter:
    """
    Build a relational adapter for a destination.

    Args:
        destination_type: postgres, redshift, mysql, clickhouse or snowflake
        config: Raw connection config (validated here)
        destination_id: Identifier used in logs
        sql_types: Per-field SQL type overrides
        settings: Engine settings (defaults to the cached environment settings)

    Returns:
        The adapter. Connections are opened lazily on first use.
    """
    settings = settings or get_settings()
    key = destination_type.upper()
    parsed = parse_config(key, config)
    dialect_cls = DialectRegistry.get_dialect_class(key)

    if isinstance(parsed, ClickHouseConfig):
        engine = parsed.engine or EngineConfig()
        dialect = ClickHouseDialect(
            parsed.db,
            sql_types,
            cluster=parsed.cluster,
            engine=parsed.table_engine(),
            nullable_fields=engine.nullable_fields,
        )
        creator = _clickhouse_creator(parsed)
    elif isinstance(parsed, SnowflakeConfig):
        dialect = dialect_cls(parsed.schema_name, sql_types)
        creator = _snowflake_creator(parsed)
    else:
        port = parsed.port or DEFAULT_PORTS[key]
        if key == "MYSQL":
            dialect = dialect_cls(parsed.schema_name or parsed.db, sql_types)
            creator = _mysql_creator(parsed, port)
        else:
            dialect = dialect_cls(parsed.schema_name or "public", sql_types)
            creator = _postgres_creator(parsed, port)

    destination_id = destination_id or f"{dialect.name}:{dialect.schema}"
    data_source = DataSource(creator, name=destination_id, settings=settings)
    logger.info(
        "Destination adapter created",
        destination_id=destination_id,
        destination_type=dialect.name,
        schema=dialect.schema,
    )
    return RelationalAdapter(
        dialect,
        data_source,
        destination_id=destination_id,
        query_logger=QueryLogger(
            destination_id,
            ddl_enabled=settings.ddl_debug_log_enabled,
            queries_enabled=settings.queries_debug_log_enabled,
        ),
        temp_table_prefix=settings.temp_table_prefix,
    )
