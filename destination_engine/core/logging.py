"""
Structured logging for the destination engine.

The engine only emits through structlog; ``setup_logging`` is for the host
process (a loader service, a CLI, a test run) that owns the output. Context
bound with ``structlog.contextvars.bound_contextvars`` (a batch or pipeline
id, for instance) is merged into every engine event, SQL debug lines included.
"""

import logging
import sys
from typing import Any, Optional, Sequence

import structlog

from destination_engine.config.settings import get_settings

ENGINE_LOGGER = "destination_engine"

# driver loggers that are chatty at INFO
DRIVER_LOGGERS = ("snowflake.connector", "clickhouse_driver", "mysql.connector")


def setup_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Configure structured logging for the engine and its drivers.

    Args:
        log_level: Overrides ``LOG_LEVEL`` from settings
        log_format: ``json`` or ``text``; overrides ``LOG_FORMAT`` from settings
    """
    settings = get_settings()
    log_level = (log_level or settings.log_level).upper()
    log_format = log_format or settings.log_format
    level = getattr(logging, log_level, logging.INFO)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger(ENGINE_LOGGER).setLevel(level)
    driver_level = logging.DEBUG if level == logging.DEBUG else logging.WARNING
    for name in DRIVER_LOGGERS:
        logging.getLogger(name).setLevel(driver_level)


class QueryLogger:
    """
    SQL debug logger bound to one destination.

    DDL and DML are switched on independently through
    ``ddl_debug_log_enabled`` and ``queries_debug_log_enabled``.
    """

    def __init__(
        self,
        destination_id: str,
        ddl_enabled: Optional[bool] = None,
        queries_enabled: Optional[bool] = None,
    ):
        settings = get_settings()
        self.destination_id = destination_id
        self.ddl_enabled = (
            settings.ddl_debug_log_enabled if ddl_enabled is None else ddl_enabled
        )
        self.queries_enabled = (
            settings.queries_debug_log_enabled
            if queries_enabled is None
            else queries_enabled
        )
        self._logger = structlog.get_logger("destination_engine.sql").bind(
            destination_id=destination_id
        )

    def log_ddl(self, statement: str) -> None:
        if self.ddl_enabled:
            self._logger.info("ddl", statement=statement)

    def log_query(self, statement: str) -> None:
        if self.queries_enabled:
            self._logger.info("query", statement=statement)

    def log_query_with_values(self, statement: str, values: Sequence[Any]) -> None:
        if self.queries_enabled:
            self._logger.info("query", statement=statement, values=list(values))
