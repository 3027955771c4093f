"""
Pooled data source for destination connections.

Wraps a DB-API ``connect`` callable in a SQLAlchemy ``QueuePool`` so that
concurrent callers can check out connections safely.
"""

from typing import Any, Callable, Optional

import structlog
from sqlalchemy.pool import QueuePool

from destination_engine.config.settings import EngineSettings, get_settings
from destination_engine.core.exceptions import DatabaseException

logger = structlog.get_logger(__name__)


class DataSource:
    """Connection pool for a single destination."""

    def __init__(
        self,
        creator: Callable[[], Any],
        name: str = "",
        settings: Optional[EngineSettings] = None,
    ):
        settings = settings or get_settings()
        self.name = name
        self._pool = QueuePool(
            creator,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            timeout=settings.db_pool_timeout,
            recycle=settings.db_pool_recycle,
        )
        logger.info(
            "Destination connection pool created",
            destination=name,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
        )

    def connect(self) -> Any:
        """Check out a connection. Closing it returns it to the pool."""
        try:
            return self._pool.connect()
        except Exception as e:
            raise DatabaseException(
                f"Failed to get connection from pool: {e}", {"destination": self.name}
            ) from e

    def close(self) -> None:
        """Close all pooled connections."""
        self._pool.dispose()
        logger.info("Destination connection pool disposed", destination=self.name)
