import logging
from typing import Optional, Union

import sqlalchemy
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.pool import StaticPool

from dyntables import config
from dyntables.provisioning import ProvisioningService
from dyntables.registry import SchemaRegistry
from dyntables.rows import RowService

logger = logging.getLogger(__name__)

# SINGLETON ENGINE: module-level, created once at startup
_engine: Optional[Engine] = None


def create_db_engine(url: Union[str, URL]) -> Engine:
    """
    Build an engine for `url`.

    Server databases get a bounded QueuePool: callers block until a
    connection frees up. In-memory SQLite shares a single connection.
    """
    url = make_url(url)
    if url.get_backend_name() == "sqlite":
        if url.database in (None, "", ":memory:"):
            # One shared connection, otherwise every thread sees its own empty database
            return sqlalchemy.create_engine(
                url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return sqlalchemy.create_engine(url)

    size = config.pool_size()
    logger.info(f"Initializing DB pool with size={size}, overflow=0, pre_ping=True")
    return sqlalchemy.create_engine(
        url,
        pool_size=size,
        max_overflow=0,
        pool_recycle=1800,
        pool_pre_ping=True,
    )


def init_db_engine(url: Optional[URL] = None) -> Engine:
    """
    Initialize the database engine ONCE at application startup.
    Later calls return the existing engine.
    """
    global _engine
    if _engine is not None:
        return _engine
    _engine = create_db_engine(url or config.database_url())
    return _engine


def get_db_engine() -> Engine:
    """Get initialized engine. Must be called AFTER init_db_engine()."""
    if _engine is None:
        raise RuntimeError(
            "DB engine not initialized. "
            "Call init_db_engine() in a startup event first."
        )
    return _engine


def dispose_db_engine() -> None:
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None


class Services:
    """The registry, provisioning and row services sharing one engine."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.registry = SchemaRegistry(engine)
        self.provisioning = ProvisioningService(engine, self.registry)
        self.rows = RowService(engine)

    def start(self) -> "Services":
        self.registry.ensure_initialized()
        return self
