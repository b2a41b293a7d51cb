import logging

from sqlalchemy import event
from sqlalchemy.engine import Engine, make_url
from sqlmodel import SQLModel, create_engine

from .config import Settings

# Import all models to ensure they are registered with SQLModel metadata
from .models import Task  # noqa: F401

logger = logging.getLogger(__name__)


def _create_sqlite_engine(settings: Settings) -> Engine:
    kwargs = {}
    if make_url(settings.database_url).database not in (None, "", ":memory:"):
        # File databases get a queue pool; the in-memory pool takes no timeout.
        kwargs["pool_timeout"] = settings.store_timeout_seconds

    engine = create_engine(
        settings.database_url,
        echo=False,
        connect_args={
            "check_same_thread": False,
            "timeout": settings.store_timeout_seconds,
        },
        **kwargs,
    )

    # pysqlite defers BEGIN until the first write, which lets two sessions read
    # the same row and then both write it. Take the write lock up front instead.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL")
        finally:
            cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def create_db_engine(settings: Settings) -> Engine:
    """Build the engine for the configured backing store, with bounded waits."""
    if settings.database_url.startswith("sqlite"):
        return _create_sqlite_engine(settings)

    connect_args = {}
    if settings.database_url.startswith("postgresql"):
        timeout_ms = int(settings.store_timeout_seconds * 1000)
        connect_args = {
            "connect_timeout": max(1, int(settings.store_timeout_seconds)),
            "options": f"-c statement_timeout={timeout_ms} -c lock_timeout={timeout_ms}",
        }

    return create_engine(
        settings.database_url,
        echo=False,
        pool_pre_ping=True,
        pool_timeout=settings.store_timeout_seconds,
        connect_args=connect_args,
    )


def create_tables(engine: Engine) -> None:
    """Create all database tables and indexes (idempotent)."""
    SQLModel.metadata.create_all(bind=engine)
    logger.info("Task tables ready url=%s", engine.url.render_as_string(hide_password=True))
