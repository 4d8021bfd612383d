import logging
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker

from localchat.core.config import settings
from localchat.db.base import Base

logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> Engine:
    """Create an engine; SQLite connections get foreign keys switched on."""
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        engine = create_engine(
            database_url,
            future=True,
            connect_args={"check_same_thread": False},
        )

        # SQLite ignores ON DELETE CASCADE unless foreign keys are enabled per connection
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    connect_args = {}
    # Supabase requires SSL connection
    if "supabase" in database_url.lower():
        connect_args["sslmode"] = "require"

    return create_engine(
        database_url,
        future=True,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        connect_args=connect_args,
    )


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine = None) -> None:
    """Ensure the sessions and messages tables exist."""
    # Register models on Base.metadata
    import localchat.models  # noqa: F401

    bind = bind or engine
    database = bind.url.database
    if bind.url.get_backend_name() == "sqlite" and database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)

    Base.metadata.create_all(bind=bind)
    logger.info("Database tables ensured (chat_sessions, messages)")
