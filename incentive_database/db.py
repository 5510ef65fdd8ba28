import os

from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

_engine = None
_session_factory = None


# PUBLIC_INTERFACE
def get_database_url():
    """
    Retrieves the database URL from the environment variable DATABASE_URL.
    """
    load_dotenv()
    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        raise ValueError("DATABASE_URL environment variable not set.")
    return db_url


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# PUBLIC_INTERFACE
def make_engine(db_url, echo=False):
    """
    Builds an engine for db_url. SQLite URLs get foreign key enforcement, and the
    bare in-memory URL ("sqlite://") shares one connection across threads.
    """
    kwargs = {"future": True, "echo": echo}
    if db_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    engine = create_engine(db_url, **kwargs)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


# PUBLIC_INTERFACE
def get_engine():
    """Lazily creates the process-wide engine from DATABASE_URL."""
    global _engine
    if _engine is None:
        _engine = make_engine(get_database_url())
    return _engine


# PUBLIC_INTERFACE
def SessionLocal():
    """Opens a new session bound to the process-wide engine."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    return _session_factory()
