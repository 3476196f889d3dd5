from contextlib import contextmanager
from typing import Iterator, Optional
import os

from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from formsweep.core.exceptions import ConfigurationError

load_dotenv()

# Global cache for engines
# Key: db_url, Value: sessionmaker
_engine_cache = {}

Base = declarative_base()


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores FK constraints unless asked per connection
    module = type(dbapi_connection).__module__
    if module.startswith("sqlite3") or "pysqlite" in module:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def resolve_db_url(database_url: Optional[str] = None) -> str:
    url = (database_url or os.getenv("DATABASE_URL", "")).strip()
    if not url:
        raise ConfigurationError("DATABASE_URL environment variable is not set")
    return url


def get_session_factory(database_url: Optional[str] = None) -> sessionmaker:
    """
    Return the cached sessionmaker for a database URL.

    Reuses one engine per URL to prevent connection pool exhaustion when the
    worker runs the job repeatedly.
    """
    db_url = resolve_db_url(database_url)

    if db_url not in _engine_cache:
        if db_url.startswith("sqlite"):
            engine = create_engine(
                db_url,
                connect_args={"check_same_thread": False},
                pool_pre_ping=True,
            )
        else:
            engine = create_engine(
                db_url,
                pool_size=int(os.getenv("DB_POOL_SIZE", "10")),
                max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "20")),
                pool_pre_ping=True,
                pool_recycle=3600,
            )
        _engine_cache[db_url] = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    return _engine_cache[db_url]


@contextmanager
def session_scope(factory: sessionmaker, commit: bool = True) -> Iterator[Session]:
    """
    One transaction on one pooled connection.

    Commits when the block exits cleanly (or rolls back when ``commit`` is
    False), rolls back on any exception, and always returns the connection.
    """
    db = factory()
    try:
        yield db
        if commit:
            db.commit()
        else:
            db.rollback()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
