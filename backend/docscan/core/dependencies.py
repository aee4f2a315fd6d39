from collections.abc import Generator
from functools import lru_cache

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from docscan.core.config import get_settings


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:  # type: ignore[no-untyped-def]
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@lru_cache
def get_session_factory() -> sessionmaker | None:
    """Session factory for ``DATABASE_URL``, built on first use.

    Returns ``None`` when no database is configured so the app can still boot
    for health checks.
    """
    url = get_settings().database_url
    if not url:
        return None

    is_sqlite = url.startswith("sqlite")
    # scan routes are async over a sync session; the connection crosses threads
    connect_args = {"check_same_thread": False, "timeout": 30} if is_sqlite else {}
    bind = create_engine(url, pool_pre_ping=True, connect_args=connect_args)
    if is_sqlite:
        event.listen(bind, "connect", _enable_sqlite_foreign_keys)

    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


def get_db() -> Generator[Session, None, None]:
    factory = get_session_factory()
    if factory is None:
        raise RuntimeError("DATABASE_URL is not configured")

    db = factory()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
