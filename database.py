from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings

SQLITE_PRAGMAS = ("journal_mode=WAL", "foreign_keys=ON")


def is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _apply_sqlite_pragmas(dbapi_conn, _record) -> None:
    cursor = dbapi_conn.cursor()
    for pragma in SQLITE_PRAGMAS:
        cursor.execute(f"PRAGMA {pragma};")
    cursor.close()


def build_engine(url: str, *, single_connection: bool = False) -> Engine:
    """Create an engine for the ledger database.

    SQLite connections are shared across the API's worker threads and get
    WAL journaling plus foreign key enforcement. ``single_connection`` pins
    every checkout to one connection, which an in-memory database needs to
    keep its tables between sessions.
    """
    options: dict[str, object] = {}
    if is_sqlite(url):
        options["connect_args"] = {"check_same_thread": False}
        if single_connection:
            options["poolclass"] = StaticPool

    ledger_engine = create_engine(url, **options)
    if is_sqlite(url):
        event.listen(ledger_engine, "connect", _apply_sqlite_pragmas)
    return ledger_engine


def session_factory(bind: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = build_engine(get_settings().database_url)
SessionLocal = session_factory(engine)


class Base(DeclarativeBase):
    pass


@contextmanager
def session_scope() -> Iterator[Session]:
    """Unit of work for code outside a request, such as startup seeding."""
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
