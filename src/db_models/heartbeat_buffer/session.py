"""Engine and session helpers for the local heartbeat buffer database."""

from pathlib import Path

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import sessionmaker


def _set_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    # FULL syncs the WAL on every commit so an acknowledged append survives a crash
    cursor.execute("PRAGMA synchronous=FULL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def get_buffer_engine(db_path: str | Path) -> Engine:
    """Return a SQLAlchemy engine on the SQLite buffer file, creating its directory."""
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        f"sqlite:///{path}",
        future=True,
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


def get_buffer_sessionmaker(engine: Engine, autoflush: bool = False):
    """Sessionmaker factory bound to the buffer engine."""
    return sessionmaker(
        bind=engine,
        autoflush=autoflush,
        expire_on_commit=False,
        future=True,
    )


__all__ = ["get_buffer_engine", "get_buffer_sessionmaker"]
