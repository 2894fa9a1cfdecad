"""Engine and session helpers of the SQLite index.

One engine per process, bound to the database of the active
:class:`~tabds.config.Settings`. SQLite runs in WAL mode so the web API can
read while the CLI prepares a dataset.
"""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from tabds.comm.models import Base

logger = logging.getLogger(__name__)

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None
_db_path: Path | None = None


def _set_sqlite_pragmas(dbapi_conn, connection_record):  # noqa: ARG001
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_db(path: str | Path) -> Engine:
    """Bind the module engine to *path*, creating the file and tables.

    Calling it again with the same path keeps the existing engine.
    """
    global _engine, _SessionFactory, _db_path  # noqa: PLW0603

    db_path = Path(path).expanduser().resolve()
    if _engine is not None and db_path == _db_path:
        return _engine
    reset()

    db_path.parent.mkdir(parents=True, exist_ok=True)
    _engine = create_engine(f"sqlite:///{db_path}", echo=False)
    event.listen(_engine, "connect", _set_sqlite_pragmas)
    Base.metadata.create_all(_engine)

    _SessionFactory = sessionmaker(bind=_engine)
    _db_path = db_path
    logger.debug("Opened index database %s", db_path)
    return _engine


def get_session() -> Session:
    """New :class:`Session` on the engine opened by :func:`init_db`."""
    if _SessionFactory is None:
        raise RuntimeError("Index database is not initialised, call init_db() first")
    return _SessionFactory()


def reset() -> None:
    """Dispose the engine (tests, or switching databases)."""
    global _engine, _SessionFactory, _db_path  # noqa: PLW0603
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None
    _db_path = None
