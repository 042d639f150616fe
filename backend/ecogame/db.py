"""Database bootstrap for the shared document store.

This module exposes the SQLAlchemy engine behind ``DocumentStore`` and the
round history, plus the table initialization used by the FastAPI lifespan
and tests.
"""

from pathlib import Path
from typing import Any

from sqlmodel import SQLModel, create_engine

from .config import settings

# Seconds a SQLite writer waits on another process's lock before failing.
SQLITE_BUSY_TIMEOUT_S = 15


def _ensure_sqlite_parent_dir(database_url: str) -> None:
    """Create local SQLite parent directory when file-based URL is used."""

    if not database_url.startswith("sqlite:///"):
        return
    raw_path = database_url[len("sqlite:///") :].split("?", 1)[0].strip()
    if not raw_path or raw_path == ":memory:" or raw_path.startswith("file:"):
        return
    parent = Path(raw_path).expanduser().parent
    if str(parent) and not parent.exists():
        parent.mkdir(parents=True, exist_ok=True)


def _connect_args(database_url: str) -> dict[str, Any]:
    if database_url.startswith("sqlite"):
        return {"timeout": SQLITE_BUSY_TIMEOUT_S}
    return {}


_ensure_sqlite_parent_dir(settings.database_url)
engine = create_engine(settings.database_url, echo=False, connect_args=_connect_args(settings.database_url))


def init_db() -> None:
    """Create the document and round history tables."""

    from . import models  # noqa: F401
    SQLModel.metadata.create_all(engine)
