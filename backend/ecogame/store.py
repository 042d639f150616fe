"""Path-keyed document store over SQLModel.

Each document is one row addressed by a slash-separated path such as
``players/player_1``. Reading a path without its own row assembles the
documents below it into a nested mapping. Every write bumps the row
version, which is what ``compare_and_set`` and ``transact`` guard on, so
several processes sharing one database never lose an update.
"""

import copy
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from sqlalchemy import delete, insert, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import Session, select

from .errors import ConnectionUnavailable, TransactionConflict
from .models import Document

logger = logging.getLogger(__name__)


@dataclass
class TransactionResult:
    """Outcome of a read-modify-write transaction."""

    committed: bool
    value: Any
    attempts: int = 1


def normalize_path(path: str) -> str:
    parts = [part for part in path.strip().split("/") if part]
    if not parts:
        raise ValueError("Document path must not be empty")
    return "/".join(parts)


def paths_overlap(a: str, b: str) -> bool:
    """True when a write to one path changes what a read of the other returns."""

    return a == b or a.startswith(b + "/") or b.startswith(a + "/")


class DocumentStore:
    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @contextmanager
    def _guard(self) -> Iterator[None]:
        try:
            yield
        except OperationalError as exc:
            raise ConnectionUnavailable(f"store unavailable: {str(exc.orig)[:160]}") from exc

    def get(self, path: str) -> Any:
        path = normalize_path(path)
        with self._guard(), Session(self._engine) as session:
            doc = session.get(Document, path)
            if doc is not None:
                return copy.deepcopy(doc.value)
            stmt = select(Document).where(Document.path.startswith(path + "/", autoescape=True))
            rows = session.exec(stmt).all()
        if not rows:
            return None
        tree: dict[str, Any] = {}
        for row in sorted(rows, key=lambda r: r.path):
            parts = row.path[len(path) + 1 :].split("/")
            node = tree
            for part in parts[:-1]:
                child = node.get(part)
                if not isinstance(child, dict):
                    child = {}
                    node[part] = child
                node = child
            node[parts[-1]] = copy.deepcopy(row.value)
        return tree

    def get_versioned(self, path: str) -> tuple[Any, int]:
        """Return the document value and its version (0 when absent)."""

        path = normalize_path(path)
        with self._guard(), Session(self._engine) as session:
            doc = session.get(Document, path)
            if doc is None:
                return None, 0
            return copy.deepcopy(doc.value), doc.version

    def put(self, path: str, value: Any) -> None:
        path = normalize_path(path)
        if value is None:
            self.delete(path)
            return
        with self._guard(), self._engine.begin() as conn:
            conn.execute(delete(Document).where(Document.path.startswith(path + "/", autoescape=True)))
        self.transact(path, lambda _current: copy.deepcopy(value))

    def merge(self, path: str, fields: dict[str, Any]) -> None:
        def apply(current: Any) -> dict[str, Any]:
            base = dict(current) if isinstance(current, dict) else {}
            base.update(fields)
            return base

        self.transact(path, apply)

    def delete(self, path: str) -> None:
        path = normalize_path(path)
        with self._guard(), self._engine.begin() as conn:
            conn.execute(
                delete(Document).where(
                    (Document.path == path) | Document.path.startswith(path + "/", autoescape=True)
                )
            )

    def compare_and_set(self, path: str, expected_version: int, value: Any) -> bool:
        """Write ``value`` only if the stored version still equals ``expected_version``.

        Version 0 means "document must not exist yet". Returns False when
        another writer got there first.
        """

        path = normalize_path(path)
        with self._guard():
            if expected_version == 0:
                try:
                    with self._engine.begin() as conn:
                        conn.execute(insert(Document).values(path=path, value=value, version=1))
                except IntegrityError:
                    return False
                return True
            with self._engine.begin() as conn:
                result = conn.execute(
                    update(Document)
                    .where(Document.path == path, Document.version == expected_version)
                    .values(value=value, version=expected_version + 1)
                )
                return result.rowcount == 1

    def transact(
        self,
        path: str,
        fn: Callable[[Any], Any],
        *,
        max_attempts: int = 25,
    ) -> TransactionResult:
        """Atomically replace a document with ``fn(current)``.

        ``fn`` receives a private copy of the current value (``None`` when
        absent) and may be called several times. Returning ``None`` aborts
        without writing; an exception raised by ``fn`` propagates and nothing
        is written.
        """

        path = normalize_path(path)
        for attempt in range(1, max(1, max_attempts) + 1):
            current, version = self.get_versioned(path)
            proposed = fn(copy.deepcopy(current))
            if proposed is None:
                return TransactionResult(committed=False, value=current, attempts=attempt)
            if self.compare_and_set(path, version, proposed):
                return TransactionResult(committed=True, value=proposed, attempts=attempt)
            logger.debug("transaction conflict path=%s attempt=%s version=%s", path, attempt, version)
        raise TransactionConflict(f"transaction on {path} gave up after {max_attempts} attempts")
