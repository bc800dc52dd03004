"""
Document store backed by a single SQL table.

Collections are addressed by slash-separated paths
(``artifacts/<namespace>/public/data/products``). Every document carries a
version that is bumped on each write, which is what lets callers do
compare-and-swap updates inside a transaction. Listeners registered with
``subscribe`` receive the whole collection after every committed change.
"""
import json
import logging
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Iterator, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from manha_pos.core.errors import ConflictError, NotFoundError, PosError, StoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
  collection VARCHAR(512) NOT NULL,
  id VARCHAR(64) NOT NULL,
  seq INTEGER NOT NULL,
  version INTEGER NOT NULL,
  data TEXT NOT NULL,
  PRIMARY KEY (collection, id)
)
"""


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class Document:
    id: str
    data: dict[str, Any]
    version: int

    def to_dict(self) -> dict[str, Any]:
        return {**self.data, "id": self.id}


SnapshotCallback = Callable[[list[Document]], None]


def _resolve(value: Any, now: str) -> Any:
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, dict):
        return {key: _resolve(item, now) for key, item in value.items()}
    if isinstance(value, list):
        return [_resolve(item, now) for item in value]
    return value


def _to_document(row) -> Document:
    return Document(id=row["id"], data=json.loads(row["data"]), version=int(row["version"]))


def _is_retryable(exc: StoreError) -> bool:
    return isinstance(exc, ConflictError) or isinstance(exc.__cause__, OperationalError)


class Transaction:
    def __init__(self, db: Session, now: str):
        self._db = db
        self._now = now
        self.touched: set[str] = set()

    def get(self, path: str, doc_id: str) -> Document | None:
        row = self._db.execute(
            text(
                """
                SELECT id, version, data
                FROM documents
                WHERE collection = :collection AND id = :id
                """
            ),
            {"collection": path, "id": doc_id},
        ).mappings().first()
        return _to_document(row) if row else None

    def documents(self, path: str) -> list[Document]:
        rows = self._db.execute(
            text(
                """
                SELECT id, version, data
                FROM documents
                WHERE collection = :collection
                ORDER BY seq ASC
                """
            ),
            {"collection": path},
        ).mappings().all()
        return [_to_document(row) for row in rows]

    def add(self, path: str, data: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex[:20]
        self._insert(path, doc_id, data)
        return doc_id

    def set(self, path: str, doc_id: str, data: dict[str, Any]) -> None:
        current = self.get(path, doc_id)
        if current is None:
            self._insert(path, doc_id, data)
            return
        self._write(path, current, _resolve(data, self._now))

    def update(
        self,
        path: str,
        doc_id: str,
        fields: dict[str, Any],
        *,
        expected_version: int | None = None,
    ) -> int:
        """Merge ``fields`` into a document and return its new version."""
        current = self.get(path, doc_id)
        if current is None:
            raise NotFoundError(f"Document {doc_id} not found in {path}")
        if expected_version is not None and current.version != expected_version:
            raise ConflictError(
                f"Document {doc_id} changed: expected version {expected_version}, "
                f"found {current.version}"
            )
        merged = {**current.data, **_resolve(fields, self._now)}
        return self._write(path, current, merged)

    def delete(self, path: str, doc_id: str) -> None:
        result = self._db.execute(
            text("DELETE FROM documents WHERE collection = :collection AND id = :id"),
            {"collection": path, "id": doc_id},
        )
        if result.rowcount == 0:
            raise NotFoundError(f"Document {doc_id} not found in {path}")
        self.touched.add(path)

    def _insert(self, path: str, doc_id: str, data: dict[str, Any]) -> None:
        next_seq = self._db.execute(
            text("SELECT COALESCE(MAX(seq), 0) + 1 FROM documents WHERE collection = :collection"),
            {"collection": path},
        ).scalar_one()
        self._db.execute(
            text(
                """
                INSERT INTO documents (collection, id, seq, version, data)
                VALUES (:collection, :id, :seq, 1, :data)
                """
            ),
            {
                "collection": path,
                "id": doc_id,
                "seq": next_seq,
                "data": json.dumps(_resolve(data, self._now), default=str),
            },
        )
        self.touched.add(path)

    def _write(self, path: str, current: Document, data: dict[str, Any]) -> int:
        result = self._db.execute(
            text(
                """
                UPDATE documents
                SET data = :data, version = version + 1
                WHERE collection = :collection AND id = :id AND version = :version
                """
            ),
            {
                "collection": path,
                "id": current.id,
                "version": current.version,
                "data": json.dumps(data, default=str),
            },
        )
        if result.rowcount != 1:
            raise ConflictError(f"Document {current.id} was modified concurrently")
        self.touched.add(path)
        return current.version + 1


class DocumentStore:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Callable[[], datetime] | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._listeners: dict[str, list[SnapshotCallback]] = defaultdict(list)

    def create_schema(self) -> None:
        with self._session_factory() as db:
            db.execute(text(SCHEMA))
            db.commit()

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        db = self._session_factory()
        txn = Transaction(db, self._clock().isoformat())
        try:
            yield txn
            db.commit()
        except PosError:
            db.rollback()
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(f"Document store transaction failed: {exc}")
            raise StoreError(f"Document store request failed: {exc}") from exc
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        self._publish(txn.touched)

    def run_transaction(
        self,
        func: Callable[[Transaction], T],
        *,
        attempts: int = 3,
        backoff_base: float = 0.05,
    ) -> T:
        """
        Run ``func`` inside a transaction, retrying on version conflicts and
        on lock or deadlock errors from the database.

        Each attempt starts from a fresh transaction, so ``func`` must re-read
        whatever it compares against.
        """
        for attempt in range(attempts):
            try:
                with self.transaction() as txn:
                    return func(txn)
            except StoreError as exc:
                if not _is_retryable(exc) or attempt >= attempts - 1:
                    raise
                logger.warning(f"Retrying transaction after failure ({attempt + 1}/{attempts}): {exc}")
                time.sleep(backoff_base * (2 ** attempt))
        raise ConflictError("Transaction was not attempted")

    def get(self, path: str, doc_id: str) -> Document | None:
        with self.transaction() as txn:
            return txn.get(path, doc_id)

    def documents(self, path: str) -> list[Document]:
        with self.transaction() as txn:
            return txn.documents(path)

    def add(self, path: str, data: dict[str, Any]) -> str:
        with self.transaction() as txn:
            return txn.add(path, data)

    def set(self, path: str, doc_id: str, data: dict[str, Any]) -> None:
        with self.transaction() as txn:
            txn.set(path, doc_id, data)

    def update(self, path: str, doc_id: str, fields: dict[str, Any]) -> int:
        with self.transaction() as txn:
            return txn.update(path, doc_id, fields)

    def delete(self, path: str, doc_id: str) -> None:
        with self.transaction() as txn:
            txn.delete(path, doc_id)

    def subscribe(self, path: str, callback: SnapshotCallback) -> Callable[[], None]:
        self._listeners[path].append(callback)
        self._deliver(path, [callback])

        def unsubscribe() -> None:
            listeners = self._listeners.get(path, [])
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    def _publish(self, paths: Iterable[str]) -> None:
        for path in sorted(paths):
            listeners = list(self._listeners.get(path, ()))
            if listeners:
                self._deliver(path, listeners)

    def _deliver(self, path: str, listeners: list[SnapshotCallback]) -> None:
        try:
            snapshot = self.documents(path)
        except StoreError as exc:
            logger.error(f"Snapshot fetch for {path} failed: {exc}")
            return
        for callback in listeners:
            try:
                callback(snapshot)
            except Exception:
                logger.exception(f"Snapshot listener for {path} failed")
