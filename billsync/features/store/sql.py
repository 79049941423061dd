"""
SQLAlchemy-backed document store.

Every document is one row of the `documents` table keyed by its full path.
Transactions run in a single session; documents read inside a transaction are
locked with SELECT ... FOR UPDATE where the backend supports it.
"""
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional, Tuple

from sqlalchemy import select, insert, update, delete
from sqlalchemy.orm import Session

from billsync.core.database import documents, get_db_session, get_session_factory
from billsync.features.store.interface import (
    Document,
    normalize_collection_path,
    split_document_path,
)


class SqlDocumentStore:
    """DocumentStore over the `documents` table."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self._session_factory = session_factory or get_session_factory()

    def _session(self):
        return get_db_session(self._session_factory)

    def get(self, path: str) -> Optional[Document]:
        with self._session() as session:
            return _SqlTransaction(session, lock=False).get(path)

    def set(self, path: str, data: Document) -> None:
        with self._session() as session:
            _SqlTransaction(session, lock=False).set(path, data)

    def delete(self, path: str) -> None:
        with self._session() as session:
            _SqlTransaction(session, lock=False).delete(path)

    def list(self, collection_path: str) -> List[Tuple[str, Document]]:
        with self._session() as session:
            return _SqlTransaction(session, lock=False).list(collection_path)

    @contextmanager
    def transaction(self) -> Iterator["_SqlTransaction"]:
        with self._session() as session:
            yield _SqlTransaction(session, lock=True)


class _SqlTransaction:
    def __init__(self, session: Session, lock: bool):
        self._session = session
        self._lock = lock

    def get(self, path: str) -> Optional[Document]:
        parent, doc_id = split_document_path(path)
        query = select(documents.c.data).where(documents.c.path == f"{parent}/{doc_id}")
        if self._lock:
            query = query.with_for_update()
        row = self._session.execute(query).fetchone()
        return dict(row[0]) if row else None

    def set(self, path: str, data: Document) -> None:
        parent, doc_id = split_document_path(path)
        key = f"{parent}/{doc_id}"
        existing = self._session.execute(
            select(documents.c.path).where(documents.c.path == key)
        ).fetchone()
        if existing:
            self._session.execute(
                update(documents).where(documents.c.path == key).values(data=dict(data))
            )
        else:
            self._session.execute(
                insert(documents).values(path=key, parent=parent, doc_id=doc_id, data=dict(data))
            )

    def delete(self, path: str) -> None:
        parent, doc_id = split_document_path(path)
        self._session.execute(delete(documents).where(documents.c.path == f"{parent}/{doc_id}"))

    def list(self, collection_path: str) -> List[Tuple[str, Document]]:
        collection = normalize_collection_path(collection_path)
        query = (
            select(documents.c.doc_id, documents.c.data)
            .where(documents.c.parent == collection)
            .order_by(documents.c.doc_id)
        )
        if self._lock:
            query = query.with_for_update()
        rows = self._session.execute(query).fetchall()
        return [(row[0], dict(row[1])) for row in rows]
