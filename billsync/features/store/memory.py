"""
In-memory document store.

Stand-in for the production store in development and tests. Documents are
deep-copied on the way in and out so callers never share state with the store.
Transactions hold a process-wide lock and stage their writes until the block
exits cleanly.
"""
import copy
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

from billsync.features.store.interface import (
    Document,
    normalize_collection_path,
    split_document_path,
)


class InMemoryDocumentStore:
    """Dict-backed DocumentStore."""

    def __init__(self):
        self._docs: Dict[str, Document] = {}
        self._lock = threading.RLock()

    def get(self, path: str) -> Optional[Document]:
        parent, doc_id = split_document_path(path)
        with self._lock:
            doc = self._docs.get(f"{parent}/{doc_id}")
            return copy.deepcopy(doc) if doc is not None else None

    def set(self, path: str, data: Document) -> None:
        parent, doc_id = split_document_path(path)
        with self._lock:
            self._docs[f"{parent}/{doc_id}"] = copy.deepcopy(dict(data))

    def delete(self, path: str) -> None:
        parent, doc_id = split_document_path(path)
        with self._lock:
            self._docs.pop(f"{parent}/{doc_id}", None)

    def list(self, collection_path: str) -> List[Tuple[str, Document]]:
        prefix = normalize_collection_path(collection_path) + "/"
        with self._lock:
            children = [
                (key[len(prefix):], copy.deepcopy(doc))
                for key, doc in self._docs.items()
                if key.startswith(prefix) and "/" not in key[len(prefix):]
            ]
        return sorted(children, key=lambda item: item[0])

    @contextmanager
    def transaction(self) -> Iterator["_MemoryTransaction"]:
        with self._lock:
            txn = _MemoryTransaction(self)
            yield txn
            txn.commit()

    def paths(self) -> List[str]:
        """All stored document paths (diagnostics and tests)."""
        with self._lock:
            return sorted(self._docs)


class _MemoryTransaction:
    """Staged view over an InMemoryDocumentStore; writes land on commit."""

    def __init__(self, store: InMemoryDocumentStore):
        self._store = store
        self._staged: Dict[str, Optional[Document]] = {}

    def get(self, path: str) -> Optional[Document]:
        parent, doc_id = split_document_path(path)
        key = f"{parent}/{doc_id}"
        if key in self._staged:
            staged = self._staged[key]
            return copy.deepcopy(staged) if staged is not None else None
        return self._store.get(key)

    def set(self, path: str, data: Document) -> None:
        parent, doc_id = split_document_path(path)
        self._staged[f"{parent}/{doc_id}"] = copy.deepcopy(dict(data))

    def delete(self, path: str) -> None:
        parent, doc_id = split_document_path(path)
        self._staged[f"{parent}/{doc_id}"] = None

    def list(self, collection_path: str) -> List[Tuple[str, Document]]:
        collection = normalize_collection_path(collection_path)
        children = dict(self._store.list(collection))
        for key, staged in self._staged.items():
            parent, doc_id = key.rsplit("/", 1)
            if parent != collection:
                continue
            if staged is None:
                children.pop(doc_id, None)
            else:
                children[doc_id] = copy.deepcopy(staged)
        return sorted(children.items(), key=lambda item: item[0])

    def commit(self) -> None:
        for key, staged in self._staged.items():
            if staged is None:
                self._store.delete(key)
            else:
                self._store.set(key, staged)
        self._staged.clear()
