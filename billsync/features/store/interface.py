"""
Document store protocol.

A keyed, hierarchical document store: documents live at slash-separated paths
with an even number of segments (`users/u1/subscription/current`); their
parent collection is the path minus the last segment. No joins and no queries
beyond listing the direct children of a collection.

Two implementations:
- InMemoryDocumentStore (development, tests)
- SqlDocumentStore (SQLAlchemy, `documents` table)
"""
from typing import Any, ContextManager, Dict, List, Optional, Protocol, Tuple

Document = Dict[str, Any]


class DocumentTransaction(Protocol):
    """Read/write view whose operations are serialized against other transactions."""

    def get(self, path: str) -> Optional[Document]:
        ...

    def set(self, path: str, data: Document) -> None:
        ...

    def delete(self, path: str) -> None:
        ...

    def list(self, collection_path: str) -> List[Tuple[str, Document]]:
        ...


class DocumentStore(Protocol):
    """
    Protocol for document stores.

    `set` fully replaces the document at `path`. `delete` of a missing
    document is a no-op. `list` returns `(doc_id, data)` pairs for the direct
    children of a collection, ordered by doc_id.
    """

    def get(self, path: str) -> Optional[Document]:
        ...

    def set(self, path: str, data: Document) -> None:
        ...

    def delete(self, path: str) -> None:
        ...

    def list(self, collection_path: str) -> List[Tuple[str, Document]]:
        ...

    def transaction(self) -> ContextManager[DocumentTransaction]:
        ...


def _segments(path: str) -> List[str]:
    if not path or not isinstance(path, str):
        raise ValueError("Path must be a non-empty string")
    parts = path.strip("/").split("/")
    if any(not part for part in parts):
        raise ValueError(f"Path has empty segments: {path!r}")
    return parts


def split_document_path(path: str) -> Tuple[str, str]:
    """Split a document path into (collection path, doc id)."""
    parts = _segments(path)
    if len(parts) % 2 != 0:
        raise ValueError(f"Not a document path: {path!r}")
    return "/".join(parts[:-1]), parts[-1]


def normalize_collection_path(path: str) -> str:
    parts = _segments(path)
    if len(parts) % 2 != 1:
        raise ValueError(f"Not a collection path: {path!r}")
    return "/".join(parts)
