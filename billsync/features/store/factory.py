"""Build the configured DocumentStore."""
import logging

from billsync.core.config import Settings
from billsync.features.store.interface import DocumentStore
from billsync.features.store.memory import InMemoryDocumentStore


logger = logging.getLogger("billsync")


def build_document_store(cfg: Settings) -> DocumentStore:
    """
    Return the store selected by DOCUMENT_STORE.

    `sql` initializes the engine from DATABASE_URL and creates the documents
    table if missing; anything else falls back to the in-memory store.
    """
    if cfg.DOCUMENT_STORE == "sql":
        from billsync.core.database import create_all_tables, init_engine
        from billsync.features.store.sql import SqlDocumentStore

        init_engine(cfg.DATABASE_URL)
        create_all_tables()
        logger.info("Using SQL document store")
        return SqlDocumentStore()

    logger.info("Using in-memory document store")
    return InMemoryDocumentStore()
