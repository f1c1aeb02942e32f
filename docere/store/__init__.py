from docere.store.base import (
    SERVER_TIMESTAMP,
    DocumentNotFound,
    DocumentStore,
    DocumentStoreError,
    PreconditionFailed,
    Query,
    Snapshot,
    Subscription,
)
from docere.store.memory import MemoryDocumentStore
from docere.store.sql import SqlDocumentStore

__all__ = [
    "SERVER_TIMESTAMP",
    "DocumentNotFound",
    "DocumentStore",
    "DocumentStoreError",
    "MemoryDocumentStore",
    "PreconditionFailed",
    "Query",
    "Snapshot",
    "SqlDocumentStore",
    "Subscription",
]
