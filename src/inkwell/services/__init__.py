"""Service layer helpers (settings, document storage)."""

from .document_store import (
    DocumentEntry,
    DocumentNotFoundError,
    DocumentStore,
    DocumentStoreError,
    FileSystemDocumentStore,
    InMemoryDocumentStore,
)
from .settings import Settings, SettingsStore

__all__ = [
    "DocumentEntry",
    "DocumentNotFoundError",
    "DocumentStore",
    "DocumentStoreError",
    "FileSystemDocumentStore",
    "InMemoryDocumentStore",
    "Settings",
    "SettingsStore",
]
