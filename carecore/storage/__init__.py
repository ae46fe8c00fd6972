"""Storage collaborators: durable document store and media resolution."""

from carecore.storage.document_store import DocumentStore, StoreConflictError, StoredDocument
from carecore.storage.media import BlobUrlResolver, MediaResolver

__all__ = [
    "BlobUrlResolver",
    "DocumentStore",
    "MediaResolver",
    "StoreConflictError",
    "StoredDocument",
]
