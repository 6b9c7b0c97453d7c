"""Persistence collaborators: table store and blob storage."""

from qualiq.persistence.base import (
    BlobStore,
    QueryResult,
    Row,
    StoreError,
    TableStore,
    UploadResult,
)
from qualiq.persistence.blobs import LocalBlobStore
from qualiq.persistence.sqlite import SqliteTableStore

__all__ = [
    "BlobStore",
    "LocalBlobStore",
    "QueryResult",
    "Row",
    "SqliteTableStore",
    "StoreError",
    "TableStore",
    "UploadResult",
]
