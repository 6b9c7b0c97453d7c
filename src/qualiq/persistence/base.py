"""Table and blob storage interfaces used by the workflow engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol

Row = dict[str, Any]


@dataclass(frozen=True)
class StoreError:
    code: str
    message: str

    INVALID_REQUEST = "invalid_request"
    CONSTRAINT = "constraint"
    DATABASE = "database"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    STORAGE = "storage"


@dataclass
class QueryResult:
    """``{data, error}`` pair; exactly one side is meaningful."""

    data: Any = None
    error: StoreError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, code: str, message: str) -> "QueryResult":
        return cls(data=None, error=StoreError(code=code, message=message))


@dataclass
class UploadResult:
    path: str | None = None
    error: StoreError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class TableStore(Protocol):
    def select(
        self,
        table: str,
        columns: str = "*",
        filters: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> QueryResult: ...

    def insert(self, table: str, row: Mapping[str, Any]) -> QueryResult: ...

    def update(
        self,
        table: str,
        patch: Mapping[str, Any],
        filters: Mapping[str, Any],
    ) -> QueryResult: ...


class BlobStore(Protocol):
    def upload(
        self,
        bucket_id: str,
        path: str,
        content: bytes,
        upsert: bool = False,
    ) -> UploadResult: ...
