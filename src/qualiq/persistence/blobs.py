"""Local filesystem blob storage, organised in buckets."""

from __future__ import annotations

import logging
import re
from pathlib import Path, PurePosixPath

from qualiq.persistence.base import StoreError, UploadResult

logger = logging.getLogger(__name__)

_BUCKET_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]{0,62}$")


class LocalBlobStore:
    def __init__(self, base_path: str) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)

    def _target(self, bucket_id: str, path: str) -> Path:
        if not _BUCKET_PATTERN.match(bucket_id):
            raise ValueError(f"Invalid bucket id: {bucket_id!r}")
        relative = PurePosixPath(path)
        if relative.is_absolute() or not relative.parts or ".." in relative.parts:
            raise ValueError(f"Invalid object path: {path!r}")
        bucket = (self._base / bucket_id).resolve()
        target = (bucket / relative).resolve()
        # Validate that the resolved path stays inside the bucket.
        if not target.is_relative_to(bucket):
            raise ValueError(f"Path is outside bucket: {path}")
        return target

    def upload(
        self,
        bucket_id: str,
        path: str,
        content: bytes,
        upsert: bool = False,
    ) -> UploadResult:
        try:
            target = self._target(bucket_id, path)
        except ValueError as exc:
            return UploadResult(error=StoreError(StoreError.INVALID_REQUEST, str(exc)))

        if target.exists() and not upsert:
            return UploadResult(
                error=StoreError(StoreError.CONFLICT, f"Object already exists: {path}")
            )
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except OSError as exc:
            logger.error("Blob upload to %s/%s failed: %s", bucket_id, path, exc)
            return UploadResult(error=StoreError(StoreError.STORAGE, str(exc)))
        return UploadResult(path=path)

    def read(self, bucket_id: str, path: str) -> bytes:
        target = self._target(bucket_id, path)
        return target.read_bytes()

    def exists(self, bucket_id: str, path: str) -> bool:
        try:
            return self._target(bucket_id, path).is_file()
        except ValueError:
            return False
