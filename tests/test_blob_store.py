from __future__ import annotations

import pytest

from qualiq.persistence.base import StoreError
from qualiq.persistence.blobs import LocalBlobStore


@pytest.fixture
def blobs(tmp_path):
    return LocalBlobStore(str(tmp_path / "blobs"))


def test_upload_and_read(blobs):
    result = blobs.upload("documents", "actions/a1/file.pdf", b"%PDF-1.7")

    assert result.ok
    assert result.path == "actions/a1/file.pdf"
    assert blobs.exists("documents", "actions/a1/file.pdf")
    assert blobs.read("documents", "actions/a1/file.pdf") == b"%PDF-1.7"


def test_upload_without_upsert_refuses_overwrite(blobs):
    blobs.upload("documents", "a.txt", b"one")

    result = blobs.upload("documents", "a.txt", b"two")

    assert result.error.code == StoreError.CONFLICT
    assert blobs.read("documents", "a.txt") == b"one"


def test_upsert_overwrites(blobs):
    blobs.upload("documents", "a.txt", b"one")
    assert blobs.upload("documents", "a.txt", b"two", upsert=True).ok
    assert blobs.read("documents", "a.txt") == b"two"


@pytest.mark.parametrize("path", ["../escape.txt", "/etc/passwd", "a/../../b.txt", ""])
def test_paths_escaping_the_bucket_are_rejected(blobs, path):
    result = blobs.upload("documents", path, b"x")
    assert result.error.code == StoreError.INVALID_REQUEST


def test_invalid_bucket_is_rejected(blobs):
    assert blobs.upload("../docs", "a.txt", b"x").error.code == StoreError.INVALID_REQUEST
    assert blobs.exists("Bad Bucket", "a.txt") is False
