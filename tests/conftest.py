"""Shared test fixtures and utilities."""

import io
from datetime import datetime, timezone
from typing import Dict, Optional

import pytest

from filestore.errors import NotFoundError
from filestore.storage.local import LocalFileStore
from filestore.storage.memory import MemoryFileStore
from filestore.storage.objectstore import ObjectFileStore, ObjectInfo

TEST_CONTENT_HASH = "9d9595c5d94fb65b824f56e9999527dba9542481580d69feb89056aabaa0aa87"
HELLO_WORLD_HASH = "a591a6d40bf420404a011733cfb7b190d62c65bf0bcda32b57b277d9ad9f146e"


class FakeBucket:
    """In-process ObjectBucket with failure injection.

    Set ``failures["copy"] = SomeError(...)`` to make the next copy raise.
    """

    scheme = "s3"

    def __init__(self, name: str = "assets"):
        self.name = name
        self.objects: Dict[str, bytes] = {}
        self.modified: Dict[str, datetime] = {}
        self.metadata: Dict[str, object] = {}
        self.failures: Dict[str, Exception] = {}
        self.calls = []
        self.copy_ctx = None

    def _maybe_fail(self, op: str) -> None:
        self.calls.append(op)
        exc = self.failures.pop(op, None)
        if exc is not None:
            raise exc

    def upload(self, key, stream, metadata=None):
        self._maybe_fail("upload")
        data = stream.read()
        self.objects[key] = data
        self.modified[key] = datetime.now(timezone.utc)
        self.metadata[key] = metadata

    def copy(self, src_key, dst_key, ctx=None):
        self.copy_ctx = ctx
        self._maybe_fail("copy")
        if src_key not in self.objects:
            raise NotFoundError(f"copying {src_key}: object does not exist")
        self.objects[dst_key] = self.objects[src_key]
        self.modified[dst_key] = datetime.now(timezone.utc)

    def delete(self, key):
        # Deleting a missing key succeeds, like S3
        self._maybe_fail("delete")
        self.objects.pop(key, None)
        self.modified.pop(key, None)

    def head(self, key):
        self._maybe_fail("head")
        if key not in self.objects:
            raise NotFoundError(f"statting {key}: object does not exist")
        return ObjectInfo(key=key, size=len(self.objects[key]), last_modified=self.modified[key])

    def open(self, key):
        self._maybe_fail("open")
        if key not in self.objects:
            raise NotFoundError(f"getting {key}: object does not exist")
        return io.BytesIO(self.objects[key])

    def list(self, prefix=""):
        self._maybe_fail("list")
        for key in sorted(self.objects):
            if key.startswith(prefix):
                yield ObjectInfo(key=key, size=len(self.objects[key]), last_modified=self.modified[key])

    def staging_keys(self):
        return [k for k in self.objects if k.startswith("tmp/")]


@pytest.fixture
def local_store(tmp_path):
    """LocalFileStore with staging and asset dirs under tmp_path."""
    return LocalFileStore(tmp_path / "tmp", tmp_path / "assets")


@pytest.fixture
def memory_store():
    return MemoryFileStore()


@pytest.fixture
def fake_bucket():
    return FakeBucket()


@pytest.fixture
def object_store(fake_bucket):
    """ObjectFileStore on top of the in-process fake bucket."""
    return ObjectFileStore(fake_bucket)


@pytest.fixture(params=["local", "memory", "object"])
def any_store(request, tmp_path):
    """Each backend in turn, for behavior every backend shares."""
    if request.param == "local":
        return LocalFileStore(tmp_path / "tmp", tmp_path / "assets")
    if request.param == "memory":
        return MemoryFileStore()
    return ObjectFileStore(FakeBucket())


def staging_entries(store) -> Optional[list]:
    """Leftover staging entries for backends that have them."""
    if isinstance(store, LocalFileStore):
        return list(store.staging_dir.iterdir())
    if isinstance(store, ObjectFileStore):
        return store.bucket.staging_keys()
    return []


def failing_stream(after: bytes, exc: Exception):
    """A stream that yields ``after`` and then raises ``exc``."""
    class _Stream(io.RawIOBase):
        def __init__(self):
            super().__init__()
            self._sent = False

        def readable(self):
            return True

        def read(self, size=-1):
            if not self._sent:
                self._sent = True
                return after
            raise exc

    return _Stream()

