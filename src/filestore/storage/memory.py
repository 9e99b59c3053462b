"""In-memory file store for development and testing."""

import io
import threading
from contextlib import contextmanager
from typing import BinaryIO, Dict, Iterator, Optional

from ..context import OperationContext, ensure_context
from ..errors import NotFoundError
from ..hashing import compute_hash, validate_hash
from .base import BatchVisitor, ObjectMetadata, visit_in_batches


class _ReadWriteLock:
    """Many concurrent readers or one writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writing = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writing:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writing or self._readers:
                self._cond.wait()
            self._writing = True
        try:
            yield
        finally:
            with self._cond:
                self._writing = False
                self._cond.notify_all()


class MemoryFileStore:
    """
    File store holding blobs in a dict keyed by hash.

    ``store`` reads the whole stream into memory before hashing, so this
    is only suited to small inputs.
    """

    scheme = "memory"

    def __init__(self):
        self._lock = _ReadWriteLock()
        self._files: Dict[str, bytes] = {}

    def store(
        self,
        stream: BinaryIO,
        *,
        ctx: Optional[OperationContext] = None,
        metadata: Optional[ObjectMetadata] = None,
    ) -> str:
        """Store bytes and return their hash."""
        ensure_context(ctx).check()
        data = stream.read()
        hash = compute_hash(data)
        with self._lock.write():
            self._files.setdefault(hash, data)
        return hash

    def store_hashed(
        self,
        stream: BinaryIO,
        hash: str,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> None:
        """Store bytes under a caller-supplied hash; no-op if it exists.

        The stream is read outside the lock, so a slow stream never blocks
        other callers.
        """
        ensure_context(ctx).check()
        validate_hash(hash)
        with self._lock.read():
            if hash in self._files:
                return
        data = stream.read()
        with self._lock.write():
            self._files.setdefault(hash, data)

    def exists(self, hash: str, *, ctx: Optional[OperationContext] = None) -> bool:
        ensure_context(ctx).check()
        validate_hash(hash)
        with self._lock.read():
            return hash in self._files

    def fetch(self, hash: str, *, ctx: Optional[OperationContext] = None) -> BinaryIO:
        """Return a fresh stream over the stored bytes."""
        ensure_context(ctx).check()
        validate_hash(hash)
        with self._lock.read():
            data = self._files.get(hash)
        if data is None:
            raise NotFoundError(f"blob {hash} does not exist")
        return io.BytesIO(data)

    def size(self, hash: str, *, ctx: Optional[OperationContext] = None) -> int:
        ensure_context(ctx).check()
        validate_hash(hash)
        with self._lock.read():
            data = self._files.get(hash)
        if data is None:
            raise NotFoundError(f"blob {hash} does not exist")
        return len(data)

    def iterate(
        self,
        batch_size: int,
        visit: BatchVisitor,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> None:
        """Pass stored hashes to ``visit`` in batches.

        Works on a snapshot of the keys, so ``visit`` may call back into
        the store (e.g. ``remove``) without deadlocking.
        """
        with self._lock.read():
            hashes = list(self._files)
        visit_in_batches(hashes, batch_size, visit, ctx)

    def remove(self, hash: str, *, ctx: Optional[OperationContext] = None) -> None:
        ensure_context(ctx).check()
        validate_hash(hash)
        with self._lock.write():
            if self._files.pop(hash, None) is None:
                raise NotFoundError(f"blob {hash} does not exist")

    def locator_source(self, hash: str) -> str:
        """Dummy locator, only meaningful in tests."""
        return f"{self.scheme}://{hash}"

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._files)
