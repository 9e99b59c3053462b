"""Capability protocols shared by all file store backends.

Each capability is its own protocol so a backend only implements what it
can support cheaply. ``FileStore`` bundles the required set;
``FullFileStore`` adds the optional ``store_hashed`` and ``exists``.
"""

from dataclasses import dataclass
from typing import BinaryIO, Callable, Iterable, List, Optional, Protocol, runtime_checkable

from ..context import OperationContext, ensure_context

BatchVisitor = Callable[[List[str]], None]


@dataclass(frozen=True)
class ObjectMetadata:
    """Optional metadata passed alongside a stream to ``store``.

    Backends that have no use for a field ignore it.
    """
    size: Optional[int] = None                 # Total bytes, if known upfront
    content_type: Optional[str] = None
    content_disposition: Optional[str] = None  # e.g. 'inline; filename="a.png"'


@runtime_checkable
class Storer(Protocol):
    def store(
        self,
        stream: BinaryIO,
        *,
        ctx: Optional[OperationContext] = None,
        metadata: Optional[ObjectMetadata] = None,
    ) -> str:
        """
        Persist the stream's content and return its hex SHA-256.

        The stream is read to exhaustion but not closed. Storing content
        that is already present returns the same hash without a second copy.
        """
        ...


@runtime_checkable
class HashedStorer(Protocol):
    def store_hashed(
        self,
        stream: BinaryIO,
        hash: str,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> None:
        """
        Persist the stream's content under a caller-supplied hash.

        The content is NOT checked against the hash; that is the caller's
        responsibility. If a blob already exists under the hash this is a
        no-op and the stream is not read.
        """
        ...


@runtime_checkable
class Exister(Protocol):
    def exists(self, hash: str, *, ctx: Optional[OperationContext] = None) -> bool:
        """Check whether a blob is stored under the hash, without reading it."""
        ...


@runtime_checkable
class Fetcher(Protocol):
    def fetch(self, hash: str, *, ctx: Optional[OperationContext] = None) -> BinaryIO:
        """
        Open the blob for reading. The caller closes the returned stream.

        Raises:
            NotFoundError: If no blob is stored under the hash
        """
        ...


@runtime_checkable
class BatchIterator(Protocol):
    def iterate(
        self,
        batch_size: int,
        visit: BatchVisitor,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> None:
        """
        Call ``visit`` with lists of at most ``batch_size`` stored hashes.

        If ``visit`` raises, iteration stops and the exception propagates.
        Blobs stored or removed during the walk may or may not be seen.
        """
        ...


@runtime_checkable
class Remover(Protocol):
    def remove(self, hash: str, *, ctx: Optional[OperationContext] = None) -> None:
        """
        Delete the blob.

        Raises:
            NotFoundError: If no blob is stored under the hash
        """
        ...


@runtime_checkable
class Sizer(Protocol):
    def size(self, hash: str, *, ctx: Optional[OperationContext] = None) -> int:
        """Return the blob's length in bytes."""
        ...


@runtime_checkable
class LocatorSourcer(Protocol):
    def locator_source(self, hash: str) -> str:
        """Return the ``<scheme>://<path>`` locator used by the image proxy."""
        ...


@runtime_checkable
class FileStore(Storer, Fetcher, BatchIterator, Remover, Sizer, LocatorSourcer, Protocol):
    """Operations every backend provides."""


@runtime_checkable
class FullFileStore(FileStore, HashedStorer, Exister, Protocol):
    """Backends that also support ``store_hashed`` and ``exists``."""


def visit_in_batches(
    hashes: Iterable[str],
    batch_size: int,
    visit: BatchVisitor,
    ctx: Optional[OperationContext] = None,
) -> None:
    """Feed ``hashes`` to ``visit`` in batches of at most ``batch_size``.

    Consumes ``hashes`` lazily. ``visit`` receives a fresh list each time,
    once per full batch and once more for a trailing partial batch. An
    exception from ``visit`` stops the walk and propagates unchanged.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    ctx = ensure_context(ctx)

    batch: List[str] = []
    for hash in hashes:
        ctx.check()
        batch.append(hash)
        if len(batch) == batch_size:
            visit(batch)
            batch = []

    if batch:
        visit(batch)
