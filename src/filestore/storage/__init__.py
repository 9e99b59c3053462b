"""Storage backends and the capability protocols they implement."""

from .base import (
    BatchIterator,
    Exister,
    Fetcher,
    FileStore,
    FullFileStore,
    HashedStorer,
    LocatorSourcer,
    ObjectMetadata,
    Remover,
    Sizer,
    Storer,
    visit_in_batches,
)
from .factory import make_file_store
from .local import LocalFileStore
from .memory import MemoryFileStore
from .objectstore import ObjectBucket, ObjectFileStore, ObjectInfo

__all__ = [
    "BatchIterator",
    "Exister",
    "Fetcher",
    "FileStore",
    "FullFileStore",
    "HashedStorer",
    "LocalFileStore",
    "LocatorSourcer",
    "MemoryFileStore",
    "ObjectBucket",
    "ObjectFileStore",
    "ObjectInfo",
    "ObjectMetadata",
    "Remover",
    "Sizer",
    "Storer",
    "make_file_store",
    "visit_in_batches",
]
