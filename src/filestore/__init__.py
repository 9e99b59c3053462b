"""Content-addressable file storage over local, object-store and in-memory backends."""

from .context import BACKGROUND, OperationContext
from .errors import (
    CancelledError,
    CleanupError,
    ConfigError,
    ErrorKind,
    FileStoreError,
    InvalidHashError,
    NotFoundError,
    TransientIOError,
)
from .hashing import compute_hash, validate_hash
from .settings import load_store_settings, parse_store_settings
from .storage import (
    FileStore,
    FullFileStore,
    LocalFileStore,
    MemoryFileStore,
    ObjectFileStore,
    ObjectMetadata,
    make_file_store,
)

__version__ = "0.1.0"

__all__ = [
    "BACKGROUND",
    "CancelledError",
    "CleanupError",
    "ConfigError",
    "ErrorKind",
    "FileStore",
    "FileStoreError",
    "FullFileStore",
    "InvalidHashError",
    "LocalFileStore",
    "MemoryFileStore",
    "NotFoundError",
    "ObjectFileStore",
    "ObjectMetadata",
    "OperationContext",
    "TransientIOError",
    "compute_hash",
    "load_store_settings",
    "make_file_store",
    "parse_store_settings",
    "validate_hash",
]
