"""Custom exceptions for filestore.

Every failure raised by a backend is a ``FileStoreError`` carrying an
``ErrorKind``. Callers test for a specific condition with ``isinstance``
(``except NotFoundError``) or by comparing ``err.kind``; both keep working
after context has been added with ``with_context``.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Closed set of failure kinds shared by all backends."""
    NOT_FOUND = "not_found"
    INVALID_HASH = "invalid_hash"
    TRANSIENT_IO = "transient_io"
    CANCELLED = "cancelled"
    CLEANUP_FAILED = "cleanup_failed"
    CONFIG = "config"


class FileStoreError(RuntimeError):
    """Base class for all filestore errors."""

    kind: ErrorKind = ErrorKind.TRANSIENT_IO

    def with_context(self, context: str) -> "FileStoreError":
        """Return a copy of this error with ``context`` prepended.

        The copy has the same class and kind, and chains to this error.
        """
        wrapped = _copy_error(self, f"{context}: {self}")
        wrapped.__cause__ = self
        return wrapped


class NotFoundError(FileStoreError):
    """No blob is stored under the requested hash (or key)."""
    kind = ErrorKind.NOT_FOUND


class InvalidHashError(FileStoreError):
    """Hash is malformed or too short to derive a shard prefix from."""
    kind = ErrorKind.INVALID_HASH

    def __init__(self, hash: str, reason: str = "invalid hash"):
        self.hash = hash
        self.reason = reason
        super().__init__(f"{reason}: {hash!r}")


class TransientIOError(FileStoreError):
    """Staging write, rename, upload, copy or delete failed."""
    kind = ErrorKind.TRANSIENT_IO


class CancelledError(FileStoreError):
    """The operation's context was cancelled or its deadline passed."""
    kind = ErrorKind.CANCELLED


class ConfigError(FileStoreError):
    """Backend configuration is invalid."""
    kind = ErrorKind.CONFIG


class CleanupError(FileStoreError):
    """An operation failed and discarding its staged state failed too.

    Both failures are kept: ``original`` is the error that aborted the
    operation, ``cleanup`` the one raised while rolling back.
    """
    kind = ErrorKind.CLEANUP_FAILED

    def __init__(self, original: BaseException, cleanup: BaseException, message: Optional[str] = None):
        self.original = original
        self.cleanup = cleanup
        if message is None:
            message = f"{original} (cleanup also failed: {cleanup})"
        super().__init__(message)
        self.__cause__ = original

    @property
    def errors(self) -> tuple:
        """Both underlying errors, original first."""
        return (self.original, self.cleanup)

    def root_kind(self) -> Optional[ErrorKind]:
        """Kind of the original failure, when it is a filestore error."""
        return getattr(self.original, "kind", None)


def _copy_error(err: FileStoreError, message: str) -> FileStoreError:
    cls = type(err)
    if isinstance(err, CleanupError):
        return CleanupError(err.original, err.cleanup, message)
    copy = cls.__new__(cls)
    RuntimeError.__init__(copy, message)
    copy.__dict__.update(err.__dict__)
    return copy


def translate_os_error(exc: OSError, context: str) -> FileStoreError:
    """Map an ``OSError`` to the matching filestore error."""
    if isinstance(exc, FileNotFoundError):
        err: FileStoreError = NotFoundError(f"{context}: file does not exist")
    else:
        err = TransientIOError(f"{context}: {exc}")
    err.__cause__ = exc
    return err
