"""Content hashing for stored blobs.

A blob's identifier is the lowercase hex SHA-256 of its bytes. Hashing
happens in the same pass that persists the bytes, so inputs of any size
are handled with a fixed-size buffer.
"""

import hashlib
import io
import re
from typing import BinaryIO, Optional

from .context import OperationContext, ensure_context
from .errors import InvalidHashError

CHUNK_SIZE = 64 * 1024

_HEX64 = re.compile(r"^[0-9a-f]{64}$")


def compute_hash(data: bytes) -> str:
    """Return the hex SHA-256 of ``data``."""
    return hashlib.sha256(data).hexdigest()


def validate_hash(hash: str) -> str:
    """Check that ``hash`` is a 64-character lowercase hex SHA-256.

    Security:
        Hashes end up in filesystem paths and object keys, so anything
        other than plain hex (separators, ``..``) is rejected here.

    Raises:
        InvalidHashError: If the hash is malformed
    """
    if not isinstance(hash, str) or not _HEX64.fullmatch(hash):
        raise InvalidHashError(hash, "invalid sha256 hex (must be 64 lowercase hex chars)")
    return hash


def copy_and_hash(
    src: BinaryIO,
    dst: BinaryIO,
    ctx: Optional[OperationContext] = None,
    chunk_size: int = CHUNK_SIZE,
) -> str:
    """Copy ``src`` to ``dst`` until exhausted, hashing the bytes on the way.

    The context is checked before every chunk so a cancelled copy stops
    promptly.

    Returns:
        Hex SHA-256 of everything copied
    """
    ctx = ensure_context(ctx)
    sha256 = hashlib.sha256()
    while True:
        ctx.check()
        chunk = src.read(chunk_size)
        if not chunk:
            break
        sha256.update(chunk)
        dst.write(chunk)
    return sha256.hexdigest()


class HashingReader(io.RawIOBase):
    """Read-only, non-seekable stream that hashes what passes through it.

    Wraps the caller's stream for upload clients that pull data themselves
    (boto3 ``upload_fileobj``, azure ``upload_blob``). Each read checks the
    context, so cancelling aborts the upload from inside the client.
    """

    def __init__(self, raw: BinaryIO, ctx: Optional[OperationContext] = None):
        super().__init__()
        self._raw = raw
        self._ctx = ensure_context(ctx)
        self._sha256 = hashlib.sha256()
        self.bytes_read = 0

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def readinto(self, buffer) -> int:
        self._ctx.check()
        data = self._raw.read(len(buffer))
        if not data:
            return 0
        n = len(data)
        buffer[:n] = data
        self._sha256.update(data)
        self.bytes_read += n
        return n

    def hexdigest(self) -> str:
        """Hash of the bytes read so far."""
        return self._sha256.hexdigest()
