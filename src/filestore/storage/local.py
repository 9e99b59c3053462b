"""Filesystem file store.

Blobs are staged in a temp directory, hashed while written, and promoted
into a sharded asset tree with an atomic rename:

    <assets_dir>/<hash[:prefix_size]>/<full_sha256_hex>

The staging directory must be on the same filesystem as the asset tree,
otherwise the rename is not atomic (and fails with EXDEV on most systems).
"""

import errno
import logging
import os
import tempfile
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Union

from ..context import OperationContext, ensure_context
from ..errors import (
    CleanupError,
    InvalidHashError,
    TransientIOError,
    translate_os_error,
)
from ..hashing import copy_and_hash, validate_hash
from .base import BatchVisitor, ObjectMetadata, visit_in_batches

logger = logging.getLogger(__name__)

DEFAULT_PREFIX_SIZE = 2
DEFAULT_FILE_MODE = 0o644
DIR_MODE = 0o755

_STAGING_PREFIX = ".upload-"


def _fsync_dir(path: Path) -> None:
    """Fsync a directory so a rename into it is durable.

    Best-effort: Windows and some filesystems don't support directory fsync.
    """
    try:
        flags = os.O_RDONLY
        if hasattr(os, "O_DIRECTORY"):
            flags |= os.O_DIRECTORY
        fd = os.open(str(path), flags)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
    except OSError:
        logger.debug("Directory fsync not supported for %s", path)


class LocalFileStore:
    """
    File store on a local filesystem.

    Store is crash-safe and idempotent: a blob only becomes visible under its
    hash through an atomic rename of a fully written, fsynced staging file,
    and storing content that already exists leaves the existing file alone.

    Attributes:
        staging_dir: Directory for in-flight uploads
        assets_dir: Root of the sharded asset tree
        prefix_size: Number of leading hash characters used as shard name
        file_mode: Permission bits applied to promoted files
    """

    scheme = "local"

    def __init__(
        self,
        staging_dir: Union[str, Path],
        assets_dir: Union[str, Path],
        prefix_size: int = DEFAULT_PREFIX_SIZE,
        file_mode: int = DEFAULT_FILE_MODE,
        fsync: bool = True,
    ):
        """
        Initialize the store, creating both directories if absent.

        Args:
            staging_dir: Directory for temporary upload files
            assets_dir: Directory the sharded asset tree lives in
            prefix_size: Shard prefix length (default 2)
            file_mode: Mode for stored files (default 0o644)
            fsync: Fsync staged files and shard directories on promotion
        """
        if prefix_size < 1:
            raise ValueError(f"prefix_size must be >= 1, got {prefix_size}")

        self.staging_dir = Path(staging_dir)
        self.assets_dir = Path(assets_dir)
        self.prefix_size = prefix_size
        self.file_mode = file_mode
        self.fsync = fsync

        try:
            self.staging_dir.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
            self.assets_dir.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        except OSError as e:
            raise translate_os_error(e, "creating store directories") from e

    def _shard(self, hash: str) -> str:
        if len(hash) < self.prefix_size:
            raise InvalidHashError(hash, f"hash shorter than shard prefix size {self.prefix_size}")
        return hash[:self.prefix_size]

    def path_for(self, hash: str) -> Path:
        """
        Get the asset path for a hash.

        Raises:
            InvalidHashError: If the hash is not 64 lowercase hex chars
        """
        validate_hash(hash)
        return self.assets_dir / self._shard(hash) / hash

    # ---- writes --------------------------------------------------------------

    def store(
        self,
        stream: BinaryIO,
        *,
        ctx: Optional[OperationContext] = None,
        metadata: Optional[ObjectMetadata] = None,
    ) -> str:
        """
        Store the stream's content and return its SHA-256 hex.

        Steps:
            1. Copy the stream into a new staging file, hashing on the way
            2. Fsync and close the staging file
            3. If the asset already exists, discard the staging file
            4. Otherwise rename it into the shard directory and chmod it

        On failure the staging file is removed unless it was already
        promoted. If removing it fails as well, both errors are raised
        together as a CleanupError.
        """
        return self._stage_and_promote(stream, ensure_context(ctx))

    def store_hashed(
        self,
        stream: BinaryIO,
        hash: str,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> None:
        """
        Store the stream under a caller-supplied hash.

        The content is not verified against the hash. If an asset already
        exists under the hash, nothing is read or written.
        """
        if self.path_for(hash).exists():
            return
        self._stage_and_promote(stream, ensure_context(ctx), hash=hash)

    def _stage_and_promote(
        self,
        stream: BinaryIO,
        ctx: OperationContext,
        hash: Optional[str] = None,
    ) -> str:
        """Write the stream to a staging file, then promote it.

        Promotes under ``hash`` when given, else under the computed hash.
        """
        ctx.check()
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=_STAGING_PREFIX, dir=str(self.staging_dir))
        except OSError as e:
            raise translate_os_error(e, "creating staging file") from e
        tmppath = Path(tmp_name)

        try:
            with os.fdopen(fd, "wb") as f:
                computed = copy_and_hash(stream, f, ctx)
                f.flush()
                if self.fsync:
                    os.fsync(f.fileno())
            return self._promote(tmppath, hash or computed, ctx)
        except BaseException as exc:
            self._discard_after_failure(tmppath, exc)
            if isinstance(exc, OSError):
                raise translate_os_error(exc, f"storing {hash or tmppath.name}") from exc
            raise

    def _promote(self, tmppath: Path, hash: str, ctx: OperationContext) -> str:
        """Move a closed staging file to its asset path.

        When the asset already exists the staging file is deleted instead.
        """
        dst = self.path_for(hash)

        # Fast path: identical content already stored
        if dst.exists():
            logger.debug("Asset already present, discarding staging file: %s", hash)
            tmppath.unlink()
            return hash

        ctx.check()
        for attempt in range(2):
            dst.parent.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
            try:
                os.replace(str(tmppath), str(dst))
                break
            except FileNotFoundError as e:
                # A concurrent remove may drop the shard between mkdir and rename
                if attempt or not tmppath.exists():
                    raise TransientIOError(f"promoting {hash}: {e}") from e
                logger.debug("Shard directory vanished before rename, retrying: %s", hash)

        # From here on the staging file no longer exists
        try:
            os.chmod(dst, self.file_mode)
        except OSError as e:
            raise translate_os_error(e, f"setting file mode on {hash}") from e
        if self.fsync:
            _fsync_dir(dst.parent)

        logger.debug("Promoted asset: %s", dst)
        return hash

    def _discard_after_failure(self, tmppath: Path, exc: BaseException) -> None:
        """Remove a staging file after a failed store.

        A missing staging file means it was promoted or already discarded.
        """
        try:
            tmppath.unlink()
        except FileNotFoundError:
            return
        except OSError as cleanup_exc:
            original = exc
            if isinstance(exc, OSError):
                original = translate_os_error(exc, f"storing {tmppath.name}")
            raise CleanupError(
                original,
                translate_os_error(cleanup_exc, f"removing staging file {tmppath.name}"),
            ) from exc

    # ---- reads ---------------------------------------------------------------

    def fetch(self, hash: str, *, ctx: Optional[OperationContext] = None) -> BinaryIO:
        """Open the asset for reading."""
        ensure_context(ctx).check()
        path = self.path_for(hash)
        try:
            return path.open("rb")
        except OSError as e:
            raise translate_os_error(e, f"opening {hash}") from e

    def exists(self, hash: str, *, ctx: Optional[OperationContext] = None) -> bool:
        """Check if the asset exists."""
        ensure_context(ctx).check()
        return self.path_for(hash).is_file()

    def size(self, hash: str, *, ctx: Optional[OperationContext] = None) -> int:
        """Return the asset's size from file metadata."""
        ensure_context(ctx).check()
        path = self.path_for(hash)
        try:
            return path.stat().st_size
        except OSError as e:
            raise translate_os_error(e, f"statting {hash}") from e

    def _walk(self) -> Iterator[str]:
        """Yield asset names in sorted walk order, skipping hidden entries.

        A shard directory removed after it was listed is skipped. Other walk
        errors are raised as filestore errors.
        """
        def _on_error(err: OSError) -> None:
            if (
                isinstance(err, FileNotFoundError)
                and err.filename is not None
                and Path(err.filename) != self.assets_dir
            ):
                # Emptied and removed by a concurrent remove
                logger.debug("Shard directory vanished during walk: %s", err.filename)
                return
            raise translate_os_error(err, "walking asset tree") from err

        for dirpath, dirnames, filenames in os.walk(self.assets_dir, onerror=_on_error):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            for name in sorted(filenames):
                if not name.startswith("."):
                    yield name

    def iterate(
        self,
        batch_size: int,
        visit: BatchVisitor,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> None:
        """
        Walk the asset tree and pass hashes to ``visit`` in batches.

        Directories and hidden entries are skipped. An exception from
        ``visit`` stops the walk and propagates unchanged.
        """
        visit_in_batches(self._walk(), batch_size, visit, ctx)

    # ---- removal -------------------------------------------------------------

    def remove(self, hash: str, *, ctx: Optional[OperationContext] = None) -> None:
        """
        Delete an asset, then its shard directory if it is now empty.

        Raises:
            NotFoundError: If the asset does not exist
        """
        ensure_context(ctx).check()
        path = self.path_for(hash)
        try:
            path.unlink()
        except OSError as e:
            raise translate_os_error(e, f"removing {hash}") from e
        logger.debug("Removed asset: %s", path)

        shard_dir = path.parent
        try:
            with os.scandir(shard_dir) as entries:
                if next(entries, None) is not None:
                    return
            shard_dir.rmdir()
        except FileNotFoundError:
            # A concurrent remove got there first
            return
        except OSError as e:
            # Another store may have raced a new file into the shard
            if e.errno is not None and e.errno in _DIR_NOT_EMPTY:
                return
            raise translate_os_error(e, f"removing empty shard directory {shard_dir.name}") from e
        logger.debug("Removed empty shard directory: %s", shard_dir)

    # ---- locators ------------------------------------------------------------

    def locator_source(self, hash: str) -> str:
        """
        Return ``local:///<shard>/<hash>`` for the image proxy.

        Raises:
            InvalidHashError: If the hash is shorter than the shard prefix
        """
        return f"{self.scheme}:///{self._shard(hash)}/{hash}"

    def __repr__(self) -> str:
        return f"LocalFileStore(staging_dir={str(self.staging_dir)!r}, assets_dir={str(self.assets_dir)!r})"


_DIR_NOT_EMPTY = {errno.ENOTEMPTY, errno.EEXIST}

__all__ = ["LocalFileStore", "DEFAULT_PREFIX_SIZE", "DEFAULT_FILE_MODE"]
