"""Object-store file store.

Remote object stores have no rename and need the object key before an
upload starts, so ``store`` works in three steps:

    1. upload the stream under a random staging key, hashing it on the way
    2. server-side copy the staging object to ``<hash>``
    3. delete the staging object

Once step 2 succeeds the blob is durable. If step 3 then fails the staging
object is orphaned; it lives under the staging prefix, never under a hash,
and ``purge_staging`` collects it later.

The protocol is written against ``ObjectBucket``; provider adapters live in
``storage/s3.py`` and ``storage/azure.py``.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import BinaryIO, Iterator, List, Optional, Protocol

from ..context import OperationContext, ensure_context
from ..errors import CleanupError, FileStoreError, NotFoundError
from ..hashing import HashingReader, validate_hash
from .base import BatchVisitor, ObjectMetadata, visit_in_batches

logger = logging.getLogger(__name__)

DEFAULT_STAGING_PREFIX = "tmp/"


@dataclass(frozen=True)
class ObjectInfo:
    """One listed object."""
    key: str
    size: int
    last_modified: Optional[datetime] = None


class ObjectBucket(Protocol):
    """
    Minimal bucket/container operations the object store needs.

    Adapters raise ``NotFoundError`` for missing keys and
    ``TransientIOError`` (with operation context) for other provider errors.
    """

    scheme: str  # Locator scheme, e.g. "s3"
    name: str    # Bucket or container name

    def upload(self, key: str, stream: BinaryIO, metadata: Optional[ObjectMetadata] = None) -> None:
        """Upload the stream under ``key``, reading it to exhaustion."""
        ...

    def copy(self, src_key: str, dst_key: str, ctx: Optional[OperationContext] = None) -> None:
        """Server-side copy within the bucket."""
        ...

    def delete(self, key: str) -> None:
        ...

    def head(self, key: str) -> ObjectInfo:
        """Metadata call; raises NotFoundError for a missing key."""
        ...

    def open(self, key: str) -> BinaryIO:
        """Open the object's content for streaming reads."""
        ...

    def list(self, prefix: str = "") -> Iterator[ObjectInfo]:
        """List objects, optionally restricted to a key prefix."""
        ...


class ObjectFileStore:
    """
    File store on top of an object-store bucket.

    Objects are keyed by their bare hash; the keyspace is flat, so there is
    no sharding. Staging objects live under ``staging_prefix``.
    """

    def __init__(self, bucket: ObjectBucket, staging_prefix: str = DEFAULT_STAGING_PREFIX):
        """
        Initialize the store.

        Args:
            bucket: Provider adapter
            staging_prefix: Key prefix for in-flight uploads; must not be empty
        """
        if not staging_prefix:
            raise ValueError("staging_prefix must not be empty")
        self.bucket = bucket
        self.staging_prefix = staging_prefix

    @property
    def scheme(self) -> str:
        return self.bucket.scheme

    def _staging_key(self) -> str:
        return f"{self.staging_prefix}{uuid.uuid4()}"

    # ---- writes --------------------------------------------------------------

    def store(
        self,
        stream: BinaryIO,
        *,
        ctx: Optional[OperationContext] = None,
        metadata: Optional[ObjectMetadata] = None,
    ) -> str:
        """
        Upload the stream, returning its SHA-256 hex.

        Upload failures leave nothing behind under the hash. A failed copy
        triggers deletion of the staging object; if that fails too both
        errors are raised together as a CleanupError. A failed delete after
        a successful copy is only logged.
        """
        ctx = ensure_context(ctx)
        ctx.check()

        staging_key = self._staging_key()
        reader = HashingReader(stream, ctx)
        try:
            self.bucket.upload(staging_key, reader, metadata)
        except FileStoreError as e:
            raise e.with_context(f"uploading staging object {staging_key}") from e
        hash = reader.hexdigest()

        try:
            ctx.check()
            self.bucket.copy(staging_key, hash, ctx=ctx)
        except BaseException as exc:
            try:
                self.bucket.delete(staging_key)
            except FileStoreError as cleanup_exc:
                raise CleanupError(exc, cleanup_exc) from exc
            if isinstance(exc, FileStoreError):
                raise exc.with_context(f"copying {staging_key} to {hash}") from exc
            raise

        try:
            self.bucket.delete(staging_key)
        except FileStoreError as e:
            logger.warning("Orphaned staging object %s (stored %s): %s", staging_key, hash, e)

        logger.debug("Stored object %s via %s", hash, staging_key)
        return hash

    def store_hashed(
        self,
        stream: BinaryIO,
        hash: str,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> None:
        """
        Upload the stream directly under a caller-supplied hash.

        The content is not verified against the hash. Nothing is uploaded
        when an object already exists under the hash.
        """
        validate_hash(hash)
        ctx = ensure_context(ctx)
        if self.exists(hash, ctx=ctx):
            return
        ctx.check()
        try:
            self.bucket.upload(hash, HashingReader(stream, ctx))
        except FileStoreError as e:
            raise e.with_context(f"uploading {hash}") from e

    # ---- reads ---------------------------------------------------------------

    def exists(self, hash: str, *, ctx: Optional[OperationContext] = None) -> bool:
        validate_hash(hash)
        ensure_context(ctx).check()
        try:
            self.bucket.head(hash)
        except NotFoundError:
            return False
        return True

    def fetch(self, hash: str, *, ctx: Optional[OperationContext] = None) -> BinaryIO:
        validate_hash(hash)
        ensure_context(ctx).check()
        return self.bucket.open(hash)

    def size(self, hash: str, *, ctx: Optional[OperationContext] = None) -> int:
        validate_hash(hash)
        ensure_context(ctx).check()
        return self.bucket.head(hash).size

    def _hash_keys(self) -> Iterator[str]:
        for info in self.bucket.list():
            if not info.key.startswith(self.staging_prefix):
                yield info.key

    def iterate(
        self,
        batch_size: int,
        visit: BatchVisitor,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> None:
        """
        Pass stored hashes to ``visit`` in batches, in listing order.

        Staging objects are skipped. An exception from ``visit`` stops the
        listing and propagates.
        """
        visit_in_batches(self._hash_keys(), batch_size, visit, ctx)

    # ---- removal -------------------------------------------------------------

    def remove(self, hash: str, *, ctx: Optional[OperationContext] = None) -> None:
        """
        Delete an object.

        Object stores report success when deleting a missing key, so the
        object is probed first and a missing one raises NotFoundError, as
        on the other backends. A concurrent remove between probe and delete
        is not detected.
        """
        validate_hash(hash)
        ctx = ensure_context(ctx)
        ctx.check()
        self.bucket.head(hash)
        ctx.check()
        self.bucket.delete(hash)
        logger.debug("Removed object %s", hash)

    # ---- staging maintenance -------------------------------------------------

    def list_staging(self, *, ctx: Optional[OperationContext] = None) -> List[ObjectInfo]:
        """List staging objects, including orphans from interrupted stores."""
        ctx = ensure_context(ctx)
        result = []
        for info in self.bucket.list(self.staging_prefix):
            ctx.check()
            result.append(info)
        return result

    def purge_staging(
        self,
        older_than: timedelta = timedelta(hours=24),
        *,
        ctx: Optional[OperationContext] = None,
    ) -> int:
        """
        Delete staging objects last modified before ``now - older_than``.

        Objects without a modification time are kept. Recent ones may still
        belong to a store in progress.

        Returns:
            Number of staging objects deleted
        """
        ctx = ensure_context(ctx)
        cutoff = datetime.now(timezone.utc) - older_than
        removed = 0
        for info in self.list_staging(ctx=ctx):
            if info.last_modified is None or info.last_modified >= cutoff:
                continue
            ctx.check()
            try:
                self.bucket.delete(info.key)
            except NotFoundError:
                continue
            removed += 1
            logger.debug("Purged staging object %s", info.key)
        return removed

    # ---- locators ------------------------------------------------------------

    def locator_source(self, hash: str) -> str:
        """Return ``<scheme>://<bucket>/<hash>``."""
        return f"{self.bucket.scheme}://{self.bucket.name}/{hash}"

    def __repr__(self) -> str:
        return f"ObjectFileStore({self.bucket.scheme}://{self.bucket.name})"
