"""Azure Blob Storage container adapter."""

import io
import logging
import time
from typing import Any, BinaryIO, Iterator, Optional

try:
    from azure.core.exceptions import AzureError, ResourceExistsError, ResourceNotFoundError
    from azure.storage.blob import BlobServiceClient, ContentSettings
except ImportError:
    raise ImportError(
        "azure-storage-blob required for Azure blob storage. "
        "Install with: pip install filestore[azure]"
    )

from ..context import OperationContext, ensure_context
from ..errors import CancelledError, FileStoreError, NotFoundError, TransientIOError
from .base import ObjectMetadata
from .objectstore import ObjectInfo

logger = logging.getLogger(__name__)

COPY_POLL_INTERVAL = 0.2
COPY_TIMEOUT = 300.0


def _translate_error(error: Exception, context: str) -> FileStoreError:
    if isinstance(error, ResourceNotFoundError):
        err: FileStoreError = NotFoundError(f"{context}: blob does not exist")
    else:
        err = TransientIOError(f"{context}: {error}")
    err.__cause__ = error
    return err


class _ChunkReader(io.RawIOBase):
    """Read-only stream over an iterator of byte chunks."""

    def __init__(self, chunks: Iterator[bytes]):
        super().__init__()
        self._chunks = chunks
        self._pending = b""

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        while not self._pending:
            try:
                self._pending = next(self._chunks)
            except StopIteration:
                return 0
        n = min(len(buffer), len(self._pending))
        buffer[:n] = self._pending[:n]
        self._pending = self._pending[n:]
        return n


class AzureContainer:
    """
    ``ObjectBucket`` over an Azure Blob Storage container.

    Locators use imgproxy's Azure scheme: ``abs://<container>/<blob>``.
    """

    scheme = "abs"

    def __init__(
        self,
        container: str,
        connection_string: Optional[str] = None,
        account_url: Optional[str] = None,
        credential: Any = None,
        auto_create: bool = False,
        transport: Any = None,
        service_client: Any = None,
    ):
        """
        Initialize the adapter and check the container exists.

        Args:
            container: Container name
            connection_string: Azure Storage connection string
            account_url: Account URL, used when no connection string is given
            credential: Credential for account_url (key, SAS, token credential);
                None for anonymous access
            auto_create: Create the container if it is missing
            transport: azure-core HTTP transport override
            service_client: Pre-built BlobServiceClient (skips the above)

        Raises:
            NotFoundError: If the container is missing and auto_create is off
        """
        if service_client is None:
            kwargs = {"transport": transport} if transport is not None else {}
            if connection_string:
                service_client = BlobServiceClient.from_connection_string(connection_string, **kwargs)
            elif account_url:
                service_client = BlobServiceClient(account_url=account_url, credential=credential, **kwargs)
            else:
                raise ValueError("connection_string or account_url required for Azure blob storage")

        self.name = container
        self.client = service_client.get_container_client(container)
        self._ensure_container(auto_create)

    def _ensure_container(self, auto_create: bool) -> None:
        try:
            if self.client.exists():
                return
        except AzureError as e:
            raise _translate_error(e, f"checking container {self.name}") from e

        if not auto_create:
            raise NotFoundError(f"container {self.name!r} does not exist and auto_create is off")

        try:
            self.client.create_container()
        except ResourceExistsError:
            # Created concurrently
            return
        except AzureError as e:
            raise _translate_error(e, f"creating container {self.name}") from e
        logger.info("Created container %s", self.name)

    def upload(self, key: str, stream: BinaryIO, metadata: Optional[ObjectMetadata] = None) -> None:
        kwargs: dict = {"overwrite": True, "max_concurrency": 1}
        if metadata is not None:
            if metadata.size is not None:
                kwargs["length"] = metadata.size
            if metadata.content_type or metadata.content_disposition:
                kwargs["content_settings"] = ContentSettings(
                    content_type=metadata.content_type,
                    content_disposition=metadata.content_disposition,
                )
        try:
            self.client.upload_blob(name=key, data=stream, **kwargs)
        except AzureError as e:
            raise _translate_error(e, f"uploading blob {key}") from e

    def copy(self, src_key: str, dst_key: str, ctx: Optional[OperationContext] = None) -> None:
        """Server-side copy, waiting for it to finish.

        A pending copy is aborted when ``ctx`` is cancelled or the copy
        outlives COPY_TIMEOUT.
        """
        ctx = ensure_context(ctx)
        ctx.check()
        src = self.client.get_blob_client(src_key)
        dst = self.client.get_blob_client(dst_key)
        try:
            result = dst.start_copy_from_url(src.url)
            status = result.get("copy_status")
            deadline = time.monotonic() + COPY_TIMEOUT
            while status == "pending":
                if time.monotonic() >= deadline:
                    dst.abort_copy(result["copy_id"])
                    raise TransientIOError(f"copying blob {src_key} to {dst_key}: timed out")
                try:
                    ctx.check()
                except CancelledError:
                    self._abort_copy(dst, result["copy_id"], dst_key)
                    raise
                time.sleep(COPY_POLL_INTERVAL)
                status = dst.get_blob_properties().copy.status
        except AzureError as e:
            raise _translate_error(e, f"copying blob {src_key} to {dst_key}") from e

        if status != "success":
            raise TransientIOError(f"copying blob {src_key} to {dst_key}: copy status {status}")

    def _abort_copy(self, dst: Any, copy_id: str, dst_key: str) -> None:
        try:
            dst.abort_copy(copy_id)
        except AzureError as e:
            # The copy may have completed in the meantime
            logger.warning("Failed to abort copy %s to %s: %s", copy_id, dst_key, e)

    def delete(self, key: str) -> None:
        try:
            self.client.delete_blob(key)
        except AzureError as e:
            raise _translate_error(e, f"deleting blob {key}") from e

    def head(self, key: str) -> ObjectInfo:
        try:
            props = self.client.get_blob_client(key).get_blob_properties()
        except AzureError as e:
            raise _translate_error(e, f"getting blob properties {key}") from e
        return ObjectInfo(key=key, size=props.size, last_modified=props.last_modified)

    def open(self, key: str) -> BinaryIO:
        try:
            downloader = self.client.download_blob(key)
        except AzureError as e:
            raise _translate_error(e, f"downloading blob {key}") from e

        def _chunks() -> Iterator[bytes]:
            try:
                yield from downloader.chunks()
            except AzureError as e:
                raise _translate_error(e, f"reading blob {key}") from e

        return io.BufferedReader(_ChunkReader(_chunks()))

    def list(self, prefix: str = "") -> Iterator[ObjectInfo]:
        try:
            for blob in self.client.list_blobs(name_starts_with=prefix or None):
                yield ObjectInfo(key=blob.name, size=blob.size, last_modified=blob.last_modified)
        except AzureError as e:
            raise _translate_error(e, "listing blobs") from e
