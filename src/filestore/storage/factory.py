"""Factory for creating file store instances."""

from typing import Union

from ..settings import (
    AzureStoreSettings,
    LocalStoreSettings,
    MemoryStoreSettings,
    S3StoreSettings,
    StoreSettings,
)
from .local import LocalFileStore
from .memory import MemoryFileStore
from .objectstore import ObjectFileStore

AnyFileStore = Union[LocalFileStore, ObjectFileStore, MemoryFileStore]


def make_file_store(settings: StoreSettings) -> AnyFileStore:
    """
    Create a file store from validated settings.

    Object-store backends check (and optionally create) their bucket here,
    so this performs network I/O for them.

    Args:
        settings: Backend settings

    Returns:
        The backend instance

    Raises:
        NotFoundError: If a bucket/container is missing and auto_create is off
        NotImplementedError: If the settings type is not supported
    """
    if isinstance(settings, LocalStoreSettings):
        return LocalFileStore(
            settings.staging_dir,
            settings.assets_dir,
            prefix_size=settings.prefix_size,
            file_mode=settings.file_mode,
            fsync=settings.fsync,
        )

    elif isinstance(settings, S3StoreSettings):
        from .s3 import S3Bucket, build_s3_client

        client = settings.transport
        if client is None:
            client = build_s3_client(
                settings.endpoint,
                access_key=settings.access_key,
                secret_key=settings.secret_key,
                session_token=settings.session_token,
                secure=settings.secure,
                region=settings.region,
                bucket_lookup=settings.bucket_lookup,
                signature_version=settings.signature_version,
                anonymous=settings.anonymous,
            )
        bucket = S3Bucket(client, settings.bucket, auto_create=settings.auto_create)
        return ObjectFileStore(bucket, staging_prefix=settings.staging_prefix)

    elif isinstance(settings, AzureStoreSettings):
        from .azure import AzureContainer

        container = AzureContainer(
            settings.container,
            connection_string=settings.connection_string or None,
            account_url=settings.account_url or None,
            credential=settings.credential,
            auto_create=settings.auto_create,
            transport=settings.transport,
        )
        return ObjectFileStore(container, staging_prefix=settings.staging_prefix)

    elif isinstance(settings, MemoryStoreSettings):
        return MemoryFileStore()

    else:
        raise NotImplementedError(f"Backend {type(settings).__name__} not supported")
