"""S3-compatible bucket adapter (AWS S3, MinIO, R2)."""

import logging
from typing import Any, BinaryIO, Iterator, Optional

import boto3
from botocore import UNSIGNED
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..context import OperationContext, ensure_context
from ..errors import FileStoreError, NotFoundError, TransientIOError
from .base import ObjectMetadata
from .objectstore import ObjectInfo

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "NoSuchBucket", "NotFound", "404"}

_ADDRESSING_STYLES = {"auto": "auto", "path": "path", "dns": "virtual"}


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def _translate_error(error: Exception, context: str) -> FileStoreError:
    """Map a boto error to NotFoundError or TransientIOError."""
    if isinstance(error, ClientError) and _error_code(error) in _NOT_FOUND_CODES:
        err: FileStoreError = NotFoundError(f"{context}: object does not exist")
    else:
        err = TransientIOError(f"{context}: {error}")
    err.__cause__ = error
    return err


def build_s3_client(
    endpoint: str,
    access_key: Optional[str] = None,
    secret_key: Optional[str] = None,
    session_token: Optional[str] = None,
    secure: bool = False,
    region: str = "",
    bucket_lookup: str = "auto",
    signature_version: str = "s3v4",
    anonymous: bool = False,
) -> Any:
    """
    Create a boto3 S3 client for an endpoint.

    Args:
        endpoint: Host[:port], or a full URL (scheme then wins over ``secure``)
        access_key: Access key ID
        secret_key: Secret access key
        session_token: Optional session token
        secure: Use HTTPS for a bare host endpoint
        region: Region name; empty means the client default (us-east-1)
        bucket_lookup: "auto", "path" or "dns" bucket addressing
        signature_version: "s3v4" (default) or "s3" for legacy V2 signing
        anonymous: Send unsigned requests
    """
    if "://" in endpoint:
        endpoint_url = endpoint
    else:
        endpoint_url = f"{'https' if secure else 'http'}://{endpoint}"

    config = Config(
        region_name=region or None,
        signature_version=UNSIGNED if anonymous else signature_version,
        s3={"addressing_style": _ADDRESSING_STYLES[bucket_lookup]},
        retries={"max_attempts": 3, "mode": "standard"},
    )
    kwargs: dict = {"endpoint_url": endpoint_url, "config": config}
    if not anonymous:
        kwargs["aws_access_key_id"] = access_key
        kwargs["aws_secret_access_key"] = secret_key
        if session_token:
            kwargs["aws_session_token"] = session_token
    return boto3.client("s3", **kwargs)


class S3Bucket:
    """
    ``ObjectBucket`` over a boto3 S3 client.

    Locators have the form ``s3://<bucket>/<key>``.
    """

    scheme = "s3"

    def __init__(self, client: Any, bucket: str, auto_create: bool = False):
        """
        Initialize the adapter and check the bucket exists.

        Args:
            client: boto3 S3 client
            bucket: Bucket name
            auto_create: Create the bucket if it is missing

        Raises:
            NotFoundError: If the bucket is missing and auto_create is off
        """
        self.client = client
        self.name = bucket
        self._ensure_bucket(auto_create)

    def _ensure_bucket(self, auto_create: bool) -> None:
        try:
            self.client.head_bucket(Bucket=self.name)
            return
        except ClientError as e:
            if _error_code(e) not in _NOT_FOUND_CODES:
                raise _translate_error(e, f"checking bucket {self.name}") from e
        except BotoCoreError as e:
            raise _translate_error(e, f"checking bucket {self.name}") from e

        if not auto_create:
            raise NotFoundError(f"bucket {self.name!r} does not exist and auto_create is off")

        kwargs: dict = {"Bucket": self.name}
        region = self.client.meta.region_name
        if region and region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": region}
        try:
            self.client.create_bucket(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, f"creating bucket {self.name}") from e
        logger.info("Created bucket %s", self.name)

    def upload(self, key: str, stream: BinaryIO, metadata: Optional[ObjectMetadata] = None) -> None:
        extra = {}
        if metadata is not None:
            if metadata.content_type:
                extra["ContentType"] = metadata.content_type
            if metadata.content_disposition:
                extra["ContentDisposition"] = metadata.content_disposition
        try:
            self.client.upload_fileobj(stream, self.name, key, ExtraArgs=extra or None)
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, f"putting object {key}") from e

    def copy(self, src_key: str, dst_key: str, ctx: Optional[OperationContext] = None) -> None:
        ensure_context(ctx).check()
        try:
            self.client.copy_object(
                Bucket=self.name,
                Key=dst_key,
                CopySource={"Bucket": self.name, "Key": src_key},
            )
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, f"copying object {src_key} to {dst_key}") from e

    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.name, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, f"removing object {key}") from e

    def head(self, key: str) -> ObjectInfo:
        try:
            response = self.client.head_object(Bucket=self.name, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, f"statting object {key}") from e
        return ObjectInfo(
            key=key,
            size=response["ContentLength"],
            last_modified=response.get("LastModified"),
        )

    def open(self, key: str) -> BinaryIO:
        try:
            response = self.client.get_object(Bucket=self.name, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, f"getting object {key}") from e
        return response["Body"]

    def list(self, prefix: str = "") -> Iterator[ObjectInfo]:
        paginator = self.client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.name, Prefix=prefix):
                for obj in page.get("Contents", []):
                    yield ObjectInfo(
                        key=obj["Key"],
                        size=obj.get("Size", 0),
                        last_modified=obj.get("LastModified"),
                    )
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, "listing objects") from e
