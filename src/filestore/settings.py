"""Backend configuration models.

One pydantic model per backend, validated when constructed so bad
combinations (e.g. S3 without credentials) fail before any I/O happens.
"""

import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import ConfigError

# Environment variables consulted by load_store_settings
ENV_S3_ACCESS_KEY = "FILESTORE_S3_ACCESS_KEY"
ENV_S3_SECRET_KEY = "FILESTORE_S3_SECRET_KEY"
ENV_AZURE_CONNECTION_STRING = "AZURE_STORAGE_CONNECTION_STRING"


class LocalStoreSettings(BaseModel):
    """
    Settings for the filesystem backend.

    ``staging_dir`` should be on the same filesystem as ``assets_dir``.
    """
    backend: Literal["local"] = "local"
    staging_dir: Path
    assets_dir: Path
    prefix_size: int = Field(default=2, ge=1, le=64)
    file_mode: int = Field(default=0o644, ge=0, le=0o7777)
    fsync: bool = True

    @model_validator(mode="after")
    def validate_distinct_dirs(self):
        """Staging files must not land inside the asset tree as assets."""
        if self.staging_dir.resolve() == self.assets_dir.resolve():
            raise ConfigError("staging_dir and assets_dir must be different directories")
        return self


class S3StoreSettings(BaseModel):
    """
    Settings for an S3-compatible backend.

    Either both keys or ``anonymous=True`` must be given.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    backend: Literal["s3"] = "s3"
    endpoint: str                       # host[:port] or full URL
    bucket: str
    access_key: str = ""
    secret_key: str = ""
    session_token: str = ""
    anonymous: bool = False
    secure: bool = False                # https for a bare host endpoint
    region: str = ""                    # "" = client default; fine for MinIO
    bucket_lookup: Literal["auto", "path", "dns"] = "auto"
    signature_version: Literal["s3v4", "s3"] = "s3v4"
    auto_create: bool = False
    staging_prefix: str = "tmp/"
    transport: Optional[Any] = Field(default=None, exclude=True)  # pre-built client, mainly for tests

    @model_validator(mode="after")
    def validate_credentials(self):
        """Require credentials unless anonymous access is explicit."""
        if self.transport is not None or self.anonymous:
            return self
        if not self.access_key or not self.secret_key:
            raise ConfigError(
                "S3 storage requires access_key and secret_key "
                "(or anonymous=True for unsigned access)"
            )
        return self

    @model_validator(mode="after")
    def validate_staging_prefix(self):
        if not self.staging_prefix:
            raise ConfigError("staging_prefix must not be empty")
        return self


class AzureStoreSettings(BaseModel):
    """Settings for the Azure Blob Storage backend."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    backend: Literal["azure"] = "azure"
    container: str
    connection_string: str = ""
    account_url: str = ""
    credential: Optional[Any] = Field(default=None, exclude=True)
    anonymous: bool = False
    auto_create: bool = False
    staging_prefix: str = "tmp/"
    transport: Optional[Any] = Field(default=None, exclude=True)  # azure-core HttpTransport

    @model_validator(mode="after")
    def validate_credentials(self):
        """Require a connection string, or an account URL with a credential."""
        if self.connection_string:
            return self
        if not self.account_url:
            raise ConfigError(
                "Azure storage requires connection_string or account_url "
                f"(or set {ENV_AZURE_CONNECTION_STRING})"
            )
        if self.credential is None and not self.anonymous:
            raise ConfigError("Azure account_url requires a credential (or anonymous=True)")
        return self

    @model_validator(mode="after")
    def validate_staging_prefix(self):
        if not self.staging_prefix:
            raise ConfigError("staging_prefix must not be empty")
        return self


class MemoryStoreSettings(BaseModel):
    """The in-memory backend takes no options."""
    backend: Literal["memory"] = "memory"


StoreSettings = Union[LocalStoreSettings, S3StoreSettings, AzureStoreSettings, MemoryStoreSettings]


class _SettingsFile(BaseModel):
    store: StoreSettings = Field(discriminator="backend")


def parse_store_settings(data: Dict[str, Any]) -> StoreSettings:
    """
    Build settings from a mapping with a ``backend`` key.

    Raises:
        ConfigError: If the mapping is invalid
    """
    try:
        return _SettingsFile(store=data).store
    except ValidationError as e:
        raise ConfigError(f"invalid store settings: {e}") from e


def load_store_settings(path: Union[str, Path], environ: Optional[Dict[str, str]] = None) -> StoreSettings:
    """
    Load store settings from a YAML file.

    The file holds a ``store:`` mapping (or the mapping at top level).
    Secrets may come from the environment instead of the file:
    FILESTORE_S3_ACCESS_KEY, FILESTORE_S3_SECRET_KEY and
    AZURE_STORAGE_CONNECTION_STRING fill in fields the file leaves empty.

    Args:
        path: YAML file path
        environ: Environment mapping (defaults to os.environ)

    Raises:
        FileNotFoundError: If the file doesn't exist
        ConfigError: If the file can't be parsed or is invalid
    """
    env = os.environ if environ is None else environ
    path = Path(path)

    try:
        data = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")

    store = dict(data.get("store", data))
    backend = store.get("backend")
    if backend == "s3":
        if not store.get("access_key") and env.get(ENV_S3_ACCESS_KEY):
            store["access_key"] = env[ENV_S3_ACCESS_KEY]
        if not store.get("secret_key") and env.get(ENV_S3_SECRET_KEY):
            store["secret_key"] = env[ENV_S3_SECRET_KEY]
    elif backend == "azure":
        if not store.get("connection_string") and env.get(ENV_AZURE_CONNECTION_STRING):
            store["connection_string"] = env[ENV_AZURE_CONNECTION_STRING]

    return parse_store_settings(store)
