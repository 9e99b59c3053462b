"""Test settings models, YAML loading and the store factory."""

from pathlib import Path
from unittest.mock import Mock, patch

import pytest
import yaml

from filestore.errors import ConfigError
from filestore.settings import (
    AzureStoreSettings,
    LocalStoreSettings,
    MemoryStoreSettings,
    S3StoreSettings,
    load_store_settings,
    parse_store_settings,
)
from filestore.storage.factory import make_file_store
from filestore.storage.local import LocalFileStore
from filestore.storage.memory import MemoryFileStore
from filestore.storage.objectstore import ObjectFileStore
from filestore.storage.s3 import S3Bucket


def _write_yaml(path: Path, data) -> Path:
    path.write_text(yaml.safe_dump(data))
    return path


class TestLocalSettings:
    """Test local backend settings."""

    def test_defaults(self, tmp_path):
        settings = LocalStoreSettings(staging_dir=tmp_path / "tmp", assets_dir=tmp_path / "assets")

        assert settings.prefix_size == 2
        assert settings.file_mode == 0o644
        assert settings.fsync is True

    def test_same_directory_rejected(self, tmp_path):
        """Test that staging and assets must differ."""
        with pytest.raises(ConfigError, match="must be different"):
            LocalStoreSettings(staging_dir=tmp_path / "x", assets_dir=tmp_path / "x")

    def test_prefix_size_bounds(self, tmp_path):
        with pytest.raises(ConfigError, match="invalid store settings"):
            parse_store_settings({
                "backend": "local",
                "staging_dir": str(tmp_path / "tmp"),
                "assets_dir": str(tmp_path / "assets"),
                "prefix_size": 0,
            })


class TestS3Settings:
    """Test S3 credential validation."""

    def test_requires_credentials(self):
        with pytest.raises(ConfigError, match="access_key and secret_key"):
            S3StoreSettings(endpoint="minio:9000", bucket="assets")

    def test_anonymous(self):
        settings = S3StoreSettings(endpoint="minio:9000", bucket="assets", anonymous=True)
        assert settings.access_key == ""

    def test_prebuilt_transport(self):
        """Test that a pre-built client needs no credentials."""
        settings = S3StoreSettings(endpoint="minio:9000", bucket="assets", transport=Mock())
        assert "transport" not in settings.model_dump()

    def test_empty_staging_prefix(self):
        with pytest.raises(ConfigError, match="staging_prefix"):
            S3StoreSettings(endpoint="minio:9000", bucket="assets", anonymous=True, staging_prefix="")

    def test_bad_bucket_lookup(self):
        with pytest.raises(ConfigError):
            parse_store_settings({
                "backend": "s3",
                "endpoint": "minio:9000",
                "bucket": "assets",
                "anonymous": True,
                "bucket_lookup": "sideways",
            })


class TestAzureSettings:
    """Test Azure credential validation."""

    def test_connection_string(self):
        settings = AzureStoreSettings(container="assets", connection_string="UseDevelopmentStorage=true")
        assert settings.staging_prefix == "tmp/"

    def test_requires_something(self):
        with pytest.raises(ConfigError, match="AZURE_STORAGE_CONNECTION_STRING"):
            AzureStoreSettings(container="assets")

    def test_account_url_requires_credential(self):
        with pytest.raises(ConfigError, match="credential"):
            AzureStoreSettings(container="assets", account_url="https://acct.blob.core.windows.net")

    def test_account_url_anonymous(self):
        AzureStoreSettings(container="assets", account_url="https://acct.blob.core.windows.net", anonymous=True)

    def test_empty_staging_prefix(self):
        with pytest.raises(ConfigError, match="staging_prefix"):
            AzureStoreSettings(
                container="assets",
                connection_string="UseDevelopmentStorage=true",
                staging_prefix="",
            )


class TestParseSettings:
    """Test backend selection from mappings."""

    def test_memory(self):
        assert isinstance(parse_store_settings({"backend": "memory"}), MemoryStoreSettings)

    def test_unknown_backend(self):
        with pytest.raises(ConfigError):
            parse_store_settings({"backend": "ftp"})

    def test_missing_backend(self):
        with pytest.raises(ConfigError):
            parse_store_settings({"bucket": "assets"})


class TestLoadSettings:
    """Test loading settings from YAML files."""

    def test_store_section(self, tmp_path):
        path = _write_yaml(tmp_path / "store.yaml", {
            "store": {
                "backend": "local",
                "staging_dir": str(tmp_path / "tmp"),
                "assets_dir": str(tmp_path / "assets"),
                "prefix_size": 3,
            }
        })

        settings = load_store_settings(path, environ={})

        assert isinstance(settings, LocalStoreSettings)
        assert settings.assets_dir == tmp_path / "assets"
        assert settings.prefix_size == 3

    def test_top_level_mapping(self, tmp_path):
        path = _write_yaml(tmp_path / "store.yaml", {"backend": "memory"})

        assert isinstance(load_store_settings(path, environ={}), MemoryStoreSettings)

    def test_s3_keys_from_environment(self, tmp_path):
        """Test that secrets missing from the file come from the environment."""
        path = _write_yaml(tmp_path / "store.yaml", {
            "store": {"backend": "s3", "endpoint": "minio:9000", "bucket": "assets"}
        })
        env = {"FILESTORE_S3_ACCESS_KEY": "env-access", "FILESTORE_S3_SECRET_KEY": "env-secret"}

        settings = load_store_settings(path, environ=env)

        assert settings.access_key == "env-access"
        assert settings.secret_key == "env-secret"

    def test_file_value_beats_environment(self, tmp_path):
        path = _write_yaml(tmp_path / "store.yaml", {
            "store": {
                "backend": "s3",
                "endpoint": "minio:9000",
                "bucket": "assets",
                "access_key": "file-access",
                "secret_key": "file-secret",
            }
        })
        env = {"FILESTORE_S3_ACCESS_KEY": "env-access", "FILESTORE_S3_SECRET_KEY": "env-secret"}

        settings = load_store_settings(path, environ=env)

        assert settings.access_key == "file-access"

    def test_azure_connection_string_from_environment(self, tmp_path):
        path = _write_yaml(tmp_path / "store.yaml", {"store": {"backend": "azure", "container": "assets"}})

        settings = load_store_settings(path, environ={"AZURE_STORAGE_CONNECTION_STRING": "UseDevelopmentStorage=true"})

        assert settings.connection_string == "UseDevelopmentStorage=true"

    def test_missing_credentials_without_environment(self, tmp_path):
        path = _write_yaml(tmp_path / "store.yaml", {
            "store": {"backend": "s3", "endpoint": "minio:9000", "bucket": "assets"}
        })

        with pytest.raises(ConfigError):
            load_store_settings(path, environ={})

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "store.yaml"
        path.write_text("store: [unclosed")

        with pytest.raises(ConfigError, match="invalid YAML"):
            load_store_settings(path, environ={})

    def test_not_a_mapping(self, tmp_path):
        path = _write_yaml(tmp_path / "store.yaml", ["backend", "memory"])

        with pytest.raises(ConfigError, match="must contain a mapping"):
            load_store_settings(path, environ={})

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_store_settings(tmp_path / "absent.yaml", environ={})


class TestMakeFileStore:
    """Test the store factory."""

    def test_local(self, tmp_path):
        settings = LocalStoreSettings(
            staging_dir=tmp_path / "tmp",
            assets_dir=tmp_path / "assets",
            prefix_size=3,
            fsync=False,
        )

        store = make_file_store(settings)

        assert isinstance(store, LocalFileStore)
        assert store.prefix_size == 3
        assert store.fsync is False
        assert (tmp_path / "assets").is_dir()

    def test_memory(self):
        assert isinstance(make_file_store(MemoryStoreSettings()), MemoryFileStore)

    def test_s3_with_transport(self):
        """Test that a pre-built client is used as is."""
        client = Mock()
        settings = S3StoreSettings(
            endpoint="minio:9000",
            bucket="assets",
            transport=client,
            staging_prefix="staging/",
        )

        with patch("filestore.storage.s3.build_s3_client") as mock_build:
            store = make_file_store(settings)

        mock_build.assert_not_called()
        assert isinstance(store, ObjectFileStore)
        assert isinstance(store.bucket, S3Bucket)
        assert store.bucket.client is client
        assert store.staging_prefix == "staging/"
        client.head_bucket.assert_called_once_with(Bucket="assets")

    def test_s3_builds_client(self):
        settings = S3StoreSettings(
            endpoint="minio:9000",
            bucket="assets",
            access_key="a",
            secret_key="s",
            bucket_lookup="path",
        )

        with patch("filestore.storage.s3.build_s3_client") as mock_build:
            store = make_file_store(settings)

        assert mock_build.call_args.args == ("minio:9000",)
        assert mock_build.call_args.kwargs["bucket_lookup"] == "path"
        assert store.bucket.client is mock_build.return_value

    def test_azure(self):
        settings = AzureStoreSettings(container="assets", connection_string="UseDevelopmentStorage=true")

        with patch("filestore.storage.azure.BlobServiceClient") as mock_cls:
            service = mock_cls.from_connection_string.return_value
            service.get_container_client.return_value.exists.return_value = True
            store = make_file_store(settings)

        assert isinstance(store, ObjectFileStore)
        assert store.locator_source("ab") == "abs://assets/ab"

    def test_unsupported(self):
        with pytest.raises(NotImplementedError):
            make_file_store(object())
