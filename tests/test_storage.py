"""Tests for object storage implementations."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest

from recordsync.storage import (
    LocalFSStorage,
    ObjectNotFoundError,
    ObjectStorage,
    S3Storage,
    StorageError,
    create_storage,
)


class TestLocalFSStorage:
    """Tests for LocalFSStorage implementation."""

    @pytest.fixture
    def storage(self, tmp_path: Path) -> LocalFSStorage:
        """Create a LocalFSStorage instance for testing."""
        return LocalFSStorage(tmp_path / "remote")

    def test_is_object_storage(self, storage: LocalFSStorage) -> None:
        assert isinstance(storage, ObjectStorage)

    def test_put_creates_nested_file(self, storage: LocalFSStorage) -> None:
        """put() should create intermediate folders for slashed keys."""
        storage.put("records/AtomTemplate_1.json", b"{}")

        assert (storage._base_path / "records" / "AtomTemplate_1.json").is_file()

    def test_get_returns_data(self, storage: LocalFSStorage) -> None:
        storage.put("device_registry.json", b'{"registeredDevices": []}')

        assert storage.get("device_registry.json") == b'{"registeredDevices": []}'

    def test_put_overwrites(self, storage: LocalFSStorage) -> None:
        storage.put("a.json", b"first")
        storage.put("a.json", b"second")

        assert storage.get("a.json") == b"second"

    def test_put_leaves_no_temp_file(self, storage: LocalFSStorage) -> None:
        storage.put("a.json", b"data")

        assert not list(storage._base_path.glob("*.tmp"))

    def test_get_raises_on_missing(self, storage: LocalFSStorage) -> None:
        """get() should raise ObjectNotFoundError for missing objects."""
        with pytest.raises(ObjectNotFoundError, match="Object not found"):
            storage.get("records/missing.json")

    def test_list_filters_by_prefix(self, storage: LocalFSStorage) -> None:
        """list() should only return keys under the prefix, sorted."""
        storage.put("records/b.json", b"2")
        storage.put("records/a.json", b"1")
        storage.put("device_registry.json", b"{}")

        entries = storage.list("records/")

        assert [e.key for e in entries] == ["records/a.json", "records/b.json"]
        assert entries[0].size == 1
        assert entries[0].modified_at.tzinfo is not None

    def test_list_ignores_temp_files(self, storage: LocalFSStorage) -> None:
        (storage._base_path / "records").mkdir()
        (storage._base_path / "records" / "a.json.tmp").write_bytes(b"partial")

        assert storage.list("records/") == []

    def test_rejects_escaping_keys(self, storage: LocalFSStorage) -> None:
        with pytest.raises(StorageError, match="Invalid object key"):
            storage.put("../outside.json", b"x")

    def test_location(self, storage: LocalFSStorage) -> None:
        assert storage.location.startswith("Local filesystem:")


class TestS3Storage:
    """Tests for S3Storage using moto mock."""

    @pytest.fixture
    def mock_s3(self) -> Generator[None, None, None]:
        """Set up moto mock for S3."""
        pytest.importorskip("moto")
        import boto3
        from moto import mock_aws

        with mock_aws():
            # Create the bucket
            client = boto3.client("s3", region_name="us-east-1")
            client.create_bucket(Bucket="test-bucket")
            yield

    @pytest.fixture
    def storage(self, mock_s3: None) -> S3Storage:
        """Create an S3Storage instance for testing."""
        return S3Storage(bucket="test-bucket", region="us-east-1")

    def test_put_and_get(self, storage: S3Storage) -> None:
        storage.put("records/AtomTemplate_1.json", b'{"title": "x"}')

        assert storage.get("records/AtomTemplate_1.json") == b'{"title": "x"}'

    def test_get_raises_on_missing(self, storage: S3Storage) -> None:
        """get() should raise ObjectNotFoundError for missing objects."""
        with pytest.raises(ObjectNotFoundError, match="Object not found"):
            storage.get("records/missing.json")

    def test_list_filters_by_prefix(self, storage: S3Storage) -> None:
        storage.put("alice/records/b.json", b"22")
        storage.put("alice/records/a.json", b"1")
        storage.put("alice/device_registry.json", b"{}")

        entries = storage.list("alice/records/")

        assert [e.key for e in entries] == ["alice/records/a.json", "alice/records/b.json"]
        assert entries[1].size == 2
        assert entries[0].modified_at.tzinfo is not None

    def test_missing_bucket_raises_storage_error(self, mock_s3: None) -> None:
        storage = S3Storage(bucket="no-such-bucket", region="us-east-1")

        with pytest.raises(StorageError):
            storage.put("x.json", b"1")

    def test_location(self, storage: S3Storage) -> None:
        assert storage.location == "S3: s3://test-bucket"


class TestCreateStorage:
    """Tests for the create_storage factory function."""

    def test_create_local_storage(self, tmp_path: Path) -> None:
        """Should create LocalFSStorage for type='local'."""
        storage = create_storage({"type": "local", "local_path": str(tmp_path / "remote")})

        assert isinstance(storage, LocalFSStorage)

    def test_create_local_storage_default_path(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Should use ./sync-data if no path is specified."""
        monkeypatch.chdir(tmp_path)

        storage = create_storage({"type": "local"})

        assert isinstance(storage, LocalFSStorage)
        assert (tmp_path / "sync-data").is_dir()

    def test_create_s3_storage(self) -> None:
        """Should create S3Storage for type='s3'."""
        pytest.importorskip("moto")
        from moto import mock_aws

        with mock_aws():
            storage = create_storage({"type": "s3", "bucket": "my-bucket", "region": "us-east-1"})

            assert isinstance(storage, S3Storage)

    def test_create_s3_requires_bucket(self) -> None:
        with pytest.raises(ValueError, match="requires 'bucket'"):
            create_storage({"type": "s3"})

    def test_unknown_type_raises(self) -> None:
        with pytest.raises(ValueError, match="Unknown storage type"):
            create_storage({"type": "ftp"})
