"""Tests for RemoteService: registry, reconcile, upload and download."""

from __future__ import annotations

import json
import os
import time
import uuid
from datetime import timedelta
from pathlib import Path

import pytest

from recordsync.client.identity import DeviceIdentity
from recordsync.client.registry import DeviceRegistry
from recordsync.client.store import RecordStore
from recordsync.client.sync.queue import SyncQueue
from recordsync.client.sync.remote import RemoteService, parse_record_key
from recordsync.client.sync.types import RemoteError
from recordsync.core.entities import AtomInstance, AtomTemplate
from recordsync.core.records import format_sync_date, parse_sync_date, utcnow
from recordsync.storage import LocalFSStorage, StorageError


class FlakyStorage(LocalFSStorage):
    """Local storage whose writes fail a given number of times per key."""

    def __init__(self, base_path: Path, failures: int = 0) -> None:
        super().__init__(base_path)
        self.failures = failures
        self.failing_keys: set[str] = set()
        self.put_calls: list[str] = []
        self._failed: dict[str, int] = {}

    def put(self, key: str, data: bytes) -> None:
        self.put_calls.append(key)
        if any(marker in key for marker in self.failing_keys):
            count = self._failed.get(key, 0)
            if self.failures < 0 or count < self.failures:
                self._failed[key] = count + 1
                raise StorageError(f"simulated failure for {key}")
        super().put(key, data)


class UnreachableStorage(LocalFSStorage):
    """Storage where every operation fails."""

    def get(self, key: str) -> bytes:
        raise StorageError("connection refused")

    def put(self, key: str, data: bytes) -> None:
        raise StorageError("connection refused")

    def list(self, prefix: str = "") -> list:
        raise StorageError("connection refused")


def _stored(storage: LocalFSStorage, key: str) -> bool:
    return any(info.key == key for info in storage.list(key))


def _record_key(record) -> str:
    return f"records/{record.entity_type}_{record.sync_id}.json"


def _write_remote(storage: LocalFSStorage, record) -> None:
    storage.put(_record_key(record), record.to_sync_json())


def _bump_mtime(root: Path, key: str) -> None:
    """Date an object an hour ahead so the mtime filter never hides it."""
    future = time.time() + 3600
    os.utime(root / key, (future, future))


def _remote_document(storage: LocalFSStorage, record) -> dict:
    return json.loads(storage.get(_record_key(record)))


class TestParseRecordKey:
    """Tests for parse_record_key()."""

    def test_valid(self) -> None:
        sync_id = str(uuid.uuid4())
        assert parse_record_key(f"AtomInstance_{sync_id}.json") == ("AtomInstance", sync_id)

    @pytest.mark.parametrize(
        "name",
        [
            "device_registry.json",
            "AtomInstance_not-a-uuid.json",
            f"Unknown_{uuid.uuid4()}.json",
            f"AtomInstance_{uuid.uuid4()}.txt",
            "notes.json",
        ],
    )
    def test_foreign_names(self, name: str) -> None:
        assert parse_record_key(name) is None


class TestDeviceRegistry:
    """Tests for registry fetch and update."""

    def test_missing_registry_is_empty(self, remote: RemoteService) -> None:
        assert remote.fetch_device_registry() == DeviceRegistry()

    def test_update_then_fetch(
        self, remote: RemoteService, storage: LocalFSStorage, identity: DeviceIdentity
    ) -> None:
        registry = DeviceRegistry()
        registry.register_device(identity)

        remote.update_device_registry(registry)

        assert _stored(storage, "device_registry.json")
        assert remote.fetch_device_registry() == registry

    def test_corrupt_registry_raises(self, remote: RemoteService, storage: LocalFSStorage) -> None:
        storage.put("device_registry.json", b"{not json")

        with pytest.raises(RemoteError, match="unreadable"):
            remote.fetch_device_registry()

    def test_unreachable_raises(self, tmp_path: Path) -> None:
        remote = RemoteService(UnreachableStorage(tmp_path / "remote"))

        with pytest.raises(RemoteError, match="Failed to fetch device registry"):
            remote.fetch_device_registry()

    def test_prefix_layout(self, storage: LocalFSStorage, identity: DeviceIdentity) -> None:
        remote = RemoteService(storage, prefix="/accounts/alice/")
        registry = DeviceRegistry()
        registry.register_device(identity)

        remote.update_device_registry(registry)

        assert _stored(storage, "accounts/alice/device_registry.json")


class TestReconcile:
    """Tests for last-writer-wins reconciliation."""

    def test_downloads_unknown_records(
        self, remote: RemoteService, storage: LocalFSStorage, store: RecordStore, queue: SyncQueue
    ) -> None:
        record = AtomTemplate(title="remote only")
        _write_remote(storage, record)

        assert remote.reconcile_from_remote(store) == 1
        assert store.get("AtomTemplate", str(record.sync_id)).title == "remote only"
        # Applying remote data never enqueues uploads
        assert len(queue) == 0

    def test_newer_remote_wins(
        self, tmp_path: Path, remote: RemoteService, storage: LocalFSStorage, store: RecordStore
    ) -> None:
        record = AtomTemplate(title="local")
        store.save(record)
        newer = AtomTemplate(
            title="remote",
            sync_id=record.sync_id,
            created_at=record.created_at,
            last_modified=record.last_modified + timedelta(hours=1),
        )
        _write_remote(storage, newer)
        _bump_mtime(tmp_path / "remote", _record_key(record))

        assert remote.reconcile_from_remote(store) == 1
        assert store.get("AtomTemplate", str(record.sync_id)).title == "remote"

    def test_older_remote_loses(
        self, tmp_path: Path, remote: RemoteService, storage: LocalFSStorage, store: RecordStore
    ) -> None:
        record = AtomTemplate(title="local")
        store.save(record)
        older = AtomTemplate(
            title="remote",
            sync_id=record.sync_id,
            created_at=record.created_at,
            last_modified=record.last_modified - timedelta(hours=1),
        )
        _write_remote(storage, older)
        _bump_mtime(tmp_path / "remote", _record_key(record))

        assert remote.reconcile_from_remote(store) == 0
        assert store.get("AtomTemplate", str(record.sync_id)).title == "local"

    def test_equal_timestamp_keeps_local(
        self, tmp_path: Path, remote: RemoteService, storage: LocalFSStorage, store: RecordStore
    ) -> None:
        record = AtomTemplate(title="local")
        store.save(record)
        same = AtomTemplate(
            title="remote",
            sync_id=record.sync_id,
            created_at=record.created_at,
            last_modified=record.last_modified,
        )
        _write_remote(storage, same)
        _bump_mtime(tmp_path / "remote", _record_key(record))

        assert remote.reconcile_from_remote(store) == 0

    def test_stale_object_not_downloaded(
        self, tmp_path: Path, remote: RemoteService, storage: LocalFSStorage, store: RecordStore
    ) -> None:
        """Objects written before the local edit are skipped without a download."""
        record = AtomTemplate(title="local")
        store.save(record)
        _write_remote(storage, record)
        past = time.time() - 3600
        os.utime(tmp_path / "remote" / _record_key(record), (past, past))

        with pytest.MonkeyPatch.context() as mp:
            mp.setattr(storage, "get", lambda key: pytest.fail(f"unexpected download of {key}"))
            assert remote.reconcile_from_remote(store) == 0

    def test_remote_tombstone_deletes(
        self, tmp_path: Path, remote: RemoteService, storage: LocalFSStorage, store: RecordStore
    ) -> None:
        record = AtomInstance(title="done")
        store.save(record)
        tombstone = {
            "syncID": str(record.sync_id),
            "isDeleted": True,
            "lastModified": format_sync_date(record.last_modified + timedelta(minutes=5)),
        }
        storage.put(_record_key(record), json.dumps(tombstone).encode())
        _bump_mtime(tmp_path / "remote", _record_key(record))

        assert remote.reconcile_from_remote(store) == 1
        deleted = store.get("AtomInstance", str(record.sync_id))
        assert deleted.is_deleted is True
        assert deleted.title == "done"

    def test_skips_malformed_and_foreign_objects(
        self, remote: RemoteService, storage: LocalFSStorage, store: RecordStore
    ) -> None:
        storage.put(f"records/AtomTemplate_{uuid.uuid4()}.json", b"{broken")
        storage.put(f"records/AtomTemplate_{uuid.uuid4()}.json", b'{"syncID": "x"}')
        storage.put("records/readme.txt", b"hello")
        good = AtomTemplate(title="good")
        _write_remote(storage, good)

        assert remote.reconcile_from_remote(store) == 1
        assert store.count() == 1

    def test_unreachable_raises(self, tmp_path: Path, store: RecordStore) -> None:
        remote = RemoteService(UnreachableStorage(tmp_path / "remote"))

        with pytest.raises(RemoteError):
            remote.reconcile_from_remote(store)

    def test_download_all_overwrites_newer_local(
        self, remote: RemoteService, storage: LocalFSStorage, store: RecordStore
    ) -> None:
        record = AtomTemplate(title="local")
        store.save(record)
        older = AtomTemplate(
            title="cloud",
            sync_id=record.sync_id,
            created_at=record.created_at,
            last_modified=record.last_modified - timedelta(days=1),
        )
        _write_remote(storage, older)

        assert remote.download_all(store) == 1
        assert store.get("AtomTemplate", str(record.sync_id)).title == "cloud"


class TestUpload:
    """Tests for upload_pending_records()."""

    def test_uploads_and_dequeues(
        self, remote: RemoteService, storage: LocalFSStorage, store: RecordStore, queue: SyncQueue
    ) -> None:
        record = AtomTemplate(title="a")
        store.save(record)

        report = remote.upload_pending_records(queue, store)

        assert report.uploaded_count == 1
        assert report.failed_count == 0
        assert len(queue) == 0
        assert _remote_document(storage, record)["title"] == "a"

    def test_upload_is_idempotent(
        self, remote: RemoteService, storage: LocalFSStorage, store: RecordStore, queue: SyncQueue
    ) -> None:
        """Uploading the same record twice leaves exactly one object."""
        record = AtomTemplate(title="a")
        store.save(record)
        remote.upload_pending_records(queue, store)
        store.save(record)
        remote.upload_pending_records(queue, store)

        assert [info.key for info in storage.list("records/")] == [_record_key(record)]

    def test_missing_row_uploads_tombstone(
        self, remote: RemoteService, storage: LocalFSStorage, store: RecordStore, queue: SyncQueue
    ) -> None:
        ghost = AtomTemplate(title="gone")
        queue.add_to_queue(ghost)

        remote.upload_pending_records(queue, store)

        document = _remote_document(storage, ghost)
        assert document["syncID"] == str(ghost.sync_id)
        assert document["isDeleted"] is True
        assert parse_sync_date(document["lastModified"]) is not None

    def test_soft_deleted_record_keeps_fields(
        self, remote: RemoteService, storage: LocalFSStorage, store: RecordStore, queue: SyncQueue
    ) -> None:
        record = AtomTemplate(title="a")
        store.save(record)
        store.soft_delete("AtomTemplate", str(record.sync_id))

        remote.upload_pending_records(queue, store)

        document = _remote_document(storage, record)
        assert document["isDeleted"] is True
        assert document["title"] == "a"

    def test_priority_order(
        self, tmp_path: Path, store: RecordStore, queue: SyncQueue
    ) -> None:
        storage = FlakyStorage(tmp_path / "remote")
        remote = RemoteService(storage, retry_sleep=lambda _: None)
        template = AtomTemplate(title="t")
        instance = AtomInstance(title="i", created_at=utcnow())
        store.save(template)
        store.save(instance)

        remote.upload_pending_records(queue, store)

        assert storage.put_calls == [_record_key(instance), _record_key(template)]

    def test_transient_failure_is_retried(
        self, tmp_path: Path, store: RecordStore, queue: SyncQueue
    ) -> None:
        storage = FlakyStorage(tmp_path / "remote", failures=1)
        remote = RemoteService(storage, upload_retries=2, retry_sleep=lambda _: None)
        record = AtomTemplate(title="a")
        storage.failing_keys.add(str(record.sync_id))
        store.save(record)

        report = remote.upload_pending_records(queue, store)

        assert report.uploaded_count == 1
        assert storage.put_calls.count(_record_key(record)) == 2

    def test_failure_keeps_item_and_continues(
        self, tmp_path: Path, store: RecordStore, queue: SyncQueue
    ) -> None:
        """A failing item stays queued and never blocks the others."""
        storage = FlakyStorage(tmp_path / "remote", failures=-1)
        remote = RemoteService(storage, upload_retries=1, retry_sleep=lambda _: None)
        bad, good = AtomTemplate(title="bad"), AtomTemplate(title="good")
        storage.failing_keys.add(str(bad.sync_id))
        store.save(bad)
        store.save(good)

        report = remote.upload_pending_records(queue, store)

        assert [i.sync_id for i in report.uploaded] == [str(good.sync_id)]
        assert [i.sync_id for i in report.failed] == [str(bad.sync_id)]
        assert str(bad.sync_id) in report.errors
        assert [(i.sync_id, i.attempts) for i in queue.queue] == [(str(bad.sync_id), 1)]

    def test_abandons_after_max_attempts(
        self, tmp_path: Path, store: RecordStore, queue: SyncQueue
    ) -> None:
        storage = FlakyStorage(tmp_path / "remote", failures=-1)
        remote = RemoteService(
            storage, upload_retries=0, max_item_attempts=2, retry_sleep=lambda _: None
        )
        record = AtomTemplate(title="doomed")
        storage.failing_keys.add(str(record.sync_id))
        store.save(record)

        first = remote.upload_pending_records(queue, store)
        second = remote.upload_pending_records(queue, store)

        assert len(first.failed) == 1
        assert len(second.abandoned) == 1
        assert second.failed_count == 1
        assert len(queue) == 0

    def test_prefixed_record_keys(self, storage: LocalFSStorage, store: RecordStore, queue: SyncQueue) -> None:
        remote = RemoteService(storage, prefix="team", retry_sleep=lambda _: None)
        record = AtomTemplate(title="a")
        store.save(record)

        remote.upload_pending_records(queue, store)

        assert _stored(storage, f"team/{_record_key(record)}")
