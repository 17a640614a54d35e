"""Shared pytest fixtures for recordsync tests."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from recordsync.client.history import SyncHistory
from recordsync.client.identity import DeviceIdentity, DeviceType
from recordsync.client.state import LocalState
from recordsync.client.store import RecordStore
from recordsync.client.sync.engine import SyncEngine
from recordsync.client.sync.queue import SyncQueue
from recordsync.client.sync.remote import RemoteService
from recordsync.storage import LocalFSStorage


@pytest.fixture(autouse=True)
def fake_keyring() -> Generator[dict[tuple[str, str], str], None, None]:
    """Replace the OS keyring with an in-memory dict for every test."""
    secrets: dict[tuple[str, str], str] = {}

    mock_keyring = MagicMock()
    mock_keyring.get_password.side_effect = lambda service, account: secrets.get((service, account))
    mock_keyring.set_password.side_effect = lambda service, account, value: secrets.__setitem__(
        (service, account), value
    )

    with (
        patch("recordsync.client.identity.keyring", mock_keyring),
        patch("recordsync.client.cli.config.keyring", mock_keyring),
    ):
        yield secrets


@pytest.fixture(autouse=True)
def reset_package_logger() -> Generator[None, None, None]:
    """Undo the CLI logging setup so caplog keeps working across tests."""
    yield
    package_logger = logging.getLogger("recordsync")
    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)
    package_logger.propagate = True


@pytest.fixture
def state(tmp_path: Path) -> Generator[LocalState, None, None]:
    """Local state database in a temporary directory."""
    local_state = LocalState(tmp_path / "state.db")
    yield local_state
    local_state.close()


@pytest.fixture
def queue(state: LocalState) -> SyncQueue:
    return SyncQueue(state)


@pytest.fixture
def store(state: LocalState, queue: SyncQueue) -> RecordStore:
    """Record store that enqueues every local change."""
    return RecordStore(state, on_change=queue.add_to_queue)


@pytest.fixture
def storage(tmp_path: Path) -> LocalFSStorage:
    """Shared remote folder."""
    return LocalFSStorage(tmp_path / "remote")


@pytest.fixture
def remote(storage: LocalFSStorage) -> RemoteService:
    """Remote service that never sleeps between retries."""
    return RemoteService(storage, retry_sleep=lambda _: None)


def make_identity(name: str = "Phone A", **kwargs: Any) -> DeviceIdentity:
    """Build a device identity with a fresh ID."""
    kwargs.setdefault("device_type", DeviceType.PHONE)
    return DeviceIdentity(device_id=str(uuid.uuid4()), device_name=name, **kwargs)


@pytest.fixture
def identity() -> DeviceIdentity:
    return make_identity()


@pytest.fixture
def identity_factory() -> Callable[..., DeviceIdentity]:
    return make_identity


@pytest.fixture
def history(state: LocalState) -> SyncHistory:
    return SyncHistory(state)


@pytest.fixture
def engine(
    remote: RemoteService,
    queue: SyncQueue,
    identity: DeviceIdentity,
    state: LocalState,
    history: SyncHistory,
) -> Generator[SyncEngine, None, None]:
    """Engine that reverts to idle immediately after each pass."""
    sync_engine = SyncEngine(
        remote,
        queue,
        identity,
        state,
        history=history,
        status_display_seconds=0,
    )
    yield sync_engine
    sync_engine.close()
