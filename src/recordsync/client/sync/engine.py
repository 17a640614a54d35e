"""Sync engine sequencing a full sync pass.

This module provides:
- SyncEngine: Status state machine and the sync pass algorithm

States:
    IDLE -> SYNCING -> SUCCESS -> IDLE
                    -> FAILED -> IDLE
                    -> CONFLICT_DETECTED -> IDLE (dismissed or cancelled)
                                         -> SYNCING (resolution)

All state transitions are validated. SUCCESS and FAILED revert to IDLE
after the display interval; CONFLICT_DETECTED stays until the user
resolves or dismisses it. Any state other than IDLE blocks a new pass.

A pass runs these phases strictly in order, stopping at the first error:
    1. fetch the device registry
    2. apply the conflict rule (stops the pass with no record I/O)
    3. reconcile records from the remote store
    4. upload the pending queue
    5. re-fetch the registry, register this device and write it back
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import TYPE_CHECKING

from recordsync.client.history import SyncAction, SyncHistoryEntry, SyncOutcome
from recordsync.client.registry import detect_conflict
from recordsync.client.sync.types import (
    ConflictResolution,
    InvalidTransitionError,
    SignedInCheck,
    StatusListener,
    SyncResult,
    SyncStatus,
)
from recordsync.core.config import DEFAULT_FOREGROUND_COOLDOWN, DEFAULT_STATUS_DISPLAY_SECONDS
from recordsync.core.records import format_sync_date, parse_sync_date, utcnow
from recordsync.core.types import SyncState

if TYPE_CHECKING:
    from recordsync.client.history import SyncHistory
    from recordsync.client.identity import DeviceIdentity
    from recordsync.client.state import LocalState
    from recordsync.client.store import RecordStore
    from recordsync.client.sync.queue import SyncQueue
    from recordsync.client.sync.remote import RemoteService

logger = logging.getLogger(__name__)

LAST_SYNC_DATE_KEY = "last_sync_date"
LAST_FOREGROUND_SYNC_KEY = "last_foreground_sync"

# Valid state transitions
VALID_TRANSITIONS: dict[SyncState, set[SyncState]] = {
    SyncState.IDLE: {SyncState.SYNCING},
    SyncState.SYNCING: {
        SyncState.SYNCING,
        SyncState.SUCCESS,
        SyncState.FAILED,
        SyncState.CONFLICT_DETECTED,
    },
    SyncState.SUCCESS: {SyncState.IDLE},
    SyncState.FAILED: {SyncState.IDLE},
    SyncState.CONFLICT_DETECTED: {SyncState.IDLE, SyncState.SYNCING},
}


class SyncEngine:
    """Runs sync passes and publishes their status.

    Passes submitted through perform_full_sync_safely() / force_sync()
    run on a single worker thread, so at most one pass is in flight.
    """

    def __init__(
        self,
        remote: RemoteService,
        queue: SyncQueue,
        identity: DeviceIdentity,
        state: LocalState,
        history: SyncHistory | None = None,
        is_signed_in: SignedInCheck | None = None,
        foreground_cooldown: float = DEFAULT_FOREGROUND_COOLDOWN,
        status_display_seconds: float = DEFAULT_STATUS_DISPLAY_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the sync engine.

        Args:
            remote: Remote store operations.
            queue: Pending upload queue.
            identity: Identity of this device.
            state: Local state (last sync dates).
            history: Optional sync history log.
            is_signed_in: Returns False when remote storage is not configured.
            foreground_cooldown: Minimum seconds between throttled passes.
            status_display_seconds: How long SUCCESS/FAILED stay visible.
            clock: Wall clock in seconds, used for the cooldown.
        """
        self._remote = remote
        self._queue = queue
        self._identity = identity
        self._state = state
        self._history = history
        self._is_signed_in = is_signed_in or (lambda: True)
        self._foreground_cooldown = foreground_cooldown
        self._status_display_seconds = status_display_seconds
        self._clock = clock

        # Guards status and listeners; listeners are called while held
        self._status_lock = threading.RLock()
        self._status = SyncStatus.idle()
        self._listeners: list[StatusListener] = []
        self._revert_timer: threading.Timer | None = None

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="recordsync")

    # === Status ===

    @property
    def status(self) -> SyncStatus:
        with self._status_lock:
            return self._status

    @property
    def last_sync_date(self) -> datetime | None:
        return parse_sync_date(self._state.get_state(LAST_SYNC_DATE_KEY))

    def add_listener(self, listener: StatusListener) -> None:
        """Register a callback invoked with every new status."""
        with self._status_lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: StatusListener) -> None:
        with self._status_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _transition(self, new_status: SyncStatus) -> None:
        """Validate and publish a status change.

        Raises:
            InvalidTransitionError: If the transition is not allowed.
        """
        with self._status_lock:
            current = self._status.state
            if new_status.state not in VALID_TRANSITIONS[current]:
                raise InvalidTransitionError(
                    f"Cannot transition from {current.value} to {new_status.state.value}"
                )
            self._status = new_status
            logger.debug("Sync status: %s", new_status)
            for listener in list(self._listeners):
                try:
                    listener(new_status)
                except Exception:
                    logger.exception("Sync status listener failed")

    def _try_begin(self, message: str) -> bool:
        """Atomically move from IDLE to SYNCING."""
        with self._status_lock:
            if self._status.state is not SyncState.IDLE:
                return False
            self._cancel_revert()
            self._transition(SyncStatus.syncing(message))
            return True

    def _finish(self, status: SyncStatus) -> None:
        """Publish a terminal status and schedule the return to IDLE."""
        with self._status_lock:
            self._transition(status)
            if status.state is SyncState.CONFLICT_DETECTED:
                return
            if self._status_display_seconds <= 0:
                self._transition(SyncStatus.idle())
                return
            self._cancel_revert()
            timer = threading.Timer(self._status_display_seconds, self._revert_to_idle, args=(status,))
            timer.daemon = True
            self._revert_timer = timer
            timer.start()

    def _revert_to_idle(self, expected: SyncStatus) -> None:
        with self._status_lock:
            # A newer status must not be overwritten by an old timer
            if self._status is expected:
                self._transition(SyncStatus.idle())

    def _cancel_revert(self) -> None:
        if self._revert_timer is not None:
            self._revert_timer.cancel()
            self._revert_timer = None

    def dismiss_status(self) -> None:
        """Return to IDLE from any finished state, including a pending conflict."""
        with self._status_lock:
            if self._status.state in (
                SyncState.SUCCESS,
                SyncState.FAILED,
                SyncState.CONFLICT_DETECTED,
            ):
                self._cancel_revert()
                self._transition(SyncStatus.idle())

    def clear_error(self) -> None:
        """Return to IDLE if the last pass failed."""
        with self._status_lock:
            if self._status.state is SyncState.FAILED:
                self._cancel_revert()
                self._transition(SyncStatus.idle())

    # === Entry points ===

    def _blocked_reason(self) -> str | None:
        if not self._is_signed_in():
            return "not signed in"
        if self._identity.is_simulator:
            return "simulator"
        return None

    def _within_cooldown(self) -> bool:
        raw = self._state.get_state(LAST_FOREGROUND_SYNC_KEY)
        if raw is None:
            return False
        try:
            last = float(raw)
        except ValueError:
            return False
        return self._clock() - last < self._foreground_cooldown

    def perform_full_sync_safely(self, store: RecordStore) -> Future[SyncResult] | None:
        """Start a throttled background pass if allowed.

        Does nothing when signed out, on a simulator, while another pass
        or a pending conflict is shown, or within the foreground cooldown.

        Returns:
            Future of the pass result, or None if no pass was started.
        """
        reason = self._blocked_reason()
        if reason is not None:
            logger.info("Skipping sync: %s", reason)
            return None
        if self._within_cooldown():
            logger.debug("Skipping sync: within cooldown")
            return None
        return self._submit(SyncAction.FULL_SYNC, store, throttle=True)

    def force_sync(self, store: RecordStore) -> Future[SyncResult] | None:
        """Start a background pass, ignoring the cooldown.

        Returns:
            Future of the pass result, or None if no pass was started.
        """
        reason = self._blocked_reason()
        if reason is not None:
            logger.info("Skipping sync: %s", reason)
            if reason == "not signed in":
                self._record(SyncHistoryEntry(SyncAction.MANUAL_SYNC, SyncOutcome.SKIPPED, reason))
            return None
        return self._submit(SyncAction.MANUAL_SYNC, store, throttle=False)

    def _submit(self, action: SyncAction, store: RecordStore, throttle: bool) -> Future[SyncResult] | None:
        if not self._try_begin("Syncing..."):
            logger.info("Skipping sync: already %s", self.status.state.value)
            self._record(SyncHistoryEntry(action, SyncOutcome.SKIPPED, "already syncing"))
            return None
        if throttle:
            try:
                self._state.set_state(LAST_FOREGROUND_SYNC_KEY, repr(self._clock()))
            except sqlite3.Error as e:
                logger.error("Failed to store foreground sync time: %s", e)
        return self._executor.submit(self._run_pass, action, store)

    def execute_sync(self, store: RecordStore, action: SyncAction = SyncAction.FULL_SYNC) -> SyncResult | None:
        """Run a pass on the calling thread.

        Returns:
            The pass result, or None if another pass is in progress.
        """
        if not self._try_begin("Syncing..."):
            logger.info("Skipping sync: already %s", self.status.state.value)
            return None
        return self._run_pass(action, store)

    # === Sync pass ===

    def _run_pass(self, action: SyncAction, store: RecordStore) -> SyncResult:
        started = time.monotonic()
        result = SyncResult()
        phase = "fetch device registry"
        try:
            registry = self._remote.fetch_device_registry()

            phase = "conflict check"
            conflict = detect_conflict(
                registry,
                self._identity.device_id,
                local_record_count=store.count(),
                local_device_name=self._identity.device_name,
            )
            if conflict is not None:
                logger.warning(
                    "Device conflict: %s is new, %s synced last",
                    self._identity.device_name,
                    conflict.remote_device_name,
                )
                result.conflict = conflict
                result.duration = time.monotonic() - started
                self._finish(SyncStatus.conflict_detected(conflict))
                self._record_result(action, result, SyncOutcome.CONFLICT)
                return result

            phase = "download"
            self._transition(SyncStatus.syncing("Downloading changes..."))
            result.downloaded = self._remote.reconcile_from_remote(store)

            phase = "upload"
            self._transition(SyncStatus.syncing("Uploading changes..."))
            report = self._remote.upload_pending_records(self._queue, store)
            result.uploaded = report.uploaded_count
            result.failed = report.failed_count

            phase = "device registration"
            self._register_this_device()
        except Exception as e:
            return self._fail(action, result, phase, e, started)

        return self._succeed(action, result, started)

    def _register_this_device(self) -> None:
        # Re-fetch so devices registered during this pass are kept
        registry = self._remote.fetch_device_registry()
        registry.register_device(self._identity)
        self._remote.update_device_registry(registry)

    def _succeed(self, action: SyncAction, result: SyncResult, started: float) -> SyncResult:
        result.duration = time.monotonic() - started
        try:
            self._state.set_state(LAST_SYNC_DATE_KEY, format_sync_date(utcnow()))
        except sqlite3.Error as e:
            logger.error("Failed to store last sync date: %s", e)
        logger.info("Sync finished: %s", result.message)
        self._finish(SyncStatus.success(result.message))
        outcome = SyncOutcome.PARTIAL_SUCCESS if result.failed else SyncOutcome.SUCCESS
        self._record_result(action, result, outcome)
        return result

    def _fail(
        self,
        action: SyncAction,
        result: SyncResult,
        phase: str,
        error: Exception,
        started: float,
    ) -> SyncResult:
        logger.exception("Sync failed during %s", phase)
        result.error = f"{phase}: {error}"
        result.duration = time.monotonic() - started
        self._finish(SyncStatus.failed("Sync failed"))
        self._record_result(action, result, SyncOutcome.FAILED)
        return result

    # === Conflict resolution ===

    def handle_conflict_resolution(
        self,
        choice: ConflictResolution,
        store: RecordStore,
    ) -> SyncResult | None:
        """Resolve a device conflict on the calling thread.

        USE_THIS_DEVICE uploads every local record. USE_CLOUD_DATA drops
        pending uploads and overwrites local rows with every remote
        document. Both register this device. CANCEL only dismisses the
        conflict.

        Returns:
            The resolution result, or None if cancelled, busy, signed out
            or running on a simulator.
        """
        reason = self._blocked_reason()
        if reason is not None and choice is not ConflictResolution.CANCEL:
            logger.info("Skipping conflict resolution: %s", reason)
            return None

        if choice is ConflictResolution.CANCEL:
            with self._status_lock:
                if self._status.state is SyncState.CONFLICT_DETECTED:
                    self._transition(SyncStatus.idle())
            self._record(
                SyncHistoryEntry(SyncAction.CONFLICT_RESOLUTION, SyncOutcome.CANCELLED, "cancelled")
            )
            return None

        with self._status_lock:
            if self._status.state not in (SyncState.IDLE, SyncState.CONFLICT_DETECTED):
                logger.warning("Cannot resolve conflict while %s", self._status.state.value)
                return None
            self._cancel_revert()
            self._transition(SyncStatus.syncing("Resolving conflict..."))

        action = SyncAction.CONFLICT_RESOLUTION
        started = time.monotonic()
        result = SyncResult()
        phase = "fetch device registry"
        try:
            self._remote.fetch_device_registry()

            if choice is ConflictResolution.USE_THIS_DEVICE:
                phase = "upload"
                self._queue.queue_all_records(store)
                report = self._remote.upload_pending_records(self._queue, store)
                result.uploaded = report.uploaded_count
                result.failed = report.failed_count
            else:
                phase = "download"
                self._queue.clear_queue()
                result.downloaded = self._remote.download_all(store)

            phase = "device registration"
            self._register_this_device()
        except Exception as e:
            return self._fail(action, result, phase, e, started)

        logger.info("Conflict resolved with %s", choice.value)
        return self._succeed(action, result, started)

    # === History ===

    def _record(self, entry: SyncHistoryEntry) -> None:
        if self._history is not None:
            self._history.record(entry)

    def _record_result(self, action: SyncAction, result: SyncResult, outcome: SyncOutcome) -> None:
        if result.conflict is not None:
            details = f"Conflict with {result.conflict.remote_device_name}"
        elif result.error is not None:
            details = "Sync failed"
        else:
            details = result.message
        self._record(
            SyncHistoryEntry(
                action=action,
                status=outcome,
                details=details,
                records_uploaded=result.uploaded,
                records_downloaded=result.downloaded,
                duration_ms=int(result.duration * 1000),
                error_message=result.error,
            )
        )

    def close(self, wait: bool = True) -> None:
        """Stop the worker thread and any pending status timer."""
        with self._status_lock:
            self._cancel_revert()
        self._executor.shutdown(wait=wait)
