"""Tests for the sync history log."""

from __future__ import annotations

import json
import sqlite3
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from recordsync.client.history import SyncAction, SyncHistory, SyncHistoryEntry, SyncOutcome
from recordsync.client.state import LocalState

T0 = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def _entry(status: SyncOutcome, minutes: int = 0, **kwargs) -> SyncHistoryEntry:
    return SyncHistoryEntry(
        action=SyncAction.FULL_SYNC,
        status=status,
        timestamp=T0 + timedelta(minutes=minutes),
        **kwargs,
    )


class TestSyncHistory:
    """Tests for SyncHistory."""

    def test_newest_first(self, history: SyncHistory) -> None:
        history.record(_entry(SyncOutcome.SUCCESS, minutes=0, details="first"))
        history.record(_entry(SyncOutcome.FAILED, minutes=5, details="second"))

        assert [e.details for e in history.entries] == ["second", "first"]
        assert history.last_sync is not None
        assert history.last_sync.details == "second"

    def test_last_successful_skips_failures(self, history: SyncHistory) -> None:
        history.record(_entry(SyncOutcome.PARTIAL_SUCCESS, minutes=0, details="ok"))
        history.record(_entry(SyncOutcome.FAILED, minutes=1))
        history.record(_entry(SyncOutcome.SKIPPED, minutes=2))

        last = history.last_successful_sync
        assert last is not None
        assert last.details == "ok"

    def test_empty(self, history: SyncHistory) -> None:
        assert history.entries == []
        assert history.last_sync is None
        assert history.last_successful_sync is None

    def test_bounded(self, state: LocalState) -> None:
        history = SyncHistory(state, max_entries=3)
        for minute in range(5):
            history.record(_entry(SyncOutcome.SUCCESS, minutes=minute, details=str(minute)))

        assert [e.details for e in history.entries] == ["4", "3", "2"]

    def test_entries_matching(self, history: SyncHistory) -> None:
        history.record(_entry(SyncOutcome.SUCCESS, minutes=0))
        history.record(_entry(SyncOutcome.CONFLICT, minutes=1))

        matching = history.entries_matching(SyncOutcome.CONFLICT)

        assert len(matching) == 1
        assert matching[0].status is SyncOutcome.CONFLICT

    def test_survives_restart(self, tmp_path) -> None:
        db_path = tmp_path / "history.db"
        state = LocalState(db_path)
        SyncHistory(state).record(_entry(SyncOutcome.SUCCESS, records_uploaded=3))
        state.close()

        reopened = LocalState(db_path)
        try:
            entries = SyncHistory(reopened).entries
        finally:
            reopened.close()

        assert len(entries) == 1
        assert entries[0].records_uploaded == 3

    def test_export_json(self, history: SyncHistory) -> None:
        history.record(
            _entry(SyncOutcome.FAILED, records_downloaded=2, duration_ms=150, error_message="boom")
        )

        exported = json.loads(history.export_json())

        assert exported == [
            {
                "id": exported[0]["id"],
                "timestamp": "2024-06-01T12:00:00.000Z",
                "action": "full_sync",
                "status": "failed",
                "details": "",
                "recordsUploaded": 0,
                "recordsDownloaded": 2,
                "durationMs": 150,
                "errorMessage": "boom",
            }
        ]

    def test_clear(self, history: SyncHistory) -> None:
        history.record(_entry(SyncOutcome.SUCCESS))
        history.clear()
        assert history.entries == []

    def test_storage_failure_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        state = MagicMock()
        state.add_history.side_effect = sqlite3.OperationalError("disk full")
        history = SyncHistory(state)

        history.record(_entry(SyncOutcome.SUCCESS))

        assert "Failed to record sync history" in caplog.text

    def test_unreadable_rows_skipped(self, state: LocalState, history: SyncHistory) -> None:
        history.record(_entry(SyncOutcome.SUCCESS, minutes=1))
        state.add_history("bad", "2024-06-01T11:00:00.000Z", '{"action": "nope"}', keep=100)

        assert len(history.entries) == 1


class TestSyncHistoryEntry:
    """Tests for SyncHistoryEntry."""

    def test_dict_round_trip(self) -> None:
        entry = _entry(SyncOutcome.PARTIAL_SUCCESS, records_uploaded=4, details="Synced 0↓ 4↑")
        assert SyncHistoryEntry.from_dict(entry.to_dict()) == entry

    def test_unknown_status_rejected(self) -> None:
        with pytest.raises(ValueError):
            SyncHistoryEntry.from_dict({"action": "full_sync", "status": "exploded"})
