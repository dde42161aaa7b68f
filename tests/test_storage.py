"""Tests for the key-value stores and the attendance repository."""
import json
from datetime import datetime, time

import pytest

from conftest import FailingStore
from veriattend.attendance.errors import PersistenceWriteFailure
from veriattend.attendance.models import Session, SessionState
from veriattend.attendance.storage import (
    CURRENT_SESSION_KEY, AttendanceRepository, JsonFileStore, MemoryStore
)


def test_json_file_store_round_trip(tmp_path):
    store = JsonFileStore(str(tmp_path), prefix="va_")
    assert store.get("members") is None

    store.set("members", json.dumps([{"id": "x"}]))
    assert (tmp_path / "va_members.json").exists()
    assert json.loads(store.get("members")) == [{"id": "x"}]

    store.delete("members")
    store.delete("members")
    assert store.get("members") is None
    assert list(tmp_path.glob("*.tmp")) == []


def test_current_session_persisted_and_cleared(clock):
    repository = AttendanceRepository(MemoryStore())
    session = Session(id="s1", start_time=clock(), state=SessionState.EXIT_ACTIVE)

    repository.save_current_session(session)
    restored = repository.load_current_session()
    assert restored.id == "s1"
    assert restored.state == SessionState.EXIT_ACTIVE

    repository.save_current_session(None)
    assert repository.load_current_session() is None


def test_malformed_current_session_is_ignored():
    repository = AttendanceRepository(MemoryStore({CURRENT_SESSION_KEY: json.dumps({"id": "s1"})}))
    assert repository.load_current_session() is None


def test_legacy_current_session_is_restored():
    stored = {
        "id": "1721552400000",
        "isActive": True,
        "startTime": 1721552400000,
        "mode": "exit",
        "attendees": [{"id": "m1", "name": "Ada Obi", "memberType": "student",
                       "time": "09:20 AM", "status": "Late"}],
    }
    repository = AttendanceRepository(MemoryStore({CURRENT_SESSION_KEY: json.dumps(stored)}))

    restored = repository.load_current_session()
    assert restored.state == SessionState.EXIT_ACTIVE
    assert restored.start_time == datetime.fromtimestamp(1721552400)
    assert restored.attendees[0].member_id == "m1"
    assert restored.attendees[0].arrival_time == datetime.combine(restored.start_time.date(), time(9, 20))


def test_logged_in_user_round_trip():
    repository = AttendanceRepository(MemoryStore())
    assert repository.load_logged_in_user_id() is None
    repository.save_logged_in_user_id("m1")
    assert repository.load_logged_in_user_id() == "m1"
    repository.save_logged_in_user_id(None)
    assert repository.load_logged_in_user_id() is None


def test_write_failures_raise_persistence_error():
    repository = AttendanceRepository(FailingStore())
    with pytest.raises(PersistenceWriteFailure):
        repository.save_history_records([])
    with pytest.raises(PersistenceWriteFailure):
        repository.save_current_session(None)
