"""Tests for the live session state machine."""
import pytest

from veriattend.attendance.errors import SessionAlreadyActive
from veriattend.attendance.models import AttendanceStatus, SessionState
from veriattend.attendance.session import SessionStateMachine


def test_arrival_scenario_dedupes_and_marks_late(machine, history, clock, students):
    machine.start_session()

    clock.set_offset(minutes=1)
    first = machine.resolve_arrival(students.ada.id)
    assert first.status == AttendanceStatus.ON_TIME

    clock.set_offset(minutes=20)
    assert machine.resolve_arrival(students.ada.id) is None
    live = machine.snapshot()
    assert len(live.attendees) == 1
    assert live.attendees[0].status == AttendanceStatus.ON_TIME
    assert live.attendees[0].arrival_time == first.arrival_time

    clock.set_offset(minutes=16)
    assert machine.resolve_arrival(students.ben.id).status == AttendanceStatus.LATE

    archived = machine.end_session()
    assert len(history) == 1
    assert history.latest() is archived
    statuses = {a.member_id: a.status for a in archived.attendees}
    assert statuses == {
        students.ada.id: AttendanceStatus.ON_TIME,
        students.ben.id: AttendanceStatus.LATE,
    }


def test_exactly_fifteen_minutes_is_on_time(machine, clock, students):
    machine.start_session()
    clock.set_offset(minutes=15)
    assert machine.resolve_arrival(students.ada.id).status == AttendanceStatus.ON_TIME

    clock.set_offset(minutes=15, microseconds=1)
    assert machine.resolve_arrival(students.ben.id).status == AttendanceStatus.LATE


def test_attendees_are_most_recent_first(machine, clock, students):
    machine.start_session()
    machine.resolve_arrival(students.ada.id)
    clock.advance(minutes=1)
    machine.resolve_arrival(students.ben.id)

    assert [a.member_id for a in machine.snapshot().attendees] == [students.ben.id, students.ada.id]


def test_start_exit_scan_without_session_is_noop(machine, history):
    assert machine.start_exit_scan() is False
    assert machine.state == SessionState.INACTIVE
    assert machine.snapshot() is None
    assert len(history) == 0


def test_end_session_without_session_appends_nothing(machine, history):
    assert machine.end_session() is None
    assert len(history) == 0


def test_only_one_live_session(machine):
    machine.start_session()
    with pytest.raises(SessionAlreadyActive):
        machine.start_session()


def test_unknown_member_is_ignored(machine):
    machine.start_session()
    assert machine.resolve_arrival("nobody") is None
    assert machine.snapshot().attendees == []


def test_arrivals_ignored_outside_entry_scan(machine, students):
    assert machine.resolve_arrival(students.ada.id) is None

    machine.start_session()
    machine.start_exit_scan()
    assert machine.resolve_arrival(students.ada.id) is None


def test_exit_rules(machine, clock, students):
    machine.start_session()
    machine.resolve_arrival(students.ada.id)

    # Exit detections during entry scan do nothing
    assert machine.resolve_exit(students.ada.id) is None

    assert machine.start_exit_scan() is True
    assert machine.state == SessionState.EXIT_ACTIVE
    assert machine.start_exit_scan() is False

    clock.set_offset(minutes=50)
    exited = machine.resolve_exit(students.ada.id)
    assert exited.exit_time == clock.now

    # First exit time stands
    clock.set_offset(minutes=55)
    assert machine.resolve_exit(students.ada.id) is None
    assert machine.snapshot().find_attendee(students.ada.id).exit_time == exited.exit_time

    # Members who never arrived cannot exit
    assert machine.resolve_exit(students.ben.id) is None
    assert machine.snapshot().find_attendee(students.ben.id) is None


def test_end_session_archives_and_resets(machine, history, clock, students):
    started = machine.start_session()
    machine.resolve_arrival(students.ada.id)
    clock.set_offset(hours=1)

    archived = machine.end_session()
    assert archived.id == started.id
    assert archived.state == SessionState.CLOSED
    assert archived.end_time == clock.now
    assert machine.state == SessionState.INACTIVE

    second = machine.start_session()
    assert second.id != started.id


def test_snapshot_is_a_copy(machine, students):
    machine.start_session()
    machine.resolve_arrival(students.ada.id)

    snapshot = machine.snapshot()
    snapshot.attendees.clear()
    assert len(machine.snapshot().attendees) == 1


def test_abort_session_leaves_no_history(machine, history):
    machine.start_session()
    assert machine.abort_session() is True
    assert machine.state == SessionState.INACTIVE
    assert len(history) == 0
    assert machine.abort_session() is False


def test_restore_resumes_live_session(machine, registry, history, clock, students):
    machine.start_session()
    machine.resolve_arrival(students.ada.id)
    persisted = machine.snapshot()

    restarted = SessionStateMachine(registry, history, clock=clock)
    restarted.restore(persisted)
    assert restarted.state == SessionState.ENTRY_ACTIVE
    assert restarted.resolve_arrival(students.ada.id) is None
    assert restarted.resolve_arrival(students.ben.id) is not None
