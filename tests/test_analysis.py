"""Tests for the text-analysis client."""
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
import requests

from veriattend.attendance.analysis import AttendanceAnalyzer, flatten_attendance
from veriattend.attendance.errors import AnalysisFailed
from veriattend.attendance.models import AttendanceStatus, HistoryAttendee, MemberRole


def _attendee(name, exit_time=None, status=AttendanceStatus.ON_TIME):
    return HistoryAttendee(
        member_id=name.lower(),
        name=name,
        matric_number=None,
        role=MemberRole.STUDENT,
        arrival_time=datetime(2024, 7, 21, 9, 3),
        status=status,
        exit_time=exit_time,
    )


def _response(payload):
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


def test_flatten_attendance_lines():
    data = flatten_attendance([
        _attendee("Ada", exit_time=datetime(2024, 7, 21, 10, 0)),
        _attendee("Ben", status=AttendanceStatus.LATE),
    ])
    assert data.splitlines() == [
        "Ada, 2024-07-21 09:03:00, On-time, 2024-07-21 10:00:00",
        "Ben, 2024-07-21 09:03:00, Late",
    ]


def test_analyze_posts_query_and_data():
    analyzer = AttendanceAnalyzer(api_url="http://analysis.local/analyze", api_key="k", timeout=5)
    with patch.object(analyzer.session, "post", return_value=_response({"analysis": "Ben was late."})) as post:
        assert analyzer.analyze("Who was late?", "Ben, 09:20, Late") == "Ben was late."

    post.assert_called_once_with(
        "http://analysis.local/analyze",
        json={"query": "Who was late?", "attendanceData": "Ben, 09:20, Late"},
        timeout=5,
    )
    assert analyzer.session.headers["Authorization"] == "Bearer k"


@pytest.mark.parametrize("query,data", [("", "Ada, 09:00, On-time"), ("Who?", "  ")])
def test_empty_input_is_rejected_without_a_request(query, data):
    analyzer = AttendanceAnalyzer(api_url="http://analysis.local/analyze")
    with patch.object(analyzer.session, "post") as post:
        with pytest.raises(AnalysisFailed):
            analyzer.analyze(query, data)
    post.assert_not_called()


@pytest.mark.parametrize("side_effect,payload", [
    (requests.ConnectionError("refused"), None),
    (None, {"unexpected": "shape"}),
    (None, {"analysis": 42}),
])
def test_service_failures_use_fixed_message(side_effect, payload):
    analyzer = AttendanceAnalyzer(api_url="http://analysis.local/analyze")
    post = MagicMock(side_effect=side_effect, return_value=_response(payload))
    with patch.object(analyzer.session, "post", post):
        with pytest.raises(AnalysisFailed) as excinfo:
            analyzer.analyze("Who was late?", "Ada, 09:00, On-time")

    assert excinfo.value.message == "Could not perform analysis. Please try again."
    assert post.call_count == 1
