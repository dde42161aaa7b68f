"""Client for the external attendance text-analysis service."""
from typing import Iterable, Union

import requests

from veriattend.attendance.errors import AnalysisFailed
from veriattend.attendance.models import Attendee, HistoryAttendee
from veriattend.utils.config import config
from veriattend.utils.logger import logger

TIME_FORMAT = '%Y-%m-%d %H:%M:%S'


def flatten_attendance(attendees: Iterable[Union[Attendee, HistoryAttendee]]) -> str:
    """One line per attendee: ``name, arrival, status[, exit]``."""
    lines = []
    for attendee in attendees:
        parts = [
            attendee.name,
            attendee.arrival_time.strftime(TIME_FORMAT),
            attendee.status.value,
        ]
        if attendee.exit_time:
            parts.append(attendee.exit_time.strftime(TIME_FORMAT))
        lines.append(", ".join(parts))
    return "\n".join(lines)


class AttendanceAnalyzer:
    """Sends flattened attendance data and a question to the analysis endpoint."""

    def __init__(self, api_url: str = None, api_key: str = None, timeout: float = None):
        self.api_url = api_url or config.analysis.api_url
        self.api_key = api_key if api_key is not None else config.analysis.api_key
        self.timeout = timeout or config.analysis.timeout_seconds
        self.session = requests.Session()
        if self.api_key:
            self.session.headers['Authorization'] = f"Bearer {self.api_key}"

    def analyze(self, query: str, attendance_data: str) -> str:
        """
        Ask one question about the attendance data.

        Raises:
            AnalysisFailed: empty input, transport error or malformed response
        """
        if not query or not query.strip():
            raise AnalysisFailed("Please enter a question to analyze.")
        if not attendance_data or not attendance_data.strip():
            raise AnalysisFailed("No attendance data to analyze.")

        try:
            response = self.session.post(
                self.api_url,
                json={"query": query, "attendanceData": attendance_data},
                timeout=self.timeout,
            )
            response.raise_for_status()
            analysis = response.json()["analysis"]
        except (requests.RequestException, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error analyzing attendance data: {e}")
            raise AnalysisFailed()

        if not isinstance(analysis, str):
            logger.error(f"Analysis service returned {type(analysis).__name__}, expected text")
            raise AnalysisFailed()
        return analysis

    def close(self):
        self.session.close()
