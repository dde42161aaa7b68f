"""
Attendance report export.

Joins a closed session against the member registry so every non-admin member
appears exactly once, present or absent.
"""
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Union

import pandas as pd

from veriattend.attendance.models import HistorySession, Member
from veriattend.utils.logger import logger

REPORT_COLUMNS = [
    'Name', 'Matric Number', 'Member Type', 'Status', 'Arrival Time', 'Exit Time', 'Remark'
]

TIME_FORMAT = '%Y-%m-%d %H:%M:%S'


def _format_time(value: Optional[datetime]) -> str:
    return value.strftime(TIME_FORMAT) if value else ''


def build_session_report(session: HistorySession, members: Iterable[Member]) -> pd.DataFrame:
    """One row per registered non-admin member, in registration order."""
    rows = []
    for member in members:
        if member.is_admin:
            continue

        attendee = session.find_attendee(member.id)
        rows.append({
            'Name': member.name,
            'Matric Number': member.matric_number or '',
            'Member Type': member.role.value,
            'Status': 'Present' if attendee else 'Absent',
            'Arrival Time': _format_time(attendee.arrival_time) if attendee else '',
            'Exit Time': _format_time(attendee.exit_time) if attendee else '',
            'Remark': attendee.status.value if attendee else '',
        })

    return pd.DataFrame(rows, columns=REPORT_COLUMNS)


def _summary_frame(session: HistorySession, report: pd.DataFrame) -> pd.DataFrame:
    present = int((report['Status'] == 'Present').sum()) if not report.empty else 0
    late = int((report['Remark'] == 'Late').sum()) if not report.empty else 0
    summary_stats = {
        'Session ID': session.id,
        'Start Time': _format_time(session.start_time),
        'End Time': _format_time(session.end_time),
        'Registered Members': len(report),
        'Present': present,
        'Absent': len(report) - present,
        'Late': late,
        'Report Generated': datetime.now().strftime(TIME_FORMAT),
    }
    return pd.DataFrame(list(summary_stats.items()), columns=['Metric', 'Value'])


def export_session_report(session: HistorySession, members: Iterable[Member],
                          output_path: Union[str, Path]) -> Path:
    """
    Write the session report to ``.xlsx`` (Attendance and Summary sheets) or ``.csv``.

    Returns:
        The written path

    Raises:
        ValueError: unsupported file extension
    """
    output_path = Path(output_path)
    suffix = output_path.suffix.lower()
    if suffix not in ('.xlsx', '.csv'):
        raise ValueError(f"Unsupported export format: {output_path.suffix or '(none)'}")

    report = build_session_report(session, members)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    if suffix == '.csv':
        report.to_csv(output_path, index=False)
    else:
        with pd.ExcelWriter(output_path, engine='openpyxl') as writer:
            report.to_excel(writer, sheet_name='Attendance', index=False)
            _summary_frame(session, report).to_excel(writer, sheet_name='Summary', index=False)

    logger.info(f"Attendance report exported: {output_path} ({len(report)} members)")
    return output_path
