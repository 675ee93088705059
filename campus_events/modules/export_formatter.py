"""
Export Formatter Module - Campus Events

This module renders confirmed attendee rosters for download.

Features:
- CSV roster with event header block
- JSON roster with attendance summary
- Excel roster (attendees and summary sheets)
- Multi-event archive summary report
- Export filename convention
"""

import csv
import io
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import pandas as pd

from campus_events.modules.exceptions import NoConfirmedAttendees, UnsupportedExportFormat
from campus_events.modules.models import ArchivedEvent, Attendee, Event, format_attendance_rate

MISSING = 'N/A'

ROSTER_COLUMNS = ['Name', 'Email', 'Student ID', 'Registration Date', 'Attendance Date', 'QR Code']
SUMMARY_COLUMNS = ['Name', 'Email', 'Student ID', 'Attendance Date']

MIMETYPES = {
    'csv': 'text/csv',
    'json': 'application/json',
    'xlsx': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
}
EXPORT_FORMATS = tuple(MIMETYPES)


@dataclass
class ExportFile:
    """Rendered export ready to be sent as a download."""
    filename: str
    content: Union[str, bytes]
    mimetype: str


def _format_date(value: Optional[str]) -> str:
    if not value:
        return MISSING
    try:
        return datetime.fromisoformat(value).strftime('%Y-%m-%d %H:%M:%S')
    except ValueError:
        return value


def _or_missing(value: Any) -> str:
    return str(value) if value else MISSING


class ExportFormatter:
    """
    Attendee roster and archive report exporter.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Single event roster
    # ------------------------------------------------------------------

    def export_attendees(self, source: Union[Event, ArchivedEvent], format: str = 'csv') -> Union[str, bytes]:
        """
        Render the confirmed attendees of an event or archived event.

        Args:
            source (Event | ArchivedEvent): Event to export
            format (str): ``csv``, ``json`` or ``xlsx``

        Returns:
            str | bytes: Rendered export; bytes for ``xlsx``

        Raises:
            UnsupportedExportFormat: Unknown format
            NoConfirmedAttendees: Nobody attended
        """
        if format not in MIMETYPES:
            raise UnsupportedExportFormat(f"Unsupported export format: {format}")

        event, confirmed, total = self._roster_source(source)
        if not confirmed:
            raise NoConfirmedAttendees()

        if format == 'csv':
            content = self._roster_csv(event, confirmed)
        elif format == 'json':
            content = self._roster_json(source, event, confirmed, total)
        else:
            content = self._roster_xlsx(event, confirmed, total)

        self.logger.info(f"Exported {len(confirmed)} attendees of event {event.id} as {format}")
        return content

    def export_file(self, source: Union[Event, ArchivedEvent], format: str = 'csv') -> ExportFile:
        content = self.export_attendees(source, format)
        title = source.event.title if isinstance(source, ArchivedEvent) else source.title
        return ExportFile(
            filename=self.generate_export_filename(title, format),
            content=content,
            mimetype=MIMETYPES[format]
        )

    def generate_export_filename(self, title: str, format: str, today: Optional[datetime] = None) -> str:
        slug = re.sub(r'[^a-zA-Z0-9]', '_', title).lower()
        date = (today or self.clock()).strftime('%Y-%m-%d')
        return f"{slug}_attendees_{date}.{format}"

    def _roster_source(self, source: Union[Event, ArchivedEvent]) -> Tuple[Event, List[Attendee], int]:
        if isinstance(source, ArchivedEvent):
            return source.event, source.confirmed_attendees, source.total_registered
        return source, source.confirmed_attendees, len(source.attendees)

    def _roster_frame(self, attendees: List[Attendee]) -> pd.DataFrame:
        rows = [[
            _or_missing(a.user_name),
            _or_missing(a.user_email),
            _or_missing(a.student_id),
            _format_date(a.registered_at),
            _format_date(a.attended_at),
            _or_missing(a.qr_code)
        ] for a in attendees]
        return pd.DataFrame(rows, columns=ROSTER_COLUMNS)

    def _roster_csv(self, event: Event, attendees: List[Attendee]) -> str:
        buffer = io.StringIO()
        buffer.write(f"Event: {event.title}\n")
        buffer.write(f"Date: {event.date}\n")
        buffer.write(f"Location: {event.location}\n")
        buffer.write(f"Total Confirmed Attendees: {len(attendees)}\n")
        buffer.write("\n")

        self._roster_frame(attendees).to_csv(
            buffer, index=False, quoting=csv.QUOTE_ALL, lineterminator='\n'
        )
        return buffer.getvalue()

    def _roster_json(self, source: Union[Event, ArchivedEvent], event: Event,
                     attendees: List[Attendee], total: int) -> str:
        event_data = {
            'id': event.id,
            'title': event.title,
            'description': event.description,
            'date': event.date,
            'startTime': event.start_time,
            'endTime': event.end_time,
            'location': event.location,
            'category': event.category,
            'organizer': event.organizer,
            'exportedAt': self.clock().isoformat()
        }
        if isinstance(source, ArchivedEvent):
            event_data['archivedAt'] = source.archived_at

        export_data = {
            'event': event_data,
            'summary': {
                'totalConfirmedAttendees': len(attendees),
                'totalRegistered': total,
                'attendanceRate': f"{format_attendance_rate(len(attendees), total)}%"
            },
            'confirmedAttendees': [{
                'name': a.user_name,
                'email': a.user_email,
                'studentId': a.student_id,
                'registrationDate': a.registered_at,
                'attendanceDate': a.attended_at,
                'qrCode': a.qr_code
            } for a in attendees]
        }
        return json.dumps(export_data, indent=2)

    def _roster_xlsx(self, event: Event, attendees: List[Attendee], total: int) -> bytes:
        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
            self._roster_frame(attendees).to_excel(writer, sheet_name='Attendees', index=False)

            summary = pd.DataFrame([
                {'Field': 'Event', 'Value': event.title},
                {'Field': 'Date', 'Value': event.date},
                {'Field': 'Location', 'Value': event.location},
                {'Field': 'Total Confirmed Attendees', 'Value': len(attendees)},
                {'Field': 'Total Registered', 'Value': total},
                {'Field': 'Attendance Rate', 'Value': f"{format_attendance_rate(len(attendees), total)}%"}
            ])
            summary.to_excel(writer, sheet_name='Summary', index=False)
        return buffer.getvalue()

    # ------------------------------------------------------------------
    # Archive summary report
    # ------------------------------------------------------------------

    def export_archived_events(self, archived: List[ArchivedEvent], format: str = 'csv') -> Union[str, bytes]:
        """
        Render a summary report over several archived events.

        Args:
            archived (List[ArchivedEvent]): Archived events
            format (str): ``csv``, ``json`` or ``xlsx``

        Returns:
            str | bytes: Rendered report
        """
        if format not in MIMETYPES:
            raise UnsupportedExportFormat(f"Unsupported export format: {format}")

        now = self.clock()
        total_confirmed = sum(len(item.confirmed_attendees) for item in archived)

        if format == 'csv':
            content = self._summary_csv(archived, now)
        elif format == 'json':
            content = json.dumps({
                'summary': {
                    'generatedAt': now.isoformat(),
                    'totalExpiredEvents': len(archived),
                    'totalConfirmedAttendees': total_confirmed
                },
                'events': [{
                    'id': item.id,
                    'title': item.event.title,
                    'date': item.event.date,
                    'location': item.event.location,
                    'archivedAt': item.archived_at,
                    'totalRegistered': item.total_registered,
                    'attendanceRate': item.attendance_rate,
                    'confirmedAttendees': [a.to_dict() for a in item.confirmed_attendees]
                } for item in archived]
            }, indent=2)
        else:
            content = self._summary_xlsx(archived)

        self.logger.info(f"Exported summary of {len(archived)} archived events as {format}")
        return content

    def _summary_csv(self, archived: List[ArchivedEvent], now: datetime) -> str:
        buffer = io.StringIO()
        buffer.write("Events Summary Report\n")
        buffer.write(f"Generated: {now.strftime('%Y-%m-%d %H:%M:%S')}\n")
        buffer.write(f"Total Expired Events: {len(archived)}\n\n")

        for index, item in enumerate(archived, start=1):
            buffer.write(f"Event {index}: {item.event.title}\n")
            buffer.write(f"Date: {item.event.date}, Location: {item.event.location}\n")
            buffer.write(f"Confirmed Attendees: {len(item.confirmed_attendees)}\n\n")

            if item.confirmed_attendees:
                frame = self._roster_frame(item.confirmed_attendees)[SUMMARY_COLUMNS]
                frame.to_csv(buffer, index=False, quoting=csv.QUOTE_ALL, lineterminator='\n')
            buffer.write("\n")

        return buffer.getvalue()

    def _summary_xlsx(self, archived: List[ArchivedEvent]) -> bytes:
        events = pd.DataFrame([{
            'Event': item.event.title,
            'Date': item.event.date,
            'Location': item.event.location,
            'Archived At': _format_date(item.archived_at),
            'Total Registered': item.total_registered,
            'Confirmed Attendees': len(item.confirmed_attendees),
            'Attendance Rate': f"{item.attendance_rate}%"
        } for item in archived], columns=['Event', 'Date', 'Location', 'Archived At',
                                          'Total Registered', 'Confirmed Attendees', 'Attendance Rate'])

        frames = []
        for item in archived:
            if item.confirmed_attendees:
                frame = self._roster_frame(item.confirmed_attendees)
                frame.insert(0, 'Event', item.event.title)
                frames.append(frame)
        attendees = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame(columns=['Event'] + ROSTER_COLUMNS)

        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
            events.to_excel(writer, sheet_name='Events', index=False)
            attendees.to_excel(writer, sheet_name='Attendees', index=False)
        return buffer.getvalue()

    def archive_filename(self, format: str, today: Optional[datetime] = None) -> str:
        date = (today or self.clock()).strftime('%Y-%m-%d')
        return f"archived_events_summary_{date}.{format}"

