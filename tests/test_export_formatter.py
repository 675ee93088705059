import csv
import io
import json

import pandas as pd
import pytest

from campus_events.modules.exceptions import NoConfirmedAttendees, UnsupportedExportFormat
from campus_events.modules.models import ArchivedEvent

from conftest import NOW


def roster_rows(content):
    """Rows of the CSV table that follows the header block."""
    _, table = content.split('\n\n', 1)
    return list(csv.reader(io.StringIO(table)))


@pytest.fixture
def event(make_event, make_attendee):
    return make_event(
        title='Robotics Demo Day',
        date='2025-03-09',
        location='Engineering Hall 101',
        attendees=[
            make_attendee('stu1', attended=True),
            make_attendee('stu2', attended=True, student_id=None),
            make_attendee('stu3')
        ]
    )


class TestExportAttendees:
    def test_no_confirmed_attendees(self, exporter, make_event, make_attendee):
        event = make_event(attendees=[make_attendee('stu1'), make_attendee('stu2')])
        with pytest.raises(NoConfirmedAttendees):
            exporter.export_attendees(event, 'csv')

    def test_unsupported_format(self, exporter, event):
        with pytest.raises(UnsupportedExportFormat):
            exporter.export_attendees(event, 'pdf')

    def test_csv_has_header_block_and_one_row_per_confirmed_attendee(self, exporter, event):
        """The CSV roster lists attended attendees only.

        Given an event with two attended and one unattended attendee
        When it is exported as CSV
        Then the header block is followed by the column row and exactly two data rows
        """
        content = exporter.export_attendees(event, 'csv')

        assert content.startswith(
            'Event: Robotics Demo Day\n'
            'Date: 2025-03-09\n'
            'Location: Engineering Hall 101\n'
            'Total Confirmed Attendees: 2\n'
            '\n'
        )
        rows = roster_rows(content)
        assert rows[0] == ['Name', 'Email', 'Student ID', 'Registration Date', 'Attendance Date', 'QR Code']
        assert len(rows) == 3
        assert rows[1][:3] == ['User stu1', 'stu1@campus.edu', 'S-stu1']
        assert rows[1][3] == '2025-03-10 12:00:00'
        assert rows[1][4] == '2025-03-10 13:00:00'

    def test_csv_missing_values_render_na(self, exporter, event):
        rows = roster_rows(exporter.export_attendees(event, 'csv'))
        assert rows[2][2] == 'N/A'

    def test_csv_quotes_embedded_commas_and_quotes(self, exporter, make_event, make_attendee):
        event = make_event(attendees=[make_attendee('stu1', attended=True, user_name='Doe, "JD" Jane')])

        content = exporter.export_attendees(event, 'csv')

        assert '"Doe, ""JD"" Jane"' in content
        assert roster_rows(content)[1][0] == 'Doe, "JD" Jane'

    def test_json_summary(self, exporter, event):
        content = exporter.export_attendees(event, 'json')
        data = json.loads(content)

        assert content.startswith('{\n  "event": {')
        assert data['event']['title'] == 'Robotics Demo Day'
        assert data['event']['exportedAt'] == NOW.isoformat()
        assert data['summary'] == {
            'totalConfirmedAttendees': 2,
            'totalRegistered': 3,
            'attendanceRate': '66.67%'
        }
        assert [a['name'] for a in data['confirmedAttendees']] == ['User stu1', 'User stu2']
        assert data['confirmedAttendees'][1]['studentId'] is None

    def test_xlsx_workbook(self, exporter, event):
        content = exporter.export_attendees(event, 'xlsx')

        assert content[:2] == b'PK'
        attendees = pd.read_excel(io.BytesIO(content), sheet_name='Attendees')
        summary = pd.read_excel(io.BytesIO(content), sheet_name='Summary')
        assert list(attendees['Name']) == ['User stu1', 'User stu2']
        assert 'Attendance Rate' in list(summary['Field'])

    def test_archived_event_roster(self, exporter, event):
        archived = ArchivedEvent.from_event(event, '2025-03-10T00:00:00')

        data = json.loads(exporter.export_attendees(archived, 'json'))

        assert data['event']['archivedAt'] == '2025-03-10T00:00:00'
        assert data['summary']['totalRegistered'] == 3


class TestFilenames:
    def test_export_filename(self, exporter):
        assert exporter.generate_export_filename('Tech Talk: AI & You!', 'csv') == \
            'tech_talk__ai___you__attendees_2025-03-10.csv'

    def test_export_file(self, exporter, event):
        export = exporter.export_file(event, 'json')
        assert export.filename == 'robotics_demo_day_attendees_2025-03-10.json'
        assert export.mimetype == 'application/json'


class TestArchiveSummary:
    @pytest.fixture
    def archived(self, event, make_event):
        return [
            ArchivedEvent.from_event(event, '2025-03-10T00:00:00'),
            ArchivedEvent.from_event(make_event(title='Empty Talk'), '2025-03-10T00:00:00')
        ]

    def test_csv_summary(self, exporter, archived):
        content = exporter.export_archived_events(archived, 'csv')

        assert content.startswith('Events Summary Report\n')
        assert 'Total Expired Events: 2\n' in content
        assert 'Event 1: Robotics Demo Day\n' in content
        assert 'Event 2: Empty Talk\n' in content
        assert 'Confirmed Attendees: 0\n' in content
        assert '"Name","Email","Student ID","Attendance Date"' in content

    def test_json_summary(self, exporter, archived):
        data = json.loads(exporter.export_archived_events(archived, 'json'))

        assert data['summary']['totalExpiredEvents'] == 2
        assert data['summary']['totalConfirmedAttendees'] == 2
        assert [len(e['confirmedAttendees']) for e in data['events']] == [2, 0]

    def test_xlsx_summary(self, exporter, archived):
        content = exporter.export_archived_events(archived, 'xlsx')
        events = pd.read_excel(io.BytesIO(content), sheet_name='Events')
        assert list(events['Event']) == ['Robotics Demo Day', 'Empty Talk']
