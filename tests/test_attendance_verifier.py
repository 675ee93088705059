import threading

import pytest

from campus_events.modules.attendance_verifier import ScanSession
from campus_events.modules.exceptions import (
    AlreadyAttended, AttendeeNotFound, EventNotFound, InvalidTokenFormat, PermissionDenied
)


@pytest.fixture
def registered(registration, saved_event, student):
    attendee, event = registration.register(saved_event, student)
    return attendee, event


class FakeDecoder:
    """Decodes frames that are strings starting with ``ATTEND-``."""

    def __init__(self, failing_frames=()):
        self.failing_frames = set(failing_frames)
        self.calls = 0

    def decode(self, frame):
        self.calls += 1
        if frame in self.failing_frames:
            raise RuntimeError('blurry frame')
        if isinstance(frame, str) and frame.startswith('ATTEND-'):
            return frame
        return None


class TestMarkAttendance:
    def test_marks_attendee(self, verifier, registered, store, clock):
        attendee, event = registered
        clock.advance(days=10)

        marked, updated = verifier.mark_attendance(attendee.qr_code)

        assert marked.attended is True
        assert marked.attended_at == clock().isoformat()
        assert updated.id == event.id
        assert store.get_event(event.id).find_attendee(attendee.user_id).attended is True

    def test_second_scan_fails_and_keeps_first_timestamp(self, verifier, registered, store, clock):
        """A token can be used once.

        Given a token that was already scanned
        When it is scanned again later
        Then AlreadyAttended is raised and attended_at is unchanged
        """
        attendee, event = registered
        first, _ = verifier.mark_attendance(attendee.qr_code)
        clock.advance(minutes=30)

        with pytest.raises(AlreadyAttended):
            verifier.mark_attendance(attendee.qr_code)

        assert store.get_event(event.id).find_attendee(attendee.user_id).attended_at == first.attended_at

    @pytest.mark.parametrize("token", ["not-a-token", "ATTEND-", "ATTEND-evt-user", "", None])
    def test_invalid_format(self, verifier, token):
        with pytest.raises(InvalidTokenFormat):
            verifier.mark_attendance(token)

    def test_unknown_event(self, verifier):
        with pytest.raises(EventNotFound):
            verifier.mark_attendance('ATTEND-doesnotexist-stu1-1741600000000')

    def test_token_must_match_verbatim(self, verifier, registered):
        attendee, event = registered
        forged = f"ATTEND-{event.id}-{attendee.user_id}-1"

        with pytest.raises(AttendeeNotFound):
            verifier.mark_attendance(forged)

    def test_unregistered_user(self, verifier, registered):
        _, event = registered
        with pytest.raises(AttendeeNotFound):
            verifier.mark_attendance(f"ATTEND-{event.id}-stranger-1")

    def test_scanner_must_be_organizer(self, verifier, registered, student_b):
        attendee, _ = registered
        with pytest.raises(PermissionDenied):
            verifier.mark_attendance(attendee.qr_code, scanned_by=student_b)

    def test_any_organizer_may_scan(self, verifier, registered, other_organizer):
        attendee, _ = registered
        marked, _ = verifier.mark_attendance(attendee.qr_code, scanned_by=other_organizer)
        assert marked.attended is True


class TestScanSession:
    def test_stops_at_first_token(self, verifier, registered, organizer):
        attendee, _ = registered
        consumed = []

        def frames():
            for frame in [None, 'noise', attendee.qr_code, 'never-read']:
                consumed.append(frame)
                yield frame

        result = ScanSession(verifier, scanned_by=organizer).run(frames(), FakeDecoder())

        assert result.success
        assert result.frames_read == 3
        assert 'never-read' not in consumed
        assert result.attendee.attended is True
        assert result.to_dict()['message'] == 'Attendance confirmed for Alice Student'

    def test_undecodable_frames_are_skipped(self, verifier, registered):
        attendee, _ = registered
        decoder = FakeDecoder(failing_frames={'bad'})

        result = ScanSession(verifier).run(['bad', attendee.qr_code], decoder)

        assert result.success
        assert decoder.calls == 2

    def test_verification_errors_are_reported(self, verifier, registered):
        attendee, _ = registered
        verifier.mark_attendance(attendee.qr_code)

        result = ScanSession(verifier).run([attendee.qr_code], FakeDecoder())

        assert not result.success
        assert isinstance(result.error, AlreadyAttended)
        assert result.to_dict()['error_type'] == 'already_attended'

    def test_cancellation(self, verifier, registered):
        attendee, _ = registered
        cancel = threading.Event()
        cancel.set()

        result = ScanSession(verifier).run(['noise', attendee.qr_code], FakeDecoder(), cancel)

        assert result.cancelled
        assert result.frames_read == 0
        assert result.token is None

    def test_stream_without_token(self, verifier):
        result = ScanSession(verifier).run(['noise', None], FakeDecoder())

        assert not result.success
        assert result.frames_read == 2
        assert result.to_dict()['error_type'] == 'no_token'
