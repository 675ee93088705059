"""
Attendance Verifier Module - Campus Events

This module turns scanned QR tokens into confirmed attendance.

Features:
- Token parsing and validation
- Verbatim token match against the stored attendee record
- Duplicate scan rejection
- Scanner loop over a frame stream with cancellation
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, Tuple

from campus_events.modules.event_store import EventStore
from campus_events.modules.exceptions import (
    AlreadyAttended, AttendeeNotFound, CampusEventsError
)
from campus_events.modules.models import Attendee, Event, User
from campus_events.modules.permissions import Action, require_permission
from campus_events.modules.qr_generator import QRGenerator


class AttendanceVerifier:
    """
    QR token verification and attendance marking.
    """

    def __init__(self, event_store: EventStore, clock: Callable[[], datetime] = datetime.now):
        """
        Initialize the attendance verifier.

        Args:
            event_store: Event store adapter
            clock (Callable): Source of the current time
        """
        self.store = event_store
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    def mark_attendance(self, token: str, scanned_by: Optional[User] = None) -> Tuple[Attendee, Event]:
        """
        Confirm attendance for the attendee holding a token.

        Args:
            token (str): Scanned QR token
            scanned_by (User): Organizer operating the scanner, if known

        Returns:
            Tuple[Attendee, Event]: Updated attendee and event

        Raises:
            InvalidTokenFormat: Token is not an attendee token
            EventNotFound: Token names an unknown event
            AttendeeNotFound: No attendee holds this exact token
            AlreadyAttended: Token was scanned before
        """
        parsed = QRGenerator.parse_token(token)

        if scanned_by is not None:
            require_permission(scanned_by, Action.MARK_ATTENDANCE)

        def apply(event: Event) -> Event:
            attendee = event.find_attendee(parsed.user_id)
            if attendee is None or attendee.qr_code != token:
                raise AttendeeNotFound()
            if attendee.attended:
                raise AlreadyAttended(
                    f"{attendee.user_name} was already marked present at {attendee.attended_at}"
                )

            attendee.attended = True
            attendee.attended_at = self.clock().isoformat()
            return event

        try:
            event = self.store.mutate_event(parsed.event_id, apply)
        except CampusEventsError as e:
            self.logger.warning(f"Attendance scan rejected ({e.code}): {token}")
            raise

        attendee = event.find_attendee(parsed.user_id)
        self.logger.info(f"Attendance marked for {attendee.user_email} at event {event.id}")
        return attendee, event


@dataclass
class ScanResult:
    """Outcome of one scanner session."""
    token: Optional[str] = None
    attendee: Optional[Attendee] = None
    event: Optional[Event] = None
    error: Optional[CampusEventsError] = None
    frames_read: int = 0
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return self.attendee is not None and self.error is None

    def to_dict(self):
        if self.success:
            return {
                'success': True,
                'message': f"Attendance confirmed for {self.attendee.user_name}",
                'attendee': self.attendee.to_dict(),
                'event': {'id': self.event.id, 'title': self.event.title}
            }
        if self.error is not None:
            return self.error.to_dict()
        return {'success': False, 'message': 'No QR code detected', 'error_type': 'no_token'}


class ScanSession:
    """
    Scanner loop: reads frames until one decodes to a token, then stops
    reading and verifies that token.

    The decoder is any object with ``decode(frame) -> Optional[str]``.
    """

    def __init__(self, verifier: AttendanceVerifier, scanned_by: Optional[User] = None):
        self.verifier = verifier
        self.scanned_by = scanned_by
        self.logger = logging.getLogger(__name__)

    def run(self, frames: Iterable[Any], decoder: Any,
            cancel_token: Optional[threading.Event] = None) -> ScanResult:
        """
        Scan a frame stream.

        Args:
            frames (Iterable): Camera frames
            decoder: QR decoder
            cancel_token (threading.Event): Set it to stop scanning

        Returns:
            ScanResult: Verified attendee, or the error / cancellation
        """
        result = ScanResult()

        for frame in frames:
            if cancel_token is not None and cancel_token.is_set():
                result.cancelled = True
                break

            result.frames_read += 1
            try:
                token = decoder.decode(frame)
            except Exception as e:
                self.logger.warning(f"Frame {result.frames_read} could not be decoded: {str(e)}")
                continue

            if token:
                result.token = token
                break
        else:
            if cancel_token is not None and cancel_token.is_set():
                result.cancelled = True

        if result.token is None:
            self.logger.info(f"Scan ended without a token after {result.frames_read} frames")
            return result

        try:
            result.attendee, result.event = self.verifier.mark_attendance(result.token, self.scanned_by)
        except CampusEventsError as e:
            result.error = e

        return result
