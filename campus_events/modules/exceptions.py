"""
Exceptions Module - Campus Events

Error taxonomy shared by every manager. Each error carries a stable
``code`` (reported to API clients as ``error_type``), a short user-facing
``message`` and the HTTP status the API layer answers with.
"""

from typing import Optional


class CampusEventsError(Exception):
    """Base class for all domain errors raised by the managers."""

    code = 'campus_events_error'
    default_message = 'An unexpected error occurred'
    status_code = 400

    def __init__(self, message: Optional[str] = None, **details):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self):
        return {
            'success': False,
            'message': self.message,
            'error_type': self.code
        }


class AlreadyRegistered(CampusEventsError):
    code = 'already_registered'
    default_message = 'You are already registered for this event'
    status_code = 409


class EventFull(CampusEventsError):
    code = 'event_full'
    default_message = 'This event is full'
    status_code = 409


class CannotUnregisterAfterAttendance(CampusEventsError):
    code = 'cannot_unregister_after_attendance'
    default_message = 'You cannot unregister after your attendance has been confirmed'
    status_code = 409


class InvalidTokenFormat(CampusEventsError):
    code = 'invalid_token_format'
    default_message = 'Invalid QR code format'


class EventNotFound(CampusEventsError):
    code = 'event_not_found'
    default_message = 'Event not found'
    status_code = 404


class AttendeeNotFound(CampusEventsError):
    code = 'attendee_not_found'
    default_message = 'Attendee not found or QR code is no longer valid'
    status_code = 404


class AlreadyAttended(CampusEventsError):
    code = 'already_attended'
    default_message = 'Attendance has already been marked for this attendee'
    status_code = 409


class NoConfirmedAttendees(CampusEventsError):
    code = 'no_confirmed_attendees'
    default_message = 'No confirmed attendees to export'


class PermissionDenied(CampusEventsError):
    code = 'permission_denied'
    default_message = 'You do not have permission to perform this action'
    status_code = 403


class RemoteStoreUnavailable(CampusEventsError):
    code = 'remote_store_unavailable'
    default_message = 'The event store is currently unavailable'
    status_code = 503


class ValidationError(CampusEventsError):
    code = 'validation_error'
    default_message = 'Invalid data'


class AuthenticationFailed(CampusEventsError):
    code = 'authentication_failed'
    default_message = 'Invalid email or password'
    status_code = 401


class UnsupportedExportFormat(CampusEventsError):
    code = 'unsupported_export_format'
    default_message = 'Unsupported export format'
