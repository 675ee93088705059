"""
Registration Engine Module - Campus Events

This module handles event registration for signed-in users. Capacity and
duplicate checks run inside the same store transaction that appends the
attendee, so concurrent registrations can never overfill an event.

Features:
- Registration with capacity and duplicate enforcement
- Attendee QR token minting
- Unregistration (blocked once attendance is confirmed)
- QR token regeneration
"""

import logging
from datetime import datetime
from typing import Callable, Tuple

from campus_events.modules.event_store import EventStore
from campus_events.modules.exceptions import (
    AlreadyAttended, AlreadyRegistered, AttendeeNotFound, CannotUnregisterAfterAttendance,
    EventFull
)
from campus_events.modules.models import Attendee, Event, User, ROLE_STUDENT, ROLE_ORGANIZER
from campus_events.modules.permissions import Action, require_permission
from campus_events.modules.qr_generator import QRGenerator


class RegistrationEngine:
    """
    Registration and QR issuance for event attendees.
    """

    def __init__(self, event_store: EventStore, clock: Callable[[], datetime] = datetime.now):
        """
        Initialize the registration engine.

        Args:
            event_store: Event store adapter
            clock (Callable): Source of the current time
        """
        self.store = event_store
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    def register(self, event: Event, user: User) -> Tuple[Attendee, Event]:
        """
        Register a user for an event.

        Args:
            event (Event): Target event
            user (User): Registering user

        Returns:
            Tuple[Attendee, Event]: New attendee record and the updated event

        Raises:
            AlreadyRegistered: The user is already on the attendee list
            EventFull: The event has no spots left
        """
        require_permission(user, Action.REGISTER, event)

        def apply(current: Event) -> Event:
            if current.find_attendee(user.id) is not None:
                raise AlreadyRegistered()
            if current.is_full:
                raise EventFull()

            now = self.clock()
            current.attendees.append(Attendee(
                user_id=user.id,
                user_name=user.name,
                user_email=user.email,
                user_role=user.role,
                registered_at=now.isoformat(),
                qr_code=QRGenerator.mint_token(current.id, user.id, now),
                student_id=user.student_id if user.role == ROLE_STUDENT else None,
                organization_name=user.organization_name if user.role == ROLE_ORGANIZER else None
            ))
            return current

        try:
            updated = self.store.mutate_event(event.id, apply)
        except (AlreadyRegistered, EventFull) as e:
            self.logger.warning(f"Registration rejected for {user.email} on event {event.id}: {e.message}")
            raise

        attendee = updated.find_attendee(user.id)
        self.logger.info(
            f"{user.email} registered for event {event.id} "
            f"({len(updated.attendees)}/{updated.max_attendees})"
        )
        return attendee, updated

    def unregister(self, event: Event, user: User) -> Event:
        """
        Remove a user's registration from an event.

        Raises:
            AttendeeNotFound: The user is not registered
            CannotUnregisterAfterAttendance: Attendance is already confirmed
        """
        def apply(current: Event) -> Event:
            attendee = current.find_attendee(user.id)
            if attendee is None:
                raise AttendeeNotFound('You are not registered for this event')
            if attendee.attended:
                raise CannotUnregisterAfterAttendance()

            current.attendees = [a for a in current.attendees if a.user_id != user.id]
            return current

        updated = self.store.mutate_event(event.id, apply)
        self.logger.info(f"{user.email} unregistered from event {event.id}")
        return updated

    def regenerate_qr_code(self, event: Event, user: User) -> Attendee:
        """
        Issue a new QR token for a registered attendee. Previously issued
        tokens stop matching the stored one and are rejected at scan time.

        Raises:
            AttendeeNotFound: The user is not registered
            AlreadyAttended: The current token was already scanned
        """
        def apply(current: Event) -> Event:
            attendee = current.find_attendee(user.id)
            if attendee is None:
                raise AttendeeNotFound('You are not registered for this event')
            if attendee.attended:
                raise AlreadyAttended('Attendance is already confirmed; the QR code can no longer change')

            attendee.qr_code = QRGenerator.mint_token(current.id, user.id, self.clock())
            return current

        updated = self.store.mutate_event(event.id, apply)
        self.logger.info(f"QR code regenerated for {user.email} on event {event.id}")
        return updated.find_attendee(user.id)

    @staticmethod
    def available_spots(event: Event) -> int:
        return event.available_spots
