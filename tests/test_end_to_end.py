from datetime import timedelta

import pytest

from campus_events.modules.exceptions import CannotUnregisterAfterAttendance, EventFull


class TestEventLifecycle:
    def test_single_seat_event_from_creation_to_archive(self, event_manager, registration, verifier,
                                                        sweeper, store, organizer, student,
                                                        student_b, clock):
        """An event with one seat goes through registration, attendance and archiving.

        Given an organizer's event with a single seat
        When one student registers and is scanned, a second student is turned away,
        and the event then lies in the past
        Then the sweep archives it with the one confirmed attendee
        """
        event = event_manager.create_event(organizer, {
            'title': 'Solder Lab',
            'description': 'Hands-on soldering',
            'date': '2025-03-15',
            'startTime': '09:00',
            'endTime': '11:00',
            'location': 'Makerspace',
            'category': 'Workshop',
            'maxAttendees': 1
        })

        attendee, event = registration.register(event, student)
        assert event.available_spots == 0

        with pytest.raises(EventFull):
            registration.register(event, student_b)

        verifier.mark_attendance(attendee.qr_code, scanned_by=organizer)

        with pytest.raises(CannotUnregisterAfterAttendance):
            registration.unregister(store.get_event(event.id), student)

        yesterday = (clock() - timedelta(days=1)).date().isoformat()
        store.update_event(event.id, {'date': yesterday})

        result = sweeper.sweep()

        assert result.archived_count == 1
        assert store.list_events() == []

        archived = store.get_archived_event(event.id)
        assert [a.user_id for a in archived.confirmed_attendees] == [student.id]
        assert archived.total_registered == 1
        assert archived.attendance_rate == '100.00'
