import pytest

from campus_events.modules.event_manager import EventManager
from campus_events.modules.exceptions import EventNotFound, PermissionDenied, ValidationError
from campus_events.modules.permissions import POLICY_ANY_ORGANIZER


@pytest.fixture
def form():
    return {
        'title': '  Spring Hackathon ',
        'description': '24 hours of building',
        'date': '2025-04-05',
        'startTime': '09:00',
        'endTime': '21:00',
        'location': 'Innovation Lab',
        'category': 'Workshop',
        'maxAttendees': '40',
        'tags': ['coding', ' coding', 'prizes', ''],
        'isPublic': True
    }


class TestCreateEvent:
    def test_organizer_creates_event(self, event_manager, organizer, form, clock, store):
        event = event_manager.create_event(organizer, form)

        assert event.title == 'Spring Hackathon'
        assert event.organizer == 'Olivia Organizer'
        assert event.organizer_id == organizer.id
        assert event.max_attendees == 40
        assert event.tags == ['coding', 'prizes']
        assert event.attendees == []
        assert event.created_at == clock().isoformat()
        assert '-' not in event.id
        assert store.get_event(event.id) == event

    def test_legacy_time_key_is_accepted(self, event_manager, organizer, form):
        form['time'] = form.pop('startTime')
        assert event_manager.create_event(organizer, form).start_time == '09:00'

    def test_students_cannot_create(self, event_manager, student, form):
        with pytest.raises(PermissionDenied):
            event_manager.create_event(student, form)

    @pytest.mark.parametrize(
        ("changes", "message"),
        [
            ({'title': ' '}, 'Event title is required'),
            ({'location': ''}, 'Event location is required'),
            ({'date': '2025-03-01'}, 'Event date and time must be in the future'),
            ({'endTime': '08:00'}, 'End time must be after start time'),
            ({'maxAttendees': 0}, 'Max attendees must be at least 1'),
            ({'maxAttendees': 'many'}, 'Max attendees must be a number'),
            ({'category': 'Gaming'}, 'Category must be one of'),
            ({'tags': [f'tag{i}' for i in range(11)]}, 'at most 10 tags'),
            ({'date': '05/04/2025'}, 'YYYY-MM-DD'),
        ],
    )
    def test_validation(self, event_manager, organizer, form, changes, message):
        form.update(changes)
        with pytest.raises(ValidationError) as exc_info:
            event_manager.create_event(organizer, form)
        assert message in exc_info.value.message


class TestUpdateEvent:
    def test_owner_updates_fields(self, event_manager, organizer, saved_event, clock):
        clock.advance(hours=1)

        updated = event_manager.update_event(saved_event.id, organizer, {'location': 'Main Auditorium'})

        assert updated.location == 'Main Auditorium'
        assert updated.title == saved_event.title
        assert updated.updated_at == clock().isoformat()

    def test_other_organizer_denied_under_owner_policy(self, event_manager, other_organizer, saved_event):
        with pytest.raises(PermissionDenied):
            event_manager.update_event(saved_event.id, other_organizer, {'location': 'Gym'})

    def test_other_organizer_allowed_under_any_organizer_policy(self, store, clock, other_organizer,
                                                                 saved_event):
        manager = EventManager(store, edit_policy=POLICY_ANY_ORGANIZER, clock=clock)
        assert manager.update_event(saved_event.id, other_organizer, {'location': 'Gym'}).location == 'Gym'

    def test_cannot_shrink_below_registrations(self, event_manager, store, organizer, make_event,
                                               make_attendee):
        """Capacity never drops below the number of registered attendees.

        Given an event with three attendees
        When its organizer lowers max attendees to two
        Then the update is rejected and the event is unchanged
        """
        event = store.create_event(make_event(attendees=[make_attendee(f'stu{i}') for i in range(3)]))

        with pytest.raises(ValidationError) as exc_info:
            event_manager.update_event(event.id, organizer, {'maxAttendees': 2})

        assert exc_info.value.message == 'Cannot reduce max attendees below current registrations (3)'
        assert store.get_event(event.id).max_attendees == 10

    def test_past_date_check_only_applies_when_date_changes(self, event_manager, store, organizer,
                                                           make_event):
        event = store.create_event(make_event(date='2025-03-10', start_time='08:00', end_time='18:00'))

        updated = event_manager.update_event(event.id, organizer, {'description': 'Now with snacks'})
        assert updated.description == 'Now with snacks'

        with pytest.raises(ValidationError):
            event_manager.update_event(event.id, organizer, {'date': '2025-03-09'})

    def test_attendees_are_not_editable(self, event_manager, organizer, saved_event):
        with pytest.raises(ValidationError):
            event_manager.update_event(saved_event.id, organizer, {'attendees': []})

    def test_missing_event(self, event_manager, organizer):
        with pytest.raises(EventNotFound):
            event_manager.update_event('missing', organizer, {'title': 'New'})


class TestDeleteEvent:
    def test_owner_deletes(self, event_manager, organizer, saved_event):
        assert event_manager.delete_event(saved_event.id, organizer) is True
        assert event_manager.list_events() == []

    def test_students_cannot_delete(self, event_manager, student, saved_event):
        with pytest.raises(PermissionDenied):
            event_manager.delete_event(saved_event.id, student)
        assert event_manager.get_event(saved_event.id) == saved_event
