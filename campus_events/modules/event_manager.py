"""
Event Manager Module - Campus Events

This module handles event creation, editing and deletion for organizers,
and read access for everyone.

Features:
- Event creation with form validation
- Partial updates validated against the merged result
- Deletion
- Permission checks under the configured edit policy
- Event listing and realtime subscription
"""

import logging
import threading
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional

from campus_events.modules.event_store import EventStore
from campus_events.modules.exceptions import ValidationError
from campus_events.modules.models import Event, User
from campus_events.modules.permissions import Action, POLICY_OWNER, require_permission

DEFAULT_CATEGORIES = ['Academic', 'Sports', 'Cultural', 'Social', 'Workshop', 'Study Group']

# Request keys accepted for each event attribute
FIELD_ALIASES = {
    'title': ('title',),
    'description': ('description',),
    'date': ('date',),
    'start_time': ('startTime', 'time', 'start_time'),
    'end_time': ('endTime', 'end_time'),
    'location': ('location',),
    'category': ('category',),
    'tags': ('tags',),
    'max_attendees': ('maxAttendees', 'max_attendees'),
    'is_public': ('isPublic', 'is_public'),
}


class EventManager:
    """
    Event management for organizers.
    """

    def __init__(self, event_store: EventStore, edit_policy: str = POLICY_OWNER,
                 categories: Optional[List[str]] = None, max_tags: int = 10,
                 clock: Callable[[], datetime] = datetime.now):
        """
        Initialize the event manager.

        Args:
            event_store: Event store adapter
            edit_policy (str): ``owner`` or ``any_organizer``
            categories (List[str]): Allowed categories
            max_tags (int): Maximum tags per event
            clock (Callable): Source of the current time
        """
        self.store = event_store
        self.edit_policy = edit_policy
        self.categories = categories or list(DEFAULT_CATEGORIES)
        self.max_tags = max_tags
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    def create_event(self, user: User, data: Dict[str, Any]) -> Event:
        """
        Create a new event.

        Args:
            user (User): Creating organizer
            data (Dict[str, Any]): Event form data

        Returns:
            Event: The created event
        """
        require_permission(user, Action.CREATE_EVENT)

        fields = self._extract_fields(data)
        cleaned = self._validate_event_fields(fields, require_future=True)

        now = self.clock().isoformat()
        event = Event(
            id=uuid.uuid4().hex,
            organizer=user.name or user.email,
            organizer_id=user.id,
            attendees=[],
            created_at=now,
            updated_at=now,
            **cleaned
        )

        self.store.create_event(event)
        self.logger.info(f"Event {event.id} created by {user.email}")
        return event

    def update_event(self, event_id: str, user: User, changes: Dict[str, Any]) -> Event:
        """
        Update an existing event.

        Args:
            event_id (str): Event id
            user (User): Editing organizer
            changes (Dict[str, Any]): Changed form fields

        Returns:
            Event: The updated event
        """
        fields = self._extract_fields(changes)
        if not fields:
            raise ValidationError('No changes provided')

        def apply(event: Event) -> Event:
            require_permission(user, Action.EDIT_EVENT, event, self.edit_policy)

            merged = {
                'title': event.title,
                'description': event.description,
                'date': event.date,
                'start_time': event.start_time,
                'end_time': event.end_time,
                'location': event.location,
                'category': event.category,
                'tags': event.tags,
                'max_attendees': event.max_attendees,
                'is_public': event.is_public,
            }
            merged.update(fields)

            cleaned = self._validate_event_fields(
                merged, require_future=merged['date'] != event.date
            )
            if cleaned['max_attendees'] < len(event.attendees):
                raise ValidationError(
                    f"Cannot reduce max attendees below current registrations ({len(event.attendees)})"
                )

            for name, value in cleaned.items():
                setattr(event, name, value)
            event.updated_at = self.clock().isoformat()
            return event

        event = self.store.mutate_event(event_id, apply)
        self.logger.info(f"Event {event_id} updated by {user.email}")
        return event

    def delete_event(self, event_id: str, user: User) -> bool:
        event = self.store.get_event(event_id)
        require_permission(user, Action.DELETE_EVENT, event, self.edit_policy)

        deleted = self.store.delete_event(event_id)
        self.logger.info(f"Event {event_id} deleted by {user.email}")
        return deleted

    def get_event(self, event_id: str) -> Event:
        return self.store.get_event(event_id)

    def list_events(self) -> List[Event]:
        return self.store.list_events()

    def subscribe(self, cancel_token: Optional[threading.Event] = None) -> Iterator[List[Event]]:
        return self.store.subscribe(cancel_token)

    def _extract_fields(self, data: Dict[str, Any]) -> Dict[str, Any]:
        fields = {}
        for name, aliases in FIELD_ALIASES.items():
            for alias in aliases:
                if alias in data:
                    fields[name] = data[alias]
                    break
        return fields

    def _validate_event_fields(self, fields: Dict[str, Any], require_future: bool) -> Dict[str, Any]:
        """
        Validate event form fields.

        Args:
            fields (Dict[str, Any]): Event attributes
            require_future (bool): Reject events starting in the past

        Returns:
            Dict[str, Any]: Cleaned attributes
        """
        def text(name):
            value = fields.get(name)
            return value.strip() if isinstance(value, str) else ''

        title = text('title')
        description = text('description')
        date = text('date')
        start_time = text('start_time')
        end_time = text('end_time')
        location = text('location')

        if not title:
            raise ValidationError('Event title is required')
        if not description:
            raise ValidationError('Event description is required')
        if not date:
            raise ValidationError('Event date is required')
        if not start_time:
            raise ValidationError('Event start time is required')
        if not end_time:
            raise ValidationError('Event end time is required')
        if not location:
            raise ValidationError('Event location is required')

        try:
            starts_at = datetime.strptime(f"{date} {start_time}", '%Y-%m-%d %H:%M')
            ends_at = datetime.strptime(f"{date} {end_time}", '%Y-%m-%d %H:%M')
        except ValueError:
            raise ValidationError('Event date must be YYYY-MM-DD and times HH:MM')

        if require_future and starts_at <= self.clock():
            raise ValidationError('Event date and time must be in the future')
        if ends_at <= starts_at:
            raise ValidationError('End time must be after start time')

        try:
            max_attendees = int(fields.get('max_attendees', 50))
        except (TypeError, ValueError):
            raise ValidationError('Max attendees must be a number')
        if max_attendees < 1:
            raise ValidationError('Max attendees must be at least 1')

        category = fields.get('category') or self.categories[0]
        if category not in self.categories:
            raise ValidationError(f"Category must be one of: {', '.join(self.categories)}")

        tags = []
        for tag in fields.get('tags') or []:
            tag = str(tag).strip()
            if tag and tag not in tags:
                tags.append(tag)
        if len(tags) > self.max_tags:
            raise ValidationError(f'An event can have at most {self.max_tags} tags')

        return {
            'title': title,
            'description': description,
            'date': date,
            'start_time': start_time,
            'end_time': end_time,
            'location': location,
            'category': category,
            'tags': tags,
            'max_attendees': max_attendees,
            'is_public': bool(fields.get('is_public', True)),
        }
