"""
Models Module - Campus Events

Data classes for users, events, embedded attendees and archived event
snapshots, together with the one-time normalization step that migrates
legacy document shapes into the current schema.

Documents are stored with camelCase keys so that rosters and QR tokens
stay compatible with data written by earlier clients; the Python side
works with snake_case attributes only.

Features:
- User, Event, Attendee and ArchivedEvent records
- Document (de)serialization
- Legacy attendee/event shape migration
- Attendance rate formatting
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import quote

ROLE_STUDENT = 'student'
ROLE_ORGANIZER = 'organizer'
ROLES = (ROLE_STUDENT, ROLE_ORGANIZER)

ATTENDEE_SCHEMA_VERSION = 2
EVENT_SCHEMA_VERSION = 2


def default_avatar_url(name: str) -> str:
    return f"https://ui-avatars.com/api/?name={quote(name or 'User')}&background=3b82f6&color=fff"


def format_attendance_rate(confirmed: int, total: int) -> str:
    """Percentage of registered attendees that attended, two decimals."""
    if total <= 0:
        return '0.00'
    return f"{confirmed / total * 100:.2f}"


@dataclass
class User:
    """Application user resolved from an authentication principal."""
    id: str
    email: str
    name: str
    role: str = ROLE_STUDENT
    student_id: str = ''
    organization_name: str = ''
    avatar_url: str = ''

    @property
    def is_organizer(self) -> bool:
        return self.role == ROLE_ORGANIZER

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'role': self.role,
            'studentId': self.student_id,
            'organizationName': self.organization_name,
            'avatarUrl': self.avatar_url
        }


@dataclass
class Attendee:
    """A user's registration record embedded in an event."""
    user_id: str
    user_name: str
    user_email: str
    user_role: str
    registered_at: str
    qr_code: str
    student_id: Optional[str] = None
    organization_name: Optional[str] = None
    attended: bool = False
    attended_at: Optional[str] = None
    schema_version: int = ATTENDEE_SCHEMA_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            'userId': self.user_id,
            'userName': self.user_name,
            'userEmail': self.user_email,
            'userRole': self.user_role,
            'studentId': self.student_id,
            'organizationName': self.organization_name,
            'registeredAt': self.registered_at,
            'attended': self.attended,
            'attendedAt': self.attended_at,
            'qrCode': self.qr_code,
            'schemaVersion': self.schema_version
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Attendee':
        data = normalize_attendee(data)
        return cls(
            user_id=data['userId'],
            user_name=data['userName'],
            user_email=data['userEmail'],
            user_role=data['userRole'],
            registered_at=data['registeredAt'],
            qr_code=data['qrCode'],
            student_id=data['studentId'],
            organization_name=data['organizationName'],
            attended=data['attended'],
            attended_at=data['attendedAt']
        )


@dataclass
class Event:
    """An event document with its embedded attendee list."""
    id: str
    title: str
    date: str
    start_time: str = ''
    end_time: Optional[str] = None
    description: str = ''
    location: str = ''
    organizer: str = ''
    organizer_id: str = ''
    category: str = 'Academic'
    tags: List[str] = field(default_factory=list)
    max_attendees: int = 0
    is_public: bool = True
    attendees: List[Attendee] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def find_attendee(self, user_id: str) -> Optional[Attendee]:
        for attendee in self.attendees:
            if attendee.user_id == user_id:
                return attendee
        return None

    @property
    def confirmed_attendees(self) -> List[Attendee]:
        return [a for a in self.attendees if a.attended]

    @property
    def available_spots(self) -> int:
        return max(self.max_attendees - len(self.attendees), 0)

    @property
    def is_full(self) -> bool:
        return len(self.attendees) >= self.max_attendees

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'date': self.date,
            'startTime': self.start_time,
            'endTime': self.end_time,
            'location': self.location,
            'organizer': self.organizer,
            'organizerId': self.organizer_id,
            'category': self.category,
            'tags': list(self.tags),
            'maxAttendees': self.max_attendees,
            'isPublic': self.is_public,
            'attendees': [a.to_dict() for a in self.attendees],
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
            'schemaVersion': EVENT_SCHEMA_VERSION
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Event':
        data = normalize_event(data)
        return cls(
            id=data['id'],
            title=data['title'],
            date=data['date'],
            start_time=data['startTime'],
            end_time=data['endTime'],
            description=data['description'],
            location=data['location'],
            organizer=data['organizer'],
            organizer_id=data['organizerId'],
            category=data['category'],
            tags=list(data['tags']),
            max_attendees=data['maxAttendees'],
            is_public=data['isPublic'],
            attendees=[Attendee.from_dict(a) for a in data['attendees']],
            created_at=data['createdAt'],
            updated_at=data['updatedAt']
        )


@dataclass
class ArchivedEvent:
    """Snapshot of an expired event kept in the archive collection."""
    id: str
    event: Event
    archived_at: str
    original_event_id: str
    confirmed_attendees: List[Attendee]
    total_registered: int
    attendance_rate: str

    @classmethod
    def from_event(cls, event: Event, archived_at: str) -> 'ArchivedEvent':
        confirmed = event.confirmed_attendees
        total = len(event.attendees)
        return cls(
            id=event.id,
            event=event,
            archived_at=archived_at,
            original_event_id=event.id,
            confirmed_attendees=confirmed,
            total_registered=total,
            attendance_rate=format_attendance_rate(len(confirmed), total)
        )

    def to_dict(self) -> Dict[str, Any]:
        data = self.event.to_dict()
        data.update({
            'id': self.id,
            'archivedAt': self.archived_at,
            'originalEventId': self.original_event_id,
            'confirmedAttendees': [a.to_dict() for a in self.confirmed_attendees],
            'totalRegistered': self.total_registered,
            'attendanceRate': self.attendance_rate
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ArchivedEvent':
        event_data = dict(data)
        event_data['id'] = data.get('originalEventId') or data['id']
        event = Event.from_dict(event_data)
        confirmed_raw = data.get('confirmedAttendees')
        if confirmed_raw is None:
            confirmed = event.confirmed_attendees
        else:
            confirmed = [Attendee.from_dict(a) for a in confirmed_raw]
        total = data.get('totalRegistered', len(event.attendees))
        rate = data.get('attendanceRate')
        if rate is None or isinstance(rate, (int, float)):
            rate = format_attendance_rate(len(confirmed), total)
        return cls(
            id=data['id'],
            event=event,
            archived_at=data.get('archivedAt', ''),
            original_event_id=event.id,
            confirmed_attendees=confirmed,
            total_registered=total,
            attendance_rate=rate
        )


def normalize_attendee(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Migrate an attendee document of any historical shape to the current one.

    Older clients stored ``name``/``id``/``userStudentId``/``userOrganization``
    or only ``userId`` with timestamps. This is the single place those
    variants are resolved.

    Args:
        raw (Dict[str, Any]): Attendee document as read from storage

    Returns:
        Dict[str, Any]: Attendee document in schema version 2
    """
    if raw.get('schemaVersion') == ATTENDEE_SCHEMA_VERSION:
        return raw

    user_id = raw.get('userId') or raw.get('id') or ''
    return {
        'userId': user_id,
        'userName': raw.get('userName') or raw.get('name') or user_id,
        'userEmail': raw.get('userEmail') or raw.get('email') or '',
        'userRole': raw.get('userRole') or raw.get('role') or ROLE_STUDENT,
        'studentId': raw.get('studentId') or raw.get('userStudentId'),
        'organizationName': raw.get('organizationName') or raw.get('userOrganization'),
        'registeredAt': raw.get('registeredAt') or '',
        'attended': bool(raw.get('attended', False)),
        'attendedAt': raw.get('attendedAt'),
        'qrCode': raw.get('qrCode') or '',
        'schemaVersion': ATTENDEE_SCHEMA_VERSION
    }


def normalize_event(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Migrate an event document to the current schema."""
    if raw.get('schemaVersion') == EVENT_SCHEMA_VERSION:
        return raw

    try:
        max_attendees = int(raw.get('maxAttendees') or 0)
    except (TypeError, ValueError):
        max_attendees = 0

    return {
        'id': raw['id'],
        'title': raw.get('title') or '',
        'description': raw.get('description') or '',
        'date': raw.get('date') or '',
        'startTime': raw.get('startTime') or raw.get('time') or '',
        'endTime': raw.get('endTime') or None,
        'location': raw.get('location') or '',
        'organizer': raw.get('organizer') or '',
        'organizerId': raw.get('organizerId') or '',
        'category': raw.get('category') or 'Academic',
        'tags': list(raw.get('tags') or []),
        'maxAttendees': max_attendees,
        'isPublic': bool(raw.get('isPublic', True)),
        'attendees': [normalize_attendee(a) for a in raw.get('attendees') or []],
        'createdAt': raw.get('createdAt'),
        'updatedAt': raw.get('updatedAt'),
        'schemaVersion': EVENT_SCHEMA_VERSION
    }
