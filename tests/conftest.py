import uuid
from datetime import datetime, timedelta

import pytest

from campus_events.modules.attendance_verifier import AttendanceVerifier
from campus_events.modules.database_manager import DatabaseManager
from campus_events.modules.event_manager import EventManager
from campus_events.modules.event_store import EventStore
from campus_events.modules.expiration_sweeper import ExpirationSweeper
from campus_events.modules.export_formatter import ExportFormatter
from campus_events.modules.local_cache import LocalCache
from campus_events.modules.models import Attendee, Event, User
from campus_events.modules.qr_generator import QRGenerator
from campus_events.modules.registration_engine import RegistrationEngine

NOW = datetime(2025, 3, 10, 12, 0, 0)


class FakeClock:
    """Manually advanced clock shared by the managers under test."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def db(tmp_path):
    manager = DatabaseManager(tmp_path / 'campus_events.db')
    yield manager
    manager.close_all_connections()


@pytest.fixture
def cache():
    return LocalCache()


@pytest.fixture
def store(db, cache):
    return EventStore(db, cache)


@pytest.fixture
def organizer():
    return User(id='org1', email='olivia@campus.edu', name='Olivia Organizer',
                role='organizer', organization_name='Robotics Club')


@pytest.fixture
def other_organizer():
    return User(id='org2', email='oscar@campus.edu', name='Oscar Organizer',
                role='organizer', organization_name='Chess Club')


@pytest.fixture
def student():
    return User(id='stu1', email='alice@campus.edu', name='Alice Student',
                role='student', student_id='S1001')


@pytest.fixture
def student_b():
    return User(id='stu2', email='bob@campus.edu', name='Bob Student',
                role='student', student_id='S1002')


@pytest.fixture
def make_event(organizer):
    """Factory for unsaved events owned by ``organizer``."""
    def factory(**overrides):
        values = dict(
            id=uuid.uuid4().hex,
            title='Intro to Robotics',
            description='Hands-on robotics workshop',
            date='2025-03-20',
            start_time='10:00',
            end_time='12:00',
            location='Engineering Hall 101',
            organizer=organizer.name,
            organizer_id=organizer.id,
            category='Workshop',
            tags=['robots'],
            max_attendees=10,
            created_at=NOW.isoformat(),
            updated_at=NOW.isoformat()
        )
        values.update(overrides)
        return Event(**values)
    return factory


@pytest.fixture
def saved_event(store, make_event):
    return store.create_event(make_event())


@pytest.fixture
def make_attendee():
    def factory(user_id, attended=False, **overrides):
        values = dict(
            user_id=user_id,
            user_name=f'User {user_id}',
            user_email=f'{user_id}@campus.edu',
            user_role='student',
            registered_at=NOW.isoformat(),
            qr_code=QRGenerator.mint_token('evt', user_id, NOW),
            student_id=f'S-{user_id}',
            attended=attended,
            attended_at=(NOW + timedelta(hours=1)).isoformat() if attended else None
        )
        values.update(overrides)
        return Attendee(**values)
    return factory


@pytest.fixture
def event_manager(store, clock):
    return EventManager(store, clock=clock)


@pytest.fixture
def registration(store, clock):
    return RegistrationEngine(store, clock=clock)


@pytest.fixture
def verifier(store, clock):
    return AttendanceVerifier(store, clock=clock)


@pytest.fixture
def sweeper(store, clock):
    sweeper = ExpirationSweeper(store, clock=clock)
    yield sweeper
    sweeper.stop(timeout=5)


@pytest.fixture
def exporter(clock):
    return ExportFormatter(clock=clock)
