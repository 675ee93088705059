import logging
import sqlite3

import pytest

from campus_events.modules.database_manager import DatabaseManager, DocumentExistsError
from campus_events.modules.event_store import EVENTS_COLLECTION, EventStore
from campus_events.modules.exceptions import EventNotFound, RemoteStoreUnavailable
from campus_events.modules.local_cache import LocalCache
from campus_events.modules.models import ArchivedEvent


class FlakyDatabaseManager(DatabaseManager):
    """Database manager whose document operations can be switched to fail."""

    failing = False

    def _check(self):
        if self.failing:
            raise sqlite3.OperationalError('disk I/O error')

    def get_document(self, *args, **kwargs):
        self._check()
        return super().get_document(*args, **kwargs)

    def get_all_documents(self, *args, **kwargs):
        self._check()
        return super().get_all_documents(*args, **kwargs)

    def create_document(self, *args, **kwargs):
        self._check()
        return super().create_document(*args, **kwargs)

    def atomic_update(self, *args, **kwargs):
        self._check()
        return super().atomic_update(*args, **kwargs)

    def delete_document(self, *args, **kwargs):
        self._check()
        return super().delete_document(*args, **kwargs)


@pytest.fixture
def flaky_db(tmp_path):
    manager = FlakyDatabaseManager(tmp_path / 'flaky.db')
    yield manager
    manager.close_all_connections()


@pytest.fixture
def flaky_store(flaky_db):
    return EventStore(flaky_db, LocalCache())


class TestEvents:
    def test_create_and_get(self, store, make_event):
        event = store.create_event(make_event(title='Career Fair'))
        assert store.get_event(event.id) == event

    def test_missing_event(self, store):
        with pytest.raises(EventNotFound):
            store.get_event('missing')

    def test_list_events_is_ordered_by_date(self, store, make_event):
        store.create_event(make_event(id='late', date='2025-04-01'))
        store.create_event(make_event(id='early', date='2025-03-15'))

        assert [e.id for e in store.list_events()] == ['early', 'late']

    def test_legacy_documents_are_normalized_on_load(self, store, db):
        db.create_document(EVENTS_COLLECTION, {
            'title': 'Legacy Mixer',
            'date': '2025-03-25',
            'time': '19:00',
            'maxAttendees': 30,
            'attendees': [{'id': 'stu1', 'name': 'Alice', 'qrCode': 'ATTEND-legacy-stu1-1'}]
        }, doc_id='legacy')

        event = store.get_event('legacy')

        assert event.start_time == '19:00'
        assert event.tags == []
        assert event.attendees[0].user_name == 'Alice'

    def test_mutate_event_missing(self, store):
        with pytest.raises(EventNotFound):
            store.mutate_event('missing', lambda event: event)

    def test_update_event(self, store, saved_event):
        updated = store.update_event(saved_event.id, {'location': 'Library'})
        assert updated.location == 'Library'
        assert store.get_event(saved_event.id).location == 'Library'

    def test_subscribe_yields_events(self, store, saved_event):
        stream = store.subscribe()
        try:
            assert [e.id for e in next(stream)] == [saved_event.id]
        finally:
            stream.close()


class TestCacheFallback:
    def test_reads_fall_back_to_cache(self, flaky_store, flaky_db, make_event):
        event = flaky_store.create_event(make_event())
        flaky_db.failing = True

        assert flaky_store.get_event(event.id) == event
        assert [e.id for e in flaky_store.list_events()] == [event.id]

    def test_failed_write_is_kept_in_cache_and_marked_diverged(self, flaky_store, flaky_db,
                                                               make_event, caplog):
        """Writes that the primary store rejects are applied to the cache only.

        Given an event mirrored in the cache
        When the primary store fails during an update
        Then the cached copy changes, the event is marked diverged and a warning is logged
        """
        event = flaky_store.create_event(make_event())
        flaky_db.failing = True

        with caplog.at_level(logging.WARNING):
            updated = flaky_store.update_event(event.id, {'location': 'Gym'})

        assert updated.location == 'Gym'
        assert flaky_store.cache.get(EVENTS_COLLECTION, event.id)['location'] == 'Gym'
        assert event.id in flaky_store.diverged_event_ids
        assert 'local cache only' in caplog.text

        flaky_db.failing = False
        assert flaky_store.get_event(event.id).location == 'Engineering Hall 101'

    def test_successful_sync_discards_divergence(self, flaky_store, flaky_db, make_event, caplog):
        event = flaky_store.create_event(make_event())
        flaky_db.failing = True
        flaky_store.update_event(event.id, {'location': 'Gym'})
        flaky_db.failing = False

        with caplog.at_level(logging.WARNING):
            events = flaky_store.list_events()

        assert events[0].location == 'Engineering Hall 101'
        assert flaky_store.diverged_event_ids == set()
        assert 'Discarding cache-only changes' in caplog.text

    def test_delete_falls_back_to_cache(self, flaky_store, flaky_db, make_event):
        event = flaky_store.create_event(make_event())
        flaky_db.failing = True

        assert flaky_store.delete_event(event.id) is True
        assert flaky_store.cache.get(EVENTS_COLLECTION, event.id) is None
        assert event.id in flaky_store.diverged_event_ids

    def test_create_has_no_fallback(self, flaky_store, flaky_db, make_event):
        flaky_db.failing = True
        with pytest.raises(RemoteStoreUnavailable):
            flaky_store.create_event(make_event())

    def test_no_cache_means_unavailable(self, flaky_db, make_event):
        store = EventStore(flaky_db)
        event = store.create_event(make_event())
        flaky_db.failing = True

        with pytest.raises(RemoteStoreUnavailable):
            store.get_event(event.id)
        with pytest.raises(RemoteStoreUnavailable):
            store.update_event(event.id, {'location': 'Gym'})


class TestArchive:
    def test_archiving_twice_is_detected(self, store, saved_event):
        archived = ArchivedEvent.from_event(saved_event, '2025-03-21T00:00:00')
        store.archive_event(archived)

        with pytest.raises(DocumentExistsError):
            store.archive_event(archived)

    def test_archived_events_newest_first(self, store, make_event):
        store.archive_event(ArchivedEvent.from_event(make_event(id='older'), '2025-01-01T00:00:00'))
        store.archive_event(ArchivedEvent.from_event(make_event(id='newer'), '2025-02-01T00:00:00'))

        assert [a.id for a in store.list_archived_events()] == ['newer', 'older']
        assert store.get_archived_event('older').event.id == 'older'

    def test_failed_archive_write_is_snapshotted_in_cache(self, flaky_store, flaky_db, make_event):
        event = flaky_store.create_event(make_event())
        flaky_db.failing = True

        with pytest.raises(RemoteStoreUnavailable):
            flaky_store.archive_event(ArchivedEvent.from_event(event, '2025-03-21T00:00:00'))

        assert [a.id for a in flaky_store.list_archived_events()] == [event.id]


class RecordingDatabaseManager(DatabaseManager):
    """Database manager that records the arguments of every subscription."""

    def __init__(self, db_path):
        super().__init__(db_path)
        self.subscriptions = []

    def subscribe(self, collection, order_by=None, cancel_token=None, poll_interval=0.5):
        self.subscriptions.append(poll_interval)
        return super().subscribe(collection, order_by, cancel_token, poll_interval=poll_interval)


class TestSubscriptionSettings:
    def test_poll_interval_reaches_the_database(self, tmp_path, make_event):
        db = RecordingDatabaseManager(tmp_path / 'recording.db')
        store = EventStore(db, poll_interval=0.05)
        store.create_event(make_event())

        stream = store.subscribe()
        try:
            next(stream)
        finally:
            stream.close()

        assert db.subscriptions == [0.05]
