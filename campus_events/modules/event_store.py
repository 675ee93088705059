"""
Event Store Module - Campus Events

Adapter between the managers and the document store. Converts documents
to model objects (running the schema normalization once, at load time),
performs capacity-sensitive changes as atomic transactions and applies the
local-cache fallback when the primary store fails.

Cache fallback policy:
- Reads fall back to the last cached snapshot.
- Attendee changes, updates and deletes fall back to a cache-only write;
  the event id is recorded in ``diverged_event_ids`` and a warning is
  logged. Cache-only changes are dropped on the next successful sync.
- Creates and archive writes have no fallback and raise
  RemoteStoreUnavailable.
"""

import logging
import sqlite3
import threading
from typing import Callable, Dict, Any, Iterator, List, Optional

from campus_events.modules.database_manager import (
    DatabaseManager, DocumentExistsError, DocumentNotFoundError
)
from campus_events.modules.exceptions import EventNotFound, RemoteStoreUnavailable
from campus_events.modules.local_cache import LocalCache
from campus_events.modules.models import ArchivedEvent, Event

EVENTS_COLLECTION = 'events'
ARCHIVE_COLLECTION = 'expired_events'


class EventStore:
    """CRUD and realtime access to events and archived events."""

    def __init__(self, database_manager: DatabaseManager, cache: Optional[LocalCache] = None,
                 poll_interval: float = 0.5):
        """
        Args:
            database_manager: Primary document store
            cache: Secondary store used when the primary one fails
            poll_interval: Seconds between cancellation checks of a subscription
        """
        self.db = database_manager
        self.cache = cache
        self.poll_interval = poll_interval
        self.logger = logging.getLogger(__name__)
        self.diverged_event_ids = set()

    def _unavailable(self, operation: str, error: Exception) -> RemoteStoreUnavailable:
        self.logger.error(f"Event store {operation} failed: {str(error)}")
        return RemoteStoreUnavailable()

    def _sync_cache(self, documents: List[Dict[str, Any]]) -> None:
        if self.cache is None:
            return
        if self.diverged_event_ids:
            self.logger.warning(
                f"Discarding cache-only changes for events: {sorted(self.diverged_event_ids)}"
            )
            self.diverged_event_ids.clear()
        self.cache.replace_all(EVENTS_COLLECTION, documents)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def list_events(self, order_by: str = 'date') -> List[Event]:
        """
        Get all active events.

        Args:
            order_by (str): Document field to sort on

        Returns:
            List[Event]: Active events
        """
        try:
            documents = self.db.get_all_documents(EVENTS_COLLECTION, order_by)
        except sqlite3.Error as e:
            if self.cache is None:
                raise self._unavailable('list', e)
            self.logger.warning(f"Listing events from local cache: {str(e)}")
            documents = sorted(self.cache.get_all(EVENTS_COLLECTION),
                               key=lambda doc: doc.get(order_by) or '')
        else:
            self._sync_cache(documents)

        return [Event.from_dict(doc) for doc in documents]

    def get_event(self, event_id: str) -> Event:
        try:
            document = self.db.get_document(EVENTS_COLLECTION, event_id)
        except sqlite3.Error as e:
            if self.cache is None:
                raise self._unavailable('read', e)
            self.logger.warning(f"Reading event {event_id} from local cache: {str(e)}")
            document = self.cache.get(EVENTS_COLLECTION, event_id)

        if document is None:
            raise EventNotFound()
        return Event.from_dict(document)

    def create_event(self, event: Event) -> Event:
        document = event.to_dict()
        try:
            self.db.create_document(EVENTS_COLLECTION, document, doc_id=event.id)
        except sqlite3.Error as e:
            raise self._unavailable('create', e)

        if self.cache is not None:
            self.cache.put(EVENTS_COLLECTION, document)
        self.logger.info(f"Event created: {event.id} ({event.title})")
        return event

    def mutate_event(self, event_id: str, mutator: Callable[[Event], Event]) -> Event:
        """
        Apply a change to one event atomically.

        The mutator receives the freshly stored event, may raise a domain
        error to abort, and returns the event to write back.

        Args:
            event_id (str): Event id
            mutator (Callable[[Event], Event]): Change to apply

        Returns:
            Event: The event as written
        """
        def apply(document):
            return mutator(Event.from_dict(document)).to_dict()

        try:
            document = self.db.atomic_update(EVENTS_COLLECTION, event_id, apply)
        except DocumentNotFoundError:
            raise EventNotFound()
        except sqlite3.Error as e:
            return self._mutate_cached(event_id, apply, e)

        if self.cache is not None:
            self.cache.put(EVENTS_COLLECTION, document)
        return Event.from_dict(document)

    def _mutate_cached(self, event_id: str, apply, error: Exception) -> Event:
        if self.cache is None:
            raise self._unavailable('update', error)

        document = self.cache.get(EVENTS_COLLECTION, event_id)
        if document is None:
            raise self._unavailable('update', error)

        document = apply(document)
        self.cache.put(EVENTS_COLLECTION, document)
        self.diverged_event_ids.add(event_id)
        self.logger.warning(
            f"Primary store write failed for event {event_id}, "
            f"change kept in local cache only: {str(error)}"
        )
        return Event.from_dict(document)

    def update_event(self, event_id: str, changes: Dict[str, Any]) -> Event:
        """Apply field changes (snake_case attribute names) to an event."""
        def apply(event):
            for name, value in changes.items():
                setattr(event, name, value)
            return event

        return self.mutate_event(event_id, apply)

    def delete_event(self, event_id: str) -> bool:
        try:
            deleted = self.db.delete_document(EVENTS_COLLECTION, event_id)
        except sqlite3.Error as e:
            if self.cache is None:
                raise self._unavailable('delete', e)
            self.diverged_event_ids.add(event_id)
            self.logger.warning(
                f"Primary store delete failed for event {event_id}, "
                f"removed from local cache only: {str(e)}"
            )
            return self.cache.remove(EVENTS_COLLECTION, event_id)

        if self.cache is not None:
            self.cache.remove(EVENTS_COLLECTION, event_id)
        return deleted

    def subscribe(self, cancel_token: Optional[threading.Event] = None,
                  order_by: str = 'date') -> Iterator[List[Event]]:
        """
        Stream the active event list, once now and after every change.

        Args:
            cancel_token (threading.Event): Set it to end the stream
            order_by (str): Document field to sort on

        Returns:
            Iterator[List[Event]]: Event list snapshots
        """
        snapshots = self.db.subscribe(EVENTS_COLLECTION, order_by, cancel_token,
                                      poll_interval=self.poll_interval)
        for documents in snapshots:
            self._sync_cache(documents)
            yield [Event.from_dict(doc) for doc in documents]

    # ------------------------------------------------------------------
    # Archive
    # ------------------------------------------------------------------

    def archive_event(self, archived: ArchivedEvent) -> str:
        """
        Write an archived snapshot. The archive id equals the original event
        id, so archiving the same event twice raises DocumentExistsError.
        """
        document = archived.to_dict()
        try:
            return self.db.create_document(ARCHIVE_COLLECTION, document, doc_id=archived.id)
        except DocumentExistsError:
            raise
        except sqlite3.Error as e:
            if self.cache is not None:
                self.cache.put(ARCHIVE_COLLECTION, document)
            raise self._unavailable('archive', e)

    def get_archived_event(self, archive_id: str) -> ArchivedEvent:
        try:
            document = self.db.get_document(ARCHIVE_COLLECTION, archive_id)
        except sqlite3.Error as e:
            if self.cache is None:
                raise self._unavailable('archive read', e)
            document = self.cache.get(ARCHIVE_COLLECTION, archive_id)

        if document is None:
            raise EventNotFound('Archived event not found')
        return ArchivedEvent.from_dict(document)

    def list_archived_events(self) -> List[ArchivedEvent]:
        """Archived events, most recently archived first."""
        try:
            documents = self.db.get_all_documents(ARCHIVE_COLLECTION, 'archivedAt', descending=True)
        except sqlite3.Error as e:
            if self.cache is None:
                raise self._unavailable('archive list', e)
            self.logger.warning(f"Listing archived events from local cache: {str(e)}")
            documents = sorted(self.cache.get_all(ARCHIVE_COLLECTION),
                               key=lambda doc: doc.get('archivedAt') or '', reverse=True)

        return [ArchivedEvent.from_dict(doc) for doc in documents]

    def delete_archived_event(self, archive_id: str) -> bool:
        try:
            return self.db.delete_document(ARCHIVE_COLLECTION, archive_id)
        except sqlite3.Error as e:
            raise self._unavailable('archive delete', e)
