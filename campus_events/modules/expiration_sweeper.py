"""
Expiration Sweeper Module - Campus Events

This module moves ended events out of the active collection into the
archive, on demand and on a fixed-interval background thread.

Features:
- Event expiry detection (date + end time)
- Archive snapshots with attendance statistics
- Per-event error collection; one failure never aborts a sweep
- Re-entrant sweeps (already archived / already removed events are skipped)
- Background sweep thread with deterministic shutdown
- Archive listing, deletion and retention cleanup
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from campus_events.modules.database_manager import DocumentExistsError
from campus_events.modules.event_store import EventStore
from campus_events.modules.exceptions import EventNotFound
from campus_events.modules.models import ArchivedEvent, Event, User
from campus_events.modules.permissions import Action, require_permission

DEFAULT_END_TIME = '23:59'


def parse_archive_date(value: str) -> datetime:
    """
    Parse an ``archivedAt`` timestamp as naive local time.

    Accepts the UTC ``Z`` suffix written by browser clients; offset-aware
    values are converted to local time so they compare with ``now``.
    """
    value = value or ''
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


@dataclass
class SweepResult:
    """Summary of one sweep run."""
    processed: int = 0
    archived_count: int = 0
    skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'processed': self.processed,
            'archived': self.archived_count,
            'archivedCount': self.archived_count,
            'skipped': self.skipped,
            'errors': list(self.errors)
        }


class ExpirationSweeper:
    """
    Expired event detection and archival.
    """

    def __init__(self, event_store: EventStore, interval_seconds: int = 3600,
                 default_end_time: str = DEFAULT_END_TIME, retention_days: int = 365,
                 clock: Callable[[], datetime] = datetime.now):
        """
        Initialize the expiration sweeper.

        Args:
            event_store: Event store adapter
            interval_seconds (int): Seconds between background sweeps
            default_end_time (str): End time assumed for events without one
            retention_days (int): Default archive retention for cleanup
            clock (Callable): Source of the current time
        """
        self.store = event_store
        self.interval_seconds = interval_seconds
        self.default_end_time = default_end_time
        self.retention_days = retention_days
        self.clock = clock
        self.logger = logging.getLogger(__name__)

        self._sweep_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def expiry_cutoff(self, event: Event) -> Optional[datetime]:
        """
        Last instant at which the event is still active: its date at the
        end time (or the default end time), to the end of that minute.
        Events without a date have no cutoff.
        """
        if not event.date:
            return None

        end_time = event.end_time or self.default_end_time
        try:
            event_date = datetime.strptime(event.date, '%Y-%m-%d')
            hours, minutes = (int(part) for part in end_time.split(':')[:2])
        except ValueError as e:
            self.logger.error(f"Cannot determine expiry of event {event.id}: {str(e)}")
            return None

        return event_date.replace(hour=hours, minute=minutes, second=59, microsecond=999000)

    def is_expired(self, event: Event, now: Optional[datetime] = None) -> bool:
        cutoff = self.expiry_cutoff(event)
        if cutoff is None:
            return False
        return (now or self.clock()) > cutoff

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    def sweep(self, active_events: Optional[List[Event]] = None,
              now: Optional[datetime] = None) -> SweepResult:
        """
        Archive every expired event and remove it from the active set.

        Each expired event is re-read and re-checked before archiving, so
        overlapping or repeated sweeps do not archive an event twice.

        Args:
            active_events (List[Event]): Events to consider, all active
                events when None
            now (datetime): Reference time

        Returns:
            SweepResult: Counts and per-event errors
        """
        now = now or self.clock()
        result = SweepResult()

        with self._sweep_lock:
            if active_events is None:
                active_events = self.store.list_events()

            expired = [event for event in active_events if self.is_expired(event, now)]
            result.processed = len(expired)

            for event in expired:
                try:
                    if self._archive(event.id, now):
                        result.archived_count += 1
                    else:
                        result.skipped += 1
                except Exception as e:
                    self.logger.error(f"Failed to archive event {event.id}: {str(e)}")
                    result.errors.append({
                        'eventId': event.id,
                        'eventTitle': event.title,
                        'error': str(e),
                        'message': str(e)
                    })

        if result.processed:
            self.logger.info(
                f"Sweep finished: {result.archived_count} archived, "
                f"{result.skipped} skipped, {len(result.errors)} failed"
            )
        return result

    def _archive(self, event_id: str, now: datetime) -> bool:
        try:
            current = self.store.get_event(event_id)
        except EventNotFound:
            self.logger.info(f"Event {event_id} already removed, skipping")
            return False

        if not self.is_expired(current, now):
            self.logger.info(f"Event {event_id} is no longer expired, skipping")
            return False

        archived = ArchivedEvent.from_event(current, now.isoformat())
        fresh = True
        try:
            self.store.archive_event(archived)
        except DocumentExistsError:
            self.logger.info(f"Event {event_id} was already archived")
            fresh = False

        self.store.delete_event(event_id)
        if fresh:
            self.logger.info(
                f"Archived event {event_id}: {len(archived.confirmed_attendees)}/"
                f"{archived.total_registered} attended ({archived.attendance_rate}%)"
            )
        return fresh

    # ------------------------------------------------------------------
    # Background thread
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Sweep now, then every ``interval_seconds`` until stopped."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name='expiration-sweeper', daemon=True)
        self._thread.start()
        self.logger.info(f"Expiration sweeper started (every {self.interval_seconds}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            self.logger.info("Expiration sweeper stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.sweep()
            except Exception as e:
                self.logger.error(f"Background sweep failed: {str(e)}")
            self._stop_event.wait(self.interval_seconds)

    # ------------------------------------------------------------------
    # Archive
    # ------------------------------------------------------------------

    def get_archived_events(self, user: Optional[User] = None) -> List[ArchivedEvent]:
        if user is not None:
            require_permission(user, Action.VIEW_ARCHIVE)
        return self.store.list_archived_events()

    def get_archived_event(self, archive_id: str, user: Optional[User] = None) -> ArchivedEvent:
        if user is not None:
            require_permission(user, Action.VIEW_ARCHIVE)
        return self.store.get_archived_event(archive_id)

    def delete_archived_event(self, archive_id: str, user: User) -> bool:
        require_permission(user, Action.MANAGE_ARCHIVE)
        self.store.get_archived_event(archive_id)

        deleted = self.store.delete_archived_event(archive_id)
        self.logger.info(f"Archived event {archive_id} deleted by {user.email}")
        return deleted

    def cleanup_old_archived_events(self, days_to_keep: Optional[int] = None,
                                    now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Delete archived events older than the retention window.

        Args:
            days_to_keep (int): Retention in days, ``retention_days`` if None
            now (datetime): Reference time

        Returns:
            Dict[str, int]: ``cleaned`` and ``remaining`` counts
        """
        if days_to_keep is None:
            days_to_keep = self.retention_days
        cutoff = (now or self.clock()) - timedelta(days=days_to_keep)

        archived = self.store.list_archived_events()
        cleaned = 0
        for item in archived:
            try:
                archived_at = parse_archive_date(item.archived_at)
            except ValueError:
                self.logger.warning(f"Archived event {item.id} has no valid archive date, keeping it")
                continue

            if archived_at < cutoff:
                self.store.delete_archived_event(item.id)
                cleaned += 1

        self.logger.info(f"Archive cleanup removed {cleaned} events older than {days_to_keep} days")
        return {'cleaned': cleaned, 'remaining': len(archived) - cleaned}
