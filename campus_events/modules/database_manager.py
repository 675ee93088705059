"""
Database Manager Module - Campus Events

This module provides the document store the rest of the system talks to.
Documents are JSON objects grouped into named collections and persisted in
SQLite. The interface mirrors a hosted document database: create, update,
delete, get-all and realtime subscriptions, plus an atomic read-modify-write
used for capacity-checked registrations.

Features:
- SQLite connection management (one connection per thread)
- Document collections with JSON payloads
- Atomic read-modify-write transactions
- Realtime collection subscriptions with cancellation
- Error handling and logging
"""

import json
import logging
import os
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from queue import Queue, Empty
from typing import Any, Callable, Dict, Iterator, List, Optional


class DocumentNotFoundError(LookupError):
    """Raised when a document id does not exist in its collection."""


class DocumentExistsError(Exception):
    """Raised when creating a document whose id is already taken."""


class DatabaseManager:
    """
    Document store backed by SQLite.
    Handles connection management, schema creation, document CRUD and
    change notifications for subscribers.
    """

    def __init__(self, db_path):
        """
        Initialize the database manager with the specified database path.

        Args:
            db_path (str): Path to the SQLite database file
        """
        self.db_path = str(db_path)
        self.logger = logging.getLogger(__name__)
        self._local = threading.local()
        self._subscribers: Dict[str, List[Queue]] = {}
        self._subscribers_lock = threading.Lock()

        # Ensure database directory exists
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        self.initialize_database()

    @contextmanager
    def get_connection(self):
        """
        Context manager yielding this thread's connection.

        Yields:
            sqlite3.Connection: Database connection object
        """
        if not hasattr(self._local, 'connection'):
            # Autocommit mode: transactions are opened explicitly by transaction()
            self._local.connection = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                timeout=30.0,
                isolation_level=None
            )
            self._local.connection.row_factory = sqlite3.Row
        yield self._local.connection

    @contextmanager
    def transaction(self, immediate: bool = False):
        """
        Context manager for database transactions with automatic rollback on error.

        Args:
            immediate (bool): Take the write lock up front (BEGIN IMMEDIATE)
                so a read-modify-write cannot interleave with another writer

        Yields:
            sqlite3.Connection: Database connection within transaction
        """
        with self.get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            try:
                yield conn
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                conn.execute("ROLLBACK")
                self.logger.error(f"Transaction rolled back: {str(e)}")
                raise
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def initialize_database(self):
        """
        Create the document table. Idempotent and safe to call repeatedly.
        """
        try:
            with self.transaction() as conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS documents (
                        collection VARCHAR(50) NOT NULL,
                        id VARCHAR(64) NOT NULL,
                        data TEXT NOT NULL,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        PRIMARY KEY (collection, id)
                    )
                """)
                conn.execute("CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection)")

            self.logger.info("Database initialized successfully")

        except Exception as e:
            self.logger.error(f"Failed to initialize database: {str(e)}")
            raise

    def execute_query(self, query, params=None, fetch_all=True):
        """
        Execute a SELECT query and return results.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters
            fetch_all (bool): Whether to fetch all results or just one

        Returns:
            list or dict: Query results
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.execute(query, params or ())

                if fetch_all:
                    return [dict(row) for row in cursor.fetchall()]
                result = cursor.fetchone()
                return dict(result) if result else None

        except sqlite3.Error as e:
            self.logger.error(f"Query execution failed: {str(e)}")
            raise

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def create_document(self, collection: str, data: Dict[str, Any],
                        doc_id: Optional[str] = None) -> str:
        """
        Insert a new document.

        Args:
            collection (str): Collection name
            data (Dict[str, Any]): Document body
            doc_id (str): Explicit id; a random one is minted when omitted

        Returns:
            str: The document id
        """
        doc_id = doc_id or data.get('id') or uuid.uuid4().hex
        document = dict(data, id=doc_id)

        try:
            with self.transaction() as conn:
                conn.execute(
                    "INSERT INTO documents (collection, id, data) VALUES (?, ?, ?)",
                    (collection, doc_id, json.dumps(document, sort_keys=True))
                )
        except sqlite3.IntegrityError:
            raise DocumentExistsError(f"{collection}/{doc_id} already exists")

        self._notify(collection)
        return doc_id

    def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        row = self.execute_query(
            "SELECT data FROM documents WHERE collection = ? AND id = ?",
            (collection, doc_id),
            fetch_all=False
        )
        return json.loads(row['data']) if row else None

    def get_all_documents(self, collection: str, order_by: Optional[str] = None,
                          descending: bool = False) -> List[Dict[str, Any]]:
        """
        Get every document of a collection.

        Args:
            collection (str): Collection name
            order_by (str): Document field to sort on
            descending (bool): Sort direction

        Returns:
            List[Dict[str, Any]]: Documents
        """
        rows = self.execute_query(
            "SELECT data FROM documents WHERE collection = ? ORDER BY created_at, rowid",
            (collection,)
        )
        documents = [json.loads(row['data']) for row in rows]

        if order_by:
            # Documents missing the field sort first
            documents.sort(
                key=lambda doc: (doc.get(order_by) is not None, doc.get(order_by) or ''),
                reverse=descending
            )
        return documents

    def update_document(self, collection: str, doc_id: str,
                        patch: Dict[str, Any]) -> Dict[str, Any]:
        """
        Shallow-merge a patch into an existing document.

        Returns:
            Dict[str, Any]: The updated document
        """
        return self.atomic_update(collection, doc_id, lambda doc: dict(doc, **patch))

    def atomic_update(self, collection: str, doc_id: str,
                      mutator: Callable[[Dict[str, Any]], Dict[str, Any]]) -> Dict[str, Any]:
        """
        Read, transform and write back one document under the write lock.

        Exceptions raised by the mutator abort the transaction and leave the
        stored document untouched.

        Args:
            collection (str): Collection name
            doc_id (str): Document id
            mutator (Callable): Receives the current document, returns the new one

        Returns:
            Dict[str, Any]: The document as written
        """
        with self.transaction(immediate=True) as conn:
            row = conn.execute(
                "SELECT data FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id)
            ).fetchone()
            if row is None:
                raise DocumentNotFoundError(f"{collection}/{doc_id} not found")

            document = mutator(json.loads(row['data']))
            document['id'] = doc_id
            conn.execute(
                "UPDATE documents SET data = ?, updated_at = ? WHERE collection = ? AND id = ?",
                (json.dumps(document, sort_keys=True), datetime.now().isoformat(), collection, doc_id)
            )

        self._notify(collection)
        return document

    def delete_document(self, collection: str, doc_id: str) -> bool:
        """
        Delete a document.

        Returns:
            bool: False when the document did not exist
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id)
            )
            deleted = cursor.rowcount > 0

        if deleted:
            self._notify(collection)
        return deleted

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, collection: str, order_by: Optional[str] = None,
                  cancel_token: Optional[threading.Event] = None,
                  poll_interval: float = 0.5) -> Iterator[List[Dict[str, Any]]]:
        """
        Stream snapshots of a collection: one immediately, then one after
        every change, until ``cancel_token`` is set.

        Args:
            collection (str): Collection name
            order_by (str): Document field to sort snapshots on
            cancel_token (threading.Event): Set it to end the stream
            poll_interval (float): Seconds between cancellation checks

        Returns:
            Iterator[List[Dict[str, Any]]]: Snapshot stream
        """
        cancel_token = cancel_token or threading.Event()
        changes = Queue()
        changes.put(True)

        with self._subscribers_lock:
            self._subscribers.setdefault(collection, []).append(changes)

        def stream():
            try:
                while not cancel_token.is_set():
                    try:
                        changes.get(timeout=poll_interval)
                    except Empty:
                        continue
                    # Coalesce bursts of changes into one snapshot
                    while not changes.empty():
                        changes.get_nowait()
                    if cancel_token.is_set():
                        break
                    yield self.get_all_documents(collection, order_by)
            finally:
                with self._subscribers_lock:
                    queues = self._subscribers.get(collection, [])
                    if changes in queues:
                        queues.remove(changes)

        return stream()

    def _notify(self, collection: str) -> None:
        with self._subscribers_lock:
            for changes in self._subscribers.get(collection, []):
                changes.put(True)

    def subscriber_count(self, collection: str) -> int:
        with self._subscribers_lock:
            return len(self._subscribers.get(collection, []))

    def close_all_connections(self):
        """Close this thread's database connection."""
        try:
            if hasattr(self._local, 'connection'):
                self._local.connection.close()
                del self._local.connection
        except Exception as e:
            self.logger.error(f"Error closing connections: {str(e)}")

    def __del__(self):
        """Cleanup when object is destroyed."""
        self.close_all_connections()
