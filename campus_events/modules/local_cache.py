"""
Local Cache Module - Campus Events

Secondary store used when the primary document store cannot be written.
Holds a JSON copy of each collection, keyed by document id, optionally
mirrored to a file on disk. Writes here are best-effort and never
reconciled with the primary store.
"""

import copy
import json
import logging
import os
import threading
from typing import Any, Dict, List, Optional


class LocalCache:
    """Best-effort JSON cache of document collections."""

    def __init__(self, path: Optional[str] = None):
        """
        Args:
            path (str): JSON file to persist to; memory only when None
        """
        self.path = str(path) if path else None
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = self._load()

    def _load(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        if not self.path or not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            self.logger.error(f"Failed to read local cache {self.path}: {str(e)}")
            return {}

    def _save(self) -> None:
        if not self.path:
            return
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.path, 'w', encoding='utf-8') as f:
                json.dump(self._collections, f, indent=2, sort_keys=True)
        except OSError as e:
            self.logger.error(f"Failed to write local cache {self.path}: {str(e)}")

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            document = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(document)

    def get_all(self, collection: str) -> List[Dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(list(self._collections.get(collection, {}).values()))

    def put(self, collection: str, document: Dict[str, Any]) -> None:
        with self._lock:
            self._collections.setdefault(collection, {})[document['id']] = copy.deepcopy(document)
            self._save()

    def remove(self, collection: str, doc_id: str) -> bool:
        with self._lock:
            removed = self._collections.get(collection, {}).pop(doc_id, None) is not None
            self._save()
            return removed

    def replace_all(self, collection: str, documents: List[Dict[str, Any]]) -> None:
        """Mirror a full snapshot read from the primary store."""
        with self._lock:
            self._collections[collection] = {doc['id']: copy.deepcopy(doc) for doc in documents}
            self._save()
