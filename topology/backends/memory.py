"""
In-process backend.

Thread-safe dictionary with per-key revisions. Values are stored serialized so
callers never share mutable state with the store. Suitable for tests and for
embedding a topology in a single process.
"""

import json
import logging
import threading
from typing import Any, Dict, Optional, Tuple

from topology.backends.base import (
    CorruptValue,
    KeyNotFound,
    KVBackend,
    RevisionMismatch,
    VersionedValue,
)

logger = logging.getLogger(__name__)


class MemoryBackend(KVBackend):
    driver = "memory"

    def __init__(self):
        self._lock = threading.Lock()
        self._data: Dict[str, Tuple[str, int]] = {}

    def get(self, key: str) -> VersionedValue:
        with self._lock:
            entry = self._data.get(key)
        if entry is None:
            raise KeyNotFound(key)
        raw, revision = entry
        try:
            value = json.loads(raw)
        except ValueError as e:
            raise CorruptValue(key, str(e)) from e
        return VersionedValue(value=value, revision=revision)

    def put(self, key: str, value: Dict[str, Any], expected_revision: Optional[int]) -> int:
        raw = json.dumps(value, sort_keys=True)
        with self._lock:
            entry = self._data.get(key)
            current = entry[1] if entry is not None else None
            if expected_revision is None:
                if entry is not None:
                    raise RevisionMismatch(key, expected_revision, current)
                new_revision = 0
            else:
                if entry is None or current != expected_revision:
                    raise RevisionMismatch(key, expected_revision, current)
                new_revision = current + 1
            self._data[key] = (raw, new_revision)
        logger.debug(f"Stored '{key}' at revision {new_revision}")
        return new_revision

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self):
        with self._lock:
            return sorted(self._data)
