"""
Key-value backend contract.

A backend stores opaque JSON-compatible values under string keys and supports
a single-key compare-and-swap put. Every key carries its own revision counter:
0 when the key is created, +1 on every successful put.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional


class BackendError(Exception):
    """Base class for backend failures (internal to the topology layer)."""


class KeyNotFound(BackendError):
    """The key does not exist."""


class RevisionMismatch(BackendError):
    """Conditional put lost: the stored revision differs from the expected one."""

    def __init__(self, key: str, expected: Optional[int], actual: Optional[int] = None):
        super().__init__(f"revision mismatch on '{key}': expected {expected}, actual {actual}")
        self.key = key
        self.expected = expected
        self.actual = actual


class BackendUnavailable(BackendError):
    """Transport or storage failure; the operation may be retried."""


class CorruptValue(BackendError):
    """Stored bytes cannot be decoded as a JSON document. Never retried."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"undecodable value under '{key}': {reason}")
        self.key = key
        self.reason = reason


@dataclass
class VersionedValue:
    value: Dict[str, Any]
    revision: int


class KVBackend(ABC):
    """Versioned get / compare-and-swap put on opaque keys."""

    driver = "abstract"

    @abstractmethod
    def get(self, key: str) -> VersionedValue:
        """
        Read a key.

        Raises:
            KeyNotFound: key is absent
            CorruptValue: stored value is not a JSON document
            BackendUnavailable: transport failure
        """

    @abstractmethod
    def put(self, key: str, value: Dict[str, Any], expected_revision: Optional[int]) -> int:
        """
        Conditionally write a key.

        Args:
            key: Key to write
            value: JSON-compatible document
            expected_revision: Revision the caller read, or None to create a
                key that must not exist yet

        Returns:
            New revision of the key

        Raises:
            RevisionMismatch: precondition failed
            BackendUnavailable: transport failure
        """

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove a key. Returns False if it did not exist."""

    def close(self) -> None:
        """Release connections held by the backend."""
