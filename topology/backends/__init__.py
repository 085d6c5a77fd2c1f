"""
Key-value backends for topology documents.

create_backend() picks an implementation from a {"driver": ...} mapping:
- memory: in-process dictionary (tests, embedding)
- sql: SQLAlchemy table with a revision column
- etcd: etcd v3 JSON gateway
"""

from typing import Any, Dict, Optional, Union

from topology.backends.base import (
    BackendError,
    BackendUnavailable,
    CorruptValue,
    KeyNotFound,
    KVBackend,
    RevisionMismatch,
    VersionedValue,
)
from topology.backends.etcd import EtcdBackend
from topology.backends.memory import MemoryBackend
from topology.backends.sql import SqlBackend
from topology.config import default_backend_opts

BackendOpts = Union[KVBackend, Dict[str, Any]]


def create_backend(opts: Optional[BackendOpts] = None) -> KVBackend:
    """Build a backend from options; a KVBackend instance is returned as is."""
    if isinstance(opts, KVBackend):
        return opts
    if opts is None:
        opts = default_backend_opts()

    params = dict(opts)
    driver = str(params.pop("driver", "memory")).lower()
    if driver == "memory":
        return MemoryBackend()
    if driver == "sql":
        return SqlBackend(**params)
    if driver == "etcd":
        return EtcdBackend(**params)
    raise ValueError(f"unknown backend driver: {driver}")


__all__ = [
    "BackendError",
    "BackendUnavailable",
    "CorruptValue",
    "EtcdBackend",
    "KVBackend",
    "KeyNotFound",
    "MemoryBackend",
    "RevisionMismatch",
    "SqlBackend",
    "VersionedValue",
    "create_backend",
]
