"""
Topology: membership metadata of a sharded, replicated cluster

A topology document records which instances exist, how they are grouped into
replicasets, how they replicate from each other and which configuration each
one should run. It lives as one versioned record in a key-value store.
Responsibilities:
- Replicaset/instance/link CRUD through a compare-and-swap mutation loop
- Document invariants (names, master mode, immutable options, link graph)
- Per-instance runtime configuration and sharding configuration
"""

from topology.errors import (
    ConcurrencyExhausted,
    DeadlineExceeded,
    NameConflict,
    NotFound,
    StoreUnavailable,
    TopologyError,
    ValidationError,
)
from topology.models import (
    Instance,
    InstanceRole,
    InstanceStatus,
    MasterMode,
    Replicaset,
    TopologyDocument,
    TopologyOptions,
)
from topology.retry import RetryPolicy
from topology.store import TopologyStore, open_topology

__all__ = [
    "ConcurrencyExhausted",
    "DeadlineExceeded",
    "Instance",
    "InstanceRole",
    "InstanceStatus",
    "MasterMode",
    "NameConflict",
    "NotFound",
    "Replicaset",
    "RetryPolicy",
    "StoreUnavailable",
    "TopologyDocument",
    "TopologyError",
    "TopologyOptions",
    "TopologyStore",
    "ValidationError",
    "open_topology",
]
