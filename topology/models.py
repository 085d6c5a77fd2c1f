import enum
import uuid
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from topology.config import (
    DEFAULT_BUCKET_COUNT,
    DEFAULT_COLLECT_BUCKET_GARBAGE_INTERVAL,
    DEFAULT_DISCOVERY_MODE,
    DEFAULT_FAILOVER_PING_TIMEOUT,
    DEFAULT_REBALANCER_DISBALANCE_THRESHOLD,
    DEFAULT_REBALANCER_MAX_RECEIVING,
    DEFAULT_REBALANCER_MAX_SENDING,
    DEFAULT_SHARD_INDEX,
    DEFAULT_SYNC_TIMEOUT,
    REBALANCER_MAX_SENDING_MAX,
)

# ============================================================================
# ENUM DEFINITIONS
# ============================================================================

class MasterMode(str, enum.Enum):
    """How masters are assigned inside a replicaset"""
    SINGLE = "single"
    MULTIMASTER = "multimaster"
    AUTO = "auto"


class InstanceStatus(str, enum.Enum):
    """Instance lifecycle status"""
    ENABLED = "enabled"
    DISABLED = "disabled"
    EXPELLED = "expelled"


class ReplicasetStatus(str, enum.Enum):
    """Replicaset lifecycle status"""
    ACTIVE = "active"
    EXPELLED = "expelled"


class InstanceRole(str, enum.Enum):
    """Roles an instance plays in the sharded cluster"""
    STORAGE = "storage"
    ROUTER = "router"


class DiscoveryMode(str, enum.Enum):
    """Bucket discovery mode of routers"""
    ON = "on"
    OFF = "off"
    ONCE = "once"


def _new_uuid() -> str:
    return str(uuid.uuid4())


_MODEL_CONFIG = ConfigDict(extra="forbid", validate_assignment=True, use_enum_values=False)

# ============================================================================
# DOCUMENT SCHEMA
# ============================================================================

class Instance(BaseModel):
    """One addressable cluster node"""
    model_config = _MODEL_CONFIG

    name: str
    uuid: str = Field(default_factory=_new_uuid)
    advertise_uri: Optional[str] = None
    zone: Optional[Union[int, str]] = None
    roles: List[InstanceRole] = Field(default_factory=list)
    is_master: bool = False
    runtime_overrides: Dict[str, Any] = Field(default_factory=dict)
    status: InstanceStatus = InstanceStatus.ENABLED
    links: List[str] = Field(default_factory=list)  # upstream instance names

    @field_validator("roles")
    @classmethod
    def _sorted_roles(cls, value: List[InstanceRole]) -> List[InstanceRole]:
        return sorted(set(value), key=lambda role: role.value)

    @field_validator("links")
    @classmethod
    def _sorted_links(cls, value: List[str]) -> List[str]:
        return sorted(set(value))

    def has_role(self, role: InstanceRole) -> bool:
        return role in self.roles

    @property
    def is_expelled(self) -> bool:
        return self.status == InstanceStatus.EXPELLED

    @property
    def is_enabled(self) -> bool:
        return self.status == InstanceStatus.ENABLED


class Replicaset(BaseModel):
    """Named group of instances replicating the same dataset"""
    model_config = _MODEL_CONFIG

    name: str
    uuid: str = Field(default_factory=_new_uuid)
    master_mode: MasterMode = MasterMode.SINGLE
    failover_priority: List[str] = Field(default_factory=list)
    weight: float = Field(default=1, ge=0)
    runtime_defaults: Dict[str, Any] = Field(default_factory=dict)
    status: ReplicasetStatus = ReplicasetStatus.ACTIVE
    instances: Dict[str, Instance] = Field(default_factory=dict)

    @property
    def is_expelled(self) -> bool:
        return self.status == ReplicasetStatus.EXPELLED

    def masters(self) -> List[str]:
        """Names of non-expelled instances flagged as master, sorted."""
        return sorted(
            name for name, instance in self.instances.items()
            if instance.is_master and not instance.is_expelled
        )


class TopologyOptions(BaseModel):
    """Cluster-wide sharding settings"""
    model_config = _MODEL_CONFIG

    bucket_count: int = Field(default=DEFAULT_BUCKET_COUNT, gt=0)
    rebalancer_disbalance_threshold: float = Field(default=DEFAULT_REBALANCER_DISBALANCE_THRESHOLD, ge=0)
    rebalancer_max_receiving: int = Field(default=DEFAULT_REBALANCER_MAX_RECEIVING, gt=0)
    rebalancer_max_sending: int = Field(default=DEFAULT_REBALANCER_MAX_SENDING, gt=0, le=REBALANCER_MAX_SENDING_MAX)
    discovery_mode: DiscoveryMode = DiscoveryMode(DEFAULT_DISCOVERY_MODE)
    sync_timeout: float = Field(default=DEFAULT_SYNC_TIMEOUT, ge=0)
    collect_bucket_garbage_interval: float = Field(default=DEFAULT_COLLECT_BUCKET_GARBAGE_INTERVAL, gt=0)
    failover_ping_timeout: float = Field(default=DEFAULT_FAILOVER_PING_TIMEOUT, gt=0)
    shard_index: str = Field(default=DEFAULT_SHARD_INDEX, min_length=1)
    is_bootstrapped: bool = False
    runtime_defaults: Dict[str, Any] = Field(default_factory=dict)


# Options that cannot change once is_bootstrapped is true
IMMUTABLE_AFTER_BOOTSTRAP = ("bucket_count", "shard_index")

# Options forwarded to the sharding runtime
SHARDING_OPTION_FIELDS = (
    "bucket_count",
    "rebalancer_disbalance_threshold",
    "rebalancer_max_receiving",
    "rebalancer_max_sending",
    "discovery_mode",
    "sync_timeout",
    "shard_index",
    "collect_bucket_garbage_interval",
    "failover_ping_timeout",
)


class TopologyDocument(BaseModel):
    """The single versioned record describing one cluster"""
    model_config = _MODEL_CONFIG

    name: str
    revision: int = 0  # supplied by the store on read, never persisted
    options: TopologyOptions = Field(default_factory=TopologyOptions)
    replicasets: Dict[str, Replicaset] = Field(default_factory=dict)
    weights: Dict[str, Dict[str, float]] = Field(default_factory=dict)

    def to_value(self) -> Dict[str, Any]:
        """Serializable value persisted in the key-value store."""
        return self.model_dump(mode="json", exclude={"revision"})

    @classmethod
    def from_value(cls, value: Dict[str, Any], revision: int) -> "TopologyDocument":
        data = dict(value)
        data["revision"] = revision
        return cls.model_validate(data)

    def iter_instances(self):
        """Yield (replicaset, instance) pairs in name order."""
        for rs_name in sorted(self.replicasets):
            replicaset = self.replicasets[rs_name]
            for inst_name in sorted(replicaset.instances):
                yield replicaset, replicaset.instances[inst_name]
