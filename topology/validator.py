"""
Topology validation rules.

Pure functions: identifier grammar, name uniqueness, option mutability,
master-mode transitions and the whole-document invariants that must hold after
every committed mutation. Failures raise ValidationError from topology.errors.
"""

import re
from typing import Any, Dict, Iterable, Optional
from urllib.parse import urlsplit

import pydantic

from topology.config import IDENTIFIER_MAX_LENGTH
from topology.errors import ValidationError, make_error
from topology.graph import instance_owners, lookup_instance
from topology.models import (
    IMMUTABLE_AFTER_BOOTSTRAP,
    MasterMode,
    Replicaset,
    TopologyDocument,
    TopologyOptions,
)

_IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_-]*")

REPLICASET_KIND = "replicaset"
INSTANCE_KIND = "instance"

# Runtime keys computed from the topology itself
DERIVED_RUNTIME_KEYS = ("read_only", "replication")


def validate_identifier(value: Any) -> bool:
    """True iff value is a non-empty identifier of at most 63 characters."""
    if not isinstance(value, str) or not value:
        return False
    if len(value) > IDENTIFIER_MAX_LENGTH:
        return False
    return _IDENTIFIER_RE.fullmatch(value) is not None


def require_identifier(kind: str, name: Any, field: str = "name") -> None:
    if not validate_identifier(name):
        raise make_error("INVALID_IDENTIFIER", kind=kind, name=name, field=field)


def check_unique(doc: TopologyDocument, kind: str, name: str) -> bool:
    """True iff no replicaset/instance in doc already uses name."""
    if kind == REPLICASET_KIND:
        return name not in doc.replicasets
    if kind == INSTANCE_KIND:
        return lookup_instance(doc, name) is None
    raise ValueError(f"unknown kind: {kind}")


def check_master_mode_transition(replicaset: Replicaset, new_mode: MasterMode) -> None:
    """Switching to single mode requires at most one current master."""
    if MasterMode(new_mode) != MasterMode.SINGLE:
        return
    masters = replicaset.masters()
    if len(masters) > 1:
        raise make_error(
            "MASTER_MODE_TRANSITION",
            replicaset_name=replicaset.name,
            master_mode=MasterMode.SINGLE.value,
            masters=masters,
            field="master_mode",
        )


def check_immutable_options(old_options: TopologyOptions, new_options: TopologyOptions) -> None:
    """Reject changes to bootstrap-time options once the cluster is bootstrapped."""
    if not old_options.is_bootstrapped:
        return
    for field in IMMUTABLE_AFTER_BOOTSTRAP:
        if getattr(old_options, field) != getattr(new_options, field):
            raise make_error("IMMUTABLE_OPTION", field=field)
    if not new_options.is_bootstrapped:
        raise make_error("IMMUTABLE_OPTION", field="is_bootstrapped")


def check_uri(uri: Any, field: str) -> None:
    """Accept [scheme://][user[:password]@]host:port."""
    if not isinstance(uri, str) or not uri.strip():
        raise make_error("INVALID_OPTION", field=field, reason="URI must be a non-empty string")
    candidate = uri if "://" in uri else f"//{uri}"
    try:
        parsed = urlsplit(candidate)
        port = parsed.port
    except ValueError as e:
        raise make_error("INVALID_OPTION", field=field, reason=f"invalid URI '{uri}': {e}")
    if not parsed.hostname or port is None:
        raise make_error("INVALID_OPTION", field=field, reason=f"URI '{uri}' must contain host and port")


def check_runtime_options(runtime: Dict[str, Any], field: str) -> None:
    for key in DERIVED_RUNTIME_KEYS:
        if key in runtime:
            raise make_error(
                "INVALID_OPTION", field=f"{field}.{key}",
                reason="derived from the topology and cannot be set",
            )


def check_weights(weights: Dict[str, Dict[str, float]]) -> None:
    for zone, distances in weights.items():
        for other_zone, weight in distances.items():
            if weight < 0:
                raise make_error(
                    "INVALID_OPTION", field=f"weights.{zone}.{other_zone}",
                    reason="zone weight must be non-negative",
                )
            if zone == other_zone and weight != 0:
                raise make_error(
                    "INVALID_OPTION", field=f"weights.{zone}.{other_zone}",
                    reason="weight of own zone must be 0",
                )


def check_single_master(replicaset: Replicaset) -> None:
    if replicaset.master_mode != MasterMode.SINGLE:
        return
    masters = replicaset.masters()
    if len(masters) > 1:
        raise make_error(
            "MULTIPLE_MASTERS", replicaset_name=replicaset.name, masters=masters, field="is_master"
        )


def check_failover_priority(replicaset: Replicaset, priority: Optional[Iterable[str]] = None) -> None:
    names = list(replicaset.failover_priority if priority is None else priority)
    if len(set(names)) != len(names):
        raise make_error(
            "INVALID_FAILOVER_PRIORITY", replicaset_name=replicaset.name,
            reason="duplicate instance names", field="failover_priority",
        )
    for name in names:
        if name not in replicaset.instances:
            raise make_error(
                "INVALID_FAILOVER_PRIORITY", replicaset_name=replicaset.name,
                reason=f"instance '{name}' is not a member", field="failover_priority",
            )


def check_links(doc: TopologyDocument, replicaset: Replicaset) -> None:
    for name, instance in replicaset.instances.items():
        for upstream in instance.links:
            if upstream == name:
                raise make_error("SELF_LINK", instance_name=name, field="links")
            found = lookup_instance(doc, upstream)
            if found is None:
                raise make_error("INSTANCE_NOT_FOUND", instance_name=upstream)
            if found[0].name != replicaset.name:
                raise make_error(
                    "WRONG_REPLICASET",
                    instance_name=upstream,
                    replicaset_name=found[0].name,
                    expected_replicaset=replicaset.name,
                )


def validate_document(doc: TopologyDocument) -> None:
    """Check every topology invariant on a candidate document."""
    check_runtime_options(doc.options.runtime_defaults, "options.runtime_defaults")
    for rs_key, replicaset in doc.replicasets.items():
        require_identifier(REPLICASET_KIND, replicaset.name)
        if rs_key != replicaset.name:
            raise make_error("INVALID_OPTION", field=f"replicasets.{rs_key}", reason="key does not match name")
        check_runtime_options(replicaset.runtime_defaults, "runtime_defaults")
        for inst_key, instance in replicaset.instances.items():
            require_identifier(INSTANCE_KIND, instance.name)
            if inst_key != instance.name:
                raise make_error("INVALID_OPTION", field=f"instances.{inst_key}", reason="key does not match name")
            if instance.advertise_uri is not None:
                check_uri(instance.advertise_uri, "advertise_uri")
            check_runtime_options(instance.runtime_overrides, "runtime_overrides")
            if "listen" in instance.runtime_overrides:
                check_uri(instance.runtime_overrides["listen"], "runtime_overrides.listen")

    for inst_name, owners in instance_owners(doc).items():
        if len(owners) > 1:
            raise make_error("DUPLICATE_INSTANCE", instance_name=inst_name, replicasets=owners)

    for replicaset in doc.replicasets.values():
        check_single_master(replicaset)
        check_failover_priority(replicaset)
        check_links(doc, replicaset)

    check_weights(doc.weights)


def from_pydantic(error: pydantic.ValidationError) -> ValidationError:
    """Convert a schema validation failure into the taxonomy error."""
    details = error.errors()
    first = details[0] if details else {"loc": (), "msg": str(error)}
    field = ".".join(str(part) for part in first.get("loc", ())) or "value"
    return make_error("INVALID_OPTION", field=field, reason=first.get("msg", "invalid value"))
