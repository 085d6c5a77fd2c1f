"""
Named topology transforms.

Every builder checks its arguments up front and returns a transform: a
function that edits a freshly read TopologyDocument in place and returns it.
Transforms raise taxonomy errors and never touch the store; TopologyStore.mutate
applies them inside the compare-and-swap loop, so a transform may run several
times against different snapshots.

Transforms carry two attributes read by the store:
- operation: name used in logs
- validate_graph: False for status toggles that skip whole-document validation
"""

from typing import Any, Callable, Dict, Iterable, List, Optional, Type, TypeVar, Union

import pydantic

from topology.errors import make_error
from topology.graph import (
    add_links,
    find_active_instance,
    find_replicaset,
    full_mesh,
    live_instances,
    remove_links,
)
from topology.models import (
    Instance,
    InstanceStatus,
    Replicaset,
    ReplicasetStatus,
    TopologyDocument,
    TopologyOptions,
)
from topology.validator import (
    INSTANCE_KIND,
    REPLICASET_KIND,
    check_failover_priority,
    check_master_mode_transition,
    check_unique,
    from_pydantic,
    require_identifier,
)

Transform = Callable[[TopologyDocument], TopologyDocument]
ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)

INSTANCE_OPTIONS = ("advertise_uri", "zone", "roles", "is_master", "runtime_overrides", "status")
REPLICASET_OPTIONS = ("master_mode", "failover_priority", "weight", "runtime_defaults")
TOPOLOGY_OPTIONS = tuple(TopologyOptions.model_fields) + ("weights",)


def _named(operation: str, transform: Transform, validate_graph: bool = True) -> Transform:
    transform.operation = operation
    transform.validate_graph = validate_graph
    return transform


def _check_option_names(kind: str, opts: Dict[str, Any], allowed: Iterable[str]) -> Dict[str, Any]:
    opts = dict(opts or {})
    allowed = set(allowed)
    for key in sorted(opts):
        if key not in allowed:
            raise make_error("UNKNOWN_OPTION", kind=kind, field=key)
    return opts


def _build(model: Type[ModelT], data: Dict[str, Any]) -> ModelT:
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        raise from_pydantic(e) from e


def _merged(current: pydantic.BaseModel, model: Type[ModelT], opts: Dict[str, Any]) -> ModelT:
    data = current.model_dump()
    data.update(opts)
    return _build(model, data)


def _reject_expelled_status(opts: Dict[str, Any]) -> None:
    if opts.get("status") in (InstanceStatus.EXPELLED, InstanceStatus.EXPELLED.value):
        raise make_error(
            "INVALID_OPTION", field="status",
            reason="use delete_instance to expel an instance",
        )


def _active_replicaset(doc: TopologyDocument, replicaset_name: str) -> Replicaset:
    replicaset = find_replicaset(doc, replicaset_name)
    if replicaset.is_expelled:
        raise make_error("REPLICASET_EXPELLED", replicaset_name=replicaset_name)
    return replicaset


def _as_list(names: Union[str, Iterable[str]]) -> List[str]:
    if isinstance(names, str):
        return [names]
    return list(names)


# ============================================================================
# REPLICASETS
# ============================================================================

def new_replicaset(
    name: str,
    opts: Optional[Dict[str, Any]] = None,
    instances: Optional[Iterable[str]] = None,
) -> Transform:
    """
    Add a replicaset, optionally with bare instances.

    Args:
        name: Replicaset name, unique within the document
        opts: Optional master_mode, failover_priority, weight, runtime_defaults
        instances: Names of instances created with default options
    """
    require_identifier(REPLICASET_KIND, name)
    opts = _check_option_names(REPLICASET_KIND, opts, REPLICASET_OPTIONS)
    members = _as_list(instances or [])
    for member in members:
        require_identifier(INSTANCE_KIND, member, field="instances")
    if len(set(members)) != len(members):
        raise make_error("INVALID_OPTION", field="instances", reason="duplicate instance names")
    # Schema errors surface before the first read
    template = _build(Replicaset, dict(opts, name=name))
    template.instances = {member: _build(Instance, {"name": member}) for member in members}
    check_failover_priority(template)

    def transform(doc: TopologyDocument) -> TopologyDocument:
        if not check_unique(doc, REPLICASET_KIND, name):
            raise make_error("NAME_CONFLICT", kind=REPLICASET_KIND, name=name)
        for member in members:
            if not check_unique(doc, INSTANCE_KIND, member):
                raise make_error("NAME_CONFLICT", kind=INSTANCE_KIND, name=member)
        doc.replicasets[name] = template.model_copy(deep=True)
        return doc

    return _named("new_replicaset", transform)


def set_replicaset_property(name: str, opts: Dict[str, Any]) -> Transform:
    opts = _check_option_names(REPLICASET_KIND, opts, REPLICASET_OPTIONS)

    def transform(doc: TopologyDocument) -> TopologyDocument:
        replicaset = _active_replicaset(doc, name)
        updated = _merged(replicaset, Replicaset, opts)
        if "master_mode" in opts:
            check_master_mode_transition(replicaset, updated.master_mode)
        if "failover_priority" in opts:
            check_failover_priority(updated)
        doc.replicasets[name] = updated
        return doc

    return _named("set_replicaset_property", transform)


def delete_replicaset(name: str) -> Transform:
    """Soft delete: the replicaset is marked expelled and its name stays reserved."""

    def transform(doc: TopologyDocument) -> TopologyDocument:
        replicaset = _active_replicaset(doc, name)
        remaining = live_instances(replicaset)
        if remaining:
            raise make_error("REPLICASET_NOT_EMPTY", replicaset_name=name, instances=remaining)
        replicaset.status = ReplicasetStatus.EXPELLED
        return doc

    return _named("delete_replicaset", transform)


def link_replicaset_full_mesh(name: str) -> Transform:
    """Make every live instance of the replicaset replicate from all the others."""

    def transform(doc: TopologyDocument) -> TopologyDocument:
        _active_replicaset(doc, name)
        return full_mesh(doc, name)

    return _named("link_replicaset_full_mesh", transform)


# ============================================================================
# INSTANCES
# ============================================================================

def new_instance(replicaset_name: str, instance_name: str, opts: Optional[Dict[str, Any]] = None) -> Transform:
    """
    Add an instance to an existing replicaset.

    Args:
        replicaset_name: Owning replicaset; must exist and not be expelled
        instance_name: Instance name, unique across the whole document
        opts: Optional advertise_uri, zone, roles, is_master,
            runtime_overrides, status (enabled/disabled)
    """
    require_identifier(REPLICASET_KIND, replicaset_name, field="replicaset_name")
    require_identifier(INSTANCE_KIND, instance_name)
    opts = _check_option_names(INSTANCE_KIND, opts, INSTANCE_OPTIONS)
    _reject_expelled_status(opts)
    template = _build(Instance, dict(opts, name=instance_name))

    def transform(doc: TopologyDocument) -> TopologyDocument:
        replicaset = _active_replicaset(doc, replicaset_name)
        if not check_unique(doc, INSTANCE_KIND, instance_name):
            raise make_error("NAME_CONFLICT", kind=INSTANCE_KIND, name=instance_name)
        replicaset.instances[instance_name] = template.model_copy(deep=True)
        return doc

    return _named("new_instance", transform)


def set_instance_property(name: str, opts: Dict[str, Any]) -> Transform:
    opts = _check_option_names(INSTANCE_KIND, opts, INSTANCE_OPTIONS)
    _reject_expelled_status(opts)

    def transform(doc: TopologyDocument) -> TopologyDocument:
        replicaset, instance = find_active_instance(doc, name)
        replicaset.instances[name] = _merged(instance, Instance, opts)
        return doc

    return _named("set_instance_property", transform)


def delete_instance(name: str) -> Transform:
    """
    Soft delete: mark the instance expelled, drop its master flag and remove it
    from the failover priority. The record itself is kept.
    """

    def transform(doc: TopologyDocument) -> TopologyDocument:
        replicaset, instance = find_active_instance(doc, name)
        instance.is_master = False
        instance.status = InstanceStatus.EXPELLED
        if name in replicaset.failover_priority:
            replicaset.failover_priority = [n for n in replicaset.failover_priority if n != name]
        return doc

    return _named("delete_instance", transform)


def _set_status(name: str, status: InstanceStatus, operation: str) -> Transform:
    def transform(doc: TopologyDocument) -> TopologyDocument:
        _, instance = find_active_instance(doc, name)
        instance.status = status
        return doc

    return _named(operation, transform, validate_graph=False)


def set_instance_reachable(name: str) -> Transform:
    return _set_status(name, InstanceStatus.ENABLED, "set_instance_reachable")


def set_instance_unreachable(name: str) -> Transform:
    return _set_status(name, InstanceStatus.DISABLED, "set_instance_unreachable")


# ============================================================================
# LINKS
# ============================================================================

def new_instance_link(upstream: str, downstreams: Union[str, Iterable[str]]) -> Transform:
    """Make each downstream instance replicate from upstream."""
    downstreams = _as_list(downstreams)

    def transform(doc: TopologyDocument) -> TopologyDocument:
        return add_links(doc, upstream, downstreams)

    return _named("new_instance_link", transform)


def delete_instance_link(upstream: str, downstreams: Union[str, Iterable[str]]) -> Transform:
    downstreams = _as_list(downstreams)

    def transform(doc: TopologyDocument) -> TopologyDocument:
        return remove_links(doc, upstream, downstreams)

    return _named("delete_instance_link", transform)


# ============================================================================
# TOPOLOGY
# ============================================================================

def set_topology_property(opts: Dict[str, Any]) -> Transform:
    """
    Change cluster-wide options and/or the zone weight matrix.

    Immutable options are checked by TopologyStore.mutate against the stored
    document, so a rejected change never produces a write.
    """
    opts = _check_option_names("topology", opts, TOPOLOGY_OPTIONS)
    weights = opts.pop("weights", None)

    def transform(doc: TopologyDocument) -> TopologyDocument:
        if opts:
            doc.options = _merged(doc.options, TopologyOptions, opts)
        if weights is not None:
            try:
                doc.weights = weights
            except pydantic.ValidationError as e:
                raise from_pydantic(e) from e
        return doc

    return _named("set_topology_property", transform)


def batch(*transforms: Transform) -> Transform:
    """Apply several transforms in order as one atomic write."""
    transforms = list(transforms)

    def transform(doc: TopologyDocument) -> TopologyDocument:
        for step in transforms:
            doc = step(doc)
        return doc

    operations = [getattr(step, "operation", getattr(step, "__name__", "transform")) for step in transforms]
    return _named(
        "batch(" + ", ".join(operations) + ")",
        transform,
        validate_graph=not transforms or any(getattr(step, "validate_graph", True) for step in transforms),
    )
