"""
Configuration projection.

Pure functions turning a TopologyDocument snapshot into the configuration
consumed by cluster nodes:
- get_instance_conf: runtime configuration of one node
- get_routers / get_storages: address lists per role
- get_sharding_config: cluster-wide sharding runtime configuration

Nothing here reads the store or changes the document, so the functions are
safe on any snapshot without coordination.
"""

import copy
import logging
from typing import Any, Dict, List

from topology.errors import make_error
from topology.graph import find_instance, find_replicaset, live_instances, upstreams
from topology.models import (
    InstanceRole,
    MasterMode,
    SHARDING_OPTION_FIELDS,
    TopologyDocument,
)

logger = logging.getLogger(__name__)


def get_instance_conf(doc: TopologyDocument, instance_name: str) -> Dict[str, Any]:
    """
    Build the configuration of one instance.

    Runtime settings are merged with instance overrides taking priority over
    replicaset defaults, which take priority over topology-wide defaults.
    read_only and replication are always computed from the topology; stored
    runtime maps may not carry them.
    Expelled instances still resolve; their status tells the caller not to run them.

    Raises:
        NotFound: instance is absent from the document
    """
    replicaset, instance = find_instance(doc, instance_name)

    runtime: Dict[str, Any] = {}
    runtime.update(copy.deepcopy(doc.options.runtime_defaults))
    runtime.update(copy.deepcopy(replicaset.runtime_defaults))
    runtime.update(copy.deepcopy(instance.runtime_overrides))
    if instance.advertise_uri and "listen" not in runtime:
        runtime["listen"] = instance.advertise_uri
    runtime["read_only"] = not instance.is_master
    runtime["replication"] = sorted(
        upstream.advertise_uri
        for upstream in upstreams(doc, instance)
        if upstream.is_enabled and upstream.advertise_uri
    )

    return {
        "name": instance.name,
        "replicaset_name": replicaset.name,
        "instance_uuid": instance.uuid,
        "replicaset_uuid": replicaset.uuid,
        "advertise_uri": instance.advertise_uri,
        "zone": instance.zone,
        "roles": [role.value for role in instance.roles],
        "is_master": instance.is_master,
        "status": instance.status.value,
        "runtime": runtime,
    }


def _instances_with_role(doc: TopologyDocument, role: InstanceRole) -> List[Dict[str, Any]]:
    result = []
    for replicaset, instance in doc.iter_instances():
        if replicaset.is_expelled or not instance.is_enabled or not instance.has_role(role):
            continue
        result.append({
            "name": instance.name,
            "uri": instance.advertise_uri,
            "is_master": instance.is_master,
            "replicaset_name": replicaset.name,
        })
    return sorted(result, key=lambda entry: entry["name"])


def get_routers(doc: TopologyDocument) -> List[Dict[str, Any]]:
    """Enabled router instances, sorted by name."""
    return _instances_with_role(doc, InstanceRole.ROUTER)


def get_storages(doc: TopologyDocument) -> List[Dict[str, Any]]:
    """Enabled storage instances, sorted by name."""
    return _instances_with_role(doc, InstanceRole.STORAGE)


def get_sharding_config(doc: TopologyDocument) -> Dict[str, Any]:
    """
    Build the sharding runtime configuration.

    Only enabled instances with an advertise_uri appear as replicas.
    Replicasets that are expelled or have no such replica are left out.

    Raises:
        ValidationError: INVALID_SHARDING_CONFIG when the result would be
            rejected by the sharding runtime
    """
    options = doc.options.model_dump(mode="json")
    config: Dict[str, Any] = {field: options[field] for field in SHARDING_OPTION_FIELDS}
    if doc.weights:
        config["weights"] = copy.deepcopy(doc.weights)

    sharding: Dict[str, Any] = {}
    for rs_name in sorted(doc.replicasets):
        replicaset = doc.replicasets[rs_name]
        if replicaset.is_expelled:
            continue
        replicas = {}
        for inst_name in sorted(replicaset.instances):
            instance = replicaset.instances[inst_name]
            if not instance.is_enabled:
                continue
            if not instance.advertise_uri:
                logger.warning(f"Instance '{inst_name}' has no advertise_uri, skipped in sharding config")
                continue
            replicas[inst_name] = {
                "uri": instance.advertise_uri,
                "name": instance.name,
                "is_master": instance.is_master,
                "zone": instance.zone,
            }
        if not replicas:
            continue
        entry = {"weight": replicaset.weight, "replicas": replicas}
        if replicaset.master_mode == MasterMode.AUTO:
            entry["master"] = "auto"
        sharding[rs_name] = entry

    config["sharding"] = sharding
    _check_sharding_config(doc, config)
    return config


def _check_sharding_config(doc: TopologyDocument, config: Dict[str, Any]) -> None:
    seen_uris: Dict[str, str] = {}
    for rs_name, entry in config["sharding"].items():
        masters = []
        for inst_name, replica in entry["replicas"].items():
            uri = replica["uri"]
            if uri in seen_uris:
                raise make_error(
                    "INVALID_SHARDING_CONFIG",
                    reason=f"instances '{seen_uris[uri]}' and '{inst_name}' share URI '{uri}'",
                )
            seen_uris[uri] = inst_name
            if replica["is_master"]:
                masters.append(inst_name)
        if doc.replicasets[rs_name].master_mode == MasterMode.SINGLE and len(masters) > 1:
            raise make_error(
                "INVALID_SHARDING_CONFIG",
                reason=f"replicaset '{rs_name}' has several masters: {masters}",
            )
    if config["sharding"] and not any(entry["weight"] > 0 for entry in config["sharding"].values()):
        raise make_error("INVALID_SHARDING_CONFIG", reason="at least one replicaset must have positive weight")


def get_replicaset_options(doc: TopologyDocument, replicaset_name: str) -> Dict[str, Any]:
    replicaset = find_replicaset(doc, replicaset_name)
    options = replicaset.model_dump(mode="json", exclude={"instances"})
    options["replicas"] = live_instances(replicaset)
    return options


def get_topology_options(doc: TopologyDocument) -> Dict[str, Any]:
    options = doc.options.model_dump(mode="json")
    options["weights"] = copy.deepcopy(doc.weights)
    options["replicasets"] = sorted(
        name for name, replicaset in doc.replicasets.items() if not replicaset.is_expelled
    )
    return options
