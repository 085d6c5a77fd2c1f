"""
Replicaset and replication-link helpers over a TopologyDocument.

Instances are stored under their replicaset, while names are unique across the
whole document, so most lookups go through find_instance(). Links are stored
on the downstream instance as the set of upstream names it replicates from.
"""

from typing import Dict, Iterable, List, Optional, Tuple

from topology.errors import make_error
from topology.models import Instance, Replicaset, TopologyDocument


def find_replicaset(doc: TopologyDocument, replicaset_name: str) -> Replicaset:
    replicaset = doc.replicasets.get(replicaset_name)
    if replicaset is None:
        raise make_error("REPLICASET_NOT_FOUND", replicaset_name=replicaset_name)
    return replicaset


def lookup_instance(doc: TopologyDocument, instance_name: str) -> Optional[Tuple[Replicaset, Instance]]:
    for replicaset in doc.replicasets.values():
        instance = replicaset.instances.get(instance_name)
        if instance is not None:
            return replicaset, instance
    return None


def find_instance(doc: TopologyDocument, instance_name: str) -> Tuple[Replicaset, Instance]:
    found = lookup_instance(doc, instance_name)
    if found is None:
        raise make_error("INSTANCE_NOT_FOUND", instance_name=instance_name)
    return found


def find_active_instance(doc: TopologyDocument, instance_name: str) -> Tuple[Replicaset, Instance]:
    """Like find_instance() but rejects expelled instances."""
    replicaset, instance = find_instance(doc, instance_name)
    if instance.is_expelled:
        raise make_error("INSTANCE_EXPELLED", instance_name=instance_name)
    return replicaset, instance


def instance_owners(doc: TopologyDocument) -> Dict[str, List[str]]:
    """Map every instance name to the replicasets that hold it."""
    owners: Dict[str, List[str]] = {}
    for rs_name in sorted(doc.replicasets):
        for inst_name in doc.replicasets[rs_name].instances:
            owners.setdefault(inst_name, []).append(rs_name)
    return owners


def live_instances(replicaset: Replicaset) -> List[str]:
    """Sorted names of non-expelled instances of a replicaset."""
    return sorted(name for name, inst in replicaset.instances.items() if not inst.is_expelled)


def _link_members(
    doc: TopologyDocument, upstream: str, downstreams: Iterable[str]
) -> Tuple[Replicaset, List[Instance]]:
    upstream_rs, _ = find_active_instance(doc, upstream)
    members = []
    for name in downstreams:
        if name == upstream:
            raise make_error("SELF_LINK", instance_name=name, field="downstreams")
        replicaset, instance = find_active_instance(doc, name)
        if replicaset.name != upstream_rs.name:
            raise make_error(
                "WRONG_REPLICASET",
                instance_name=name,
                replicaset_name=replicaset.name,
                expected_replicaset=upstream_rs.name,
            )
        members.append(instance)
    return upstream_rs, members


def add_links(doc: TopologyDocument, upstream: str, downstreams: Iterable[str]) -> TopologyDocument:
    """Make every downstream replicate from upstream."""
    _, members = _link_members(doc, upstream, list(downstreams))
    for instance in members:
        instance.links = instance.links + [upstream]
    return doc


def remove_links(doc: TopologyDocument, upstream: str, downstreams: Iterable[str]) -> TopologyDocument:
    """Drop upstream from every downstream's links; absent links are ignored."""
    find_instance(doc, upstream)
    for name in downstreams:
        _, instance = find_instance(doc, name)
        if upstream in instance.links:
            instance.links = [link for link in instance.links if link != upstream]
    return doc


def upstreams(doc: TopologyDocument, instance: Instance) -> List[Instance]:
    """Linked upstream instances that still exist, in name order."""
    result = []
    for name in instance.links:
        found = lookup_instance(doc, name)
        if found is not None:
            result.append(found[1])
    return result


def full_mesh(doc: TopologyDocument, replicaset_name: str) -> TopologyDocument:
    """Link every live instance of a replicaset to every other one."""
    replicaset = find_replicaset(doc, replicaset_name)
    names = live_instances(replicaset)
    for name in names:
        instance = replicaset.instances[name]
        instance.links = instance.links + [peer for peer in names if peer != name]
    return doc
