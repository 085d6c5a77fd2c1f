"""
Tests for the named transforms applied directly to documents.
"""
import pytest

from topology import operations
from topology.errors import NameConflict, NotFound, ValidationError
from topology.models import InstanceRole, InstanceStatus, ReplicasetStatus, TopologyDocument


@pytest.fixture
def doc():
    doc = TopologyDocument(name="t")
    doc = operations.new_replicaset("rs1")(doc)
    doc = operations.new_replicaset("rs2")(doc)
    doc = operations.new_instance("rs1", "a", {"advertise_uri": "h:1", "is_master": True})(doc)
    doc = operations.new_instance("rs1", "b", {"advertise_uri": "h:2"})(doc)
    doc = operations.new_instance("rs2", "c", {"advertise_uri": "h:3"})(doc)
    return doc


def test_transforms_are_named():
    transform = operations.new_replicaset("rs1")

    assert transform.operation == "new_replicaset"
    assert transform.validate_graph is True
    assert operations.set_instance_unreachable("a").validate_graph is False


def test_new_replicaset_defaults(doc):
    rs = doc.replicasets["rs1"]

    assert rs.master_mode.value == "single"
    assert rs.weight == 1
    assert rs.failover_priority == []
    assert rs.status == ReplicasetStatus.ACTIVE
    assert rs.uuid


def test_new_replicaset_invalid_name_fails_before_read():
    with pytest.raises(ValidationError) as exc:
        operations.new_replicaset("1rs")

    assert exc.value.name == "INVALID_IDENTIFIER"


def test_new_replicaset_bad_option_value():
    with pytest.raises(ValidationError) as exc:
        operations.new_replicaset("rs3", {"weight": -1})

    assert exc.value.name == "INVALID_OPTION"
    assert exc.value.field == "weight"


def test_new_replicaset_unknown_option():
    with pytest.raises(ValidationError) as exc:
        operations.new_replicaset("rs3", {"bucket_count": 10})

    assert exc.value.name == "UNKNOWN_OPTION"


def test_new_replicaset_conflict(doc):
    with pytest.raises(NameConflict):
        operations.new_replicaset("rs1")(doc)


def test_new_replicaset_with_instances(doc):
    doc = operations.new_replicaset("rs3", {"failover_priority": ["e", "d"]}, instances=["d", "e"])(doc)
    rs = doc.replicasets["rs3"]

    assert sorted(rs.instances) == ["d", "e"]
    assert rs.instances["d"].status == InstanceStatus.ENABLED
    assert rs.instances["d"].advertise_uri is None
    assert rs.failover_priority == ["e", "d"]


def test_new_replicaset_instance_name_conflict(doc):
    with pytest.raises(NameConflict) as exc:
        operations.new_replicaset("rs3", instances=["d", "a"])(doc)

    assert exc.value.fields == {"kind": "instance", "name": "a"}
    assert "rs3" not in doc.replicasets


@pytest.mark.parametrize("instances, name", [
    (["d", "d"], "INVALID_OPTION"),
    (["9d"], "INVALID_IDENTIFIER"),
])
def test_new_replicaset_bad_instances_fail_before_read(instances, name):
    with pytest.raises(ValidationError) as exc:
        operations.new_replicaset("rs3", instances=instances)

    assert exc.value.name == name
    assert exc.value.field == "instances"


def test_new_instance_conflict_across_replicasets(doc):
    with pytest.raises(NameConflict):
        operations.new_instance("rs2", "a")(doc)


def test_new_instance_missing_replicaset(doc):
    with pytest.raises(NotFound) as exc:
        operations.new_instance("rs9", "z")(doc)

    assert exc.value.name == "REPLICASET_NOT_FOUND"


def test_new_instance_rejects_expelled_status():
    with pytest.raises(ValidationError) as exc:
        operations.new_instance("rs1", "z", {"status": "expelled"})

    assert exc.value.field == "status"


def test_new_instance_rejects_unknown_role():
    with pytest.raises(ValidationError) as exc:
        operations.new_instance("rs1", "z", {"roles": ["storage", "arbiter"]})

    assert exc.value.name == "INVALID_OPTION"
    assert exc.value.field.startswith("roles")


def test_new_instance_roles_sorted_and_unique(doc):
    doc = operations.new_instance("rs2", "d", {"roles": ["storage", "router", "storage"]})(doc)

    assert doc.replicasets["rs2"].instances["d"].roles == [InstanceRole.ROUTER, InstanceRole.STORAGE]


def test_set_instance_property_merges(doc):
    doc = operations.set_instance_property("b", {"zone": 2, "runtime_overrides": {"memtx_memory": 1024}})(doc)
    instance = doc.replicasets["rs1"].instances["b"]

    assert instance.zone == 2
    assert instance.advertise_uri == "h:2"
    assert instance.runtime_overrides == {"memtx_memory": 1024}


def test_set_instance_property_keeps_uuid(doc):
    before = doc.replicasets["rs1"].instances["b"].uuid

    doc = operations.set_instance_property("b", {"zone": "dc1"})(doc)

    assert doc.replicasets["rs1"].instances["b"].uuid == before


def test_set_replicaset_property_keeps_instances(doc):
    doc = operations.set_replicaset_property("rs1", {"weight": 5, "failover_priority": ["b", "a"]})(doc)
    rs = doc.replicasets["rs1"]

    assert rs.weight == 5
    assert rs.failover_priority == ["b", "a"]
    assert sorted(rs.instances) == ["a", "b"]


def test_set_replicaset_property_priority_must_name_members(doc):
    with pytest.raises(ValidationError) as exc:
        operations.set_replicaset_property("rs1", {"failover_priority": ["c"]})(doc)

    assert exc.value.name == "INVALID_FAILOVER_PRIORITY"


def test_links(doc):
    doc = operations.new_instance_link("a", ["b"])(doc)
    assert doc.replicasets["rs1"].instances["b"].links == ["a"]

    doc = operations.delete_instance_link("a", "b")(doc)
    assert doc.replicasets["rs1"].instances["b"].links == []

    # Absent link is ignored
    doc = operations.delete_instance_link("a", "b")(doc)
    assert doc.replicasets["rs1"].instances["b"].links == []


def test_link_to_self(doc):
    with pytest.raises(ValidationError) as exc:
        operations.new_instance_link("a", ["a"])(doc)

    assert exc.value.name == "SELF_LINK"


def test_link_across_replicasets(doc):
    with pytest.raises(ValidationError) as exc:
        operations.new_instance_link("a", ["c"])(doc)

    assert exc.value.name == "WRONG_REPLICASET"


def test_link_replicaset_full_mesh(doc):
    doc = operations.link_replicaset_full_mesh("rs1")(doc)

    assert doc.replicasets["rs1"].instances["a"].links == ["b"]
    assert doc.replicasets["rs1"].instances["b"].links == ["a"]


def test_delete_instance_is_soft(doc):
    doc = operations.set_replicaset_property("rs1", {"failover_priority": ["a", "b"]})(doc)
    doc = operations.delete_instance("a")(doc)
    rs = doc.replicasets["rs1"]

    assert rs.instances["a"].status == InstanceStatus.EXPELLED
    assert rs.instances["a"].is_master is False
    assert rs.failover_priority == ["b"]


def test_expelled_instance_is_read_only(doc):
    doc = operations.delete_instance("a")(doc)

    with pytest.raises(ValidationError) as exc:
        operations.set_instance_property("a", {"zone": 1})(doc)

    assert exc.value.name == "INSTANCE_EXPELLED"


def test_delete_replicaset_requires_no_live_instances(doc):
    with pytest.raises(ValidationError) as exc:
        operations.delete_replicaset("rs2")(doc)

    assert exc.value.name == "REPLICASET_NOT_EMPTY"
    assert exc.value.fields["instances"] == ["c"]


def test_delete_replicaset_is_soft(doc):
    doc = operations.delete_instance("c")(doc)
    doc = operations.delete_replicaset("rs2")(doc)

    assert doc.replicasets["rs2"].status == ReplicasetStatus.EXPELLED
    with pytest.raises(ValidationError) as exc:
        operations.new_instance("rs2", "d")(doc)
    assert exc.value.name == "REPLICASET_EXPELLED"
    with pytest.raises(NameConflict):
        operations.new_replicaset("rs2")(doc)


def test_reachability_toggles(doc):
    doc = operations.set_instance_unreachable("b")(doc)
    assert doc.replicasets["rs1"].instances["b"].status == InstanceStatus.DISABLED

    doc = operations.set_instance_reachable("b")(doc)
    assert doc.replicasets["rs1"].instances["b"].status == InstanceStatus.ENABLED


def test_set_topology_property_options_and_weights(doc):
    doc = operations.set_topology_property({
        "bucket_count": 100,
        "discovery_mode": "once",
        "weights": {"dc1": {"dc1": 0, "dc2": 10}},
    })(doc)

    assert doc.options.bucket_count == 100
    assert doc.options.discovery_mode.value == "once"
    assert doc.weights == {"dc1": {"dc1": 0, "dc2": 10}}


def test_set_topology_property_unknown_option():
    with pytest.raises(ValidationError) as exc:
        operations.set_topology_property({"replicasets": {}})

    assert exc.value.name == "UNKNOWN_OPTION"


def test_set_topology_property_limits(doc):
    with pytest.raises(ValidationError) as exc:
        operations.set_topology_property({"rebalancer_max_sending": 16})(doc)

    assert exc.value.field == "rebalancer_max_sending"


def test_batch_applies_in_order(doc):
    transform = operations.batch(
        operations.new_replicaset("rs3"),
        operations.new_instance("rs3", "d"),
        operations.set_instance_unreachable("d"),
    )

    doc = transform(doc)

    assert transform.operation == "batch(new_replicaset, new_instance, set_instance_unreachable)"
    assert transform.validate_graph is True
    assert doc.replicasets["rs3"].instances["d"].status == InstanceStatus.DISABLED
