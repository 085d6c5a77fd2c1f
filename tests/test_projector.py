"""
Tests for configuration projection.
"""
import pytest

from topology import operations, projector
from topology.errors import NotFound, ValidationError
from topology.models import TopologyDocument


def _apply(doc, *transforms):
    for transform in transforms:
        doc = transform(doc)
    return doc


@pytest.fixture
def doc(cluster):
    return cluster.get()


def test_sharding_config_for_two_replicasets(doc):
    config = projector.get_sharding_config(doc)

    assert config["bucket_count"] == 3000
    assert sorted(config["sharding"]) == ["rs1", "rs2"]
    assert config["sharding"]["rs1"] == {
        "weight": 1.0,
        "replicas": {
            "rs1_a": {"uri": "127.0.0.1:3301", "name": "rs1_a", "is_master": True, "zone": "dc1"},
            "rs1_b": {"uri": "127.0.0.1:3302", "name": "rs1_b", "is_master": False, "zone": "dc2"},
        },
    }
    assert sorted(config["sharding"]["rs2"]["replicas"]) == ["rs2_a", "rs2_b"]
    assert config["sharding"]["rs2"]["replicas"]["rs2_a"]["uri"] == "127.0.0.1:3303"


def test_sharding_config_carries_options(doc):
    config = projector.get_sharding_config(doc)

    assert config["rebalancer_disbalance_threshold"] == 1
    assert config["rebalancer_max_receiving"] == 100
    assert config["rebalancer_max_sending"] == 1
    assert config["discovery_mode"] == "on"
    assert config["shard_index"] == "bucket_id"
    assert config["sync_timeout"] == 1
    assert config["collect_bucket_garbage_interval"] == 0.5
    assert config["failover_ping_timeout"] == 5
    assert "weights" not in config


def test_sharding_config_only_enabled_instances(doc):
    doc = _apply(
        doc,
        operations.set_instance_unreachable("rs1_b"),
        operations.delete_instance("rs2_b"),
    )

    config = projector.get_sharding_config(doc)

    assert list(config["sharding"]["rs1"]["replicas"]) == ["rs1_a"]
    assert list(config["sharding"]["rs2"]["replicas"]) == ["rs2_a"]


def test_sharding_config_skips_replicasets_without_replicas(doc):
    doc = _apply(
        doc,
        operations.new_replicaset("rs3"),
        operations.new_instance("rs3", "rs3_a", {"roles": ["storage"]}),
        operations.delete_instance("rs2_a"),
        operations.delete_instance("rs2_b"),
        operations.delete_replicaset("rs2"),
    )

    config = projector.get_sharding_config(doc)

    assert list(config["sharding"]) == ["rs1"]


def test_sharding_config_auto_master_mode(doc):
    doc = operations.set_replicaset_property("rs2", {"master_mode": "auto"})(doc)

    config = projector.get_sharding_config(doc)

    assert config["sharding"]["rs2"]["master"] == "auto"
    assert "master" not in config["sharding"]["rs1"]


def test_sharding_config_weights(doc):
    doc = operations.set_topology_property({"weights": {"dc1": {"dc1": 0, "dc2": 3}}})(doc)

    config = projector.get_sharding_config(doc)

    assert config["weights"] == {"dc1": {"dc1": 0, "dc2": 3}}


def test_sharding_config_rejects_shared_uri(doc):
    doc = operations.set_instance_property("rs2_b", {"advertise_uri": "127.0.0.1:3301"})(doc)

    with pytest.raises(ValidationError) as exc:
        projector.get_sharding_config(doc)

    assert exc.value.name == "INVALID_SHARDING_CONFIG"


def test_sharding_config_rejects_zero_total_weight(doc):
    doc = _apply(
        doc,
        operations.set_replicaset_property("rs1", {"weight": 0}),
        operations.set_replicaset_property("rs2", {"weight": 0}),
    )

    with pytest.raises(ValidationError) as exc:
        projector.get_sharding_config(doc)

    assert exc.value.name == "INVALID_SHARDING_CONFIG"


def test_empty_topology_sharding_config():
    config = projector.get_sharding_config(TopologyDocument(name="t"))

    assert config["sharding"] == {}


def test_routers_and_storages(doc):
    assert projector.get_routers(doc) == [
        {"name": "rs1_b", "uri": "127.0.0.1:3302", "is_master": False, "replicaset_name": "rs1"},
        {"name": "rs2_b", "uri": "127.0.0.1:3304", "is_master": False, "replicaset_name": "rs2"},
    ]
    assert [entry["name"] for entry in projector.get_storages(doc)] == ["rs1_a", "rs2_a"]


def test_instance_conf_merge_priority(doc):
    doc = _apply(
        doc,
        operations.set_topology_property({"runtime_defaults": {"a": 1, "b": 1, "c": 1}}),
        operations.set_replicaset_property("rs1", {"runtime_defaults": {"b": 2, "c": 2}}),
        operations.set_instance_property("rs1_b", {"runtime_overrides": {"c": 3}}),
    )

    runtime = projector.get_instance_conf(doc, "rs1_b")["runtime"]

    assert runtime["a"] == 1
    assert runtime["b"] == 2
    assert runtime["c"] == 3


def test_instance_conf_fields(doc):
    conf = projector.get_instance_conf(doc, "rs1_a")
    rs = doc.replicasets["rs1"]

    assert conf["name"] == "rs1_a"
    assert conf["replicaset_name"] == "rs1"
    assert conf["instance_uuid"] == rs.instances["rs1_a"].uuid
    assert conf["replicaset_uuid"] == rs.uuid
    assert conf["roles"] == ["storage"]
    assert conf["status"] == "enabled"
    assert conf["runtime"]["listen"] == "127.0.0.1:3301"
    assert conf["runtime"]["read_only"] is False
    assert projector.get_instance_conf(doc, "rs1_b")["runtime"]["read_only"] is True


def test_instance_conf_listen_override(doc):
    doc = operations.set_instance_property("rs1_a", {"runtime_overrides": {"listen": "0.0.0.0:3301"}})(doc)

    assert projector.get_instance_conf(doc, "rs1_a")["runtime"]["listen"] == "0.0.0.0:3301"


def test_instance_conf_replication_skips_unusable_upstreams(doc):
    doc = _apply(
        doc,
        operations.new_instance("rs1", "rs1_c", {"roles": ["storage"]}),
        operations.new_instance_link("rs1_a", ["rs1_b"]),
        operations.new_instance_link("rs1_c", ["rs1_b"]),
    )

    # rs1_c has no advertise_uri
    assert projector.get_instance_conf(doc, "rs1_b")["runtime"]["replication"] == ["127.0.0.1:3301"]

    doc = operations.set_instance_unreachable("rs1_a")(doc)

    assert projector.get_instance_conf(doc, "rs1_b")["runtime"]["replication"] == []


def test_instance_conf_of_expelled_instance(doc):
    doc = operations.delete_instance("rs1_b")(doc)

    assert projector.get_instance_conf(doc, "rs1_b")["status"] == "expelled"
    assert "rs1_b" not in [entry["name"] for entry in projector.get_routers(doc)]


def test_instance_conf_missing(doc):
    with pytest.raises(NotFound):
        projector.get_instance_conf(doc, "ghost")


def test_instance_conf_does_not_share_state(doc):
    doc = operations.set_instance_property("rs1_a", {"runtime_overrides": {"nested": {"x": 1}}})(doc)

    conf = projector.get_instance_conf(doc, "rs1_a")
    conf["runtime"]["nested"]["x"] = 2

    assert doc.replicasets["rs1"].instances["rs1_a"].runtime_overrides == {"nested": {"x": 1}}


def test_topology_options(doc):
    options = projector.get_topology_options(doc)

    assert options["bucket_count"] == 3000
    assert options["is_bootstrapped"] is False
    assert options["weights"] == {}
    assert options["replicasets"] == ["rs1", "rs2"]
