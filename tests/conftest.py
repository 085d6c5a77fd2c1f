"""
Shared fixtures for topology tests.
"""
import pytest

from topology.backends import MemoryBackend
from topology.retry import RetryPolicy
from topology.store import TopologyStore


# Retries without delays so failure paths run instantly
FAST_POLICY = RetryPolicy(max_attempts=5, store_retries=3, base_delay=0.0, max_delay=0.0, jitter=0.0)


class FakeClock:
    """Monotonic clock advanced only by sleep()."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, delay):
        self.sleeps.append(delay)
        self.now += delay


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def store(backend):
    """Empty topology 'test' in a memory backend."""
    return TopologyStore.open("test", backend_opts=backend, retry_policy=FAST_POLICY)


@pytest.fixture
def cluster(store):
    """
    Two replicasets with a storage master and a router replica each:
        rs1: rs1_a (storage, master, :3301), rs1_b (router, :3302)
        rs2: rs2_a (storage, master, :3303), rs2_b (router, :3304)
    """
    port = 3301
    for rs_name in ("rs1", "rs2"):
        store.new_replicaset(rs_name)
        store.new_instance(rs_name, f"{rs_name}_a", {
            "advertise_uri": f"127.0.0.1:{port}",
            "roles": ["storage"],
            "is_master": True,
            "zone": "dc1",
        })
        store.new_instance(rs_name, f"{rs_name}_b", {
            "advertise_uri": f"127.0.0.1:{port + 1}",
            "roles": ["router"],
            "zone": "dc2",
        })
        port += 2
    return store
