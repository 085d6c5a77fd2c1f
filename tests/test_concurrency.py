"""
Concurrent writers on one document: no accepted mutation may be lost.
"""
import threading

from topology.backends import MemoryBackend
from topology.retry import RetryPolicy
from topology.store import TopologyStore


class RacingBackend(MemoryBackend):
    """
    The first `racers` reads wait for each other, so every writer works from
    the same revision and all but one lose the first compare-and-swap round.
    """

    def __init__(self, racers):
        super().__init__()
        self.barrier = threading.Barrier(racers, timeout=5)
        self.racing_reads = racers
        self.read_lock = threading.Lock()
        self.put_results = []

    def get(self, key):
        result = super().get(key)
        with self.read_lock:
            wait = self.racing_reads > 0
            self.racing_reads -= 1
        if wait:
            self.barrier.wait()
        return result

    def put(self, key, value, expected_revision):
        try:
            revision = super().put(key, value, expected_revision)
        except Exception:
            self.put_results.append("mismatch")
            raise
        self.put_results.append(revision)
        return revision


def _run_writers(backend, names, policy):
    errors = []

    def add_instance(instance_name):
        # Independent handle per caller
        store = TopologyStore(backend, "cluster", retry_policy=policy)
        try:
            store.new_instance("rs1", instance_name)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=add_instance, args=(name,)) for name in names]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)
    return errors


def test_two_concurrent_additions_both_persist():
    policy = RetryPolicy(max_attempts=5, store_retries=1, base_delay=0.001, max_delay=0.01)
    backend = RacingBackend(racers=2)
    setup = TopologyStore.open("cluster", backend_opts=MemoryBackend())
    setup.new_replicaset("rs1")
    # Seed the racing backend with the prepared document
    backend.put("cluster", setup.get().to_value(), None)

    errors = _run_writers(backend, ["a", "b"], policy)

    assert errors == []
    assert "mismatch" in backend.put_results
    doc = TopologyStore(backend, "cluster").get()
    assert sorted(doc.replicasets["rs1"].instances) == ["a", "b"]
    assert doc.revision == 2


def test_many_concurrent_writers():
    policy = RetryPolicy(max_attempts=100, store_retries=1, base_delay=0.001, max_delay=0.005)
    backend = MemoryBackend()
    store = TopologyStore.open("cluster", backend_opts=backend)
    store.new_replicaset("rs1")
    names = [f"node_{i}" for i in range(8)]

    errors = _run_writers(backend, names, policy)

    assert errors == []
    doc = store.get()
    assert sorted(doc.replicasets["rs1"].instances) == sorted(names)
    assert doc.revision == 1 + len(names)
