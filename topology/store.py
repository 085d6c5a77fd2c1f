"""
TopologyStore - the only gateway for reading and changing a topology.

A store handle holds a backend reference and a document name, nothing else.
Many handles (in one process or many) may target the same name: coordination
lives in the backend's single-key compare-and-swap, not in local locks.

Every write goes through mutate(): read document and revision, apply a pure
transform, validate, conditionally put. A lost race re-reads and re-applies the
transform after an exponential backoff with jitter, up to a bounded number of
attempts.

Usage:
    store = TopologyStore.open("cluster", backend_opts={"driver": "memory"})
    store.new_replicaset("storage_1")
    store.new_instance("storage_1", "storage_1_a", {"advertise_uri": "10.0.0.1:3301"})
    config = store.get_sharding_config()
"""

import logging
import random
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import pydantic

from topology import operations, projector
from topology.backends import BackendOpts, create_backend
from topology.backends.base import (
    BackendUnavailable,
    CorruptValue,
    KeyNotFound,
    KVBackend,
    RevisionMismatch,
    VersionedValue,
)
from topology.config import DEFAULT_WAIT_INTERVAL
from topology.errors import make_error
from topology.models import TopologyDocument, TopologyOptions
from topology.operations import Transform
from topology.retry import RetryPolicy
from topology.validator import check_immutable_options, from_pydantic, require_identifier, validate_document

logger = logging.getLogger(__name__)

TOPOLOGY_KIND = "topology"


class TopologyStore:
    """Handle bound to one topology document in one backend."""

    def __init__(
        self,
        backend: KVBackend,
        name: str,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        """
        Args:
            backend: Key-value backend holding the document
            name: Topology name, also the backend key
            retry_policy: CAS and transport retry settings
            sleep / clock: injectable for tests
            rng: random source for backoff jitter
        """
        self.backend = backend
        self.name = name
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()

    @classmethod
    def open(
        cls,
        name: str,
        backend_opts: Optional[BackendOpts] = None,
        bootstrap_options: Optional[Dict[str, Any]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        **kwargs,
    ) -> "TopologyStore":
        """
        Return a handle bound to name, creating an empty document if needed.

        Idempotent: an existing document is reused and bootstrap_options are
        ignored for it.

        Raises:
            ValidationError: invalid topology name or bootstrap options
            StoreUnavailable: backend cannot be reached
        """
        require_identifier(TOPOLOGY_KIND, name)
        try:
            backend = create_backend(backend_opts)
        except BackendUnavailable as e:
            raise make_error("STORE_UNAVAILABLE", topology_name=name, reason=str(e)) from e
        store = cls(backend, name, retry_policy=retry_policy, **kwargs)
        store._bootstrap(bootstrap_options or {})
        return store

    def _bootstrap(self, bootstrap_options: Dict[str, Any]) -> None:
        try:
            self._call_backend(self.backend.get, self.name)
            logger.info(f"Using existing topology '{self.name}'")
            return
        except KeyNotFound:
            pass

        try:
            doc = TopologyDocument(name=self.name, options=TopologyOptions(**bootstrap_options))
        except pydantic.ValidationError as e:
            raise from_pydantic(e) from e
        validate_document(doc)

        try:
            self._call_backend(self.backend.put, self.name, doc.to_value(), None)
            logger.info(f"Created topology '{self.name}' at revision 0")
        except RevisionMismatch:
            # Another client created it first
            logger.info(f"Topology '{self.name}' was created concurrently, reusing it")

    # ------------------------------------------------------------------
    # Backend access
    # ------------------------------------------------------------------

    def _call_backend(self, fn: Callable, *args, deadline: Optional[float] = None, timeout: Optional[float] = None):
        """Call a backend method, retrying transport failures only."""
        attempts = self.retry_policy.store_retries
        for attempt in range(1, attempts + 1):
            try:
                return fn(*args)
            except BackendUnavailable as e:
                if attempt == attempts:
                    logger.error(f"Backend unavailable for '{self.name}' after {attempts} attempts: {e}")
                    raise make_error("STORE_UNAVAILABLE", topology_name=self.name, reason=str(e)) from e
                delay = self._bounded_delay(self.retry_policy.backoff(attempt, self._rng), deadline)
                logger.warning(
                    f"Backend call {getattr(fn, '__name__', fn)} failed for '{self.name}' "
                    f"(attempt {attempt}/{attempts}), retrying in {delay:.3f}s: {e}"
                )
                self._sleep(delay)
                self._check_deadline(deadline, timeout)

    def _read(self, deadline: Optional[float] = None, timeout: Optional[float] = None) -> TopologyDocument:
        try:
            versioned: VersionedValue = self._call_backend(
                self.backend.get, self.name, deadline=deadline, timeout=timeout
            )
        except KeyNotFound as e:
            raise make_error("TOPOLOGY_NOT_FOUND", topology_name=self.name) from e
        except CorruptValue as e:
            raise make_error("DOCUMENT_CORRUPTED", topology_name=self.name, reason=e.reason) from e
        try:
            return TopologyDocument.from_value(versioned.value, versioned.revision)
        except (ValueError, TypeError) as e:
            raise make_error("DOCUMENT_CORRUPTED", topology_name=self.name, reason=str(e)) from e

    def _put(self, value: Dict[str, Any], expected_revision: int, deadline: Optional[float], timeout: Optional[float]) -> int:
        """
        Conditional put that recognizes its own write.

        When a put commits but its response is lost, the transport retry sees
        RevisionMismatch against that very write. If the stored value is the
        one we sent, the put is reported as committed.
        """
        interrupted = False

        def put():
            nonlocal interrupted
            try:
                return self.backend.put(self.name, value, expected_revision)
            except BackendUnavailable:
                interrupted = True
                raise

        try:
            return self._call_backend(put, deadline=deadline, timeout=timeout)
        except RevisionMismatch as mismatch:
            if not interrupted:
                raise
            try:
                stored: VersionedValue = self._call_backend(
                    self.backend.get, self.name, deadline=deadline, timeout=timeout
                )
            except (KeyNotFound, CorruptValue):
                raise mismatch
            if stored.revision != expected_revision + 1 or stored.value != value:
                raise
            logger.info(
                f"Topology '{self.name}': revision {stored.revision} was committed before its response was lost"
            )
            return stored.revision

    def _bounded_delay(self, delay: float, deadline: Optional[float]) -> float:
        if deadline is None:
            return delay
        return max(0.0, min(delay, deadline - self._clock()))

    def _check_deadline(self, deadline: Optional[float], timeout: Optional[float]) -> None:
        if deadline is not None and self._clock() >= deadline:
            logger.error(f"Mutation of topology '{self.name}' exceeded its {timeout}s deadline")
            raise make_error("DEADLINE_EXCEEDED", topology_name=self.name, timeout=timeout)

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    def get(self) -> TopologyDocument:
        """Current document with its revision."""
        return self._read()

    def mutate(
        self,
        transform: Transform,
        timeout: Optional[float] = None,
        validate: bool = True,
        operation: Optional[str] = None,
    ) -> TopologyDocument:
        """
        Apply transform through the compare-and-swap loop.

        Args:
            transform: Function editing a document snapshot and returning it
            timeout: Optional bound in seconds on the whole call
            validate: Run whole-document validation on the result
            operation: Name used in logs (defaults to the transform's name)

        Returns:
            Committed document carrying its new revision

        Raises:
            ValidationError / NameConflict / NotFound: from the transform or
                validation; nothing is written and nothing is retried
            ConcurrencyExhausted: every attempt lost the race
            DeadlineExceeded: timeout expired; the document is unchanged
            StoreUnavailable: backend failure outlasted its retries
        """
        operation = operation or getattr(transform, "operation", None) or getattr(transform, "__name__", "transform")
        validate = validate and getattr(transform, "validate_graph", True)
        deadline = None if timeout is None else self._clock() + timeout
        max_attempts = self.retry_policy.max_attempts

        for attempt in range(1, max_attempts + 1):
            self._check_deadline(deadline, timeout)
            current = self._read(deadline, timeout)

            candidate = transform(current.model_copy(deep=True))
            if not isinstance(candidate, TopologyDocument):
                raise TypeError(f"transform {operation} must return a TopologyDocument")
            check_immutable_options(current.options, candidate.options)
            if validate:
                validate_document(candidate)

            self._check_deadline(deadline, timeout)
            try:
                new_revision = self._put(candidate.to_value(), current.revision, deadline, timeout)
            except RevisionMismatch:
                if attempt == max_attempts:
                    break
                delay = self._bounded_delay(self.retry_policy.backoff(attempt, self._rng), deadline)
                logger.warning(
                    f"Topology '{self.name}': {operation} lost revision {current.revision} "
                    f"(attempt {attempt}/{max_attempts}), retrying in {delay:.3f}s"
                )
                self._sleep(delay)
                continue

            candidate.revision = new_revision
            logger.info(f"Topology '{self.name}': {operation} committed at revision {new_revision}")
            return candidate

        logger.error(f"Topology '{self.name}': {operation} gave up after {max_attempts} attempts")
        raise make_error("CONCURRENCY_EXHAUSTED", topology_name=self.name, attempts=max_attempts)

    def batch(self, *transforms: Transform, timeout: Optional[float] = None) -> TopologyDocument:
        """Commit several named transforms as one atomic write."""
        return self.mutate(operations.batch(*transforms), timeout=timeout)

    def wait_for_change(
        self,
        after_revision: int,
        timeout: float,
        interval: float = DEFAULT_WAIT_INTERVAL,
    ) -> Optional[TopologyDocument]:
        """
        Poll until the document revision exceeds after_revision.

        Returns:
            The newer document, or None when timeout expires first
        """
        deadline = self._clock() + timeout
        while True:
            doc = self._read()
            if doc.revision > after_revision:
                return doc
            remaining = deadline - self._clock()
            if remaining <= 0:
                return None
            self._sleep(min(interval, remaining))

    def delete(self) -> None:
        """Remove the document from the backend. Destructive."""
        if not self._call_backend(self.backend.delete, self.name):
            raise make_error("TOPOLOGY_NOT_FOUND", topology_name=self.name)
        logger.warning(f"Topology '{self.name}' deleted")

    def close(self) -> None:
        self.backend.close()

    # ------------------------------------------------------------------
    # Named operations
    # ------------------------------------------------------------------

    def new_replicaset(
        self,
        name: str,
        opts: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        instances: Optional[Iterable[str]] = None,
    ):
        return self.mutate(operations.new_replicaset(name, opts, instances), timeout=timeout)

    def new_instance(
        self,
        replicaset_name: str,
        instance_name: str,
        opts: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ):
        return self.mutate(operations.new_instance(replicaset_name, instance_name, opts), timeout=timeout)

    def new_instance_link(self, upstream: str, downstreams: Union[str, Iterable[str]], timeout: Optional[float] = None):
        return self.mutate(operations.new_instance_link(upstream, downstreams), timeout=timeout)

    def delete_instance_link(self, upstream: str, downstreams: Union[str, Iterable[str]], timeout: Optional[float] = None):
        return self.mutate(operations.delete_instance_link(upstream, downstreams), timeout=timeout)

    def link_replicaset_full_mesh(self, name: str, timeout: Optional[float] = None):
        return self.mutate(operations.link_replicaset_full_mesh(name), timeout=timeout)

    def delete_instance(self, name: str, timeout: Optional[float] = None):
        return self.mutate(operations.delete_instance(name), timeout=timeout)

    def delete_replicaset(self, name: str, timeout: Optional[float] = None):
        return self.mutate(operations.delete_replicaset(name), timeout=timeout)

    def set_instance_property(self, name: str, opts: Dict[str, Any], timeout: Optional[float] = None):
        return self.mutate(operations.set_instance_property(name, opts), timeout=timeout)

    def set_replicaset_property(self, name: str, opts: Dict[str, Any], timeout: Optional[float] = None):
        return self.mutate(operations.set_replicaset_property(name, opts), timeout=timeout)

    def set_topology_property(self, opts: Dict[str, Any], timeout: Optional[float] = None):
        return self.mutate(operations.set_topology_property(opts), timeout=timeout)

    def set_instance_reachable(self, name: str, timeout: Optional[float] = None):
        return self.mutate(operations.set_instance_reachable(name), timeout=timeout, validate=False)

    def set_instance_unreachable(self, name: str, timeout: Optional[float] = None):
        return self.mutate(operations.set_instance_unreachable(name), timeout=timeout, validate=False)

    # ------------------------------------------------------------------
    # Projections of the current document
    # ------------------------------------------------------------------

    def get_instance_conf(self, name: str) -> Dict[str, Any]:
        return projector.get_instance_conf(self.get(), name)

    def get_routers(self) -> List[Dict[str, Any]]:
        return projector.get_routers(self.get())

    def get_storages(self) -> List[Dict[str, Any]]:
        return projector.get_storages(self.get())

    def get_sharding_config(self) -> Dict[str, Any]:
        return projector.get_sharding_config(self.get())

    def get_replicaset_options(self, name: str) -> Dict[str, Any]:
        return projector.get_replicaset_options(self.get(), name)

    def get_topology_options(self) -> Dict[str, Any]:
        return projector.get_topology_options(self.get())


open_topology = TopologyStore.open
