"""
Topology Admin API

CRUD over topology documents, replicasets, instances and replication links,
plus the derived configuration views. Every write is one TopologyStore
operation, so concurrent admin clients are safe.

Endpoints:
- POST/GET/DELETE /topology/{name}: bootstrap, read, destroy a document
- PATCH /topology/{name}/options: cluster-wide options and zone weights
- /topology/{name}/replicasets, /instances, /links: membership changes
- GET /topology/{name}/routers, /storages, /sharding: derived configuration

Taxonomy errors propagate to the handler installed by topology.service.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from topology.backends import KVBackend
from topology.models import TopologyDocument
from topology.store import TopologyStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/topology/{name}", tags=["topology"])


# Will be injected by service.py
_backend: Optional[KVBackend] = None

def set_backend(backend: Optional[KVBackend]):
    """Set backend reference (called by service.py)"""
    global _backend
    _backend = backend


def get_backend() -> KVBackend:
    if _backend is None:
        raise HTTPException(status_code=503, detail="Topology backend is not initialized")
    return _backend


def get_store(name: str, backend: KVBackend = Depends(get_backend)) -> TopologyStore:
    return TopologyStore(backend, name)


class BootstrapRequest(BaseModel):
    """Options for a topology created by this request"""
    options: Dict[str, Any] = Field(default_factory=dict)


class ReplicasetCreate(BaseModel):
    name: str
    options: Dict[str, Any] = Field(default_factory=dict)
    instances: List[str] = Field(default_factory=list)


class InstanceCreate(BaseModel):
    name: str
    options: Dict[str, Any] = Field(default_factory=dict)


class LinkCreate(BaseModel):
    upstream: str
    downstreams: List[str]


def _document(doc: TopologyDocument) -> Dict[str, Any]:
    return doc.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------

@router.post("", status_code=201)
def open_topology(name: str, body: Optional[BootstrapRequest] = None, backend: KVBackend = Depends(get_backend)):
    """Create the topology if absent; an existing one is returned unchanged."""
    options = body.options if body else {}
    store = TopologyStore.open(name, backend_opts=backend, bootstrap_options=options)
    return _document(store.get())


@router.get("")
def get_topology(store: TopologyStore = Depends(get_store)):
    return _document(store.get())


@router.delete("")
def delete_topology(store: TopologyStore = Depends(get_store)):
    store.delete()
    logger.info(f"Topology '{store.name}' deleted via API")
    return {"name": store.name, "deleted": True}


@router.patch("/options")
def set_topology_options(opts: Dict[str, Any], timeout: Optional[float] = None, store: TopologyStore = Depends(get_store)):
    return _document(store.set_topology_property(opts, timeout=timeout))


@router.get("/options")
def get_topology_options(store: TopologyStore = Depends(get_store)):
    return store.get_topology_options()


# ---------------------------------------------------------------------------
# Replicasets
# ---------------------------------------------------------------------------

@router.post("/replicasets", status_code=201)
def create_replicaset(body: ReplicasetCreate, timeout: Optional[float] = None, store: TopologyStore = Depends(get_store)):
    return _document(store.new_replicaset(body.name, body.options, timeout=timeout, instances=body.instances))


@router.get("/replicasets/{replicaset_name}")
def get_replicaset(replicaset_name: str, store: TopologyStore = Depends(get_store)):
    return store.get_replicaset_options(replicaset_name)


@router.patch("/replicasets/{replicaset_name}")
def update_replicaset(
    replicaset_name: str,
    opts: Dict[str, Any],
    timeout: Optional[float] = None,
    store: TopologyStore = Depends(get_store),
):
    return _document(store.set_replicaset_property(replicaset_name, opts, timeout=timeout))


@router.delete("/replicasets/{replicaset_name}")
def delete_replicaset(replicaset_name: str, timeout: Optional[float] = None, store: TopologyStore = Depends(get_store)):
    return _document(store.delete_replicaset(replicaset_name, timeout=timeout))


@router.post("/replicasets/{replicaset_name}/instances", status_code=201)
def create_instance(
    replicaset_name: str,
    body: InstanceCreate,
    timeout: Optional[float] = None,
    store: TopologyStore = Depends(get_store),
):
    return _document(store.new_instance(replicaset_name, body.name, body.options, timeout=timeout))


# ---------------------------------------------------------------------------
# Instances
# ---------------------------------------------------------------------------

@router.patch("/instances/{instance_name}")
def update_instance(
    instance_name: str,
    opts: Dict[str, Any],
    timeout: Optional[float] = None,
    store: TopologyStore = Depends(get_store),
):
    return _document(store.set_instance_property(instance_name, opts, timeout=timeout))


@router.delete("/instances/{instance_name}")
def delete_instance(instance_name: str, timeout: Optional[float] = None, store: TopologyStore = Depends(get_store)):
    """Expel the instance; its record stays in the document."""
    return _document(store.delete_instance(instance_name, timeout=timeout))


@router.post("/instances/{instance_name}/reachable")
def mark_reachable(instance_name: str, timeout: Optional[float] = None, store: TopologyStore = Depends(get_store)):
    return _document(store.set_instance_reachable(instance_name, timeout=timeout))


@router.post("/instances/{instance_name}/unreachable")
def mark_unreachable(instance_name: str, timeout: Optional[float] = None, store: TopologyStore = Depends(get_store)):
    return _document(store.set_instance_unreachable(instance_name, timeout=timeout))


@router.get("/instances/{instance_name}/conf")
def get_instance_conf(instance_name: str, store: TopologyStore = Depends(get_store)):
    return store.get_instance_conf(instance_name)


# ---------------------------------------------------------------------------
# Links
# ---------------------------------------------------------------------------

@router.post("/links", status_code=201)
def create_links(body: LinkCreate, timeout: Optional[float] = None, store: TopologyStore = Depends(get_store)):
    return _document(store.new_instance_link(body.upstream, body.downstreams, timeout=timeout))


@router.delete("/links/{upstream}/{downstream}")
def delete_link(upstream: str, downstream: str, timeout: Optional[float] = None, store: TopologyStore = Depends(get_store)):
    return _document(store.delete_instance_link(upstream, [downstream], timeout=timeout))


# ---------------------------------------------------------------------------
# Derived configuration
# ---------------------------------------------------------------------------

@router.get("/routers")
def list_routers(store: TopologyStore = Depends(get_store)):
    return store.get_routers()


@router.get("/storages")
def list_storages(store: TopologyStore = Depends(get_store)):
    return store.get_storages()


@router.get("/sharding")
def sharding_config(store: TopologyStore = Depends(get_store)):
    return store.get_sharding_config()
