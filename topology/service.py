"""
Topology Service Entrypoint

FastAPI application exposing the topology admin API. The backend is chosen from
the TOPOLOGY_* environment at startup; taxonomy errors are returned as JSON
with their stable code and name.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from topology.api import topology
from topology.backends import create_backend
from topology.config import default_backend_opts
from topology.errors import TopologyError, http_status

logger = logging.getLogger(__name__)

app = FastAPI(title="Topology Service")

app.include_router(topology.router)

# Global backend instance
backend = None


@app.exception_handler(TopologyError)
async def topology_error_handler(request: Request, exc: TopologyError):
    status = http_status(exc)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(status_code=status, content=exc.to_dict())


@app.on_event("startup")
def startup_init():
    """Create the backend and hand it to the API"""
    global backend

    if backend is None:
        backend = create_backend(default_backend_opts())
    topology.set_backend(backend)

    logger.info(f"Topology service startup complete (backend={backend.driver})")


@app.on_event("shutdown")
def shutdown_cleanup():
    """Release backend connections on shutdown"""
    global backend

    if backend is not None:
        logger.info("Closing topology backend...")
        backend.close()
        backend = None
    topology.set_backend(None)

    logger.info("Topology service shutdown complete")


@app.get("/")
def root():
    return {
        "service": "topology",
        "message": "Topology control-plane service running",
    }
