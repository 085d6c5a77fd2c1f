"""
Topology Service Launcher

Starts the topology admin API from the topology/ package.

This service provides:
- Topology bootstrap, read and delete
- Replicaset, instance and replication link management
- Instance runtime configuration, router/storage lists, sharding configuration

Usage:
    python scripts/run_topology_service.py --host 0.0.0.0 --port 8010 --backend sql

Environment Variables:
    TOPOLOGY_API_PORT: API port (default: 8010)
    TOPOLOGY_BIND_HOST: Bind address (default: 0.0.0.0)
    TOPOLOGY_BACKEND: memory, sql or etcd (default: memory)
    TOPOLOGY_LOG_LEVEL: Log level (default: INFO)
"""
import argparse
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import uvicorn

from shared.logging_config import setup_logging
from topology import config


def main() -> None:
    parser = argparse.ArgumentParser(description="Run topology control-plane service")
    parser.add_argument("--host", default=config.TOPOLOGY_BIND_HOST)
    parser.add_argument("--port", type=int, default=config.TOPOLOGY_API_PORT)
    parser.add_argument("--backend", choices=["memory", "sql", "etcd"], default=config.TOPOLOGY_BACKEND)
    parser.add_argument("--log-level", default=config.LOG_LEVEL)
    parser.add_argument("--log-file", default=None)
    args = parser.parse_args()

    # Command line wins over the environment for the service started below
    config.TOPOLOGY_API_PORT = args.port
    config.TOPOLOGY_BIND_HOST = args.host
    config.TOPOLOGY_BACKEND = args.backend

    setup_logging("topology", level=args.log_level, log_file=args.log_file)

    print("=" * 60)
    print("Topology Service")
    print("=" * 60)
    print(f"API Address: {args.host}:{args.port}")
    print(f"Backend: {args.backend}")
    print("=" * 60)

    uvicorn.run("topology.service:app", host=args.host, port=args.port, reload=False, log_config=None)


if __name__ == "__main__":
    main()
