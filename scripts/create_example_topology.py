"""
Create the example two-replicaset topology and print its sharding configuration.

Each replicaset gets a master storage instance and a replica that also acts as
router; the replicas follow their master through replication links.

Usage:
    python scripts/create_example_topology.py --name example --backend sql \
        --database-url sqlite:///./topology.db
"""
import argparse
import json
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from shared.logging_config import setup_logging
from topology import TopologyError, TopologyStore
from topology.config import default_backend_opts


def main() -> None:
    parser = argparse.ArgumentParser(description="Create example topology (2 replicasets, 4 instances)")
    parser.add_argument("--name", default="example", help="Topology name")
    parser.add_argument("--backend", choices=["memory", "sql", "etcd"], default=None, help="Backend driver")
    parser.add_argument("--database-url", default=None, help="SQL backend URL")
    parser.add_argument("--etcd-endpoint", action="append", default=None, help="etcd endpoint (repeatable)")
    parser.add_argument("--bucket-count", type=int, default=3000)
    parser.add_argument("--host", default="127.0.0.1", help="Address instances advertise")
    parser.add_argument("--base-port", type=int, default=3301)
    args = parser.parse_args()

    setup_logging("topology")

    backend_opts = default_backend_opts()
    if args.backend:
        backend_opts = {"driver": args.backend}
    if args.database_url:
        backend_opts = {"driver": "sql", "database_url": args.database_url}
    if args.etcd_endpoint:
        backend_opts = {"driver": "etcd", "endpoints": args.etcd_endpoint}

    try:
        store = TopologyStore.open(
            args.name,
            backend_opts=backend_opts,
            bootstrap_options={"bucket_count": args.bucket_count},
        )
        port = args.base_port
        for rs_name in ("storage_1", "storage_2"):
            store.new_replicaset(rs_name, {"master_mode": "single", "weight": 1})
            master = f"{rs_name}_a"
            replica = f"{rs_name}_b"
            store.new_instance(rs_name, master, {
                "advertise_uri": f"storage:storage@{args.host}:{port}",
                "roles": ["storage"],
                "is_master": True,
                "zone": 1,
            })
            store.new_instance(rs_name, replica, {
                "advertise_uri": f"storage:storage@{args.host}:{port + 1}",
                "roles": ["storage", "router"],
                "zone": 2,
            })
            store.new_instance_link(master, [replica])
            port += 2
        store.set_topology_property({"is_bootstrapped": True})
        config = store.get_sharding_config()
    except TopologyError as e:
        print(f"Failed to create topology '{args.name}': {e}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(config, indent=2))


if __name__ == "__main__":
    main()
