import os
from typing import Any, Dict


def _int_env(name: str, default: int) -> int:
    raw = str(os.getenv(name, str(default))).strip()
    try:
        return int(raw)
    except Exception:
        return default


def _float_env(name: str, default: float) -> float:
    raw = str(os.getenv(name, str(default))).strip()
    try:
        return float(raw)
    except Exception:
        return default


def _str_env(name: str, default: str) -> str:
    return str(os.getenv(name, default)).strip()


# Backend selection
TOPOLOGY_BACKEND = _str_env("TOPOLOGY_BACKEND", "memory").lower()
DATABASE_URL = _str_env("TOPOLOGY_DATABASE_URL", "sqlite:///./topology.db")
ETCD_ENDPOINTS = [e.strip() for e in _str_env("TOPOLOGY_ETCD_ENDPOINTS", "http://127.0.0.1:2379").split(",") if e.strip()]
ETCD_USER = os.getenv("TOPOLOGY_ETCD_USER")
ETCD_PASSWORD = os.getenv("TOPOLOGY_ETCD_PASSWORD")
ETCD_PREFIX = _str_env("TOPOLOGY_ETCD_PREFIX", "/topology/")
REQUEST_TIMEOUT_SECONDS = _float_env("TOPOLOGY_REQUEST_TIMEOUT_SECONDS", 5.0)

# Mutation loop
MUTATE_MAX_ATTEMPTS = _int_env("TOPOLOGY_MUTATE_MAX_ATTEMPTS", 10)
BACKOFF_BASE_SECONDS = _float_env("TOPOLOGY_BACKOFF_BASE_SECONDS", 0.05)
BACKOFF_MAX_SECONDS = _float_env("TOPOLOGY_BACKOFF_MAX_SECONDS", 2.0)
STORE_RETRIES = _int_env("TOPOLOGY_STORE_RETRIES", 3)

# Admin service
TOPOLOGY_API_PORT = _int_env("TOPOLOGY_API_PORT", 8010)
TOPOLOGY_BIND_HOST = _str_env("TOPOLOGY_BIND_HOST", "0.0.0.0")
LOG_LEVEL = _str_env("TOPOLOGY_LOG_LEVEL", "INFO").upper()

# Sharding runtime defaults
DEFAULT_BUCKET_COUNT = 3000
DEFAULT_REBALANCER_DISBALANCE_THRESHOLD = 1
DEFAULT_REBALANCER_MAX_RECEIVING = 100
DEFAULT_REBALANCER_MAX_SENDING = 1
REBALANCER_MAX_SENDING_MAX = 15
DEFAULT_DISCOVERY_MODE = "on"
DEFAULT_SYNC_TIMEOUT = 1
DEFAULT_COLLECT_BUCKET_GARBAGE_INTERVAL = 0.5
DEFAULT_FAILOVER_PING_TIMEOUT = 5
DEFAULT_SHARD_INDEX = "bucket_id"

# Identifier grammar
IDENTIFIER_MAX_LENGTH = 63

# Polling interval for wait_for_change
DEFAULT_WAIT_INTERVAL = 0.1


def default_backend_opts() -> Dict[str, Any]:
    """Backend options built from the TOPOLOGY_* environment."""
    if TOPOLOGY_BACKEND == "sql":
        return {"driver": "sql", "database_url": DATABASE_URL}
    if TOPOLOGY_BACKEND == "etcd":
        return {
            "driver": "etcd",
            "endpoints": list(ETCD_ENDPOINTS),
            "user": ETCD_USER,
            "password": ETCD_PASSWORD,
            "prefix": ETCD_PREFIX,
            "timeout": REQUEST_TIMEOUT_SECONDS,
        }
    return {"driver": "memory"}
