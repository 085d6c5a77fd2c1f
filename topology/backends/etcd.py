"""
etcd backend.

Talks to the etcd v3 JSON gateway (/v3/kv/*) over HTTP with requests. The
topology revision is the etcd key version minus one, so a conditional put is a
transaction comparing the key VERSION with expected_revision + 1 (0 when the
key must not exist yet).

Usage:
    backend = EtcdBackend(
        endpoints=["http://10.0.0.1:2379", "http://10.0.0.2:2379"],
        user="root",
        password="secret",
    )
"""

import base64
import json
import logging
from typing import Any, Dict, List, Optional

import requests

from topology.backends.base import (
    BackendUnavailable,
    CorruptValue,
    KeyNotFound,
    KVBackend,
    RevisionMismatch,
    VersionedValue,
)

logger = logging.getLogger(__name__)


def _b64(data: str) -> str:
    return base64.b64encode(data.encode("utf-8")).decode("ascii")


def _unb64(data: str) -> str:
    return base64.b64decode(data).decode("utf-8")


class EtcdBackend(KVBackend):
    driver = "etcd"

    def __init__(
        self,
        endpoints: List[str],
        user: Optional[str] = None,
        password: Optional[str] = None,
        prefix: str = "/topology/",
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize etcd backend.

        Args:
            endpoints: etcd client URLs, tried in order until one answers
            user: Optional user name for etcd authentication
            password: Password for user
            prefix: Prefix prepended to every topology key
            timeout: Per-request timeout in seconds
            session: Optional pre-configured requests session
        """
        if not endpoints:
            raise ValueError("at least one etcd endpoint is required")
        self.endpoints = [endpoint.rstrip("/") for endpoint in endpoints]
        self.user = user
        self.password = password
        self.prefix = prefix
        self.timeout = timeout
        self._session = session or requests.Session()
        self._token: Optional[str] = None

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _authenticate(self, endpoint: str) -> None:
        response = self._session.post(
            f"{endpoint}/v3/auth/authenticate",
            json={"name": self.user, "password": self.password},
            timeout=self.timeout,
        )
        response.raise_for_status()
        self._token = response.json().get("token")
        logger.info(f"Authenticated to etcd at {endpoint} as {self.user}")

    def _call(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        last_error: Optional[Exception] = None
        for endpoint in self.endpoints:
            try:
                if self.user and self._token is None:
                    self._authenticate(endpoint)
                headers = {"Authorization": self._token} if self._token else {}
                response = self._session.post(
                    f"{endpoint}{path}", json=payload, headers=headers, timeout=self.timeout
                )
                if response.status_code == 401 and self.user:
                    # Token expired: authenticate again once
                    self._token = None
                    self._authenticate(endpoint)
                    response = self._session.post(
                        f"{endpoint}{path}", json=payload,
                        headers={"Authorization": self._token}, timeout=self.timeout,
                    )
                response.raise_for_status()
                return response.json()
            except requests.RequestException as e:
                logger.warning(f"etcd request {path} to {endpoint} failed: {e}")
                last_error = e
        raise BackendUnavailable(f"no etcd endpoint answered {path}: {last_error}")

    def get(self, key: str) -> VersionedValue:
        body = self._call("/v3/kv/range", {"key": _b64(self._key(key))})
        kvs = body.get("kvs") or []
        if not kvs:
            raise KeyNotFound(key)
        kv = kvs[0]
        try:
            value = json.loads(_unb64(kv.get("value", "")))
        except ValueError as e:
            raise CorruptValue(key, str(e)) from e
        return VersionedValue(value=value, revision=int(kv.get("version", 1)) - 1)

    def put(self, key: str, value: Dict[str, Any], expected_revision: Optional[int]) -> int:
        etcd_key = _b64(self._key(key))
        expected_version = 0 if expected_revision is None else expected_revision + 1
        payload = {
            "compare": [{
                "key": etcd_key,
                "result": "EQUAL",
                "target": "VERSION",
                "version": str(expected_version),
            }],
            "success": [{
                "request_put": {"key": etcd_key, "value": _b64(json.dumps(value, sort_keys=True))},
            }],
            "failure": [{
                "request_range": {"key": etcd_key},
            }],
        }
        body = self._call("/v3/kv/txn", payload)
        if not body.get("succeeded", False):
            actual = None
            for item in body.get("responses") or []:
                kvs = (item.get("response_range") or {}).get("kvs") or []
                if kvs:
                    actual = int(kvs[0].get("version", 1)) - 1
            raise RevisionMismatch(key, expected_revision, actual)
        return expected_version  # new version - 1

    def delete(self, key: str) -> bool:
        body = self._call("/v3/kv/deleterange", {"key": _b64(self._key(key))})
        return int(body.get("deleted", 0)) > 0

    def close(self) -> None:
        self._session.close()
