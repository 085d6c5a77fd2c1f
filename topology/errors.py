"""
Topology error taxonomy.

Every error surfaced by the topology layer is built from a numbered template:
- name: stable identifier tooling can match on
- msg: message template using named fields (str.format notation)
- args: names of the fields the error carries
- kind: exception class produced

Backend-level failures never reach callers directly; TopologyStore converts
them into StoreUnavailable / ConcurrencyExhausted / NotFound.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple


class TopologyError(Exception):
    """Base class for every error in the taxonomy."""

    def __init__(self, code: int, name: str, message: str, fields: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.name = name
        self.message = message
        self.fields = dict(fields or {})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": type(self).__name__,
            "code": self.code,
            "name": self.name,
            "message": self.message,
            "fields": self.fields,
        }

    def __str__(self) -> str:
        return f"{self.name}: {self.message}"


class ValidationError(TopologyError):
    """Malformed input or a change that would break a topology invariant. Never retried."""

    def __init__(self, code: int, name: str, message: str, fields: Optional[Dict[str, Any]] = None):
        super().__init__(code, name, message, fields)
        self.reason = message
        self.field = self.fields.get("field")


class NameConflict(TopologyError):
    """A replicaset or instance with the same name already exists."""


class NotFound(TopologyError):
    """Referenced topology, replicaset or instance does not exist."""


class ConcurrencyExhausted(TopologyError):
    """Lost the compare-and-swap race more times than the retry budget allows."""


class DeadlineExceeded(ConcurrencyExhausted):
    """Caller-supplied timeout expired before the mutation could be committed."""


class StoreUnavailable(TopologyError):
    """Key-value backend could not be reached or returned a transport error."""


@dataclass(frozen=True)
class ErrorTemplate:
    name: str
    msg: str
    args: Tuple[str, ...]
    kind: type


ERROR_TEMPLATES: Dict[int, ErrorTemplate] = {
    1: ErrorTemplate(
        "INVALID_IDENTIFIER",
        "Invalid {kind} name '{name}': expected [A-Za-z_][A-Za-z0-9_-]* of at most 63 characters",
        ("kind", "name", "field"),
        ValidationError,
    ),
    2: ErrorTemplate(
        "INVALID_OPTION",
        "Invalid value for '{field}': {reason}",
        ("field", "reason"),
        ValidationError,
    ),
    3: ErrorTemplate(
        "UNKNOWN_OPTION",
        "Unknown {kind} option '{field}'",
        ("kind", "field"),
        ValidationError,
    ),
    4: ErrorTemplate(
        "IMMUTABLE_OPTION",
        "Option '{field}' cannot be changed after the cluster is bootstrapped",
        ("field",),
        ValidationError,
    ),
    5: ErrorTemplate(
        "MULTIPLE_MASTERS",
        "Replicaset '{replicaset_name}' is in single master mode but has several masters: {masters}",
        ("replicaset_name", "masters", "field"),
        ValidationError,
    ),
    6: ErrorTemplate(
        "MASTER_MODE_TRANSITION",
        "Replicaset '{replicaset_name}' cannot switch to '{master_mode}' while it has masters {masters}",
        ("replicaset_name", "master_mode", "masters", "field"),
        ValidationError,
    ),
    7: ErrorTemplate(
        "REPLICASET_NOT_EMPTY",
        "Replicaset '{replicaset_name}' still has instances: {instances}",
        ("replicaset_name", "instances"),
        ValidationError,
    ),
    8: ErrorTemplate(
        "INSTANCE_EXPELLED",
        "Instance '{instance_name}' is expelled",
        ("instance_name",),
        ValidationError,
    ),
    9: ErrorTemplate(
        "REPLICASET_EXPELLED",
        "Replicaset '{replicaset_name}' is expelled",
        ("replicaset_name",),
        ValidationError,
    ),
    10: ErrorTemplate(
        "SELF_LINK",
        "Instance '{instance_name}' cannot replicate from itself",
        ("instance_name", "field"),
        ValidationError,
    ),
    11: ErrorTemplate(
        "WRONG_REPLICASET",
        "Instance '{instance_name}' belongs to replicaset '{replicaset_name}', not '{expected_replicaset}'",
        ("instance_name", "replicaset_name", "expected_replicaset"),
        ValidationError,
    ),
    12: ErrorTemplate(
        "DUPLICATE_INSTANCE",
        "Instance name '{instance_name}' is used in several replicasets: {replicasets}",
        ("instance_name", "replicasets"),
        ValidationError,
    ),
    13: ErrorTemplate(
        "INVALID_FAILOVER_PRIORITY",
        "Failover priority of replicaset '{replicaset_name}' is invalid: {reason}",
        ("replicaset_name", "reason", "field"),
        ValidationError,
    ),
    14: ErrorTemplate(
        "INVALID_SHARDING_CONFIG",
        "Sharding configuration is invalid: {reason}",
        ("reason",),
        ValidationError,
    ),
    15: ErrorTemplate(
        "DOCUMENT_CORRUPTED",
        "Stored topology '{topology_name}' cannot be decoded: {reason}",
        ("topology_name", "reason"),
        ValidationError,
    ),
    16: ErrorTemplate(
        "NAME_CONFLICT",
        "{kind} with name '{name}' already exists",
        ("kind", "name"),
        NameConflict,
    ),
    17: ErrorTemplate(
        "REPLICASET_NOT_FOUND",
        "Replicaset '{replicaset_name}' not found",
        ("replicaset_name",),
        NotFound,
    ),
    18: ErrorTemplate(
        "INSTANCE_NOT_FOUND",
        "Instance '{instance_name}' not found",
        ("instance_name",),
        NotFound,
    ),
    19: ErrorTemplate(
        "TOPOLOGY_NOT_FOUND",
        "Topology '{topology_name}' not found",
        ("topology_name",),
        NotFound,
    ),
    20: ErrorTemplate(
        "CONCURRENCY_EXHAUSTED",
        "Topology '{topology_name}' was modified concurrently; gave up after {attempts} attempts",
        ("topology_name", "attempts"),
        ConcurrencyExhausted,
    ),
    21: ErrorTemplate(
        "DEADLINE_EXCEEDED",
        "Mutation of topology '{topology_name}' did not complete within {timeout}s",
        ("topology_name", "timeout"),
        DeadlineExceeded,
    ),
    22: ErrorTemplate(
        "STORE_UNAVAILABLE",
        "Key-value store is unavailable for topology '{topology_name}': {reason}",
        ("topology_name", "reason"),
        StoreUnavailable,
    ),
}

# User-visible error_name -> error_number dictionary.
error_code: Dict[str, int] = {}
for _code, _template in ERROR_TEMPLATES.items():
    assert _template.name not in error_code, "Duplicate error name"
    error_code[_template.name] = _code


def make_error(error_name: str, /, **fields: Any) -> TopologyError:
    """
    Construct a taxonomy error.

    Args:
        error_name: Template name, e.g. 'INSTANCE_NOT_FOUND'. Positional only,
            since templates may carry a field called name.
        **fields: Values for the template's args. Every arg used by the message
            must be given; 'field' is optional and defaults to None.

    Returns:
        Exception instance of the template's class (not raised).
    """
    code = error_code.get(error_name)
    assert code is not None, f"Error template {error_name} is not found"
    template = ERROR_TEMPLATES[code]
    unknown = set(fields) - set(template.args)
    assert not unknown, f"Unexpected arguments {sorted(unknown)} for {error_name} error"
    values = {arg: fields.get(arg) for arg in template.args}
    message = template.msg.format(**values)
    return template.kind(code, template.name, message, values)


def http_status(error: TopologyError) -> int:
    """HTTP status used by the admin API for an error class."""
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, NotFound):
        return 404
    if isinstance(error, DeadlineExceeded):
        return 504
    if isinstance(error, (NameConflict, ConcurrencyExhausted)):
        return 409
    if isinstance(error, StoreUnavailable):
        return 503
    return 500
