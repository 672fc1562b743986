"""Centralized constants for the lifecycle reconciler.

Transport status codes, polling defaults and the built-in catalog of
resource types live here so that per-type behaviour stays configuration
rather than branching logic in the engine.
"""

from __future__ import annotations

from typing import Any, Dict

# ---------------------------------------------------------------------------
# Control plane
# ---------------------------------------------------------------------------
DEFAULT_ENDPOINT = "http://127.0.0.1:8080"

# ---------------------------------------------------------------------------
# Composite identity
# ---------------------------------------------------------------------------
ID_SEPARATOR = ","
# Stand-ins for "%" and the separator inside a single key part
ID_ESCAPES = (("%", "%25"), (",", "%2C"))
ID_FIELD = "id"

# ---------------------------------------------------------------------------
# Transport status codes
# ---------------------------------------------------------------------------
ABSENT_STATUS_CODES = frozenset({404, 410})
READ_ABSENT_STATUS_CODES = frozenset({404, 410})
UPDATE_MISSING_STATUS_CODE = 404

# Server-side errors that are worth polling through
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504, 520, 521, 522, 523, 524})

# ---------------------------------------------------------------------------
# Polling and deadlines (seconds)
# ---------------------------------------------------------------------------
DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_TIMEOUT = 30 * 60.0
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_CONNECT_TIMEOUT = 5.0
DEFAULT_READ_RETRIES = 2

# Slice used while waiting on an in-flight fetch, bounds cancellation latency
FETCH_WAIT_SLICE = 0.05

# Number of run records kept in the state file
MAX_RUN_HISTORY = 200

# Interval between run history checks while streaming run events
RUN_EVENT_POLL_INTERVAL = 0.5

# ---------------------------------------------------------------------------
# Built-in resource types.
#
# Each entry is validated into a ``ResourceTypeConfig``. ``statuses`` is the
# per-type lookup table handed to the status classifier; ``fields`` lists the
# attributes sourced from the control plane; ``write_once_fields`` are only
# ever returned by the mutating call (secrets) and survive later reads.
# ---------------------------------------------------------------------------
_DNS_STATUSES: Dict[str, Any] = {
    "success": ["CREATE_SUCCEEDED", "UPDATE_SUCCEEDED"],
    "failure": ["CREATE_FAILED", "UPDATE_FAILED", "DELETE_FAILED"],
    "absent": ["DELETE_SUCCEEDED"],
}

BUILTIN_RESOURCE_TYPES: Dict[str, Dict[str, Any]] = {
    "network": {
        "identity": [
            {"name": "project_id"},
            {"name": "network_id", "wire": "networkId"},
        ],
        "status_field": "state",
        "statuses": {"success": ["CREATED"], "failure": ["ERROR"], "absent": ["DELETED"]},
        "poll_interval": 1.0,
        "timeout": 30 * 60.0,
        "fields": [
            "name",
            "nameservers",
            "prefixes",
            "public_ip",
            "gateway",
            "routed",
            "labels",
            "state",
        ],
        "unordered_fields": ["nameservers", "prefixes"],
        "api": {
            "collection": "/v1/projects/{project_id}/networks",
            "item": "/v1/projects/{project_id}/networks/{network_id}",
            "update_method": "PATCH",
        },
    },
    "dns_zone": {
        "identity": [
            {"name": "project_id"},
            {"name": "zone_id", "wire": "id"},
        ],
        "status_field": "state",
        "statuses": _DNS_STATUSES,
        "poll_interval": 2.0,
        "timeout": 45 * 60.0,
        "fields": [
            "name",
            "dns_name",
            "acl",
            "default_ttl",
            "primaries",
            "primary_name_server",
            "serial_number",
            "type",
            "visibility",
            "description",
            "contact_email",
            "is_reverse_zone",
            "record_count",
            "state",
        ],
        "api": {
            "collection": "/v1/projects/{project_id}/zones",
            "item": "/v1/projects/{project_id}/zones/{zone_id}",
            "envelope": "zone",
            "update_method": "PATCH",
        },
    },
    "dns_record_set": {
        "identity": [
            {"name": "project_id"},
            {"name": "zone_id"},
            {"name": "record_set_id", "wire": "id"},
        ],
        "status_field": "state",
        "statuses": _DNS_STATUSES,
        "poll_interval": 2.0,
        "timeout": 30 * 60.0,
        "fields": ["name", "records", "ttl", "type", "comment", "active", "fqdn", "state"],
        "unordered_fields": ["records"],
        "api": {
            "collection": "/v1/projects/{project_id}/zones/{zone_id}/rrsets",
            "item": "/v1/projects/{project_id}/zones/{zone_id}/rrsets/{record_set_id}",
            "envelope": "rrset",
            "update_method": "PATCH",
        },
    },
    "load_balancer": {
        "identity": [
            {"name": "project_id"},
            {"name": "region", "default_region": True},
            {"name": "name", "wire": "name"},
        ],
        "status_field": "status",
        "statuses": {"success": ["STATUS_READY"], "failure": ["STATUS_ERROR"], "absent": []},
        "poll_interval": 1.0,
        "timeout": 30 * 60.0,
        "fields": [
            "external_address",
            "private_address",
            "listeners",
            "networks",
            "target_pools",
            "options",
            "plan_id",
            "status",
        ],
        "api": {
            "collection": "/v2/projects/{project_id}/regions/{region}/load-balancers",
            "item": "/v2/projects/{project_id}/regions/{region}/load-balancers/{name}",
            "update_method": "PUT",
        },
    },
    "mariadb_instance": {
        "identity": [
            {"name": "project_id"},
            {"name": "instance_id", "wire": "instanceId"},
        ],
        "status_field": "last_operation.state",
        "statuses": {"success": ["succeeded"], "failure": ["failed"], "absent": []},
        "poll_interval": 5.0,
        "timeout": 45 * 60.0,
        "fields": [
            "name",
            "plan_id",
            "plan_name",
            "version",
            "parameters",
            "cf_guid",
            "cf_space_guid",
            "dashboard_url",
            "image_url",
            "cf_organization_guid",
            "last_operation",
        ],
        "api": {
            "collection": "/v1/projects/{project_id}/instances",
            "item": "/v1/projects/{project_id}/instances/{instance_id}",
            "update_method": "PATCH",
        },
    },
    "mariadb_credential": {
        "identity": [
            {"name": "project_id"},
            {"name": "instance_id"},
            {"name": "credential_id", "wire": "id"},
        ],
        "status_field": None,
        "statuses": {"success": [], "failure": [], "absent": []},
        "poll_interval": 1.0,
        "timeout": 10 * 60.0,
        "fields": ["host", "hosts", "name", "password", "port", "uri", "username"],
        "api": {
            "collection": "/v1/projects/{project_id}/instances/{instance_id}/credentials",
            "item": "/v1/projects/{project_id}/instances/{instance_id}/credentials/{credential_id}",
            "envelope": "raw.credentials",
            "update_method": None,
        },
    },
    "cdn_distribution": {
        "identity": [
            {"name": "project_id"},
            {"name": "distribution_id", "wire": "id"},
        ],
        "status_field": "status",
        "statuses": {"success": ["ACTIVE"], "failure": ["ERROR"], "absent": []},
        "poll_interval": 2.0,
        "timeout": 60 * 60.0,
        "fields": ["config", "domains", "errors", "status", "created_at", "updated_at"],
        "api": {
            "collection": "/v1beta/projects/{project_id}/distributions",
            "item": "/v1beta/projects/{project_id}/distributions/{distribution_id}",
            "envelope": "distribution",
            "update_method": "PATCH",
        },
    },
    "cdn_custom_domain": {
        "identity": [
            {"name": "project_id"},
            {"name": "distribution_id"},
            {"name": "name", "wire": "name"},
        ],
        "status_field": "status",
        "statuses": {"success": ["ACTIVE"], "failure": ["ERROR"], "absent": []},
        "poll_interval": 2.0,
        "timeout": 30 * 60.0,
        "fields": ["status", "errors", "certificate"],
        "api": {
            "collection": "/v1beta/projects/{project_id}/distributions/{distribution_id}/customDomains",
            "item": "/v1beta/projects/{project_id}/distributions/{distribution_id}/customDomains/{name}",
            "create_method": "PUT",
            "create_path": "/v1beta/projects/{project_id}/distributions/{distribution_id}/customDomains/{name}",
            "envelope": "customDomain",
            "update_method": "PUT",
        },
    },
    "git_instance": {
        "identity": [
            {"name": "project_id"},
            {"name": "instance_id", "wire": "id"},
        ],
        "status_field": "state",
        "statuses": {"success": ["Ready"], "failure": ["Error"], "absent": []},
        "poll_interval": 2.0,
        "timeout": 20 * 60.0,
        "fields": ["name", "url", "version", "created", "consumed_disk", "consumed_object_storage", "state"],
        "api": {
            "collection": "/v1beta/projects/{project_id}/instances",
            "item": "/v1beta/projects/{project_id}/instances/{instance_id}",
            "update_method": None,
        },
    },
    "model_serving_token": {
        "identity": [
            {"name": "project_id"},
            {"name": "region", "default_region": True},
            {"name": "token_id", "wire": "id"},
        ],
        "status_field": "state",
        "statuses": {"success": ["active"], "failure": [], "absent": ["inactive"]},
        "poll_interval": 1.0,
        "timeout": 10 * 60.0,
        "fields": ["name", "description", "state", "valid_until"],
        "write_once_fields": ["content"],
        "api": {
            "collection": "/v1/projects/{project_id}/regions/{region}/tokens",
            "item": "/v1/projects/{project_id}/regions/{region}/tokens/{token_id}",
            "envelope": "token",
            "update_method": "PATCH",
        },
    },
}
