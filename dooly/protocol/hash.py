"""Deterministic protocol fingerprint.

Computes a SHA-256 hash of:
  1. Protocol version string
  2. All outbound event model JSON schemas (sorted by channel)
  3. All inbound payload model JSON schemas (sorted by channel)
  4. The privileged channel set

The hash changes if and only if the wire contract changes.
"""

from __future__ import annotations

import hashlib
import json

from dooly.protocol.inbound import INBOUND_PAYLOADS, PRIVILEGED_CHANNELS
from dooly.protocol.registry import EVENT_REGISTRY
from dooly.protocol.version import DOOLY_PROTOCOL_VERSION


def _event_schemas_canonical() -> list[dict[str, object]]:
    schemas: list[dict[str, object]] = []
    for channel in sorted(EVENT_REGISTRY.keys()):
        schema: dict[str, object] = EVENT_REGISTRY[channel].model_json_schema(by_alias=True)
        schemas.append({"channel": channel, "schema": schema})
    return schemas


def _inbound_schemas_canonical() -> list[dict[str, object]]:
    schemas: list[dict[str, object]] = []
    for channel in sorted(INBOUND_PAYLOADS.keys()):
        schema: dict[str, object] = INBOUND_PAYLOADS[channel].model_json_schema(by_alias=True)
        schemas.append({"channel": channel, "schema": schema})
    return schemas


def compute_protocol_hash() -> str:
    """Compute deterministic SHA-256 hash of the entire protocol surface."""
    payload = {
        "version": DOOLY_PROTOCOL_VERSION,
        "events": _event_schemas_canonical(),
        "inbound": _inbound_schemas_canonical(),
        "privileged": sorted(PRIVILEGED_CHANNELS),
    }
    serialized = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def compute_protocol_hash_short() -> str:
    """16-char short hash for display / header use."""
    return compute_protocol_hash()[:16]
