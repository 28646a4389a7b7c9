"""Protocol introspection endpoints.

Exposes the protocol version, hash, and channel schemas so clients (and CI)
can detect drift without reading source code.
"""

from __future__ import annotations

from fastapi import APIRouter

from dooly.protocol.hash import compute_protocol_hash
from dooly.protocol.inbound import ALL_INBOUND_CHANNELS, INBOUND_PAYLOADS, PRIVILEGED_CHANNELS
from dooly.protocol.registry import ALL_EVENT_CHANNELS, EVENT_REGISTRY
from dooly.protocol.version import DOOLY_PROTOCOL_VERSION

router = APIRouter()


@router.get("/protocol")
async def protocol_info():
    """Protocol version, hash, and channel lists."""
    return {
        "protocolVersion": DOOLY_PROTOCOL_VERSION,
        "protocolHash": compute_protocol_hash(),
        "outboundChannels": sorted(ALL_EVENT_CHANNELS),
        "inboundChannels": sorted(ALL_INBOUND_CHANNELS),
        "privilegedChannels": sorted(PRIVILEGED_CHANNELS),
    }


@router.get("/protocol/schema.json")
async def protocol_schema():
    """JSON Schema for every channel, cacheable by protocolHash."""
    return {
        "protocolVersion": DOOLY_PROTOCOL_VERSION,
        "protocolHash": compute_protocol_hash(),
        "outbound": {
            channel: EVENT_REGISTRY[channel].model_json_schema(by_alias=True)
            for channel in sorted(EVENT_REGISTRY)
        },
        "inbound": {
            channel: INBOUND_PAYLOADS[channel].model_json_schema(by_alias=True)
            for channel in sorted(INBOUND_PAYLOADS)
        },
    }
