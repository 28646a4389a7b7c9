"""
Clock reference endpoint.

Speaks the JSON-RPC shape the ``timesync`` browser client posts::

    → {"jsonrpc": "2.0", "id": 7, "method": "timesync"}
    ← {"jsonrpc": "2.0", "id": 7, "result": 1700000000000}

Batched requests (a JSON array) are answered with an array.
"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from dooly.config import settings
from dooly.realtime.hub import get_sync_hub

router = APIRouter()
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)

JSONRPC_INVALID_REQUEST = -32600
JSONRPC_METHOD_NOT_FOUND = -32601


def _answer(call: Any, server_time: int) -> dict[str, Any]:
    if not isinstance(call, dict):
        return {"jsonrpc": "2.0", "id": None,
                "error": {"code": JSONRPC_INVALID_REQUEST, "message": "Invalid Request"}}
    call_id = call.get("id")
    if call.get("method") != "timesync":
        return {"jsonrpc": "2.0", "id": call_id,
                "error": {"code": JSONRPC_METHOD_NOT_FOUND, "message": "Method not found"}}
    return {"jsonrpc": "2.0", "id": call_id, "result": server_time}


@router.post("/timesync")
@limiter.limit(settings.timesync_rate_limit)
async def timesync(request: Request) -> JSONResponse:
    """Return the server clock in epoch milliseconds."""
    server_time = get_sync_hub().clock.now_ms()
    try:
        body = await request.json()
    except ValueError:
        logger.debug("timesync: body is not JSON")
        return JSONResponse(_answer(None, server_time))
    if isinstance(body, list):
        return JSONResponse([_answer(call, server_time) for call in body])
    return JSONResponse(_answer(body, server_time))
