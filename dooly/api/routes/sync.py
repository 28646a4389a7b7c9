"""
Realtime sync WebSocket.

One socket per client carries every channel as ``{"channel", "payload"}``
JSON frames.  The reader hands raw frames to the hub; a writer task drains
the connection's outbound queue.  Neither touches shared state directly.
"""
from __future__ import annotations

import asyncio
import logging
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from dooly.realtime.broadcaster import OutboundQueue
from dooly.realtime.hub import get_sync_hub

router = APIRouter()
logger = logging.getLogger(__name__)


async def _writer(websocket: WebSocket, queue: OutboundQueue) -> None:
    """Forward queued frames until the ``None`` sentinel arrives."""
    while True:
        frame = await queue.get()
        if frame is None:
            return
        await websocket.send_json(frame)


@router.websocket("/sync")
async def sync_websocket(websocket: WebSocket) -> None:
    """
    WebSocket endpoint for playback and document sync.

    The first frame sent is ``session.welcome`` with the server-issued
    connection id and the server clock.
    """
    await websocket.accept()

    connection_id = uuid.uuid4().hex
    hub = get_sync_hub()
    queue = hub.connect(connection_id)
    writer = asyncio.create_task(_writer(websocket, queue))

    try:
        while True:
            msg = await websocket.receive()
            if msg.get("type") == "websocket.disconnect":
                break
            raw = msg.get("text") or (msg.get("bytes") or b"").decode("utf-8", errors="replace")
            if not raw:
                continue
            hub.submit(connection_id, raw)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.exception(f"WebSocket error: {e}")
    finally:
        hub.disconnect(connection_id)
        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"Writer for {connection_id[:8]} ended with {type(e).__name__}: {e}")
        logger.info(f"Sync socket closed: {connection_id[:8]}")
