"""
Admin privilege registry.

Privilege is caller-asserted: a connection sends ``session.identify`` with
``isAdmin`` and is trusted.  The registry only remembers who asserted it so
privileged playback controls can be gated and ``session.admins`` broadcast.
"""
from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class AdminRegistry:
    """Set of connection ids currently asserting admin privilege."""

    def __init__(self) -> None:
        self._ids: dict[str, None] = {}

    def identify(self, connection_id: str, is_admin: bool) -> bool:
        """Record an assertion. Returns ``True`` when membership changed."""
        if is_admin and connection_id not in self._ids:
            self._ids[connection_id] = None
            logger.info(f"Connection {connection_id[:8]} identified as admin")
            return True
        if not is_admin and connection_id in self._ids:
            del self._ids[connection_id]
            return True
        return False

    def remove(self, connection_id: str) -> bool:
        if connection_id not in self._ids:
            return False
        del self._ids[connection_id]
        return True

    def is_admin(self, connection_id: str) -> bool:
        return connection_id in self._ids

    def ids(self) -> list[str]:
        return list(self._ids)

    def clear(self) -> None:
        self._ids.clear()
