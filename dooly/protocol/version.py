"""Dooly protocol version: single source of truth is pyproject.toml."""

from __future__ import annotations

from dooly.config import settings

DOOLY_VERSION: str = settings.app_version

DOOLY_PROTOCOL_VERSION: str = DOOLY_VERSION

_version_parts = DOOLY_VERSION.split(".")
DOOLY_VERSION_MAJOR: int = int(_version_parts[0]) if _version_parts[0].isdigit() else 0


def is_compatible(client_version: str) -> bool:
    """Check if a client version is compatible (same major version)."""
    try:
        parts = client_version.split(".")
        client_major = int(parts[0])
        return client_major == DOOLY_VERSION_MAJOR
    except (ValueError, IndexError):
        return False
