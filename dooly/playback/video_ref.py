"""Video reference validation.

A video ref is the 11-character token a hosted-video URL carries
(``[A-Za-z0-9_-]{11}``).  Anything else from a client is dropped silently.
"""
from __future__ import annotations

import re
from collections.abc import Iterable

VIDEO_REF_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")


def is_valid_ref(value: object) -> bool:
    return isinstance(value, str) and VIDEO_REF_PATTERN.fullmatch(value) is not None


def filter_refs(values: Iterable[object]) -> list[str]:
    """Keep conforming refs in first-seen order, without duplicates."""
    seen: set[str] = set()
    refs: list[str] = []
    for value in values:
        if is_valid_ref(value) and value not in seen:
            seen.add(value)
            refs.append(value)
    return refs
