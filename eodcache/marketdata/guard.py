"""Plausibility guard for freshly fetched closes."""

from __future__ import annotations

from eodcache.utils import positive_float

MAX_JUMP_FACTOR = 12.0


def is_plausible(
    new_close: float | None,
    last_close: float | None,
    max_jump_factor: float = MAX_JUMP_FACTOR,
) -> bool:
    """Reject a close more than ``max_jump_factor`` away from the last known-good one.

    Without a usable baseline any finite positive close is accepted.
    """
    new = positive_float(new_close)
    if new is None:
        return False
    last = positive_float(last_close)
    if last is None:
        return True
    ratio = new / last
    return 1.0 / max_jump_factor <= ratio <= max_jump_factor
