"""Exponential backoff helper."""

from __future__ import annotations

import random


def exponential(
    retry_num: int,
    base_delay: float,
    max_delay: float,
    factor: float = 2.0,
) -> float:
    """Compute how many seconds to wait before retry number ``retry_num``.

    The first attempt (retry 0) does not wait. Jitter only ever shortens the
    delay, by up to half, and the result never exceeds ``max_delay``.
    """
    if retry_num == 0:
        return 0.0
    delay = base_delay * factor ** retry_num
    delay -= delay * 0.5 * random.random()
    return min(max_delay, delay)
