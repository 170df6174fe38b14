"""Exponential backoff delay calculation."""

from __future__ import annotations

import random
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from resilience_engine.retry import RetryOptions

_JITTER_RATIO = 0.25  # +/-25% of the computed delay


def compute_delay(
    attempt: int,
    options: RetryOptions,
    *,
    rng: Callable[[], float] = random.random,
) -> float:
    """Return the delay in seconds to wait after a failed ``attempt``.

    The raw delay is ``initial_delay * backoff_factor ** (attempt - 1)``
    capped at ``max_delay``. With jitter enabled the value is moved by a
    uniform offset of up to 25% in either direction, never below zero.

    Args:
        attempt: 1-based index of the attempt that just failed.
        options: Retry options supplying delay, cap, factor and jitter.
        rng: Source of uniform floats in ``[0, 1)``.

    Returns:
        Non-negative delay in seconds.
    """
    exponent = max(attempt - 1, 0)
    try:
        raw = options.initial_delay * options.backoff_factor**exponent
    except OverflowError:
        # Zero times any growth is still zero.
        raw = options.max_delay if options.initial_delay else 0.0
    delay = min(raw, options.max_delay)

    if options.jitter:
        jitter_range = delay * _JITTER_RATIO
        delay += (rng() * 2 - 1) * jitter_range

    return max(0.0, delay)
