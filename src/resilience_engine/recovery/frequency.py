"""Rolling error-frequency counter with per-key thresholds.

Counts occurrences of each derived error key inside fixed windows. All
counts drop to zero at each window boundary; within a window a key's
count only grows, except when a successful recovery resets it. Crossing
a key's threshold is reported once per window.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from resilience_engine.config import ErrorFrequencySettings

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_KEY_MESSAGE_WORDS = 3


def error_key_for(error: BaseException) -> str:
    """Derive the frequency key: error type plus the message's first words."""
    words = str(error).split(" ")[:_KEY_MESSAGE_WORDS]
    return f"{type(error).__name__}:{' '.join(words)}"


class ErrorFrequencyCounter:
    """Per-key error counts reset on a fixed interval.

    Attributes:
        window_seconds: Length of one counting window in seconds.
        default_threshold: Threshold for keys without an override.
    """

    def __init__(
        self,
        window_seconds: float = 300.0,
        default_threshold: int = 10,
        thresholds: dict[str, int] | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_seconds = window_seconds
        self.default_threshold = default_threshold
        self._thresholds = dict(thresholds or {})
        self._clock = clock

        self._counts: dict[str, int] = {}
        self._signalled: set[str] = set()
        self._window_start = clock()

    @classmethod
    def from_settings(
        cls,
        settings: ErrorFrequencySettings,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> ErrorFrequencyCounter:
        return cls(
            window_seconds=settings.window_seconds,
            default_threshold=settings.default_threshold,
            thresholds=settings.thresholds,
            clock=clock,
        )

    def set_threshold(self, key: str, threshold: int) -> None:
        if threshold < 1:
            msg = f"Threshold must be >= 1, got {threshold}"
            raise ValueError(msg)
        self._thresholds[key] = threshold

    def threshold_for(self, key: str) -> int:
        return self._thresholds.get(key, self.default_threshold)

    def record(self, key: str) -> bool:
        """Count one occurrence of ``key``.

        Args:
            key: Derived error key (see :func:`error_key_for`).

        Returns:
            True exactly when this occurrence is the first in the current
            window to reach the key's threshold.
        """
        self._roll_window()
        count = self._counts.get(key, 0) + 1
        self._counts[key] = count

        if count >= self.threshold_for(key) and key not in self._signalled:
            self._signalled.add(key)
            return True
        return False

    def count(self, key: str) -> int:
        self._roll_window()
        return self._counts.get(key, 0)

    def reset(self, key: str) -> None:
        """Forget the count for ``key`` within the current window."""
        self._counts.pop(key, None)

    def snapshot(self) -> dict[str, int]:
        self._roll_window()
        return dict(self._counts)

    def _roll_window(self) -> None:
        elapsed = self._clock() - self._window_start
        if elapsed < self.window_seconds:
            return
        windows = int(elapsed // self.window_seconds)
        self._window_start += windows * self.window_seconds
        if self._counts:
            logger.debug("error_counts_reset", keys=len(self._counts))
        self._counts.clear()
        self._signalled.clear()
