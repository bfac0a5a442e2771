from __future__ import annotations

import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)

SAVE_DEBOUNCE_MS = 1000


class DebouncedSaver:
    """Clock-driven write coalescing.

    Every ``request`` cancels the pending write and reschedules it ``delay_ms``
    later; ``poll`` runs the write once the deadline has passed. Driven by the
    caller's event loop, so it never runs concurrently with game state changes.
    """

    def __init__(self, callback: Callable[[], None], *, delay_ms: int = SAVE_DEBOUNCE_MS) -> None:
        if not isinstance(delay_ms, int) or delay_ms < 0:
            raise ValueError("delay_ms must be a non-negative integer")
        self._callback = callback
        self.delay_ms = delay_ms
        self._due_ms: int | None = None

    @property
    def pending(self) -> bool:
        return self._due_ms is not None

    @property
    def due_ms(self) -> int | None:
        return self._due_ms

    def request(self, now_ms: int) -> None:
        self._due_ms = now_ms + self.delay_ms

    def cancel(self) -> bool:
        was_pending = self._due_ms is not None
        self._due_ms = None
        return was_pending

    def poll(self, now_ms: int) -> bool:
        if self._due_ms is None or now_ms < self._due_ms:
            return False
        return self.flush()

    def flush(self) -> bool:
        if self._due_ms is None:
            return False
        self._due_ms = None
        logger.debug("running debounced save")
        self._callback()
        return True
