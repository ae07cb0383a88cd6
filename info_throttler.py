"""Rate-limit evaluation lines forwarded to the remote service."""

import time
from collections.abc import Callable

THROTTLE_WINDOW = 0.5  # seconds


class InfoThrottler:
    """At-most-one-per-window sampling filter for evaluation lines.

    Every observed line replaces the single pending slot. The pending line is
    emitted only when a line arrives more than ``window`` seconds after the
    previous emission. There is no trailing flush: a line held inside the
    window stays pending until another line arrives, or forever if none does.
    """

    def __init__(
        self,
        callback: Callable[[str], None],
        window: float = THROTTLE_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.callback = callback
        self.window = window
        self._clock = clock
        self.pending: str | None = None
        self.last_emit_time = clock()

    def observe(self, line: str) -> bool:
        """Record line as pending and emit it if the window has elapsed.

        Returns:
            True if an update was emitted by this call.
        """
        now = self._clock()
        self.pending = line
        if now - self.last_emit_time > self.window:
            self.callback(self.pending)
            self.last_emit_time = now
            self.pending = None
            return True
        return False
