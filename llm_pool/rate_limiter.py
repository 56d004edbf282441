# LLM Pool - prioritized, rate-limited failover pool for LLM backends
# Copyright (C) 2025
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Per-destination fixed-window rate limiter.

This is a client-side courtesy limiter: it keeps the pool under the
configured per-minute ceiling, it does not guarantee the backend's own
limiter is respected.
"""
import time
import logging
from typing import Callable

from .destination import Destination

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0


class RateLimiter:
    """Fixed-window request counter, evaluated under each destination's own lock."""

    def __init__(
        self,
        window: float = WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time
    ):
        """
        Args:
            window: Window length in seconds
            clock: Monotonic clock used for window arithmetic
            wall_clock: Clock used for last-used timestamps
        """
        self.window = window
        self.clock = clock
        self.wall_clock = wall_clock

    def start_window(self, destination: Destination) -> None:
        """Open a fresh window for a newly registered destination."""
        with destination.lock:
            destination.request_count = 0
            destination.window_start = self.clock()

    def permits(self, destination: Destination) -> bool:
        """
        Check whether the destination may take another call in the current window.

        Resets the window first when it has elapsed. A quota of zero never permits.
        """
        with destination.lock:
            now = self.clock()
            if now - destination.window_start >= self.window:
                destination.request_count = 0
                destination.window_start = now

            allowed = destination.request_count < destination.requests_per_minute
            count = destination.request_count

        if not allowed:
            logger.warning(
                f"⚠️  Destination '{destination.name}' is rate limited: "
                f"{count}/{destination.requests_per_minute} requests in {self.window:.0f}s"
            )
        return allowed

    def record(self, destination: Destination, success: bool) -> None:
        """Record one dispatched attempt against the destination."""
        with destination.lock:
            destination.request_count += 1
            destination.total_requests += 1
            destination.last_used = self.wall_clock()
            if not success:
                destination.errors += 1
