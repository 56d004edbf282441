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
A registered backend destination and its runtime counters.
"""
import threading
from datetime import datetime, timezone
from typing import Optional

from .config import DestinationConfig
from .models import DestinationInfo, DestinationStats


class Destination:
    """
    A backend destination plus the mutable state the pool keeps for it.

    All counters are read and written only while holding ``self.lock``.
    The lock is scoped to this destination alone.
    """

    def __init__(self, config: DestinationConfig):
        self.config = config
        self.lock = threading.Lock()

        # Rate limit window
        self.request_count = 0
        self.window_start = 0.0

        # Usage tracking
        self.total_requests = 0
        self.errors = 0
        self.last_used = 0.0  # Wall clock; 0.0 means never used

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def protocol(self) -> str:
        return self.config.protocol

    @property
    def api_key(self) -> str:
        return self.config.api_key

    @property
    def base_url(self) -> str:
        return self.config.base_url

    @property
    def model(self) -> str:
        return self.config.model

    @property
    def priority(self) -> int:
        return self.config.priority

    @property
    def requests_per_minute(self) -> int:
        return self.config.requests_per_minute

    def last_used_at(self) -> float:
        with self.lock:
            return self.last_used

    def get_stats(self) -> DestinationStats:
        """Snapshot this destination's counters."""
        with self.lock:
            success_rate = 0.0
            if self.total_requests > 0:
                success_rate = (self.total_requests - self.errors) / self.total_requests * 100

            last_used: Optional[datetime] = None
            if self.last_used > 0:
                last_used = datetime.fromtimestamp(self.last_used, tz=timezone.utc)

            return DestinationStats(
                type=self.protocol,
                priority=self.priority,
                requests_per_minute=self.requests_per_minute,
                current_requests=self.request_count,
                total_requests=self.total_requests,
                errors=self.errors,
                last_used=last_used,
                success_rate=success_rate
            )

    def describe(self) -> DestinationInfo:
        """Describe this destination without exposing its credential."""
        return DestinationInfo(
            name=self.name,
            type=self.protocol,
            base_url=self.base_url,
            model=self.model,
            priority=self.priority,
            requests_per_minute=self.requests_per_minute
        )

    def __repr__(self) -> str:
        return f"Destination(name='{self.name}', protocol='{self.protocol}', priority={self.priority})"
