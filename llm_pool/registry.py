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
Destination registry and selector.

The registry keeps destinations sorted by (priority, groq first, registration
order). Selection walks that order and returns the first destination whose
rate limiter permits a call, falling back to the least recently used one when
every destination is exhausted.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

from .config import PROTOCOL_GROQ
from .destination import Destination
from .errors import ConfigurationError, NoDestinations
from .models import DestinationInfo, DestinationStats
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Many concurrent readers or one writer. Writers are preferred once waiting."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


def _sort_key(indexed: Tuple[int, Destination]) -> Tuple[int, int, int]:
    order, destination = indexed
    return (destination.priority, 0 if destination.protocol == PROTOCOL_GROQ else 1, order)


class DestinationRegistry:
    """Ordered set of destinations with shared-read / exclusive-write access."""

    def __init__(self, limiter: Optional[RateLimiter] = None):
        self.limiter = limiter or RateLimiter()
        self._destinations: List[Destination] = []
        self._order: Dict[str, int] = {}  # name -> registration sequence number
        self._next_order = 0
        self._lock = ReadWriteLock()

    def add(self, destination: Destination) -> None:
        """
        Register a destination and re-sort the sequence.

        Raises:
            ConfigurationError: If a destination with the same name exists
        """
        if self.get(destination.name) is not None:
            raise ConfigurationError(
                f"destination '{destination.name}' is already registered",
                destination=destination.name
            )
        # Window is opened before taking the registry lock so the two locks never nest
        self.limiter.start_window(destination)

        with self._lock.write():
            if destination.name in self._order:
                raise ConfigurationError(
                    f"destination '{destination.name}' is already registered",
                    destination=destination.name
                )
            self._order[destination.name] = self._next_order
            self._next_order += 1

            indexed = [(self._order[d.name], d) for d in self._destinations]
            indexed.append((self._order[destination.name], destination))
            indexed.sort(key=_sort_key)
            self._destinations = [d for _, d in indexed]

        logger.info(
            f"Registered destination '{destination.name}' ({destination.protocol}) "
            f"with priority {destination.priority}"
        )

    def remove(self, name: str) -> bool:
        """Remove a destination by name. Returns False if it was not registered."""
        with self._lock.write():
            for i, destination in enumerate(self._destinations):
                if destination.name == name:
                    del self._destinations[i]
                    del self._order[name]
                    logger.info(f"Removed destination '{name}'")
                    return True
        return False

    def get(self, name: str) -> Optional[Destination]:
        with self._lock.read():
            for destination in self._destinations:
                if destination.name == name:
                    return destination
        return None

    def snapshot(self) -> List[Destination]:
        """Return the destinations in selection order."""
        with self._lock.read():
            return list(self._destinations)

    def names(self) -> List[str]:
        return [d.name for d in self.snapshot()]

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._destinations)

    def select(self) -> Destination:
        """
        Pick the destination for the next attempt.

        Returns the first destination in priority order whose rate limiter
        permits a call. When all are exhausted, returns the one with the
        earliest last-used timestamp regardless of priority.

        Raises:
            NoDestinations: If the registry is empty
        """
        with self._lock.read():
            if not self._destinations:
                raise NoDestinations()

            for destination in self._destinations:
                if self.limiter.permits(destination):
                    return destination

            # Ties keep the earlier destination in priority order
            coldest = self._destinations[0]
            coldest_used = coldest.last_used_at()
            for destination in self._destinations[1:]:
                used = destination.last_used_at()
                if used < coldest_used:
                    coldest, coldest_used = destination, used

        logger.info(f"All destinations rate limited, falling back to coldest '{coldest.name}'")
        return coldest

    def any_permits(self) -> bool:
        with self._lock.read():
            return any(self.limiter.permits(d) for d in self._destinations)

    def get_stats(self) -> Dict[str, DestinationStats]:
        with self._lock.read():
            return {d.name: d.get_stats() for d in self._destinations}

    def describe(self) -> List[DestinationInfo]:
        """List destinations in selection order with credentials masked."""
        return [d.describe() for d in self.snapshot()]
