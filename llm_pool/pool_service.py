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
Pool service that dispatches chat requests across destinations with failover
and per-destination rate limiting.
"""
import asyncio
import logging
import threading
import time
from typing import Any, Dict, List, Optional

import httpx

from .config import DestinationConfig
from .destination import Destination
from .errors import (
    ConfigurationError,
    ContractViolation,
    DecodeError,
    ExhaustionError,
    NoDestinations,
    TransportError,
    UpstreamError,
)
from .models import ChatRequest, ChatResponse, DestinationInfo, DestinationStats
from .rate_limiter import RateLimiter
from .registry import DestinationRegistry
from .translator import FormatTranslator

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class PoolService:
    """Pool of LLM destinations with priority selection and automatic failover."""

    def __init__(
        self,
        destinations: Optional[List[DestinationConfig]] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
        limiter: Optional[RateLimiter] = None,
        translator: Optional[FormatTranslator] = None
    ):
        """
        Initialize the pool.

        Args:
            destinations: Initial destination configurations, registered in order
            client: HTTP client to use; when omitted the pool creates and owns one
            timeout: Default request timeout in seconds for an owned client
            limiter: Rate limiter shared by all destinations
            translator: Wire format translator
        """
        self.limiter = limiter or RateLimiter()
        self.registry = DestinationRegistry(self.limiter)
        self.translator = translator or FormatTranslator()

        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

        # Metrics
        self._metrics_lock = threading.Lock()
        self.request_count = 0
        self.failover_count = 0

        for config in destinations or []:
            self.add_destination(config)

    def add_destination(self, config: DestinationConfig) -> Destination:
        """Register a new destination built from its configuration."""
        destination = Destination(config)
        self.registry.add(destination)
        return destination

    def remove_destination(self, name: str) -> bool:
        """Remove a destination. Returns False if no destination has that name."""
        return self.registry.remove(name)

    def list_destinations(self) -> List[DestinationInfo]:
        """List destinations in selection order, credentials masked."""
        return self.registry.describe()

    def destination_count(self) -> int:
        return len(self.registry)

    async def chat(self, request: ChatRequest, timeout: Optional[float] = None) -> ChatResponse:
        """
        Send a chat request using the best available destination.

        Attempts are sequential and bounded by the number of destinations
        registered when the call starts. Each attempt re-selects from the top
        of the priority order; nothing is excluded, so under full exhaustion
        the coldest destination keeps being chosen.

        Args:
            request: Canonical chat request
            timeout: Per-attempt timeout override in seconds

        Raises:
            NoDestinations: The pool is empty
            ConfigurationError: A selected destination has an unsupported protocol
            ContractViolation: The request cannot be represented for the selected destination
            ExhaustionError: Every attempt failed
        """
        with self._metrics_lock:
            self.request_count += 1

        max_attempts = self.destination_count()
        if max_attempts == 0:
            raise NoDestinations()

        last_error: Optional[Exception] = None

        for attempt in range(1, max_attempts + 1):
            try:
                destination = self.registry.select()
            except NoDestinations:
                # Registry emptied mid-call; keep the failure that got us here
                if last_error is None:
                    raise
                logger.error("🚨 No destinations left to fail over to")
                raise ExhaustionError(
                    f"all providers failed, last error: {last_error}",
                    last_error=last_error
                ) from last_error

            if attempt > 1:
                with self._metrics_lock:
                    self.failover_count += 1
                logger.info(f"🔄 Failing over to '{destination.name}' (attempt {attempt}/{max_attempts})")
            else:
                logger.info(f"Selected destination '{destination.name}' (attempt {attempt}/{max_attempts})")

            try:
                body = self.translator.to_wire(destination, request)
                url = self.translator.endpoint_url(destination)
                headers = self.translator.headers(destination)
            except (ConfigurationError, ContractViolation) as e:
                self.limiter.record(destination, success=False)
                logger.error(f"❌ Cannot build request for '{destination.name}': {e}")
                raise

            start_time = time.time()
            success = False
            try:
                payload = await self._send(destination, url, body, headers, timeout)
                response = self.translator.from_wire(destination, payload)
                success = True
            except (TransportError, UpstreamError, DecodeError) as e:
                last_error = e
                logger.warning(f"❌ Destination '{destination.name}' failed: {e}")
                continue
            except asyncio.CancelledError:
                logger.warning(f"Request to '{destination.name}' was cancelled")
                raise
            finally:
                # Exactly one record per attempt, whatever the outcome
                self.limiter.record(destination, success=success)

            duration = time.time() - start_time
            logger.info(f"✅ Success with destination '{destination.name}' in {duration:.2f}s")
            return response

        logger.error(f"🚨 All {max_attempts} attempts failed")
        raise ExhaustionError(
            f"all providers failed, last error: {last_error}",
            last_error=last_error
        ) from last_error

    async def _send(
        self,
        destination: Destination,
        url: str,
        body: bytes,
        headers: Dict[str, str],
        timeout: Optional[float]
    ) -> bytes:
        """Perform the transport call and return the body of a 200 response."""
        try:
            response = await self.client.post(
                url,
                content=body,
                headers=headers,
                timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT
            )
        except httpx.TimeoutException as e:
            raise TransportError(
                f"request to {destination.name} timed out",
                destination=destination.name
            ) from e
        except (httpx.RequestError, httpx.InvalidURL) as e:
            raise TransportError(
                f"connection error to {destination.name}: {e}",
                destination=destination.name
            ) from e
        except Exception as e:
            # e.g. a credential that cannot be encoded into a header
            raise TransportError(
                f"request to {destination.name} failed: {e}",
                destination=destination.name
            ) from e

        if response.status_code != 200:
            raise UpstreamError(
                f"provider {destination.name} returned status {response.status_code}: {response.text}",
                destination=destination.name,
                status_code=response.status_code,
                body=response.text
            )

        return response.content

    def get_stats(self) -> Dict[str, DestinationStats]:
        """Get statistics for every destination, keyed by name."""
        return self.registry.get_stats()

    def get_summary(self) -> Dict[str, Any]:
        """Get pool counters together with per-destination statistics."""
        with self._metrics_lock:
            request_count = self.request_count
            failover_count = self.failover_count

        stats = self.get_stats()
        return {
            "total_requests": request_count,
            "total_failovers": failover_count,
            "failover_rate": round(failover_count / max(request_count, 1) * 100, 2),
            "configured_destinations": len(stats),
            "destination_order": self.registry.names(),
            "destinations": {name: s.model_dump(mode="json") for name, s in stats.items()},
        }

    def is_healthy(self) -> bool:
        """True if any destination can take a call now, or at least one is registered."""
        if self.registry.any_permits():
            return True
        return self.destination_count() > 0

    async def aclose(self) -> None:
        """Close the HTTP client if the pool created it."""
        if self._owns_client:
            await self.client.aclose()

    def __repr__(self) -> str:
        return (
            f"PoolService(destinations={self.destination_count()}, "
            f"requests={self.request_count}, failovers={self.failover_count})"
        )
