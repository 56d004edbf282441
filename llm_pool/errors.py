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
Error types raised by the provider pool.

Per-attempt failures (transport, upstream, decode) are absorbed by the
dispatcher and drive failover. Only exhaustion and configuration/contract
errors reach the caller.
"""
from typing import Optional


class PoolError(Exception):
    """Base class for all pool errors."""

    error_type = "pool_error"

    def __init__(self, message: str, destination: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.destination = destination


class ConfigurationError(PoolError):
    """A destination is configured in a way the pool cannot serve."""

    error_type = "configuration_error"


class ContractViolation(PoolError):
    """The request carries content the destination's protocol cannot represent."""

    error_type = "contract_violation"


class TransportError(PoolError):
    """The destination could not be reached."""

    error_type = "transport_error"


class UpstreamError(PoolError):
    """The destination answered with a non-success status."""

    error_type = "upstream_error"

    def __init__(self, message: str, destination: Optional[str] = None,
                 status_code: int = 0, body: str = ""):
        super().__init__(message, destination)
        self.status_code = status_code
        self.body = body


class DecodeError(PoolError):
    """The destination's response body could not be parsed."""

    error_type = "decode_error"


class ExhaustionError(PoolError):
    """Every attempt failed; carries the most recent underlying error."""

    error_type = "all_destinations_failed"

    def __init__(self, message: str, last_error: Optional[Exception] = None):
        super().__init__(message)
        self.last_error = last_error


class NoDestinations(ExhaustionError):
    """The registry holds no destinations."""

    error_type = "no_destinations"

    def __init__(self, message: str = "no destinations available"):
        super().__init__(message)
