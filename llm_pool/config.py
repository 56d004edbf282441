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
Configuration management for the LLM pool.
"""
import json
import logging
from typing import Optional, Literal, List
from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

PROTOCOL_GROQ = "groq"
PROTOCOL_OPENAI = "openai"
PROTOCOL_ANTHROPIC = "anthropic"

ProtocolType = Literal["groq", "openai", "anthropic"]
KNOWN_PROTOCOLS = (PROTOCOL_GROQ, PROTOCOL_OPENAI, PROTOCOL_ANTHROPIC)

DEFAULT_SYSTEM_PROMPT = (
    "You are a professional invoice template designer who creates clean, "
    "elegant HTML templates with inline CSS for styling.\n"
    "If an image is provided, use it as the design reference for the template.\n"
    "Use double curly braces for placeholders, e.g. {{company_name}}. "
    "For lists use dot notation, e.g. {{list.item_name}}, and write only one "
    "table row with placeholders; it will be looped by the templating engine.\n"
    "Output only HTML with inline CSS, no external styles or scripts."
)


class DestinationConfig:
    """Configuration for a single backend destination."""

    def __init__(
        self,
        name: str,
        protocol: str,
        api_key: str,
        base_url: str,
        model: str,
        priority: int = 0,
        requests_per_minute: int = 60
    ):
        if not name:
            raise ValueError("Destination name must not be empty")
        if priority < 0:
            raise ValueError(f"Destination '{name}': priority must be >= 0, got {priority}")
        if requests_per_minute < 0:
            raise ValueError(
                f"Destination '{name}': requests_per_minute must be >= 0, got {requests_per_minute}"
            )
        if requests_per_minute == 0:
            logger.warning(
                f"Destination '{name}' has a quota of 0; it will only be used as the coldest fallback"
            )
        if protocol not in KNOWN_PROTOCOLS:
            logger.warning(f"Destination '{name}' uses unknown protocol '{protocol}'")

        self.name = name
        self.protocol = protocol
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.model = model
        self.priority = priority  # Lower number = higher priority
        self.requests_per_minute = requests_per_minute

    @classmethod
    def from_dict(cls, data: dict) -> "DestinationConfig":
        """Build a config from one entry of the POOL_DESTINATIONS JSON list."""
        return cls(
            name=data["name"],
            protocol=data["protocol"] if "protocol" in data else data["type"],
            api_key=data.get("api_key", ""),
            base_url=data["base_url"],
            model=data["model"],
            priority=int(data.get("priority", 0)),
            requests_per_minute=int(data.get("requests_per_minute", 60))
        )

    def __repr__(self) -> str:
        return (
            f"DestinationConfig(name='{self.name}', protocol='{self.protocol}', "
            f"priority={self.priority}, rpm={self.requests_per_minute})"
        )


class Settings(BaseSettings):
    """Application settings."""

    # Groq specific env vars
    groq_api_key: Optional[str] = Field(None, description="Groq API key")
    groq_base_url: str = Field(
        "https://api.groq.com/openai/v1",
        description="Groq API base URL"
    )
    groq_model: str = Field("openai/gpt-oss-20b", description="Groq model")
    groq_requests_per_minute: int = Field(30, description="Groq requests per minute")

    # OpenAI specific
    openai_api_key: Optional[str] = Field(None, description="OpenAI API key")
    openai_base_url: str = Field(
        "https://api.openai.com/v1",
        description="OpenAI API base URL"
    )
    openai_model: str = Field("gpt-4o-mini", description="OpenAI model")
    openai_requests_per_minute: int = Field(60, description="OpenAI requests per minute")

    # Anthropic specific
    anthropic_api_key: Optional[str] = Field(None, description="Anthropic API key")
    anthropic_base_url: str = Field(
        "https://api.anthropic.com/v1",
        description="Anthropic API base URL"
    )
    anthropic_model: str = Field("claude-3-5-haiku-latest", description="Anthropic model")
    anthropic_requests_per_minute: int = Field(50, description="Anthropic requests per minute")

    # Server configuration
    host: str = Field("0.0.0.0", description="Host to bind the server to")
    port: int = Field(8080, description="Port to bind the server to")
    reload: bool = Field(False, description="Restart the server when source files change")
    log_level: str = Field("info", description="Log level for the server and the pool")

    # API configuration
    api_title: str = Field("LLM Pool", description="API title")
    api_description: str = Field(
        "Prioritized, rate-limited failover pool in front of several LLM backends",
        description="API description"
    )
    api_version: str = Field("1.0.0", description="API version")

    # Request timeout
    request_timeout: float = Field(30.0, description="Request timeout in seconds")

    # Pool configuration
    pool_destinations: str = Field("", description="JSON list of destination configurations")

    # Authentication configuration
    auth_key: Optional[str] = Field(
        None, description="Bearer key required by the HTTP API (unset = no auth)"
    )

    # Template generation endpoint
    system_prompt: str = Field(DEFAULT_SYSTEM_PROMPT, description="System prompt for /create/ai")
    template_temperature: float = Field(0.7, description="Temperature for /create/ai")
    template_max_tokens: int = Field(8000, description="Max tokens for /create/ai")

    def get_destinations(self) -> List[DestinationConfig]:
        """
        Get pool destinations configuration.

        Returns:
            List of DestinationConfig objects, from POOL_DESTINATIONS when it
            parses, otherwise from the individual provider settings
        """
        if self.pool_destinations:
            try:
                return [
                    DestinationConfig.from_dict(entry)
                    for entry in json.loads(self.pool_destinations)
                ]
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Failed to parse POOL_DESTINATIONS JSON: {e}")

        return self._get_fallback_destinations()

    def _get_fallback_destinations(self) -> List[DestinationConfig]:
        """
        Create destinations from the individual provider settings.

        Only providers with an API key are included, ranked
        groq (1), openai (2), anthropic (3).
        """
        destinations = []

        if self.groq_api_key:
            destinations.append(DestinationConfig(
                name="groq",
                protocol=PROTOCOL_GROQ,
                api_key=self.groq_api_key,
                base_url=self.groq_base_url,
                model=self.groq_model,
                priority=1,
                requests_per_minute=self.groq_requests_per_minute
            ))

        if self.openai_api_key:
            destinations.append(DestinationConfig(
                name="openai",
                protocol=PROTOCOL_OPENAI,
                api_key=self.openai_api_key,
                base_url=self.openai_base_url,
                model=self.openai_model,
                priority=2,
                requests_per_minute=self.openai_requests_per_minute
            ))

        if self.anthropic_api_key:
            destinations.append(DestinationConfig(
                name="anthropic",
                protocol=PROTOCOL_ANTHROPIC,
                api_key=self.anthropic_api_key,
                base_url=self.anthropic_base_url,
                model=self.anthropic_model,
                priority=3,
                requests_per_minute=self.anthropic_requests_per_minute
            ))

        return destinations

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore"
    }


# Global settings instance
settings = Settings()
