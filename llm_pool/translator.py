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
Translation between the canonical chat shape and each backend's wire format.

Two protocol families are supported:
  - chat completions (groq, openai): POST <base>/chat/completions, bearer auth
  - messages (anthropic): POST <base>/messages, x-api-key auth, system prompt
    as a top-level field and text-only turns
"""
import json
import logging
from typing import Any, Dict, List, Optional
from pydantic import ValidationError

from .config import PROTOCOL_GROQ, PROTOCOL_OPENAI, PROTOCOL_ANTHROPIC
from .destination import Destination
from .errors import ConfigurationError, ContractViolation, DecodeError
from .models import (
    ChatRequest,
    ChatResponse,
    ChatCompletionsWireResponse,
    Message,
    MessagesWireResponse,
    Usage,
)

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"

FAMILY_CHAT_COMPLETIONS = "chat_completions"
FAMILY_MESSAGES = "messages"

PROTOCOL_FAMILIES = {
    PROTOCOL_GROQ: FAMILY_CHAT_COMPLETIONS,
    PROTOCOL_OPENAI: FAMILY_CHAT_COMPLETIONS,
    PROTOCOL_ANTHROPIC: FAMILY_MESSAGES,
}


class FormatTranslator:
    """Builds wire requests for a destination and parses its wire responses."""

    def family(self, destination: Destination) -> str:
        """
        Resolve the protocol family of a destination.

        Raises:
            ConfigurationError: If the destination's protocol is not supported
        """
        family = PROTOCOL_FAMILIES.get(destination.protocol)
        if family is None:
            raise ConfigurationError(
                f"unsupported provider type: {destination.protocol}",
                destination=destination.name
            )
        return family

    def endpoint_url(self, destination: Destination) -> str:
        if self.family(destination) == FAMILY_MESSAGES:
            return f"{destination.base_url}/messages"
        return f"{destination.base_url}/chat/completions"

    def headers(self, destination: Destination) -> Dict[str, str]:
        """Get headers for a request to the destination."""
        headers = {
            "Content-Type": "application/json",
            "User-Agent": f"LLM-Pool/1.0.0 ({destination.protocol})"
        }

        if self.family(destination) == FAMILY_MESSAGES:
            headers["x-api-key"] = destination.api_key
            headers["anthropic-version"] = ANTHROPIC_VERSION
        else:
            headers["Authorization"] = f"Bearer {destination.api_key}"

        return headers

    def to_wire(self, destination: Destination, request: ChatRequest) -> bytes:
        """
        Convert a canonical request into the destination's JSON body.

        Raises:
            ConfigurationError: Unsupported protocol
            ContractViolation: Multimodal content sent to a text-only protocol
        """
        if self.family(destination) == FAMILY_MESSAGES:
            payload = self._to_messages(destination, request)
        else:
            payload = self._to_chat_completions(destination, request)
        return json.dumps(payload).encode("utf-8")

    def from_wire(self, destination: Destination, body: bytes) -> ChatResponse:
        """
        Parse a destination's successful response body into the canonical shape.

        Raises:
            ConfigurationError: Unsupported protocol
            DecodeError: Body is not valid JSON or has an unexpected shape
        """
        family = self.family(destination)
        try:
            if family == FAMILY_MESSAGES:
                return self._from_messages(destination, body)
            return self._from_chat_completions(destination, body)
        except ValidationError as e:
            raise DecodeError(
                f"invalid response from {destination.name}: {e.error_count()} validation error(s)",
                destination=destination.name
            ) from e

    def _to_chat_completions(self, destination: Destination, request: ChatRequest) -> Dict[str, Any]:
        # Messages pass through unchanged, including multimodal parts
        return {
            "model": request.model or destination.model,
            "messages": [message.model_dump() for message in request.messages],
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "stream": request.stream,
        }

    def _to_messages(self, destination: Destination, request: ChatRequest) -> Dict[str, Any]:
        system: Optional[str] = None
        messages: List[Dict[str, str]] = []

        for message in request.messages:
            text = self._require_text(destination, message)
            if message.role == "system":
                if system is not None:
                    logger.warning(
                        f"Multiple system messages for '{destination.name}', keeping the last one"
                    )
                system = text
            else:
                messages.append({"role": message.role, "content": text})

        payload: Dict[str, Any] = {
            "model": request.model or destination.model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": messages,
        }
        if system:
            payload["system"] = system
        return payload

    def _require_text(self, destination: Destination, message: Message) -> str:
        if isinstance(message.content, str):
            return message.content
        raise ContractViolation(
            f"{destination.protocol} destination '{destination.name}' only accepts text content, "
            f"got {len(message.content)} structured part(s) in a {message.role} message",
            destination=destination.name
        )

    def _from_chat_completions(self, destination: Destination, body: bytes) -> ChatResponse:
        wire = ChatCompletionsWireResponse.model_validate_json(body)

        content = ""
        if wire.choices:
            content = wire.choices[0].message.content or ""

        return ChatResponse(
            id=wire.id,
            content=content,
            model=wire.model,
            usage=wire.usage,
            destination=destination.name
        )

    def _from_messages(self, destination: Destination, body: bytes) -> ChatResponse:
        wire = MessagesWireResponse.model_validate_json(body)

        content = ""
        if wire.content:
            content = wire.content[0].text

        return ChatResponse(
            id=wire.id,
            content=content,
            model=wire.model,
            usage=Usage(
                prompt_tokens=wire.usage.input_tokens,
                completion_tokens=wire.usage.output_tokens,
                total_tokens=wire.usage.input_tokens + wire.usage.output_tokens
            ),
            destination=destination.name
        )
