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
Pydantic models for the canonical request/response shape and the wire
responses of each supported protocol family.
"""
from datetime import datetime
from typing import Annotated, List, Optional, Union, Literal
from pydantic import BaseModel, Field


class TextPart(BaseModel):
    """A plain text content part."""
    type: Literal["text"] = "text"
    text: str = Field(..., description="The text of this part")


class ImageURL(BaseModel):
    """Reference to an image, either a URL or a data: URI."""
    url: str = Field(..., description="Image URL or base64 data URI")


class ImagePart(BaseModel):
    """An image reference content part."""
    type: Literal["image_url"] = "image_url"
    image_url: ImageURL = Field(..., description="The referenced image")


ContentPart = Annotated[Union[TextPart, ImagePart], Field(discriminator="type")]


class Message(BaseModel):
    """A message in a conversation. Content is plain text or a list of typed parts."""
    role: Literal["system", "user", "assistant"] = Field(
        ..., description="The role of the message author"
    )
    content: Union[str, List[ContentPart]] = Field(
        ..., description="Plain text, or an ordered list of text/image parts"
    )

    def is_text(self) -> bool:
        return isinstance(self.content, str)


class ChatRequest(BaseModel):
    """Canonical chat request accepted by the pool."""
    messages: List[Message] = Field(
        ..., min_length=1, description="The conversation so far"
    )
    model: Optional[str] = Field(
        None, description="Model override; defaults to the destination's model"
    )
    temperature: float = Field(
        1.0, ge=0.0, le=2.0, description="Sampling temperature to use"
    )
    max_tokens: int = Field(
        1024, ge=1, description="Maximum number of tokens to generate"
    )
    # Reserved: forwarded on the wire, never acted on by the dispatcher
    stream: bool = Field(False, description="Streaming flag (reserved)")


class Usage(BaseModel):
    """Token usage for a completion."""
    prompt_tokens: int = Field(0, description="Number of tokens in the prompt")
    completion_tokens: int = Field(0, description="Number of tokens in the completion")
    total_tokens: int = Field(0, description="Total number of tokens used")


class ChatResponse(BaseModel):
    """Canonical chat response returned by the pool."""
    id: str = Field(..., description="Identifier assigned by the backend")
    content: str = Field(..., description="Text of the first choice / content block")
    model: str = Field(..., description="Model name reported by the backend")
    usage: Usage = Field(default_factory=Usage, description="Token usage")
    destination: str = Field(..., description="Name of the destination that answered")


class DestinationStats(BaseModel):
    """Per-destination statistics export."""
    type: str
    priority: int
    requests_per_minute: int
    current_requests: int
    total_requests: int
    errors: int
    last_used: Optional[datetime] = None
    success_rate: float


class DestinationInfo(BaseModel):
    """Destination listing with the credential masked."""
    name: str
    type: str
    base_url: str
    model: str
    priority: int
    requests_per_minute: int
    api_key: str = "***"


class PromptRequest(BaseModel):
    """Body of the template generation endpoint."""
    prompt: str = Field(..., min_length=1, description="User prompt")


# Wire responses: chat-completions family

class WireChoiceMessage(BaseModel):
    role: Optional[str] = None
    content: Optional[str] = None


class WireChoice(BaseModel):
    message: WireChoiceMessage = Field(default_factory=WireChoiceMessage)


class ChatCompletionsWireResponse(BaseModel):
    id: str = ""
    model: str = ""
    choices: List[WireChoice] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)


# Wire responses: structured-turn family

class WireContentBlock(BaseModel):
    type: Optional[str] = None
    text: str = ""


class WireTurnUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0


class MessagesWireResponse(BaseModel):
    id: str = ""
    model: str = ""
    content: List[WireContentBlock] = Field(default_factory=list)
    usage: WireTurnUsage = Field(default_factory=WireTurnUsage)
