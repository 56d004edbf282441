"""
Pytest configuration and shared fixtures for LLM Pool tests.
"""
import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

from llm_pool.config import DestinationConfig
from llm_pool.destination import Destination
from llm_pool.models import ChatRequest, Message
from llm_pool.pool_service import PoolService
from llm_pool.rate_limiter import RateLimiter


class FakeClock:
    """Manually advanced clock for window arithmetic."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def wall_clock():
    return FakeClock(start=1_700_000_000.0)


@pytest.fixture
def limiter(clock, wall_clock):
    return RateLimiter(clock=clock, wall_clock=wall_clock)


@pytest.fixture
def sample_destination_configs():
    """Three destinations, one per protocol, ranked 1..3."""
    return [
        DestinationConfig(
            name="groq-fast",
            protocol="groq",
            api_key="test-groq-key",
            base_url="https://api.groq.com/openai/v1",
            model="openai/gpt-oss-20b",
            priority=1,
            requests_per_minute=30
        ),
        DestinationConfig(
            name="openai",
            protocol="openai",
            api_key="test-openai-key",
            base_url="https://api.openai.com/v1",
            model="gpt-4o-mini",
            priority=2,
            requests_per_minute=60
        ),
        DestinationConfig(
            name="anthropic",
            protocol="anthropic",
            api_key="test-anthropic-key",
            base_url="https://api.anthropic.com/v1",
            model="claude-3-5-haiku-latest",
            priority=3,
            requests_per_minute=50
        ),
    ]


@pytest.fixture
def make_destination():
    """Factory for destinations with sensible defaults."""
    def _make(
        name: str,
        protocol: str = "openai",
        priority: int = 1,
        requests_per_minute: int = 10,
        base_url: Optional[str] = None
    ) -> Destination:
        return Destination(DestinationConfig(
            name=name,
            protocol=protocol,
            api_key=f"key-{name}",
            base_url=base_url or f"https://{name}.example.com/v1",
            model=f"model-{name}",
            priority=priority,
            requests_per_minute=requests_per_minute
        ))
    return _make


@pytest.fixture
def sample_chat_request():
    """Sample canonical chat request."""
    return ChatRequest(
        messages=[
            Message(role="system", content="You are terse."),
            Message(role="user", content="Hello, how are you?")
        ],
        max_tokens=100,
        temperature=0.7
    )


def chat_completions_body(text: str = "Test response", prompt_tokens: int = 10,
                          completion_tokens: int = 5, model: str = "gpt-4o-mini") -> Dict[str, Any]:
    return {
        "id": "chatcmpl-123",
        "object": "chat.completion",
        "created": 1234567890,
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": text},
                "finish_reason": "stop"
            }
        ],
        "usage": {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens
        }
    }


def messages_body(text: str = "Test response", input_tokens: int = 12,
                  output_tokens: int = 7, model: str = "claude-3-5-haiku-latest") -> Dict[str, Any]:
    return {
        "id": "msg_123",
        "type": "message",
        "role": "assistant",
        "model": model,
        "content": [{"type": "text", "text": text}],
        "stop_reason": "end_turn",
        "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens}
    }


@pytest.fixture
def chat_completions_payload():
    return chat_completions_body


@pytest.fixture
def messages_payload():
    return messages_body


class RecordingTransport:
    """
    Routes requests by host to per-destination responders and records them.

    A responder is either an httpx.Response, an exception instance to raise,
    or a callable taking the request.
    """

    def __init__(self, responders: Dict[str, Any]):
        self.responders = responders
        self.requests: List[httpx.Request] = []

    def hosts(self) -> List[str]:
        return [request.url.host for request in self.requests]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responder = self.responders[request.url.host]
        if isinstance(responder, Exception):
            raise responder
        if callable(responder):
            result = responder(request)
            if hasattr(result, "__await__"):
                result = await result
            return result
        # Fresh copy so one canned response can serve repeated requests
        return httpx.Response(responder.status_code, content=responder.content,
                              headers=responder.headers)


def json_response(status_code: int, body: Any) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(body).encode("utf-8"),
                          headers={"Content-Type": "application/json"})


@pytest.fixture
def make_pool(limiter):
    """
    Factory for a PoolService whose HTTP client is backed by a RecordingTransport.

    Destinations are passed as Destination objects so tests can inspect them.
    """
    def _make(destinations: List[Destination], responders: Dict[str, Any]) -> PoolService:
        transport = RecordingTransport(responders)
        client = httpx.AsyncClient(transport=httpx.MockTransport(transport))
        pool = PoolService(client=client, limiter=limiter)
        for destination in destinations:
            pool.registry.add(destination)
        pool.transport = transport
        return pool
    return _make
