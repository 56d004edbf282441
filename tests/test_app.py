"""
Tests for FastAPI application endpoints.
"""
import pytest
from fastapi.testclient import TestClient

import llm_pool.app as app_module
from conftest import chat_completions_body, json_response
from llm_pool.app import app, clean_ai_html, get_pool_service


@pytest.fixture(autouse=True)
def reset_pool_instance(monkeypatch):
    """Reset the global pool instance and auth before each test."""
    app_module._pool_instance = None
    monkeypatch.setattr(app_module.settings, "auth_key", None)
    yield
    app_module._pool_instance = None
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    """Test client for FastAPI app."""
    return TestClient(app)


@pytest.fixture
def use_pool():
    def _use(pool):
        app.dependency_overrides[get_pool_service] = lambda: pool
        return pool
    return _use


@pytest.mark.unit
class TestHealthEndpoint:
    """Test the health endpoint."""

    def test_healthy(self, client, use_pool, make_pool, make_destination):
        use_pool(make_pool([make_destination("a")], {}))

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "destinations": 1}

    def test_unhealthy_when_empty(self, client, use_pool, make_pool):
        use_pool(make_pool([], {}))

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"


@pytest.mark.unit
class TestChatEndpoint:
    """Test the chat endpoint."""

    def test_chat_success(self, client, use_pool, make_pool, make_destination):
        use_pool(make_pool([make_destination("a")], {
            "a.example.com": json_response(200, chat_completions_body("Hello there", 4, 2))
        }))

        response = client.post("/v1/chat", json={
            "messages": [{"role": "user", "content": "Hi"}],
            "temperature": 0.2,
            "max_tokens": 50
        })

        assert response.status_code == 200
        data = response.json()
        assert data["content"] == "Hello there"
        assert data["destination"] == "a"
        assert data["usage"] == {"prompt_tokens": 4, "completion_tokens": 2, "total_tokens": 6}

    def test_chat_multimodal_request_accepted(self, client, use_pool, make_pool, make_destination):
        pool = use_pool(make_pool([make_destination("a", protocol="groq")], {
            "a.example.com": json_response(200, chat_completions_body("A cat"))
        }))

        response = client.post("/v1/chat", json={
            "messages": [{"role": "user", "content": [
                {"type": "text", "text": "What is this?"},
                {"type": "image_url", "image_url": {"url": "https://example.com/cat.png"}}
            ]}]
        })

        assert response.status_code == 200
        assert b"image_url" in pool.transport.requests[0].content

    def test_chat_validation_error(self, client, use_pool, make_pool):
        use_pool(make_pool([], {}))

        response = client.post("/v1/chat", json={"max_tokens": 100})

        assert response.status_code == 422

    def test_chat_exhaustion(self, client, use_pool, make_pool, make_destination):
        use_pool(make_pool([make_destination("a")], {
            "a.example.com": json_response(503, {"error": {"message": "down"}})
        }))

        response = client.post("/v1/chat", json={"messages": [{"role": "user", "content": "Hi"}]})

        assert response.status_code == 502
        assert response.json()["error"]["type"] == "all_destinations_failed"

    def test_chat_no_destinations(self, client, use_pool, make_pool):
        use_pool(make_pool([], {}))

        response = client.post("/v1/chat", json={"messages": [{"role": "user", "content": "Hi"}]})

        assert response.status_code == 503
        assert response.json()["error"]["type"] == "no_destinations"

    def test_chat_contract_violation(self, client, use_pool, make_pool, make_destination):
        use_pool(make_pool([make_destination("a", protocol="anthropic")], {}))

        response = client.post("/v1/chat", json={
            "messages": [{"role": "user", "content": [
                {"type": "image_url", "image_url": {"url": "https://example.com/cat.png"}}
            ]}]
        })

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["type"] == "contract_violation"
        assert error["destination"] == "a"


@pytest.mark.unit
class TestTemplateEndpoint:
    """Test the template generation endpoint."""

    def test_create_ai_unwraps_html(self, client, use_pool, make_pool, make_destination):
        text = "Here you go:\n```html\n<p>{{name}} &amp; co</p>\n```\nEnjoy"
        pool = use_pool(make_pool([make_destination("a")], {
            "a.example.com": json_response(200, chat_completions_body(text))
        }))

        response = client.post("/create/ai", json={"prompt": "An invoice"})

        assert response.status_code == 200
        assert response.json() == {"response": "<p>{{name}} & co</p>"}
        sent = pool.transport.requests[0].content.decode()
        assert '"role": "system"' in sent
        assert "An invoice" in sent

    def test_create_ai_requires_prompt(self, client, use_pool, make_pool):
        use_pool(make_pool([], {}))

        response = client.post("/create/ai", json={})

        assert response.status_code == 422

    def test_clean_ai_html_without_fence(self):
        assert clean_ai_html("&lt;b&gt;bold&lt;/b&gt;") == "<b>bold</b>"


@pytest.mark.unit
class TestPoolEndpoints:
    """Test statistics and listing endpoints."""

    def test_stats(self, client, use_pool, make_pool, make_destination):
        use_pool(make_pool([make_destination("a"), make_destination("b", priority=2)], {}))

        response = client.get("/pool/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["destination_order"] == ["a", "b"]
        assert data["destinations"]["a"]["total_requests"] == 0

    def test_destinations_masked(self, client, use_pool, make_pool, make_destination):
        use_pool(make_pool([make_destination("a")], {}))

        response = client.get("/pool/destinations")

        assert response.status_code == 200
        assert response.json()[0]["api_key"] == "***"
        assert "key-a" not in response.text


@pytest.mark.unit
class TestAuthentication:
    """Test the optional bearer key check."""

    def test_missing_key_rejected(self, client, use_pool, make_pool, monkeypatch):
        monkeypatch.setattr(app_module.settings, "auth_key", "123")
        use_pool(make_pool([], {}))

        response = client.get("/pool/stats")

        assert response.status_code == 401
        assert response.json()["error"]["type"] == "authentication_error"

    def test_wrong_key_rejected(self, client, use_pool, make_pool, monkeypatch):
        monkeypatch.setattr(app_module.settings, "auth_key", "123")
        use_pool(make_pool([], {}))

        response = client.get("/pool/stats", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_valid_key_accepted(self, client, use_pool, make_pool, monkeypatch):
        monkeypatch.setattr(app_module.settings, "auth_key", "123")
        use_pool(make_pool([], {}))

        response = client.get("/pool/stats", headers={"Authorization": "Bearer 123"})

        assert response.status_code == 200

    def test_health_is_public(self, client, use_pool, make_pool, make_destination, monkeypatch):
        monkeypatch.setattr(app_module.settings, "auth_key", "123")
        use_pool(make_pool([make_destination("a")], {}))

        assert client.get("/health").status_code == 200
