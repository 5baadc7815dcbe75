"""
Pytest configuration and fixtures
"""
import base64
import json
import sys
from pathlib import Path
from typing import Dict, List, Optional

import httpx
import pytest

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from chatrelay.core import conversation_store, provider_client, system_policy
from chatrelay.core.config import Settings, get_settings
from chatrelay.core.conversation_store import ConversationStore
from chatrelay.core.provider_client import ProviderClient
from chatrelay.core.system_policy import SystemPolicy
from chatrelay.services.chat_service import ChatService, get_chat_service
from chatrelay.services.image_service import ImageService, get_image_service

PROVIDER_HOST = "provider.test"
PNG_BYTES = b"\x89PNG\r\n\x1a\nnot-really-a-png"
PNG_B64 = base64.b64encode(PNG_BYTES).decode("ascii")


def sse(chunks: List[str]) -> bytes:
    """Encode text fragments the way the provider streams them"""
    lines = []
    for chunk in chunks:
        event = {"choices": [{"index": 0, "delta": {"content": chunk}}]}
        lines.append(f"data: {json.dumps(event)}\n\n")
    lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


class FakeProvider:
    """
    httpx.MockTransport handler standing in for the provider.

    Tests tweak the public attributes to script replies and failures; every
    request is recorded.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.chat_reply = "Hi there"
        self.chat_status = 200
        self.stream_chunks = ["Hello", " world"]
        self.stream_status = 200
        self.image_items: List[Dict] = [{"b64_json": PNG_B64}]
        self.image_status = 200
        self.downloads: Dict[str, bytes] = {}

    def payloads(self, path: str) -> List[Dict]:
        """JSON bodies of provider requests whose path ends with ``path``"""
        return [
            json.loads(request.content)
            for request in self.requests
            if request.url.host == PROVIDER_HOST and request.url.path.endswith(path)
        ]

    @property
    def chat_payloads(self) -> List[Dict]:
        return self.payloads("/chat/completions")

    @property
    def image_payloads(self) -> List[Dict]:
        return self.payloads("/images/generations")

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.url.host != PROVIDER_HOST:
            content = self.downloads.get(str(request.url))
            if content is None:
                return httpx.Response(404, text="not found")
            return httpx.Response(200, content=content, headers={"content-type": "image/png"})

        payload = json.loads(request.content)
        if request.url.path.endswith("/chat/completions"):
            if payload.get("stream"):
                if self.stream_status != 200:
                    return httpx.Response(self.stream_status, json={"error": {"message": "stream refused"}})
                return httpx.Response(
                    200,
                    content=sse(self.stream_chunks),
                    headers={"content-type": "text/event-stream"},
                )
            if self.chat_status != 200:
                return httpx.Response(self.chat_status, json={"error": {"message": "upstream exploded"}})
            return httpx.Response(200, json={
                "choices": [{"index": 0, "message": {"role": "assistant", "content": self.chat_reply}}]
            })

        if request.url.path.endswith("/images/generations"):
            if self.image_status != 200:
                return httpx.Response(self.image_status, json={"error": {"message": "content policy"}})
            return httpx.Response(200, json={"created": 0, "data": self.image_items})

        return httpx.Response(404, json={"error": {"message": "unknown path"}})


@pytest.fixture(autouse=True)
def reset_singletons():
    """Each test starts without cached settings or process-wide state"""
    get_settings.cache_clear()
    conversation_store._conversation_store = None
    system_policy._system_policy = None
    provider_client._provider_client = None
    yield
    get_settings.cache_clear()
    conversation_store._conversation_store = None
    system_policy._system_policy = None
    provider_client._provider_client = None


@pytest.fixture
def settings() -> Settings:
    return Settings(
        provider_base_url=f"https://{PROVIDER_HOST}/v1/",
        provider_api_key="sk-test-key-123456",
        chat_model="test-chat",
        image_model="test-image",
        admin_token=None,
        image_prompt_rewrite=False,
        rate_limit_enabled=False,
    )


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def client_factory(settings, provider):
    """Build a ProviderClient wired to the fake provider"""
    def _build(override: Optional[Settings] = None) -> ProviderClient:
        return ProviderClient(settings=override or settings, transport=httpx.MockTransport(provider))
    return _build


@pytest.fixture
def store() -> ConversationStore:
    return ConversationStore()


@pytest.fixture
def policy(settings) -> SystemPolicy:
    return SystemPolicy(settings.system_prompt)


@pytest.fixture
def chat_service(client_factory, store, policy, settings) -> ChatService:
    return ChatService(client_factory(), store, policy, settings)


@pytest.fixture
def image_service(client_factory, store, settings) -> ImageService:
    return ImageService(client_factory(), store, settings)


@pytest.fixture
def app(settings, chat_service, image_service, policy):
    """Application with services bound to the fake provider"""
    from chatrelay.main import create_app

    application = create_app(settings)
    application.dependency_overrides[get_chat_service] = lambda: chat_service
    application.dependency_overrides[get_image_service] = lambda: image_service
    application.dependency_overrides[system_policy.get_system_policy] = lambda: policy
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """Create test client"""
    from fastapi.testclient import TestClient

    with TestClient(app) as test_client:
        yield test_client
