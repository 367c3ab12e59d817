import pytest
from typing import AsyncIterator, Iterable, List, Optional

from llmgate.config import Settings
from llmgate.providers.base import BaseChatProvider, UpstreamStream


async def agen(items: Iterable) -> AsyncIterator:
    for item in items:
        yield item


async def collect(stream) -> List:
    return [item async for item in stream]


class TrackingUpstream:
    """Raw upstream body that records whether it was closed."""

    def __init__(self, chunks, error: Optional[Exception] = None):
        self._chunks = list(chunks)
        self._error = error
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for chunk in self._chunks:
            yield chunk
        if self._error is not None:
            raise self._error

    async def aclose(self):
        self.closed = True


class FakeProvider(BaseChatProvider):
    """Provider double that records calls and replays a fixed body."""

    provider_name = "fake"
    display_name = "Fake"

    def __init__(self, api_key: str, body: Optional[List[bytes]] = None, image_urls=None):
        super().__init__(api_key)
        self.body = body if body is not None else [
            b'data: {"choices":[{"delta":{"content":"Hello"}}]}\n\n',
            b"data: [DONE]\n\n",
        ]
        self.image_urls = image_urls or ["https://img.example.com/cat.png"]
        self.chat_calls = []
        self.image_calls = []

    async def generate_chat_stream(self, messages, model, options=None):
        self.chat_calls.append({"messages": messages, "model": model, "options": options})
        return UpstreamStream(agen(self.body))

    async def generate_image(self, prompt, model=None):
        self.image_calls.append({"prompt": prompt, "model": model})
        return self.image_urls


@pytest.fixture
def settings():
    """Settings independent of the environment, with no replay delays."""
    return Settings(
        openrouter_api_key="sk-or-v1-operator",
        gemini_api_key="gemini-operator",
        reasoning_word_delay=0.0,
        reasoning_end_delay=0.0,
        answer_chunk_delay=0.0,
        rate_limit_enabled=False,
    )


@pytest.fixture
def keyless_settings(settings):
    settings.openrouter_api_key = None
    settings.gemini_api_key = None
    return settings


@pytest.fixture
def fake_providers():
    """Dispatch table of FakeProviders; created instances are kept per family."""
    created = {"gemini": [], "groq": [], "openrouter": []}

    def factory(family):
        def build(api_key):
            provider = FakeProvider(api_key)
            created[family].append(provider)
            return provider
        return build

    table = {family: factory(family) for family in created}
    return table, created
