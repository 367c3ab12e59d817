import logging
from typing import AsyncIterator, Callable, Dict, List, Optional, Union

import httpx

from .config import Settings, get_settings
from .errors import BadRequestError, ConfigurationError
from .identity import compose_system_prompt
from .models import is_image_generation_model, resolve_provider, thinking_variant
from .providers.base import BaseChatProvider
from .providers.gemini import GeminiProvider, ReplayPacing
from .providers.groq import GroqProvider
from .providers.openrouter import OpenRouterProvider
from .stream import normalize_stream
from .types import (
    ChatStreamOptions, Credentials, GenerationRequest, ImageResult, Message, ProviderFamily
)
from .utils import latest_user_text

logger = logging.getLogger(__name__)

# Builds a provider for one request from the resolved API key
ProviderFactory = Callable[[str], BaseChatProvider]


class ChatGateway:
    """
    Request entry point for streaming chat generation.

    Resolves the provider family for a model, checks credentials, builds the
    system prompt and dispatches to the matching adapter. The adapter's raw
    stream is returned already passed through the stream normalizer.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        providers: Optional[Dict[ProviderFamily, ProviderFactory]] = None,
    ):
        """
        Args:
            settings: Operator configuration. Defaults to the environment.
            http_client: Shared connection pool for upstream and attachment
                requests. Its lifecycle belongs to the caller.
            providers: Dispatch table of provider factories keyed by family.
        """
        self.settings = settings or get_settings()
        self.http_client = http_client
        self.providers: Dict[ProviderFamily, ProviderFactory] = providers or {
            "gemini": self._gemini,
            "groq": self._groq,
            "openrouter": self._openrouter,
        }

    # ==========================================================================
    # Provider Factories
    # ==========================================================================

    def _gemini(self, api_key: str) -> BaseChatProvider:
        s = self.settings
        pacing = ReplayPacing(
            word_delay=s.reasoning_word_delay,
            end_delay=s.reasoning_end_delay,
            chunk_delay=s.answer_chunk_delay,
            chunk_words=s.answer_chunk_words,
        )
        return GeminiProvider(api_key=api_key, http_client=self.http_client, pacing=pacing)

    def _groq(self, api_key: str) -> BaseChatProvider:
        return GroqProvider(api_key=api_key, base_url=self.settings.groq_base_url, http_client=self.http_client)

    def _openrouter(self, api_key: str) -> BaseChatProvider:
        s = self.settings
        return OpenRouterProvider(
            api_key=api_key,
            base_url=s.openrouter_base_url,
            http_client=self.http_client,
            app_url=s.app_url,
            app_title=s.app_title,
            image_model=s.openrouter_image_model,
        )

    # ==========================================================================
    # Request Handling
    # ==========================================================================

    @staticmethod
    def select_model(request: GenerationRequest) -> str:
        """
        The model actually used: switches to a dedicated thinking variant
        when thinking is requested and one exists.
        """
        model_id = request["model_id"]
        if request.get("think_enabled"):
            variant = thinking_variant(model_id, request.get("model_base"))
            if variant:
                logger.info("Switching %s to thinking variant %s", model_id, variant)
                return variant
        return model_id

    def resolve_api_key(self, family: ProviderFamily, credentials: Optional[Credentials]) -> str:
        """
        Pick the API key for a provider family.

        Raises:
            ConfigurationError: If no usable key exists. Groq keys are
                caller-owned and never fall back to an operator key.
        """
        credentials = credentials or {}
        if family == "groq":
            key = credentials.get("groq_key")
            if not key:
                raise ConfigurationError("Groq API key is required", caller_owned=True)
            return key
        if family == "gemini":
            key = credentials.get("gemini_key") or self.settings.gemini_api_key
            if not key:
                raise ConfigurationError("Gemini API key is not configured")
            return key
        key = credentials.get("open_router_key") or self.settings.openrouter_api_key
        if not key:
            raise ConfigurationError("OpenRouter API key is not configured")
        return key

    def build_messages(self, request: GenerationRequest, model_id: str) -> List[Message]:
        """
        System prompt first, then the conversation without any caller-sent
        system messages.
        """
        system_prompt = compose_system_prompt(
            model_id,
            request.get("customization"),
            bool(request.get("think_enabled")),
        )
        history = [m for m in request.get("messages", []) if m.get("role") != "system"]
        return [{"role": "system", "content": system_prompt}, *history]

    async def handle(
        self,
        request: GenerationRequest,
        credentials: Optional[Credentials] = None,
    ) -> Union[AsyncIterator[str], ImageResult]:
        """
        Serve one generation request.

        Args:
            request (GenerationRequest): Model id, history and feature flags.
            credentials (Credentials, optional): Caller-supplied API keys.

        Returns:
            Either an async iterator of canonical SSE lines (ending with
            ``data: [DONE]``) or, for image-generation models, an ImageResult.

        Raises:
            BadRequestError: Empty image prompt or unsupported operation.
            ConfigurationError: Missing credential for the provider family.
            UpstreamProtocolError: The provider rejected the request.
        """
        model_id = self.select_model(request)
        family = resolve_provider(model_id)
        api_key = self.resolve_api_key(family, credentials)
        provider = self.providers[family](api_key)

        if is_image_generation_model(model_id):
            return await self.generate_image(provider, request, model_id)

        messages = self.build_messages(request, model_id)
        options: ChatStreamOptions = {
            "search_enabled": bool(request.get("search_enabled")),
            "files": list(request.get("attachments") or []),
            "thinking_enabled": bool(request.get("thinking_enabled")),
            "thinking_budget": request.get("thinking_budget"),
        }

        logger.info(
            "Dispatching %s to %s (search=%s, files=%d)",
            model_id, family, options["search_enabled"], len(options["files"]),
        )
        raw = await provider.generate_chat_stream(messages, model_id, options)
        return normalize_stream(raw)

    async def generate_image(
        self,
        provider: BaseChatProvider,
        request: GenerationRequest,
        model_id: str,
    ) -> ImageResult:
        prompt = latest_user_text(request.get("messages", [])).strip()
        if not prompt:
            raise BadRequestError("Prompt is required for image generation")

        logger.info("Generating image with %s", model_id)
        try:
            urls = await provider.generate_image(prompt, model_id)
        except NotImplementedError as e:
            raise BadRequestError(str(e)) from e
        return {"url": urls[0], "prompt": prompt}
