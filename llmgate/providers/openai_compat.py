import logging
from contextlib import AsyncExitStack
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from openai import AsyncOpenAI, APIConnectionError, APIStatusError

from .base import BaseChatProvider, UpstreamStream
from ..errors import UpstreamProtocolError
from ..types import ChatStreamOptions, Message

logger = logging.getLogger(__name__)


class OpenAICompatProvider(BaseChatProvider):
    """
    Shared plumbing for OpenAI-compatible chat-completion endpoints.

    Subclasses only decide how the request body is built; the call itself
    goes through the ``openai`` SDK's raw streaming response so the body
    reaches the normalizer as untouched SSE bytes.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        default_headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(api_key, http_client)
        self.base_url = base_url
        # Upstream calls are never retried
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            http_client=http_client,
            default_headers=default_headers,
            max_retries=0,
        )

    async def build_request(
        self,
        messages: List[Message],
        model: str,
        options: ChatStreamOptions,
    ) -> Dict[str, Any]:
        """
        Build keyword arguments for ``chat.completions.create``.
        """
        return {"model": model, "messages": messages, "stream": True}

    async def generate_chat_stream(
        self,
        messages: List[Message],
        model: str,
        options: Optional[ChatStreamOptions] = None,
    ) -> UpstreamStream:
        request_kwargs = await self.build_request(messages, model, options or {})
        logger.debug("Opening %s stream for model %s", self.display_name, request_kwargs.get("model"))
        return await self._open_stream(request_kwargs)

    async def _open_stream(self, request_kwargs: Dict[str, Any]) -> UpstreamStream:
        resources = AsyncExitStack()
        try:
            response = await resources.enter_async_context(
                self.client.chat.completions.with_streaming_response.create(**request_kwargs)
            )
        except APIStatusError as e:
            await resources.aclose()
            raise UpstreamProtocolError(
                f"{self.display_name} API error: {e.status_code} {e.message}",
                e.status_code,
            ) from e
        except APIConnectionError as e:
            await resources.aclose()
            raise UpstreamProtocolError(f"{self.display_name} API connection failed: {e}") from e

        return UpstreamStream(self._iter_body(response), resources)

    @staticmethod
    async def _iter_body(response) -> AsyncIterator[bytes]:
        async for chunk in response.iter_bytes():
            yield chunk
