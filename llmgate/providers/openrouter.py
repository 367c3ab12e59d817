import logging
import re
from typing import Any, Dict, List, Optional

import httpx
from openai import APIConnectionError, APIStatusError

from .openai_compat import OpenAICompatProvider
from ..errors import UpstreamProtocolError
from ..types import ChatStreamOptions, FileRef, Message

logger = logging.getLogger(__name__)

# Models whose upstream supports the ":online" web-augmentation suffix
ONLINE_SEARCH_MARKERS = ("gemini",)

WEB_SEARCH_PLUGIN = {"id": "web"}
PDF_PARSER_PLUGIN = {"id": "file-parser", "pdf": {"engine": "pdf-text"}}

_IMAGE_URL_RE = re.compile(r"https?://[^\s]+\.(?:png|jpg|jpeg|gif|webp|svg)", re.IGNORECASE)
_ANY_URL_RE = re.compile(r"https?://[^\s\"'()]+", re.IGNORECASE)


def extract_image_urls(content: str) -> List[str]:
    """
    Pull image URLs out of a model reply.

    URLs with an image extension win; otherwise any URL is accepted with
    trailing punctuation stripped.
    """
    urls = _IMAGE_URL_RE.findall(content)
    if urls:
        return urls
    return [re.sub(r"[.,;!?]$", "", url) for url in _ANY_URL_RE.findall(content)]


def has_pdf(files: Optional[List[FileRef]]) -> bool:
    return any(f.get("mime_type") == "application/pdf" for f in files or [])


class OpenRouterProvider(OpenAICompatProvider):
    """
    Provider for the OpenRouter aggregated chat-completions API.
    """

    provider_name = "openrouter"
    display_name = "OpenRouter"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://openrouter.ai/api/v1",
        http_client: Optional[httpx.AsyncClient] = None,
        app_url: str = "http://localhost:3000",
        app_title: str = "llmgate",
        image_model: str = "black-forest-labs/flux-schnell",
    ):
        super().__init__(
            api_key=api_key,
            base_url=base_url,
            http_client=http_client,
            default_headers={"HTTP-Referer": app_url, "X-Title": app_title},
        )
        self.image_model = image_model

    async def build_messages(self, messages: List[Message], files: Optional[List[FileRef]]) -> List[Message]:
        """
        Convert the conversation, folding attachments into the last user message.

        Images keep their hosted URL; PDFs are downloaded and embedded as
        base64 data URIs.
        """
        if not files:
            return [dict(m) for m in messages]
        return await self._attach_files(messages, files, lambda mime: mime == "application/pdf")

    async def build_request(
        self,
        messages: List[Message],
        model: str,
        options: ChatStreamOptions,
    ) -> Dict[str, Any]:
        files = options.get("files")
        actual_model = model
        plugins: List[Dict[str, Any]] = []

        if options.get("search_enabled"):
            if any(marker in model for marker in ONLINE_SEARCH_MARKERS):
                actual_model = f"{model}:online"
            else:
                plugins.append(WEB_SEARCH_PLUGIN)

        if has_pdf(files):
            plugins.append(PDF_PARSER_PLUGIN)

        request_kwargs: Dict[str, Any] = {
            "model": actual_model,
            "messages": await self.build_messages(messages, files),
            "stream": True,
        }
        if plugins:
            request_kwargs["extra_body"] = {"plugins": plugins}
        return request_kwargs

    async def generate_image(self, prompt: str, model: Optional[str] = None) -> List[str]:
        """
        Ask an image model for a picture and return the URLs in its reply.

        Raises:
            UpstreamProtocolError: On HTTP failure or when no URL comes back.
        """
        try:
            resp = await self.client.chat.completions.create(
                model=model or self.image_model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=200,
            )
        except APIStatusError as e:
            raise UpstreamProtocolError(
                f"OpenRouter Image API error: {e.status_code} {e.message}",
                e.status_code,
            ) from e
        except APIConnectionError as e:
            raise UpstreamProtocolError(f"OpenRouter Image API connection failed: {e}") from e

        content = ""
        if resp.choices:
            content = resp.choices[0].message.content or ""

        urls = extract_image_urls(content)
        if not urls:
            raise UpstreamProtocolError(f"No image URL found in response: {content[:200]}...")
        return urls

    async def validate_key(self) -> bool:
        """
        Check the key against the models endpoint.

        Returns:
            bool: True when OpenRouter accepts the key.
        """
        try:
            await self.client.models.list()
        except APIStatusError as e:
            logger.info("OpenRouter rejected API key: %s", e.status_code)
            return False
        return True
