import logging
from abc import ABC, abstractmethod
from contextlib import AsyncExitStack
from typing import AsyncIterator, Callable, List, Optional

import httpx

from ..errors import AttachmentProcessingError
from ..types import ChatStreamOptions, FileRef, Message
from ..utils import (
    append_text, as_parts, create_file_content, create_image_content,
    fetch_as_data_uri, last_user_index
)

logger = logging.getLogger(__name__)


class UpstreamStream:
    """
    A provider's raw response body plus whatever must be released with it.

    Iterating yields bytes in the provider's native SSE framing. ``aclose``
    releases the upstream response even if iteration never started.
    """

    def __init__(self, chunks: AsyncIterator[bytes], resources: Optional[AsyncExitStack] = None):
        self._chunks = chunks
        self._resources = resources

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._chunks.__aiter__()

    async def aclose(self) -> None:
        try:
            aclose = getattr(self._chunks, "aclose", None)
            if aclose is not None:
                await aclose()
        finally:
            resources, self._resources = self._resources, None
            if resources is not None:
                await resources.aclose()


class BaseChatProvider(ABC):
    """
    Abstract base class for upstream chat-completion providers.
    """

    provider_name: str = "base"
    display_name: str = "Base"

    def __init__(self, api_key: str, http_client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        # Shared pool for attachment downloads; owned by the caller
        self.http_client = http_client

    @abstractmethod
    async def generate_chat_stream(
        self,
        messages: List[Message],
        model: str,
        options: Optional[ChatStreamOptions] = None,
    ) -> UpstreamStream:
        """
        Open a streaming chat completion.

        The upstream call is made before this returns, so HTTP failures
        raise here rather than mid-stream.

        Args:
            messages (List[Message]): Conversation, system prompt included.
            model (str): Catalog model id.
            options (ChatStreamOptions, optional): Search, files and thinking flags.

        Returns:
            UpstreamStream: Raw body in the provider's SSE framing.

        Raises:
            UpstreamProtocolError: If the provider rejects the request.
        """

    async def generate_image(self, prompt: str, model: Optional[str] = None) -> List[str]:
        """
        Generate images for a prompt and return their URLs.

        Providers without an image endpoint raise NotImplementedError.
        """
        raise NotImplementedError(f"{self.display_name} does not support image generation")

    async def _attach_files(
        self,
        messages: List[Message],
        files: List[FileRef],
        is_document: Callable[[str], bool],
    ) -> List[Message]:
        """
        Fold attachments into the most recent user message.

        Images become ``image_url`` parts that reference the hosted URL;
        documents accepted by ``is_document`` are downloaded and embedded as
        ``file`` parts. A document that cannot be fetched is replaced by a
        short note so the conversation can continue.
        """
        converted = [dict(m) for m in messages]
        index = last_user_index(converted)
        if index == -1 or not files:
            return converted

        parts = as_parts(converted[index].get("content", ""))
        for file in files:
            mime_type = file.get("mime_type", "")
            if mime_type.startswith("image/"):
                parts.append(create_image_content(file["url"]))
            elif is_document(mime_type):
                try:
                    data_uri = await fetch_as_data_uri(file["name"], file["url"], mime_type, self.http_client)
                except AttachmentProcessingError as e:
                    logger.warning("%s", e)
                    append_text(parts, f"[Document: {file['name']} - Could not be processed]")
                else:
                    parts.append(create_file_content(file["name"], data_uri))
            else:
                logger.debug("Ignoring attachment %s with unsupported type %s", file.get("name"), mime_type)

        converted[index]["content"] = parts
        return converted
