import asyncio
import base64
import enum
import logging
import re
from dataclasses import dataclass
from typing import Any, AsyncIterator, List, Optional, Sequence, Tuple

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from .base import BaseChatProvider, UpstreamStream
from ..errors import StrategyFailure, UpstreamProtocolError
from ..models import gemini_api_model_name, supports_thinking
from ..stream import DONE_LINE, make_event, sse_pack
from ..types import ChatStreamOptions, FileRef, Message
from ..utils import content_text, guess_image_mime, parse_data_uri, resolve_to_base64

logger = logging.getLogger(__name__)

IMAGE_GENERATION_MODEL = "gemini-2.0-flash-preview-image-generation"


class GeminiStrategy(str, enum.Enum):
    """How a single Gemini call is served."""
    SEARCH = "search"
    THINKING = "thinking"
    PLAIN = "plain"


@dataclass(frozen=True)
class ReplayPacing:
    """
    Delays used when replaying a non-streaming response as a stream.
    """
    word_delay: float = 0.02
    end_delay: float = 0.05
    chunk_delay: float = 0.05
    chunk_words: int = 3


# =============================================================================
# Grounding Citations
# =============================================================================

def clean_title(title: Optional[str]) -> str:
    if title is None:
        return "Source"
    return re.sub(r"[^\w\s.-]", "", title, flags=re.ASCII).strip()


def add_citations(
    text: str,
    supports: Optional[Sequence[Any]],
    chunks: Optional[Sequence[Any]],
) -> str:
    """
    Insert markdown citation links after each grounded segment and append a
    numbered source list.

    Supports are applied by descending end index so inserting one citation
    never shifts the offsets of segments earlier in the text.
    """
    if not supports or not chunks:
        return text

    def end_of(support) -> int:
        segment = getattr(support, "segment", None)
        end_index = getattr(segment, "end_index", None)
        return end_index if end_index is not None else 0

    for support in sorted(supports, key=end_of, reverse=True):
        segment = getattr(support, "segment", None)
        end_index = getattr(segment, "end_index", None)
        indices = getattr(support, "grounding_chunk_indices", None) or []
        if end_index is None or not indices:
            continue

        links = []
        for i in indices:
            web = getattr(chunks[i], "web", None) if 0 <= i < len(chunks) else None
            uri = getattr(web, "uri", None)
            if uri:
                links.append(f'[[{i + 1}]]({uri} "{clean_title(getattr(web, "title", None)) or "Source"}")')

        if links:
            text = f"{text[:end_index]} {' '.join(links)}{text[end_index:]}"

    text += "\n\n**Sources:**\n"
    for index, chunk in enumerate(chunks):
        web = getattr(chunk, "web", None)
        uri = getattr(web, "uri", None)
        title = getattr(web, "title", None)
        if uri and title:
            text += f"{index + 1}. [{clean_title(title)}]({uri})\n"

    return text


def split_response(response: Any) -> Tuple[str, str, Any]:
    """
    Separate a generate_content response into (thought_text, answer_text,
    grounding_metadata) using each part's ``thought`` flag.
    """
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return "", "", None
    candidate = candidates[0]

    thought, answer = [], []
    content = getattr(candidate, "content", None)
    for part in getattr(content, "parts", None) or []:
        if not part.text:
            continue
        if getattr(part, "thought", None):
            thought.append(part.text)
        else:
            answer.append(part.text)

    return "".join(thought), "".join(answer), getattr(candidate, "grounding_metadata", None)


def _sse_bytes(token: str = "", reasoning: str = "") -> bytes:
    return sse_pack(make_event(token=token, reasoning=reasoning)).encode("utf-8")


async def replay_as_stream(
    thought: str,
    answer: str,
    pacing: ReplayPacing = ReplayPacing(),
) -> AsyncIterator[bytes]:
    """
    Re-chunk a fully received response into canonical SSE records.

    Reasoning goes out word by word, followed by one empty delimiter event;
    the answer goes out in small word groups.
    """
    if thought:
        words = thought.split(" ")
        for i, word in enumerate(words):
            if word.strip():
                suffix = " " if i < len(words) - 1 else ""
                yield _sse_bytes(reasoning=word + suffix)
                await asyncio.sleep(pacing.word_delay)
        yield _sse_bytes()
        await asyncio.sleep(pacing.end_delay)

    if answer:
        words = answer.split(" ")
        size = pacing.chunk_words
        for i in range(0, len(words), size):
            chunk = " ".join(words[i:i + size])
            if chunk.strip():
                suffix = " " if i + size < len(words) else ""
                yield _sse_bytes(token=chunk + suffix)
                await asyncio.sleep(pacing.chunk_delay)

    yield DONE_LINE.encode("utf-8")


# =============================================================================
# Provider
# =============================================================================

class GeminiProvider(BaseChatProvider):
    """
    Provider for Google Gemini (google-genai SDK).

    One ``generate_chat_stream`` entry point picks a strategy per call:
    search-grounded, thinking, or plain streaming. The first two make a
    single non-streaming call and replay the result; if either fails the
    call is served by the plain strategy instead.
    """

    provider_name = "gemini"
    display_name = "Gemini"

    def __init__(
        self,
        api_key: str,
        http_client: Optional[httpx.AsyncClient] = None,
        pacing: Optional[ReplayPacing] = None,
    ):
        super().__init__(api_key, http_client)
        self.client = genai.Client(api_key=api_key)
        self.pacing = pacing or ReplayPacing()

    @staticmethod
    def select_strategy(model: str, options: ChatStreamOptions) -> GeminiStrategy:
        if options.get("search_enabled"):
            return GeminiStrategy.SEARCH
        if supports_thinking(model):
            return GeminiStrategy.THINKING
        return GeminiStrategy.PLAIN

    async def generate_chat_stream(
        self,
        messages: List[Message],
        model: str,
        options: Optional[ChatStreamOptions] = None,
    ) -> UpstreamStream:
        options = options or {}
        if options.get("files"):
            messages = await self.attach_files(messages, options["files"])

        strategy = self.select_strategy(model, options)
        if strategy is not GeminiStrategy.PLAIN:
            try:
                return await self._generate_replayed(messages, model, options, strategy)
            except StrategyFailure as e:
                logger.warning("%s; falling back to plain streaming", e)

        return await self._generate_plain(messages, model)

    async def attach_files(self, messages: List[Message], files: List[FileRef]) -> List[Message]:
        """
        Fold attachments into the last user message: images by URL, PDFs
        and text documents downloaded inline.
        """
        return await self._attach_files(
            messages,
            files,
            lambda mime: mime == "application/pdf" or mime.startswith("text/"),
        )

    async def _generate_replayed(
        self,
        messages: List[Message],
        model: str,
        options: ChatStreamOptions,
        strategy: GeminiStrategy,
    ) -> UpstreamStream:
        try:
            system_instruction, contents = await self.convert_messages(messages)

            config_kwargs: dict = {}
            if system_instruction:
                config_kwargs["system_instruction"] = system_instruction
            if strategy is GeminiStrategy.SEARCH:
                config_kwargs["tools"] = [types.Tool(google_search=types.GoogleSearch())]
            if strategy is GeminiStrategy.THINKING or supports_thinking(model):
                config_kwargs["thinking_config"] = types.ThinkingConfig(
                    include_thoughts=True,
                    thinking_budget=options.get("thinking_budget"),
                )

            response = await self.client.aio.models.generate_content(
                model=gemini_api_model_name(model),
                contents=contents,
                config=types.GenerateContentConfig(**config_kwargs),
            )

            thought, answer, grounding = split_response(response)
            if grounding is not None and answer:
                answer = add_citations(answer, grounding.grounding_supports, grounding.grounding_chunks)
        except Exception as e:
            raise StrategyFailure(strategy.value, e) from e

        return UpstreamStream(replay_as_stream(thought, answer, self.pacing))

    async def _generate_plain(self, messages: List[Message], model: str) -> UpstreamStream:
        system_instruction, contents = await self.convert_messages(messages, inline_remote=False)
        config = types.GenerateContentConfig(system_instruction=system_instruction or None)

        try:
            stream = await self.client.aio.models.generate_content_stream(
                model=gemini_api_model_name(model),
                contents=contents,
                config=config,
            )
            # Pull the first chunk so request errors surface before streaming starts
            first = await anext(stream, None)
        except genai_errors.APIError as e:
            raise UpstreamProtocolError(f"Gemini API error: {e.code} {e.message}", e.code) from e
        except httpx.HTTPError as e:
            raise UpstreamProtocolError(f"Gemini API connection failed: {e}") from e

        return UpstreamStream(self._relay_chunks(first, stream))

    @staticmethod
    async def _relay_chunks(first: Any, stream: AsyncIterator[Any]) -> AsyncIterator[bytes]:
        try:
            if first is not None and first.text:
                yield _sse_bytes(token=first.text)
            async for chunk in stream:
                if chunk.text:
                    yield _sse_bytes(token=chunk.text)
            yield DONE_LINE.encode("utf-8")
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    async def convert_messages(
        self,
        messages: List[Message],
        inline_remote: bool = True,
    ) -> Tuple[Optional[str], List[types.Content]]:
        """
        Convert messages to Gemini contents.

        Handles:
        - System message extraction (becomes the system instruction).
        - Role mapping (assistant -> model).
        - Images: data URIs are inlined; remote URLs are downloaded and
          inlined when ``inline_remote`` is set, otherwise referenced as text.
        - File parts carrying a data URI are inlined.

        Args:
            messages (List[Message]): Conversation history.
            inline_remote (bool): Download remote images.

        Returns:
            Tuple[Optional[str], List[types.Content]]: (system_instruction, contents)
        """
        system_instruction = None
        contents = []

        for msg in messages:
            role = msg.get("role", "user")
            content = msg.get("content", "")

            if role == "system":
                system_instruction = content_text(content, separator="\n")
                continue

            gemini_role = "model" if role == "assistant" else "user"

            parts: List[types.Part] = []
            if isinstance(content, str):
                parts.append(types.Part.from_text(text=content))
            else:
                for part in content:
                    converted = await self._convert_part(part, inline_remote)
                    if converted is not None:
                        parts.append(converted)

            if parts:
                contents.append(types.Content(role=gemini_role, parts=parts))

        return system_instruction, contents

    async def _convert_part(self, part: dict, inline_remote: bool) -> Optional[types.Part]:
        kind = part.get("type")
        if kind == "text":
            text = part.get("text", "")
            return types.Part.from_text(text=text) if text else None

        if kind == "image_url":
            url = part.get("image_url", {}).get("url", "")
            if not url:
                return None
            if not url.startswith("data:") and not inline_remote:
                return types.Part.from_text(text=f"[Image: {url}]")
            try:
                b64_data, mime_type = await resolve_to_base64(url, self.http_client)
            except (httpx.HTTPError, ValueError, IndexError) as e:
                logger.warning("Failed to process image %s: %s", url, e)
                return types.Part.from_text(text="[Image could not be processed]")
            if not url.startswith("data:") and not mime_type.startswith("image/"):
                mime_type = guess_image_mime(url)
            return types.Part.from_bytes(data=base64.b64decode(b64_data), mime_type=mime_type)

        if kind == "file":
            file = part.get("file", {})
            file_data = file.get("file_data", "")
            if file_data.startswith("data:"):
                try:
                    b64_data, mime_type = parse_data_uri(file_data)
                    return types.Part.from_bytes(data=base64.b64decode(b64_data), mime_type=mime_type)
                except (ValueError, IndexError) as e:
                    logger.warning("Failed to process file %s: %s", file.get("filename"), e)
            return types.Part.from_text(text=f"[File: {file.get('filename', 'unknown')}]")

        return None

    async def generate_image(self, prompt: str, model: Optional[str] = None) -> List[str]:
        """
        Generate images with the Gemini image model.

        Returns:
            List[str]: Images as base64 data URLs.

        Raises:
            UpstreamProtocolError: On API failure or when no image comes back.
        """
        try:
            response = await self.client.aio.models.generate_content(
                model=model or IMAGE_GENERATION_MODEL,
                contents=prompt,
                config=types.GenerateContentConfig(response_modalities=["TEXT", "IMAGE"]),
            )
        except genai_errors.APIError as e:
            raise UpstreamProtocolError(f"Gemini API error: {e.code} {e.message}", e.code) from e

        urls = []
        for candidate in response.candidates or []:
            parts = candidate.content.parts if candidate.content else None
            for part in parts or []:
                inline = part.inline_data
                if inline and inline.data:
                    data = base64.b64encode(inline.data).decode("utf-8")
                    urls.append(f"data:{inline.mime_type};base64,{data}")

        if not urls:
            raise UpstreamProtocolError("No images generated in response")
        return urls
