from typing import Any, Dict, List, Optional

import httpx

from .openai_compat import OpenAICompatProvider
from ..types import ChatStreamOptions, FileRef, Message
from ..utils import content_text, last_user_index


def file_manifest(files: List[FileRef]) -> str:
    """Textual list of attachments, one line per file."""
    lines = ["\n\nAttached files:"]
    for file in files:
        lines.append(f"- {file.get('name', '')} ({file.get('mime_type', '')})")
    return "\n".join(lines)


class GroqProvider(OpenAICompatProvider):
    """
    Provider for Groq's OpenAI-compatible endpoint.

    The transport is text-only: structured parts are flattened and
    attachments are described rather than sent.
    """

    provider_name = "groq"
    display_name = "Groq"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.groq.com/openai/v1",
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(api_key=api_key, base_url=base_url, http_client=http_client)

    @staticmethod
    def build_messages(messages: List[Message], files: Optional[List[FileRef]] = None) -> List[Dict[str, str]]:
        converted = [
            {"role": m.get("role", "user"), "content": content_text(m.get("content", ""))}
            for m in messages
        ]
        if files:
            index = last_user_index(converted)
            if index != -1:
                converted[index]["content"] += file_manifest(files)
        return converted

    async def build_request(
        self,
        messages: List[Message],
        model: str,
        options: ChatStreamOptions,
    ) -> Dict[str, Any]:
        return {
            "model": model,
            "messages": self.build_messages(messages, options.get("files")),
            "stream": True,
            "temperature": 0.7,
            "max_tokens": 4096,
        }
