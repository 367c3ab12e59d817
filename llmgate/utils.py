import base64
from typing import List, Optional, Tuple

import httpx

from .errors import AttachmentProcessingError
from .types import (
    Message, ContentPart, TextContent, ImageContent, FileContent, MessageContent
)

# Use a browser-like User-Agent to avoid being blocked by file hosts
_FETCH_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
}

# =============================================================================
# Encoding Helpers
# =============================================================================

async def encode_url(
    url: str,
    http_client: Optional[httpx.AsyncClient] = None,
    timeout: float = 30.0,
) -> Tuple[str, str]:
    """
    Fetch a remote file and encode it to base64.

    Args:
        url (str): The publicly accessible URL of the file.
        http_client (httpx.AsyncClient, optional): Shared client to reuse.
            A short-lived client is created when omitted.
        timeout (float): Timeout for the short-lived client.

    Returns:
        Tuple[str, str]: A tuple containing:
            - b64_data (str): The base64-encoded content.
            - mime_type (str): The MIME type from the Content-Type header.

    Raises:
        httpx.HTTPError: If the download fails (timeout, 404, etc.).
    """
    if http_client is None:
        async with httpx.AsyncClient(timeout=timeout, headers=_FETCH_HEADERS, follow_redirects=True) as client:
            response = await client.get(url)
    else:
        response = await http_client.get(url, headers=_FETCH_HEADERS, follow_redirects=True)
    response.raise_for_status()

    content_type = response.headers.get("content-type", "application/octet-stream")
    mime_type = content_type.split(";")[0].strip()
    b64_data = base64.b64encode(response.content).decode("utf-8")

    return b64_data, mime_type


def parse_data_uri(uri: str) -> Tuple[str, str]:
    """
    Split a data URI into (base64_data, mime_type).

    Format: data:[<mediatype>][;base64],<data>
    """
    header, data = uri.split(",", 1)
    mime_type = header.split(":", 1)[1].split(";")[0] or "application/octet-stream"
    return data, mime_type


def guess_image_mime(url: str) -> str:
    """Guess an image MIME type from its URL, defaulting to PNG."""
    lowered = url.lower()
    if ".jpg" in lowered or ".jpeg" in lowered:
        return "image/jpeg"
    if ".gif" in lowered:
        return "image/gif"
    if ".webp" in lowered:
        return "image/webp"
    return "image/png"


async def resolve_to_base64(
    url: str,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Tuple[str, str]:
    """
    Resolve a file reference (URL or data URI) to base64 data.

    Args:
        url (str): HTTP/HTTPS URL or data URI.
        http_client (httpx.AsyncClient, optional): Shared client to reuse.

    Returns:
        Tuple[str, str]: A tuple containing (base64_data, mime_type).
    """
    if url.startswith("data:"):
        return parse_data_uri(url)
    return await encode_url(url, http_client)


async def fetch_as_data_uri(
    filename: str,
    url: str,
    mime_type: str,
    http_client: Optional[httpx.AsyncClient] = None,
) -> str:
    """
    Download a hosted attachment and return it as a base64 data URI.

    The declared MIME type wins over the one reported by the host.

    Raises:
        AttachmentProcessingError: If the file cannot be fetched.
    """
    try:
        b64_data, detected = await encode_url(url, http_client)
    except httpx.HTTPError as e:
        raise AttachmentProcessingError(filename, str(e)) from e
    return f"data:{mime_type or detected};base64,{b64_data}"


# =============================================================================
# Content Helpers
# =============================================================================

def create_text_content(text: str) -> TextContent:
    """
    Create a standardized simple text content part.

    Args:
        text (str): The text message content.

    Returns:
        TextContent: A dictionary {"type": "text", "text": text}.
    """
    return {"type": "text", "text": text}


def create_image_content(url: str) -> ImageContent:
    """
    Create an image content part referencing a hosted URL or data URI.
    """
    return {"type": "image_url", "image_url": {"url": url}}


def create_file_content(filename: str, file_data: str) -> FileContent:
    """
    Create a file content part. ``file_data`` must be a data URI.
    """
    return {"type": "file", "file": {"filename": filename, "file_data": file_data}}


def as_parts(content: MessageContent) -> List[ContentPart]:
    """
    Promote message content to part-sequence form.

    A plain string becomes a single leading text part; an existing part
    list is copied.
    """
    if isinstance(content, str):
        return [create_text_content(content)]
    return list(content)


def content_text(content: MessageContent, separator: str = " ") -> str:
    """Flatten message content to its text parts only."""
    if isinstance(content, str):
        return content
    return separator.join(p.get("text", "") for p in content if p.get("type") == "text")


def last_user_index(messages: List[Message]) -> int:
    """Index of the most recent user message, or -1."""
    for i in range(len(messages) - 1, -1, -1):
        if messages[i].get("role") == "user":
            return i
    return -1


def latest_user_text(messages: List[Message]) -> str:
    """Text of the most recent user message ('' when there is none)."""
    index = last_user_index(messages)
    if index == -1:
        return ""
    return content_text(messages[index].get("content", ""))


def append_text(parts: List[ContentPart], note: str) -> None:
    """
    Append a note to the first text part, or add a new text part.
    """
    for i, part in enumerate(parts):
        if part.get("type") == "text":
            parts[i] = create_text_content(f"{part.get('text', '')}\n\n{note}")
            return
    parts.append(create_text_content(note))
