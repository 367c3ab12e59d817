from typing import Literal, List, Union, TypedDict, Optional

# =============================================================================
# Type Definitions
# =============================================================================

# Upstream provider families
ProviderFamily = Literal["gemini", "groq", "openrouter"]

# Declared model capabilities
Capability = Literal["vision", "search", "pdf", "files", "reasoning", "thinking", "image"]


class TextContent(TypedDict, total=False):
    """
    Text content part for multimodal messages.
    """
    type: Literal["text"]
    text: str


class ImageUrlDetail(TypedDict, total=False):
    """
    Image URL specification. The URL is either hosted (http/https) or a data URI.
    """
    url: str


class ImageContent(TypedDict, total=False):
    """
    Image content part for multimodal messages (OpenAI format).
    """
    type: Literal["image_url"]
    image_url: ImageUrlDetail


class FileDetail(TypedDict, total=False):
    """
    Inline file payload. ``file_data`` is a base64 data URI.
    """
    filename: str
    file_data: str


class FileContent(TypedDict, total=False):
    """
    File content part (PDFs and text documents).
    """
    type: Literal["file"]
    file: FileDetail


# Content can be a simple string or a list of content parts
ContentPart = Union[TextContent, ImageContent, FileContent]
MessageContent = Union[str, List[ContentPart]]


class Message(TypedDict, total=False):
    """
    Chat message with optional multimodal content.

    Roles:
    - "system": System prompt / instructions
    - "user": User message
    - "assistant": Model response
    """
    role: Literal["system", "user", "assistant"]
    content: MessageContent


class FileRef(TypedDict):
    """
    An already-hosted attachment, as returned by the file-hosting service.
    """
    name: str
    url: str
    mime_type: str


# =============================================================================
# Request Type Definitions
# =============================================================================

class ChatStreamOptions(TypedDict, total=False):
    """
    Per-call options shared by every provider adapter.
    """
    search_enabled: bool
    files: List[FileRef]
    thinking_enabled: bool
    thinking_budget: Optional[int]


class Customization(TypedDict, total=False):
    """
    Optional user personalization fed into the system prompt.
    """
    user_name: str
    user_role: str
    user_interests: str


class Credentials(TypedDict, total=False):
    """
    Caller-supplied API keys. Missing keys may fall back to operator keys.
    """
    open_router_key: Optional[str]
    gemini_key: Optional[str]
    groq_key: Optional[str]


class GenerationRequest(TypedDict, total=False):
    """
    A single generation call, built fresh per request.
    """
    messages: List[Message]
    model_id: str
    search_enabled: bool
    thinking_enabled: bool
    thinking_budget: Optional[int]
    attachments: List[FileRef]
    think_enabled: bool
    model_base: Optional[str]
    customization: Optional[Customization]


# =============================================================================
# Response Type Definitions
# =============================================================================

class StreamEvent(TypedDict):
    """
    Canonical unit emitted to clients. At most one field is non-empty;
    an event with both empty marks the end of a reasoning segment.
    """
    token: str
    reasoning: str


class ImageResult(TypedDict):
    """
    Result of an image-generation call.
    """
    url: str
    prompt: str
