from .gateway import ChatGateway
from .config import Settings, get_settings
from .errors import (
    GatewayError, BadRequestError, ConfigurationError, UpstreamProtocolError
)
from .models import ModelDescriptor, resolve_provider, list_models, default_model
from .types import (
    Message, ContentPart, TextContent, ImageContent, FileContent, FileRef,
    GenerationRequest, Credentials, StreamEvent, ImageResult
)
from .printer import RichStreamPrinter, parse_sse_lines

__all__ = [
    "ChatGateway",
    "Settings",
    "get_settings",
    "GatewayError",
    "BadRequestError",
    "ConfigurationError",
    "UpstreamProtocolError",
    "ModelDescriptor",
    "resolve_provider",
    "list_models",
    "default_model",
    "Message",
    "ContentPart",
    "TextContent",
    "ImageContent",
    "FileContent",
    "FileRef",
    "GenerationRequest",
    "Credentials",
    "StreamEvent",
    "ImageResult",
    "RichStreamPrinter",
    "parse_sse_lines",
]
