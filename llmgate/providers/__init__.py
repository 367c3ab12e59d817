from .base import BaseChatProvider, UpstreamStream
from .openai_compat import OpenAICompatProvider
from .openrouter import OpenRouterProvider
from .groq import GroqProvider
from .gemini import GeminiProvider

__all__ = [
    "BaseChatProvider",
    "UpstreamStream",
    "OpenAICompatProvider",
    "OpenRouterProvider",
    "GroqProvider",
    "GeminiProvider",
]
