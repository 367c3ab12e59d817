"""Configuration for the gateway, read from the environment (and a local .env)."""
import os
from dataclasses import dataclass, field
from typing import Optional

import dotenv

# Load environment variables
dotenv.load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _env_key(name: str) -> Optional[str]:
    value = os.getenv(name, "").strip()
    return value or None


@dataclass
class Settings:
    """
    Operator configuration.

    Operator keys are fallbacks used only when the caller does not supply
    their own; Groq keys are always caller-owned and have no fallback here.
    """

    # Operator fallback keys
    openrouter_api_key: Optional[str] = field(default_factory=lambda: _env_key("OPENROUTER_API_KEY"))
    gemini_api_key: Optional[str] = field(default_factory=lambda: _env_key("GEMINI_API_KEY"))

    # Upstream endpoints
    openrouter_base_url: str = field(
        default_factory=lambda: os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")
    )
    groq_base_url: str = field(
        default_factory=lambda: os.getenv("GROQ_BASE_URL", "https://api.groq.com/openai/v1")
    )
    openrouter_image_model: str = field(
        default_factory=lambda: os.getenv("OPENROUTER_IMAGE_MODEL", "black-forest-labs/flux-schnell")
    )

    # Attribution headers sent to OpenRouter
    app_url: str = field(default_factory=lambda: os.getenv("APP_URL", "http://localhost:3000"))
    app_title: str = field(default_factory=lambda: os.getenv("APP_TITLE", "llmgate"))

    # Pacing of replayed (non-streaming) Gemini responses, in seconds
    reasoning_word_delay: float = field(
        default_factory=lambda: float(os.getenv("REASONING_WORD_DELAY", "0.02"))
    )
    reasoning_end_delay: float = field(
        default_factory=lambda: float(os.getenv("REASONING_END_DELAY", "0.05"))
    )
    answer_chunk_delay: float = field(
        default_factory=lambda: float(os.getenv("ANSWER_CHUNK_DELAY", "0.05"))
    )
    answer_chunk_words: int = field(default_factory=lambda: int(os.getenv("ANSWER_CHUNK_WORDS", "3")))

    # Attachment downloads
    fetch_timeout: float = field(default_factory=lambda: float(os.getenv("FETCH_TIMEOUT", "30")))

    # Rate limiting
    rate_limit_enabled: bool = field(default_factory=lambda: _env_bool("RATE_LIMIT_ENABLED", "True"))

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_json: bool = field(default_factory=lambda: _env_bool("LOG_JSON", "False"))

    # Server
    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8000")))

    def get_server_config(self) -> tuple[str, int]:
        """Get server host and port."""
        return self.host, self.port


def get_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings()
