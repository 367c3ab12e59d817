from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional

from .types import Capability, ProviderFamily

# =============================================================================
# Model Catalog
# =============================================================================

# Provider family used for ids the catalog does not know about
FALLBACK_PROVIDER: ProviderFamily = "openrouter"

IMAGE_GENERATION_MODELS = frozenset({"gemini-2.0-flash-preview-image-generation"})


@dataclass(frozen=True)
class ModelDescriptor:
    """
    Static description of a model known to the gateway.
    """
    id: str
    display_name: str
    provider_family: ProviderFamily
    context_length: int
    vendor: str
    capabilities: FrozenSet[Capability] = field(default_factory=frozenset)


def _model(
    id: str,
    display_name: str,
    provider_family: ProviderFamily,
    context_length: int,
    vendor: str,
    *capabilities: Capability,
) -> ModelDescriptor:
    return ModelDescriptor(id, display_name, provider_family, context_length, vendor, frozenset(capabilities))


# Gemini models go through the Google SDK
GEMINI_MODELS: List[ModelDescriptor] = [
    _model("gemini-2.0-flash-exp", "Gemini 2.0 Flash", "gemini", 1048576, "Google", "search"),
    _model("gemini-2.0-flash-lite-exp", "Gemini 2.0 Flash Lite", "gemini", 1048576, "Google"),
    _model(
        "gemini-2.0-flash-thinking-exp", "Gemini 2.0 Flash Thinking", "gemini", 1048576, "Google",
        "reasoning", "thinking",
    ),
    _model(
        "gemini-2.0-flash-preview-image-generation", "Gemini 2.0 Flash Image Generation", "gemini",
        1048576, "Google", "image",
    ),
    _model(
        "gemini-2.5-flash-preview-05-20", "Gemini 2.5 Flash", "gemini", 1048576, "Google",
        "vision", "search", "pdf", "files", "thinking",
    ),
    _model(
        "gemini-2.5-pro-preview-06-05", "Gemini 2.5 Pro", "gemini", 2097152, "Google",
        "vision", "search", "pdf", "files", "reasoning", "thinking",
    ),
]

# Groq models, always called with the user's own key
GROQ_MODELS: List[ModelDescriptor] = [
    _model(
        "deepseek-r1-distill-llama-70b", "DeepSeek R1 Distill Llama 70B", "groq", 128000, "Groq",
        "reasoning", "thinking",
    ),
    _model("meta-llama/llama-4-maverick-17b-128e-instruct", "Llama 4 Maverick 17B", "groq", 131072, "Groq"),
    _model("qwen/qwen3-32b", "Qwen 3 32B", "groq", 32768, "Groq", "reasoning", "thinking"),
]

OPENROUTER_MODELS: List[ModelDescriptor] = [
    _model(
        "anthropic/claude-3.5-sonnet", "Claude 3.5 Sonnet", "openrouter", 200000, "Anthropic",
        "vision", "files", "reasoning",
    ),
    _model(
        "anthropic/claude-4-sonnet", "Claude 4 Sonnet", "openrouter", 200000, "Anthropic",
        "vision", "search", "files", "reasoning",
    ),
    _model("deepseek/deepseek-chat-v3", "DeepSeek Chat V3", "openrouter", 163840, "DeepSeek", "reasoning"),
    _model("deepseek/deepseek-r1-qwen3-8b", "DeepSeek R1 Qwen3 8B", "openrouter", 32768, "DeepSeek", "reasoning"),
    _model("openai/gpt-4o", "GPT-4o", "openrouter", 128000, "OpenAI", "vision", "files", "reasoning"),
    _model("openai/gpt-oss-120b", "GPT OSS 120B", "openrouter", 131072, "OpenAI", "reasoning"),
    _model(
        "qwen/qwen3-next-80b-a3b-instruct", "Qwen3 Next 80B Instruct", "openrouter", 262144, "Qwen",
    ),
    _model(
        "qwen/qwen3-next-80b-a3b-thinking", "Qwen3 Next 80B Thinking", "openrouter", 262144, "Qwen",
        "reasoning", "thinking",
    ),
]

FREE_MODELS: List[ModelDescriptor] = [
    _model("deepseek/deepseek-chat-v3-0324:free", "DeepSeek V3 Free", "openrouter", 163840, "DeepSeek", "reasoning"),
    _model("qwen/qwq-32b:free", "Qwen 32B Free", "openrouter", 40000, "Qwen", "reasoning"),
    _model("meta-llama/llama-4-maverick:free", "Llama 4 Maverick Free", "openrouter", 128000, "Meta"),
    _model("meta-llama/llama-4-scout:free", "Llama 4 Scout Free", "openrouter", 200000, "Meta"),
    _model("meta-llama/llama-3.3-70b-instruct:free", "Llama 3.3 70B Free", "openrouter", 131072, "Meta"),
    _model("qwen/qwen3-32b:free", "Qwen3 32B Free", "openrouter", 40960, "Qwen"),
    _model("nousresearch/hermes-3-llama-3.1-405b:free", "Hermes 3 405B Free", "openrouter", 131072, "Nous"),
    _model("z-ai/glm-4.5-air:free", "GLM 4.5 Air Free", "openrouter", 131072, "Z.AI"),
]

ALL_MODELS: List[ModelDescriptor] = GEMINI_MODELS + GROQ_MODELS + OPENROUTER_MODELS + FREE_MODELS

_BY_ID: Dict[str, ModelDescriptor] = {m.id: m for m in ALL_MODELS}

if len(_BY_ID) != len(ALL_MODELS):
    raise RuntimeError("Duplicate model id in catalog")

# Instruct models that have a dedicated reasoning variant
THINKING_VARIANTS: Dict[str, str] = {
    "qwen3-next-80b-a3b-instruct": "qwen/qwen3-next-80b-a3b-thinking",
}

# Catalog id -> Gemini API model name
_GEMINI_API_NAMES: Dict[str, str] = {m.id: m.id for m in GEMINI_MODELS}
DEFAULT_GEMINI_API_MODEL = "gemini-2.0-flash-exp"


# =============================================================================
# Lookups
# =============================================================================

def get_model(model_id: str) -> Optional[ModelDescriptor]:
    """Return the descriptor for an exact id, or None."""
    return _BY_ID.get(model_id)


def resolve_provider(model_id: str) -> ProviderFamily:
    """
    Resolve which provider family handles a model.

    Unknown ids (e.g. from an outdated client) resolve to the fallback
    family instead of raising.
    """
    model = _BY_ID.get(model_id)
    return model.provider_family if model else FALLBACK_PROVIDER


def capabilities_of(model_id: str) -> FrozenSet[Capability]:
    """Declared capabilities, empty for unknown ids."""
    model = _BY_ID.get(model_id)
    return model.capabilities if model else frozenset()


def is_image_generation_model(model_id: str) -> bool:
    return model_id in IMAGE_GENERATION_MODELS


def supports_thinking(model_id: str) -> bool:
    return "thinking" in capabilities_of(model_id)


def default_model() -> ModelDescriptor:
    return GEMINI_MODELS[0]


def list_models(provider_family: Optional[ProviderFamily] = None) -> List[ModelDescriptor]:
    """All catalog entries, optionally restricted to one provider family."""
    if provider_family is None:
        return list(ALL_MODELS)
    return [m for m in ALL_MODELS if m.provider_family == provider_family]


def model_groups() -> Dict[str, List[ModelDescriptor]]:
    """Models grouped the way the model picker shows them."""
    return {
        "gemini": list(GEMINI_MODELS),
        "groq": list(GROQ_MODELS),
        "openrouter": list(OPENROUTER_MODELS),
        "free": list(FREE_MODELS),
    }


def gemini_api_model_name(model_id: str) -> str:
    """Map a catalog id to the model name sent to the Gemini API."""
    return _GEMINI_API_NAMES.get(model_id, DEFAULT_GEMINI_API_MODEL)


def thinking_variant(model_id: str, model_base: Optional[str] = None) -> Optional[str]:
    """
    Return the dedicated thinking model for an instruct model, if one exists.

    Args:
        model_id: The requested model id.
        model_base: Explicit base name of the selected model. Defaults to the
                    part of ``model_id`` after the last '/'.
    """
    base = (model_base or model_id.rsplit("/", 1)[-1]).strip()
    return THINKING_VARIANTS.get(base)
