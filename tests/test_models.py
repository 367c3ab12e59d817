import pytest

from llmgate.models import (
    ALL_MODELS, FALLBACK_PROVIDER, capabilities_of, default_model, gemini_api_model_name,
    get_model, is_image_generation_model, list_models, model_groups, resolve_provider,
    supports_thinking, thinking_variant
)


class TestRegistry:

    def test_ids_are_unique(self):
        ids = [m.id for m in ALL_MODELS]
        assert len(ids) == len(set(ids))

    @pytest.mark.parametrize("model_id,family", [
        ("gemini-2.0-flash-exp", "gemini"),
        ("qwen/qwen3-32b", "groq"),
        ("openai/gpt-4o", "openrouter"),
        ("qwen/qwen3-32b:free", "openrouter"),
    ])
    def test_resolve_provider(self, model_id, family):
        assert resolve_provider(model_id) == family
        assert resolve_provider(model_id) == resolve_provider(model_id)

    def test_unknown_id_uses_fallback(self):
        assert resolve_provider("vendor/does-not-exist") == FALLBACK_PROVIDER
        assert capabilities_of("vendor/does-not-exist") == frozenset()
        assert get_model("vendor/does-not-exist") is None

    def test_capability_queries(self):
        assert is_image_generation_model("gemini-2.0-flash-preview-image-generation")
        assert not is_image_generation_model("gemini-2.0-flash-exp")
        assert supports_thinking("gemini-2.5-pro-preview-06-05")
        assert not supports_thinking("openai/gpt-4o")
        assert "vision" in capabilities_of("openai/gpt-4o")

    def test_default_model_is_first_gemini(self):
        assert default_model().provider_family == "gemini"
        assert default_model() is model_groups()["gemini"][0]

    def test_list_models_by_family(self):
        groq = list_models("groq")
        assert groq and all(m.provider_family == "groq" for m in groq)
        assert len(list_models()) == len(ALL_MODELS)

    def test_gemini_api_names(self):
        assert gemini_api_model_name("gemini-2.5-flash-preview-05-20") == "gemini-2.5-flash-preview-05-20"
        assert gemini_api_model_name("unknown") == "gemini-2.0-flash-exp"

    def test_thinking_variant(self):
        assert thinking_variant("qwen/qwen3-next-80b-a3b-instruct") == "qwen/qwen3-next-80b-a3b-thinking"
        assert thinking_variant("qwen/qwen3-32b", "qwen3-next-80b-a3b-instruct") == "qwen/qwen3-next-80b-a3b-thinking"
        assert thinking_variant("qwen/qwen3-32b") is None
