"""System prompt ("identity") composition."""
from typing import List, Optional, Tuple

from .types import Customization

# (model id substring, persona name). First match wins, so more specific
# substrings must come before the generic ones they contain.
PERSONA_RULES: List[Tuple[str, str]] = [
    ("deepseek", "DeepSeek"),
    ("gemini", "Gemini"),
    ("qwen", "Qwen"),
    ("qwq", "Qwen"),
    ("claude", "Claude"),
    ("gpt", "ChatGPT"),
    ("openai", "ChatGPT"),
    ("hermes", "Hermes"),
    ("glm", "GLM"),
    ("kimi", "Kimi"),
    ("mistral", "Mistral"),
    ("grok", "Grok"),
    ("llama", "Llama"),
]

DEFAULT_PERSONA = "a helpful AI assistant"

# Models that only reason when asked to wrap it in tags
THINKING_MARKERS = ("hermes", "glm", "gpt-oss", "deepseek")

THINK_TAG = "think"


def persona_for(model_id: str) -> str:
    """Persona name for a model id, or the generic default."""
    lowered = model_id.lower()
    for marker, persona in PERSONA_RULES:
        if marker in lowered:
            return persona
    return DEFAULT_PERSONA


def persona_clause(model_id: str) -> str:
    persona = persona_for(model_id)
    if persona == DEFAULT_PERSONA:
        name = persona
    else:
        name = f"{persona}, a large language model"
    return (
        f"You are {name}. Use the preceding conversation history to provide clear, "
        "accurate, and detailed answers. Respond naturally without adding any role "
        "prefixes or labels, and follow the tone of the user."
    )


def personalization_clause(customization: Optional[Customization]) -> str:
    """
    Describe the user from the optional customization fields.

    Each field is trimmed and dropped when blank; an empty string is
    returned when nothing is left.
    """
    if not customization:
        return ""

    facts = []
    name = (customization.get("user_name") or "").strip()
    role = (customization.get("user_role") or "").strip()
    interests = (customization.get("user_interests") or "").strip()
    if name:
        facts.append(f"the user's name is {name}")
    if role:
        facts.append(f"they work as {role}")
    if interests:
        facts.append(f"they are interested in {interests}")

    if not facts:
        return ""
    return f"For personalization: {', and '.join(facts)}."


def needs_thinking_instruction(model_id: str, think_enabled: bool) -> bool:
    lowered = model_id.lower()
    return think_enabled and any(marker in lowered for marker in THINKING_MARKERS)


def thinking_clause() -> str:
    return (
        "Before answering, think through the problem step by step. Wrap all of your "
        f"reasoning in <{THINK_TAG}>...</{THINK_TAG}> tags, then give the final answer "
        "after the closing tag."
    )


def compose_system_prompt(
    model_id: str,
    customization: Optional[Customization] = None,
    think_enabled: bool = False,
) -> str:
    """
    Build the system prompt: persona, personalization, thinking instruction.
    """
    clauses = [persona_clause(model_id), personalization_clause(customization)]
    if needs_thinking_instruction(model_id, think_enabled):
        clauses.append(thinking_clause())
    return " ".join(c for c in clauses if c)
