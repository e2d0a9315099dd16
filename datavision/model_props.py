# datavision/model_props.py
from typing import Optional, Tuple

PROVIDER_OPENAI = "openai"
PROVIDER_VERTEX = "vertex"

REASONING_EFFORTS = ("none", "minimal", "low", "medium", "high")


def model_provider(model_name) -> str:
    """Gemini names go to Vertex AI; gpt-* names go to the OpenAI Responses API."""
    if (model_name or "").strip().lower().startswith("gpt-"):
        return PROVIDER_OPENAI
    return PROVIDER_VERTEX


def split_model_name(raw: str) -> Tuple[str, Optional[str]]:
    """
    'gpt-5.1'      -> ('gpt-5.1', None)
    'gpt-5.1_low'  -> ('gpt-5.1', 'low')   reasoning effort for OpenAI reasoning models

    Vertex names take no suffix.
    """
    raw = (raw or "").strip()
    if not raw:
        raise ValueError("No model name configured (DATAVISION_MODEL)")

    base, sep, effort = raw.partition("_")
    if not sep:
        return base, None

    effort = effort.strip().lower()
    if model_provider(base) != PROVIDER_OPENAI:
        raise ValueError(f"Model '{base}' does not take a suffix (got '{raw}')")
    if effort not in REASONING_EFFORTS:
        raise ValueError(f"Unknown reasoning effort '{effort}' in '{raw}'; expected one of {', '.join(REASONING_EFFORTS)}")
    return base, effort


def accepts_temperature(model_name: str, reasoning_effort: Optional[str]) -> bool:
    # reasoning models reject sampling parameters
    return reasoning_effort is None and not model_name.startswith("gpt-5")
