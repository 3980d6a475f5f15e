"""
Credit pricing.

Cost formulas by capability:
- token-priced (text generation/embedding, image understanding):
  input_tokens * per_input_token + output_tokens * per_output_token
- image generation: image_count * per_image
- speech synthesis: character_count * per_character
- speech recognition: ceil(audio_seconds / 60) * per_minute

Models missing from the catalog (or missing a needed price) fall back to a
conservative capability-level default rate.
"""
import math
from typing import Dict, Optional, Sequence

from aicore.models import (
    TOKEN_PRICED_CAPABILITIES,
    AIRequest,
    Capability,
    ConversationMessage,
    ModelPricing,
    Usage,
)
from aicore.services.catalog import ModelCatalog

CHARS_PER_TOKEN = 4
ESTIMATED_AUDIO_SECONDS = 60.0

DEFAULT_PRICING: Dict[Capability, ModelPricing] = {
    Capability.TEXT_GENERATION: ModelPricing(per_input_token=0.01, per_output_token=0.03),
    Capability.IMAGE_UNDERSTANDING: ModelPricing(per_input_token=0.01, per_output_token=0.03),
    Capability.TEXT_EMBEDDING: ModelPricing(per_input_token=0.0002, per_output_token=0.0),
    Capability.IMAGE_GENERATION: ModelPricing(per_image=80.0),
    Capability.SPEECH_SYNTHESIS: ModelPricing(per_character=0.03),
    Capability.SPEECH_RECOGNITION: ModelPricing(per_minute=6.0),
}

_REQUIRED_FIELDS: Dict[Capability, Sequence[str]] = {
    Capability.TEXT_GENERATION: ("per_input_token", "per_output_token"),
    Capability.IMAGE_UNDERSTANDING: ("per_input_token", "per_output_token"),
    Capability.TEXT_EMBEDDING: ("per_input_token",),
    Capability.IMAGE_GENERATION: ("per_image",),
    Capability.SPEECH_SYNTHESIS: ("per_character",),
    Capability.SPEECH_RECOGNITION: ("per_minute",),
}


def get_pricing(
    capability: Capability,
    model_id: Optional[str],
    catalog: Optional[ModelCatalog] = None,
) -> ModelPricing:
    """Catalog pricing for the model when complete, else the capability default."""
    if catalog is not None and model_id:
        model = catalog.get(model_id)
        if model is not None and all(
            getattr(model.pricing, name) is not None for name in _REQUIRED_FIELDS[capability]
        ):
            return model.pricing
    return DEFAULT_PRICING[capability]


def price_usage(capability: Capability, pricing: ModelPricing, usage: Usage) -> float:
    if capability in TOKEN_PRICED_CAPABILITIES:
        return (
            usage.input_tokens * (pricing.per_input_token or 0.0)
            + usage.output_tokens * (pricing.per_output_token or 0.0)
        )
    if capability == Capability.IMAGE_GENERATION:
        return usage.image_count * (pricing.per_image or 0.0)
    if capability == Capability.SPEECH_SYNTHESIS:
        return usage.character_count * (pricing.per_character or 0.0)
    if capability == Capability.SPEECH_RECOGNITION:
        return math.ceil(usage.audio_seconds / 60.0) * (pricing.per_minute or 0.0)
    raise ValueError(f"No pricing formula for capability {capability!r}")


def calculate_credits(
    capability: Capability,
    model_id: Optional[str],
    usage: Usage,
    catalog: Optional[ModelCatalog] = None,
) -> float:
    return price_usage(capability, get_pricing(capability, model_id, catalog), usage)


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_message_tokens(messages: Sequence[ConversationMessage]) -> int:
    return estimate_tokens("".join(m.text for m in messages))


def estimate_usage(request: AIRequest) -> Usage:
    """
    Pre-call usage estimate for the capacity check.

    Text generation treats the input size as the output size too; the real
    debit always uses the usage the provider reports.
    """
    capability = request.capability
    if capability == Capability.TEXT_GENERATION:
        tokens = estimate_message_tokens(request.messages)
        return Usage(input_tokens=tokens, output_tokens=tokens)
    if capability == Capability.TEXT_EMBEDDING:
        return Usage(input_tokens=estimate_tokens("".join(request.input)))
    if capability == Capability.IMAGE_GENERATION:
        return Usage(image_count=request.n)
    if capability == Capability.SPEECH_SYNTHESIS:
        return Usage(character_count=len(request.text))
    if capability == Capability.SPEECH_RECOGNITION:
        return Usage(audio_seconds=ESTIMATED_AUDIO_SECONDS)
    raise ValueError(f"Cannot estimate usage for capability {capability!r}")
