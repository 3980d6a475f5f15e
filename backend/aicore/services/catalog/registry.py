"""
Static model registry.

Prices are in credits, where 1 credit = $0.001 of upstream cost. Tiers rank
models within a provider (1 = cheapest). A discovery process may replace this
list at runtime through ``ModelCatalog.replace_models``.
"""
from typing import List

from aicore.models import Capability, ModelDescriptor, ModelPricing

OPENAI = "openai"
ANTHROPIC = "anthropic"


def _text(model_id, name, provider, per_in, per_out, tier, max_tokens, vision=True, deprecated=False):
    return ModelDescriptor(
        id=model_id,
        display_name=name,
        provider_id=provider,
        capability=Capability.TEXT_GENERATION,
        pricing=ModelPricing(per_input_token=per_in, per_output_token=per_out),
        tier=tier,
        deprecated=deprecated,
        max_tokens=max_tokens,
        supports_vision=vision,
        supports_streaming=True,
    )


DEFAULT_MODELS: List[ModelDescriptor] = [
    # OpenAI text generation
    _text("gpt-4o-mini", "GPT-4o Mini", OPENAI, 0.00015, 0.0006, 1, 16384),
    _text("gpt-4o", "GPT-4o", OPENAI, 0.0025, 0.01, 2, 16384),
    _text("o3-mini", "o3-mini", OPENAI, 0.0011, 0.0044, 2, 100000, vision=False),
    _text("o1-mini", "o1-mini", OPENAI, 0.003, 0.012, 2, 65536, vision=False),
    _text("gpt-4-turbo", "GPT-4 Turbo", OPENAI, 0.01, 0.03, 3, 4096, deprecated=True),
    # Anthropic text generation
    _text("claude-3-haiku-20240307", "Claude 3 Haiku", ANTHROPIC, 0.00025, 0.00125, 1, 4096),
    _text("claude-3-5-haiku-20241022", "Claude 3.5 Haiku", ANTHROPIC, 0.0008, 0.004, 1, 8192),
    _text("claude-3-5-sonnet-20241022", "Claude 3.5 Sonnet", ANTHROPIC, 0.003, 0.015, 2, 8192),
    _text("claude-sonnet-4-20250514", "Claude Sonnet 4", ANTHROPIC, 0.003, 0.015, 3, 64000),
    _text("claude-opus-4-20250514", "Claude Opus 4", ANTHROPIC, 0.015, 0.075, 3, 32000),
    # OpenAI embeddings
    ModelDescriptor(
        id="text-embedding-3-small",
        display_name="Text Embedding 3 Small",
        provider_id=OPENAI,
        capability=Capability.TEXT_EMBEDDING,
        pricing=ModelPricing(per_input_token=0.00002, per_output_token=0.0),
        tier=1,
    ),
    ModelDescriptor(
        id="text-embedding-3-large",
        display_name="Text Embedding 3 Large",
        provider_id=OPENAI,
        capability=Capability.TEXT_EMBEDDING,
        pricing=ModelPricing(per_input_token=0.00013, per_output_token=0.0),
        tier=2,
    ),
    # OpenAI image generation
    ModelDescriptor(
        id="dall-e-3",
        display_name="DALL-E 3",
        provider_id=OPENAI,
        capability=Capability.IMAGE_GENERATION,
        pricing=ModelPricing(per_image=40.0),
        tier=1,
    ),
    ModelDescriptor(
        id="dall-e-3-hd",
        display_name="DALL-E 3 HD",
        provider_id=OPENAI,
        capability=Capability.IMAGE_GENERATION,
        pricing=ModelPricing(per_image=80.0),
        tier=2,
    ),
    # OpenAI speech synthesis
    ModelDescriptor(
        id="tts-1",
        display_name="TTS-1",
        provider_id=OPENAI,
        capability=Capability.SPEECH_SYNTHESIS,
        pricing=ModelPricing(per_character=0.015),
        tier=1,
    ),
    ModelDescriptor(
        id="tts-1-hd",
        display_name="TTS-1 HD",
        provider_id=OPENAI,
        capability=Capability.SPEECH_SYNTHESIS,
        pricing=ModelPricing(per_character=0.03),
        tier=2,
    ),
    # OpenAI speech recognition
    ModelDescriptor(
        id="whisper-1",
        display_name="Whisper",
        provider_id=OPENAI,
        capability=Capability.SPEECH_RECOGNITION,
        pricing=ModelPricing(per_minute=6.0),
        tier=1,
    ),
]
