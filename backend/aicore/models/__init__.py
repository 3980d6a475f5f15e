"""Pydantic models shared across the orchestration core."""

from .billing import (
    CreditCheck,
    Deduction,
    OwnerRef,
    UsageRecord,
    WalletBalance,
    WalletType,
    billing_period_for,
)
from .capabilities import CACHEABLE_CAPABILITIES, TOKEN_PRICED_CAPABILITIES, Capability
from .catalog import ModelDescriptor, ModelId, ModelPricing
from .messages import ConversationMessage, MessagePart, MessageRole, last_user_message
from .requests import (
    AIRequest,
    AIRequestBase,
    CallerIdentity,
    ImageGenerationRequest,
    SpeechRecognitionRequest,
    SpeechSynthesisRequest,
    TextEmbeddingRequest,
    TextGenerationRequest,
)
from .results import (
    AIResponse,
    EmbeddingResult,
    GeneratedImage,
    ImageGenerationResult,
    ProviderResult,
    RoutingDecision,
    SpeechRecognitionResult,
    SpeechSynthesisResult,
    StreamChunk,
    TextGenerationResult,
    Usage,
)

__all__ = [
    "AIRequest",
    "AIRequestBase",
    "AIResponse",
    "CACHEABLE_CAPABILITIES",
    "CallerIdentity",
    "Capability",
    "ConversationMessage",
    "CreditCheck",
    "Deduction",
    "EmbeddingResult",
    "GeneratedImage",
    "ImageGenerationRequest",
    "ImageGenerationResult",
    "MessagePart",
    "MessageRole",
    "ModelDescriptor",
    "ModelId",
    "ModelPricing",
    "OwnerRef",
    "ProviderResult",
    "RoutingDecision",
    "SpeechRecognitionRequest",
    "SpeechRecognitionResult",
    "SpeechSynthesisRequest",
    "SpeechSynthesisResult",
    "StreamChunk",
    "TOKEN_PRICED_CAPABILITIES",
    "TextEmbeddingRequest",
    "TextGenerationRequest",
    "TextGenerationResult",
    "Usage",
    "UsageRecord",
    "WalletBalance",
    "WalletType",
    "billing_period_for",
    "last_user_message",
]
