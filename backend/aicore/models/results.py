"""Normalized provider results, streaming chunks and the orchestrated response."""
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field

from aicore.models.capabilities import Capability


class Usage(BaseModel):
    """Billable quantities reported by (or estimated for) one call."""

    input_tokens: int = Field(0, ge=0)
    output_tokens: int = Field(0, ge=0)
    image_count: int = Field(0, ge=0)
    character_count: int = Field(0, ge=0)
    audio_seconds: float = Field(0.0, ge=0)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class TextGenerationResult(BaseModel):
    id: str
    model: str
    content: str
    finish_reason: Optional[str] = None
    usage: Usage = Field(default_factory=Usage)


class EmbeddingResult(BaseModel):
    id: str
    model: str
    embeddings: List[List[float]]
    usage: Usage = Field(default_factory=Usage)

    @property
    def dimensions(self) -> int:
        return len(self.embeddings[0]) if self.embeddings else 0


class GeneratedImage(BaseModel):
    url: Optional[str] = None
    b64_json: Optional[str] = None
    revised_prompt: Optional[str] = None


class ImageGenerationResult(BaseModel):
    id: str
    model: str
    images: List[GeneratedImage]
    usage: Usage = Field(default_factory=Usage)


class SpeechSynthesisResult(BaseModel):
    id: str
    model: str
    audio_base64: str
    format: str
    usage: Usage = Field(default_factory=Usage)


class SpeechRecognitionResult(BaseModel):
    id: str
    model: str
    text: str
    language: Optional[str] = None
    duration_seconds: float = 0.0
    usage: Usage = Field(default_factory=Usage)


ProviderResult = Union[
    TextGenerationResult,
    EmbeddingResult,
    ImageGenerationResult,
    SpeechSynthesisResult,
    SpeechRecognitionResult,
]


class StreamChunk(BaseModel):
    id: str
    delta: str = ""
    finish_reason: Optional[str] = None


class RoutingDecision(BaseModel):
    """Outcome of smart routing for one request."""

    model_id: str
    original_model: str
    was_routed: bool
    complexity: Literal["simple", "medium", "complex"]
    reason: str
    estimated_savings_percent: Optional[int] = None


class AIResponse(BaseModel):
    request_id: str
    capability: Capability
    model: str
    requested_model: str
    content: Optional[str] = None
    result: Optional[ProviderResult] = None
    usage: Usage = Field(default_factory=Usage)
    credits_used: float = 0.0
    new_balance: Optional[float] = None
    cached: bool = False
    routing: Optional[RoutingDecision] = None
