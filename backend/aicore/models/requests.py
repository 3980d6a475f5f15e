"""
Capability-typed AI requests accepted by the orchestrator.

Every request carries the resolved caller identity, an optional model id
(None means "use the default for this capability"), an optional
conversation id for cache scoping, and the smart routing switch.
"""
import uuid
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from aicore.models.capabilities import Capability
from aicore.models.messages import ConversationMessage


class CallerIdentity(BaseModel):
    """Authenticated caller, with the organization context when acting for one."""

    user_id: str = Field(..., min_length=1)
    organization_id: Optional[str] = None


class AIRequestBase(BaseModel):
    identity: CallerIdentity
    model: Optional[str] = None
    conversation_id: Optional[str] = None
    smart_routing: bool = True
    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))


class TextGenerationRequest(AIRequestBase):
    capability: Literal[Capability.TEXT_GENERATION] = Capability.TEXT_GENERATION
    messages: List[ConversationMessage] = Field(..., min_length=1)
    temperature: float = Field(0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(4096, gt=0)
    stream: bool = False


class TextEmbeddingRequest(AIRequestBase):
    capability: Literal[Capability.TEXT_EMBEDDING] = Capability.TEXT_EMBEDDING
    input: List[str] = Field(..., min_length=1)
    dimensions: Optional[int] = Field(None, gt=0)

    @field_validator("input", mode="before")
    @classmethod
    def wrap_single_input(cls, value):
        if isinstance(value, str):
            return [value]
        return value


class ImageGenerationRequest(AIRequestBase):
    capability: Literal[Capability.IMAGE_GENERATION] = Capability.IMAGE_GENERATION
    prompt: str = Field(..., min_length=1)
    size: Literal["1024x1024", "1792x1024", "1024x1792"] = "1024x1024"
    quality: Literal["standard", "hd"] = "standard"
    style: Literal["vivid", "natural"] = "vivid"
    n: int = Field(1, ge=1, le=4)


class SpeechSynthesisRequest(AIRequestBase):
    capability: Literal[Capability.SPEECH_SYNTHESIS] = Capability.SPEECH_SYNTHESIS
    text: str = Field(..., min_length=1, max_length=4096)
    voice: Literal["alloy", "echo", "fable", "onyx", "nova", "shimmer"] = "alloy"
    format: Literal["mp3", "opus", "aac", "flac", "wav", "pcm"] = "mp3"
    speed: float = Field(1.0, ge=0.25, le=4.0)


class SpeechRecognitionRequest(AIRequestBase):
    capability: Literal[Capability.SPEECH_RECOGNITION] = Capability.SPEECH_RECOGNITION
    audio: bytes = Field(..., min_length=1)
    filename: str = "audio.mp3"
    language: Optional[str] = None
    prompt: Optional[str] = None


AIRequest = Union[
    TextGenerationRequest,
    TextEmbeddingRequest,
    ImageGenerationRequest,
    SpeechSynthesisRequest,
    SpeechRecognitionRequest,
]
