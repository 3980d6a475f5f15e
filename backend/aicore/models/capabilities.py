"""Capability tags: the task type an AI request performs."""
from enum import Enum
from typing import FrozenSet


class Capability(str, Enum):
    TEXT_GENERATION = "text-generation"
    TEXT_EMBEDDING = "text-embedding"
    IMAGE_GENERATION = "image-generation"
    IMAGE_UNDERSTANDING = "image-understanding"
    SPEECH_SYNTHESIS = "speech-synthesis"
    SPEECH_RECOGNITION = "speech-recognition"


# Capabilities charged per input/output token
TOKEN_PRICED_CAPABILITIES: FrozenSet[Capability] = frozenset({
    Capability.TEXT_GENERATION,
    Capability.TEXT_EMBEDDING,
    Capability.IMAGE_UNDERSTANDING,
})

# Capabilities whose responses may be served from the semantic cache
CACHEABLE_CAPABILITIES: FrozenSet[Capability] = frozenset({Capability.TEXT_GENERATION})
