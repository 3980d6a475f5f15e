"""Conversation messages sent to text-generation models."""
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class MessagePart(BaseModel):
    """A multimodal content part: plain text or an image reference (URL or data URL)."""

    type: Literal["text", "image_url"]
    text: Optional[str] = None
    image_url: Optional[str] = None
    detail: Optional[Literal["auto", "low", "high"]] = None

    @model_validator(mode="after")
    def check_payload(self) -> "MessagePart":
        if self.type == "text" and self.text is None:
            raise ValueError("text part requires 'text'")
        if self.type == "image_url" and not self.image_url:
            raise ValueError("image_url part requires 'image_url'")
        return self


class ConversationMessage(BaseModel):
    role: MessageRole
    content: str = ""
    parts: List[MessagePart] = Field(default_factory=list)

    @property
    def has_images(self) -> bool:
        return any(part.type == "image_url" for part in self.parts)

    @property
    def text(self) -> str:
        """Message text including any text parts."""
        extra = [part.text for part in self.parts if part.type == "text" and part.text]
        if not extra:
            return self.content
        return "\n".join([self.content, *extra]) if self.content else "\n".join(extra)


def last_user_message(messages: List[ConversationMessage]) -> Optional[ConversationMessage]:
    for message in reversed(messages):
        if message.role == MessageRole.USER:
            return message
    return None
