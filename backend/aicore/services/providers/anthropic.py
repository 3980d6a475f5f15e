"""
Anthropic adapter (Messages API, blocking and streaming).

System prompts are lifted out of the conversation into the top-level
``system`` field, image parts become ``image`` blocks (URL or base64), and
friendly model aliases resolve to dated model ids.
"""
import json
import re
import uuid
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from aicore.core.errors import (
    AIError,
    InvalidRequestError,
    ModelUnavailableError,
    ProviderError,
    RateLimitedError,
    RequestTimeoutError,
)
from aicore.core.logging import get_logger
from aicore.models import (
    Capability,
    ConversationMessage,
    MessageRole,
    ProviderResult,
    StreamChunk,
    TextGenerationRequest,
    TextGenerationResult,
    Usage,
)
from aicore.services.catalog.registry import ANTHROPIC
from aicore.services.providers.base import ProviderAdapter, StreamEvent

logger = get_logger(__name__)

MODEL_ALIASES: Dict[str, str] = {
    "claude-4-opus": "claude-opus-4-20250514",
    "claude-4-sonnet": "claude-sonnet-4-20250514",
    "claude-3.5-sonnet": "claude-3-5-sonnet-20241022",
    "claude-3.5-haiku": "claude-3-5-haiku-20241022",
    "claude-3-haiku": "claude-3-haiku-20240307",
}

# Anthropic signals overload with a non-standard status
OVERLOADED_STATUS = 529

DATA_URL_PATTERN = re.compile(r"^data:(?P<media_type>[\w/+.-]+);base64,(?P<data>.+)$", re.DOTALL)


def resolve_model_alias(model: str) -> str:
    return MODEL_ALIASES.get(model, model)


def _image_block(url: str) -> Dict[str, Any]:
    match = DATA_URL_PATTERN.match(url)
    if match:
        return {
            "type": "image",
            "source": {"type": "base64", "media_type": match.group("media_type"), "data": match.group("data")},
        }
    return {"type": "image", "source": {"type": "url", "url": url}}


def split_system_prompt(messages: List[ConversationMessage]) -> Tuple[Optional[str], List[Dict[str, Any]]]:
    """Return (system prompt, Messages API conversation)."""
    system_parts = [m.text for m in messages if m.role == MessageRole.SYSTEM and m.text]
    conversation: List[Dict[str, Any]] = []
    for message in messages:
        if message.role == MessageRole.SYSTEM:
            continue
        if not message.parts:
            conversation.append({"role": message.role.value, "content": message.content})
            continue
        blocks: List[Dict[str, Any]] = []
        if message.content:
            blocks.append({"type": "text", "text": message.content})
        for part in message.parts:
            if part.type == "text":
                blocks.append({"type": "text", "text": part.text})
            else:
                blocks.append(_image_block(part.image_url))
        conversation.append({"role": message.role.value, "content": blocks})
    system = "\n\n".join(system_parts) if system_parts else None
    return system, conversation


class AnthropicAdapter(ProviderAdapter):
    provider_id = ANTHROPIC
    supported_capabilities = frozenset({Capability.TEXT_GENERATION})

    def __init__(self, *args: Any, api_version: str = "2023-06-01", **kwargs: Any):
        self.api_version = api_version
        super().__init__(*args, **kwargs)

    def _default_headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
        }

    def _handlers(self) -> Dict[Capability, Callable[[Any], Awaitable[ProviderResult]]]:
        return {Capability.TEXT_GENERATION: self._messages}

    def _map_error(self, status: int, error_type: str, message: str, retry_after: Optional[float] = None) -> AIError:
        details = {"provider": self.provider_id, "status": status, "type": error_type}
        if status == 429 or error_type == "rate_limit_error":
            return RateLimitedError(message, details=details, retry_after=retry_after)
        if status == OVERLOADED_STATUS or error_type == "overloaded_error":
            return ModelUnavailableError(message, details=details)
        if status == 400:
            return InvalidRequestError(message, details=details)
        if status == 404:
            return ModelUnavailableError(message, status_code=404, details=details, retryable=False)
        if status in (408, 504):
            return RequestTimeoutError(message, status_code=status, details=details)
        return ProviderError(message, status_code=status, details=details)

    def _map_status_error(self, response: httpx.Response, body: Dict[str, Any]) -> AIError:
        error = body.get("error") if isinstance(body.get("error"), dict) else {}
        return self._map_error(
            response.status_code,
            str(error.get("type") or ""),
            error.get("message") or f"Anthropic API error (HTTP {response.status_code})",
            retry_after=self._retry_after(response),
        )

    def _payload(self, request: TextGenerationRequest, stream: bool) -> Dict[str, Any]:
        system, conversation = split_system_prompt(request.messages)
        payload: Dict[str, Any] = {
            "model": resolve_model_alias(request.model or ""),
            "max_tokens": request.max_tokens,
            "temperature": min(request.temperature, 1.0),
            "messages": conversation,
        }
        if system:
            payload["system"] = system
        if stream:
            payload["stream"] = True
        return payload

    async def _messages(self, request: TextGenerationRequest) -> TextGenerationResult:
        data = await self._post_json("/messages", self._payload(request, stream=False))
        text = "".join(
            block.get("text") or ""
            for block in data.get("content") or []
            if block.get("type") == "text"
        )
        usage = data.get("usage") or {}
        return TextGenerationResult(
            id=data.get("id") or f"msg-{uuid.uuid4().hex[:24]}",
            model=data.get("model") or request.model,
            content=text,
            finish_reason=data.get("stop_reason"),
            usage=Usage(
                input_tokens=int(usage.get("input_tokens") or 0),
                output_tokens=int(usage.get("output_tokens") or 0),
            ),
        )

    async def _open_stream(self, request: TextGenerationRequest) -> httpx.Response:
        return await self._send_stream("/messages", self._payload(request, stream=True))

    async def _stream_events(
        self,
        response: httpx.Response,
        request: TextGenerationRequest,
    ) -> AsyncIterator[StreamEvent]:
        message_id = ""
        input_tokens = 0
        output_tokens = 0
        completed = False

        async for line in response.aiter_lines():
            line = line.strip()
            if not line.startswith("data:"):
                continue
            try:
                event = json.loads(line[len("data:"):].strip())
            except json.JSONDecodeError:
                logger.warning("anthropic_stream_invalid_event", provider=self.provider_id, data=line[:200])
                continue

            event_type = event.get("type")
            if event_type == "message_start":
                message = event.get("message") or {}
                message_id = message.get("id") or ""
                usage = message.get("usage") or {}
                input_tokens = int(usage.get("input_tokens") or 0)
                output_tokens = int(usage.get("output_tokens") or 0)
            elif event_type == "content_block_delta":
                delta = event.get("delta") or {}
                if delta.get("type") == "text_delta" and delta.get("text"):
                    yield StreamChunk(id=message_id, delta=delta["text"])
            elif event_type == "message_delta":
                usage = event.get("usage") or {}
                if usage.get("output_tokens") is not None:
                    output_tokens = int(usage["output_tokens"])
                stop_reason = (event.get("delta") or {}).get("stop_reason")
                if stop_reason:
                    yield StreamChunk(id=message_id, finish_reason=stop_reason)
            elif event_type == "message_stop":
                completed = True
                break
            elif event_type == "error":
                error = event.get("error") or {}
                raise self._map_error(
                    OVERLOADED_STATUS if error.get("type") == "overloaded_error" else 500,
                    str(error.get("type") or ""),
                    error.get("message") or "Anthropic stream error",
                )

        if not completed:
            logger.warning("anthropic_stream_ended_without_stop", provider=self.provider_id, message_id=message_id)
        yield Usage(input_tokens=input_tokens, output_tokens=output_tokens)
