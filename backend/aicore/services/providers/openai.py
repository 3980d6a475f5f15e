"""
OpenAI adapter (chat completions, embeddings, images, speech, transcription).

Talks to the OpenAI REST API directly over httpx. Environment configuration
is handled by ``aicore.core.config`` (OPENAI_API_KEY, OPENAI_API_BASE).
"""
import base64
import json
import uuid
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List

import httpx

from aicore.core.errors import (
    AIError,
    ContentFilteredError,
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
    EmbeddingResult,
    GeneratedImage,
    ImageGenerationRequest,
    ImageGenerationResult,
    ProviderResult,
    SpeechRecognitionRequest,
    SpeechRecognitionResult,
    SpeechSynthesisRequest,
    SpeechSynthesisResult,
    StreamChunk,
    TextEmbeddingRequest,
    TextGenerationRequest,
    TextGenerationResult,
    Usage,
)
from aicore.services.catalog.registry import OPENAI
from aicore.services.providers.base import ProviderAdapter, StreamEvent

logger = get_logger(__name__)

# Reasoning models reject `temperature` and take `max_completion_tokens`
REASONING_MODEL_PREFIXES = ("o1", "o3")

HD_IMAGE_MODEL = "dall-e-3-hd"
IMAGE_API_MODEL = "dall-e-3"


def _generated_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:24]}"


def format_message(message: ConversationMessage) -> Dict[str, Any]:
    """Render a conversation message in chat-completions format."""
    if not message.parts:
        return {"role": message.role.value, "content": message.content}

    content: List[Dict[str, Any]] = []
    if message.content:
        content.append({"type": "text", "text": message.content})
    for part in message.parts:
        if part.type == "text":
            content.append({"type": "text", "text": part.text})
        else:
            content.append({
                "type": "image_url",
                "image_url": {"url": part.image_url, "detail": part.detail or "auto"},
            })
    return {"role": message.role.value, "content": content}


class OpenAIAdapter(ProviderAdapter):
    provider_id = OPENAI
    supported_capabilities = frozenset({
        Capability.TEXT_GENERATION,
        Capability.TEXT_EMBEDDING,
        Capability.IMAGE_GENERATION,
        Capability.SPEECH_SYNTHESIS,
        Capability.SPEECH_RECOGNITION,
    })

    def _default_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _handlers(self) -> Dict[Capability, Callable[[Any], Awaitable[ProviderResult]]]:
        return {
            Capability.TEXT_GENERATION: self._chat,
            Capability.TEXT_EMBEDDING: self._embed,
            Capability.IMAGE_GENERATION: self._generate_image,
            Capability.SPEECH_SYNTHESIS: self._synthesize_speech,
            Capability.SPEECH_RECOGNITION: self._transcribe,
        }

    def _map_status_error(self, response: httpx.Response, body: Dict[str, Any]) -> AIError:
        status = response.status_code
        error = body.get("error") if isinstance(body.get("error"), dict) else {}
        message = error.get("message") or f"OpenAI API error (HTTP {status})"
        error_code = str(error.get("code") or "")
        error_type = str(error.get("type") or "")
        details = {"provider": self.provider_id, "status": status, "type": error_type, "code": error_code}

        if status == 429:
            # Exhausted billing quota also arrives as 429 but will not clear on retry.
            return RateLimitedError(
                message,
                details=details,
                retryable=False if error_code == "insufficient_quota" else None,
                retry_after=self._retry_after(response),
            )
        if status == 400:
            if "content_policy" in error_code or "content_policy" in error_type or "content_policy" in message:
                return ContentFilteredError(message, details=details)
            return InvalidRequestError(message, details=details)
        if status == 404:
            return ModelUnavailableError(message, status_code=404, details=details, retryable=False)
        if status == 503:
            return ModelUnavailableError(message, details=details)
        if status in (408, 504):
            return RequestTimeoutError(message, status_code=status, details=details)
        return ProviderError(message, status_code=status, details=details)

    def _chat_payload(self, request: TextGenerationRequest, stream: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": request.model,
            "messages": [format_message(m) for m in request.messages],
        }
        if (request.model or "").startswith(REASONING_MODEL_PREFIXES):
            payload["max_completion_tokens"] = request.max_tokens
        else:
            payload["temperature"] = request.temperature
            payload["max_tokens"] = request.max_tokens
        if stream:
            payload["stream"] = True
            payload["stream_options"] = {"include_usage": True}
        return payload

    async def _chat(self, request: TextGenerationRequest) -> TextGenerationResult:
        data = await self._post_json("/chat/completions", self._chat_payload(request, stream=False))
        choices = data.get("choices") or []
        if not choices:
            raise ProviderError("OpenAI returned no choices", details={"provider": self.provider_id})
        choice = choices[0]
        usage = data.get("usage") or {}
        return TextGenerationResult(
            id=data.get("id") or _generated_id("chatcmpl"),
            model=data.get("model") or request.model,
            content=(choice.get("message") or {}).get("content") or "",
            finish_reason=choice.get("finish_reason"),
            usage=Usage(
                input_tokens=int(usage.get("prompt_tokens") or 0),
                output_tokens=int(usage.get("completion_tokens") or 0),
            ),
        )

    async def _open_stream(self, request: TextGenerationRequest) -> httpx.Response:
        return await self._send_stream("/chat/completions", self._chat_payload(request, stream=True))

    async def _stream_events(
        self,
        response: httpx.Response,
        request: TextGenerationRequest,
    ) -> AsyncIterator[StreamEvent]:
        usage = None
        async for line in response.aiter_lines():
            line = line.strip()
            if not line.startswith("data:"):
                continue
            data = line[len("data:"):].strip()
            if data == "[DONE]":
                break
            try:
                event = json.loads(data)
            except json.JSONDecodeError:
                logger.warning("openai_stream_invalid_event", provider=self.provider_id, data=data[:200])
                continue

            if isinstance(event.get("error"), dict):
                raise ProviderError(
                    event["error"].get("message") or "OpenAI stream error",
                    details={"provider": self.provider_id},
                )

            if event.get("usage"):
                usage = Usage(
                    input_tokens=int(event["usage"].get("prompt_tokens") or 0),
                    output_tokens=int(event["usage"].get("completion_tokens") or 0),
                )

            for choice in event.get("choices") or []:
                delta = (choice.get("delta") or {}).get("content") or ""
                finish_reason = choice.get("finish_reason")
                if delta or finish_reason:
                    yield StreamChunk(id=event.get("id") or "", delta=delta, finish_reason=finish_reason)

        if usage is not None:
            yield usage

    async def _embed(self, request: TextEmbeddingRequest) -> EmbeddingResult:
        payload: Dict[str, Any] = {"model": request.model, "input": request.input}
        if request.dimensions:
            payload["dimensions"] = request.dimensions
        data = await self._post_json("/embeddings", payload)
        rows = sorted(data.get("data") or [], key=lambda row: row.get("index", 0))
        usage = data.get("usage") or {}
        return EmbeddingResult(
            id=_generated_id("emb"),
            model=data.get("model") or request.model,
            embeddings=[row.get("embedding") or [] for row in rows],
            usage=Usage(input_tokens=int(usage.get("prompt_tokens") or 0)),
        )

    async def _generate_image(self, request: ImageGenerationRequest) -> ImageGenerationResult:
        quality = "hd" if request.model == HD_IMAGE_MODEL else request.quality
        images: List[GeneratedImage] = []
        # dall-e-3 only accepts n=1 per call
        for _ in range(request.n):
            data = await self._post_json("/images/generations", {
                "model": IMAGE_API_MODEL,
                "prompt": request.prompt,
                "n": 1,
                "size": request.size,
                "quality": quality,
                "style": request.style,
            })
            for item in data.get("data") or []:
                images.append(GeneratedImage(
                    url=item.get("url"),
                    b64_json=item.get("b64_json"),
                    revised_prompt=item.get("revised_prompt"),
                ))
        return ImageGenerationResult(
            id=_generated_id("img"),
            model=request.model,
            images=images,
            usage=Usage(image_count=len(images)),
        )

    async def _synthesize_speech(self, request: SpeechSynthesisRequest) -> SpeechSynthesisResult:
        response = await self.client.post(f"{self.api_base}/audio/speech", json={
            "model": request.model,
            "input": request.text,
            "voice": request.voice,
            "response_format": request.format,
            "speed": request.speed,
        })
        self._raise_for_status(response)
        return SpeechSynthesisResult(
            id=_generated_id("tts"),
            model=request.model,
            audio_base64=base64.b64encode(response.content).decode("ascii"),
            format=request.format,
            usage=Usage(character_count=len(request.text)),
        )

    async def _transcribe(self, request: SpeechRecognitionRequest) -> SpeechRecognitionResult:
        form: Dict[str, str] = {"model": request.model, "response_format": "verbose_json"}
        if request.language:
            form["language"] = request.language
        if request.prompt:
            form["prompt"] = request.prompt
        response = await self.client.post(
            f"{self.api_base}/audio/transcriptions",
            data=form,
            files={"file": (request.filename, request.audio)},
        )
        self._raise_for_status(response)
        data = response.json()
        duration = float(data.get("duration") or 0.0)
        return SpeechRecognitionResult(
            id=_generated_id("stt"),
            model=request.model,
            text=data.get("text") or "",
            language=data.get("language"),
            duration_seconds=duration,
            usage=Usage(audio_seconds=duration),
        )
