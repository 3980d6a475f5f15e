"""
Semantic response cache for text generation.

Key structure:
- Shared (usable across unrelated callers): {prefix}:shared:{model}:{hash}
- Conversation-scoped (isolated):          {prefix}:conv:{conversation_id}:{model}:{hash}
  (the conversation id is percent-encoded)

The hash covers the last 5 messages, text and image parts included, after
normalization (lowercase, trimmed, trailing punctuation stripped), so "Hello",
"hello." and "HELLO!" share an entry. Image URLs are hashed verbatim. Requests whose last message is very short or long, time sensitive, or
about the caller's own code are never cached.

The cache is advisory: store failures are logged and reported as a miss, and
never reach the caller.
"""
import hashlib
import re
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

from aicore.core.cache import CacheStore
from aicore.core.logging import get_logger
from aicore.core.metrics import record_cache_error, record_cache_hit, record_cache_miss
from aicore.models import ConversationMessage, MessagePart

logger = get_logger(__name__)

DEFAULT_PREFIX = "aicore:ai:cache"
DEFAULT_TTL_SECONDS = 3600
CONTEXT_WINDOW = 5
HASH_LENGTH = 16

MIN_CACHEABLE_LENGTH = 3
MAX_CACHEABLE_LENGTH = 500

TRAILING_PUNCTUATION = re.compile(r"[.,!?]+$")

# Matched at a word start so "currently" counts but "know" does not
TIME_SENSITIVE_PATTERN = re.compile(
    r"\b(now|today|current|latest|время|сегодня|hozir|bugun)",
    re.IGNORECASE,
)

CALLER_CODE_PHRASES = ("my code", "this code")


def normalize_content(content: str) -> str:
    return TRAILING_PUNCTUATION.sub("", content.lower().strip())


def _normalize_part(part: MessagePart) -> str:
    if part.type == "image_url":
        # URLs and data URLs are case sensitive
        return f"image:{part.image_url}"
    return f"text:{normalize_content(part.text or '')}"


def normalize_message(message: ConversationMessage) -> str:
    normalized = f"{message.role.value}:{normalize_content(message.content)}"
    if message.parts:
        normalized += "".join(f"+{_normalize_part(part)}" for part in message.parts)
    return normalized


def normalize_messages(messages: Sequence[ConversationMessage]) -> str:
    recent = list(messages)[-CONTEXT_WINDOW:]
    return "|".join(normalize_message(m) for m in recent)


def key_safe_conversation_id(conversation_id: str) -> str:
    """Percent-encode an id so it holds no ``:`` separators or SCAN glob characters."""
    return quote(conversation_id, safe="")


def hash_prompt(normalized: str) -> str:
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def is_cacheable(messages: Sequence[ConversationMessage]) -> bool:
    """Whether a response for this conversation may be cached or served from cache."""
    if not messages:
        return False

    stripped = messages[-1].content.strip()
    if len(stripped) < MIN_CACHEABLE_LENGTH or len(stripped) > MAX_CACHEABLE_LENGTH:
        return False

    content = stripped.lower()

    if TIME_SENSITIVE_PATTERN.search(content):
        return False

    if any(phrase in content for phrase in CALLER_CODE_PHRASES):
        return False

    return True


class SemanticCache:
    def __init__(
        self,
        store: CacheStore,
        enabled: bool = True,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        prefix: str = DEFAULT_PREFIX,
    ):
        self.store = store
        self.enabled = enabled
        self.default_ttl_seconds = default_ttl_seconds
        self.prefix = prefix

    def build_key(
        self,
        model_id: str,
        messages: Sequence[ConversationMessage],
        conversation_id: Optional[str] = None,
    ) -> str:
        digest = hash_prompt(normalize_messages(messages))
        if conversation_id:
            return f"{self.prefix}:conv:{key_safe_conversation_id(conversation_id)}:{model_id}:{digest}"
        return f"{self.prefix}:shared:{model_id}:{digest}"

    @staticmethod
    def _scope(conversation_id: Optional[str]) -> str:
        return "conversation" if conversation_id else "shared"

    async def get(
        self,
        model_id: str,
        messages: Sequence[ConversationMessage],
        conversation_id: Optional[str] = None,
    ) -> Optional[str]:
        if not self.enabled or not is_cacheable(messages):
            return None

        key = self.build_key(model_id, messages, conversation_id)
        scope = self._scope(conversation_id)
        try:
            cached = await self.store.get(key)
        except Exception as e:
            record_cache_error("get")
            logger.warning(
                "ai_cache_get_failed",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        if cached is None:
            record_cache_miss(scope)
            logger.debug("ai_cache_miss", key=key, model=model_id, scope=scope)
            return None

        record_cache_hit(scope)
        logger.info("ai_cache_hit", key=key, model=model_id, scope=scope)
        return cached

    async def set(
        self,
        model_id: str,
        messages: Sequence[ConversationMessage],
        response: str,
        ttl_seconds: Optional[int] = None,
        conversation_id: Optional[str] = None,
    ) -> bool:
        if not self.enabled or not response or not is_cacheable(messages):
            return False

        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            return False

        key = self.build_key(model_id, messages, conversation_id)
        try:
            stored = await self.store.set(key, response, ttl)
        except Exception as e:
            record_cache_error("set")
            logger.warning(
                "ai_cache_set_failed",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        if stored:
            logger.debug("ai_cache_stored", key=key, model=model_id, ttl=ttl)
        return bool(stored)

    async def _delete_matching(self, patterns: List[str], operation: str) -> int:
        deleted = 0
        try:
            for pattern in patterns:
                keys = await self.store.keys_matching(pattern)
                if keys:
                    deleted += await self.store.delete(keys)
        except Exception as e:
            record_cache_error(operation)
            logger.warning(
                "ai_cache_clear_failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
        return deleted

    async def clear_model(self, model_id: str) -> int:
        """Drop every entry (shared and conversation-scoped) produced for ``model_id``."""
        deleted = await self._delete_matching(
            [
                f"{self.prefix}:shared:{model_id}:*",
                f"{self.prefix}:conv:*:{model_id}:*",
            ],
            "clear_model",
        )
        logger.info("ai_cache_model_cleared", model=model_id, deleted=deleted)
        return deleted

    async def clear_conversation(self, conversation_id: str) -> int:
        deleted = await self._delete_matching(
            [f"{self.prefix}:conv:{key_safe_conversation_id(conversation_id)}:*"],
            "clear_conversation",
        )
        logger.info("ai_cache_conversation_cleared", conversation_id=conversation_id, deleted=deleted)
        return deleted

    async def stats(self) -> Dict[str, Any]:
        if not self.enabled:
            return {"enabled": False, "total_keys": 0}
        try:
            keys = await self.store.keys_matching(f"{self.prefix}:*")
        except Exception as e:
            record_cache_error("stats")
            logger.warning(
                "ai_cache_stats_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return {"enabled": True, "total_keys": 0}
        return {"enabled": True, "total_keys": len(keys)}
