"""
Error taxonomy shared by every layer of the orchestration core.

Upstream failures are normalized by the provider adapters into one of these
classes; credit violations are raised by the metering layer. Every error
carries an HTTP-like ``status_code`` and structured ``details`` so callers can
render upgrade prompts or retry hints without parsing messages.
"""
from enum import Enum
from typing import Any, Dict, List, Optional


class AIErrorCode(str, Enum):
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    PLAN_LIMIT_EXCEEDED = "PLAN_LIMIT_EXCEEDED"
    WALLET_NOT_FOUND = "WALLET_NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    MODEL_UNAVAILABLE = "MODEL_UNAVAILABLE"
    CONTENT_FILTERED = "CONTENT_FILTERED"
    INVALID_REQUEST = "INVALID_REQUEST"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    TIMEOUT = "TIMEOUT"


class AIError(Exception):
    """
    Base class for all orchestration errors.

    Attributes:
        message: Human readable message
        code: Stable machine readable code
        status_code: HTTP-like status used for retry classification and rendering
        details: Structured context (limits, alternatives, provider info)
        retryable: Explicit retry override; None defers to the retry classifier
        retry_after: Seconds the upstream asked us to wait, if known
    """

    code: AIErrorCode = AIErrorCode.PROVIDER_ERROR
    default_status_code: int = 500

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        retryable: Optional[bool] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code if status_code is not None else self.default_status_code
        self.details: Dict[str, Any] = details or {}
        self.retryable = retryable
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.code.value,
            "message": self.message,
            "status_code": self.status_code,
        }
        if self.details:
            payload["details"] = self.details
        if self.retry_after is not None:
            payload["retry_after"] = self.retry_after
        return payload

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value!r}, status_code={self.status_code}, message={self.message!r})"


class InsufficientCreditsError(AIError):
    code = AIErrorCode.INSUFFICIENT_CREDITS
    default_status_code = 402

    def __init__(self, required: float, available: float, message: Optional[str] = None):
        super().__init__(
            message or f"Insufficient credits. Required: {required:.4f}, available: {available:.4f}",
            details={"required": required, "available": available},
            retryable=False,
        )


class PlanLimitExceededError(AIError):
    code = AIErrorCode.PLAN_LIMIT_EXCEEDED
    default_status_code = 402

    def __init__(self, limit: Optional[float], used: float, required: float, message: Optional[str] = None):
        super().__init__(
            message or "Monthly AI credit limit reached for the current plan",
            details={"limit": limit, "used": used, "required": required},
            retryable=False,
        )


class WalletNotFoundError(AIError):
    code = AIErrorCode.WALLET_NOT_FOUND
    default_status_code = 404

    def __init__(self, wallet_type: str, owner_id: str):
        super().__init__(
            f"No {wallet_type} credit wallet found for {owner_id}",
            details={"wallet_type": wallet_type, "owner_id": owner_id},
            retryable=False,
        )


class RateLimitedError(AIError):
    code = AIErrorCode.RATE_LIMITED
    default_status_code = 429


class ModelUnavailableError(AIError):
    code = AIErrorCode.MODEL_UNAVAILABLE
    default_status_code = 503

    @classmethod
    def with_alternatives(cls, model_id: str, alternatives: List[str]) -> "ModelUnavailableError":
        if alternatives:
            message = f"Model '{model_id}' is not available. Available models: {', '.join(alternatives)}"
        else:
            message = f"Model '{model_id}' is not available and no AI models are currently available"
        return cls(
            message,
            details={"model": model_id, "available_models": alternatives},
            retryable=False,
        )


class ProviderCircuitOpenError(ModelUnavailableError):
    """Raised when a provider's circuit breaker rejects the call outright."""

    def __init__(self, provider_id: str):
        super().__init__(
            f"Provider '{provider_id}' is temporarily unavailable",
            details={"provider": provider_id},
            retryable=False,
        )


class ContentFilteredError(AIError):
    code = AIErrorCode.CONTENT_FILTERED
    default_status_code = 400


class InvalidRequestError(AIError):
    code = AIErrorCode.INVALID_REQUEST
    default_status_code = 400


class ProviderError(AIError):
    code = AIErrorCode.PROVIDER_ERROR
    default_status_code = 502


class RequestTimeoutError(AIError):
    code = AIErrorCode.TIMEOUT
    default_status_code = 408
