"""
Smart model routing.

Downgrade-only: a request may be moved to a cheaper model of the same
provider when the conversation is simple enough, never to a more capable
(more expensive) tier than the caller asked for. Unavailable models fall back
to the cheapest available model for the capability. Conversations carrying
images only ever land on vision-capable models.
"""
from typing import Dict, List, Optional, Sequence

from aicore.core.errors import ModelUnavailableError
from aicore.core.logging import get_logger
from aicore.core.metrics import record_routing_decision
from aicore.models import Capability, ConversationMessage, ModelDescriptor, RoutingDecision
from aicore.services.catalog import ModelCatalog
from aicore.services.routing.complexity import TARGET_TIER, QueryComplexity, assess_complexity

logger = get_logger(__name__)


def _token_cost(model: ModelDescriptor) -> float:
    pricing = model.pricing
    return (pricing.per_input_token or 0.0) + (pricing.per_output_token or 0.0)


class SmartRouter:
    def __init__(self, catalog: ModelCatalog):
        self.catalog = catalog

    def _candidates(self, requested: ModelDescriptor, needs_vision: bool = False) -> List[ModelDescriptor]:
        return [
            model
            for model in self.catalog.list_models(requested.capability)
            if model.provider_id == requested.provider_id
            and not model.deprecated
            and (model.supports_vision or not needs_vision)
        ]

    def model_for_tier(
        self,
        requested: ModelDescriptor,
        target_tier: int,
        needs_vision: bool = False,
    ) -> Optional[ModelDescriptor]:
        """Cheapest same-provider model whose tier is at least ``target_tier``."""
        for model in self._candidates(requested, needs_vision):
            if model.tier >= target_tier:
                return model
        return None

    def _fallback(self, capability: Capability, needs_vision: bool) -> Optional[ModelDescriptor]:
        if not needs_vision:
            return self.catalog.cheapest(capability)
        for model in self.catalog.list_models(capability):
            if model.supports_vision and not model.deprecated:
                return model
        return None

    def decide(
        self,
        requested_model: str,
        messages: Sequence[ConversationMessage],
        allow_downgrade: bool = True,
        capability: Capability = Capability.TEXT_GENERATION,
    ) -> RoutingDecision:
        assessment = assess_complexity(messages)
        # Image parts anywhere in the conversation are resent to the routed model
        needs_vision = any(message.has_images for message in messages)
        complexity = assessment.complexity

        if not self.catalog.is_available(requested_model):
            fallback = self._fallback(capability, needs_vision)
            if fallback is None:
                raise ModelUnavailableError(
                    "No AI models are currently available",
                    details={"model": requested_model, "capability": capability.value, "available_models": []},
                    retryable=False,
                )
            decision = RoutingDecision(
                model_id=fallback.id,
                original_model=requested_model,
                was_routed=True,
                complexity=complexity.value,
                reason=f"Model '{requested_model}' unavailable, using fallback",
            )
            return self._record(decision, assessment.factors)

        if not allow_downgrade:
            decision = RoutingDecision(
                model_id=requested_model,
                original_model=requested_model,
                was_routed=False,
                complexity=complexity.value,
                reason="Smart routing disabled",
            )
            return self._record(decision, assessment.factors)

        requested = self.catalog.get(requested_model)
        target_tier = TARGET_TIER[complexity]
        recommended = self.model_for_tier(requested, target_tier, needs_vision)

        if recommended is None:
            decision = RoutingDecision(
                model_id=requested_model,
                original_model=requested_model,
                was_routed=False,
                complexity=complexity.value,
                reason=f"No tier {target_tier} model available",
            )
            return self._record(decision, assessment.factors)

        if (
            recommended.tier <= requested.tier
            and recommended.id != requested.id
            and _token_cost(recommended) <= _token_cost(requested)
        ):
            requested_cost = _token_cost(requested)
            routed_cost = _token_cost(recommended)
            savings = round((requested_cost - routed_cost) / requested_cost * 100) if requested_cost > 0 else 0
            decision = RoutingDecision(
                model_id=recommended.id,
                original_model=requested_model,
                was_routed=True,
                complexity=complexity.value,
                reason=f"Query classified as {complexity.value}, using cheaper model",
                estimated_savings_percent=savings if savings > 0 else None,
            )
            return self._record(decision, assessment.factors)

        decision = RoutingDecision(
            model_id=requested_model,
            original_model=requested_model,
            was_routed=False,
            complexity=complexity.value,
            reason=(
                "Complex query, using requested model"
                if complexity == QueryComplexity.COMPLEX
                else "Requested model is already optimal for this complexity"
            ),
        )
        return self._record(decision, assessment.factors)

    def route(
        self,
        requested_model: str,
        messages: Sequence[ConversationMessage],
        allow_downgrade: bool = True,
        capability: Capability = Capability.TEXT_GENERATION,
    ) -> str:
        return self.decide(requested_model, messages, allow_downgrade, capability).model_id

    def estimate_savings(
        self,
        original_model: str,
        routed_model: str,
        input_tokens: int,
        output_tokens: int,
    ) -> Dict[str, float]:
        """Credits saved by serving ``input_tokens``/``output_tokens`` on ``routed_model``."""
        original = self.catalog.get(original_model)
        routed = self.catalog.get(routed_model)
        if original is None or routed is None:
            return {"original_cost": 0.0, "routed_cost": 0.0, "savings": 0.0, "savings_percent": 0.0}

        def cost(model: ModelDescriptor) -> float:
            return (
                (model.pricing.per_input_token or 0.0) * input_tokens
                + (model.pricing.per_output_token or 0.0) * output_tokens
            )

        original_cost = cost(original)
        routed_cost = cost(routed)
        savings = original_cost - routed_cost
        return {
            "original_cost": original_cost,
            "routed_cost": routed_cost,
            "savings": savings,
            "savings_percent": (savings / original_cost * 100) if original_cost > 0 else 0.0,
        }

    @staticmethod
    def _record(decision: RoutingDecision, factors: List[str]) -> RoutingDecision:
        record_routing_decision(decision.complexity, decision.was_routed)
        logger.info(
            "model_routing_decision",
            requested_model=decision.original_model,
            model=decision.model_id,
            routed=decision.was_routed,
            complexity=decision.complexity,
            factors=factors,
            reason=decision.reason,
        )
        return decision
