"""
Model catalog: registry of provider models filtered by provider health.

Only models of providers the ``ProviderHealthStore`` reports healthy are
visible. The model list itself can be swapped atomically by an external
discovery process; readers always see either the old or the new list.
"""
from threading import Lock
from typing import Dict, List, Optional, Sequence

from aicore.core.errors import ModelUnavailableError
from aicore.core.logging import get_logger
from aicore.models import Capability, ModelDescriptor, ModelId
from aicore.services.catalog.health import ProviderHealthStore
from aicore.services.catalog.registry import DEFAULT_MODELS

logger = get_logger(__name__)


def _price_order(model: ModelDescriptor):
    return (model.tier, model.pricing.unit_price, model.id)


class ModelCatalog:
    def __init__(
        self,
        health_store: ProviderHealthStore,
        models: Optional[Sequence[ModelDescriptor]] = None,
    ):
        self.health_store = health_store
        self._lock = Lock()
        self._models: Dict[str, ModelDescriptor] = {}
        self.replace_models(DEFAULT_MODELS if models is None else models)

    def replace_models(self, models: Sequence[ModelDescriptor]) -> None:
        """Atomically replace the catalog contents (used by model discovery)."""
        indexed = {model.id: model for model in models}
        with self._lock:
            self._models = indexed
        logger.info("model_catalog_replaced", models=len(indexed))

    def _all(self) -> List[ModelDescriptor]:
        with self._lock:
            return list(self._models.values())

    def get(self, model_id: str) -> Optional[ModelDescriptor]:
        """Descriptor for ``model_id`` regardless of provider health."""
        with self._lock:
            return self._models.get(model_id)

    def providers(self) -> List[str]:
        return sorted({model.provider_id for model in self._all()})

    def list_models(self, capability: Optional[Capability] = None) -> List[ModelDescriptor]:
        healthy = set(self.health_store.healthy_providers())
        models = [
            model
            for model in self._all()
            if model.provider_id in healthy and (capability is None or model.capability == capability)
        ]
        return sorted(models, key=_price_order)

    def is_available(self, model_id: str) -> bool:
        model = self.get(model_id)
        return model is not None and self.health_store.is_healthy(model.provider_id)

    def cheapest(self, capability: Capability) -> Optional[ModelDescriptor]:
        candidates = [m for m in self.list_models(capability) if not m.deprecated]
        return candidates[0] if candidates else None

    def default_model(self, capability: Capability) -> Optional[ModelDescriptor]:
        return self.cheapest(capability)

    def available_ids(self, capability: Optional[Capability] = None) -> List[str]:
        return [model.id for model in self.list_models(capability)]

    def resolve_model_id(self, raw_model_id: Optional[str], capability: Capability) -> ModelId:
        """
        Validate a caller-supplied model id against the live catalog.

        ``None`` selects the capability default. Unknown, unhealthy or
        wrong-capability models raise ``ModelUnavailableError`` listing the
        alternatives that are currently available.
        """
        alternatives = self.available_ids(capability)

        if raw_model_id is None:
            default = self.default_model(capability)
            if default is None:
                raise ModelUnavailableError(
                    f"No AI models are currently available for {capability.value}",
                    details={"capability": capability.value, "available_models": []},
                    retryable=False,
                )
            return ModelId(default.id)

        model = self.get(raw_model_id)
        if model is None or model.capability != capability or not self.is_available(raw_model_id):
            logger.warning(
                "model_unavailable",
                model=raw_model_id,
                capability=capability.value,
                alternatives=alternatives,
            )
            raise ModelUnavailableError.with_alternatives(raw_model_id, alternatives)
        return ModelId(model.id)
