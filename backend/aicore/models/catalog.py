"""
Model catalog types.

``ModelId`` is an opaque identifier: any string may name a model (providers
add models faster than releases ship), so it is not a closed enum. A raw
string only becomes a ``ModelId`` after ``ModelCatalog.resolve_model_id`` has
checked it against the live catalog.
"""
from typing import NewType, Optional

from pydantic import BaseModel, ConfigDict, Field

from aicore.models.capabilities import Capability

ModelId = NewType("ModelId", str)


class ModelPricing(BaseModel):
    """Per-unit prices in credits; only the fields relevant to the capability are set."""

    model_config = ConfigDict(frozen=True)

    per_input_token: Optional[float] = Field(None, ge=0)
    per_output_token: Optional[float] = Field(None, ge=0)
    per_image: Optional[float] = Field(None, ge=0)
    per_character: Optional[float] = Field(None, ge=0)
    per_minute: Optional[float] = Field(None, ge=0)

    @property
    def unit_price(self) -> float:
        """Single comparable figure used to order models of the same tier."""
        return sum(
            value or 0.0
            for value in (
                self.per_input_token,
                self.per_output_token,
                self.per_image,
                self.per_character,
                self.per_minute,
            )
        )


class ModelDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    provider_id: str
    capability: Capability
    pricing: ModelPricing = Field(default_factory=ModelPricing)
    tier: int = Field(1, ge=1, description="1 = cheapest ... N = most capable")
    deprecated: bool = False
    max_tokens: Optional[int] = None
    supports_vision: bool = False
    supports_streaming: bool = False
