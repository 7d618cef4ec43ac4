# trainhub/schemas/trainers.py

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PriceMode(str, Enum):
    ONE_TIME = "one-time"
    RECURRING = "recurring"

    @property
    def provider_mode(self) -> str:
        """Mode name understood by the checkout provider."""
        return "payment" if self is PriceMode.ONE_TIME else "subscription"


class PriceDescriptor(BaseModel):
    price_key: str
    display_price: float
    mode: PriceMode = PriceMode.ONE_TIME


class Trainer(BaseModel):
    id: str
    name: str
    description: str = ""
    avatar: Optional[str] = None
    expertise: frozenset[str] = frozenset()
    rating: float = Field(0.0, ge=0, le=5)
    total_sessions: int = 0
    price: PriceDescriptor

    model_config = {"frozen": True}
