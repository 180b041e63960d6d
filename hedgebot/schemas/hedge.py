"""Pydantic schemas for hedge suggestion requests and results."""

from pydantic import BaseModel, Field, field_validator

from hedgebot.config import settings


class HedgeRequest(BaseModel):
    asset: str = Field(min_length=1, max_length=16)
    purchase_price: float = Field(gt=0)
    quantity: float = Field(gt=0)
    # Signed: negative protects against a drop, positive caps a rise
    allowed_loss_percent: float = Field(gt=-100, lt=1000)

    @field_validator("asset")
    @classmethod
    def _validate_asset(cls, value: str) -> str:
        asset = value.strip().upper()
        if asset not in settings.supported_assets:
            allowed = ", ".join(settings.supported_assets)
            raise ValueError(f"must be one of: {allowed}")
        return asset


class HedgeSuggestion(BaseModel):
    expiry: str
    chosen_strike: float
    estimated_cost: float  # USD for the whole quantity


class HedgeSuggestions(BaseModel):
    daily: list[HedgeSuggestion] = []
    weekly: list[HedgeSuggestion] = []
    monthly: list[HedgeSuggestion] = []

    def all(self) -> list[HedgeSuggestion]:
        return [*self.daily, *self.weekly, *self.monthly]

    def is_empty(self) -> bool:
        return not (self.daily or self.weekly or self.monthly)


class HedgeResponse(BaseModel):
    asset: str
    target_strike: float
    suggestions: HedgeSuggestions
