"""Pydantic schemas for tracked positions and alert configuration."""

from datetime import datetime
from pydantic import BaseModel, Field, field_validator, model_validator

from hedgebot.config import settings
from hedgebot.models.position import OptionKind
from hedgebot.schemas.hedge import HedgeSuggestion
from hedgebot.engine.alert_actions import ACK_ACTIONS


def _normalize_asset(value: str) -> str:
    asset = value.strip().upper()
    if asset not in settings.supported_assets:
        allowed = ", ".join(settings.supported_assets)
        raise ValueError(f"must be one of: {allowed}")
    return asset


class AlertConfig(BaseModel):
    alert_price_threshold: float = Field(default=0.0, ge=0)
    alert_percent_change: float = Field(default=0.0, ge=0)
    alert_time_window_minutes: float = Field(default=0.0, ge=0)


class PositionCreate(AlertConfig):
    asset: str
    expiry: str = Field(min_length=5, max_length=8)
    strike: float = Field(gt=0)
    option_kind: OptionKind = OptionKind.PUT
    reference_price: float | None = Field(default=None, ge=0)

    @field_validator("asset")
    @classmethod
    def _validate_asset(cls, value: str) -> str:
        return _normalize_asset(value)

    @field_validator("expiry")
    @classmethod
    def _upper_expiry(cls, value: str) -> str:
        return value.strip().upper()


class SaveSuggestionsRequest(BaseModel):
    asset: str
    quantity: float = Field(gt=0)
    suggestions: list[HedgeSuggestion] = Field(min_length=1)

    @field_validator("asset")
    @classmethod
    def _validate_asset(cls, value: str) -> str:
        return _normalize_asset(value)


class AlertConfigUpdate(BaseModel):
    alert_price_threshold: float | None = Field(default=None, ge=0)
    alert_percent_change: float | None = Field(default=None, ge=0)
    alert_time_window_minutes: float | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _require_one_field(self):
        if (
            self.alert_price_threshold is None
            and self.alert_percent_change is None
            and self.alert_time_window_minutes is None
        ):
            raise ValueError("at least one alert field is required")
        return self


class AcknowledgeRequest(BaseModel):
    action: str

    @field_validator("action")
    @classmethod
    def _validate_action(cls, value: str) -> str:
        if value not in ACK_ACTIONS:
            raise ValueError(f"must be one of: {', '.join(sorted(ACK_ACTIONS))}")
        return value


class PositionRead(BaseModel):
    id: str
    user_handle: str
    asset: str
    expiry: str
    strike: float
    option_kind: OptionKind
    instrument_name: str
    reference_price: float
    last_observed_price: float
    alert_price_threshold: float
    alert_percent_change: float
    alert_time_window_minutes: float
    alert_pending: bool
    created_at: datetime

    model_config = {"from_attributes": True}
