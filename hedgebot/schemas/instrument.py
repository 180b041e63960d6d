"""Pydantic schemas for Deribit public API responses.

Only the fields the hedge engine and monitor read are declared; anything else
in the payload is ignored. A missing or mistyped declared field fails
validation instead of leaking ``None`` into price arithmetic.
"""

from typing import Literal

from pydantic import BaseModel, Field


class DeribitInstrument(BaseModel):
    """One entry of ``public/get_instruments``."""

    instrument_name: str
    expiration_timestamp: int  # ms since epoch
    strike: float = Field(gt=0)
    option_type: Literal["call", "put"]
    is_active: bool = True

    model_config = {"extra": "ignore"}


class DeribitTicker(BaseModel):
    """``public/ticker`` result. Prices may be null when the book is empty."""

    instrument_name: str
    last_price: float | None = None
    best_ask_price: float | None = None
    mark_price: float | None = None
    index_price: float | None = None

    model_config = {"extra": "ignore"}


class DeribitErrorBody(BaseModel):
    code: int
    message: str


class InstrumentsResponse(BaseModel):
    result: list[DeribitInstrument]


class TickerResponse(BaseModel):
    result: DeribitTicker
