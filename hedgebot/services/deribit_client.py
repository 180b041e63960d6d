"""Deribit public market-data client.

Wraps the public REST endpoints the hedge engine and threshold monitor need:
option instrument listing, the perpetual ticker (spot reference) and option
tickers (best ask). Responses are validated against the schemas in
``hedgebot.schemas.instrument``; every call shares one timeout and one
concurrency limit per client.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

import aiohttp
from pydantic import ValidationError

from hedgebot.config import settings
from hedgebot.models.position import OptionKind
from hedgebot.schemas.instrument import (
    DeribitErrorBody,
    DeribitInstrument,
    InstrumentsResponse,
    TickerResponse,
)
from hedgebot.services.expiry_scheduler import format_expiry

logger = logging.getLogger(__name__)


class VenueError(Exception):
    """Retryable failure talking to the venue (network, HTTP status, error envelope)."""


class VenueTimeoutError(VenueError):
    """A venue call exceeded its timeout."""


class VenueResponseError(VenueError):
    """The venue answered with a payload that does not match the expected shape."""


@dataclass(frozen=True)
class OptionInstrument:
    name: str
    expiry: str
    strike: float
    option_kind: OptionKind
    tradable: bool


def expiry_from_timestamp(expiration_ms: int) -> str:
    """Venue expiry token for an expiration timestamp (ms, UTC)."""
    expires_at = datetime.fromtimestamp(expiration_ms / 1000, tz=timezone.utc)
    return format_expiry(expires_at.date())


def format_strike(strike: float) -> str:
    strike = float(strike)
    if strike.is_integer():
        return str(int(strike))
    return str(strike)


def build_instrument_name(asset: str, expiry: str, strike: float, option_kind) -> str:
    """Canonical Deribit option name, e.g. ``BTC-27DEC24-45000-P``."""
    kind = OptionKind(option_kind)
    return f"{asset.upper()}-{expiry.upper()}-{format_strike(strike)}-{kind.marker}"


def _to_option_instrument(raw: DeribitInstrument) -> OptionInstrument:
    return OptionInstrument(
        name=raw.instrument_name,
        expiry=expiry_from_timestamp(raw.expiration_timestamp),
        strike=raw.strike,
        option_kind=OptionKind.PUT if raw.option_type == "put" else OptionKind.CALL,
        tradable=raw.is_active,
    )


class DeribitClient:
    """Async client for the Deribit public API."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        max_concurrency: int | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        self.base_url = (base_url or settings.deribit_base_url).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(
            total=timeout_seconds or settings.deribit_timeout_seconds
        )
        self._semaphore = asyncio.Semaphore(max_concurrency or settings.deribit_max_concurrency)
        self._session = session
        self._owns_session = session is None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self):
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _get(self, path: str, params: dict) -> dict:
        """GET a public endpoint and return the decoded JSON-RPC envelope."""
        session = await self._ensure_session()
        url = f"{self.base_url}{path}"
        async with self._semaphore:
            try:
                async with session.get(url, params=params, timeout=self.timeout) as resp:
                    status = resp.status
                    payload = await resp.json(content_type=None)
            except asyncio.TimeoutError as e:
                raise VenueTimeoutError(f"Timed out calling {path}") from e
            except aiohttp.ClientError as e:
                raise VenueError(f"Request to {path} failed: {e}") from e
            except ValueError as e:
                raise VenueResponseError(f"Non-JSON response from {path}") from e

        if not isinstance(payload, dict):
            raise VenueResponseError(f"Unexpected response type from {path}: {type(payload).__name__}")

        if payload.get("error"):
            try:
                err = DeribitErrorBody.model_validate(payload["error"])
                detail = f"{err.code} {err.message}"
            except ValidationError:
                detail = str(payload["error"])
            raise VenueError(f"{path} returned error: {detail}")

        if status >= 400:
            raise VenueError(f"{path} returned HTTP {status}")
        return payload

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    async def _raw_instruments(self, asset: str) -> list[DeribitInstrument]:
        payload = await self._get(
            "/public/get_instruments",
            # Deribit expects "true"/"false" strings; aiohttp/yarl rejects bare bools
            {"currency": asset.upper(), "kind": "option", "expired": "false"},
        )
        try:
            return InstrumentsResponse.model_validate(payload).result
        except ValidationError as e:
            raise VenueResponseError(f"Malformed instrument list for {asset}: {e}") from e

    async def list_instruments(self, asset: str) -> list[OptionInstrument]:
        """All non-expired option instruments for an asset."""
        instruments = [_to_option_instrument(raw) for raw in await self._raw_instruments(asset)]
        logger.debug(f"Fetched {len(instruments)} {asset} option instruments")
        return instruments

    async def list_expiries(self, asset: str) -> list[str]:
        """Unique listed expiry tokens, nearest first."""
        raw = await self._raw_instruments(asset)
        tokens: list[str] = []
        for ts in sorted({ins.expiration_timestamp for ins in raw}):
            token = expiry_from_timestamp(ts)
            if token not in tokens:
                tokens.append(token)
        return tokens

    async def list_strikes(self, asset: str, expiry: str) -> list[float]:
        """Sorted strike ladder for one expiry token."""
        instruments = await self.list_instruments(asset)
        return sorted({i.strike for i in instruments if i.expiry == expiry.upper()})

    # ------------------------------------------------------------------
    # Prices
    # ------------------------------------------------------------------

    async def _ticker(self, instrument_name: str):
        payload = await self._get("/public/ticker", {"instrument_name": instrument_name})
        try:
            return TickerResponse.model_validate(payload).result
        except ValidationError as e:
            raise VenueResponseError(f"Malformed ticker for {instrument_name}: {e}") from e

    async def spot_price(self, asset: str) -> float:
        """Last traded price of the asset's perpetual, in USD."""
        ticker = await self._ticker(f"{asset.upper()}-PERPETUAL")
        if ticker.last_price is None or ticker.last_price <= 0:
            raise VenueResponseError(f"No last price for {asset}-PERPETUAL")
        return float(ticker.last_price)

    async def ask_price(self, instrument_name: str) -> float:
        """Best ask in units of the underlying. 0.0 means there is no live quote."""
        ticker = await self._ticker(instrument_name)
        if not ticker.best_ask_price or ticker.best_ask_price < 0:
            return 0.0
        return float(ticker.best_ask_price)

    async def option_price_usd(
        self,
        asset: str,
        instrument_name: str,
        spot: float | None = None,
    ) -> float:
        """Best ask converted to USD. 0.0 means the instrument is not priceable."""
        ask = await self.ask_price(instrument_name)
        if ask <= 0:
            return 0.0
        if spot is None:
            spot = await self.spot_price(asset)
        return ask * spot
