"""Hedge suggestion engine.

Turns a held position (purchase price, quantity, signed allowed loss) into
protective put candidates across the daily, weekly and monthly horizons:

    target strike → candidate expiry dates → listed strike ladder
    → closest strike → best ask × spot × quantity

Any venue failure aborts the whole request. ``run_hedge_suggestion`` is the
operation boundary that turns failures into a ``HedgeResult``.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone

from hedgebot.config import settings
from hedgebot.models.position import OptionKind
from hedgebot.schemas.hedge import HedgeSuggestion, HedgeSuggestions
from hedgebot.services.deribit_client import (
    OptionInstrument,
    VenueError,
    build_instrument_name,
)
from hedgebot.services.expiry_scheduler import Horizons, schedule_horizons
from hedgebot.services.strike_selector import closest_strike, strike_ladder

logger = logging.getLogger(__name__)


class InvalidHedgeRequest(ValueError):
    """Numeric inputs the engine cannot work with."""


@dataclass
class HedgeResult:
    success: bool
    suggestions: HedgeSuggestions | None = None
    target_strike: float | None = None
    error: str | None = None


@dataclass(frozen=True)
class _Candidate:
    expiry: str
    strike: float
    instrument_name: str


def compute_target_strike(purchase_price: float, allowed_loss_percent: float) -> float:
    """Strike placement for a signed tolerance.

    Negative percentages place the strike below the purchase price (downside
    buffer), positive ones above it (upside cap): -10 on 50000 gives 45000.
    """
    return purchase_price * (1 + allowed_loss_percent / 100)


def _validate_inputs(purchase_price: float, quantity: float, allowed_loss_percent: float):
    for name, value in (
        ("purchase_price", purchase_price),
        ("quantity", quantity),
        ("allowed_loss_percent", allowed_loss_percent),
    ):
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise InvalidHedgeRequest(f"{name} must be a finite number, got {value!r}")
    if purchase_price <= 0:
        raise InvalidHedgeRequest("purchase_price must be positive")
    if quantity <= 0:
        raise InvalidHedgeRequest("quantity must be positive")
    if allowed_loss_percent <= -100:
        raise InvalidHedgeRequest("allowed_loss_percent must be greater than -100")


def _group_by_expiry(instruments: list[OptionInstrument]) -> dict[str, list[OptionInstrument]]:
    grouped: dict[str, list[OptionInstrument]] = {}
    for ins in instruments:
        if ins.tradable:
            grouped.setdefault(ins.expiry, []).append(ins)
    return grouped


def _select_candidate(
    asset: str,
    expiry: str,
    by_expiry: dict[str, list[OptionInstrument]],
    listed_names: set[str],
    target_strike: float,
) -> _Candidate | None:
    """Closest listed put for one expiry, or None when nothing is listed."""
    instruments = by_expiry.get(expiry)
    if not instruments:
        return None

    ladder = strike_ladder(ins.strike for ins in instruments)
    strike = closest_strike(target_strike, ladder)
    name = build_instrument_name(asset, expiry, strike, OptionKind.PUT)

    # Strike may only be listed on the call side
    if name not in listed_names:
        logger.info(f"{name} not listed; skipping {expiry}")
        return None
    return _Candidate(expiry=expiry, strike=strike, instrument_name=name)


async def _price_candidates(
    client,
    candidates: list[_Candidate],
    spot: float,
    quantity: float,
) -> list[HedgeSuggestion]:
    """Fetch asks concurrently and keep the priceable candidates, in order.

    The client's semaphore bounds how many requests are actually in flight.
    """
    if not candidates:
        return []

    asks = await asyncio.gather(*(client.ask_price(c.instrument_name) for c in candidates))

    suggestions = []
    for candidate, ask in zip(candidates, asks):
        if not ask or ask <= 0:
            logger.info(f"{candidate.instrument_name} has no live ask; skipping")
            continue
        suggestions.append(HedgeSuggestion(
            expiry=candidate.expiry,
            chosen_strike=candidate.strike,
            estimated_cost=ask * spot * quantity,
        ))
    return suggestions


def _horizons_for(now: datetime) -> Horizons:
    return schedule_horizons(
        now,
        settings.reference_timezone,
        cutoff_hour=settings.expiry_cutoff_hour,
        daily_days=settings.daily_horizon_days,
        weekly_count=settings.weekly_horizon_count,
        monthly_months=settings.monthly_horizon_months,
    )


async def suggest_hedges(
    client,
    asset: str,
    purchase_price: float,
    quantity: float,
    allowed_loss_percent: float,
    now: datetime | None = None,
) -> HedgeSuggestions:
    """Protective put suggestions per horizon bucket.

    Args:
        client: Instrument catalog (``DeribitClient`` or compatible).
        asset: Base asset, e.g. "BTC".
        purchase_price: Spot price the position was bought at, in USD.
        quantity: Position size in units of the asset.
        allowed_loss_percent: Signed tolerance; see ``compute_target_strike``.
        now: Reference instant for the expiry schedule. Defaults to the current time.

    Raises:
        InvalidHedgeRequest: inputs are not usable numbers.
        VenueError: any catalog or price fetch failed.
    """
    _validate_inputs(purchase_price, quantity, allowed_loss_percent)
    asset = asset.upper()
    target = compute_target_strike(purchase_price, allowed_loss_percent)
    horizons = _horizons_for(now or datetime.now(timezone.utc))

    instruments, spot = await asyncio.gather(
        client.list_instruments(asset),
        client.spot_price(asset),
    )
    by_expiry = _group_by_expiry(instruments)
    listed_names = {ins.name for ins in instruments if ins.tradable}

    logger.info(
        f"Hedge request {asset}: price={purchase_price} qty={quantity} "
        f"loss={allowed_loss_percent}% target={target:.2f} spot={spot:.2f} "
        f"expiries_listed={len(by_expiry)}"
    )

    def candidates_for(tokens: list[str]) -> list[_Candidate]:
        chosen = []
        for token in tokens:
            candidate = _select_candidate(asset, token, by_expiry, listed_names, target)
            if candidate is not None:
                chosen.append(candidate)
        return chosen

    daily, weekly = await asyncio.gather(
        _price_candidates(client, candidates_for(horizons.daily), spot, quantity),
        _price_candidates(client, candidates_for(horizons.weekly), spot, quantity),
    )

    claimed = {s.expiry for s in daily} | {s.expiry for s in weekly}
    monthly_tokens = []
    for token in horizons.monthly:
        if token not in claimed and token not in monthly_tokens:
            monthly_tokens.append(token)
    monthly = await _price_candidates(client, candidates_for(monthly_tokens), spot, quantity)

    return HedgeSuggestions(daily=daily, weekly=weekly, monthly=monthly)


async def run_hedge_suggestion(
    client,
    asset: str,
    purchase_price: float,
    quantity: float,
    allowed_loss_percent: float,
    now: datetime | None = None,
) -> HedgeResult:
    """``suggest_hedges`` with failures converted to a result instead of raised."""
    try:
        suggestions = await suggest_hedges(
            client, asset, purchase_price, quantity, allowed_loss_percent, now=now
        )
    except InvalidHedgeRequest as e:
        return HedgeResult(success=False, error=str(e))
    except VenueError as e:
        logger.warning(f"Hedge suggestion for {asset} failed: {e}")
        return HedgeResult(success=False, error=f"Venue unavailable: {e}")
    except Exception as e:
        logger.error(f"Hedge suggestion for {asset} crashed: {e}", exc_info=True)
        return HedgeResult(success=False, error="Internal error while computing suggestions")

    return HedgeResult(
        success=True,
        suggestions=suggestions,
        target_strike=compute_target_strike(purchase_price, allowed_loss_percent),
    )
