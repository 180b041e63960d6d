"""Creating tracked positions from hedge suggestions or a picked instrument."""

import logging

from hedgebot.models.position import OptionKind, TrackedPosition
from hedgebot.schemas.hedge import HedgeSuggestion
from hedgebot.schemas.position import PositionCreate
from hedgebot.services.deribit_client import build_instrument_name
from hedgebot.services.position_store import PositionStore

logger = logging.getLogger(__name__)


class InstrumentNotListed(LookupError):
    """The requested option is not in the venue's live instrument list."""


def positions_from_suggestions(
    asset: str,
    quantity: float,
    suggestions: list[HedgeSuggestion],
) -> list[TrackedPosition]:
    """Put positions for chosen suggestions; reference price is the per-unit cost."""
    return [
        TrackedPosition(
            user_handle="",
            asset=asset.upper(),
            expiry=s.expiry,
            strike=s.chosen_strike,
            option_kind=OptionKind.PUT,
            reference_price=round(s.estimated_cost / quantity, 2),
        )
        for s in suggestions
    ]


def save_suggestions(
    store: PositionStore,
    user_handle: str,
    asset: str,
    quantity: float,
    suggestions: list[HedgeSuggestion],
) -> list[TrackedPosition]:
    positions = positions_from_suggestions(asset, quantity, suggestions)
    return store.push_positions(user_handle, positions)


async def track_instrument(
    store: PositionStore,
    client,
    user_handle: str,
    data: PositionCreate,
) -> TrackedPosition:
    """Track any listed option, capturing its live USD price as the reference.

    Raises:
        InstrumentNotListed: the option is not currently listed.
        VenueError: the catalog or price fetch failed.
    """
    name = build_instrument_name(data.asset, data.expiry, data.strike, data.option_kind)
    instruments = await client.list_instruments(data.asset)
    if not any(ins.name == name for ins in instruments):
        raise InstrumentNotListed(f"{name} is not listed")

    reference_price = data.reference_price
    if reference_price is None:
        reference_price = round(await client.option_price_usd(data.asset, name), 2)

    position = TrackedPosition(
        user_handle=user_handle,
        asset=data.asset,
        expiry=data.expiry,
        strike=data.strike,
        option_kind=data.option_kind,
        reference_price=reference_price,
        alert_price_threshold=data.alert_price_threshold,
        alert_percent_change=data.alert_percent_change,
        alert_time_window_minutes=data.alert_time_window_minutes,
    )
    logger.info(f"Tracking {name} for user {user_handle} at ${reference_price}")
    return store.push_position(user_handle, position)
