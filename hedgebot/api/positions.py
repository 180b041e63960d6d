"""Tracked positions API: saved options and their alert settings."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from hedgebot.api.deps import get_client, get_monitor, get_store
from hedgebot.engine.alert_actions import AlertCommand
from hedgebot.engine.threshold_monitor import ThresholdMonitor
from hedgebot.schemas.position import (
    AcknowledgeRequest,
    AlertConfigUpdate,
    PositionCreate,
    PositionRead,
    SaveSuggestionsRequest,
)
from hedgebot.services.deribit_client import VenueError
from hedgebot.services.position_store import PositionStore
from hedgebot.services.tracking import InstrumentNotListed, save_suggestions, track_instrument

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users/{user_handle}/positions", tags=["positions"])


def _position_or_404(store: PositionStore, user_handle: str, position_id: str):
    position = store.get_position(user_handle, position_id)
    if position is None:
        raise HTTPException(status_code=404, detail="Position not found")
    return position


@router.get("", response_model=list[PositionRead])
def list_positions(
    user_handle: str,
    alerts_only: bool = False,
    store: PositionStore = Depends(get_store),
):
    if alerts_only:
        positions = store.list_alert_positions(user_handle)
    else:
        positions = store.list_positions(user_handle)
    if positions is None:
        raise HTTPException(status_code=404, detail="User not found")
    return positions


@router.post("", response_model=PositionRead, status_code=201)
async def create_position(
    user_handle: str,
    data: PositionCreate,
    store: PositionStore = Depends(get_store),
    client=Depends(get_client),
):
    try:
        return await track_instrument(store, client, user_handle, data)
    except InstrumentNotListed as e:
        raise HTTPException(status_code=404, detail=str(e))
    except VenueError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/from-suggestions", response_model=list[PositionRead], status_code=201)
def create_from_suggestions(
    user_handle: str,
    data: SaveSuggestionsRequest,
    store: PositionStore = Depends(get_store),
):
    return save_suggestions(store, user_handle, data.asset, data.quantity, data.suggestions)


@router.post("/refresh")
async def refresh_prices(user_handle: str, monitor: ThresholdMonitor = Depends(get_monitor)):
    """Reprice all of a user's positions from the venue."""
    updated = await monitor.refresh_last_prices(user_handle)
    if updated is None:
        raise HTTPException(status_code=404, detail="User not found")
    return {"status": "ok", "updated": updated}


@router.get("/{position_id}", response_model=PositionRead)
def get_position(
    user_handle: str,
    position_id: str,
    store: PositionStore = Depends(get_store),
):
    return _position_or_404(store, user_handle, position_id)


@router.delete("/{position_id}", status_code=204)
def delete_position(
    user_handle: str,
    position_id: str,
    monitor: ThresholdMonitor = Depends(get_monitor),
):
    if not monitor.remove_position(user_handle, position_id):
        raise HTTPException(status_code=404, detail="Position not found")


@router.patch("/{position_id}/alerts", response_model=PositionRead)
def update_alerts(
    user_handle: str,
    position_id: str,
    data: AlertConfigUpdate,
    store: PositionStore = Depends(get_store),
    monitor: ThresholdMonitor = Depends(get_monitor),
):
    """Change alert settings; this also re-arms a pending alert."""
    found = monitor.configure_alerts(
        user_handle,
        position_id,
        price_threshold=data.alert_price_threshold,
        percent_change=data.alert_percent_change,
        time_window_minutes=data.alert_time_window_minutes,
    )
    if not found:
        raise HTTPException(status_code=404, detail="Position not found")
    return _position_or_404(store, user_handle, position_id)


@router.post("/{position_id}/acknowledge", response_model=PositionRead)
def acknowledge_alert(
    user_handle: str,
    position_id: str,
    data: AcknowledgeRequest,
    store: PositionStore = Depends(get_store),
    monitor: ThresholdMonitor = Depends(get_monitor),
):
    """Apply a keep / remove / edit choice to a fired alert."""
    command = AlertCommand(action=data.action, position_id=position_id)
    if not monitor.acknowledge(user_handle, command):
        raise HTTPException(status_code=404, detail="Position not found")
    return _position_or_404(store, user_handle, position_id)
