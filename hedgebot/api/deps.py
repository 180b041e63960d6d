"""Shared API dependencies.

Long-lived collaborators are created in the application lifespan and kept
on ``app.state``.
"""

from fastapi import HTTPException, Request, status

from hedgebot.engine.threshold_monitor import ThresholdMonitor
from hedgebot.services.deribit_client import DeribitClient
from hedgebot.services.position_store import PositionStore


def get_store(request: Request) -> PositionStore:
    return request.app.state.store


def get_client(request: Request) -> DeribitClient:
    return request.app.state.client


def get_monitor(request: Request) -> ThresholdMonitor:
    monitor = getattr(request.app.state, "monitor", None)
    if monitor is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Threshold monitor is not running",
        )
    return monitor
