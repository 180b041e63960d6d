"""System API: health check, scheduler status, alert log."""

from fastapi import APIRouter, Depends

from hedgebot.api.deps import get_store
from hedgebot.models.alert_log import AlertLog
from hedgebot.services.position_store import PositionStore

router = APIRouter(prefix="/api/system", tags=["system"])


@router.get("/health")
def health_check():
    return {"status": "ok"}


@router.get("/scheduler")
def scheduler_status():
    """Current scheduler state with job details."""
    from hedgebot.engine.scheduler import get_scheduler_status
    return get_scheduler_status()


@router.get("/alerts", response_model=list[AlertLog])
def alert_log(
    user_handle: str | None = None,
    limit: int = 100,
    offset: int = 0,
    store: PositionStore = Depends(get_store),
):
    return store.list_alert_log(user_handle=user_handle, limit=limit, offset=offset)
