"""Hedge suggestion API."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from hedgebot.api.deps import get_client
from hedgebot.schemas.hedge import HedgeRequest, HedgeResponse
from hedgebot.services.hedge_engine import run_hedge_suggestion

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/hedges", tags=["hedges"])


@router.post("/suggest", response_model=HedgeResponse)
async def suggest(data: HedgeRequest, client=Depends(get_client)):
    result = await run_hedge_suggestion(
        client,
        data.asset,
        data.purchase_price,
        data.quantity,
        data.allowed_loss_percent,
    )
    if not result.success:
        raise HTTPException(status_code=502, detail=result.error)
    return HedgeResponse(
        asset=data.asset,
        target_strike=result.target_strike,
        suggestions=result.suggestions,
    )
