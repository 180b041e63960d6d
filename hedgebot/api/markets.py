"""Option catalog API: listed expiries and strikes for the instrument picker."""

from fastapi import APIRouter, Depends, HTTPException

from hedgebot.api.deps import get_client
from hedgebot.config import settings
from hedgebot.services.deribit_client import VenueError

router = APIRouter(prefix="/api/markets", tags=["markets"])


def _check_asset(asset: str) -> str:
    asset = asset.upper()
    if asset not in settings.supported_assets:
        raise HTTPException(status_code=404, detail=f"Unsupported asset: {asset}")
    return asset


@router.get("/{asset}/expiries")
async def list_expiries(asset: str, client=Depends(get_client)) -> list[str]:
    asset = _check_asset(asset)
    try:
        return await client.list_expiries(asset)
    except VenueError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.get("/{asset}/expiries/{expiry}/strikes")
async def list_strikes(asset: str, expiry: str, client=Depends(get_client)) -> list[float]:
    asset = _check_asset(asset)
    try:
        strikes = await client.list_strikes(asset, expiry.upper())
    except VenueError as e:
        raise HTTPException(status_code=502, detail=str(e))
    if not strikes:
        raise HTTPException(status_code=404, detail=f"No options listed for {asset} {expiry.upper()}")
    return strikes
