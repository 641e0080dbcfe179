from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from db.sqlite import get_db
from models.schemas import TierStatus
from services.tier import TierDetector, get_tier_detector

router = APIRouter()


@router.get("", response_model=TierStatus)
async def tier_status(
    transitions: int = Query(default=20, ge=0, le=500, description="Recent transitions to include"),
    db: AsyncSession = Depends(get_db),
    tier_detector: TierDetector = Depends(get_tier_detector),
):
    """Current capability tier, its banner and the recent transition log."""
    return await tier_detector.status(db, limit=transitions)
