from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from db.sqlite import get_db
from models.schemas import SearchResponse, SuggestResponse
from services.memory import DecisionMemory
from services.search import SemanticSearchEngine
from services.tier import TierDetector, get_tier_detector
from utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.get("", response_model=SearchResponse)
async def search(
    query: str = Query(..., min_length=1, max_length=2000),
    limit: int | None = Query(default=None, ge=1, le=100),
    threshold: float | None = Query(default=None, ge=-1.0, le=1.0),
    heads_only: bool = Query(default=False),
    db: AsyncSession = Depends(get_db),
    tier_detector: TierDetector = Depends(get_tier_detector),
):
    """Search decisions at the best tier available.

    The response always carries the tier it was served at; a provider outage
    shows up as tier 2 rather than as an error.
    """
    engine = SemanticSearchEngine(db, tier_detector)
    return await engine.search(query, limit=limit, threshold=threshold, heads_only=heads_only)


@router.get("/suggest", response_model=SuggestResponse)
async def suggest(
    query: str = Query(..., min_length=1, max_length=2000),
    limit: int | None = Query(default=None, ge=1, le=100),
    threshold: float | None = Query(default=None, ge=-1.0, le=1.0),
    depth: int = Query(default=1, ge=0, le=10),
    db: AsyncSession = Depends(get_db),
    tier_detector: TierDetector = Depends(get_tier_detector),
):
    """Current decisions relevant to the query, re-ranked, with their links."""
    memory = DecisionMemory(db, tier_detector)
    return await memory.suggest(query, limit=limit, threshold=threshold, depth=depth)
