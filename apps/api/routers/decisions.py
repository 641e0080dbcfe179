"""Decision endpoints: save, read, record outcomes and walk the graph."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from db.sqlite import get_db
from models.errors import NotFound
from models.schemas import (
    Decision,
    DecisionCreate,
    ExpandedLink,
    ExpandResponse,
    LinkCounts,
    OutcomeUpdate,
    SaveResult,
    SupersedesChain,
)
from services.decision_store import DecisionStore
from services.graph_builder import GraphBuilder
from services.link_expander import LinkExpander
from services.memory import DecisionMemory
from services.tier import TierDetector, get_tier_detector
from utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.post("", response_model=SaveResult, status_code=201)
async def save_decision(
    payload: DecisionCreate,
    db: AsyncSession = Depends(get_db),
    tier_detector: TierDetector = Depends(get_tier_detector),
):
    """Save a decision, superseding the current head of its topic."""
    return await GraphBuilder(db, tier_detector).save(payload)


@router.get("", response_model=list[Decision])
async def list_decisions(
    limit: int = Query(default=20, ge=1, le=200),
    heads_only: bool = Query(default=False, description="Hide superseded decisions"),
    db: AsyncSession = Depends(get_db),
):
    return await DecisionStore(db).list_recent(limit, heads_only=heads_only)


@router.get("/by-topic", response_model=Decision)
async def get_decision_by_topic(
    topic: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
):
    """Current head decision for a topic."""
    decision = await DecisionStore(db).get_by_topic(topic.strip())
    if decision is None:
        raise NotFound("topic", topic)
    return decision


@router.get("/recall", response_model=SupersedesChain)
async def recall_topic(
    topic: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
    tier_detector: TierDetector = Depends(get_tier_detector),
):
    """How the decision on a topic evolved, oldest first."""
    return await DecisionMemory(db, tier_detector).recall(topic.strip())


@router.get("/{decision_id}", response_model=Decision)
async def get_decision(decision_id: str, db: AsyncSession = Depends(get_db)):
    return await DecisionStore(db).get(decision_id)


@router.patch("/{decision_id}/outcome", response_model=Decision)
async def update_outcome(
    decision_id: str,
    update: OutcomeUpdate,
    db: AsyncSession = Depends(get_db),
):
    return await DecisionStore(db).update_outcome(
        decision_id,
        update.outcome,
        failure_reason=update.failure_reason,
        limitation=update.limitation,
    )


@router.get("/{decision_id}/links", response_model=list[ExpandedLink])
async def get_direct_links(
    decision_id: str,
    approved_only: bool = Query(default=True),
    db: AsyncSession = Depends(get_db),
):
    return await LinkExpander(db).get_direct_links(decision_id, approved_only=approved_only)


@router.get("/{decision_id}/links/count", response_model=LinkCounts)
async def count_links(
    decision_id: str,
    approved_only: bool = Query(default=True),
    db: AsyncSession = Depends(get_db),
):
    return await LinkExpander(db).count_links(decision_id, approved_only=approved_only)


@router.get("/{decision_id}/expand", response_model=ExpandResponse)
async def expand_decision(
    decision_id: str,
    depth: int = Query(default=1, ge=0, le=10, description="Clamped to the configured maximum"),
    approved_only: bool = Query(default=True),
    db: AsyncSession = Depends(get_db),
    tier_detector: TierDetector = Depends(get_tier_detector),
):
    """Related decisions reachable within depth hops, in either direction."""
    return await DecisionMemory(db, tier_detector).expand(decision_id, depth, approved_only)
