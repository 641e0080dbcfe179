"""Link review endpoints.

Only refines and contradicts links go through review. Links created from a
save (supersedes and reasoning references) are approved immediately.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from db.sqlite import get_db
from models.schemas import Link, LinkAudit, LinkProposal, LinkReview, PendingLink
from services.link_approval import LinkApproval
from utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


class RejectResponse(BaseModel):
    status: str = "rejected"
    from_id: str
    to_id: str
    relationship: str


@router.post("/propose", response_model=Link, status_code=201)
async def propose_link(proposal: LinkProposal, db: AsyncSession = Depends(get_db)):
    return await LinkApproval(db).propose(
        proposal.from_id, proposal.to_id, proposal.relationship, proposal.reason
    )


@router.post("/approve", response_model=Link)
async def approve_link(review: LinkReview, db: AsyncSession = Depends(get_db)):
    return await LinkApproval(db).approve(
        review.from_id, review.to_id, review.relationship, review.reason
    )


@router.post("/reject", response_model=RejectResponse)
async def reject_link(review: LinkReview, db: AsyncSession = Depends(get_db)):
    """Reject a proposed link. The link is deleted; the audit log keeps the record."""
    await LinkApproval(db).reject(
        review.from_id, review.to_id, review.relationship, review.reason
    )
    return RejectResponse(
        from_id=review.from_id,
        to_id=review.to_id,
        relationship=review.relationship.strip().lower(),
    )


@router.get("/pending", response_model=list[PendingLink])
async def pending_links(
    limit: int = Query(default=50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    return await LinkApproval(db).pending_links(limit)


@router.get("/audit", response_model=list[LinkAudit])
async def link_audit_log(
    decision_id: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
):
    return await LinkApproval(db).audit_log(decision_id, limit)
