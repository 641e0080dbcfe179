"""Memory quality report and auto-link cleanup endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from db.sqlite import get_db
from models.schemas import (
    AutoLinkDeprecation,
    AutoLinkScan,
    QualityFormat,
    QualityReport,
    QualityThresholds,
)
from services.quality import QualityReporter

router = APIRouter()


@router.get("/report", response_model=QualityReport)
async def quality_report(
    format: QualityFormat = Query(default=QualityFormat.JSON),
    narrative_coverage: float = Query(default=0.8, ge=0.0, le=1.0),
    link_coverage: float = Query(default=0.7, ge=0.0, le=1.0),
    rich_reason_ratio: float = Query(default=0.7, ge=0.0, le=1.0),
    db: AsyncSession = Depends(get_db),
):
    """Coverage and quality metrics with recommendations.

    format=markdown also fills the `markdown` field with a rendered report.
    """
    thresholds = QualityThresholds(
        narrative_coverage=narrative_coverage,
        link_coverage=link_coverage,
        rich_reason_ratio=rich_reason_ratio,
    )
    return await QualityReporter(db).generate_report(thresholds, format)


@router.get("/auto-links", response_model=AutoLinkScan)
async def scan_auto_links(db: AsyncSession = Depends(get_db)):
    return await QualityReporter(db).scan_auto_links()


@router.post("/auto-links/deprecate", response_model=AutoLinkDeprecation)
async def deprecate_auto_links(
    dry_run: bool = Query(default=True),
    db: AsyncSession = Depends(get_db),
):
    """Remove unreviewed auto links. Defaults to a dry run."""
    return await QualityReporter(db).deprecate_auto_links(dry_run=dry_run)
