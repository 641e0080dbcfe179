"""Memory quality metrics and auto-link cleanup.

Coverage counts the decisions that carry a full narrative (evidence,
alternatives and risks all filled) and the decisions taking part in at
least one link. Quality looks at how well those fields and the link reasons
are filled in. generate_report() compares both against targets and turns
every shortfall into a recommendation.

Auto links are edges the assistant created without any review, such as the
builds_on / debates / synthesizes edges detected in reasoning text. Supersedes
edges, proposals awaiting review and reviewed links are protected.
deprecate_auto_links() removes the unprotected ones and records each removal
in link_audit_log.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.schemas import (
    AutoLinkDeprecation,
    AutoLinkScan,
    Coverage,
    CreatedBy,
    Link,
    LinkAction,
    LinkQuality,
    NarrativeQuality,
    Quality,
    QualityFormat,
    QualityReport,
    QualityThresholds,
    Recommendation,
    RelationshipType,
)
from models.store import DecisionEdge, DecisionRecord, LinkAuditEntry, now_ms
from utils.logging import get_logger

logger = get_logger(__name__)

# Link reasons longer than this count as rich
RICH_REASON_MIN_LENGTH = 50

DEPRECATION_REASON = "Unreviewed auto-detected link removed during link cleanup"


def _ratio(part: int, whole: int) -> float:
    return round(part / whole, 3) if whole else 0.0


def _pct(value: float) -> str:
    return f"{value * 100:.1f}%"


def _filled(value) -> bool:
    if isinstance(value, str):
        return bool(value.strip())
    return bool(value)


def has_full_narrative(row) -> bool:
    return _filled(row.evidence) and _filled(row.alternatives) and _filled(row.risks)


def is_rich_reason(reason: Optional[str]) -> bool:
    return len((reason or "").strip()) > RICH_REASON_MIN_LENGTH


def compute_coverage(decisions: list, edges: list[DecisionEdge]) -> Coverage:
    linked = {edge.from_id for edge in edges} | {edge.to_id for edge in edges}
    total = len(decisions)
    complete = sum(1 for row in decisions if has_full_narrative(row))
    with_links = sum(1 for row in decisions if row.id in linked)
    return Coverage(
        total_decisions=total,
        complete_narratives=complete,
        decisions_with_links=with_links,
        narrative_coverage=_ratio(complete, total),
        link_coverage=_ratio(with_links, total),
    )


def compute_quality(decisions: list, edges: list[DecisionEdge]) -> Quality:
    total = len(decisions)
    narrative = NarrativeQuality(
        evidence=_ratio(sum(1 for row in decisions if _filled(row.evidence)), total),
        alternatives=_ratio(sum(1 for row in decisions if _filled(row.alternatives)), total),
        risks=_ratio(sum(1 for row in decisions if _filled(row.risks)), total),
    )
    rich = sum(1 for edge in edges if is_rich_reason(edge.reason))
    approved = sum(1 for edge in edges if edge.approved)
    links = LinkQuality(
        total_links=len(edges),
        rich_links=rich,
        approved_links=approved,
        rich_reason_ratio=_ratio(rich, len(edges)),
        approved_ratio=_ratio(approved, len(edges)),
    )
    return Quality(narrative=narrative, links=links)


def recommend(
    coverage: Coverage, quality: Quality, thresholds: QualityThresholds
) -> list[Recommendation]:
    recommendations = []
    if coverage.narrative_coverage < thresholds.narrative_coverage:
        recommendations.append(
            Recommendation(
                type="narrative_coverage",
                message=(
                    f"Narrative coverage below target ({_pct(thresholds.narrative_coverage)}). "
                    "Add evidence, alternatives and risks to the decisions missing them."
                ),
                target=thresholds.narrative_coverage,
                current=coverage.narrative_coverage,
            )
        )
    if coverage.link_coverage < thresholds.link_coverage:
        recommendations.append(
            Recommendation(
                type="link_coverage",
                message=(
                    f"Link coverage below target ({_pct(thresholds.link_coverage)}). "
                    "Add links between related decisions."
                ),
                target=thresholds.link_coverage,
                current=coverage.link_coverage,
            )
        )
    if (
        quality.links.total_links
        and quality.links.rich_reason_ratio < thresholds.rich_reason_ratio
    ):
        recommendations.append(
            Recommendation(
                type="link_quality",
                message=(
                    f"Link quality below target ({_pct(thresholds.rich_reason_ratio)}). "
                    "Give link reasons a specific cause and evidence."
                ),
                target=thresholds.rich_reason_ratio,
                current=quality.links.rich_reason_ratio,
            )
        )
    return recommendations


def render_markdown(report: QualityReport) -> str:
    coverage = report.coverage
    narrative = report.quality.narrative
    links = report.quality.links
    generated = datetime.fromtimestamp(report.generated_at / 1000, tz=timezone.utc)

    lines = [
        "# Decision Memory Quality Report",
        "",
        f"Generated: {generated.isoformat()}",
        "",
        "## Coverage",
        "",
        f"- Narrative coverage: {_pct(coverage.narrative_coverage)} "
        f"({coverage.complete_narratives}/{coverage.total_decisions} decisions)",
        f"- Link coverage: {_pct(coverage.link_coverage)} "
        f"({coverage.decisions_with_links}/{coverage.total_decisions} decisions)",
        "",
        "## Quality",
        "",
        "### Narrative",
        f"- Evidence: {_pct(narrative.evidence)}",
        f"- Alternatives: {_pct(narrative.alternatives)}",
        f"- Risks: {_pct(narrative.risks)}",
        "",
        "### Links",
        f"- Rich reasons: {_pct(links.rich_reason_ratio)} "
        f"({links.rich_links}/{links.total_links} links)",
        f"- Approved: {_pct(links.approved_ratio)} "
        f"({links.approved_links}/{links.total_links} links)",
        "",
        "## Thresholds",
        "",
        f"- Narrative coverage: >= {_pct(report.thresholds.narrative_coverage)}",
        f"- Link coverage: >= {_pct(report.thresholds.link_coverage)}",
        f"- Rich reason ratio: >= {_pct(report.thresholds.rich_reason_ratio)}",
        "",
    ]
    if report.recommendations:
        lines += ["## Recommendations", ""]
        for index, rec in enumerate(report.recommendations, start=1):
            lines.append(f"{index}. **{rec.type}**: {rec.message}")
            lines.append(f"   - Target: {_pct(rec.target)}, current: {_pct(rec.current)}")
        lines.append("")
    else:
        lines += ["## All quality targets met", ""]
    return "\n".join(lines)


class QualityReporter:
    """Read-mostly view over decisions, decision_edges and link_audit_log."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _decisions(self) -> list:
        result = await self.session.execute(
            select(
                DecisionRecord.id,
                DecisionRecord.evidence,
                DecisionRecord.alternatives,
                DecisionRecord.risks,
            )
        )
        return list(result.all())

    async def _edges(self) -> list[DecisionEdge]:
        result = await self.session.execute(
            select(DecisionEdge).order_by(DecisionEdge.created_at, DecisionEdge.from_id)
        )
        return list(result.scalars())

    async def _reviewed(self) -> set[tuple[str, str, RelationshipType]]:
        """Edges with any audit history: proposed, approved or rejected."""
        result = await self.session.execute(
            select(
                LinkAuditEntry.from_id, LinkAuditEntry.to_id, LinkAuditEntry.relationship
            ).distinct()
        )
        return {tuple(row) for row in result.all()}

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    async def coverage(self) -> Coverage:
        return compute_coverage(await self._decisions(), await self._edges())

    async def quality(self) -> Quality:
        return compute_quality(await self._decisions(), await self._edges())

    async def generate_report(
        self,
        thresholds: QualityThresholds | None = None,
        format: QualityFormat = QualityFormat.JSON,
    ) -> QualityReport:
        thresholds = thresholds or QualityThresholds()
        decisions = await self._decisions()
        edges = await self._edges()

        coverage = compute_coverage(decisions, edges)
        quality = compute_quality(decisions, edges)
        report = QualityReport(
            generated_at=now_ms(),
            coverage=coverage,
            quality=quality,
            thresholds=thresholds,
            recommendations=recommend(coverage, quality, thresholds),
        )
        if QualityFormat(format) == QualityFormat.MARKDOWN:
            report.markdown = render_markdown(report)

        logger.info(
            f"Quality report: {coverage.total_decisions} decisions, "
            f"{quality.links.total_links} links, "
            f"{len(report.recommendations)} recommendation(s)"
        )
        return report

    # ------------------------------------------------------------------
    # Auto links
    # ------------------------------------------------------------------

    async def _partition_links(
        self,
    ) -> tuple[list[DecisionEdge], list[DecisionEdge], list[DecisionEdge]]:
        """Split edges into (all, assistant-created, unreviewed assistant-created)."""
        edges = await self._edges()
        reviewed = await self._reviewed()
        auto = [
            edge
            for edge in edges
            if edge.created_by == CreatedBy.LLM
            and edge.relationship != RelationshipType.SUPERSEDES
        ]
        targets = [
            edge
            for edge in auto
            if (edge.from_id, edge.to_id, edge.relationship) not in reviewed
        ]
        return edges, auto, targets

    async def scan_auto_links(self) -> AutoLinkScan:
        edges, auto, targets = await self._partition_links()
        return AutoLinkScan(
            total_links=len(edges),
            auto_links=len(auto),
            protected_links=len(edges) - len(targets),
            deletion_targets=len(targets),
            deletion_target_list=[Link.model_validate(edge) for edge in targets],
        )

    async def deprecate_auto_links(self, dry_run: bool = True) -> AutoLinkDeprecation:
        """Remove unreviewed auto links. With dry_run nothing is changed.

        Commits when links were removed.
        """
        edges, _, targets = await self._partition_links()
        links = [Link.model_validate(edge) for edge in targets]
        protected = len(edges) - len(targets)

        if not dry_run and targets:
            timestamp = now_ms()
            for edge in targets:
                await self.session.delete(edge)
                self.session.add(
                    LinkAuditEntry(
                        from_id=edge.from_id,
                        to_id=edge.to_id,
                        relationship=edge.relationship,
                        action=LinkAction.DEPRECATED,
                        actor=CreatedBy.USER,
                        reason=DEPRECATION_REASON,
                        created_at=timestamp,
                    )
                )
            await self.session.commit()
            logger.info(f"Deprecated {len(targets)} auto link(s), {protected} protected")

        return AutoLinkDeprecation(
            dry_run=dry_run,
            deprecated=len(targets),
            protected=protected,
            total=len(edges),
            auto_link_ratio=round(len(targets) / len(edges) * 100, 2) if edges else 0.0,
            links=links,
        )
