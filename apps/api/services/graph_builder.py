"""Graph builder: saves decisions and links them as a topic evolves.

On every save the builder:
1. Validates the payload and blends confidence from refined_from parents
2. Embeds the decision when Tier 1 is available (failures only skip the vector)
3. Inserts the decision, the supersedes edge to the previous topic head and
   old.superseded_by in one transaction; a concurrent save that moved the
   head first makes the attempt roll back and start over
4. Adds approved edges for builds_on / debates / synthesizes references
   found in the reasoning text

Reasoning references are matched by an ordered rule table rather than ad hoc
parsing, so adding a relationship means adding a row.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings, get_settings
from models.errors import ConstraintViolation, DecisionMemoryError, ValidationError
from models.schemas import (
    VALID_RELATIONSHIP_TYPES,
    CreatedBy,
    Decision,
    DecisionCreate,
    RelationshipType,
    SaveResult,
    SupersedesChain,
    TierInfo,
    clamp_confidence,
)
from models.store import DecisionEdge, DecisionRecord, now_ms
from services.decision_store import DecisionStore, validate_decision
from services.embeddings import build_decision_text
from services.tier import TierDetector, degraded_tier, get_tier_detector
from utils.logging import LogContext, get_logger

logger = get_logger(__name__)

# Exact compatibility constants for the multi-parent confidence blend
PRIOR_CONFIDENCE_WEIGHT = 0.6
PARENT_CONFIDENCE_WEIGHT = 0.4
DEFAULT_PARENT_CONFIDENCE = 0.5

# Concurrent saves on one topic; each lost race re-reads the head
HEAD_TAKEOVER_ATTEMPTS = 5

DECISION_ID = r"decision_[a-z0-9_]+"


@dataclass(frozen=True)
class ReferenceRule:
    """One row of the reasoning-reference table."""

    relationship: RelationshipType
    keyword: str
    multiple: bool = False

    @property
    def pattern(self) -> re.Pattern:
        # Optional markdown emphasis around the keyword: **builds_on**: or **builds_on:**
        keyword = rf"(?<![a-z0-9_])\*{{0,2}}{self.keyword}\*{{0,2}}\s*:\s*\*{{0,2}}\s*"
        if self.multiple:
            return re.compile(
                keyword + rf"\[\s*({DECISION_ID}(?:\s*,\s*{DECISION_ID})*)\s*,?\s*\]",
                re.IGNORECASE,
            )
        return re.compile(keyword + rf"({DECISION_ID})", re.IGNORECASE)


REFERENCE_RULES: tuple[ReferenceRule, ...] = (
    ReferenceRule(RelationshipType.BUILDS_ON, "builds_on"),
    ReferenceRule(RelationshipType.DEBATES, "debates"),
    ReferenceRule(RelationshipType.SYNTHESIZES, "synthesizes", multiple=True),
)


@dataclass
class ParsedReference:
    relationship: RelationshipType
    target_id: str


def parse_reasoning_references(reasoning: Optional[str]) -> list[ParsedReference]:
    """Extract relationship references from free text, in rule order.

    Duplicate (relationship, id) pairs are returned once.
    """
    if not reasoning:
        return []

    found: list[ParsedReference] = []
    seen: set[tuple[RelationshipType, str]] = set()
    for rule in REFERENCE_RULES:
        for match in rule.pattern.finditer(reasoning):
            ids = re.findall(DECISION_ID, match.group(1), re.IGNORECASE)
            for target_id in ids:
                target_id = target_id.lower()
                key = (rule.relationship, target_id)
                if key not in seen:
                    seen.add(key)
                    found.append(ParsedReference(rule.relationship, target_id))
    return found


def validate_relationship(value: Any) -> RelationshipType:
    """Map a caller-supplied relationship onto the closed set or fail."""
    if isinstance(value, RelationshipType):
        return value
    normalized = str(value or "").strip().lower()
    if normalized not in VALID_RELATIONSHIP_TYPES:
        allowed = ", ".join(sorted(VALID_RELATIONSHIP_TYPES))
        raise ValidationError(
            "relationship", f"relationship must be one of {allowed}", value
        )
    return RelationshipType(normalized)


def blend_confidence(prior: float, parent_confidences: Iterable[Optional[float]]) -> float:
    """prior*0.6 + avg(parents)*0.4, clamped to [0, 1].

    A parent without a confidence counts as 0.5. With no parents the prior is
    returned clamped.
    """
    values = [
        DEFAULT_PARENT_CONFIDENCE if c is None else c for c in parent_confidences
    ]
    if not values:
        return clamp_confidence(prior)
    average = sum(values) / len(values)
    return clamp_confidence(
        prior * PRIOR_CONFIDENCE_WEIGHT + average * PARENT_CONFIDENCE_WEIGHT
    )


async def find_edge(
    session: AsyncSession, from_id: str, to_id: str, relationship: RelationshipType
) -> Optional[DecisionEdge]:
    return await session.get(DecisionEdge, (from_id, to_id, relationship))


async def add_edge(
    session: AsyncSession,
    from_id: str,
    to_id: str,
    relationship: Any,
    reason: Optional[str] = None,
    *,
    created_by: CreatedBy = CreatedBy.LLM,
    approved: bool = True,
    weight: float = 1.0,
) -> DecisionEdge:
    """Add an edge inside the current transaction.

    Raises:
        ValidationError: relationship outside the closed set
        ConstraintViolation: self-loop or an identical edge already exists
    """
    rel = validate_relationship(relationship)
    if from_id == to_id:
        raise ConstraintViolation(
            "A decision cannot link to itself",
            {"from_id": from_id, "relationship": rel.value},
        )
    if await find_edge(session, from_id, to_id, rel) is not None:
        raise ConstraintViolation(
            "Link already exists",
            {"from_id": from_id, "to_id": to_id, "relationship": rel.value},
        )

    timestamp = now_ms()
    edge = DecisionEdge(
        from_id=from_id,
        to_id=to_id,
        relationship=rel,
        reason=reason,
        weight=max(0.0, min(1.0, weight)),
        created_by=created_by,
        approved=approved,
        created_at=timestamp,
        approved_at=timestamp if approved else None,
    )
    session.add(edge)
    await session.flush()
    return edge


@dataclass
class ReferenceOutcome:
    created: int = 0
    failed: int = 0
    failed_ids: list[str] = field(default_factory=list)


class GraphBuilder:
    """Creates decisions and the edges that connect them."""

    def __init__(
        self,
        session: AsyncSession,
        tier_detector: TierDetector | None = None,
        settings: Settings | None = None,
    ):
        self.session = session
        self.store = DecisionStore(session)
        self.tier_detector = tier_detector or get_tier_detector()
        self._settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    async def _edge_exists(
        self, from_id: str, to_id: str, relationship: RelationshipType
    ) -> bool:
        return await find_edge(self.session, from_id, to_id, relationship) is not None

    async def create_edge(
        self,
        from_id: str,
        to_id: str,
        relationship: Any,
        reason: Optional[str] = None,
        *,
        created_by: CreatedBy = CreatedBy.LLM,
        approved: bool = True,
        weight: float = 1.0,
    ) -> DecisionEdge:
        return await add_edge(
            self.session,
            from_id,
            to_id,
            relationship,
            reason,
            created_by=created_by,
            approved=approved,
            weight=weight,
        )

    async def link_reasoning_references(
        self, decision_id: str, reasoning: Optional[str]
    ) -> ReferenceOutcome:
        """Create approved edges for ids referenced in the reasoning text.

        Unknown ids and self references are counted as failed and skipped.
        """
        outcome = ReferenceOutcome()
        references = parse_reasoning_references(reasoning)
        if not references:
            return outcome

        existing = await self.store.get_many(ref.target_id for ref in references)
        for ref in references:
            if ref.target_id not in existing or ref.target_id == decision_id:
                outcome.failed += 1
                outcome.failed_ids.append(ref.target_id)
                continue
            if await self._edge_exists(decision_id, ref.target_id, ref.relationship):
                continue
            await self.create_edge(
                decision_id,
                ref.target_id,
                ref.relationship,
                f"Auto-detected from reasoning: {ref.relationship.value} reference",
            )
            outcome.created += 1

        if outcome.failed:
            logger.warning(
                f"{outcome.failed} reasoning reference(s) from {decision_id} "
                f"did not resolve: {', '.join(outcome.failed_ids)}"
            )
        return outcome

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    async def _embed(self, data: DecisionCreate, confidence: float) -> tuple[Optional[list[float]], TierInfo]:
        deadline = self.tier_detector.embedding_deadline()
        tier = await self.tier_detector.current_tier()
        if tier.tier != 1:
            return None, tier
        embedding_text = build_decision_text(
            {**data.model_dump(), "confidence": confidence}
        )
        try:
            vector = await self.tier_detector.embedding_service.embed_text(
                embedding_text, deadline=deadline
            )
        except DecisionMemoryError as e:
            logger.warning(f"Saving '{data.topic}' without embedding: {e}")
            return None, degraded_tier(f"Embedding failed during save: {e.message}")
        return vector, tier

    async def _parent_confidence(self, data: DecisionCreate) -> float:
        if not data.refined_from:
            return data.confidence
        parents = await self.store.get_many(data.refined_from)
        if not parents:
            return data.confidence
        return blend_confidence(data.confidence, (p.confidence for p in parents.values()))

    async def save(self, payload: Any) -> SaveResult:
        """Validate, store and link a decision.

        The insert, the supersedes edge and old.superseded_by commit together
        or not at all.
        """
        data = validate_decision(payload, self._settings)
        with LogContext(session_id=data.session_id):
            return await self._save(data)

    async def _write(
        self,
        data: DecisionCreate,
        confidence: float,
        embedding: Optional[list[float]],
        tier: TierInfo,
    ) -> Optional[tuple[DecisionRecord, Optional[DecisionRecord], int, ReferenceOutcome]]:
        """One attempt at the save transaction. None means the head moved."""
        record, previous = await self.store.insert(
            data, confidence=confidence, embedding=embedding
        )
        if not await self.store.take_over_head(record, previous):
            return None

        edges_created = 0
        if previous is not None:
            await self.create_edge(
                record.id,
                previous.id,
                RelationshipType.SUPERSEDES,
                f'User changed from "{previous.decision}" to "{record.decision}"',
            )
            edges_created += 1

        references = await self.link_reasoning_references(record.id, data.reasoning)
        edges_created += references.created

        await self.tier_detector.observe(self.session, tier)
        await self.session.commit()
        return record, previous, edges_created, references

    async def _save(self, data: DecisionCreate) -> SaveResult:
        confidence = await self._parent_confidence(data)
        embedding, tier = await self._embed(data, confidence)

        for attempt in range(1, HEAD_TAKEOVER_ATTEMPTS + 1):
            try:
                written = await self._write(data, confidence, embedding, tier)
            except Exception:
                await self.session.rollback()
                raise
            if written is not None:
                break
            await self.session.rollback()
            logger.info(
                f"Head of '{data.topic}' moved during save, retrying "
                f"({attempt}/{HEAD_TAKEOVER_ATTEMPTS})"
            )
        else:
            raise ConstraintViolation(
                f"Topic '{data.topic}' kept changing during save; try again",
                details={"topic": data.topic, "attempts": HEAD_TAKEOVER_ATTEMPTS},
            )

        record, previous, edges_created, references = written
        logger.info(
            f"Saved {record.id} on topic '{record.topic}'"
            + (f", superseding {previous.id}" if previous else "")
        )
        return SaveResult(
            id=record.id,
            supersedes_id=previous.id if previous else None,
            confidence=record.confidence,
            edges_created=edges_created,
            references_failed=references.failed,
            embedded=embedding is not None,
            tier=tier.tier,
            reason=tier.reason,
        )

    # ------------------------------------------------------------------
    # Supersedes chain
    # ------------------------------------------------------------------

    async def supersedes_chain(self, topic: str) -> SupersedesChain:
        """Walk supersedes pointers back from the topic head.

        Terminates on missing parents, on revisiting a node, and after
        supersedes_chain_max_depth steps.
        """
        head = await self.store.get_head(topic)
        if head is None:
            return SupersedesChain(topic=topic)

        newest_first: list[DecisionRecord] = [head]
        visited = {head.id}
        current = head
        max_depth = self._settings.supersedes_chain_max_depth

        while current.supersedes and len(newest_first) <= max_depth:
            if current.supersedes in visited:
                logger.warning(
                    f"Cycle in supersedes chain for topic '{topic}' at {current.supersedes}"
                )
                break
            parent = await self.store.find(current.supersedes)
            if parent is None:
                break
            visited.add(parent.id)
            newest_first.append(parent)
            current = parent

        ordered = list(reversed(newest_first))
        return SupersedesChain(
            topic=topic,
            head_id=head.id,
            depth=len(ordered) - 1,
            chain=[r.id for r in ordered],
            decisions=[Decision.model_validate(r) for r in ordered],
        )

