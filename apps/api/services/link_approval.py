"""Propose / approve / reject workflow for refines and contradicts links.

Proposed links are stored unapproved and are invisible to approved-only
expansion until a user approves them. Rejection deletes the link. Every
state change appends a row to link_audit_log, which is also how a second
review of an already rejected link is told apart from an unknown one.
"""

from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.errors import ConstraintViolation, NotFound, ValidationError
from models.schemas import (
    PROPOSABLE_RELATIONSHIP_TYPES,
    CreatedBy,
    Link,
    LinkAction,
    LinkAudit,
    PendingLink,
    RelationshipType,
)
from models.store import DecisionEdge, LinkAuditEntry, now_ms
from services.decision_store import DecisionStore
from services.graph_builder import add_edge, find_edge, validate_relationship
from utils.logging import get_logger

logger = get_logger(__name__)


def validate_proposable(value: Any) -> RelationshipType:
    relationship = validate_relationship(value)
    if relationship.value not in PROPOSABLE_RELATIONSHIP_TYPES:
        allowed = ", ".join(sorted(PROPOSABLE_RELATIONSHIP_TYPES))
        raise ValidationError(
            "relationship",
            f"only {allowed} links can be proposed",
            relationship.value,
        )
    return relationship


class LinkApproval:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.store = DecisionStore(session)

    def _audit(
        self,
        from_id: str,
        to_id: str,
        relationship: RelationshipType,
        action: LinkAction,
        actor: CreatedBy,
        reason: Optional[str] = None,
    ) -> None:
        self.session.add(
            LinkAuditEntry(
                from_id=from_id,
                to_id=to_id,
                relationship=relationship,
                action=action,
                actor=actor,
                reason=reason,
                created_at=now_ms(),
            )
        )

    async def _last_action(
        self, from_id: str, to_id: str, relationship: RelationshipType
    ) -> Optional[LinkAction]:
        result = await self.session.execute(
            select(LinkAuditEntry.action)
            .where(
                LinkAuditEntry.from_id == from_id,
                LinkAuditEntry.to_id == to_id,
                LinkAuditEntry.relationship == relationship,
            )
            .order_by(LinkAuditEntry.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _reviewable(
        self, from_id: str, to_id: str, relationship: Any
    ) -> DecisionEdge:
        """Load a pending link or explain why it cannot be reviewed."""
        rel = validate_relationship(relationship)
        edge = await find_edge(self.session, from_id, to_id, rel)
        if edge is None:
            if await self._last_action(from_id, to_id, rel) == LinkAction.REJECTED:
                raise ConstraintViolation(
                    "Link was already rejected",
                    {"from_id": from_id, "to_id": to_id, "relationship": rel.value},
                )
            raise NotFound("link", f"{from_id} -[{rel.value}]-> {to_id}")
        if edge.approved:
            raise ConstraintViolation(
                "Link is already approved",
                {"from_id": from_id, "to_id": to_id, "relationship": rel.value},
            )
        return edge

    async def propose(
        self, from_id: str, to_id: str, relationship: Any, reason: str
    ) -> Link:
        """Store an unapproved link suggested by the assistant.

        Raises:
            ValidationError: relationship not proposable or blank reason
            NotFound: either decision does not exist
            ConstraintViolation: self-loop or the link already exists
        """
        rel = validate_proposable(relationship)
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("reason", "reason must not be blank")
        for decision_id in (from_id, to_id):
            if not await self.store.exists(decision_id):
                raise NotFound("decision", decision_id)

        try:
            edge = await add_edge(
                self.session,
                from_id,
                to_id,
                rel,
                reason,
                created_by=CreatedBy.LLM,
                approved=False,
            )
            self._audit(from_id, to_id, rel, LinkAction.PROPOSED, CreatedBy.LLM, reason)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(f"Proposed {rel.value} link {from_id} -> {to_id}")
        return Link.model_validate(edge)

    async def approve(
        self,
        from_id: str,
        to_id: str,
        relationship: Any,
        reason: Optional[str] = None,
    ) -> Link:
        edge = await self._reviewable(from_id, to_id, relationship)
        edge.approved = True
        edge.approved_at = now_ms()
        self._audit(
            from_id, to_id, edge.relationship, LinkAction.APPROVED, CreatedBy.USER, reason
        )
        await self.session.commit()

        logger.info(f"Approved {edge.relationship.value} link {from_id} -> {to_id}")
        return Link.model_validate(edge)

    async def reject(
        self,
        from_id: str,
        to_id: str,
        relationship: Any,
        reason: Optional[str] = None,
    ) -> None:
        edge = await self._reviewable(from_id, to_id, relationship)
        rel = edge.relationship
        await self.session.delete(edge)
        self._audit(from_id, to_id, rel, LinkAction.REJECTED, CreatedBy.USER, reason)
        await self.session.commit()

        logger.info(f"Rejected {rel.value} link {from_id} -> {to_id}")

    async def pending_links(self, limit: int = 50) -> list[PendingLink]:
        """Unapproved links, oldest first, with both topics for display."""
        result = await self.session.execute(
            select(DecisionEdge)
            .where(DecisionEdge.approved.is_(False))
            .order_by(DecisionEdge.created_at, DecisionEdge.from_id, DecisionEdge.to_id)
            .limit(limit)
        )
        edges = list(result.scalars())
        decisions = await self.store.get_many(
            [e.from_id for e in edges] + [e.to_id for e in edges]
        )

        pending = []
        for edge in edges:
            link = PendingLink.model_validate(edge)
            source = decisions.get(edge.from_id)
            target = decisions.get(edge.to_id)
            link.from_topic = source.topic if source else None
            link.to_topic = target.topic if target else None
            pending.append(link)
        return pending

    async def audit_log(
        self, decision_id: Optional[str] = None, limit: int = 100
    ) -> list[LinkAudit]:
        query = select(LinkAuditEntry)
        if decision_id:
            query = query.where(
                (LinkAuditEntry.from_id == decision_id) | (LinkAuditEntry.to_id == decision_id)
            )
        result = await self.session.execute(
            query.order_by(LinkAuditEntry.id.desc()).limit(limit)
        )
        return [LinkAudit.model_validate(row) for row in result.scalars()]
