import time
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from db.sqlite import Base
from models.schemas import (
    CreatedBy,
    DecisionType,
    LinkAction,
    Outcome,
    RelationshipType,
)


def now_ms() -> int:
    """Current time as epoch milliseconds, the unit every table stores."""
    return int(time.time() * 1000)


def _enum_column(enum_cls):
    # Stored by value with a CHECK constraint, so the closed sets hold in SQLite too
    return Enum(
        enum_cls,
        native_enum=False,
        create_constraint=True,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class DecisionRecord(Base):
    __tablename__ = "decisions"
    __table_args__ = (
        CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_confidence_range"),
        Index("ix_decisions_topic_head", "topic", "superseded_by"),
    )

    id: Mapped[str] = mapped_column(String(200), primary_key=True)
    topic: Mapped[str] = mapped_column(String(200), index=True)
    decision: Mapped[str] = mapped_column(Text)
    reasoning: Mapped[str] = mapped_column(Text)
    confidence: Mapped[float] = mapped_column(Float, default=0.5)
    outcome: Mapped[Outcome] = mapped_column(_enum_column(Outcome), default=Outcome.PENDING)
    type: Mapped[DecisionType] = mapped_column(
        _enum_column(DecisionType), default=DecisionType.USER_DECISION
    )
    evidence: Mapped[Optional[list]] = mapped_column(JSON(none_as_null=True), nullable=True)
    alternatives: Mapped[Optional[list]] = mapped_column(JSON(none_as_null=True), nullable=True)
    risks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    supersedes: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    superseded_by: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    refined_from: Mapped[Optional[list]] = mapped_column(JSON(none_as_null=True), nullable=True)
    # Present only when the decision was saved under Tier 1
    embedding: Mapped[Optional[list]] = mapped_column(JSON(none_as_null=True), nullable=True)
    needs_validation: Mapped[bool] = mapped_column(Boolean, default=False)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    limitation: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[int] = mapped_column(BigInteger, default=now_ms, index=True)
    updated_at: Mapped[int] = mapped_column(BigInteger, default=now_ms, onupdate=now_ms)


class DecisionEdge(Base):
    __tablename__ = "decision_edges"
    __table_args__ = (
        CheckConstraint("weight >= 0 AND weight <= 1", name="ck_edge_weight_range"),
        Index("ix_decision_edges_to", "to_id"),
    )

    from_id: Mapped[str] = mapped_column(
        String(200), ForeignKey("decisions.id", ondelete="CASCADE"), primary_key=True
    )
    to_id: Mapped[str] = mapped_column(
        String(200), ForeignKey("decisions.id", ondelete="CASCADE"), primary_key=True
    )
    relationship: Mapped[RelationshipType] = mapped_column(
        _enum_column(RelationshipType), primary_key=True
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    weight: Mapped[float] = mapped_column(Float, default=1.0)
    created_by: Mapped[CreatedBy] = mapped_column(_enum_column(CreatedBy), default=CreatedBy.USER)
    approved: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[int] = mapped_column(BigInteger, default=now_ms)
    approved_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)


class LinkAuditEntry(Base):
    """Append-only history of the link approval workflow."""

    __tablename__ = "link_audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    from_id: Mapped[str] = mapped_column(String(200), index=True)
    to_id: Mapped[str] = mapped_column(String(200))
    relationship: Mapped[RelationshipType] = mapped_column(_enum_column(RelationshipType))
    action: Mapped[LinkAction] = mapped_column(_enum_column(LinkAction))
    actor: Mapped[CreatedBy] = mapped_column(_enum_column(CreatedBy))
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[int] = mapped_column(BigInteger, default=now_ms)


class TierTransitionRecord(Base):
    """Append-only log of tier changes. The tier itself is never stored."""

    __tablename__ = "tier_transitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[int] = mapped_column(BigInteger, default=now_ms, index=True)
    from_tier: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    to_tier: Mapped[int] = mapped_column(Integer)
    reason: Mapped[str] = mapped_column(Text)
    feature_impact: Mapped[str] = mapped_column(Text)


class CheckpointRecord(Base):
    __tablename__ = "checkpoints"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    summary: Mapped[str] = mapped_column(Text)
    open_items: Mapped[Optional[list]] = mapped_column(JSON(none_as_null=True), nullable=True)
    next_steps: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[int] = mapped_column(BigInteger, default=now_ms, index=True)
    status: Mapped[str] = mapped_column(String(20), default="active")
