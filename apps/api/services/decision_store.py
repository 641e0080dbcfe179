"""Durable store for decisions.

Decisions are created only through GraphBuilder.save(), which calls
insert() inside its own transaction. The store exposes the reads every other
service needs plus update_outcome(), the one mutation callers may request
directly.
"""

import re
import secrets
import string
from typing import Any, Iterable, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import literal_column, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings, get_settings
from models.errors import NotFound, ValidationError
from models.schemas import (
    Decision,
    DecisionCreate,
    DecisionType,
    Outcome,
    clamp_confidence,
)
from models.store import DecisionRecord, now_ms
from utils.logging import get_logger

logger = get_logger(__name__)

TOPIC_SLUG_MAX_LENGTH = 50
ID_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
ID_GENERATION_ATTEMPTS = 5

# Accepted spellings beyond the enum values themselves
OUTCOME_ALIASES = {"failed": Outcome.FAILURE}


def topic_slug(topic: str) -> str:
    slug = re.sub(r"\s+", "_", topic.strip().lower())
    slug = re.sub(r"[^a-z0-9_]", "", slug)
    return slug[:TOPIC_SLUG_MAX_LENGTH]


def generate_decision_id(topic: str, timestamp_ms: Optional[int] = None) -> str:
    """decision_{topic slug}_{epoch ms}_{4 random chars}"""
    timestamp_ms = timestamp_ms if timestamp_ms is not None else now_ms()
    suffix = "".join(secrets.choice(ID_SUFFIX_ALPHABET) for _ in range(4))
    return f"decision_{topic_slug(topic)}_{timestamp_ms}_{suffix}"


def check_length_limits(data: DecisionCreate, settings: Settings) -> None:
    limits = (
        ("topic", settings.max_topic_length),
        ("decision", settings.max_text_length),
        ("reasoning", settings.max_text_length),
        ("risks", settings.max_text_length),
    )
    for name, limit in limits:
        value = getattr(data, name)
        if value and len(value) > limit:
            raise ValidationError(name, f"{name}: must be at most {limit} characters")


def validate_decision(payload: Any, settings: Settings | None = None) -> DecisionCreate:
    """Validate a save payload, raising the domain ValidationError on failure."""
    if isinstance(payload, DecisionCreate):
        data = payload
    else:
        try:
            data = DecisionCreate.model_validate(payload)
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or "decision"
            received = first.get("input")
            if not isinstance(received, (str, int, float, bool)):
                received = None
            raise ValidationError(
                field, f"{field}: {first.get('msg', 'invalid value')}", received
            ) from e
    check_length_limits(data, settings or get_settings())
    return data


def parse_outcome(value: Any) -> Outcome:
    if isinstance(value, Outcome):
        return value
    normalized = str(value or "").strip().lower()
    if normalized in OUTCOME_ALIASES:
        return OUTCOME_ALIASES[normalized]
    try:
        return Outcome(normalized)
    except ValueError:
        allowed = ", ".join(o.value for o in Outcome)
        raise ValidationError("outcome", f"outcome must be one of {allowed}", value) from None


class DecisionStore:
    """Decision CRUD and topic lookup over one AsyncSession."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find(self, decision_id: str) -> Optional[DecisionRecord]:
        return await self.session.get(DecisionRecord, decision_id)

    async def get_record(self, decision_id: str) -> DecisionRecord:
        record = await self.find(decision_id)
        if record is None:
            raise NotFound("decision", decision_id)
        return record

    async def get(self, decision_id: str) -> Decision:
        return Decision.model_validate(await self.get_record(decision_id))

    async def get_many(self, decision_ids: Iterable[str]) -> dict[str, DecisionRecord]:
        ids = list(set(decision_ids))
        if not ids:
            return {}
        result = await self.session.execute(
            select(DecisionRecord).where(DecisionRecord.id.in_(ids))
        )
        return {record.id: record for record in result.scalars()}

    async def exists(self, decision_id: str) -> bool:
        result = await self.session.execute(
            select(DecisionRecord.id).where(DecisionRecord.id == decision_id)
        )
        return result.scalar_one_or_none() is not None

    async def get_head(self, topic: str) -> Optional[DecisionRecord]:
        """Current head for a topic: the decision nothing has superseded yet."""
        result = await self.session.execute(
            select(DecisionRecord)
            .where(DecisionRecord.topic == topic, DecisionRecord.superseded_by.is_(None))
            .order_by(DecisionRecord.created_at.desc(), literal_column("decisions.rowid").desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_by_topic(self, topic: str) -> Optional[Decision]:
        record = await self.get_head(topic)
        return Decision.model_validate(record) if record else None

    async def list_recent(self, limit: int = 20, heads_only: bool = False) -> list[Decision]:
        """Most recent decisions first."""
        query = select(DecisionRecord)
        if heads_only:
            query = query.where(DecisionRecord.superseded_by.is_(None))
        query = query.order_by(
            DecisionRecord.created_at.desc(), literal_column("decisions.rowid").desc()
        ).limit(max(1, limit))
        result = await self.session.execute(query)
        return [Decision.model_validate(record) for record in result.scalars()]

    async def with_embeddings(self, heads_only: bool = False) -> list[DecisionRecord]:
        query = select(DecisionRecord).where(DecisionRecord.embedding.is_not(None))
        if heads_only:
            query = query.where(DecisionRecord.superseded_by.is_(None))
        result = await self.session.execute(query)
        return list(result.scalars())

    async def keyword_matches(
        self, terms: list[str], heads_only: bool = False, limit: int = 50
    ) -> list[DecisionRecord]:
        """Case-insensitive substring match of any term over topic, decision, reasoning."""
        terms = [t.lower() for t in terms if t]
        if not terms:
            return []

        conditions = []
        for term in terms:
            for column in (DecisionRecord.topic, DecisionRecord.decision, DecisionRecord.reasoning):
                conditions.append(column.icontains(term, autoescape=True))

        query = select(DecisionRecord).where(or_(*conditions))
        if heads_only:
            query = query.where(DecisionRecord.superseded_by.is_(None))
        query = query.order_by(
            DecisionRecord.created_at.desc(), literal_column("decisions.rowid").desc()
        ).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _unique_id(self, topic: str, timestamp_ms: int) -> str:
        for _ in range(ID_GENERATION_ATTEMPTS):
            candidate = generate_decision_id(topic, timestamp_ms)
            if not await self.exists(candidate):
                return candidate
        # Astronomically unlikely; a later timestamp gives a fresh id space
        return generate_decision_id(topic, timestamp_ms + 1)

    async def insert(
        self,
        data: DecisionCreate,
        *,
        confidence: Optional[float] = None,
        embedding: Optional[list[float]] = None,
        created_at: Optional[int] = None,
    ) -> tuple[DecisionRecord, Optional[DecisionRecord]]:
        """Insert a new decision and return it with the previous topic head.

        Does not commit; the caller owns the transaction so the supersedes
        link can be written atomically with the insert.
        """
        timestamp = created_at if created_at is not None else now_ms()
        previous = await self.get_head(data.topic)

        record = DecisionRecord(
            id=await self._unique_id(data.topic, timestamp),
            topic=data.topic,
            decision=data.decision,
            reasoning=data.reasoning,
            confidence=clamp_confidence(data.confidence if confidence is None else confidence),
            outcome=data.outcome,
            type=data.type,
            evidence=data.evidence or None,
            alternatives=data.alternatives or None,
            risks=data.risks,
            supersedes=previous.id if previous else None,
            superseded_by=None,
            refined_from=data.refined_from or None,
            embedding=embedding,
            needs_validation=data.type == DecisionType.ASSISTANT_INSIGHT,
            session_id=data.session_id,
            created_at=timestamp,
            updated_at=timestamp,
        )
        self.session.add(record)
        await self.session.flush()
        return record, previous

    async def other_heads(self, topic: str, exclude_id: str) -> list[str]:
        result = await self.session.execute(
            select(DecisionRecord.id).where(
                DecisionRecord.topic == topic,
                DecisionRecord.superseded_by.is_(None),
                DecisionRecord.id != exclude_id,
            )
        )
        return list(result.scalars())

    async def mark_superseded(self, old_id: str, new_id: str) -> bool:
        """Point old at new, but only while old is still the head.

        Returns False when another save already took the head over.
        """
        result = await self.session.execute(
            update(DecisionRecord)
            .where(DecisionRecord.id == old_id, DecisionRecord.superseded_by.is_(None))
            .values(superseded_by=new_id, updated_at=now_ms())
        )
        return result.rowcount == 1

    async def take_over_head(
        self, record: DecisionRecord, previous: Optional[DecisionRecord]
    ) -> bool:
        """Make a freshly inserted record the only head of its topic.

        Runs after insert() has flushed, so the transaction already holds the
        SQLite write lock and sees every committed head. False means a
        concurrent save moved the head since insert() read it; the caller
        rolls back and tries again.
        """
        expected = [previous.id] if previous is not None else []
        if await self.other_heads(record.topic, record.id) != expected:
            return False
        if previous is None:
            return True
        return await self.mark_superseded(previous.id, record.id)

    async def update_outcome(
        self,
        decision_id: str,
        outcome: Any,
        failure_reason: Optional[str] = None,
        limitation: Optional[str] = None,
    ) -> Decision:
        """Record how a decision turned out. Commits on success."""
        parsed = parse_outcome(outcome)
        failure_reason = failure_reason.strip() if failure_reason else None
        if parsed == Outcome.FAILURE and not failure_reason:
            raise ValidationError(
                "failure_reason", "failure_reason is required when outcome is failure"
            )

        record = await self.get_record(decision_id)
        record.outcome = parsed
        record.failure_reason = failure_reason
        record.limitation = limitation.strip() if limitation else None
        record.confidence = clamp_confidence(record.confidence)
        record.updated_at = now_ms()
        await self.session.commit()

        logger.info(f"Outcome of {decision_id} set to {parsed.value}")
        return Decision.model_validate(record)
