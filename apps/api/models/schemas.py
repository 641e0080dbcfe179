"""Pydantic schemas for decisions, links, search results, quality reports and checkpoints."""

import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Decision ids look like decision_<topic slug>_<epoch ms>_<suffix>
DECISION_ID_PATTERN = re.compile(r"^decision_[a-z0-9_]+$")

MAX_REASON_LENGTH = 2000


class Outcome(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"
    SUPERSEDED = "superseded"


class DecisionType(str, Enum):
    """Who produced the decision. Assistant insights need user validation."""

    USER_DECISION = "user_decision"
    ASSISTANT_INSIGHT = "assistant_insight"


class RelationshipType(str, Enum):
    SUPERSEDES = "supersedes"
    REFINES = "refines"
    CONTRADICTS = "contradicts"
    BUILDS_ON = "builds_on"
    DEBATES = "debates"
    SYNTHESIZES = "synthesizes"


class CreatedBy(str, Enum):
    USER = "user"
    LLM = "llm"


class LinkAction(str, Enum):
    PROPOSED = "proposed"
    APPROVED = "approved"
    REJECTED = "rejected"
    DEPRECATED = "deprecated"


class Direction(str, Enum):
    OUTGOING = "outgoing"
    INCOMING = "incoming"


# Closed set of edge types; anything else is rejected, never coerced
VALID_RELATIONSHIP_TYPES = frozenset(r.value for r in RelationshipType)

# Only these may go through the propose/approve workflow
PROPOSABLE_RELATIONSHIP_TYPES = frozenset(
    {RelationshipType.REFINES.value, RelationshipType.CONTRADICTS.value}
)


def clamp_confidence(value: float) -> float:
    """Clamp a confidence score into [0, 1]."""
    return max(0.0, min(1.0, float(value)))


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


class DecisionCreate(BaseModel):
    """Input for saving a decision.

    Confidence is clamped rather than rejected so that every stored value
    lands in [0, 1] whatever the caller sends. Length limits come from
    Settings and are checked by validate_decision().
    """

    topic: str = Field(..., min_length=1)
    decision: str = Field(..., min_length=1)
    reasoning: str = Field(..., min_length=1)
    confidence: float = 0.5
    type: DecisionType = DecisionType.USER_DECISION
    outcome: Outcome = Outcome.PENDING
    evidence: list[str] = Field(default_factory=list)
    alternatives: list[str] = Field(default_factory=list)
    risks: Optional[str] = None
    refined_from: list[str] = Field(default_factory=list)
    session_id: Optional[str] = Field(default=None, max_length=100)

    @field_validator("topic", "decision", "reasoning")
    @classmethod
    def strip_required_text(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped

    @field_validator("confidence", mode="after")
    @classmethod
    def clamp(cls, v: float) -> float:
        return clamp_confidence(v)

    @field_validator("evidence", "alternatives")
    @classmethod
    def drop_blank_items(cls, v: list[str]) -> list[str]:
        return [item.strip() for item in v if item and item.strip()]


class Decision(BaseModel):
    """A stored decision as returned to callers. The vector is never exposed."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    topic: str
    decision: str
    reasoning: str
    confidence: float
    outcome: Outcome
    type: DecisionType = DecisionType.USER_DECISION
    evidence: list[str] = Field(default_factory=list)
    alternatives: list[str] = Field(default_factory=list)
    risks: Optional[str] = None
    supersedes: Optional[str] = None
    superseded_by: Optional[str] = None
    refined_from: list[str] = Field(default_factory=list)
    needs_validation: bool = False
    failure_reason: Optional[str] = None
    limitation: Optional[str] = None
    session_id: Optional[str] = None
    created_at: int
    updated_at: int

    @field_validator("evidence", "alternatives", "refined_from", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return v or []


class OutcomeUpdate(BaseModel):
    """Outcome change. Enum membership is checked by the store, not here."""

    outcome: str
    failure_reason: Optional[str] = Field(default=None, max_length=MAX_REASON_LENGTH)
    limitation: Optional[str] = Field(default=None, max_length=MAX_REASON_LENGTH)


class SaveResult(BaseModel):
    id: str
    supersedes_id: Optional[str] = None
    confidence: float
    edges_created: int = 0
    references_failed: int = 0
    embedded: bool = False
    tier: int
    reason: str


class SupersedesChain(BaseModel):
    """Evolution of one topic, oldest decision first."""

    topic: str
    head_id: Optional[str] = None
    depth: int = 0
    chain: list[str] = Field(default_factory=list)
    decisions: list[Decision] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Tiers
# ---------------------------------------------------------------------------


class TierInfo(BaseModel):
    """Capability level attached to every read response."""

    tier: int = Field(..., ge=1, le=3)
    reason: str
    degraded_features: list[str] = Field(default_factory=list)

    @property
    def is_degraded(self) -> bool:
        return self.tier != 1


class TierTransition(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    timestamp: int
    from_tier: Optional[int] = None
    to_tier: int
    reason: str
    feature_impact: str


class TierStatus(TierInfo):
    description: str
    transitions: list[TierTransition] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


class SearchResult(Decision):
    similarity: float
    tier: int
    reason: str
    recency: Optional[float] = None
    graph_weight: Optional[float] = None
    final_score: Optional[float] = None


class SearchResponse(BaseModel):
    query: str
    results: list[SearchResult] = Field(default_factory=list)
    tier: int
    reason: str
    degraded_features: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Links
# ---------------------------------------------------------------------------


class Link(BaseModel):
    """A stored edge between two decisions."""

    model_config = ConfigDict(from_attributes=True)

    from_id: str
    to_id: str
    relationship: RelationshipType
    reason: Optional[str] = None
    weight: float = 1.0
    created_by: CreatedBy
    approved: bool
    created_at: int
    approved_at: Optional[int] = None


class LinkProposal(BaseModel):
    from_id: str = Field(..., min_length=1, max_length=200)
    to_id: str = Field(..., min_length=1, max_length=200)
    relationship: str
    reason: str = Field(..., min_length=1, max_length=MAX_REASON_LENGTH)


class LinkReview(BaseModel):
    """Identifies a proposed link to approve or reject."""

    from_id: str = Field(..., min_length=1, max_length=200)
    to_id: str = Field(..., min_length=1, max_length=200)
    relationship: str
    reason: Optional[str] = Field(default=None, max_length=MAX_REASON_LENGTH)


class PendingLink(Link):
    from_topic: Optional[str] = None
    to_topic: Optional[str] = None


class ExpandedLink(BaseModel):
    from_id: str
    to_id: str
    relationship: RelationshipType
    reason: Optional[str] = None
    direction: Direction
    depth: int
    approved: bool


class ExpandResponse(BaseModel):
    seed_id: str
    depth: int
    approved_only: bool
    links: list[ExpandedLink] = Field(default_factory=list)
    tier: int
    reason: str
    degraded_features: list[str] = Field(default_factory=list)


class LinkAudit(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    from_id: str
    to_id: str
    relationship: RelationshipType
    action: LinkAction
    actor: CreatedBy
    reason: Optional[str] = None
    created_at: int


class LinkCounts(BaseModel):
    outgoing: int = 0
    incoming: int = 0
    total: int = 0


class SuggestedDecision(SearchResult):
    links: list[ExpandedLink] = Field(default_factory=list)


class SuggestResponse(SearchResponse):
    results: list[SuggestedDecision] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Quality
# ---------------------------------------------------------------------------


class QualityFormat(str, Enum):
    JSON = "json"
    MARKDOWN = "markdown"


class QualityThresholds(BaseModel):
    """Targets as ratios in [0, 1]."""

    narrative_coverage: float = Field(default=0.8, ge=0.0, le=1.0)
    link_coverage: float = Field(default=0.7, ge=0.0, le=1.0)
    rich_reason_ratio: float = Field(default=0.7, ge=0.0, le=1.0)


class Coverage(BaseModel):
    total_decisions: int = 0
    complete_narratives: int = 0
    decisions_with_links: int = 0
    narrative_coverage: float = 0.0
    link_coverage: float = 0.0


class NarrativeQuality(BaseModel):
    """Share of decisions with each narrative field filled."""

    evidence: float = 0.0
    alternatives: float = 0.0
    risks: float = 0.0


class LinkQuality(BaseModel):
    total_links: int = 0
    rich_links: int = 0
    approved_links: int = 0
    rich_reason_ratio: float = 0.0
    approved_ratio: float = 0.0


class Quality(BaseModel):
    narrative: NarrativeQuality = Field(default_factory=NarrativeQuality)
    links: LinkQuality = Field(default_factory=LinkQuality)


class Recommendation(BaseModel):
    type: str
    message: str
    target: float
    current: float


class QualityReport(BaseModel):
    generated_at: int
    coverage: Coverage
    quality: Quality
    thresholds: QualityThresholds
    recommendations: list[Recommendation] = Field(default_factory=list)
    # Rendered report, filled only when markdown was requested
    markdown: Optional[str] = None


class AutoLinkScan(BaseModel):
    total_links: int = 0
    auto_links: int = 0
    protected_links: int = 0
    deletion_targets: int = 0
    deletion_target_list: list[Link] = Field(default_factory=list)


class AutoLinkDeprecation(BaseModel):
    dry_run: bool
    deprecated: int = 0
    protected: int = 0
    total: int = 0
    auto_link_ratio: float = 0.0
    links: list[Link] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Checkpoints
# ---------------------------------------------------------------------------


class CheckpointCreate(BaseModel):
    summary: str = Field(..., min_length=1)
    open_items: list[str] = Field(default_factory=list)
    next_steps: Optional[str] = None

    @field_validator("summary")
    @classmethod
    def summary_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v


class Checkpoint(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    summary: str
    open_items: list[str] = Field(default_factory=list)
    next_steps: Optional[str] = None
    timestamp: int
    status: str = "active"

    @field_validator("open_items", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return v or []
