"""Tier detection and transition logging.

Tiers describe how much of the memory is working right now:

- Tier 1: embedding provider healthy, vector search available
- Tier 2: provider unavailable, keyword matching only
- Tier 3: memory disabled in configuration

The tier is never stored as mutable state. classify_tier() derives it from
the memoized provider probe and the disable flags; only changes between two
consecutive observations are appended to the tier_transitions table.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings, get_settings
from models.schemas import TierInfo, TierStatus, TierTransition
from models.store import TierTransitionRecord, now_ms
from services.embeddings import EmbeddingService, get_embedding_service
from utils.logging import get_logger

logger = get_logger(__name__)

TIER_DESCRIPTIONS = {
    1: "Full Features - All systems operational",
    2: "Degraded Mode - Some features unavailable",
    3: "Disabled - Decision memory is turned off",
}

DEGRADED_FEATURES = {
    1: [],
    2: ["vector_search", "semantic_similarity", "decision_embeddings"],
    3: [
        "vector_search",
        "semantic_similarity",
        "decision_embeddings",
        "keyword_search",
        "graph_expansion",
    ],
}

# Rough accuracy/feature impact logged with each transition
FEATURE_IMPACT = {
    1: "All features available",
    2: "Semantic search replaced by keyword matching (~40% lower recall on paraphrased queries)",
    3: "Search and graph expansion return no results",
}


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of the one-time provider health probe."""

    healthy: bool
    reason: str


def classify_tier(
    probe: Optional[ProbeResult],
    memory_disabled: bool = False,
    embeddings_disabled: bool = False,
) -> TierInfo:
    """Derive the tier from the probe result and the disable flags."""
    if memory_disabled:
        tier, reason = 3, "Decision memory disabled in configuration"
    elif embeddings_disabled:
        tier, reason = 2, "Embeddings disabled in configuration"
    elif probe is None or not probe.healthy:
        detail = probe.reason if probe else "provider not probed"
        tier, reason = 2, f"Embeddings unavailable: {detail}"
    else:
        tier, reason = 1, "Full features available"

    return TierInfo(tier=tier, reason=reason, degraded_features=list(DEGRADED_FEATURES[tier]))


def degraded_tier(reason: str) -> TierInfo:
    """Tier 2 for a single call whose provider request failed or timed out."""
    return TierInfo(tier=2, reason=reason, degraded_features=list(DEGRADED_FEATURES[2]))


class TierDetector:
    """Memoizes the provider probe and records tier transitions."""

    def __init__(
        self,
        embedding_service: EmbeddingService | None = None,
        settings: Settings | None = None,
    ):
        self._settings = settings or get_settings()
        self._embedding_service = embedding_service
        self._probe_task: asyncio.Task | None = None
        self._last_logged_tier: Optional[int] = None

    @property
    def embedding_service(self) -> EmbeddingService:
        if self._embedding_service is None:
            self._embedding_service = get_embedding_service()
        return self._embedding_service

    async def _run_probe(self) -> ProbeResult:
        try:
            await self.embedding_service.probe()
        except Exception as e:
            logger.warning(f"Embedding provider probe failed: {e}")
            return ProbeResult(healthy=False, reason=str(e))
        logger.info("Embedding provider probe succeeded")
        return ProbeResult(healthy=True, reason="provider healthy")

    async def probe(self) -> ProbeResult:
        """Probe the provider once per process; concurrent callers share the probe."""
        if self._probe_task is None:
            self._probe_task = asyncio.ensure_future(self._run_probe())
        return await asyncio.shield(self._probe_task)

    def embedding_deadline(self) -> float:
        """Deadline for an operation that may probe and then embed.

        Taken before current_tier() so a first-call probe is charged to the
        same budget as the embedding that follows it.
        """
        return asyncio.get_running_loop().time() + self._settings.embedding_timeout

    async def current_tier(self) -> TierInfo:
        settings = self._settings
        if settings.memory_disabled or settings.embeddings_disabled:
            # No point waking the provider when config already decides
            return classify_tier(None, settings.memory_disabled, settings.embeddings_disabled)
        return classify_tier(await self.probe())

    async def observe(self, session: AsyncSession, info: TierInfo) -> None:
        """Append a transition row if the tier differs from the last one logged."""
        previous = self._last_logged_tier
        if previous is None:
            result = await session.execute(
                select(TierTransitionRecord.to_tier)
                .order_by(TierTransitionRecord.id.desc())
                .limit(1)
            )
            previous = result.scalar_one_or_none()

        if previous == info.tier:
            self._last_logged_tier = previous
            return

        session.add(
            TierTransitionRecord(
                timestamp=now_ms(),
                from_tier=previous,
                to_tier=info.tier,
                reason=info.reason,
                feature_impact=FEATURE_IMPACT[info.tier],
            )
        )
        await session.flush()
        self._last_logged_tier = info.tier

        if previous is None:
            logger.info(f"Initial tier {info.tier}: {info.reason}")
        else:
            logger.warning(f"Tier transition {previous} -> {info.tier}: {info.reason}")

    async def list_transitions(self, session: AsyncSession, limit: int = 20) -> list[TierTransition]:
        result = await session.execute(
            select(TierTransitionRecord)
            .order_by(TierTransitionRecord.id.desc())
            .limit(limit)
        )
        return [TierTransition.model_validate(row) for row in result.scalars()]

    async def status(self, session: AsyncSession, limit: int = 20) -> TierStatus:
        info = await self.current_tier()
        await self.observe(session, info)
        return TierStatus(
            **info.model_dump(),
            description=TIER_DESCRIPTIONS[info.tier],
            transitions=await self.list_transitions(session, limit),
        )


# Singleton instance
_tier_detector: TierDetector | None = None


def get_tier_detector() -> TierDetector:
    """Get the tier detector singleton."""
    global _tier_detector
    if _tier_detector is None:
        _tier_detector = TierDetector()
    return _tier_detector


def reset_tier_detector() -> None:
    global _tier_detector
    _tier_detector = None
