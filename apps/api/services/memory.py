"""High-level memory operations that combine search, scoring and the graph."""

from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings, get_settings
from models.schemas import (
    ExpandResponse,
    SuggestedDecision,
    SuggestResponse,
    SupersedesChain,
)
from services.graph_builder import GraphBuilder
from services.link_expander import LinkExpander
from services.scorer import HybridScorer
from services.search import SemanticSearchEngine
from services.tier import TierDetector, get_tier_detector
from utils.logging import get_logger

logger = get_logger(__name__)


class DecisionMemory:
    """Facade over one session for the read paths callers use most."""

    def __init__(
        self,
        session: AsyncSession,
        tier_detector: TierDetector | None = None,
        settings: Settings | None = None,
    ):
        self.session = session
        self._settings = settings or get_settings()
        self.tier_detector = tier_detector or get_tier_detector()
        self.search_engine = SemanticSearchEngine(session, self.tier_detector, self._settings)
        self.expander = LinkExpander(session, self._settings)
        self.scorer = HybridScorer(self._settings)
        self.graph = GraphBuilder(session, self.tier_detector, self._settings)

    async def expand(
        self, seed_id: str, depth: int = 1, approved_only: bool = True
    ) -> ExpandResponse:
        """Expand around seed_id with tier metadata. Tier 3 returns no links."""
        tier = await self.tier_detector.current_tier()
        depth = self.expander.clamp_depth(depth)
        links = []
        if tier.tier != 3:
            links = await self.expander.expand(seed_id, depth, approved_only)
        await self.tier_detector.observe(self.session, tier)
        return ExpandResponse(
            seed_id=seed_id,
            depth=depth,
            approved_only=approved_only,
            links=links,
            tier=tier.tier,
            reason=tier.reason,
            degraded_features=tier.degraded_features,
        )

    async def recall(self, topic: str) -> SupersedesChain:
        """Current decision on a topic together with how it got there."""
        return await self.graph.supersedes_chain(topic)

    async def suggest(
        self,
        query: str,
        limit: int | None = None,
        threshold: float | None = None,
        depth: int = 1,
    ) -> SuggestResponse:
        """Search current decisions, re-rank them and attach their approved links."""
        response = await self.search_engine.search(
            query, limit=limit, threshold=threshold, heads_only=True
        )
        edge_counts = await self.expander.approved_edge_counts(r.id for r in response.results)
        ranked = self.scorer.score(response.results, edge_counts)

        suggestions = []
        for result in ranked:
            links = []
            if response.tier != 3:
                links = await self.expander.expand(result.id, depth, approved_only=True)
            suggestions.append(SuggestedDecision(**result.model_dump(), links=links))

        logger.debug(f"Suggested {len(suggestions)} decision(s) for '{query[:50]}'")
        return SuggestResponse(
            query=response.query,
            results=suggestions,
            tier=response.tier,
            reason=response.reason,
            degraded_features=response.degraded_features,
        )
