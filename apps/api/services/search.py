"""Tier-aware decision search.

Tier 1 embeds the query and ranks stored vectors by cosine similarity.
Tier 2 matches the query and its words against topic, decision and
reasoning. Tier 3 returns nothing. A provider failure or timeout while
embedding the query downgrades that one call to Tier 2; the reason is
reported on the response and on every result.
"""

import re
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings, get_settings
from models.errors import ProviderUnavailable, Timeout
from models.schemas import Decision, SearchResponse, SearchResult, TierInfo
from models.store import DecisionRecord
from services.decision_store import DecisionStore
from services.tier import TierDetector, degraded_tier, get_tier_detector
from utils.logging import get_logger
from utils.vectors import cosine_similarity

logger = get_logger(__name__)

MIN_KEYWORD_LENGTH = 3
KEYWORD_SIMILARITY = 1.0


def keyword_terms(query: str) -> list[str]:
    """The whole query plus every word of at least MIN_KEYWORD_LENGTH characters."""
    query = query.strip().lower()
    if not query:
        return []
    terms = [query]
    for word in re.split(r"\s+", query):
        if len(word) >= MIN_KEYWORD_LENGTH and word not in terms:
            terms.append(word)
    return terms


def to_result(record: DecisionRecord, similarity: float, tier: TierInfo) -> SearchResult:
    decision = Decision.model_validate(record)
    return SearchResult(
        **decision.model_dump(),
        similarity=similarity,
        tier=tier.tier,
        reason=tier.reason,
    )


class SemanticSearchEngine:
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

    async def _vector_search(
        self,
        query_vector: list[float],
        limit: int,
        threshold: float,
        heads_only: bool,
        tier: TierInfo,
    ) -> list[SearchResult]:
        scored: list[tuple[float, DecisionRecord]] = []
        for record in await self.store.with_embeddings(heads_only=heads_only):
            similarity = cosine_similarity(query_vector, record.embedding)
            if similarity >= threshold:
                scored.append((similarity, record))
        scored.sort(key=lambda pair: (pair[0], pair[1].created_at), reverse=True)
        return [to_result(record, similarity, tier) for similarity, record in scored[:limit]]

    async def _keyword_search(
        self, query: str, limit: int, heads_only: bool, tier: TierInfo
    ) -> list[SearchResult]:
        records: Iterable[DecisionRecord] = await self.store.keyword_matches(
            keyword_terms(query), heads_only=heads_only, limit=limit
        )
        return [to_result(record, KEYWORD_SIMILARITY, tier) for record in records]

    async def search(
        self,
        query: str,
        limit: int | None = None,
        threshold: float | None = None,
        heads_only: bool = False,
    ) -> SearchResponse:
        """Search decisions at the best tier currently available.

        Never raises for zero matches or for provider trouble; both show up
        in the response instead.
        """
        limit = self._settings.search_default_limit if limit is None else limit
        threshold = self._settings.search_default_threshold if threshold is None else threshold
        limit = max(1, int(limit))

        deadline = self.tier_detector.embedding_deadline()
        tier = await self.tier_detector.current_tier()
        results: list[SearchResult] = []

        if tier.tier == 1:
            try:
                query_vector = await self.tier_detector.embedding_service.embed_text(
                    query, deadline=deadline
                )
            except (ProviderUnavailable, Timeout) as e:
                logger.warning(f"Query embedding failed, using keyword search: {e}")
                tier = degraded_tier(f"Embedding failed during search: {e.message}")
            else:
                results = await self._vector_search(
                    query_vector, limit, threshold, heads_only, tier
                )

        if tier.tier == 2:
            results = await self._keyword_search(query, limit, heads_only, tier)

        await self.tier_detector.observe(self.session, tier)
        logger.debug(f"Search '{query[:50]}' at tier {tier.tier}: {len(results)} result(s)")
        return SearchResponse(
            query=query,
            results=results,
            tier=tier.tier,
            reason=tier.reason,
            degraded_features=tier.degraded_features,
        )
