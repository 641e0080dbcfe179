"""Hybrid scoring of search candidates.

final = similarity*w_sim + recency*w_rec + graph_weight*w_graph

Recency decays exponentially with a configurable half-life, so it is strictly
monotonic in age. Graph weight grows with the number of approved edges a
decision has, saturating at graph_weight_cap.
"""

from typing import Optional, Sequence

from config import Settings, get_settings
from models.schemas import SearchResult
from models.store import now_ms
from utils.logging import get_logger

logger = get_logger(__name__)

MS_PER_DAY = 86_400_000


def recency_score(created_at_ms: int, now: int, half_life_days: float) -> float:
    """0.5 ** (age / half_life). Future timestamps count as age zero."""
    if half_life_days <= 0:
        return 1.0
    age_days = max(0, now - created_at_ms) / MS_PER_DAY
    return 0.5 ** (age_days / half_life_days)


def graph_weight(edge_count: int, cap: int) -> float:
    if cap <= 0:
        return 0.0
    return min(max(edge_count, 0) / cap, 1.0)


class HybridScorer:
    """Re-ranks candidates by similarity, recency and graph connectivity."""

    def __init__(self, settings: Settings | None = None):
        settings = settings or get_settings()
        self.weight_similarity = settings.score_weight_similarity
        self.weight_recency = settings.score_weight_recency
        self.weight_graph = settings.score_weight_graph
        self.half_life_days = settings.recency_half_life_days
        self.graph_cap = settings.graph_weight_cap

    def final_score(self, similarity: float, recency: float, weight: float) -> float:
        return (
            similarity * self.weight_similarity
            + recency * self.weight_recency
            + weight * self.weight_graph
        )

    def score(
        self,
        candidates: Sequence[SearchResult],
        edge_counts: Optional[dict[str, int]] = None,
        now: Optional[int] = None,
    ) -> list[SearchResult]:
        """Return scored copies sorted by final score, ties broken by recency.

        Args:
            candidates: Search results to rank
            edge_counts: Approved edge count per decision id; missing ids count as 0
            now: Reference time in epoch ms (defaults to the current time)
        """
        edge_counts = edge_counts or {}
        now = now if now is not None else now_ms()

        scored = []
        for candidate in candidates:
            recency = recency_score(candidate.created_at, now, self.half_life_days)
            weight = graph_weight(edge_counts.get(candidate.id, 0), self.graph_cap)
            scored.append(
                candidate.model_copy(
                    update={
                        "recency": recency,
                        "graph_weight": weight,
                        "final_score": self.final_score(candidate.similarity, recency, weight),
                    }
                )
            )

        scored.sort(key=lambda r: (r.final_score, r.recency), reverse=True)
        logger.debug(f"Scored {len(scored)} candidate(s)")
        return scored
