"""Bounded, approval-aware graph expansion from a seed decision.

Edges are directed, but reachability ignores direction: a decision that
supersedes the seed is as relevant as one the seed supersedes. Each returned
link records its true direction relative to the node it was reached from.

Depth is clamped to settings.link_expand_max_depth (never more than 2), and
a (from_id, to_id, relationship) triple is returned at most once, at the
shallowest depth it was seen.
"""

from typing import Iterable

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings, get_settings
from models.errors import NotFound
from models.schemas import Direction, ExpandedLink, LinkCounts
from models.store import DecisionEdge, DecisionRecord
from utils.logging import get_logger

logger = get_logger(__name__)

HARD_MAX_DEPTH = 2


class LinkExpander:
    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self._settings = settings or get_settings()

    @property
    def max_depth(self) -> int:
        return max(0, min(self._settings.link_expand_max_depth, HARD_MAX_DEPTH))

    def clamp_depth(self, depth: int) -> int:
        return max(0, min(int(depth), self.max_depth))

    async def _ensure_exists(self, decision_id: str) -> None:
        result = await self.session.execute(
            select(DecisionRecord.id).where(DecisionRecord.id == decision_id)
        )
        if result.scalar_one_or_none() is None:
            raise NotFound("decision", decision_id)

    async def _edges_touching(
        self, node_ids: Iterable[str], approved_only: bool
    ) -> list[DecisionEdge]:
        ids = list(node_ids)
        query = select(DecisionEdge).where(
            or_(DecisionEdge.from_id.in_(ids), DecisionEdge.to_id.in_(ids))
        )
        if approved_only:
            query = query.where(DecisionEdge.approved.is_(True))
        query = query.order_by(
            DecisionEdge.created_at.desc(),
            DecisionEdge.from_id,
            DecisionEdge.to_id,
            DecisionEdge.relationship,
        )
        result = await self.session.execute(query)
        return list(result.scalars())

    async def expand(
        self, seed_id: str, depth: int = 1, approved_only: bool = True
    ) -> list[ExpandedLink]:
        """Breadth-first expansion from seed_id.

        Args:
            seed_id: Decision to start from
            depth: Requested depth, clamped to [0, max_depth]; 0 returns []
            approved_only: Ignore proposed edges for traversal and results

        Returns:
            Links ordered by depth, newest edges first within a level

        Raises:
            NotFound: seed_id is not a stored decision
        """
        await self._ensure_exists(seed_id)
        depth = self.clamp_depth(depth)
        if depth == 0:
            return []

        visited = {seed_id}
        frontier = {seed_id}
        seen_triples: set[tuple[str, str, str]] = set()
        links: list[ExpandedLink] = []

        for level in range(1, depth + 1):
            if not frontier:
                break
            next_frontier: set[str] = set()

            for edge in await self._edges_touching(frontier, approved_only):
                triple = (edge.from_id, edge.to_id, edge.relationship.value)
                if triple in seen_triples:
                    continue
                seen_triples.add(triple)

                if edge.from_id in frontier:
                    direction = Direction.OUTGOING
                    neighbor = edge.to_id
                else:
                    direction = Direction.INCOMING
                    neighbor = edge.from_id

                links.append(
                    ExpandedLink(
                        from_id=edge.from_id,
                        to_id=edge.to_id,
                        relationship=edge.relationship,
                        reason=edge.reason,
                        direction=direction,
                        depth=level,
                        approved=edge.approved,
                    )
                )
                if neighbor not in visited:
                    visited.add(neighbor)
                    next_frontier.add(neighbor)

            frontier = next_frontier

        logger.debug(
            f"Expanded {seed_id} to depth {depth}: {len(links)} link(s), "
            f"{len(visited) - 1} neighbor(s)"
        )
        return links

    async def get_direct_links(
        self, decision_id: str, approved_only: bool = True
    ) -> list[ExpandedLink]:
        """Depth-1 links of a decision in both directions."""
        return await self.expand(decision_id, depth=1, approved_only=approved_only)

    async def count_links(self, decision_id: str, approved_only: bool = True) -> LinkCounts:
        await self._ensure_exists(decision_id)

        async def count(column) -> int:
            query = select(func.count()).select_from(DecisionEdge).where(column == decision_id)
            if approved_only:
                query = query.where(DecisionEdge.approved.is_(True))
            return (await self.session.execute(query)).scalar_one()

        outgoing = await count(DecisionEdge.from_id)
        incoming = await count(DecisionEdge.to_id)
        return LinkCounts(outgoing=outgoing, incoming=incoming, total=outgoing + incoming)

    async def approved_edge_counts(self, decision_ids: Iterable[str]) -> dict[str, int]:
        """Approved edges touching each decision, in either direction."""
        ids = set(decision_ids)
        counts = {decision_id: 0 for decision_id in ids}
        if not ids:
            return counts
        for edge in await self._edges_touching(ids, approved_only=True):
            if edge.from_id in counts:
                counts[edge.from_id] += 1
            if edge.to_id in counts:
                counts[edge.to_id] += 1
        return counts
