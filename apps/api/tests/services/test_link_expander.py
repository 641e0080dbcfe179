"""Tests for bounded graph expansion."""

import pytest

from models.errors import NotFound
from models.schemas import Direction, RelationshipType
from services.graph_builder import GraphBuilder, add_edge
from services.link_expander import LinkExpander
from tests.factories import DecisionFactory


@pytest.fixture
async def graph(session, tier_detector, settings):
    """A -builds_on-> B -debates-> C -builds_on-> D, plus an unapproved A -contradicts-> D."""
    builder = GraphBuilder(session, tier_detector, settings)
    ids = {}
    for name in "abcd":
        ids[name] = (await builder.save(DecisionFactory.create(f"topic_{name}"))).id

    await add_edge(session, ids["a"], ids["b"], RelationshipType.BUILDS_ON, "b extends a")
    await add_edge(session, ids["b"], ids["c"], RelationshipType.DEBATES, "c questions b")
    await add_edge(session, ids["c"], ids["d"], RelationshipType.BUILDS_ON, "d extends c")
    await add_edge(
        session, ids["a"], ids["d"], RelationshipType.CONTRADICTS, "proposed", approved=False
    )
    await session.commit()
    return ids


def triples(links):
    return {(link.from_id, link.to_id, link.relationship) for link in links}


class TestExpand:
    """Test breadth-first expansion."""

    @pytest.mark.asyncio
    async def test_depth_one(self, session, settings, graph):
        """Should return only direct approved links."""
        links = await LinkExpander(session, settings).expand(graph["a"], depth=1)

        assert triples(links) == {(graph["a"], graph["b"], RelationshipType.BUILDS_ON)}
        assert links[0].direction == Direction.OUTGOING
        assert links[0].depth == 1

    @pytest.mark.asyncio
    async def test_depth_two(self, session, settings, graph):
        """Should reach two hops and never deeper."""
        links = await LinkExpander(session, settings).expand(graph["a"], depth=2)

        assert triples(links) == {
            (graph["a"], graph["b"], RelationshipType.BUILDS_ON),
            (graph["b"], graph["c"], RelationshipType.DEBATES),
        }
        assert max(link.depth for link in links) <= 2

    @pytest.mark.asyncio
    async def test_direction_relative_to_expanded_node(self, session, settings, graph):
        """Should mark incoming and outgoing edges from the node being expanded."""
        links = await LinkExpander(session, settings).expand(graph["c"], depth=1)

        by_triple = {(link.from_id, link.to_id): link.direction for link in links}
        assert by_triple[(graph["b"], graph["c"])] == Direction.INCOMING
        assert by_triple[(graph["c"], graph["d"])] == Direction.OUTGOING

    @pytest.mark.asyncio
    async def test_approved_only_filters_results(self, session, settings, graph):
        """Should never return unapproved edges when approved_only is set."""
        expander = LinkExpander(session, settings)

        approved = await expander.expand(graph["a"], depth=2, approved_only=True)
        assert all(link.approved for link in approved)

        everything = await expander.expand(graph["a"], depth=1, approved_only=False)
        assert (graph["a"], graph["d"], RelationshipType.CONTRADICTS) in triples(everything)

    @pytest.mark.asyncio
    async def test_unapproved_edges_not_traversed(self, session, settings, graph):
        """Should not reach D through the unapproved edge."""
        links = await LinkExpander(session, settings).expand(graph["a"], depth=2)
        reached = {link.from_id for link in links} | {link.to_id for link in links}
        assert graph["d"] not in reached

    @pytest.mark.asyncio
    async def test_triples_returned_once(self, session, settings, graph):
        """Should not repeat an edge reached from both ends."""
        links = await LinkExpander(session, settings).expand(
            graph["a"], depth=2, approved_only=False
        )
        assert len(links) == len(triples(links))

    @pytest.mark.asyncio
    async def test_depth_is_clamped(self, session, settings, graph):
        """Should clamp depth to the configured maximum."""
        expander = LinkExpander(session, settings)
        assert triples(await expander.expand(graph["a"], depth=9)) == triples(
            await expander.expand(graph["a"], depth=2)
        )

        shallow = LinkExpander(session, settings.model_copy(update={"link_expand_max_depth": 1}))
        links = await shallow.expand(graph["a"], depth=2)
        assert {link.depth for link in links} == {1}

    @pytest.mark.asyncio
    async def test_depth_zero_returns_nothing(self, session, settings, graph):
        """Should return [] for depth 0."""
        assert await LinkExpander(session, settings).expand(graph["a"], depth=0) == []

    @pytest.mark.asyncio
    async def test_unknown_seed(self, session, settings):
        """Should raise NotFound for an unknown seed."""
        with pytest.raises(NotFound):
            await LinkExpander(session, settings).expand("decision_ghost_1_zzzz", depth=1)


class TestLinkCounts:
    """Test direct link helpers."""

    @pytest.mark.asyncio
    async def test_get_direct_links(self, session, settings, graph):
        """Should return depth-1 links in both directions."""
        links = await LinkExpander(session, settings).get_direct_links(graph["b"])
        assert len(links) == 2

    @pytest.mark.asyncio
    async def test_count_links(self, session, settings, graph):
        """Should count incoming and outgoing edges."""
        expander = LinkExpander(session, settings)

        counts = await expander.count_links(graph["b"])
        assert (counts.outgoing, counts.incoming, counts.total) == (1, 1, 2)

        counts = await expander.count_links(graph["a"], approved_only=False)
        assert counts.outgoing == 2

    @pytest.mark.asyncio
    async def test_approved_edge_counts(self, session, settings, graph):
        """Should count approved edges touching each id."""
        counts = await LinkExpander(session, settings).approved_edge_counts(
            [graph["a"], graph["b"], graph["d"]]
        )
        assert counts == {graph["a"]: 1, graph["b"]: 2, graph["d"]: 1}

    @pytest.mark.asyncio
    async def test_approved_edge_counts_empty(self, session, settings):
        """Should return an empty mapping for no ids."""
        assert await LinkExpander(session, settings).approved_edge_counts([]) == {}
