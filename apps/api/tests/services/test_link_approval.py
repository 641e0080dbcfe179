"""Tests for the propose / approve / reject link workflow."""

import pytest

from models.errors import ConstraintViolation, NotFound, ValidationError
from models.schemas import CreatedBy, LinkAction, RelationshipType
from services.graph_builder import GraphBuilder, find_edge
from services.link_approval import LinkApproval
from services.link_expander import LinkExpander
from tests.factories import DecisionFactory


@pytest.fixture
async def pair(session, tier_detector, settings):
    """Two unrelated decisions on different topics."""
    builder = GraphBuilder(session, tier_detector, settings)
    first = await builder.save(DecisionFactory.create("cache_layer", decision="Use Redis"))
    second = await builder.save(DecisionFactory.create("session_store", decision="Use Postgres"))
    return first.id, second.id


class TestPropose:
    """Test link proposals."""

    @pytest.mark.asyncio
    async def test_propose_stores_unapproved_link(self, session, pair):
        """Should store the link unapproved, created by the assistant."""
        a, b = pair
        link = await LinkApproval(session).propose(a, b, "refines", "b narrows a")

        assert link.approved is False
        assert link.approved_at is None
        assert link.created_by == CreatedBy.LLM
        assert link.relationship == RelationshipType.REFINES

    @pytest.mark.asyncio
    async def test_propose_is_audited(self, session, pair):
        """Should write a proposed entry to the audit log."""
        a, b = pair
        approval = LinkApproval(session)
        await approval.propose(a, b, "contradicts", "they disagree")

        log = await approval.audit_log(a)
        assert [(entry.action, entry.actor) for entry in log] == [
            (LinkAction.PROPOSED, CreatedBy.LLM)
        ]

    @pytest.mark.asyncio
    async def test_pending_links_include_topics(self, session, pair):
        """Should list proposals with both decisions' topics."""
        a, b = pair
        approval = LinkApproval(session)
        await approval.propose(a, b, "refines", "b narrows a")

        pending = await approval.pending_links()
        assert len(pending) == 1
        assert pending[0].from_topic == "cache_layer"
        assert pending[0].to_topic == "session_store"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("relationship", ["builds_on", "supersedes", "inspired_by"])
    async def test_only_refines_and_contradicts(self, session, pair, relationship):
        """Should reject relationships that cannot be proposed."""
        a, b = pair
        with pytest.raises(ValidationError):
            await LinkApproval(session).propose(a, b, relationship, "reason")

    @pytest.mark.asyncio
    async def test_blank_reason_rejected(self, session, pair):
        """Should require a reason."""
        a, b = pair
        with pytest.raises(ValidationError):
            await LinkApproval(session).propose(a, b, "refines", "   ")

    @pytest.mark.asyncio
    async def test_unknown_decision(self, session, pair):
        """Should raise NotFound when either decision is missing."""
        a, _ = pair
        with pytest.raises(NotFound):
            await LinkApproval(session).propose(a, "decision_ghost_1_zzzz", "refines", "r")

    @pytest.mark.asyncio
    async def test_duplicate_proposal(self, session, pair):
        """Should raise ConstraintViolation for an existing triple."""
        a, b = pair
        approval = LinkApproval(session)
        await approval.propose(a, b, "refines", "first")

        with pytest.raises(ConstraintViolation):
            await approval.propose(a, b, "refines", "second")

    @pytest.mark.asyncio
    async def test_self_link(self, session, pair):
        """Should raise ConstraintViolation for a self-loop."""
        a, _ = pair
        with pytest.raises(ConstraintViolation):
            await LinkApproval(session).propose(a, a, "refines", "loop")


class TestReview:
    """Test approving and rejecting proposals."""

    @pytest.mark.asyncio
    async def test_proposed_link_hidden_until_approved(self, session, settings, pair):
        """Should keep a proposal out of approved-only expansion until approval."""
        a, b = pair
        approval = LinkApproval(session)
        expander = LinkExpander(session, settings)
        await approval.propose(a, b, "refines", "b narrows a")

        assert await expander.expand(a, depth=1, approved_only=True) == []

        link = await approval.approve(a, b, "refines")
        assert link.approved is True
        assert link.approved_at is not None

        links = await expander.expand(a, depth=1, approved_only=True)
        assert [(link.from_id, link.to_id) for link in links] == [(a, b)]

    @pytest.mark.asyncio
    async def test_approve_is_audited(self, session, pair):
        """Should log the approval as a user action."""
        a, b = pair
        approval = LinkApproval(session)
        await approval.propose(a, b, "refines", "b narrows a")
        await approval.approve(a, b, "refines", "looks right")

        latest = (await approval.audit_log(a))[0]
        assert latest.action == LinkAction.APPROVED
        assert latest.actor == CreatedBy.USER
        assert latest.reason == "looks right"

    @pytest.mark.asyncio
    async def test_approve_twice(self, session, pair):
        """Should refuse to approve an approved link."""
        a, b = pair
        approval = LinkApproval(session)
        await approval.propose(a, b, "refines", "b narrows a")
        await approval.approve(a, b, "refines")

        with pytest.raises(ConstraintViolation):
            await approval.approve(a, b, "refines")

    @pytest.mark.asyncio
    async def test_reject_deletes_link(self, session, pair):
        """Should delete a rejected proposal and keep the audit trail."""
        a, b = pair
        approval = LinkApproval(session)
        await approval.propose(a, b, "contradicts", "they disagree")
        await approval.reject(a, b, "contradicts", "they do not")

        assert await find_edge(session, a, b, RelationshipType.CONTRADICTS) is None
        assert await approval.pending_links() == []
        actions = [entry.action for entry in await approval.audit_log(a)]
        assert actions == [LinkAction.REJECTED, LinkAction.PROPOSED]

    @pytest.mark.asyncio
    async def test_rejected_link_is_terminal(self, session, pair):
        """Should refuse to review a link that was already rejected."""
        a, b = pair
        approval = LinkApproval(session)
        await approval.propose(a, b, "contradicts", "they disagree")
        await approval.reject(a, b, "contradicts")

        with pytest.raises(ConstraintViolation):
            await approval.approve(a, b, "contradicts")
        with pytest.raises(ConstraintViolation):
            await approval.reject(a, b, "contradicts")

    @pytest.mark.asyncio
    async def test_review_unknown_link(self, session, pair):
        """Should raise NotFound for a link that was never proposed."""
        a, b = pair
        with pytest.raises(NotFound):
            await LinkApproval(session).approve(a, b, "refines")

    @pytest.mark.asyncio
    async def test_auto_links_cannot_be_reviewed(self, session, tier_detector, settings):
        """Should treat automatic supersedes links as already approved."""
        builder = GraphBuilder(session, tier_detector, settings)
        old = await builder.save(DecisionFactory.create("auth_strategy", decision="Cookies"))
        new = await builder.save(DecisionFactory.create("auth_strategy", decision="JWT"))

        with pytest.raises(ConstraintViolation):
            await LinkApproval(session).reject(new.id, old.id, "supersedes")
