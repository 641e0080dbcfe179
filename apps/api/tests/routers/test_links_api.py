"""Tests for the link approval API."""

import pytest

from tests.factories import DecisionFactory


@pytest.fixture
async def pair(client):
    ids = []
    for topic in ("cache_layer", "cache_eviction"):
        response = await client.post("/api/decisions", json=DecisionFactory.create(topic))
        ids.append(response.json()["id"])
    return ids


def review(a, b, relationship="refines", reason=None):
    body = {"from_id": a, "to_id": b, "relationship": relationship}
    if reason:
        body["reason"] = reason
    return body


class TestProposeAndReview:
    """Test the propose / approve / reject round trip."""

    @pytest.mark.asyncio
    async def test_propose_then_approve(self, client, pair):
        a, b = pair
        proposed = await client.post(
            "/api/links/propose", json=review(a, b, reason="eviction refines caching")
        )
        assert proposed.status_code == 201
        assert proposed.json()["approved"] is False

        pending = (await client.get("/api/links/pending")).json()
        assert [(p["from_topic"], p["to_topic"]) for p in pending] == [
            ("cache_layer", "cache_eviction")
        ]

        approved = await client.post("/api/links/approve", json=review(a, b))
        assert approved.status_code == 200
        assert approved.json()["approved"] is True
        assert (await client.get("/api/links/pending")).json() == []

        links = (await client.get(f"/api/decisions/{a}/links")).json()
        assert [link["to_id"] for link in links] == [b]

    @pytest.mark.asyncio
    async def test_reject(self, client, pair):
        a, b = pair
        await client.post("/api/links/propose", json=review(a, b, "contradicts", "conflict"))

        rejected = await client.post("/api/links/reject", json=review(a, b, "contradicts"))
        assert rejected.status_code == 200

        again = await client.post("/api/links/approve", json=review(a, b, "contradicts"))
        assert again.status_code == 409

        audit = (await client.get("/api/links/audit", params={"decision_id": a})).json()
        assert [entry["action"] for entry in audit] == ["rejected", "proposed"]

    @pytest.mark.asyncio
    async def test_invalid_relationship_is_400(self, client, pair):
        a, b = pair
        response = await client.post(
            "/api/links/propose", json=review(a, b, "causes", reason="why not")
        )

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"

    @pytest.mark.asyncio
    async def test_duplicate_is_409(self, client, pair):
        a, b = pair
        body = review(a, b, reason="first")
        await client.post("/api/links/propose", json=body)

        response = await client.post("/api/links/propose", json=body)
        assert response.status_code == 409
        assert response.json()["error"] == "ConstraintViolation"

    @pytest.mark.asyncio
    async def test_unknown_decision_is_404(self, client, pair):
        a, _ = pair
        response = await client.post(
            "/api/links/propose", json=review(a, "decision_ghost_1_zzzz", reason="r")
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_missing_reason_is_422(self, client, pair):
        a, b = pair
        response = await client.post("/api/links/propose", json=review(a, b))
        assert response.status_code == 422
