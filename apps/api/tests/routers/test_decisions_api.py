"""Tests for the decisions API."""

import pytest

from tests.factories import DecisionFactory


async def save(client, payload) -> dict:
    response = await client.post("/api/decisions", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


class TestSaveDecision:
    """Test POST /api/decisions."""

    @pytest.mark.asyncio
    async def test_save_returns_result(self, client, sample_decision):
        """Should return 201 with the new id and the tier it was saved at."""
        body = await save(client, sample_decision)

        assert body["id"].startswith("decision_database_choice_")
        assert body["supersedes_id"] is None
        assert body["embedded"] is True
        assert body["tier"] == 1

    @pytest.mark.asyncio
    async def test_second_save_supersedes(self, client):
        first = await save(client, DecisionFactory.create("auth_strategy", decision="Cookies"))
        second = await save(client, DecisionFactory.create("auth_strategy", decision="JWT"))

        assert second["supersedes_id"] == first["id"]

        old = (await client.get(f"/api/decisions/{first['id']}")).json()
        assert old["superseded_by"] == second["id"]

    @pytest.mark.asyncio
    async def test_confidence_clamped(self, client):
        body = await save(client, DecisionFactory.create(confidence=3.5))
        assert body["confidence"] == 1.0

    @pytest.mark.asyncio
    async def test_blank_topic_is_422(self, client):
        """Should reject invalid bodies with the standard validation payload."""
        response = await client.post(
            "/api/decisions", json={"topic": "  ", "decision": "d", "reasoning": "r"}
        )

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "ValidationError"
        assert any("topic" in e["field"] for e in body["validation_errors"])

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client, sample_decision):
        response = await client.post(
            "/api/decisions", json=sample_decision, headers={"X-Request-ID": "req-123"}
        )
        assert response.headers["X-Request-ID"] == "req-123"


class TestReadDecisions:
    """Test the read endpoints."""

    @pytest.mark.asyncio
    async def test_get_unknown_is_404(self, client):
        """Should map NotFound to 404 with the error code in details."""
        response = await client.get("/api/decisions/decision_missing_1_abcd")

        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "NotFound"
        assert body["details"]["code"] == "DECISION_NOT_FOUND"
        assert body["path"] == "/api/decisions/decision_missing_1_abcd"

    @pytest.mark.asyncio
    async def test_by_topic(self, client):
        saved = await save(client, DecisionFactory.create("deploy_target"))

        response = await client.get("/api/decisions/by-topic", params={"topic": "deploy_target"})
        assert response.status_code == 200
        assert response.json()["id"] == saved["id"]

        missing = await client.get("/api/decisions/by-topic", params={"topic": "nope"})
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_list_heads_only(self, client):
        await save(client, DecisionFactory.create("auth_strategy", decision="Cookies"))
        await save(client, DecisionFactory.create("auth_strategy", decision="JWT"))

        everything = (await client.get("/api/decisions")).json()
        heads = (await client.get("/api/decisions", params={"heads_only": True})).json()

        assert len(everything) == 2
        assert [d["decision"] for d in heads] == ["JWT"]

    @pytest.mark.asyncio
    async def test_recall(self, client):
        ids = [
            (await save(client, payload))["id"]
            for payload in DecisionFactory.create_evolution("cache_layer", ["Memcached", "Redis"])
        ]

        chain = (await client.get("/api/decisions/recall", params={"topic": "cache_layer"})).json()
        assert chain["chain"] == ids
        assert chain["head_id"] == ids[-1]


class TestOutcome:
    """Test PATCH /api/decisions/{id}/outcome."""

    @pytest.mark.asyncio
    async def test_update_outcome(self, client):
        saved = await save(client, DecisionFactory.create())

        response = await client.patch(
            f"/api/decisions/{saved['id']}/outcome",
            json={"outcome": "partial", "limitation": "Only for reads"},
        )

        assert response.status_code == 200
        assert response.json()["outcome"] == "partial"
        assert response.json()["limitation"] == "Only for reads"

    @pytest.mark.asyncio
    async def test_invalid_outcome_is_400(self, client):
        """Should map the domain ValidationError to 400."""
        saved = await save(client, DecisionFactory.create())

        response = await client.patch(
            f"/api/decisions/{saved['id']}/outcome", json={"outcome": "great"}
        )

        assert response.status_code == 400
        assert response.json()["details"]["field"] == "outcome"

    @pytest.mark.asyncio
    async def test_unknown_decision_is_404(self, client):
        response = await client.patch(
            "/api/decisions/decision_missing_1_abcd/outcome", json={"outcome": "success"}
        )
        assert response.status_code == 404


class TestDecisionLinks:
    """Test the per-decision link endpoints."""

    @pytest.mark.asyncio
    async def test_links_count_and_expand(self, client):
        base = await save(client, DecisionFactory.create("database_choice"))
        child = await save(
            client,
            DecisionFactory.create("database_backup", reasoning=f"builds_on: {base['id']}"),
        )

        links = (await client.get(f"/api/decisions/{base['id']}/links")).json()
        assert [(link["from_id"], link["direction"]) for link in links] == [
            (child["id"], "incoming")
        ]

        counts = (await client.get(f"/api/decisions/{base['id']}/links/count")).json()
        assert counts == {"outgoing": 0, "incoming": 1, "total": 1}

        expanded = (
            await client.get(f"/api/decisions/{child['id']}/expand", params={"depth": 5})
        ).json()
        assert expanded["depth"] == 2
        assert expanded["tier"] == 1
        assert [link["to_id"] for link in expanded["links"]] == [base["id"]]

    @pytest.mark.asyncio
    async def test_expand_unknown_is_404(self, client):
        response = await client.get("/api/decisions/decision_missing_1_abcd/expand")
        assert response.status_code == 404
