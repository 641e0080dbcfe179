"""Decision memory MCP server: memory tools for AI agents.

Wraps the decision memory HTTP API as MCP tools that any MCP-compatible
agent discovers through its server configuration.

Architecture:
    Agent --stdio--> MCP Server --httpx--> FastAPI Backend --> SQLite

No business logic here, just HTTP client translation.
All logging goes to stderr (stdout is reserved for JSON-RPC).
"""

from __future__ import annotations

import json
import os
import sys

import httpx
from mcp.server.fastmcp import FastMCP

API_URL = os.environ.get("DECISION_MEMORY_API_URL", "http://localhost:8000")
SESSION_ID = os.environ.get("DECISION_MEMORY_SESSION_ID", "")
REQUEST_TIMEOUT = 30.0

mcp = FastMCP(
    name="decision-memory",
    instructions=(
        "Decision memory tools. Call memory_checkpoint_load at session start, "
        "memory_suggest before deciding, memory_save after each decision, "
        "memory_update_outcome once you know how a decision turned out, "
        "and memory_checkpoint_save before the session ends."
    ),
)


def _log(msg: str) -> None:
    """Log to stderr; stdout is reserved for MCP JSON-RPC."""
    print(f"[decision-memory-mcp] {msg}", file=sys.stderr)


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(body, dict):
        return body.get("message") or body.get("detail") or json.dumps(body)
    return str(body)


async def _api_request(
    method: str,
    path: str,
    *,
    params: dict | None = None,
    json_body: dict | None = None,
):
    """Call the decision memory API.

    Connection failures, HTTP errors and timeouts are all raised as
    RuntimeError so the MCP SDK surfaces them as tool errors to the agent.
    """
    headers = {"Content-Type": "application/json"}
    if SESSION_ID:
        headers["X-Session-ID"] = SESSION_ID

    url = f"{API_URL}{path}"
    _log(f"{method} {url}")

    try:
        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
            response = await client.request(
                method, url, headers=headers, params=params, json=json_body
            )
            response.raise_for_status()
            return response.json()
    except httpx.ConnectError:
        raise RuntimeError(
            f"Cannot connect to the decision memory API at {API_URL}. "
            "Is the backend running? Start with: uvicorn main:app"
        )
    except httpx.HTTPStatusError as e:
        raise RuntimeError(
            f"Decision memory API error {e.response.status_code}: {_error_detail(e.response)}"
        )
    except httpx.TimeoutException:
        raise RuntimeError(f"Request to the decision memory API timed out after {REQUEST_TIMEOUT}s")


def _dump(data) -> str:
    return json.dumps(data, indent=2)


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


@mcp.tool()
async def memory_save(
    topic: str,
    decision: str,
    reasoning: str,
    confidence: float = 0.5,
    type: str = "user_decision",
    evidence: list[str] | None = None,
    alternatives: list[str] | None = None,
    risks: str = "",
    refined_from: list[str] | None = None,
) -> str:
    """Record a decision. A new decision on an existing topic supersedes the old one.

    Mention earlier decisions in the reasoning to link them, e.g.
    "builds_on: decision_auth_strategy_1700000000000_ab12" or
    "synthesizes: [decision_a_..., decision_b_...]".

    Args:
        topic: Short stable name for what is being decided, e.g. "auth_strategy".
        decision: What was decided.
        reasoning: Why.
        confidence: 0 to 1.
        type: "user_decision" or "assistant_insight".
        evidence: Supporting facts.
        alternatives: Options that were considered and not chosen.
        risks: Known risks.
        refined_from: Ids of decisions this one refines; blends their confidence in.
    """
    body: dict = {
        "topic": topic,
        "decision": decision,
        "reasoning": reasoning,
        "confidence": confidence,
        "type": type,
        "evidence": evidence or [],
        "alternatives": alternatives or [],
        "refined_from": refined_from or [],
    }
    if risks:
        body["risks"] = risks
    if SESSION_ID:
        body["session_id"] = SESSION_ID
    return _dump(await _api_request("POST", "/api/decisions", json_body=body))


@mcp.tool()
async def memory_update_outcome(
    decision_id: str,
    outcome: str,
    failure_reason: str = "",
    limitation: str = "",
) -> str:
    """Record how a decision turned out.

    Args:
        decision_id: The decision to update.
        outcome: pending, success, partial, failure or superseded.
        failure_reason: Required when outcome is failure.
        limitation: What the decision could not handle, if anything.
    """
    body: dict = {"outcome": outcome}
    if failure_reason:
        body["failure_reason"] = failure_reason
    if limitation:
        body["limitation"] = limitation
    return _dump(
        await _api_request("PATCH", f"/api/decisions/{decision_id}/outcome", json_body=body)
    )


@mcp.tool()
async def memory_recall(topic: str) -> str:
    """Current decision on a topic and every decision it superseded, oldest first."""
    return _dump(await _api_request("GET", "/api/decisions/recall", params={"topic": topic}))


# ---------------------------------------------------------------------------
# Search and graph
# ---------------------------------------------------------------------------


@mcp.tool()
async def memory_search(query: str, limit: int = 5, threshold: float = 0.7) -> str:
    """Search past decisions. The result says which tier served it.

    Tier 1 is semantic search, tier 2 keyword matching, tier 3 disabled.
    """
    params = {"query": query, "limit": limit, "threshold": threshold}
    return _dump(await _api_request("GET", "/api/search", params=params))


@mcp.tool()
async def memory_suggest(query: str, limit: int = 5, depth: int = 1) -> str:
    """Current decisions relevant to a question, ranked by similarity,
    recency and connectivity, each with its related decisions."""
    params = {"query": query, "limit": limit, "depth": depth}
    return _dump(await _api_request("GET", "/api/search/suggest", params=params))


@mcp.tool()
async def memory_expand(decision_id: str, depth: int = 1, approved_only: bool = True) -> str:
    """Decisions linked to decision_id within depth hops (at most 2)."""
    params = {"depth": depth, "approved_only": str(approved_only).lower()}
    return _dump(
        await _api_request("GET", f"/api/decisions/{decision_id}/expand", params=params)
    )


# ---------------------------------------------------------------------------
# Link review
# ---------------------------------------------------------------------------


@mcp.tool()
async def memory_propose_link(from_id: str, to_id: str, relationship: str, reason: str) -> str:
    """Suggest a refines or contradicts link. It stays hidden until a user approves it."""
    body = {"from_id": from_id, "to_id": to_id, "relationship": relationship, "reason": reason}
    return _dump(await _api_request("POST", "/api/links/propose", json_body=body))


@mcp.tool()
async def memory_review_link(
    from_id: str,
    to_id: str,
    relationship: str,
    approve: bool,
    reason: str = "",
) -> str:
    """Approve or reject a proposed link on the user's behalf."""
    body: dict = {"from_id": from_id, "to_id": to_id, "relationship": relationship}
    if reason:
        body["reason"] = reason
    path = "/api/links/approve" if approve else "/api/links/reject"
    return _dump(await _api_request("POST", path, json_body=body))


@mcp.tool()
async def memory_pending_links(limit: int = 20) -> str:
    """Proposed links waiting for review."""
    return _dump(await _api_request("GET", "/api/links/pending", params={"limit": limit}))


# ---------------------------------------------------------------------------
# Checkpoints and status
# ---------------------------------------------------------------------------


@mcp.tool()
async def memory_checkpoint_save(
    summary: str,
    open_items: list[str] | None = None,
    next_steps: str = "",
) -> str:
    """Save where the work stands so the next session can resume it."""
    body: dict = {"summary": summary, "open_items": open_items or []}
    if next_steps:
        body["next_steps"] = next_steps
    return _dump(await _api_request("POST", "/api/checkpoints", json_body=body))


@mcp.tool()
async def memory_checkpoint_load() -> str:
    """Most recent checkpoint, or null if none was saved."""
    return _dump(await _api_request("GET", "/api/checkpoints/latest"))


@mcp.tool()
async def memory_tier_status() -> str:
    """Which memory features are working right now and recent tier changes."""
    return _dump(await _api_request("GET", "/api/tier", params={"transitions": 5}))


# ---------------------------------------------------------------------------
# Quality
# ---------------------------------------------------------------------------


@mcp.tool()
async def memory_quality_report(format: str = "json") -> str:
    """Narrative and link coverage with recommendations.

    format="markdown" returns the rendered report instead of JSON.
    """
    report = await _api_request("GET", "/api/quality/report", params={"format": format})
    if format == "markdown" and report.get("markdown"):
        return report["markdown"]
    return _dump(report)


@mcp.tool()
async def memory_scan_auto_links() -> str:
    """Links the assistant created that nobody has reviewed."""
    return _dump(await _api_request("GET", "/api/quality/auto-links"))


@mcp.tool()
async def memory_deprecate_auto_links(dry_run: bool = True) -> str:
    """Remove unreviewed auto links. Call with dry_run=True first to preview."""
    params = {"dry_run": str(dry_run).lower()}
    return _dump(await _api_request("POST", "/api/quality/auto-links/deprecate", params=params))


if __name__ == "__main__":
    _log(f"Starting decision memory MCP server (API: {API_URL})")
    mcp.run(transport="stdio")
