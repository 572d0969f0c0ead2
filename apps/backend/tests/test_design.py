import asyncio

import pytest

from app.agent.architect import design
from app.agent.architect.layout import GAP_X, GAP_Y, START_X, START_Y, compute_positions
from app.agent.architect.schemas import DesignDraft, DesignEdge, DesignNode, DesignRequirements, PlacedNode
from app.agent.llm import StructuredResult
from app.services.errors import DesignGenerationError


def _placed(tiers: list[int]) -> list[PlacedNode]:
    return [PlacedNode(id=f"n{i}", label=f"Node {i}", type="service", tier=tier) for i, tier in enumerate(tiers)]


def _draft() -> DesignDraft:
    return DesignDraft(
        nodes=[
            DesignNode(id="web", label="React SPA", type="client"),
            DesignNode(id="gw", label="API Gateway", type="gateway", tier=3),
            DesignNode(id="api", label="Chat Service", type="service", tier=9),
            DesignNode(id="db", label="PostgreSQL", type="database"),
            DesignNode(id="db", label="Duplicate", type="database"),
        ],
        edges=[
            DesignEdge(id="e1", source="web", target="gw"),
            DesignEdge(id="e2", source="gw", target="api"),
            DesignEdge(id="e3", source="api", target="db"),
            DesignEdge(id="e4", source="api", target="ghost"),
        ],
        summary="Clients reach the chat service through a gateway.",
    )


def test_layout_is_deterministic_and_tiered() -> None:
    nodes = _placed([1, 1, 2, 3, 3, 3])

    first = compute_positions(nodes)
    second = compute_positions(nodes)

    assert first == second
    xs = [first[f"n{i}"].x for i in (0, 2, 3)]
    assert xs == [START_X, START_X + GAP_X, START_X + 2 * GAP_X]
    assert [first["n0"].y, first["n1"].y] == [START_Y + GAP_Y / 2, START_Y + 1.5 * GAP_Y]
    assert first["n2"].y == START_Y + GAP_Y
    assert [first[f"n{i}"].y for i in (3, 4, 5)] == [START_Y, START_Y + GAP_Y, START_Y + 2 * GAP_Y]


def test_layout_columns_follow_tier_order_not_input_order() -> None:
    nodes = _placed([5, 1, 3])

    positions = compute_positions(nodes, gap_x=10, gap_y=10, start_x=0, start_y=0)

    assert positions["n1"].x < positions["n2"].x < positions["n0"].x


def test_layout_of_no_nodes_is_empty() -> None:
    assert compute_positions([]) == {}


@pytest.mark.parametrize(
    "node_type,tier,expected",
    [("client", None, 1), ("cdn", None, 2), ("auth", None, 3), ("api", None, 4), ("cache", None, 5),
     ("service", 9, 5), ("database", 0, 1), ("service", 2, 2)],
)
def test_resolve_tier(node_type, tier, expected) -> None:
    assert design.resolve_tier(node_type, tier) == expected


def test_validate_design_repairs_the_graph() -> None:
    output = design.validate_design(_draft())

    ids = [node.id for node in output.nodes]
    assert ids == ["web", "gw", "api", "db"]
    assert {node.id: node.tier for node in output.nodes} == {"web": 1, "gw": 3, "api": 5, "db": 5}
    assert [edge.id for edge in output.edges] == ["e1", "e2", "e3"]
    assert all(node.position is not None for node in output.nodes)
    known = set(ids)
    assert all(edge.source in known and edge.target in known for edge in output.edges)


def test_build_design_prompt_renders_decisions_and_defaults() -> None:
    req = DesignRequirements(
        system_type="chat app",
        scale="10k users",
        requirements=["group chat"],
        decisions=[{"topic": "database", "choice": "PostgreSQL", "reasoning": "relational history"}],
    )

    prompt = design.build_design_prompt(req)

    assert "- database: PostgreSQL (relational history)" in prompt
    assert "No specific constraints" in prompt
    assert "## Scale\n10k users" in prompt


def test_generate_design_retries_then_succeeds(monkeypatch: pytest.MonkeyPatch) -> None:
    results = [StructuredResult.failure("truncated"), StructuredResult.success(_draft())]
    calls = []

    async def fake_generate_structured(messages, schema, *, model=None):
        calls.append(schema)
        return results.pop(0)

    monkeypatch.setattr(design, "generate_structured", fake_generate_structured)

    output = asyncio.run(design.generate_design(DesignRequirements(system_type="chat", scale="small")))

    assert calls == [DesignDraft, DesignDraft]
    assert len(output.nodes) == 4


def test_generate_design_raises_after_retries(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DESIGN_MAX_RETRIES", "1")
    calls = []

    async def fake_generate_structured(messages, schema, *, model=None):
        calls.append(schema)
        return StructuredResult.failure("schema_invalid", "nodes too_small")

    monkeypatch.setattr(design, "generate_structured", fake_generate_structured)

    with pytest.raises(DesignGenerationError, match="too_small"):
        asyncio.run(design.generate_design(DesignRequirements(system_type="chat", scale="small")))
    assert len(calls) == 2
