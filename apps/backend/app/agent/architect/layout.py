"""Deterministic tiered layout for design graphs.

Tiers become columns ordered left to right; nodes inside a column are stacked
top to bottom in input order and centred against the tallest column.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Sequence

from .schemas import PlacedNode, Position

GAP_X = 300.0
GAP_Y = 150.0
START_X = 100.0
START_Y = 100.0


def group_by_tier(nodes: Iterable[PlacedNode]) -> dict[int, list[PlacedNode]]:
    tiers: dict[int, list[PlacedNode]] = {}
    for node in nodes:
        tiers.setdefault(node.tier, []).append(node)
    return dict(sorted(tiers.items()))


def compute_positions(
    nodes: Sequence[PlacedNode],
    *,
    gap_x: float = GAP_X,
    gap_y: float = GAP_Y,
    start_x: float = START_X,
    start_y: float = START_Y,
) -> dict[str, Position]:
    tiers = group_by_tier(nodes)
    if not tiers:
        return {}
    tallest = max(len(members) for members in tiers.values())
    band = tallest * gap_y

    positions: dict[str, Position] = {}
    for column, members in enumerate(tiers.values()):
        x = start_x + column * gap_x
        offset = (band - len(members) * gap_y) / 2
        for row, node in enumerate(members):
            positions[node.id] = Position(x=x, y=start_y + offset + row * gap_y)
    return positions


def apply_layout(
    nodes: Sequence[PlacedNode],
    positions: Mapping[str, Position] | None = None,
) -> list[PlacedNode]:
    placed = positions if positions is not None else compute_positions(nodes)
    return [node.model_copy(update={"position": placed.get(node.id)}) for node in nodes]
