"""Utilities for generating simple grid-based road networks.

Assumptions
-----------
- Roads form an orthogonal grid with evenly spaced intersections.
- Each bidirectional road segment is represented as two directed roads so
  cars can traverse in both directions without additional logic.
- Grid ``y`` grows southwards: row 0 is the northernmost street.

Default parameters are intentionally modest to keep simulations fast while
still being representative of a small downtown block.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Tuple
import random

if TYPE_CHECKING:  # pragma: no cover
    from signalflow.simulation.core import World


@dataclass
class GridConfig:
    """Configuration for a grid-shaped road network.

    Parameters
    ----------
    rows: int
        Number of east-west streets.
    cols: int
        Number of north-south streets.
    block_length: float
        Distance between adjacent intersections in meters.
    lanes_per_road: int
        Number of lanes in each direction for every road segment.
    speed_limit: float
        Maximum allowed speed (m/s) used to guide the car-following model.
    seed: int | None
        Random seed to ensure reproducible road ordering.
    """

    rows: int = 3
    cols: int = 3
    block_length: float = 100.0
    lanes_per_road: int = 2
    speed_limit: float = 13.9  # ~50 km/h
    seed: int | None = None

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "GridConfig":
        return cls(
            rows=int(mapping.get("rows", cls.rows)),
            cols=int(mapping.get("cols", cls.cols)),
            block_length=float(mapping.get("block_length", cls.block_length)),
            lanes_per_road=int(mapping.get("lanes_per_road", cls.lanes_per_road)),
            speed_limit=float(mapping.get("speed_limit", cls.speed_limit)),
            seed=mapping.get("seed", mapping.get("map_seed")),
        )


Network = Dict[str, List[Dict[str, Any]]]

# Neighbour steps (row, col) towards the east and the south; the reverse
# direction is added alongside, so every adjacent pair gets two roads.
NEIGHBOUR_STEPS: Tuple[Tuple[int, int], ...] = ((0, 1), (1, 0))


def node_id(row: int, col: int) -> str:
    return f"n_{row}_{col}"


def road_id(source: str, target: str) -> str:
    return f"e_{source}_to_{target}"


def generate_grid_network(config: GridConfig) -> Network:
    """Describe a grid as plain intersection and road records.

    ``intersections`` entries carry ``id``, ``row``, ``col``, ``x`` and ``y``.
    ``roads`` entries use the keys :meth:`Road.to_dict` produces (``id``,
    ``source``, ``target``, ``lanes_number``) plus ``length``. Road order is
    shuffled with ``config.seed`` so nothing downstream relies on it.
    """

    intersections = [
        {
            "id": node_id(row, col),
            "row": row,
            "col": col,
            "x": col * config.block_length,
            "y": row * config.block_length,
        }
        for row in range(config.rows)
        for col in range(config.cols)
    ]

    roads: List[Dict[str, Any]] = []
    for row in range(config.rows):
        for col in range(config.cols):
            for d_row, d_col in NEIGHBOUR_STEPS:
                other = (row + d_row, col + d_col)
                if other[0] >= config.rows or other[1] >= config.cols:
                    continue
                here, there = node_id(row, col), node_id(*other)
                for source, target in ((here, there), (there, here)):
                    roads.append(
                        {
                            "id": road_id(source, target),
                            "source": source,
                            "target": target,
                            "lanes_number": config.lanes_per_road,
                            "length": config.block_length,
                        }
                    )

    random.Random(config.seed).shuffle(roads)
    return {"intersections": intersections, "roads": roads}


def build_grid_world(world: "World", config: GridConfig) -> Network:
    """Populate ``world`` with the intersections and roads of a grid."""

    network = generate_grid_network(config)
    for node in network["intersections"]:
        world.add_intersection(node["id"], node["x"], node["y"])
    for road in network["roads"]:
        world.add_road(road["id"], road["source"], road["target"], lanes_number=road["lanes_number"])
    return network
