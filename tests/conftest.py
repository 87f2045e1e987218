import random

import pytest

from signalflow.model.intersection import Intersection
from signalflow.model.road import Road
from signalflow.signals.manager import build_default_manager

# Neighbour offsets by side, grid y grows southwards.
OFFSETS = {"N": (0, -100), "E": (100, 0), "S": (0, 100), "W": (-100, 0)}


def build_junction(sides="NESW", lanes_number=2):
    """Centre intersection with an incoming and an outgoing road on each side.

    No controller is attached, so strategies can be bound directly.
    """

    centre = Intersection("centre", 100.0, 100.0)
    for side in sides:
        dx, dy = OFFSETS[side]
        neighbour = Intersection(f"n{side}", centre.x + dx, centre.y + dy)
        for road in (
            Road(f"{side}_in", neighbour, centre, lanes_number=lanes_number),
            Road(f"{side}_out", centre, neighbour, lanes_number=lanes_number),
        ):
            road.source.roads.append(road)
            road.target.in_roads.append(road)
    return centre


@pytest.fixture
def crossroads():
    return build_junction("NESW")


@pytest.fixture
def t_junction():
    return build_junction("NES")


@pytest.fixture
def manager():
    return build_default_manager(random.Random(7))


@pytest.fixture
def junction_factory():
    return build_junction
