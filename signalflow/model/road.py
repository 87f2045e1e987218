"""Roads, lanes and the lane slots cars occupy.

Sides follow the approach convention used by the signal matrix: N=0, E=1,
S=2, W=3. Grid ``y`` grows southwards, so a target with a larger ``y`` lies
to the south of its source.
"""
from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from signalflow.errors import DuplicateEntityError, UnknownCarPositionError

if TYPE_CHECKING:  # pragma: no cover
    from signalflow.agents.vehicle import Car
    from signalflow.model.intersection import Intersection

NORTH, EAST, SOUTH, WEST = range(4)
LEFT, FORWARD, RIGHT, U_TURN = range(4)


def side_towards(origin: "Intersection", other: "Intersection") -> int:
    """Return the side of ``origin`` that faces ``other``."""

    dx = other.x - origin.x
    dy = other.y - origin.y
    if dx == 0 and dy == 0:
        raise ValueError(f"Intersections {origin.id!r} and {other.id!r} share a position")
    if abs(dx) >= abs(dy):
        return EAST if dx > 0 else WEST
    return SOUTH if dy > 0 else NORTH


class LanePosition:
    """A car's slot on a lane. Released at most once per acquisition."""

    def __init__(self, car: "Car", lane: Optional["Lane"] = None, position: float = 0.0):
        self.car = car
        self.id = car.id
        self.free = True
        self._lane = lane
        self.position = position

    @property
    def lane(self) -> Optional["Lane"]:
        return self._lane

    @lane.setter
    def lane(self, lane: Optional["Lane"]) -> None:
        self.release()
        self._lane = lane

    @property
    def relative_position(self) -> float:
        if self._lane is None or self._lane.length <= 0:
            return 0.0
        return self.position / self._lane.length

    def acquire(self) -> None:
        if self._lane is not None and self.free:
            self._lane.add_car_position(self)
            self.free = False

    def release(self) -> None:
        if self._lane is not None and not self.free:
            self.free = True
            self._lane.remove_car(self)

    def next_car_distance(self) -> tuple[Optional["Car"], float]:
        """Bumper-to-bumper distance to the next car ahead on the same lane."""

        if self._lane is None or self.free:
            return None, math.inf
        ahead = self._lane.get_next(self)
        if ahead is None:
            return None, math.inf
        rear = ahead.position - ahead.car.length / 2
        front = self.position + self.car.length / 2
        return ahead.car, rear - front


class Lane:
    """One lane of a road holding the positions of the cars driving on it."""

    def __init__(self, road: "Road", index: int):
        self.road = road
        self.index = index
        self.cars_positions: Dict[str, LanePosition] = {}

    @property
    def id(self) -> str:
        return f"{self.road.id}:{self.index}"

    @property
    def length(self) -> float:
        return self.road.length

    @property
    def is_leftmost(self) -> bool:
        return self.index == len(self.road.lanes) - 1

    @property
    def is_rightmost(self) -> bool:
        return self.index == 0

    def add_car_position(self, car_position: LanePosition) -> None:
        if car_position.id in self.cars_positions:
            raise DuplicateEntityError(f"Car {car_position.id!r} is already on lane {self.id}")
        self.cars_positions[car_position.id] = car_position

    def remove_car(self, car_position: LanePosition) -> None:
        if car_position.id not in self.cars_positions:
            raise UnknownCarPositionError(
                f"Removing unknown car {car_position.id!r} from lane {self.id}"
            )
        del self.cars_positions[car_position.id]

    def get_next(self, car_position: LanePosition) -> Optional[LanePosition]:
        if car_position.lane is not self:
            raise UnknownCarPositionError(f"Car {car_position.id!r} is on another lane")
        best: Optional[LanePosition] = None
        best_distance = math.inf
        for other in self.cars_positions.values():
            distance = other.position - car_position.position
            if other is not car_position and not other.free and 0 < distance < best_distance:
                best_distance = distance
                best = other
        return best

    def cars(self) -> List["Car"]:
        """Cars on this lane, front-most first."""

        ordered = sorted(self.cars_positions.values(), key=lambda p: p.position, reverse=True)
        return [p.car for p in ordered]


class Road:
    """Directed road between two intersections."""

    def __init__(
        self,
        road_id: str,
        source: "Intersection",
        target: "Intersection",
        *,
        lanes_number: int = 2,
    ):
        if source is None or target is None:
            raise ValueError("incomplete road")
        self.id = road_id
        self.source = source
        self.target = target
        self.lanes_number = max(1, int(lanes_number))
        self.lanes: List[Lane] = [Lane(self, i) for i in range(self.lanes_number)]
        self.update()

    def update(self) -> None:
        self.source_side = side_towards(self.source, self.target)
        self.target_side = side_towards(self.target, self.source)
        self.length = math.hypot(self.target.x - self.source.x, self.target.y - self.source.y)

    @property
    def approach(self) -> int:
        """Approach index at the target intersection this road feeds."""

        return self.target_side

    @property
    def leftmost_lane(self) -> Lane:
        return self.lanes[-1]

    @property
    def rightmost_lane(self) -> Lane:
        return self.lanes[0]

    def turn_direction(self, other: "Road") -> int:
        """Movement needed to continue from this road onto ``other``.

        0 - left, 1 - forward, 2 - right, 3 - u-turn.
        """

        if self.target is not other.source:
            raise ValueError(f"Road {other.id!r} does not leave from the end of {self.id!r}")
        return (other.source_side - self.target_side - 1 + 8) % 4

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source.id,
            "target": self.target.id,
            "lanes_number": self.lanes_number,
        }
