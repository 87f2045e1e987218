"""Intersections: grid nodes that own a traffic light controller."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from signalflow.signals.controller import TrafficLightController

if TYPE_CHECKING:  # pragma: no cover
    from signalflow.model.road import Road
    from signalflow.signals.manager import StrategyManager


class Intersection:
    """Grid node with incoming/outgoing roads and a signal controller.

    The controller is attached once the roads are linked, because strategies
    size their phase tables and conflict tables from the connected sides.
    """

    def __init__(self, intersection_id: str, x: float, y: float):
        self.id = intersection_id
        self.x = float(x)
        self.y = float(y)
        self.roads: List["Road"] = []
        self.in_roads: List["Road"] = []
        self.control: Optional[TrafficLightController] = None
        self._control_snapshot: Optional[Mapping[str, Any]] = None

    @property
    def sides(self) -> List[int]:
        """Compass sides any road attaches to."""

        attached = {road.source_side for road in self.roads}
        attached.update(road.target_side for road in self.in_roads)
        return sorted(attached)

    @property
    def road_count(self) -> int:
        return len(self.sides)

    @property
    def approaches(self) -> List[int]:
        """Sides that carry incoming traffic."""

        return sorted({road.target_side for road in self.in_roads})

    def incoming_roads(self, approach: int) -> List["Road"]:
        return [road for road in self.in_roads if road.target_side == approach]

    def attach_control(self, manager: "StrategyManager") -> TrafficLightController:
        """Create the controller, restoring a persisted one when this node was loaded."""

        if self._control_snapshot is not None:
            self.control = TrafficLightController.from_dict(self._control_snapshot, self, manager)
            self._control_snapshot = None
        else:
            self.control = TrafficLightController(self, manager)
        return self.control

    def update(self) -> None:
        for road in self.roads + self.in_roads:
            road.update()
        if self.control is not None:
            self.control.rebind()

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id, "x": self.x, "y": self.y}
        if self.control is not None:
            data["control"] = self.control.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Intersection":
        """Copy an intersection from persisted data; roads are re-linked by the world."""

        result = cls(data["id"], data.get("x", 0.0), data.get("y", 0.0))
        control = data.get("control")
        if isinstance(control, Mapping):
            result._control_snapshot = dict(control)
        return result
