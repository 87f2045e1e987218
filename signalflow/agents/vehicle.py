"""Cars driving along lanes with Intelligent Driver Model (IDM) car-following."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import math
import random

from signalflow.model.road import LEFT, RIGHT, U_TURN, Lane, LanePosition, Road

# Below this speed (m/s) a car counts as waiting.
WAITING_SPEED = 1.0


@dataclass(eq=False)
class Car:
    """IDM car that stops at red signals and leaves the world after its trip.

    ``trip_budget`` is the number of intersections the car still crosses
    before it disappears at the end of its current road.
    """

    id: str
    trip_budget: int = 10
    patience: float = 1.0
    speed_limit: float = 13.9  # ~50 km/h
    velocity: float = 0.0
    acceleration: float = 0.0
    length: float = 4.5
    wait_time: float = 0.0
    crossings: int = 0
    alive: bool = True

    # IDM parameters
    desired_time_headway: float = 1.5
    minimum_spacing: float = 2.0
    acceleration_max: float = 1.0
    deceleration_comfortable: float = 1.5
    delta: int = 4

    rng: random.Random = field(default_factory=random.Random, repr=False)
    lane_position: Optional[LanePosition] = field(default=None, init=False, repr=False)
    next_road: Optional[Road] = field(default=None, init=False, repr=False)

    # -- placement ---------------------------------------------------------

    def place(self, lane: Lane, position: float = 0.0) -> None:
        if self.lane_position is None:
            self.lane_position = LanePosition(self, lane, position)
        else:
            self.lane_position.lane = lane
            self.lane_position.position = position
        self.lane_position.acquire()
        self.next_road = self._choose_next_road()

    def release(self) -> None:
        if self.lane_position is not None:
            self.lane_position.release()

    @property
    def lane(self) -> Optional[Lane]:
        return self.lane_position.lane if self.lane_position else None

    @property
    def road(self) -> Optional[Road]:
        lane = self.lane
        return lane.road if lane else None

    @property
    def position(self) -> float:
        return self.lane_position.position if self.lane_position else 0.0

    @property
    def movement(self) -> Optional[int]:
        """Turn the car takes at the end of its road, ``None`` when its trip ends there."""

        road = self.road
        if road is None or self.next_road is None:
            return None
        return road.turn_direction(self.next_road)

    def distance_to_stop_line(self) -> float:
        lane = self.lane
        if lane is None:
            return math.inf
        return lane.length - self.position - self.length / 2

    def may_cross(self) -> bool:
        movement = self.movement
        if movement is None:
            return True
        control = self.road.target.control
        if control is None:
            return True
        return control.allows(self.road.approach, movement)

    def _choose_next_road(self) -> Optional[Road]:
        road = self.road
        if road is None or self.trip_budget <= 0:
            return None
        options: List[Road] = [r for r in road.target.roads if r.target is not road.source]
        if not options:
            options = list(road.target.roads)
        if not options:
            return None
        return self.rng.choice(options)

    # -- dynamics ------------------------------------------------------------

    def desired_speed(self) -> float:
        return max(self.speed_limit * self.patience, 0.0)

    def _idm_desired_gap(self, relative_speed: float) -> float:
        return self.minimum_spacing + max(
            0.0,
            self.velocity * self.desired_time_headway
            + (self.velocity * relative_speed)
            / (2 * math.sqrt(self.acceleration_max * self.deceleration_comfortable)),
        )

    def compute_acceleration(self, gap: float, leader_velocity: float = 0.0) -> float:
        """IDM acceleration towards an obstacle ``gap`` metres ahead moving at ``leader_velocity``."""

        desired = self.desired_speed()
        if desired <= 0:
            return -self.deceleration_comfortable

        s_star = self._idm_desired_gap(self.velocity - leader_velocity)
        free_flow_term = (self.velocity / desired) ** self.delta
        interaction_term = (s_star / max(gap, 0.1)) ** 2 if math.isfinite(gap) else 0.0

        return self.acceleration_max * (1 - free_flow_term - interaction_term)

    def move(self, dt: float) -> None:
        """Advance the car by ``dt`` seconds, crossing an intersection when allowed."""

        if not self.alive or self.lane_position is None or dt <= 0:
            return

        ahead, car_gap = self.lane_position.next_car_distance()
        gap, leader_velocity = car_gap, ahead.velocity if ahead is not None else 0.0
        stop_gap = self.distance_to_stop_line()
        must_stop = not self.may_cross()
        if must_stop and stop_gap < gap:
            gap, leader_velocity = stop_gap, 0.0

        self.acceleration = self.compute_acceleration(gap, leader_velocity)
        self.velocity = max(0.0, min(self.desired_speed(), self.velocity + self.acceleration * dt))
        distance = max(self.velocity * dt + 0.5 * self.acceleration * dt * dt, 0.0)
        distance = min(distance, max(car_gap, 0.0))
        if must_stop and distance >= stop_gap:
            distance = max(stop_gap, 0.0)
            self.velocity = 0.0

        self.lane_position.position += distance
        if self.velocity < WAITING_SPEED:
            self.wait_time += dt

        overflow = -self.distance_to_stop_line()
        if not must_stop and overflow >= 0:
            self._leave_road(overflow)

    def _leave_road(self, overflow: float) -> None:
        road = self.road
        next_road = self.next_road
        if next_road is None:
            self.alive = False
            self.velocity = 0.0
            return

        movement = road.turn_direction(next_road)
        control = road.target.control
        if control is not None:
            control.record_crossing(road.approach)

        if movement in (LEFT, U_TURN):
            lane = next_road.leftmost_lane
        elif movement == RIGHT:
            lane = next_road.rightmost_lane
        else:
            lane = next_road.lanes[min(self.lane.index, len(next_road.lanes) - 1)]

        self.trip_budget -= 1
        self.crossings += 1
        self.wait_time = 0.0
        self.place(lane, min(overflow, lane.length))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "road": self.road.id if self.road else None,
            "lane": self.lane.index if self.lane else None,
            "position": self.position,
            "velocity": self.velocity,
            "wait_time": self.wait_time,
            "trip_budget": self.trip_budget,
        }

