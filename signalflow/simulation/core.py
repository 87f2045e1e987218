"""Core simulation world for SignalFlow.

Assumptions
-----------
- Time advances in ticks of at most one second chosen by the caller; a
  larger tick is a caller bug and is rejected before anything changes.
- Within a tick the order is fixed: clock, car population, signal
  controllers, car movement, KPI sampling.
- Every random choice (spawn road, trip, patience, signal offsets) goes
  through the world's ``random.Random`` so a seeded world is reproducible.

Default parameters are chosen for quick experiments: a 3x3 grid, a handful
of cars and fixed-timing signals. They can be overridden via configuration
files or constructor arguments.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union
import json
import logging
import math
import random

import yaml

from signalflow.agents.vehicle import Car
from signalflow.errors import TickDeltaError
from signalflow.map.generator import GridConfig, build_grid_world
from signalflow.metrics.collector import MetricsCollector, MetricSnapshot
from signalflow.model.intersection import Intersection
from signalflow.model.pool import EntityPool
from signalflow.model.road import Lane, Road
from signalflow.signals.manager import DEFAULT_STRATEGY, StrategyManager, build_default_manager

log = logging.getLogger(__name__)

MAX_TICK = 1.0
# Cars are not spawned closer than this to another car on the same lane.
SPAWN_CLEARANCE = 10.0


@dataclass
class SimulationConfig:
    """Aggregate configuration for the world and map generation."""

    tick_duration: float = 1.0
    max_ticks: int = 3600
    seed: Optional[int] = None
    cars_number: int = 20
    trip_budget: int = 10
    strategy: str = DEFAULT_STRATEGY
    strategy_settings: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    grid: GridConfig = field(default_factory=GridConfig)

    @classmethod
    def from_mapping(cls, mapping: Mapping) -> "SimulationConfig":
        """Build a configuration object from a dictionary-like source."""

        grid_cfg = mapping.get("grid", {}) if isinstance(mapping.get("grid", {}), Mapping) else {}
        settings = mapping.get("strategy_settings", {})
        if not isinstance(settings, Mapping):
            raise ValueError("strategy_settings must be a mapping of strategy key to options.")

        tick_duration = float(mapping.get("tick_duration", cls.tick_duration))
        if not 0 < tick_duration <= MAX_TICK:
            raise ValueError(f"tick_duration must be within (0, {MAX_TICK}], got {tick_duration}")

        return cls(
            tick_duration=tick_duration,
            max_ticks=int(mapping.get("max_ticks", cls.max_ticks)),
            seed=mapping.get("seed"),
            cars_number=int(mapping.get("cars_number", cls.cars_number)),
            trip_budget=int(mapping.get("trip_budget", cls.trip_budget)),
            strategy=str(mapping.get("strategy", cls.strategy)),
            strategy_settings={str(k): dict(v) for k, v in settings.items()},
            grid=GridConfig.from_mapping(grid_cfg),
        )


def load_config(path: Union[str, Path]) -> SimulationConfig:
    """Load simulation configuration from a JSON or YAML file."""

    path = Path(path)
    content = path.read_text()
    if path.suffix.lower() in {".yml", ".yaml"}:
        mapping = yaml.safe_load(content)
    else:
        mapping = json.loads(content)

    if not isinstance(mapping, Mapping):
        raise ValueError("Configuration file must contain a mapping at the top level.")

    return SimulationConfig.from_mapping(mapping)


class World:
    """Intersections, roads and cars advanced together by :meth:`on_tick`."""

    def __init__(
        self,
        *,
        seed: Optional[int] = None,
        manager: Optional[StrategyManager] = None,
        metrics: Optional[MetricsCollector] = None,
        speed_limit: float = GridConfig.speed_limit,
        trip_budget: int = SimulationConfig.trip_budget,
    ) -> None:
        self.rng = random.Random(seed)
        self.manager = manager or build_default_manager(self.rng)
        self.metrics = metrics or MetricsCollector()
        self.speed_limit = speed_limit
        self.trip_budget = trip_budget
        self._reset()

    def _reset(self) -> None:
        self.intersections: EntityPool[Intersection] = EntityPool(Intersection.from_dict)
        self.roads: EntityPool[Road] = EntityPool(self._road_from_dict)
        self.cars: EntityPool[Car] = EntityPool(self._car_from_dict)
        self.cars_number = 0
        self.time = 0.0
        self._next_car_id = 0

    @classmethod
    def from_config(cls, config: SimulationConfig) -> "World":
        world = cls(
            seed=config.seed,
            speed_limit=config.grid.speed_limit,
            trip_budget=config.trip_budget,
        )
        for key, options in config.strategy_settings.items():
            world.manager.apply_strategy_settings(key, options)
        if not world.manager.select_strategy(config.strategy):
            raise ValueError(f"Unknown strategy in configuration: {config.strategy!r}")
        build_grid_world(world, config.grid)
        world.cars_number = config.cars_number
        return world

    # -- network -------------------------------------------------------------

    def add_intersection(self, intersection_id: str, x: float, y: float) -> Intersection:
        intersection = Intersection(intersection_id, x, y)
        self.intersections.put(intersection)
        intersection.attach_control(self.manager)
        return intersection

    def _intersection(self, intersection_id: str) -> Intersection:
        intersection = self.intersections.get(intersection_id)
        if intersection is None:
            raise KeyError(f"Unknown intersection {intersection_id!r}")
        return intersection

    def add_road(
        self, road_id: str, source_id: str, target_id: str, *, lanes_number: int = 2
    ) -> Road:
        road = Road(
            road_id,
            self._intersection(source_id),
            self._intersection(target_id),
            lanes_number=lanes_number,
        )
        self.roads.put(road)
        self._link(road)
        road.source.update()
        road.target.update()
        return road

    @staticmethod
    def _link(road: Road) -> None:
        road.source.roads.append(road)
        road.target.in_roads.append(road)

    def _road_from_dict(self, data: Mapping[str, Any]) -> Road:
        return Road(
            data["id"],
            self._intersection(data["source"]),
            self._intersection(data["target"]),
            lanes_number=data.get("lanes_number", 2),
        )

    @staticmethod
    def _car_from_dict(data: Any) -> Car:
        raise ValueError("Cars are not persisted")

    # -- cars ------------------------------------------------------------------

    def add_car(self, car: Car) -> Car:
        self.cars.put(car)
        return car

    def remove_car(self, car: Union[Car, str]) -> Optional[Car]:
        return self.cars.pop(car)

    def _spawn_lane(self) -> Optional[tuple[Lane, float]]:
        roads = list(self.roads)
        if not roads:
            return None
        road = self.rng.choice(roads)
        lane = min(road.lanes, key=lambda candidate: len(candidate.cars_positions))
        for position in (0.0, lane.length * 0.1, lane.length * 0.2):
            if all(
                abs(other.position - position) >= SPAWN_CLEARANCE
                for other in lane.cars_positions.values()
            ):
                return lane, position
        return None

    def add_random_car(self) -> Optional[Car]:
        """Spawn a car on a random road, or do nothing when no free spot is found."""

        spot = self._spawn_lane()
        if spot is None:
            return None
        lane, position = spot
        self._next_car_id += 1
        car = Car(
            f"car{self._next_car_id}",
            trip_budget=self.trip_budget,
            patience=self.rng.uniform(0.8, 1.2),
            speed_limit=self.speed_limit,
            rng=self.rng,
        )
        car.velocity = min(car.desired_speed(), self.rng.uniform(5.0, 10.0))
        car.place(lane, position)
        return self.add_car(car)

    def remove_random_car(self) -> Optional[Car]:
        cars = list(self.cars)
        if not cars:
            return None
        return self.remove_car(self.rng.choice(cars))

    def refresh_cars(self) -> None:
        """Move the car count one step towards ``cars_number``."""

        count = len(self.cars)
        if count < self.cars_number:
            self.add_random_car()
        elif count > self.cars_number:
            self.remove_random_car()

    # -- signals ---------------------------------------------------------------

    def set_strategy(self, key: str) -> bool:
        """Select ``key`` and switch every intersection to a fresh instance of it."""

        if not self.manager.select_strategy(key):
            return False
        for intersection in self.intersections:
            if intersection.control is not None:
                intersection.control.set_strategy(key)
        log.info("Switched %d intersections to %s", len(self.intersections), key)
        return True

    def apply_strategy_settings(self, key: str, options: Mapping[str, Any]) -> Dict[str, Any]:
        """Store settings for ``key`` and push them to running strategies of that type."""

        settings = self.manager.apply_strategy_settings(key, options)
        for intersection in self.intersections:
            control = intersection.control
            if control is not None and control.strategy_type == key:
                control.strategy.update_config(options)
        return settings

    # -- ticking ---------------------------------------------------------------

    def on_tick(self, delta: float) -> Optional[MetricSnapshot]:
        """Advance the world by ``delta`` seconds (at most one).

        Returns the KPI snapshot taken when a whole second was crossed.
        """

        if not 0 <= delta <= MAX_TICK:
            raise TickDeltaError(delta)

        previous = self.time
        self.time += delta
        self.refresh_cars()

        for intersection in self.intersections:
            if intersection.control is not None:
                intersection.control.on_tick(delta)

        for car in self.cars:
            car.move(delta)
            if not car.alive:
                self.remove_car(car)

        snapshot = None
        for _ in range(math.floor(self.time + 1e-9) - math.floor(previous + 1e-9)):
            snapshot = self.metrics.sample(self.time, list(self.cars), list(self.intersections))
        return snapshot

    def run(self, ticks: int, delta: float = 1.0) -> None:
        for _ in range(ticks):
            self.on_tick(delta)

    @property
    def instant_speed(self) -> float:
        cars = list(self.cars)
        return sum(car.velocity for car in cars) / len(cars) if cars else 0.0

    # -- persistence -----------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Snapshot of the network and signal state. Cars are not persisted."""

        return {
            "time": self.time,
            "cars_number": self.cars_number,
            "strategy": self.manager.get_selected_strategy_type(),
            "intersections": self.intersections.to_dict(),
            "roads": self.roads.to_dict(),
        }

    def load(self, data: Mapping[str, Any]) -> None:
        """Replace the whole world with ``data``."""

        self._reset()
        self.time = float(data.get("time", 0.0))
        self.cars_number = int(data.get("cars_number", 0))
        strategy = data.get("strategy")
        if isinstance(strategy, str):
            self.manager.select_strategy(strategy)

        self.intersections = EntityPool(Intersection.from_dict, data.get("intersections") or {})
        self.roads = EntityPool(self._road_from_dict, data.get("roads") or {})
        for road in self.roads:
            self._link(road)
        for intersection in self.intersections:
            intersection.attach_control(self.manager)
        self.metrics.reset()

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, text: str, **kwargs: Any) -> "World":
        world = cls(**kwargs)
        world.load(json.loads(text))
        return world
