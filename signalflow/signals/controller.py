"""Per-intersection signal controller: samples traffic and drives a strategy."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from signalflow.metrics.collector import ApproachSampler

from .base import MOVEMENTS, SignalMatrix, TrafficControlStrategy, TrafficState, copy_matrix

if TYPE_CHECKING:  # pragma: no cover
    from signalflow.model.intersection import Intersection

    from .manager import StrategyManager

log = logging.getLogger(__name__)


class TrafficLightController:
    """Binds one strategy to one intersection.

    Each tick the controller samples the approaches, hands the sample to the
    strategy and caches the returned matrix. Cars only ever read the cached
    matrix through :meth:`allows`.
    """

    def __init__(
        self,
        intersection: "Intersection",
        manager: "StrategyManager",
        strategy: Optional[TrafficControlStrategy] = None,
    ) -> None:
        self.intersection = intersection
        self.manager = manager
        self.time = 0.0
        self.sampler = ApproachSampler(intersection)
        self.strategy = strategy or manager.apply_to_intersection(intersection)
        self.traffic_states: List[TrafficState] = [TrafficState() for _ in range(4)]
        self._state = self.strategy.current_signal_states()

    @property
    def state(self) -> SignalMatrix:
        return copy_matrix(self._state)

    @property
    def strategy_type(self) -> str:
        return self.strategy.strategy_type

    def on_tick(self, delta: float) -> None:
        self.time += delta
        self.traffic_states = self.sampler.sample(self.time, self._state)
        self._state = self.strategy.update(delta, self.traffic_states)

    def allows(self, approach: int, movement: int) -> bool:
        # U-turns follow the left-turn signal.
        if movement >= len(MOVEMENTS):
            movement = 0
        return bool(self._state[approach][movement])

    def record_crossing(self, approach: int) -> None:
        self.sampler.record_crossing(approach, self.time)

    def set_strategy(self, key: str) -> TrafficControlStrategy:
        self.strategy = self.manager.apply_to_intersection(self.intersection, key)
        self._state = self.strategy.current_signal_states()
        log.debug("Intersection %s now uses %s", self.intersection.id, key)
        return self.strategy

    def rebind(self) -> None:
        """Re-initialize the strategy after the intersection's roads changed."""

        self.strategy.initialize(self.intersection)
        self._state = self.strategy.current_signal_states()

    def reset(self) -> None:
        self.time = 0.0
        self.sampler.reset()
        self.strategy.reset()
        self.traffic_states = [TrafficState() for _ in range(4)]
        self._state = self.strategy.current_signal_states()

    def to_dict(self) -> Dict[str, Any]:
        return {"time": self.time, "strategy": self.strategy.to_dict()}

    @classmethod
    def from_dict(
        cls, data: Mapping[str, Any], intersection: "Intersection", manager: "StrategyManager"
    ) -> "TrafficLightController":
        strategy = manager.create_from_dict(data.get("strategy"), intersection)
        controller = cls(intersection, manager, strategy=strategy)
        controller.time = float(data.get("time", 0.0))
        return controller
