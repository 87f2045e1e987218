"""Adaptive timing: the fixed phase table with a traffic-aware switch predicate."""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .base import PHASE_EPSILON, SignalMatrix, StrategyConfig, TrafficState, ingest_traffic_states
from .fixed import PhaseTableStrategy

log = logging.getLogger(__name__)

# Demand at which a phase earns the full extension towards max_phase_duration.
DEMAND_SATURATION = 20.0
EARLY_SWITCH_FRACTION = 0.75
EARLY_SWITCH_RATIO = 2.0
# Skip straight to the busiest phase when it beats both the current and the next one.
JUMP_CURRENT_RATIO = 3.0
JUMP_NEXT_RATIO = 2.0
EXTEND_RATIO = 0.8
MAX_EXTENSION_FRACTION = 0.5
HISTORY_LENGTH = 10


@dataclass
class AdaptiveTimingConfig(StrategyConfig):
    min_phase_duration: float = 10.0
    max_phase_duration: float = 60.0
    base_duration: float = 30.0
    traffic_sensitivity: float = 0.5
    queue_weight: float = 1.0
    wait_time_weight: float = 1.0
    enable_logging: bool = False


class AdaptiveTimingStrategy(PhaseTableStrategy):
    """Stretches or shortens phases according to the demand on their approaches.

    Demand for a phase is the weighted sum of queue length and average wait
    over the approaches that phase serves. A phase never ends before
    ``min_phase_duration``; it may end early when the next phase has more
    than twice its demand, and it may run past its target (never beyond
    ``max_phase_duration``) while its own demand still dominates. An empty
    phase gives way as soon as the minimum has elapsed if anyone is waiting
    on the next one, and a phase with overwhelming demand is jumped to
    directly instead of cycling through the phases in between.
    """

    strategy_type = "adaptive-timing"
    display_name = "Adaptive Timing"
    description = "Adapts traffic signal timings based on real-time traffic conditions"
    config_class = AdaptiveTimingConfig

    def __init__(self) -> None:
        super().__init__()
        self._reset_metrics()
        self._reset_history()
        self.next_phase_change_time = self.phase_duration_for_current_phase()

    def _reset_metrics(self) -> None:
        self.queue_lengths: List[float] = [0.0] * 4
        self.wait_times: List[float] = [0.0] * 4
        self.flow_rates: List[float] = [0.0] * 4
        self.has_traffic_data = False

    def _reset_history(self) -> None:
        self.phase_changes = 0
        self.phase_duration_history: List[float] = []
        self.traffic_score_history: List[float] = []
        self._jump_phase: Optional[int] = None

    def reset(self) -> None:
        self._reset_metrics()
        self._reset_history()
        super().reset()

    # -- demand ----------------------------------------------------------

    def demand_for_phase(self, phase: int) -> float:
        cfg = self.config
        return sum(
            cfg.queue_weight * self.queue_lengths[approach]
            + cfg.wait_time_weight * self.wait_times[approach]
            for approach in self.active_approaches(phase)
        )

    def target_duration(self, demand: float) -> float:
        cfg = self.config
        factor = min(1.0, demand / DEMAND_SATURATION)
        duration = cfg.base_duration + cfg.traffic_sensitivity * factor * (
            cfg.max_phase_duration - cfg.base_duration
        )
        return min(cfg.max_phase_duration, max(cfg.min_phase_duration, duration))

    def phase_duration_for_current_phase(self) -> float:
        return self.target_duration(self.demand_for_phase(self.current_phase))

    # -- phase timer -----------------------------------------------------

    def update(
        self, delta: float, traffic_states: Optional[Sequence[TrafficState]] = None
    ) -> SignalMatrix:
        if ingest_traffic_states(traffic_states, self.queue_lengths, self.wait_times, self.flow_rates):
            self.has_traffic_data = True
        return super().update(delta, traffic_states)

    def should_switch_phase(self, traffic_states: Optional[Sequence[TrafficState]] = None) -> bool:
        if not traffic_states:
            return super().should_switch_phase(traffic_states)

        cfg = self.config
        elapsed = self.time_in_phase
        target = self.next_phase_change_time
        if elapsed < cfg.min_phase_duration - PHASE_EPSILON:
            return False

        current = self.demand_for_phase(self.current_phase)
        upcoming = self.demand_for_phase((self.current_phase + 1) % self.total_phases)

        if current == 0 and upcoming > 0:
            self._log("Empty phase: upcoming demand %.1f is waiting", upcoming)
            return True

        if elapsed >= EARLY_SWITCH_FRACTION * target - PHASE_EPSILON:
            if upcoming > EARLY_SWITCH_RATIO * current:
                self._log("Early switch: upcoming demand %.1f vs current %.1f", upcoming, current)
                return True
            busiest = max(range(self.total_phases), key=self.demand_for_phase)
            peak = self.demand_for_phase(busiest)
            if peak > JUMP_CURRENT_RATIO * current and peak > JUMP_NEXT_RATIO * upcoming:
                self._log("Jumping to phase %d: demand %.1f vs current %.1f", busiest + 1, peak, current)
                self._jump_phase = busiest
                return True

        if elapsed < target - PHASE_EPSILON:
            return False

        if current > 0 and current > EXTEND_RATIO * upcoming and elapsed < cfg.max_phase_duration - PHASE_EPSILON:
            extension = MAX_EXTENSION_FRACTION * cfg.base_duration * min(1.0, (current - upcoming) / current)
            if elapsed < target + extension - PHASE_EPSILON:
                return False
        return True

    def advance_to_next_phase(self, next_phase: Optional[int] = None) -> None:
        finished = self.current_phase
        if next_phase is None:
            next_phase = self._jump_phase
        self._jump_phase = None
        super().advance_to_next_phase(next_phase)
        self.phase_changes += 1
        demand = self.demand_for_phase(self.current_phase)
        self.phase_duration_history.append(self.next_phase_change_time)
        self.traffic_score_history.append(demand)
        del self.phase_duration_history[:-HISTORY_LENGTH]
        del self.traffic_score_history[:-HISTORY_LENGTH]
        self._log(
            "Phase %d -> %d: demand=%.1f target=%.1fs",
            finished + 1,
            self.current_phase + 1,
            demand,
            self.next_phase_change_time,
        )

    # -- analytics -------------------------------------------------------

    def performance_analytics(self) -> Dict[str, Any]:
        durations = self.phase_duration_history
        scores = self.traffic_score_history
        base = self.config.base_duration
        if durations and base > 0:
            adaptation_rate = sum(abs(d - base) / base for d in durations) / len(durations)
        else:
            adaptation_rate = 0.0
        return {
            "phase_duration_avg": sum(durations) / len(durations) if durations else 0.0,
            "phase_duration_min": min(durations) if durations else 0.0,
            "phase_duration_max": max(durations) if durations else 0.0,
            "phase_changes": self.phase_changes,
            "traffic_score_avg": sum(scores) / len(scores) if scores else 0.0,
            "adaptation_rate": adaptation_rate,
            "demand_by_phase": [self.demand_for_phase(p) for p in range(self.total_phases)],
        }

    def _log(self, message: str, *args: Any) -> None:
        level = logging.INFO if self.config.enable_logging else logging.DEBUG
        log.log(level, "[%s] " + message, getattr(self.intersection, "id", "unbound"), *args)

    # -- persistence -----------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            queue_lengths=list(self.queue_lengths),
            wait_times=list(self.wait_times),
            flow_rates=list(self.flow_rates),
            phase_changes=self.phase_changes,
            phase_duration_history=list(self.phase_duration_history),
            traffic_score_history=list(self.traffic_score_history),
            analytics=self.performance_analytics(),
        )
        return data

    def _restore_after_initialize(self, data: Mapping[str, Any]) -> None:
        for name in ("queue_lengths", "wait_times", "flow_rates"):
            values = data.get(name)
            if isinstance(values, list) and len(values) == 4:
                setattr(self, name, [float(v) for v in values])
        self.has_traffic_data = any(self.queue_lengths) or any(self.wait_times)
        self.phase_changes = int(data.get("phase_changes", 0))
        for name in ("phase_duration_history", "traffic_score_history"):
            values = data.get(name)
            if isinstance(values, list):
                setattr(self, name, [float(v) for v in values][-HISTORY_LENGTH:])
        super()._restore_after_initialize(data)
