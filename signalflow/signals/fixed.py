"""Fixed-timing strategy: a four-phase cycle with per-intersection offsets."""
from __future__ import annotations

from dataclasses import dataclass
import logging
import random
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .base import (
    SignalMatrix,
    StrategyConfig,
    TrafficControlStrategy,
    TrafficState,
    decode_movements,
)

log = logging.getLogger(__name__)

# One row per phase, one code per approach (N, E, S, W).
FOUR_PHASE_TABLE: List[List[str]] = [
    ["L", "", "L", ""],  # North & South left turns
    ["FR", "", "FR", ""],  # North & South forward and right
    ["", "L", "", "L"],  # East & West left turns
    ["", "FR", "", "FR"],  # East & West forward and right
]
SINGLE_PHASE_TABLE: List[List[str]] = [["LFR", "LFR", "LFR", "LFR"]]

# 160 frames at 30 fps.
DEFAULT_BASE_DURATION = 160 / 30


@dataclass
class FixedTimingConfig(StrategyConfig):
    base_duration: float = DEFAULT_BASE_DURATION
    variation_percentage: float = 5.0
    enable_logging: bool = False


class PhaseTableStrategy(TrafficControlStrategy):
    """Strategy whose matrix comes from a table of phase codes.

    Intersections with two or fewer connecting roads cannot have conflicting
    movements, so the table collapses to one phase that allows everything.
    """

    def __init__(self) -> None:
        super().__init__()
        self.states: List[List[str]] = [list(row) for row in FOUR_PHASE_TABLE]
        self.total_phases = len(self.states)

    def initialize(self, intersection) -> None:
        self.intersection = intersection
        if self.road_count <= 2:
            self.states = [list(row) for row in SINGLE_PHASE_TABLE]
        else:
            self.states = [list(row) for row in FOUR_PHASE_TABLE]
        self.total_phases = len(self.states)
        self.reset()

    def phase_codes(self, phase: int) -> List[str]:
        return self.states[phase % len(self.states)]

    def active_approaches(self, phase: int) -> List[int]:
        return [index for index, code in enumerate(self.phase_codes(phase)) if code]

    def _signal_states(self) -> SignalMatrix:
        return [decode_movements(code) for code in self.phase_codes(self.current_phase)]

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["states"] = [list(row) for row in self.states]
        return data


class FixedTimingStrategy(PhaseTableStrategy):
    """Cycles through the phase table with a fixed, slightly jittered duration.

    A multiplier drawn once per instance (and persisted) shifts the base
    duration by up to ``variation_percentage`` percent in either direction,
    so neighbouring intersections drift apart naturally.
    """

    strategy_type = "fixed-timing"
    display_name = "Fixed Timing"
    description = "Cycles through traffic signal phases with fixed durations"
    config_class = FixedTimingConfig

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        super().__init__()
        self.flip_multiplier = (rng or random).random()
        self.elapsed_time = 0.0
        self.next_phase_change_time = self.phase_duration_for_current_phase()
        self._reset_timing_stats()

    def _reset_timing_stats(self) -> None:
        self.phase_start_times = [0.0] * self.total_phases
        self.phase_durations = [0.0] * self.total_phases
        self.phase_target_durations = [0.0] * self.total_phases

    def initialize(self, intersection) -> None:
        super().initialize(intersection)
        self._reset_timing_stats()
        self._log(
            "Initialized for intersection %s: phases=%d base=%.2fs variation=%.1f%%",
            getattr(intersection, "id", "unknown"),
            self.total_phases,
            self.config.base_duration,
            self.config.variation_percentage,
        )

    def phase_duration_for_current_phase(self) -> float:
        variation = self.config.variation_percentage / 100
        return self.config.base_duration * (1 + (2 * self.flip_multiplier - 1) * variation)

    def update(
        self, delta: float, traffic_states: Optional[Sequence[TrafficState]] = None
    ) -> SignalMatrix:
        if self.time_in_phase == 0:
            self.phase_start_times[self.current_phase] = self.elapsed_time
            self.phase_target_durations[self.current_phase] = self.next_phase_change_time
        self.elapsed_time += delta
        return super().update(delta, traffic_states)

    def advance_to_next_phase(self, next_phase: Optional[int] = None) -> None:
        finished = self.current_phase
        actual = self.elapsed_time - self.phase_start_times[finished]
        self.phase_durations[finished] = actual
        super().advance_to_next_phase(next_phase)
        self._log(
            "Phase %d completed: actual=%.2fs target=%.2fs, now phase %d/%d",
            finished + 1,
            actual,
            self.phase_target_durations[finished],
            self.current_phase + 1,
            self.total_phases,
        )

    def timing_statistics(self) -> Dict[str, Any]:
        """Actual versus target phase durations in simulated seconds."""

        deviations = [
            abs(actual - target)
            for actual, target in zip(self.phase_durations, self.phase_target_durations)
            if actual > 0
        ]
        return {
            "phase_start_times": list(self.phase_start_times),
            "phase_durations": list(self.phase_durations),
            "phase_target_durations": list(self.phase_target_durations),
            "average_deviation": sum(deviations) / len(deviations) if deviations else 0.0,
            "max_deviation": max(deviations) if deviations else 0.0,
        }

    def set_logging(self, enabled: bool) -> None:
        self.config.enable_logging = bool(enabled)

    def _log(self, message: str, *args: Any) -> None:
        level = logging.INFO if self.config.enable_logging else logging.DEBUG
        log.log(level, "[%s] " + message, getattr(self.intersection, "id", "unbound"), *args)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["flip_multiplier"] = self.flip_multiplier
        data["elapsed_time"] = self.elapsed_time
        data["timing_stats"] = self.timing_statistics()
        return data

    def _restore_before_initialize(self, data: Mapping[str, Any]) -> None:
        super()._restore_before_initialize(data)
        if "flip_multiplier" in data:
            self.flip_multiplier = float(data["flip_multiplier"])

    def _restore_after_initialize(self, data: Mapping[str, Any]) -> None:
        super()._restore_after_initialize(data)
        self.elapsed_time = float(data.get("elapsed_time", 0.0))
        stats = data.get("timing_stats")
        if isinstance(stats, Mapping):
            for name in ("phase_start_times", "phase_durations", "phase_target_durations"):
                values = stats.get(name)
                if isinstance(values, list) and len(values) == self.total_phases:
                    setattr(self, name, [float(v) for v in values])

