"""Traffic enforcer: a reactive controller that picks green movements by score.

Instead of cycling phases, the enforcer periodically scores every
(approach, movement) pair from queue, wait and flow observations and turns
green the best-scoring set that has no conflicting movements. It decides
immediately when an approach is critically congested or when green time
has been allocated very unevenly.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .base import (
    APPROACH_NAMES,
    APPROACHES,
    MOVEMENT_NAMES,
    MOVEMENTS,
    PHASE_EPSILON,
    SignalMatrix,
    StrategyConfig,
    TrafficControlStrategy,
    TrafficState,
    _check_delta,
    all_red,
    copy_matrix,
    ingest_traffic_states,
)

log = logging.getLogger(__name__)

Movement = Tuple[int, int]

# Movements that may not be green together. Lookups are symmetric.
CONFLICTS: Dict[str, Tuple[str, ...]] = {
    "N-L": ("E-L", "E-F", "S-F", "S-R", "W-L", "W-F"),
    "N-F": ("E-L", "E-F", "E-R", "S-L", "W-L", "W-F", "W-R"),
    "N-R": ("E-F", "E-R", "S-L", "W-L"),
    "E-L": ("N-L", "N-F", "S-L", "S-F", "W-F", "W-R"),
    "E-F": ("N-L", "N-F", "N-R", "S-L", "S-F", "S-R", "W-L"),
    "E-R": ("N-F", "N-R", "S-L", "W-L"),
    "S-L": ("N-F", "N-R", "E-L", "E-F", "W-L", "W-F"),
    "S-F": ("N-L", "E-L", "E-F", "E-R", "W-L", "W-F", "W-R"),
    "S-R": ("N-L", "E-F", "E-R", "W-L"),
    "W-L": ("N-L", "N-F", "N-R", "E-L", "E-R", "S-L", "S-R"),
    "W-F": ("N-L", "N-F", "E-L", "E-F", "S-L", "S-F"),
    "W-R": ("N-F", "N-R", "E-L", "S-F"),
}

PRIORITY_DIRECTION_BONUS = 2.0
PRIORITY_MOVEMENT_BONUS = 3.0
FORWARD_BONUS = 1.0
FAIRNESS_BONUS = 3.0
FAIRNESS_FLOOR = 0.3


def movement_code(direction: int, movement: int) -> str:
    return f"{APPROACHES[direction]}-{MOVEMENTS[movement]}"


def timer_key(direction: int, movement: int) -> str:
    return f"{direction}-{movement}"


def congestion_score(queue_length: float, wait_time: float, flow_rate: float) -> float:
    """0-10 congestion score for one approach."""

    queue_score = min(10.0, queue_length / 2)
    wait_score = min(10.0, wait_time / 30)
    flow_score = 10 / max(1.0, flow_rate) if flow_rate > 0 else 10.0
    return 0.5 * queue_score + 0.3 * wait_score + 0.2 * flow_score


def build_conflict_table(present: Iterable[int]) -> Dict[str, FrozenSet[str]]:
    """Conflict table restricted to the approaches that exist."""

    prefixes = {APPROACHES[d] + "-" for d in present}
    return {
        key: frozenset(other for other in others if other[:2] in prefixes)
        for key, others in CONFLICTS.items()
        if key[:2] in prefixes
    }


def _parse_movement(value: Any) -> Optional[Movement]:
    if isinstance(value, Mapping):
        direction, movement = value.get("direction"), value.get("movement")
    elif isinstance(value, (list, tuple)) and len(value) == 2:
        direction, movement = value
    else:
        return None
    try:
        direction, movement = int(direction), int(movement)
    except (TypeError, ValueError):
        return None
    if direction in range(len(APPROACHES)) and movement in range(len(MOVEMENTS)):
        return direction, movement
    return None


@dataclass
class TrafficEnforcerConfig(StrategyConfig):
    decision_interval: float = 5.0
    minimum_green_time: float = 10.0
    priority_threshold: float = 7.0
    emergency_threshold: float = 9.0
    fairness_window: float = 60.0
    prioritized_directions: List[int] = field(default_factory=list)
    prioritized_movements: List[Any] = field(default_factory=list)


class TrafficEnforcerStrategy(TrafficControlStrategy):
    strategy_type = "traffic-enforcer"
    display_name = "Traffic Enforcer"
    description = (
        "Simulates a traffic enforcer making real-time decisions based on traffic conditions"
    )
    config_class = TrafficEnforcerConfig

    def __init__(self) -> None:
        super().__init__()
        self.total_phases = 1
        self.conflicts: Dict[str, FrozenSet[str]] = build_conflict_table(range(len(APPROACHES)))
        self._reset_state()

    def _reset_state(self) -> None:
        self.current_signals: SignalMatrix = all_red()
        self.active_movements: List[Movement] = []
        self.green_timers: Dict[str, float] = {
            timer_key(d, m): 0.0 for d in range(len(APPROACHES)) for m in range(len(MOVEMENTS))
        }
        self.direction_history: List[float] = [0.0] * len(APPROACHES)
        self.time_since_last_decision = 0.0
        self.queue_lengths: List[float] = [0.0] * len(APPROACHES)
        self.wait_times: List[float] = [0.0] * len(APPROACHES)
        self.flow_rates: List[float] = [0.0] * len(APPROACHES)
        self.congestion_scores: List[float] = [0.0] * len(APPROACHES)
        self.decisions = 0
        self.emergency_decisions = 0

    def initialize(self, intersection) -> None:
        self.intersection = intersection
        self.conflicts = build_conflict_table(self.present_approaches())
        self.reset()

    def reset(self) -> None:
        super().reset()
        self._reset_state()

    def present_approaches(self) -> List[int]:
        """Approaches of the bound intersection that have a connecting road."""

        if self.intersection is None:
            return list(range(len(APPROACHES)))
        return list(getattr(self.intersection, "sides", range(len(APPROACHES))))

    # -- configuration views --------------------------------------------

    @property
    def prioritized_directions(self) -> Set[int]:
        directions = set()
        for value in self.config.prioritized_directions:
            try:
                directions.add(int(value))
            except (TypeError, ValueError):
                log.warning("Ignoring prioritized direction %r", value)
        return directions

    @property
    def prioritized_movements(self) -> Set[Movement]:
        parsed = (_parse_movement(value) for value in self.config.prioritized_movements)
        return {movement for movement in parsed if movement is not None}

    # -- update ------------------------------------------------------------

    def update(
        self, delta: float, traffic_states: Optional[Sequence[TrafficState]] = None
    ) -> SignalMatrix:
        _check_delta(delta)
        for direction, movement in self.active_movements:
            self.green_timers[timer_key(direction, movement)] += delta
        for direction in {direction for direction, _ in self.active_movements}:
            self.direction_history[direction] += delta
        self.time_since_last_decision += delta
        self.time_in_phase = self.time_since_last_decision

        if ingest_traffic_states(traffic_states, self.queue_lengths, self.wait_times, self.flow_rates):
            self._score_congestion()
            if delta > 0:
                emergency = self.is_emergency()
                due = self.time_since_last_decision >= self.config.decision_interval - PHASE_EPSILON
                if (emergency or due) and self.can_switch_signals():
                    self.make_decision(emergency=emergency)
        return self.current_signal_states()

    def _score_congestion(self) -> None:
        prioritized = self.prioritized_directions
        for direction in range(len(APPROACHES)):
            score = congestion_score(
                self.queue_lengths[direction], self.wait_times[direction], self.flow_rates[direction]
            )
            if direction in prioritized:
                score += PRIORITY_DIRECTION_BONUS
            self.congestion_scores[direction] = score

    def fairness_ratio(self) -> float:
        history = [self.direction_history[d] for d in self.present_approaches()]
        if not history or max(history) == 0:
            return 1.0
        return min(history) / max(history)

    def is_emergency(self) -> bool:
        for direction in self.present_approaches():
            if self.congestion_scores[direction] >= self.config.emergency_threshold:
                log.debug(
                    "Emergency at %s: %s congestion %.1f",
                    getattr(self.intersection, "id", "unbound"),
                    APPROACH_NAMES[direction],
                    self.congestion_scores[direction],
                )
                return True
        fairness = self.fairness_ratio()
        if fairness < FAIRNESS_FLOOR and any(
            self.direction_history[d] > self.config.fairness_window for d in self.present_approaches()
        ):
            log.debug("Emergency: fairness ratio %.2f", fairness)
            return True
        return False

    def can_switch_signals(self) -> bool:
        return all(
            self.green_timers[timer_key(d, m)] >= self.config.minimum_green_time - PHASE_EPSILON
            for d, m in self.active_movements
        )

    # -- decisions -------------------------------------------------------

    def score_candidates(self) -> List[Tuple[float, Movement]]:
        """Every movement of the present approaches with its score, best first."""

        present = self.present_approaches()
        max_history = max((self.direction_history[d] for d in present), default=0.0)
        prioritized = self.prioritized_movements
        candidates: List[Tuple[float, Movement]] = []
        for direction in present:
            fairness = (
                (1 - self.direction_history[direction] / max_history) * FAIRNESS_BONUS
                if max_history > 0
                else 0.0
            )
            for movement in range(len(MOVEMENTS)):
                score = self.congestion_scores[direction] + fairness
                if movement == 1:
                    score += FORWARD_BONUS
                if (direction, movement) in prioritized:
                    score += PRIORITY_MOVEMENT_BONUS
                candidates.append((score, (direction, movement)))
        candidates.sort(key=lambda item: (-item[0], item[1]))
        return candidates

    def conflicts_with(self, candidate: Movement, chosen: Iterable[Movement]) -> bool:
        code = movement_code(*candidate)
        own = self.conflicts.get(code, frozenset())
        for other in chosen:
            other_code = movement_code(*other)
            if other_code in own or code in self.conflicts.get(other_code, frozenset()):
                return True
        return False

    def make_decision(self, emergency: bool = False) -> List[Movement]:
        candidates = self.score_candidates()
        threshold = self.config.priority_threshold / 2
        chosen: List[Movement] = []
        for score, candidate in candidates:
            if score > threshold and not self.conflicts_with(candidate, chosen):
                chosen.append(candidate)
        if not chosen and candidates:
            chosen.append(candidates[0][1])
            log.debug("Forced activation of %s", movement_code(*chosen[0]))

        self.current_signals = all_red()
        for direction, movement in chosen:
            self.current_signals[direction][movement] = 1
            self.green_timers[timer_key(direction, movement)] = 0.0
        self.active_movements = chosen
        self.time_since_last_decision = 0.0
        self.time_in_phase = 0.0
        self.decisions += 1
        if emergency:
            self.emergency_decisions += 1
        log.debug(
            "Decision at %s: green %s",
            getattr(self.intersection, "id", "unbound"),
            ", ".join(
                f"{APPROACH_NAMES[d]} {MOVEMENT_NAMES[m]}" for d, m in chosen
            ) or "none",
        )
        return list(chosen)

    def _signal_states(self) -> SignalMatrix:
        return self.current_signals

    # -- persistence -----------------------------------------------------

    def metrics(self) -> Dict[str, Any]:
        return {
            "queue_lengths": list(self.queue_lengths),
            "wait_times": list(self.wait_times),
            "flow_rates": list(self.flow_rates),
            "congestion_scores": list(self.congestion_scores),
            "fairness_ratio": self.fairness_ratio(),
            "decisions": self.decisions,
            "emergency_decisions": self.emergency_decisions,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            current_signals=copy_matrix(self.current_signals),
            active_movements=[
                {"direction": d, "movement": m} for d, m in self.active_movements
            ],
            green_timers=dict(self.green_timers),
            direction_history={str(d): t for d, t in enumerate(self.direction_history)},
            time_since_last_decision=self.time_since_last_decision,
            metrics=self.metrics(),
        )
        return data

    def _restore_after_initialize(self, data: Mapping[str, Any]) -> None:
        super()._restore_after_initialize(data)
        signals = data.get("current_signals")
        if (
            isinstance(signals, list)
            and len(signals) == len(APPROACHES)
            and all(isinstance(row, list) and len(row) == len(MOVEMENTS) for row in signals)
        ):
            self.current_signals = [[1 if value else 0 for value in row] for row in signals]

        active = data.get("active_movements")
        if isinstance(active, list):
            parsed = (_parse_movement(value) for value in active)
            self.active_movements = [movement for movement in parsed if movement is not None]

        timers = data.get("green_timers")
        if isinstance(timers, Mapping):
            for key, value in timers.items():
                if key in self.green_timers:
                    self.green_timers[key] = float(value)

        history = data.get("direction_history")
        if isinstance(history, Mapping):
            for key, value in history.items():
                if str(key).isdigit() and int(key) < len(APPROACHES):
                    self.direction_history[int(key)] = float(value)

        self.time_since_last_decision = float(
            data.get("time_since_last_decision", self.time_in_phase)
        )

        metrics = data.get("metrics")
        if isinstance(metrics, Mapping):
            for name in ("queue_lengths", "wait_times", "flow_rates", "congestion_scores"):
                values = metrics.get(name)
                if isinstance(values, list) and len(values) == len(APPROACHES):
                    setattr(self, name, [float(v) for v in values])
            self.decisions = int(metrics.get("decisions", 0))
            self.emergency_decisions = int(metrics.get("emergency_decisions", 0))
