"""Traffic observation: per-approach samples for strategies and world KPIs."""
from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass, field
from statistics import mean
from typing import TYPE_CHECKING, Any, Deque, Dict, Iterable, List, Optional, Sequence, Tuple

from signalflow.signals.base import APPROACHES, TrafficState

if TYPE_CHECKING:  # pragma: no cover
    from signalflow.agents.vehicle import Car
    from signalflow.model.intersection import Intersection

# A car counts as queued when it is this close to the stop line...
QUEUE_DISTANCE = 30.0
# ...and slower than this (m/s).
QUEUE_SPEED = 1.0
FLOW_WINDOW = 60.0


class ApproachSampler:
    """Builds the four :class:`TrafficState` samples of one intersection.

    Values are instantaneous: queue and waits come from the cars currently on
    the incoming lanes, flow from crossings recorded during the last minute.
    """

    def __init__(self, intersection: "Intersection") -> None:
        self.intersection = intersection
        self.crossings: Deque[Tuple[float, int]] = deque()

    def reset(self) -> None:
        self.crossings.clear()

    def record_crossing(self, approach: int, time: float) -> None:
        self.crossings.append((time, approach))

    def _expire(self, time: float) -> None:
        while self.crossings and self.crossings[0][0] < time - FLOW_WINDOW:
            self.crossings.popleft()

    def flow_rate(self, approach: int, time: float) -> float:
        """Crossings per minute over the sliding window."""

        self._expire(time)
        count = sum(1 for _, side in self.crossings if side == approach)
        return count * 60.0 / FLOW_WINDOW

    def queued_cars(self, approach: int) -> List["Car"]:
        queued = []
        for road in self.intersection.incoming_roads(approach):
            for lane in road.lanes:
                for car in lane.cars():
                    if car.distance_to_stop_line() <= QUEUE_DISTANCE and car.velocity < QUEUE_SPEED:
                        queued.append(car)
        return queued

    def sample(self, time: float, signals: Optional[Sequence[Sequence[int]]] = None) -> List[TrafficState]:
        states = []
        for approach in range(len(APPROACHES)):
            queued = self.queued_cars(approach)
            waits = [car.wait_time for car in queued]
            states.append(
                TrafficState(
                    queue_length=len(queued),
                    average_wait_time=mean(waits) if waits else 0.0,
                    max_wait_time=max(waits) if waits else 0.0,
                    flow_rate=self.flow_rate(approach, time),
                    signal_state=list(signals[approach]) if signals else [0, 0, 0],
                )
            )
        return states


@dataclass
class MetricSnapshot:
    """Roll-up of simulation metrics for charting and monitoring."""

    time: float
    cars: int
    average_speed: float
    stopped_cars: int
    average_wait_time: float
    throughput_per_minute: float
    average_queue_length: float
    max_queue_length: int
    queue_lengths: Dict[str, int]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MetricsCollector:
    """Samples world KPIs once per simulated second and keeps a bounded history."""

    history_size: int = 600
    history: Deque[MetricSnapshot] = field(init=False)

    def __post_init__(self) -> None:
        self.history = deque(maxlen=self.history_size)

    def reset(self) -> None:
        self.history.clear()

    @staticmethod
    def _queue_lengths(intersections: Iterable["Intersection"]) -> Dict[str, int]:
        lengths: Dict[str, int] = {}
        for intersection in intersections:
            control = intersection.control
            if control is None:
                continue
            lengths[intersection.id] = sum(state.queue_length for state in control.traffic_states)
        return lengths

    def sample(
        self, time: float, cars: Sequence["Car"], intersections: Sequence["Intersection"]
    ) -> MetricSnapshot:
        queue_lengths = self._queue_lengths(intersections)
        approach_queues = [
            state.queue_length
            for intersection in intersections
            if intersection.control is not None
            for state in intersection.control.traffic_states
        ]
        throughput = sum(
            intersection.control.sampler.flow_rate(approach, time)
            for intersection in intersections
            if intersection.control is not None
            for approach in range(len(APPROACHES))
        )
        stopped = [car for car in cars if car.velocity < QUEUE_SPEED]
        waiting = [car.wait_time for car in cars if car.wait_time > 0]

        snapshot = MetricSnapshot(
            time=time,
            cars=len(cars),
            average_speed=mean(car.velocity for car in cars) if cars else 0.0,
            stopped_cars=len(stopped),
            average_wait_time=mean(waiting) if waiting else 0.0,
            throughput_per_minute=throughput,
            average_queue_length=mean(approach_queues) if approach_queues else 0.0,
            max_queue_length=max(approach_queues) if approach_queues else 0,
            # Keep only the busiest intersections for easier charting
            queue_lengths=dict(sorted(queue_lengths.items(), key=lambda kv: kv[1], reverse=True)[:10]),
        )
        self.history.append(snapshot)
        return snapshot

    def latest(self) -> Optional[MetricSnapshot]:
        return self.history[-1] if self.history else None

    def recent(self, count: int = 60) -> List[MetricSnapshot]:
        return list(self.history)[-count:]
