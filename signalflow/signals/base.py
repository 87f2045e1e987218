"""Strategy contract and the phase timer shared by every signal strategy.

Assumptions
-----------
- A signal-state matrix is a 4x3 list of ints in {0, 1}. The first index is
  the approach (N, E, S, W), the second the movement (Left, Forward, Right).
- Strategies only produce matrices. They never touch the intersection, its
  roads or the cars; the controller hands the matrix to the rest of the world.
- ``update`` is called once per tick with ``0 <= delta <= 1`` seconds. A zero
  delta refreshes inputs but never changes the phase.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, fields
import logging
import math
from typing import (
    TYPE_CHECKING,
    Any,
    ClassVar,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Type,
    TypeVar,
)

if TYPE_CHECKING:  # pragma: no cover
    from signalflow.model.intersection import Intersection

log = logging.getLogger(__name__)

APPROACHES = ("N", "E", "S", "W")
MOVEMENTS = ("L", "F", "R")
APPROACH_NAMES = ("North", "East", "South", "West")
MOVEMENT_NAMES = ("Left", "Forward", "Right")

# Absorbs float accumulation, e.g. ten 0.1 s steps summing to 0.999...9.
PHASE_EPSILON = 1e-9

SignalMatrix = List[List[int]]

C = TypeVar("C", bound="StrategyConfig")
S = TypeVar("S", bound="TrafficControlStrategy")


def all_red() -> SignalMatrix:
    return [[0, 0, 0] for _ in APPROACHES]


def decode_movements(code: str) -> List[int]:
    """Convert ``"LFR"``-style phase codes into a ``[left, forward, right]`` row."""

    return [1 if movement in code else 0 for movement in MOVEMENTS]


def copy_matrix(matrix: Sequence[Sequence[int]]) -> SignalMatrix:
    return [list(row) for row in matrix]


@dataclass
class TrafficState:
    """Traffic observed on one approach during the latest sample."""

    queue_length: int = 0
    average_wait_time: float = 0.0
    max_wait_time: float = 0.0
    flow_rate: float = 0.0
    signal_state: List[int] = field(default_factory=lambda: [0, 0, 0])

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StrategyConfig:
    """Typed strategy settings with a generic string-keyed view.

    Subclasses declare their options as dataclass fields. ``merge`` applies a
    partial update: keys that are not given keep their previous values. A
    value that cannot be converted to its field's type raises ``ValueError``
    and nothing from that update is stored.
    """

    @classmethod
    def from_mapping(cls: Type[C], mapping: Optional[Mapping[str, Any]]) -> C:
        config = cls()
        if mapping:
            config.merge(mapping)
        return config

    def merge(self, options: Mapping[str, Any]) -> None:
        known = {f.name for f in fields(self)}
        updates: Dict[str, Any] = {}
        for key, value in options.items():
            if key not in known:
                log.warning("Ignoring unknown option %r for %s", key, type(self).__name__)
                continue
            updates[key] = self._coerce(key, getattr(self, key), value)
        for key, value in updates.items():
            setattr(self, key, value)

    @staticmethod
    def _coerce(key: str, current: Any, value: Any) -> Any:
        if isinstance(current, bool):
            if isinstance(value, bool):
                return value
            if isinstance(value, int) and value in (0, 1):
                return bool(value)
            if isinstance(value, str) and value.strip().lower() in ("true", "false"):
                return value.strip().lower() == "true"
            raise ValueError(f"Option {key!r} expects a boolean, got {value!r}")
        if isinstance(current, (int, float)):
            if isinstance(value, bool):
                raise ValueError(f"Option {key!r} expects a number, got {value!r}")
            try:
                number = float(value)
            except (TypeError, ValueError):
                raise ValueError(f"Option {key!r} expects a number, got {value!r}") from None
            if not math.isfinite(number):
                raise ValueError(f"Option {key!r} must be finite, got {value!r}")
            return int(number) if isinstance(current, int) else number
        if isinstance(current, list):
            if not isinstance(value, (list, tuple)):
                raise ValueError(f"Option {key!r} expects a list, got {value!r}")
            return list(value)
        return value

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class TrafficControlStrategy(ABC):
    """Base class for signal strategies with a default phase timer.

    The default ``update`` advances ``time_in_phase``; once
    :meth:`should_switch_phase` agrees, the phase moves to the next one and
    the target duration is recomputed by
    :meth:`phase_duration_for_current_phase`. Subclasses supply the matrix
    for the current phase through :meth:`_signal_states`.
    """

    strategy_type: ClassVar[str] = ""
    display_name: ClassVar[str] = ""
    description: ClassVar[str] = ""
    config_class: ClassVar[Type[StrategyConfig]] = StrategyConfig

    def __init__(self) -> None:
        self.intersection: Optional["Intersection"] = None
        self.config = self.config_class()
        self.current_phase = 0
        self.total_phases = 4
        self.time_in_phase = 0.0
        self.phase_duration = 30.0
        self.next_phase_change_time = 0.0

    # -- contract -------------------------------------------------------

    def initialize(self, intersection: "Intersection") -> None:
        """Bind to ``intersection`` and reset. Safe to call again to re-home."""

        self.intersection = intersection
        self.reset()

    def update(
        self, delta: float, traffic_states: Optional[Sequence[TrafficState]] = None
    ) -> SignalMatrix:
        _check_delta(delta)
        self.time_in_phase += delta
        if delta > 0 and self.should_switch_phase(traffic_states):
            self.advance_to_next_phase()
        return self.current_signal_states()

    def reset(self) -> None:
        self.current_phase = 0
        self.time_in_phase = 0.0
        self.next_phase_change_time = self.phase_duration_for_current_phase()

    def get_current_phase(self) -> int:
        return self.current_phase

    def get_total_phases(self) -> int:
        return self.total_phases

    def get_config_options(self) -> Dict[str, Any]:
        return self.config.as_dict()

    def update_config(self, options: Mapping[str, Any]) -> None:
        self.config.merge(options)

    def current_signal_states(self) -> SignalMatrix:
        """The currently valid matrix, without advancing any clock."""

        return copy_matrix(self._signal_states())

    # -- phase timer hooks ---------------------------------------------

    def should_switch_phase(self, traffic_states: Optional[Sequence[TrafficState]] = None) -> bool:
        return self.time_in_phase >= self.next_phase_change_time - PHASE_EPSILON

    def advance_to_next_phase(self, next_phase: Optional[int] = None) -> None:
        if next_phase is None:
            next_phase = self.current_phase + 1
        self.current_phase = next_phase % self.total_phases
        self.time_in_phase = 0.0
        self.next_phase_change_time = self.phase_duration_for_current_phase()

    def phase_duration_for_current_phase(self) -> float:
        return self.phase_duration

    @abstractmethod
    def _signal_states(self) -> Sequence[Sequence[int]]:
        """Matrix for the current phase."""

    # -- persistence -----------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy_type": self.strategy_type,
            "current_phase": self.current_phase,
            "time_in_phase": self.time_in_phase,
            "total_phases": self.total_phases,
            "phase_duration": self.phase_duration,
            "next_phase_change_time": self.next_phase_change_time,
            "config_options": self.get_config_options(),
        }

    @classmethod
    def from_dict(cls: Type[S], data: Mapping[str, Any], intersection: "Intersection") -> S:
        """Rebuild a strategy from :meth:`to_dict` output and bind it to ``intersection``.

        Missing fields fall back to defaults so older snapshots still load.
        """

        return cls().restore(data, intersection)

    def restore(self: S, data: Mapping[str, Any], intersection: "Intersection") -> S:
        """Load snapshot state into this instance, binding it to ``intersection``."""

        self._restore_before_initialize(data)
        config = data.get("config_options")
        if isinstance(config, Mapping):
            self.update_config(config)
        self.initialize(intersection)
        self._restore_after_initialize(data)
        return self

    def _restore_before_initialize(self, data: Mapping[str, Any]) -> None:
        self.phase_duration = float(data.get("phase_duration", self.phase_duration))

    def _restore_after_initialize(self, data: Mapping[str, Any]) -> None:
        self.current_phase = int(data.get("current_phase", 0)) % max(self.total_phases, 1)
        self.time_in_phase = float(data.get("time_in_phase", 0.0))
        if "next_phase_change_time" in data:
            self.next_phase_change_time = float(data["next_phase_change_time"])
        else:
            self.next_phase_change_time = self.phase_duration_for_current_phase()

    # -- helpers ---------------------------------------------------------

    @property
    def road_count(self) -> int:
        """Connected sides of the bound intersection (4 when unbound)."""

        if self.intersection is None:
            return 4
        return getattr(self.intersection, "road_count", 4)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(phase={self.current_phase}/{self.total_phases}, "
            f"time_in_phase={self.time_in_phase:.2f})"
        )


def _check_delta(delta: float) -> None:
    if delta < 0:
        raise ValueError(f"Strategy update delta must be non-negative, got {delta!r}")


def ingest_traffic_states(
    traffic_states: Optional[Sequence[TrafficState]],
    queue_lengths: List[float],
    wait_times: List[float],
    flow_rates: List[float],
) -> bool:
    """Copy the latest sample into per-approach arrays.

    Shorter lists are tolerated: approaches without a sample keep their last
    known values. Returns ``True`` when any sample was read.
    """

    if not traffic_states:
        return False
    for index, state in enumerate(traffic_states[: len(APPROACHES)]):
        queue_lengths[index] = state.queue_length
        wait_times[index] = state.average_wait_time
        flow_rates[index] = state.flow_rate
    return True
