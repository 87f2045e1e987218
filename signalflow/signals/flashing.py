"""All-red flashing: the failure mode where every approach must stop."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence

from .base import (
    PHASE_EPSILON,
    SignalMatrix,
    StrategyConfig,
    TrafficControlStrategy,
    TrafficState,
    _check_delta,
    all_red,
)


@dataclass
class AllRedFlashingConfig(StrategyConfig):
    flash_interval: float = 1.0


class AllRedFlashingStrategy(TrafficControlStrategy):
    """Never permits a movement. ``signals_visible`` only drives the display."""

    strategy_type = "all-red-flashing"
    display_name = "All-Red Flashing"
    description = "All approaches flash red - simulates emergency conditions"
    config_class = AllRedFlashingConfig

    def __init__(self) -> None:
        super().__init__()
        self.total_phases = 1
        self.signals_visible = True
        self.time_in_flash_state = 0.0

    def reset(self) -> None:
        super().reset()
        self.signals_visible = True
        self.time_in_flash_state = 0.0

    def update(
        self, delta: float, traffic_states: Optional[Sequence[TrafficState]] = None
    ) -> SignalMatrix:
        _check_delta(delta)
        self.time_in_phase += delta
        self.time_in_flash_state += delta
        if delta > 0 and self.time_in_flash_state >= self.config.flash_interval - PHASE_EPSILON:
            self.time_in_flash_state = 0.0
            self.signals_visible = not self.signals_visible
        return self.current_signal_states()

    def phase_duration_for_current_phase(self) -> float:
        return self.config.flash_interval

    def _signal_states(self) -> SignalMatrix:
        return all_red()

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["signals_visible"] = self.signals_visible
        data["time_in_flash_state"] = self.time_in_flash_state
        return data

    def _restore_after_initialize(self, data: Mapping[str, Any]) -> None:
        super()._restore_after_initialize(data)
        self.signals_visible = bool(data.get("signals_visible", True))
        self.time_in_flash_state = float(data.get("time_in_flash_state", 0.0))
