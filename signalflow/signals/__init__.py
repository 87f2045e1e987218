"""Signal-control strategies and the registry that builds them.

The per-intersection controller lives in :mod:`signalflow.signals.controller`
and is imported from there directly.
"""

from .adaptive import AdaptiveTimingStrategy
from .base import TrafficControlStrategy, TrafficState
from .enforcer import TrafficEnforcerStrategy
from .fixed import FixedTimingStrategy
from .flashing import AllRedFlashingStrategy
from .manager import StrategyManager, build_default_manager

__all__ = [
    "AdaptiveTimingStrategy",
    "AllRedFlashingStrategy",
    "FixedTimingStrategy",
    "StrategyManager",
    "TrafficControlStrategy",
    "TrafficEnforcerStrategy",
    "TrafficState",
    "build_default_manager",
]
