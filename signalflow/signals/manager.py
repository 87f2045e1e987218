"""Registry of signal strategies and their per-type settings."""
from __future__ import annotations

import logging
import random
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional

from signalflow.errors import UnknownStrategyError

from .adaptive import AdaptiveTimingStrategy
from .base import TrafficControlStrategy
from .enforcer import TrafficEnforcerStrategy
from .fixed import FixedTimingStrategy
from .flashing import AllRedFlashingStrategy

if TYPE_CHECKING:  # pragma: no cover
    from signalflow.model.intersection import Intersection

log = logging.getLogger(__name__)

StrategyFactory = Callable[[], TrafficControlStrategy]

DEFAULT_STRATEGY = FixedTimingStrategy.strategy_type


class StrategyManager:
    """Maps strategy keys to factories and remembers settings per key.

    Settings stored with :meth:`apply_strategy_settings` are applied to every
    strategy the manager creates afterwards. Strategies already running keep
    their own configuration.
    """

    def __init__(self, default_strategy: str = DEFAULT_STRATEGY) -> None:
        self._factories: Dict[str, StrategyFactory] = {}
        self._settings: Dict[str, Dict[str, Any]] = {}
        self._samples: Dict[str, TrafficControlStrategy] = {}
        self.default_strategy = default_strategy
        self.selected_strategy = default_strategy

    def register_strategy(self, key: str, factory: StrategyFactory) -> None:
        if key in self._factories:
            log.info("Replacing strategy factory for %r", key)
        sample = factory()
        self._factories[key] = factory
        self._samples[key] = sample
        self._settings[key] = sample.get_config_options()

    def get_available_strategy_types(self) -> List[str]:
        return list(self._factories)

    def describe_strategies(self) -> List[Dict[str, Any]]:
        described = []
        for key, sample in self._samples.items():
            described.append(
                {
                    "key": key,
                    "display_name": sample.display_name,
                    "description": sample.description,
                    "selected": key == self.selected_strategy,
                    "settings": self.get_strategy_settings(key),
                }
            )
        return described

    def select_strategy(self, key: str) -> bool:
        if key not in self._factories:
            log.warning("Cannot select unknown strategy %r", key)
            return False
        self.selected_strategy = key
        return True

    def get_selected_strategy_type(self) -> str:
        return self.selected_strategy

    def create_strategy(self, key: Optional[str] = None) -> TrafficControlStrategy:
        """Build an unbound strategy for ``key`` (the selected one by default)."""

        key = key or self.selected_strategy
        factory = self._factories.get(key)
        if factory is None:
            raise UnknownStrategyError(key)
        strategy = factory()
        strategy.update_config(self._settings.get(key, {}))
        return strategy

    def apply_to_intersection(
        self, intersection: "Intersection", key: Optional[str] = None
    ) -> TrafficControlStrategy:
        strategy = self.create_strategy(key)
        strategy.initialize(intersection)
        return strategy

    def get_strategy_settings(self, key: str) -> Dict[str, Any]:
        if key not in self._settings:
            raise UnknownStrategyError(key)
        return dict(self._settings[key])

    def apply_strategy_settings(self, key: str, options: Mapping[str, Any]) -> Dict[str, Any]:
        """Merge ``options`` into the cached settings of ``key`` and return the result."""

        if key not in self._factories:
            raise UnknownStrategyError(key)
        config = self._samples[key].config_class.from_mapping(self._settings[key])
        config.merge(options)
        self._settings[key] = config.as_dict()
        return dict(self._settings[key])

    def create_from_dict(
        self, data: Any, intersection: "Intersection"
    ) -> TrafficControlStrategy:
        """Rebuild a persisted strategy, falling back to the default on bad input."""

        key = data.get("strategy_type") if isinstance(data, Mapping) else None
        factory = self._factories.get(key) if isinstance(key, str) else None
        if factory is None:
            log.warning(
                "Unknown strategy type %r for intersection %s, using %r",
                key,
                getattr(intersection, "id", None),
                self.default_strategy,
            )
            return self.apply_to_intersection(intersection, self.default_strategy)
        try:
            return factory().restore(data, intersection)
        except (TypeError, ValueError, KeyError, IndexError) as exc:
            log.warning(
                "Malformed %r snapshot for intersection %s (%s), using %r",
                key,
                getattr(intersection, "id", None),
                exc,
                self.default_strategy,
            )
            return self.apply_to_intersection(intersection, self.default_strategy)


def build_default_manager(rng: Optional[random.Random] = None) -> StrategyManager:
    """Manager with the four built-in strategies registered.

    ``rng`` seeds the fixed-timing offsets so seeded worlds are reproducible.
    """

    manager = StrategyManager()
    manager.register_strategy(FixedTimingStrategy.strategy_type, lambda: FixedTimingStrategy(rng))
    manager.register_strategy(AdaptiveTimingStrategy.strategy_type, AdaptiveTimingStrategy)
    manager.register_strategy(AllRedFlashingStrategy.strategy_type, AllRedFlashingStrategy)
    manager.register_strategy(TrafficEnforcerStrategy.strategy_type, TrafficEnforcerStrategy)
    return manager
