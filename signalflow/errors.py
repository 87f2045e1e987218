"""Exception hierarchy shared by the simulation core."""
from __future__ import annotations


class SimulationError(Exception):
    """Base class for every error raised by the simulation."""


class PreconditionError(SimulationError):
    """A caller or integration bug. Never clamped, never swallowed."""


class TickDeltaError(PreconditionError, ValueError):
    """Raised when a tick tries to advance time by more than one second."""

    def __init__(self, delta: float) -> None:
        super().__init__(f"Tick delta must be within [0, 1] seconds, got {delta!r}")
        self.delta = delta


class DuplicateEntityError(PreconditionError):
    """Raised when an id is inserted twice into a container expecting uniqueness."""


class SnapshotMismatchError(PreconditionError, ValueError):
    """Raised when a snapshot entry is keyed under an id other than its entity's."""


class UnknownCarPositionError(PreconditionError):
    """Raised when removing a car position a lane does not hold."""


class UnknownStrategyError(SimulationError, KeyError):
    """Raised when a strategy key is not registered with the manager."""
