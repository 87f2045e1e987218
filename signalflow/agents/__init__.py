"""Agent implementations for the SignalFlow simulation."""

from .vehicle import Car

__all__ = ["Car"]
