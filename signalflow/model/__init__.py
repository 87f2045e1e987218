"""Network entities and the pool that owns them."""

from .intersection import Intersection
from .pool import EntityPool
from .road import Lane, LanePosition, Road

__all__ = ["EntityPool", "Intersection", "Lane", "LanePosition", "Road"]
