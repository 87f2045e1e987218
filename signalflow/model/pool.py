"""Keyed entity container used by the world for intersections, roads and cars.

Assumptions
-----------
- Every entity exposes a string ``id`` that is unique within its pool and
  stable for the entity's lifetime.
- Entities may expose a ``release()`` hook (e.g. freeing a lane slot); the
  pool calls it exactly once when the entity is popped.
- Iteration order follows insertion order, but nothing in the simulation may
  depend on it when entities are independent.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Generic, Iterator, Mapping, Optional, TypeVar, Union

from signalflow.errors import DuplicateEntityError, SnapshotMismatchError

T = TypeVar("T")


class EntityPool(Generic[T]):
    """Mapping from id to entity with copy-on-load hydration."""

    def __init__(
        self,
        factory: Callable[[Any], T],
        snapshot: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.factory = factory
        self._objects: Dict[str, T] = {}

        if snapshot:
            for entity_id, data in snapshot.items():
                entity = self.factory(data)
                if getattr(entity, "id", None) != entity_id:
                    raise SnapshotMismatchError(
                        f"Snapshot key {entity_id!r} does not match entity id "
                        f"{getattr(entity, 'id', None)!r}"
                    )
                self.put(entity)

    def get(self, entity_id: str) -> Optional[T]:
        return self._objects.get(entity_id)

    def put(self, entity: T) -> None:
        entity_id = getattr(entity, "id")
        if entity_id in self._objects:
            raise DuplicateEntityError(f"Entity {entity_id!r} is already in the pool")
        self._objects[entity_id] = entity

    def pop(self, entity: Union[T, str]) -> Optional[T]:
        """Remove an entity by id or by reference, running its release hook once."""

        entity_id = entity if isinstance(entity, str) else getattr(entity, "id")
        result = self._objects.pop(entity_id, None)
        if result is None:
            return None
        release = getattr(result, "release", None)
        if callable(release):
            release()
        return result

    def all(self) -> Dict[str, T]:
        """Return a shallow copy so callers may mutate the pool while iterating."""

        return dict(self._objects)

    def clear(self) -> None:
        self._objects = {}

    def to_dict(self) -> Dict[str, Any]:
        return {entity_id: entity.to_dict() for entity_id, entity in self._objects.items()}

    def __len__(self) -> int:
        return len(self._objects)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._objects

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._objects.values()))

    @property
    def length(self) -> int:
        return len(self._objects)
