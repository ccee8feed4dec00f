"""Run-scoped memoizing store of entities keyed by canonical identifier."""

import logging
from typing import Callable, Dict, Generic, Hashable, Iterator, List, Optional, Set, Tuple, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
E = TypeVar("E")


class EntityCache(Generic[K, E]):
    """Guarantees a single entity instance per canonical key.

    Entities are created on first request through a factory and handed out
    by reference afterwards.  Creation does not imply persistence: the cache
    tracks which entities have been stored so that a batch flush at the end
    of a run only stores each entity once.

    Usage::

        genes = EntityCache("gene")
        gene = genes.get_or_create("1017", lambda: Gene(primary_id="1017"))
        assert genes.get_or_create("1017", lambda: Gene("other")) is gene
    """

    def __init__(self, name: str = "entity") -> None:
        self.name = name
        self._entities: Dict[K, E] = {}
        self._stored: Set[K] = set()

    def get_or_create(self, key: K, factory: Callable[[], E]) -> E:
        """Return the entity for ``key``, creating it with ``factory`` if new."""
        entity = self._entities.get(key)
        if entity is None:
            entity = factory()
            self._entities[key] = entity
            logger.debug("Created %s entity for key %r", self.name, key)
        return entity

    def get(self, key: K) -> Optional[E]:
        return self._entities.get(key)

    def values(self) -> List[E]:
        """All entities created so far, in creation order."""
        return list(self._entities.values())

    def unstored(self) -> List[Tuple[K, E]]:
        """(key, entity) pairs that have not been marked as stored yet."""
        return [(k, e) for k, e in self._entities.items() if k not in self._stored]

    def mark_stored(self, key: K) -> None:
        if key not in self._entities:
            raise KeyError(f"No {self.name} entity for key {key!r}")
        self._stored.add(key)

    def clear(self) -> None:
        """Forget all entities (between independent batches)."""
        self._entities.clear()
        self._stored.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._entities

    def __len__(self) -> int:
        return len(self._entities)

    def __iter__(self) -> Iterator[E]:
        return iter(self.values())
