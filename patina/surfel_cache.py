"""Memoised texel-to-surfel lookup tables."""
from __future__ import annotations

import logging
from typing import Dict, NamedTuple, Sequence

from .errors import SurfelTableMissingError, UnsupportedLookupError
from .physics.surface import Surface
from .physics.texture import SurfelTable, build_surfel_lookup_table
from .scene import Entity
from .schema import NearestLookup, SurfelLookup

logger = logging.getLogger(__name__)


class TableKey(NamedTuple):
    entity_idx: int
    width: int
    height: int
    count: int
    island_bleed: int


def _neighbour_count(surfel_lookup: SurfelLookup) -> int:
    if isinstance(surfel_lookup, NearestLookup):
        return surfel_lookup.count
    raise UnsupportedLookupError(
        "Only the n nearest surfels can be cached, not all surfels within a radius"
    )


class SurfelTableCache:
    """Tables keyed by entity, resolution, neighbour count and island bleed.

    Tables are never evicted or invalidated; a runner whose geometry changes
    needs a fresh cache. Keys are bounded by entities times distinct effect
    resolutions.
    """

    def __init__(self) -> None:
        self._tables: Dict[TableKey, SurfelTable] = {}

    def __len__(self) -> int:
        return len(self._tables)

    def __contains__(self, key: object) -> bool:
        return key in self._tables

    def prepare(
        self,
        entity_idx: int,
        width: int,
        height: int,
        surfel_lookup: SurfelLookup,
        island_bleed: int,
        entities: Sequence[Entity],
        surface: Surface,
    ) -> SurfelTable:
        """Build the table for the derived key unless it already exists."""

        key = TableKey(entity_idx, int(width), int(height), _neighbour_count(surfel_lookup), int(island_bleed))
        table = self._tables.get(key)
        if table is None:
            logger.debug("building surfel table %s for entity %s", key, entities[entity_idx].name)
            table = build_surfel_lookup_table(
                entities[entity_idx], entity_idx, surface, key.count, key.width, key.height, key.island_bleed
            )
            self._tables[key] = table
        return table

    def lookup(
        self,
        entity_idx: int,
        width: int,
        height: int,
        surfel_lookup: SurfelLookup,
        island_bleed: int,
    ) -> SurfelTable:
        key = TableKey(entity_idx, int(width), int(height), _neighbour_count(surfel_lookup), int(island_bleed))
        try:
            return self._tables[key]
        except KeyError:
            raise SurfelTableMissingError(f"surfel table {key} was never prepared") from None


__all__ = ["SurfelTableCache", "TableKey"]
