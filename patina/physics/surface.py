"""Surfel representation of a scene surface and its sampling."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.spatial import cKDTree

from ..io import obj
from .rules import SurfelRule, apply_rules

logger = logging.getLogger(__name__)

# candidates drawn per unit of area covered by one surfel of diameter d
CANDIDATE_OVERSAMPLING = 6.0
MAX_CANDIDATES = 250_000


@dataclass(frozen=True)
class MinimumDistance:
    """Sampling policy rejecting samples closer than ``distance`` to each other."""

    distance: float


@dataclass
class SurfelPrototype:
    """Properties shared by every surfel sampled from one entity."""

    entity_idx: int
    delta_straight: float
    delta_parabolic: float
    delta_flow: float
    substances: np.ndarray
    deposition_rates: np.ndarray
    rules: Tuple[SurfelRule, ...] = ()


@dataclass
class Surface:
    """Structure-of-arrays surfel storage.

    ``substances`` is the only field mutated during a simulation. Each surfel
    refers to a rule group; all surfels of one entity share a group.
    """

    positions: np.ndarray
    normals: np.ndarray
    entity_idx: np.ndarray
    deltas: np.ndarray
    substances: np.ndarray
    deposition_rates: np.ndarray
    rule_group: np.ndarray
    rule_groups: List[Tuple[SurfelRule, ...]] = field(default_factory=list)
    tree: Optional[cKDTree] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        # positions never change after sampling
        if len(self) > 0:
            self.tree = cKDTree(self.positions)

    def __len__(self) -> int:
        return int(self.positions.shape[0])

    def nearest(self, point: np.ndarray, radius: float) -> Optional[int]:
        """Index of the surfel closest to ``point`` within ``radius``."""

        tree = self.tree
        if tree is None:
            return None
        distance, index = tree.query(point, k=1, distance_upper_bound=radius)
        if not math.isfinite(distance):
            return None
        return int(index)

    def within(self, point: np.ndarray, radius: float) -> List[int]:
        tree = self.tree
        if tree is None:
            return []
        return sorted(int(i) for i in tree.query_ball_point(point, radius))

    def apply_rules(self) -> None:
        """Run every rule group on its surfels."""

        for group, rules in enumerate(self.rule_groups):
            if rules:
                apply_rules(self.substances, rules, np.flatnonzero(self.rule_group == group))

    def dump(self, path) -> None:
        """Write surfel positions as a point cloud OBJ."""

        obj.save_points(self.positions, path)


def sample_in_triangles(rng: np.random.Generator, triangles: np.ndarray, count: int) -> Tuple[np.ndarray, np.ndarray]:
    p = triangles
    areas = 0.5 * np.linalg.norm(np.cross(p[:, 1] - p[:, 0], p[:, 2] - p[:, 0]), axis=1)
    total = float(areas.sum())
    if total <= 0.0 or count <= 0:
        return np.zeros((0, 3)), np.zeros(0, dtype=np.int64)
    faces = rng.choice(len(p), size=count, p=areas / total)
    r1 = np.sqrt(rng.random(count))
    r2 = rng.random(count)
    a = 1.0 - r1
    b = r1 * (1.0 - r2)
    c = r1 * r2
    points = a[:, None] * p[faces, 0] + b[:, None] * p[faces, 1] + c[:, None] * p[faces, 2]
    return points, faces


class SurfaceBuilder:
    """Accumulates surfels sampled from several entities."""

    def __init__(self, seed: int = 0) -> None:
        self._rng = np.random.default_rng(seed)
        self._sampling = MinimumDistance(0.1)
        self._positions: List[np.ndarray] = []
        self._normals: List[np.ndarray] = []
        self._prototypes: List[Tuple[SurfelPrototype, int]] = []
        self._grid: Dict[Tuple[int, int, int], List[np.ndarray]] = {}

    def sampling(self, policy: MinimumDistance) -> "SurfaceBuilder":
        if policy.distance <= 0.0:
            raise ValueError("minimum surfel distance must be positive")
        self._sampling = policy
        return self

    def _accept(self, point: np.ndarray, distance: float) -> bool:
        cell = tuple(int(math.floor(c / distance)) for c in point)
        for dx in (-1, 0, 1):
            for dy in (-1, 0, 1):
                for dz in (-1, 0, 1):
                    for other in self._grid.get((cell[0] + dx, cell[1] + dy, cell[2] + dz), ()):
                        if float(np.dot(other - point, other - point)) < distance * distance:
                            return False
        self._grid.setdefault(cell, []).append(point)
        return True

    def sample_triangles(self, triangles: np.ndarray, prototype: SurfelPrototype) -> "SurfaceBuilder":
        """Dart-throw surfels onto ``triangles`` and tag them with ``prototype``."""

        triangles = np.asarray(triangles, dtype=np.float64).reshape(-1, 3, 3)
        distance = self._sampling.distance
        areas = 0.5 * np.linalg.norm(
            np.cross(triangles[:, 1] - triangles[:, 0], triangles[:, 2] - triangles[:, 0]), axis=1
        )
        wanted = int(math.ceil(CANDIDATE_OVERSAMPLING * float(areas.sum()) / (distance * distance)))
        wanted = min(wanted, MAX_CANDIDATES)
        candidates, faces = sample_in_triangles(self._rng, triangles, wanted)
        face_normals = np.cross(triangles[:, 1] - triangles[:, 0], triangles[:, 2] - triangles[:, 0])
        lengths = np.linalg.norm(face_normals, axis=1, keepdims=True)
        face_normals = face_normals / np.where(lengths > 0.0, lengths, 1.0)

        accepted = [i for i, point in enumerate(candidates) if self._accept(point, distance)]
        if accepted:
            self._positions.append(candidates[accepted])
            self._normals.append(face_normals[faces[accepted]])
            self._prototypes.append((prototype, len(accepted)))
        logger.debug(
            "sampled %d surfels from %d candidates for entity %d",
            len(accepted),
            len(candidates),
            prototype.entity_idx,
        )
        return self

    def build(self, substance_count: int) -> Surface:
        if not self._prototypes:
            return Surface(
                positions=np.zeros((0, 3)),
                normals=np.zeros((0, 3)),
                entity_idx=np.zeros(0, dtype=np.int64),
                deltas=np.zeros((0, 3)),
                substances=np.zeros((0, substance_count)),
                deposition_rates=np.zeros((0, substance_count)),
                rule_group=np.zeros(0, dtype=np.int64),
            )
        entity_idx, deltas, substances, rates, groups = [], [], [], [], []
        rule_groups: List[Tuple[SurfelRule, ...]] = []
        for group, (proto, count) in enumerate(self._prototypes):
            rule_groups.append(tuple(proto.rules))
            entity_idx.append(np.full(count, proto.entity_idx, dtype=np.int64))
            deltas.append(np.tile([proto.delta_straight, proto.delta_parabolic, proto.delta_flow], (count, 1)))
            substances.append(np.tile(np.asarray(proto.substances, dtype=np.float64), (count, 1)))
            rates.append(np.tile(np.asarray(proto.deposition_rates, dtype=np.float64), (count, 1)))
            groups.append(np.full(count, group, dtype=np.int64))
        return Surface(
            positions=np.concatenate(self._positions),
            normals=np.concatenate(self._normals),
            entity_idx=np.concatenate(entity_idx),
            deltas=np.concatenate(deltas).astype(np.float64),
            substances=np.concatenate(substances).reshape(-1, substance_count),
            deposition_rates=np.concatenate(rates).reshape(-1, substance_count),
            rule_group=np.concatenate(groups),
            rule_groups=rule_groups,
        )


__all__ = ["MinimumDistance", "SurfelPrototype", "Surface", "SurfaceBuilder"]
