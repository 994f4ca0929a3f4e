"""Ton (particle) sources shaped like emission meshes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from ..scene import Mesh
from .surface import sample_in_triangles

STRAIGHT, PARABOLIC, FLOW = 0, 1, 2


@dataclass
class TonSource:
    mesh: Mesh
    diffuse: bool
    emission_count: int
    motion_probabilities: np.ndarray
    substances: np.ndarray
    pickup_rates: np.ndarray
    interaction_radius: float
    parabola_height: float
    flow_distance: float
    flow_direction: Optional[np.ndarray] = None

    def emit(self, rng: np.random.Generator) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return ``(origins, directions, motions)`` for one pass of emission.

        Points are distributed by triangle area. Diffuse sources emit
        cosine-distributed directions around the face normal.
        """

        count = self.emission_count
        origins, faces = sample_in_triangles(rng, self.mesh.positions, count)
        if origins.shape[0] == 0:
            empty = np.zeros((0, 3))
            return empty, empty, np.zeros(0, dtype=np.int64)
        normals = self.mesh.normals()[faces]
        if self.diffuse:
            directions = _cosine_hemisphere(rng, normals)
        else:
            directions = normals.copy()
        motions = rng.choice(3, size=origins.shape[0], p=self.motion_probabilities)
        return origins, directions, motions


def _cosine_hemisphere(rng: np.random.Generator, normals: np.ndarray) -> np.ndarray:
    n = normals.shape[0]
    u1 = rng.random(n)
    u2 = rng.random(n)
    r = np.sqrt(u1)
    phi = 2.0 * np.pi * u2
    local = np.stack([r * np.cos(phi), r * np.sin(phi), np.sqrt(np.maximum(0.0, 1.0 - u1))], axis=1)
    helper = np.where(np.abs(normals[:, :1]) > 0.9, [[0.0, 1.0, 0.0]], [[1.0, 0.0, 0.0]])
    tangent = np.cross(helper, normals)
    tangent /= np.linalg.norm(tangent, axis=1, keepdims=True)
    bitangent = np.cross(normals, tangent)
    return local[:, :1] * tangent + local[:, 1:2] * bitangent + local[:, 2:] * normals


class TonSourceBuilder:
    """Fluent construction of :class:`TonSource` values."""

    def __init__(self) -> None:
        self._mesh: Optional[Mesh] = None
        self._diffuse = False
        self._emission_count = 0
        self._p = [1.0, 0.0, 0.0]
        self._substances: Sequence[float] = ()
        self._pickup_rates: Sequence[float] = ()
        self._interaction_radius = 0.1
        self._parabola_height = 0.05
        self._flow_distance = 0.02
        self._flow_direction: Optional[np.ndarray] = None

    def mesh_shaped(self, mesh: Mesh, diffuse: bool = False) -> "TonSourceBuilder":
        self._mesh = mesh
        self._diffuse = bool(diffuse)
        return self

    def emission_count(self, count: int) -> "TonSourceBuilder":
        self._emission_count = int(count)
        return self

    def p_straight(self, p: float) -> "TonSourceBuilder":
        self._p[STRAIGHT] = float(p)
        return self

    def p_parabolic(self, p: float) -> "TonSourceBuilder":
        self._p[PARABOLIC] = float(p)
        return self

    def p_flow(self, p: float) -> "TonSourceBuilder":
        self._p[FLOW] = float(p)
        return self

    def substances(self, values: Sequence[float]) -> "TonSourceBuilder":
        self._substances = list(values)
        return self

    def pickup_rates(self, values: Sequence[float]) -> "TonSourceBuilder":
        self._pickup_rates = list(values)
        return self

    def interaction_radius(self, radius: float) -> "TonSourceBuilder":
        self._interaction_radius = float(radius)
        return self

    def parabola_height(self, height: float) -> "TonSourceBuilder":
        self._parabola_height = float(height)
        return self

    def flow_distance(self, distance: float) -> "TonSourceBuilder":
        self._flow_distance = float(distance)
        return self

    def flow_direction_static(self, direction: Sequence[float]) -> "TonSourceBuilder":
        vector = np.asarray(direction, dtype=np.float64)
        length = float(np.linalg.norm(vector))
        self._flow_direction = vector / length if length > 0.0 else None
        return self

    def build(self) -> TonSource:
        if self._mesh is None:
            raise ValueError("ton source needs an emission mesh")
        p = np.asarray(self._p, dtype=np.float64)
        if np.any(p < 0.0) or p.sum() <= 0.0:
            raise ValueError("motion probabilities must be non-negative with a positive sum")
        substances = np.asarray(self._substances, dtype=np.float64)
        rates = np.asarray(self._pickup_rates, dtype=np.float64)
        if substances.shape != rates.shape:
            raise ValueError("substance and pickup rate vectors must have equal length")
        return TonSource(
            mesh=self._mesh,
            diffuse=self._diffuse,
            emission_count=self._emission_count,
            motion_probabilities=p / p.sum(),
            substances=substances,
            pickup_rates=rates,
            interaction_radius=self._interaction_radius,
            parabola_height=self._parabola_height,
            flow_distance=self._flow_distance,
            flow_direction=self._flow_direction,
        )


__all__ = ["TonSource", "TonSourceBuilder", "STRAIGHT", "PARABOLIC", "FLOW"]
