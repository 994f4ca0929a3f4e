"""In-memory scene model: triangle meshes, immutable materials and entities."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

import numpy as np

from .schema import CHANNELS


@dataclass
class Mesh:
    """De-indexed triangle mesh.

    ``positions`` has shape ``(F, 3, 3)``; ``uvs`` is ``(F, 3, 2)`` or ``None``
    when the mesh carries no texture coordinates.
    """

    positions: np.ndarray
    uvs: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        self.positions = np.asarray(self.positions, dtype=np.float64).reshape(-1, 3, 3)
        if self.uvs is not None:
            self.uvs = np.asarray(self.uvs, dtype=np.float64).reshape(-1, 3, 2)
            if self.uvs.shape[0] != self.positions.shape[0]:
                raise ValueError("uvs and positions must describe the same triangles")

    @property
    def triangle_count(self) -> int:
        return int(self.positions.shape[0])

    def normals(self) -> np.ndarray:
        """Unit face normals, ``(F, 3)``; degenerate faces get a zero normal."""

        p = self.positions
        cross = np.cross(p[:, 1] - p[:, 0], p[:, 2] - p[:, 0])
        length = np.linalg.norm(cross, axis=1, keepdims=True)
        with np.errstate(invalid="ignore", divide="ignore"):
            unit = np.where(length > 0.0, cross / np.where(length > 0.0, length, 1.0), 0.0)
        return unit


@dataclass(frozen=True)
class Material:
    """Immutable material value.

    Channel setters return a new material, so entities copied from a baseline
    share unmodified materials safely.
    """

    name: str
    albedo: Optional[Path] = None
    normal: Optional[Path] = None
    displacement: Optional[Path] = None
    metallicity: Optional[Path] = None
    roughness: Optional[Path] = None
    properties: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    def channel(self, channel: str) -> Optional[Path]:
        if channel not in CHANNELS:
            raise KeyError(f"unknown material channel {channel!r}")
        return getattr(self, channel)

    def with_channel(self, channel: str, texture: Optional[Path]) -> "Material":
        if channel not in CHANNELS:
            raise KeyError(f"unknown material channel {channel!r}")
        return replace(self, **{channel: None if texture is None else Path(texture)})

    def textures(self) -> List[Tuple[str, Path]]:
        return [(channel, getattr(self, channel)) for channel in CHANNELS if getattr(self, channel) is not None]


@dataclass
class Entity:
    name: str
    mesh: Mesh
    material: Material

    def copy(self) -> "Entity":
        """Shallow copy sharing mesh and material."""

        return replace(self)


def copy_entities(entities: Iterable[Entity]) -> List[Entity]:
    return [entity.copy() for entity in entities]


__all__ = ["Mesh", "Material", "Entity", "copy_entities"]
