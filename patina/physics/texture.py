"""Texture synthesis primitives.

Images are handled as ``uint8`` RGBA arrays of shape ``(H, W, 4)``; Pillow is
used for reading, resizing and writing them. Row 0 of an image corresponds to
``v = 1`` in texture space.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
from PIL import Image, UnidentifiedImageError
from scipy.spatial import cKDTree

from ..errors import AssetError
from ..io.paths import create_file_recursively
from ..scene import Entity
from .surface import Surface

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
Color = Tuple[int, int, int, int]


# ---------------------------------------------------------------------------
# image helpers
# ---------------------------------------------------------------------------


def open_image(path: PathLike, role: str = "texture") -> np.ndarray:
    try:
        with Image.open(path) as image:
            return np.asarray(image.convert("RGBA"), dtype=np.uint8).copy()
    except (OSError, UnidentifiedImageError) as exc:
        raise AssetError(f"{role} {path} could not be read") from exc


def image_size(path: PathLike, role: str = "texture") -> Tuple[int, int]:
    """Return ``(width, height)`` without decoding pixel data."""

    try:
        with Image.open(path) as image:
            return image.size
    except (OSError, UnidentifiedImageError) as exc:
        raise AssetError(f"{role} {path} could not be read") from exc


def resize_image(pixels: np.ndarray, width: int, height: int) -> np.ndarray:
    if pixels.shape[1] == width and pixels.shape[0] == height:
        return pixels
    image = Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8))
    return np.asarray(image.resize((width, height), Image.Resampling.BILINEAR), dtype=np.uint8).copy()


def save_png(pixels: np.ndarray, path: PathLike, role: str = "texture") -> Path:
    try:
        target = create_file_recursively(path)
        Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8)).save(target, format="PNG")
    except OSError as exc:
        raise AssetError(f"{role} {path} could not be written") from exc
    return target


# ---------------------------------------------------------------------------
# surfel lookup tables
# ---------------------------------------------------------------------------


@dataclass
class SurfelTable:
    """Nearest surfels per texel.

    ``indices`` and ``distances`` have shape ``(height * width, count)`` in
    row-major texel order; ``-1`` marks texels not covered by the entity.
    """

    width: int
    height: int
    indices: np.ndarray
    distances: np.ndarray

    @property
    def covered(self) -> np.ndarray:
        return self.indices[:, 0] >= 0


def _rasterize(entity: Entity, width: int, height: int, island_bleed: int) -> Tuple[np.ndarray, np.ndarray]:
    """Return world positions ``(H*W, 3)`` and a coverage mask for every texel."""

    positions = np.zeros((height * width, 3))
    best = np.full(height * width, np.inf)
    mesh = entity.mesh
    if mesh.uvs is None:
        logger.debug("entity %s has no texture coordinates, texture stays uncovered", entity.name)
        return positions, np.isfinite(best)
    for tri_uv, tri_pos in zip(mesh.uvs, mesh.positions):
        # texel space with y pointing down
        px = np.column_stack([tri_uv[:, 0] * width, (1.0 - tri_uv[:, 1]) * height])
        lo = np.floor(px.min(axis=0) - island_bleed).astype(int)
        hi = np.ceil(px.max(axis=0) + island_bleed).astype(int)
        x0, y0 = max(lo[0], 0), max(lo[1], 0)
        x1, y1 = min(hi[0], width - 1), min(hi[1], height - 1)
        if x1 < x0 or y1 < y0:
            continue
        xs, ys = np.meshgrid(np.arange(x0, x1 + 1) + 0.5, np.arange(y0, y1 + 1) + 0.5)
        centers = np.column_stack([xs.ravel(), ys.ravel()])
        a, b, c = px
        v0, v1 = b - a, c - a
        d00, d01, d11 = v0 @ v0, v0 @ v1, v1 @ v1
        denom = d00 * d11 - d01 * d01
        if abs(denom) < 1e-12:
            continue
        rel = centers - a
        d20, d21 = rel @ v0, rel @ v1
        w1 = (d11 * d20 - d01 * d21) / denom
        w2 = (d00 * d21 - d01 * d20) / denom
        bary = np.column_stack([1.0 - w1 - w2, w1, w2])
        clamped = np.clip(bary, 0.0, None)
        clamped /= clamped.sum(axis=1, keepdims=True)
        nearest_px = clamped @ px
        distance = np.linalg.norm(nearest_px - centers, axis=1)
        inside = np.all(bary >= -1e-9, axis=1)
        distance[inside] = 0.0
        accept = distance <= island_bleed
        texel = (ys.ravel().astype(int)) * width + xs.ravel().astype(int)
        better = accept & (distance < best[texel])
        if not better.any():
            continue
        texel = texel[better]
        best[texel] = distance[better]
        positions[texel] = clamped[better] @ tri_pos
    return positions, np.isfinite(best)


def build_surfel_lookup_table(
    entity: Entity,
    entity_idx: int,
    surface: Surface,
    count: int,
    width: int,
    height: int,
    island_bleed: int,
) -> SurfelTable:
    """Associate every texel of ``entity`` with its ``count`` nearest surfels.

    Surfels sampled from the entity itself are preferred; an entity without
    surfels falls back to the whole surface.
    """

    positions, covered = _rasterize(entity, width, height, island_bleed)
    indices = np.full((height * width, count), -1, dtype=np.int64)
    distances = np.full((height * width, count), np.inf)
    if len(surface) == 0 or not covered.any():
        return SurfelTable(width, height, indices, distances)
    own = np.flatnonzero(surface.entity_idx == entity_idx)
    if own.size == 0:
        own = np.arange(len(surface))
    k = min(count, own.size)
    tree = cKDTree(surface.positions[own])
    dist, local = tree.query(positions[covered], k=k)
    dist = np.asarray(dist).reshape(-1, k)
    local = np.asarray(local).reshape(-1, k)
    indices[covered, :k] = own[local]
    distances[covered, :k] = dist
    return SurfelTable(width, height, indices, distances)


# ---------------------------------------------------------------------------
# density
# ---------------------------------------------------------------------------


class Density:
    """Maps a substance concentration per texel to a color gradient."""

    def __init__(
        self,
        substance_idx: int,
        width: int,
        height: int,
        island_bleed: int,
        min_density: float,
        max_density: float,
        undefined_color: Color,
        min_color: Color,
        max_color: Color,
    ) -> None:
        self.substance_idx = substance_idx
        self.width = width
        self.height = height
        self.island_bleed = island_bleed
        self.min_density = min_density
        self.max_density = max_density
        self.undefined_color = np.asarray(undefined_color, dtype=np.float64)
        self.min_color = np.asarray(min_color, dtype=np.float64)
        self.max_color = np.asarray(max_color, dtype=np.float64)

    def concentrations(self, surface: Surface, table: SurfelTable) -> np.ndarray:
        """Inverse-distance weighted concentration per texel, NaN if uncovered."""

        valid = table.indices >= 0
        values = np.zeros(table.indices.shape)
        if len(surface):
            safe = np.where(valid, table.indices, 0)
            values = surface.substances[safe, self.substance_idx]
        weights = np.where(valid, 1.0 / (np.where(valid, table.distances, 1.0) + 1e-6), 0.0)
        total = weights.sum(axis=1)
        with np.errstate(invalid="ignore", divide="ignore"):
            result = (weights * values).sum(axis=1) / total
        result[total <= 0.0] = np.nan
        return result

    def collect_with_table(self, surface: Surface, table: SurfelTable) -> np.ndarray:
        if (table.width, table.height) != (self.width, self.height):
            raise ValueError("surfel table resolution does not match density resolution")
        conc = self.concentrations(surface, table)
        span = self.max_density - self.min_density
        t = np.clip((conc - self.min_density) / span if span else np.zeros_like(conc), 0.0, 1.0)
        colors = self.min_color[None, :] + (self.max_color - self.min_color)[None, :] * t[:, None]
        colors[np.isnan(conc)] = self.undefined_color
        return np.rint(colors).astype(np.uint8).reshape(self.height, self.width, 4)


# ---------------------------------------------------------------------------
# guided blend
# ---------------------------------------------------------------------------


class BlendType(enum.Enum):
    NORMAL = "normal"
    LINEAR = "linear"


@dataclass
class Stop:
    cenith: float
    sample: np.ndarray


class GuidedBlend:
    """Interpolates stop textures per texel according to a guide image."""

    def __init__(self, stops: Iterable[Stop], blend_type: BlendType = BlendType.LINEAR) -> None:
        self.stops: List[Stop] = sorted(stops, key=lambda stop: stop.cenith)
        if not self.stops:
            raise ValueError("guided blend needs at least one stop")
        self.blend_type = blend_type

    def perform(self, guide: np.ndarray) -> np.ndarray:
        height, width = guide.shape[:2]
        level = guide[..., 0].astype(np.float64).ravel() / 255.0
        samples = np.stack(
            [resize_image(stop.sample, width, height).reshape(-1, 4).astype(np.float64) for stop in self.stops]
        )
        cenith = np.array([stop.cenith for stop in self.stops])
        if len(cenith) == 1:
            lower = upper = np.zeros(level.size, dtype=np.int64)
        else:
            upper = np.clip(np.searchsorted(cenith, level, side="right"), 1, len(cenith) - 1)
            lower = upper - 1
        span = cenith[upper] - cenith[lower]
        with np.errstate(invalid="ignore", divide="ignore"):
            t = np.where(span > 0.0, (level - cenith[lower]) / np.where(span > 0.0, span, 1.0), 0.0)
        t = np.clip(t, 0.0, 1.0)[:, None]
        texels = np.arange(level.size)
        result = samples[lower, texels] * (1.0 - t) + samples[upper, texels] * t
        if self.blend_type is BlendType.NORMAL:
            vectors = result[:, :3] / 127.5 - 1.0
            lengths = np.linalg.norm(vectors, axis=1, keepdims=True)
            vectors = vectors / np.where(lengths > 0.0, lengths, 1.0)
            result[:, :3] = (vectors + 1.0) * 127.5
        return np.clip(np.rint(result), 0, 255).astype(np.uint8).reshape(height, width, 4)


def combine_normals(base: np.ndarray, detail: np.ndarray) -> np.ndarray:
    """Whiteout composition of a detail normal map over a base normal map."""

    n1 = base[..., :3].astype(np.float64) / 127.5 - 1.0
    n2 = detail[..., :3].astype(np.float64) / 127.5 - 1.0
    combined = np.concatenate([n1[..., :2] + n2[..., :2], (n1[..., 2] * n2[..., 2])[..., None]], axis=-1)
    lengths = np.linalg.norm(combined, axis=-1, keepdims=True)
    combined = combined / np.where(lengths > 0.0, lengths, 1.0)
    out = np.empty(base.shape, dtype=np.uint8)
    out[..., :3] = np.clip(np.rint((combined + 1.0) * 127.5), 0, 255)
    out[..., 3] = base[..., 3]
    return out


def alpha_over(bottom: np.ndarray, top: np.ndarray, influence: float = 1.0) -> np.ndarray:
    """Composite ``top`` over ``bottom`` with ``top`` alpha scaled by ``influence``."""

    b = bottom.astype(np.float64) / 255.0
    f = top.astype(np.float64) / 255.0
    fa = f[..., 3:] * influence
    ba = b[..., 3:]
    out_a = fa + ba * (1.0 - fa)
    with np.errstate(invalid="ignore", divide="ignore"):
        rgb = np.where(out_a > 0.0, (f[..., :3] * fa + b[..., :3] * ba * (1.0 - fa)) / np.where(out_a > 0.0, out_a, 1.0), 0.0)
    out = np.concatenate([rgb, out_a], axis=-1)
    return np.clip(np.rint(out * 255.0), 0, 255).astype(np.uint8)


__all__ = [
    "SurfelTable",
    "build_surfel_lookup_table",
    "Density",
    "BlendType",
    "Stop",
    "GuidedBlend",
    "combine_normals",
    "alpha_over",
    "open_image",
    "image_size",
    "resize_image",
    "save_png",
]
