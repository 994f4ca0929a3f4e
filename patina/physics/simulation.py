"""Ton tracing and substance transport.

One call to :meth:`Simulation.run` is one pass: every source emits its tons,
their trajectories are traced against the scene triangles (in parallel), and
the resulting surfel interactions are then applied to the surface on the
calling thread, in emission order. Rules run after the transport step.

Gravity points along ``-y``.
"""
from __future__ import annotations

import logging
import math
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Literal, Optional, Sequence, Tuple

import numpy as np

from .rules import SurfelRule, apply_rules
from .source import FLOW, PARABOLIC, STRAIGHT, TonSource
from .surface import Surface

logger = logging.getLogger(__name__)

Transport = Literal["classic", "consistent", "conserving", "differential"]
GRAVITY = np.array([0.0, -1.0, 0.0])
EPSILON = 1e-6
SURFACE_OFFSET = 1e-4
PARABOLA_SEGMENTS = 24
CHUNK_SIZE = 128


@dataclass
class SimulationConfig:
    transport: Transport = "differential"
    threads: Optional[int] = None
    seed: int = 12345
    max_bounces: int = 16


@dataclass(frozen=True)
class Interaction:
    """A ton touching the surface; ``settled`` marks the final interaction."""

    surfels: Tuple[int, ...]
    settled: bool


class Simulation:
    def __init__(
        self,
        config: SimulationConfig,
        sources: Sequence[TonSource],
        triangles: np.ndarray,
        surface: Surface,
        rules: Sequence[SurfelRule] = (),
    ) -> None:
        self.config = config
        self.sources = list(sources)
        self.triangles = np.asarray(triangles, dtype=np.float64).reshape(-1, 3, 3)
        self._surface = surface
        self.rules = tuple(rules)
        self.passes = 0
        t = self.triangles
        self._v0 = t[:, 0]
        self._e1 = t[:, 1] - t[:, 0]
        self._e2 = t[:, 2] - t[:, 0]
        normals = np.cross(self._e1, self._e2)
        lengths = np.linalg.norm(normals, axis=1, keepdims=True)
        self._normals = normals / np.where(lengths > 0.0, lengths, 1.0)

    @property
    def surface(self) -> Surface:
        return self._surface

    def surfel_count(self) -> int:
        return len(self._surface)

    def emission_count(self) -> int:
        return sum(source.emission_count for source in self.sources)

    # ------------------------------------------------------------------
    # geometry
    # ------------------------------------------------------------------

    def intersect(self, origin: np.ndarray, direction: np.ndarray, max_t: float = math.inf) -> Optional[Tuple[float, int]]:
        """Return ``(t, face)`` of the closest hit along the ray, if any."""

        if self._v0.shape[0] == 0:
            return None
        p = np.cross(direction, self._e2)
        det = np.einsum("ij,ij->i", self._e1, p)
        ok = np.abs(det) > EPSILON
        inv = np.where(ok, 1.0 / np.where(ok, det, 1.0), 0.0)
        s = origin - self._v0
        u = np.einsum("ij,ij->i", s, p) * inv
        q = np.cross(s, self._e1)
        v = (q @ direction) * inv
        t = np.einsum("ij,ij->i", self._e2, q) * inv
        hit = ok & (u >= 0.0) & (v >= 0.0) & (u + v <= 1.0) & (t > EPSILON) & (t <= max_t)
        if not hit.any():
            return None
        candidates = np.flatnonzero(hit)
        best = candidates[np.argmin(t[candidates])]
        return float(t[best]), int(best)

    def _facing_normal(self, face: int, direction: np.ndarray) -> np.ndarray:
        n = self._normals[face]
        return -n if float(n @ direction) > 0.0 else n

    # ------------------------------------------------------------------
    # trajectories
    # ------------------------------------------------------------------

    def _interaction_at(self, point: np.ndarray, radius: float) -> Tuple[int, ...]:
        if self.config.transport == "consistent":
            return tuple(self._surface.within(point, radius))
        nearest = self._surface.nearest(point, radius)
        return () if nearest is None else (nearest,)

    def _next_hit(
        self, point: np.ndarray, direction: np.ndarray, normal: np.ndarray, motion: int, source: TonSource
    ) -> Optional[Tuple[np.ndarray, np.ndarray, int]]:
        """Move a ton off the surface at ``point`` and return its next hit."""

        start = point + normal * SURFACE_OFFSET
        if motion == PARABOLIC and source.parabola_height > 0.0:
            return self._hop(start, direction, normal, source.parabola_height)
        if motion == FLOW and source.flow_distance > 0.0:
            return self._flow(start, direction, normal, source)
        reflected = direction - 2.0 * float(direction @ normal) * normal
        return self._cast(start, reflected)

    def _cast(self, origin: np.ndarray, direction: np.ndarray, max_t: float = math.inf):
        hit = self.intersect(origin, direction, max_t)
        if hit is None:
            return None
        t, face = hit
        return origin + direction * t, direction, face

    def _hop(self, start: np.ndarray, direction: np.ndarray, normal: np.ndarray, height: float):
        tangent = direction - float(direction @ normal) * normal
        length = float(np.linalg.norm(tangent))
        tangent = tangent / length if length > EPSILON else np.zeros(3)
        vy = math.sqrt(2.0 * height)
        velocity = -GRAVITY * vy + tangent * vy
        flight = 2.0 * vy
        dt = flight / (PARABOLA_SEGMENTS / 2)
        position = start
        for _ in range(PARABOLA_SEGMENTS):
            following = position + velocity * dt + 0.5 * GRAVITY * dt * dt
            segment = following - position
            span = float(np.linalg.norm(segment))
            if span > EPSILON:
                unit = segment / span
                hit = self.intersect(position, unit, span)
                if hit is not None:
                    t, face = hit
                    return position + unit * t, unit, face
            velocity = velocity + GRAVITY * dt
            position = following
        return self._cast(position, velocity / max(float(np.linalg.norm(velocity)), EPSILON))

    def _flow(self, start: np.ndarray, direction: np.ndarray, normal: np.ndarray, source: TonSource):
        pull = source.flow_direction if source.flow_direction is not None else direction
        along = pull - float(pull @ normal) * normal
        length = float(np.linalg.norm(along))
        if length <= EPSILON:
            return None
        along = along / length
        blocked = self.intersect(start, along, source.flow_distance)
        if blocked is not None:
            t, face = blocked
            return start + along * t, along, face
        moved = start + along * source.flow_distance
        reattach = self._cast(moved, -normal, 2.0 * source.interaction_radius + SURFACE_OFFSET)
        if reattach is not None:
            hit_point, _, face = reattach
            return hit_point, along, face
        # fell off an edge
        return self._cast(moved, GRAVITY)

    def trace(self, origin: np.ndarray, direction: np.ndarray, motion: int, source: TonSource, rng: np.random.Generator) -> List[Interaction]:
        """Follow one ton until it settles, leaves the scene or runs out of bounces."""

        events: List[Interaction] = []
        direction = direction / max(float(np.linalg.norm(direction)), EPSILON)
        hit = self._cast(origin, direction)
        for _ in range(self.config.max_bounces):
            if hit is None:
                break
            point, incoming, face = hit
            surfels = self._interaction_at(point, source.interaction_radius)
            if not surfels:
                break
            keep_moving = self._surface.deltas[surfels[0], motion]
            settled = bool(rng.random() >= keep_moving)
            events.append(Interaction(surfels, settled))
            if settled:
                break
            hit = self._next_hit(point, incoming, self._facing_normal(face, incoming), motion, source)
        return events

    # ------------------------------------------------------------------
    # transport
    # ------------------------------------------------------------------

    def _absorb(self, ton: np.ndarray, rates: np.ndarray, surfels: Tuple[int, ...]) -> None:
        substances = self._surface.substances
        idx = np.asarray(surfels, dtype=np.int64)
        local = substances[idx]
        share = 1.0 / len(idx)
        mode = self.config.transport
        if mode == "classic":
            ton += (local * rates).sum(axis=0) * share
        elif mode == "differential":
            flow = (local - ton) * rates * share
            substances[idx] = local - flow
            ton += flow.sum(axis=0)
        else:
            take = local * rates * share
            substances[idx] = local - take
            ton += take.sum(axis=0)
        substances[idx] = np.maximum(substances[idx], 0.0)
        np.maximum(ton, 0.0, out=ton)

    def _deposit(self, ton: np.ndarray, surfels: Tuple[int, ...]) -> None:
        substances = self._surface.substances
        idx = np.asarray(surfels, dtype=np.int64)
        local = substances[idx]
        rates = self._surface.deposition_rates[idx]
        share = 1.0 / len(idx)
        mode = self.config.transport
        if mode == "classic":
            substances[idx] = local + ton * rates * share
        elif mode == "differential":
            flow = (ton - local) * rates * share
            substances[idx] = local + flow
            ton -= flow.sum(axis=0)
        else:
            give = np.minimum(ton * rates * share, ton * share)
            substances[idx] = local + give
            ton -= give.sum(axis=0)
        substances[idx] = np.maximum(substances[idx], 0.0)
        np.maximum(ton, 0.0, out=ton)

    def _trace_chunk(self, jobs: List[Tuple[int, np.ndarray, np.ndarray, int, int]]) -> List[List[Interaction]]:
        out = []
        for ton_no, origin, direction, motion, source_idx in jobs:
            rng = np.random.default_rng(np.random.SeedSequence(self.config.seed, spawn_key=(self.passes, 1, ton_no)))
            out.append(self.trace(origin, direction, motion, self.sources[source_idx], rng))
        return out

    def run(self) -> None:
        """Trace one pass of tons and apply transport and rules."""

        self.passes += 1
        emit_rng = np.random.default_rng(np.random.SeedSequence(self.config.seed, spawn_key=(self.passes, 0)))
        jobs: List[Tuple[int, np.ndarray, np.ndarray, int, int]] = []
        for source_idx, source in enumerate(self.sources):
            origins, directions, motions = source.emit(emit_rng)
            for origin, direction, motion in zip(origins, directions, motions):
                jobs.append((len(jobs), origin, direction, int(motion), source_idx))

        chunks = [jobs[i : i + CHUNK_SIZE] for i in range(0, len(jobs), CHUNK_SIZE)]
        workers = self.config.threads or os.cpu_count() or 1
        with ThreadPoolExecutor(max_workers=workers) as pool:
            trajectories = [events for chunk in pool.map(self._trace_chunk, chunks) for events in chunk]

        interactions = 0
        for (_, _, _, _, source_idx), events in zip(jobs, trajectories):
            source = self.sources[source_idx]
            ton = source.substances.copy()
            for event in events:
                interactions += 1
                if event.settled:
                    self._deposit(ton, event.surfels)
                else:
                    self._absorb(ton, source.pickup_rates, event.surfels)

        self._surface.apply_rules()
        apply_rules(self._surface.substances, self.rules)
        logger.debug("pass %d traced %d tons with %d surfel interactions", self.passes, len(jobs), interactions)


__all__ = ["Simulation", "SimulationConfig", "Interaction", "Transport"]
