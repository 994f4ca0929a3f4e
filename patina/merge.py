"""Merging of simulation spec fragments and resolution of their input paths.

Fragments are merged left to right. Lists concatenate, scalars follow
"second or first" and text fields are joined. Conflicting scalar values are
not errors but are reported through :class:`SpecConflictWarning`.
"""
from __future__ import annotations

import logging
import warnings
from pathlib import Path
from typing import Callable, List, Optional, TypeVar

from .errors import ResolveError, ResolveKind
from .io.resolve import Resolver
from .schema import Blend, BenchSpec, LayerEffect, SimulationSpec, CHANNELS
from .warnings import SpecConflictWarning

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _join_text(first: str, second: str, delimiter: str) -> str:
    first = first.strip()
    second = second.strip()
    if first and second:
        return f"{first}{delimiter}{second}"
    return first or second


def _second_or_first(first: Optional[T], second: Optional[T]) -> Optional[T]:
    return second if second is not None else first


def _conflicting(label: str, first: Optional[T], second: Optional[T]) -> Optional[T]:
    if first is not None and second is not None and first != second:
        warnings.warn(
            f"Merging simulation specs with conflicting {label}: {first!r} and {second!r}. Using {second!r}.",
            SpecConflictWarning,
            stacklevel=3,
        )
    return _second_or_first(first, second)


def _merge_benchmark(first: Optional[BenchSpec], second: Optional[BenchSpec]) -> Optional[BenchSpec]:
    if first is None:
        return second
    if second is None:
        return first
    return BenchSpec(
        iterations=_second_or_first(first.iterations, second.iterations),
        tracing=_second_or_first(first.tracing, second.tracing),
        synthesis=_second_or_first(first.synthesis, second.synthesis),
        setup=_second_or_first(first.setup, second.setup),
    )


def merge(first: SimulationSpec, second: SimulationSpec) -> SimulationSpec:
    """Return the combination of two fragments; ``second`` has override authority."""

    surfels_by_material = dict(first.surfels_by_material)
    surfels_by_material.update(second.surfels_by_material)
    return SimulationSpec.model_construct(
        name=_join_text(first.name, second.name, "-"),
        description=_join_text(first.description, second.description, "\n\n"),
        scenes=[*first.scenes, *second.scenes],
        iterations=_conflicting("iteration counts", first.iterations, second.iterations),
        effect_interval=_second_or_first(first.effect_interval, second.effect_interval),
        log=_conflicting("log files", first.log, second.log),
        surfel_distance=_conflicting("surfel distances", first.surfel_distance, second.surfel_distance),
        sources=[*first.sources, *second.sources],
        surfels_by_material=surfels_by_material,
        effects=[*first.effects, *second.effects],
        benchmark=_merge_benchmark(first.benchmark, second.benchmark),
        transport=_second_or_first(first.transport, second.transport),
        consistent_transport=_second_or_first(first.consistent_transport, second.consistent_transport),
        flat_filtering=_second_or_first(first.flat_filtering, second.flat_filtering),
        seed=_second_or_first(first.seed, second.seed),
        rules=[*first.rules, *second.rules],
    )


def merge_all(fragments: List[SimulationSpec]) -> SimulationSpec:
    merged = SimulationSpec()
    for fragment in fragments:
        merged = merge(merged, fragment)
    return merged


def _resolve_with(resolver: Resolver, kind: ResolveKind) -> Callable[[Path], Path]:
    def resolve(path: Path) -> Path:
        try:
            return resolver.resolve(path)
        except (OSError, ValueError) as exc:
            raise ResolveError(kind, exc) from exc

    return resolve


def _canonical_blend(blend: Optional[Blend], resolve: Callable[[Path], Path]) -> Optional[Blend]:
    if blend is None:
        return None
    stops = [
        stop if stop.sample is None else stop.model_copy(update={"sample": resolve(stop.sample)})
        for stop in blend.stops
    ]
    return blend.model_copy(update={"stops": stops})


def canonicalize(spec: SimulationSpec, resolver: Resolver) -> SimulationSpec:
    """Rewrite every input path of ``spec`` into absolute canonical form.

    Output targets (patterns, log and benchmark files) are left untouched.
    """

    scene = _resolve_with(resolver, ResolveKind.SCENE)
    source = _resolve_with(resolver, ResolveKind.TON_SOURCE_SPEC)
    surfel = _resolve_with(resolver, ResolveKind.SURFEL_SPEC)
    sample = _resolve_with(resolver, ResolveKind.LAYER)

    effects = []
    for effect in spec.effects:
        if isinstance(effect, LayerEffect):
            effect = effect.model_copy(
                update={channel: _canonical_blend(getattr(effect, channel), sample) for channel in CHANNELS}
            )
        effects.append(effect)

    return spec.model_copy(
        update={
            "scenes": [scene(path) for path in spec.scenes],
            "sources": [source(path) for path in spec.sources],
            "surfels_by_material": {
                material: surfel(path) for material, path in spec.surfels_by_material.items()
            },
            "effects": effects,
        }
    )


__all__ = ["merge", "merge_all", "canonicalize"]
