"""Turning a merged simulation spec into a runnable :class:`SimulationRunner`.

Instantiation runs a fixed sequence of steps and stops at the first failure:

1. load the surfel specs of the material mapping,
2. load the scenes, dropping entities without a surfel spec unless the
   fallback material ``_`` is mapped,
3. load the ton source specs,
4. collect the substance name table,
5. check for effects and
6. a positive surfel distance,
7. build the ton sources,
8. sample the surface,
9. resolve the simulation-wide rules,
10. construct the simulation and the runner,
11. optionally record the setup duration.
"""
from __future__ import annotations

import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .errors import (
    EffectsMissing,
    InvalidSurfelDistance,
    ResolveError,
    ResolveKind,
    SourcesMissing,
    SubstancesMissing,
    SurfelSpecsMissing,
    UnknownSubstanceError,
)
from .io import obj
from .io.paths import fill_pattern, fs_timestamp
from .io.resolve import Resolver
from .io.specs import load_surfel_spec, load_ton_source_spec
from .physics.rules import Deposit, Deteriorate, SurfelRule, Transfer
from .physics.simulation import Simulation, SimulationConfig
from .physics.source import TonSource, TonSourceBuilder
from .physics.surface import MinimumDistance, Surface, SurfaceBuilder, SurfelPrototype
from .runner import SimulationRunner
from .runtime.bencher import write_sample
from .runtime.progress import ProgressReporter
from .scene import Entity, Mesh
from .schema import (
    FALLBACK_MATERIAL,
    DepositRuleSpec,
    DeteriorateRuleSpec,
    SimulationSpec,
    SurfelRuleSpec,
    SurfelSpec,
    TonSourceSpec,
    TransferRuleSpec,
)

logger = logging.getLogger(__name__)

DEFAULT_SEED = 12345


def _resolve(resolver: Resolver, path: Path, kind: ResolveKind) -> Path:
    try:
        return resolver.resolve(path)
    except (OSError, ValueError) as exc:
        raise ResolveError(kind, exc) from exc


def extract_keys(values: Mapping[str, float], keys: Sequence[str], default: float) -> List[float]:
    """Align ``values`` to ``keys``, using ``default`` for missing names."""

    return [float(values.get(key, default)) for key in keys]


def unique_substance_names(
    surfel_specs: Iterable[SurfelSpec], source_specs: Iterable[TonSourceSpec]
) -> List[str]:
    """Ordered, duplicate-free substance names.

    Surfel specs contribute their ``initial`` then ``deposit`` keys, followed
    by every source's ``initial`` then ``absorb`` keys, in spec order.
    """

    names: List[str] = []
    for spec in surfel_specs:
        names.extend(spec.initial)
        names.extend(spec.deposit)
    for spec in source_specs:
        names.extend(spec.initial)
        names.extend(spec.absorb)
    return list(dict.fromkeys(names))


def _index_of(name: str, substances: Sequence[str]) -> int:
    try:
        return list(substances).index(name)
    except ValueError:
        raise UnknownSubstanceError(name) from None


def rule_by_spec(spec: SurfelRuleSpec, substances: Sequence[str]) -> SurfelRule:
    """Resolve the substance names of a rule against the substance table."""

    if isinstance(spec, TransferRuleSpec):
        return Transfer(_index_of(spec.from_, substances), _index_of(spec.to, substances), spec.factor)
    if isinstance(spec, DeteriorateRuleSpec):
        return Deteriorate(_index_of(spec.from_, substances), spec.factor)
    if isinstance(spec, DepositRuleSpec):
        return Deposit(_index_of(spec.to, substances), spec.amount)
    raise TypeError(f"unsupported surfel rule spec {spec!r}")


def load_surfel_specs(spec: SimulationSpec, resolver: Resolver) -> Dict[str, SurfelSpec]:
    specs: Dict[str, SurfelSpec] = {}
    for material, path in spec.surfels_by_material.items():
        specs[material] = load_surfel_spec(_resolve(resolver, path, ResolveKind.SURFEL_SPEC))
    if not specs:
        raise SurfelSpecsMissing()
    return specs


def load_entities(scenes: Sequence[Path], resolver: Resolver, surfel_specs: Mapping[str, SurfelSpec]) -> List[Entity]:
    """Load every scene; without a fallback spec, unmapped materials are dropped."""

    entities: List[Entity] = []
    keep_all = FALLBACK_MATERIAL in surfel_specs
    for scene in scenes:
        loaded = obj.load(_resolve(resolver, scene, ResolveKind.SCENE))
        if not keep_all:
            dropped = [e.name for e in loaded if e.material.name not in surfel_specs]
            if dropped:
                logger.info("ignoring entities without surfel spec: %s", ", ".join(dropped))
            loaded = [e for e in loaded if e.material.name in surfel_specs]
        entities.extend(loaded)
    return entities


def load_source_specs(sources: Sequence[Path], resolver: Resolver) -> List[Tuple[Path, TonSourceSpec]]:
    """Return ``(path, spec)`` pairs for every source."""

    if not sources:
        raise SourcesMissing()
    loaded = []
    for source in sources:
        path = _resolve(resolver, source, ResolveKind.TON_SOURCE_SPEC)
        loaded.append((path, load_ton_source_spec(path)))
    return loaded


def _emission_mesh(spec_path: Path, spec: TonSourceSpec, resolver: Resolver) -> Mesh:
    local = resolver.copy()
    try:
        local.add_base(spec_path.parent)
    except OSError as exc:
        raise ResolveError(ResolveKind.TON_SOURCE_MESH, exc) from exc
    return obj.load_mesh(_resolve(local, spec.mesh, ResolveKind.TON_SOURCE_MESH))


def build_sources(
    source_specs: Sequence[Tuple[Path, TonSourceSpec]],
    substances: Sequence[str],
    resolver: Resolver,
) -> List[TonSource]:
    sources = []
    for spec_path, spec in source_specs:
        builder = TonSourceBuilder()
        if spec.flow_direction is not None:
            builder = builder.flow_direction_static(spec.flow_direction)
        source = (
            builder.mesh_shaped(_emission_mesh(spec_path, spec, resolver), spec.diffuse)
            .emission_count(spec.emission_count)
            .p_straight(spec.p_straight)
            .p_parabolic(spec.p_parabolic)
            .p_flow(spec.p_flow)
            .substances(extract_keys(spec.initial, substances, 0.0))
            .pickup_rates(extract_keys(spec.absorb, substances, 0.0))
            .interaction_radius(spec.interaction_radius)
            .parabola_height(spec.parabola_height)
            .flow_distance(spec.flow_distance)
            .build()
        )
        sources.append(source)
    return sources


def build_surface(
    entities: Sequence[Entity],
    surfel_specs: Mapping[str, SurfelSpec],
    substances: Sequence[str],
    surfel_distance: float,
    seed: int,
) -> Surface:
    builder = SurfaceBuilder(seed).sampling(MinimumDistance(surfel_distance))
    fallback = surfel_specs.get(FALLBACK_MATERIAL)
    for entity_idx, entity in enumerate(entities):
        surfel_spec = surfel_specs.get(entity.material.name, fallback)
        if surfel_spec is None:
            continue
        prototype = SurfelPrototype(
            entity_idx=entity_idx,
            delta_straight=surfel_spec.reflectance.delta_straight,
            delta_parabolic=surfel_spec.reflectance.delta_parabolic,
            delta_flow=surfel_spec.reflectance.delta_flow,
            substances=np.asarray(extract_keys(surfel_spec.initial, substances, 0.0)),
            deposition_rates=np.asarray(extract_keys(surfel_spec.deposit, substances, 0.0)),
            rules=tuple(rule_by_spec(rule, substances) for rule in surfel_spec.rules),
        )
        logger.info('Sampling entity "%s" into surfel representation, 2r=%s...', entity.name, surfel_distance)
        builder.sample_triangles(entity.mesh.positions, prototype)
    return builder.build(len(substances))


def instantiate(
    spec: SimulationSpec,
    resolver: Resolver,
    creation_time: datetime,
    *,
    threads: Optional[int] = None,
    progress: bool = False,
) -> SimulationRunner:
    """Build a runner for ``spec``; raises a named :class:`PatinaError` on failure."""

    start_ns = time.perf_counter_ns()

    surfel_specs = load_surfel_specs(spec, resolver)
    entities = load_entities(spec.scenes, resolver, surfel_specs)
    source_specs = load_source_specs(spec.sources, resolver)

    substances = unique_substance_names(surfel_specs.values(), [s for _, s in source_specs])
    if not substances:
        raise SubstancesMissing()
    if not spec.effects:
        raise EffectsMissing()
    if spec.surfel_distance is None or spec.surfel_distance <= 0.0:
        raise InvalidSurfelDistance(spec.surfel_distance)

    seed = spec.seed if spec.seed is not None else DEFAULT_SEED
    sources = build_sources(source_specs, substances, resolver)
    surface = build_surface(entities, surfel_specs, substances, spec.surfel_distance, seed)
    rules = [rule_by_spec(rule, substances) for rule in spec.rules]

    triangles = (
        np.concatenate([entity.mesh.positions for entity in entities]) if entities else np.zeros((0, 3, 3))
    )
    config = SimulationConfig(transport=spec.transport_mode(), threads=threads, seed=seed)
    simulation = Simulation(config, sources, triangles, surface, rules)

    datetime_token = fs_timestamp(creation_time)
    reporter = ProgressReporter(spec.iterations if spec.iterations is not None else 1, enabled=progress)
    runner = SimulationRunner(spec, substances, simulation, entities, datetime_token, progress=reporter)

    if spec.benchmark is not None and spec.benchmark.setup:
        target = fill_pattern(spec.benchmark.setup, datetime=datetime_token)
        write_sample(target, time.perf_counter_ns() - start_ns)
        logger.debug("setup duration written to %s", target)

    return runner


__all__ = [
    "instantiate",
    "extract_keys",
    "unique_substance_names",
    "rule_by_spec",
    "load_surfel_specs",
    "load_entities",
    "load_source_specs",
    "build_sources",
    "build_surface",
]
