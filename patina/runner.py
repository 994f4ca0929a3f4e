"""Iteration loop and effect pipeline of a weathering simulation.

Iteration 0 only runs the effects, as a reference for the untouched surface.
Every following iteration traces one pass of tons and then runs the effects
if the iteration is divisible by ``effect_interval`` or is the last one.

Effects always start from a fresh copy of the baseline entities, so layered
materials accumulate within one synthesis but never leak into the next. The
surfel substances persist across iterations.
"""
from __future__ import annotations

import contextlib
import logging
from pathlib import Path
from typing import ContextManager, List, Optional, Sequence, Tuple

from .errors import BlendSizeError, ConfigurationError, UnknownSubstanceError
from .io import obj
from .io.paths import fill_pattern
from .physics.simulation import Simulation
from .physics.texture import (
    BlendType,
    Density,
    GuidedBlend,
    Stop,
    alpha_over,
    combine_normals,
    image_size,
    open_image,
    resize_image,
    save_png,
)
from .runtime.bencher import Bencher
from .runtime.progress import ProgressReporter
from .scene import Entity, Material, copy_entities
from .schema import (
    Blend,
    DensityEffect,
    DumpSurfelsEffect,
    EffectSpec,
    ExportEffect,
    LayerEffect,
    SimulationSpec,
)
from .surfel_cache import SurfelTableCache

logger = logging.getLogger(__name__)

WHITE = (255, 255, 255, 255)
BLACK = (0, 0, 0, 255)


def blend_output_size(blend: Blend, original_texture: Optional[Path]) -> Tuple[int, int]:
    """Return ``(width, height)`` of a blend result.

    Explicit sizes win, a single explicit side gives a square. Otherwise the
    original channel texture decides, then the largest stop sample.
    """

    if blend.width is not None and blend.height is not None:
        return blend.width, blend.height
    if blend.width is not None:
        return blend.width, blend.width
    if blend.height is not None:
        return blend.height, blend.height
    if original_texture is not None:
        return image_size(original_texture, "material texture")
    sizes = [image_size(stop.sample, "blend stop sample") for stop in blend.stops if stop.sample is not None]
    if sizes:
        return max(sizes)
    raise BlendSizeError(
        "Cannot determine surfel table size for layer effect in absence of preferred blend output size. "
        "Neither the material nor any blend stop define a loadable texture."
    )


class SimulationRunner:
    def __init__(
        self,
        spec: SimulationSpec,
        substances: Sequence[str],
        simulation: Simulation,
        entities: Sequence[Entity],
        datetime: str,
        *,
        progress: Optional[ProgressReporter] = None,
    ) -> None:
        self.spec = spec
        self.substances: Tuple[str, ...] = tuple(substances)
        self.simulation = simulation
        self.entities: Tuple[Entity, ...] = tuple(entities)
        self.datetime = datetime
        self.iteration = 0
        self.progress = progress
        self._check_layer_substances()
        self.surfel_tables = self._build_surfel_tables()
        bench = spec.benchmark
        self.iteration_benchmark = self._bencher(bench.iterations if bench else None)
        self.tracing_benchmark = self._bencher(bench.tracing if bench else None)
        self.synthesis_benchmark = self._bencher(bench.synthesis if bench else None)

    # ------------------------------------------------------------------
    # setup
    # ------------------------------------------------------------------

    def _bencher(self, target: Optional[str]) -> Optional[Bencher]:
        if not target:
            return None
        return Bencher(fill_pattern(target, datetime=self.datetime))

    def _check_layer_substances(self) -> None:
        for effect in self.spec.effects:
            if isinstance(effect, LayerEffect) and effect.substance not in self.substances:
                raise UnknownSubstanceError(effect.substance, context="Layer effect")

    def _build_surfel_tables(self) -> SurfelTableCache:
        cache = SurfelTableCache()
        surface = self.simulation.surface
        logger.info(
            "Surfel table pre-calculation started for %d effects on %d entities...",
            len(self.spec.effects),
            len(self.entities),
        )
        for effect in self.spec.effects:
            if isinstance(effect, DensityEffect):
                for idx in range(len(self.entities)):
                    cache.prepare(
                        idx, effect.width, effect.height, effect.surfel_lookup, effect.island_bleed,
                        self.entities, surface,
                    )
            elif isinstance(effect, LayerEffect):
                for idx, entity in enumerate(self.entities):
                    if not effect.applies_to(entity.material.name):
                        continue
                    for channel, blend in effect.blends():
                        width, height = blend_output_size(blend, entity.material.channel(channel))
                        cache.prepare(
                            idx, width, height, effect.surfel_lookup, effect.island_bleed,
                            self.entities, surface,
                        )
        logger.info("Surfel table pre-calculation complete.")
        return cache

    # ------------------------------------------------------------------
    # iteration loop
    # ------------------------------------------------------------------

    @property
    def iterations(self) -> int:
        return self.spec.iterations if self.spec.iterations is not None else 1

    def effects_scheduled(self, iteration: int) -> bool:
        """Whether effects run after ``iteration``; 0 and the last iteration always do."""

        if iteration == 0 or iteration == self.iterations:
            return True
        interval = self.spec.effect_interval
        return interval is not None and iteration % interval == 0

    def effect_iterations(self) -> List[int]:
        return [i for i in range(self.iterations + 1) if self.effects_scheduled(i)]

    @staticmethod
    def _measure(bencher: Optional[Bencher]) -> ContextManager[None]:
        return bencher.bench() if bencher is not None else contextlib.nullcontext()

    def run(self) -> None:
        try:
            self.iteration = 0
            self.perform_effects()
            if self.progress is not None:
                self.progress.emit_header()
            for _ in range(self.iterations):
                self.iteration += 1
                synthesized = self.perform_iteration()
                if self.progress is not None:
                    self.progress.update(self.iteration, synthesized=synthesized)
        finally:
            self.close()

    def perform_iteration(self) -> bool:
        with self._measure(self.iteration_benchmark):
            logger.info("Iteration %d of %d started...", self.iteration, self.iterations)
            with self._measure(self.tracing_benchmark):
                logger.info("Tracing...")
                self.simulation.run()
            scheduled = self.effects_scheduled(self.iteration)
            if scheduled:
                logger.info("Texture synthesis...")
                self.perform_effects()
        return scheduled

    def close(self) -> None:
        for bencher in (self.iteration_benchmark, self.tracing_benchmark, self.synthesis_benchmark):
            if bencher is not None:
                bencher.flush()

    # ------------------------------------------------------------------
    # effects
    # ------------------------------------------------------------------

    def perform_effects(self) -> None:
        with self._measure(self.synthesis_benchmark):
            entities = copy_entities(self.entities)
            for effect in self.spec.effects:
                self.perform_effect(effect, entities)

    def perform_effect(self, effect: EffectSpec, entities: List[Entity]) -> None:
        if isinstance(effect, DensityEffect):
            self.perform_density(effect)
        elif isinstance(effect, LayerEffect):
            self.perform_layer(effect, entities)
        elif isinstance(effect, ExportEffect):
            self.export_scene(entities, effect.obj_pattern, effect.mtl_pattern, "all")
        elif isinstance(effect, DumpSurfelsEffect):
            self.export_surfels(effect.obj_pattern)
        else:
            raise TypeError(f"unsupported effect {effect!r}")

    def _fill(self, pattern: str, **tokens) -> str:
        return fill_pattern(pattern, iteration=self.iteration, datetime=self.datetime, **tokens)

    def perform_density(self, effect: DensityEffect) -> None:
        """Write a concentration map per substance and entity, optionally with a scene."""

        surface = self.simulation.surface
        for substance_idx, substance in enumerate(self.substances):
            density = Density(
                substance_idx, effect.width, effect.height, effect.island_bleed,
                0.0, 1.0, WHITE, WHITE, BLACK,
            )
            density_scene: List[Entity] = []
            for idx, entity in enumerate(self.entities):
                table = self.surfel_tables.lookup(
                    idx, effect.width, effect.height, effect.surfel_lookup, effect.island_bleed
                )
                texture = density.collect_with_table(surface, table)
                filename = self._fill(effect.tex_pattern, id=idx, entity=entity.name, substance=substance)
                path = save_png(texture, filename, "density texture").absolute()
                material = Material(f"{substance}-density-{idx}-{entity.name}", albedo=path)
                density_scene.append(Entity(entity.name, entity.mesh, material))
            self.export_scene(density_scene, effect.obj_pattern, effect.mtl_pattern, substance)

    def perform_layer(self, effect: LayerEffect, entities: List[Entity]) -> None:
        substance_idx = self.substances.index(effect.substance)
        for idx, entity in enumerate(entities):
            if not effect.applies_to(entity.material.name):
                continue
            baseline = self.entities[idx].material
            material = entity.material
            for channel, blend in effect.blends():
                blend_type = BlendType.NORMAL if channel == "normal" else BlendType.LINEAR
                texture = self.perform_blend(
                    entity, idx, entity.material.channel(channel), baseline.channel(channel),
                    blend, substance_idx, effect, blend_type,
                )
                material = material.with_channel(channel, texture)
            entity.material = material

    def perform_blend(
        self,
        entity: Entity,
        entity_idx: int,
        original_map: Optional[Path],
        baseline_map: Optional[Path],
        blend: Blend,
        substance_idx: int,
        effect: LayerEffect,
        blend_type: BlendType,
    ) -> Path:
        width, height = blend_output_size(blend, baseline_map)
        table = self.surfel_tables.lookup(entity_idx, width, height, effect.surfel_lookup, effect.island_bleed)
        guide = Density(
            substance_idx, width, height, effect.island_bleed, 0.0, 1.0, BLACK, BLACK, WHITE
        ).collect_with_table(self.simulation.surface, table)

        result = self.make_guided_blend(blend, blend_type, original_map).perform(guide)

        if original_map is not None:
            original = resize_image(open_image(original_map, "material texture"), width, height)
            if blend_type is BlendType.NORMAL:
                result = combine_normals(original, result)
            else:
                result = alpha_over(original, result, blend.influence)

        filename = self._fill(
            blend.tex_pattern, id=entity_idx, entity=entity.name, substance=self.substances[substance_idx]
        )
        return save_png(result, filename, "layer texture").absolute()

    @staticmethod
    def make_guided_blend(blend: Blend, blend_type: BlendType, original_map: Optional[Path]) -> GuidedBlend:
        stops: List[Stop] = []
        if original_map is not None:
            if not any(stop.cenith == 0.0 for stop in blend.stops):
                stops.append(Stop(0.0, open_image(original_map, "material texture")))
        elif not blend.stops:
            raise ConfigurationError(
                "Failed to do a blend effect because no stops are defined and no original map is defined either"
            )
        for stop in blend.stops:
            sample = stop.sample if stop.sample is not None else original_map
            if sample is None:
                raise ConfigurationError(
                    "Defined a blend stop without texture, but applicable material does not define base texture"
                )
            stops.append(Stop(stop.cenith, open_image(sample, "blend stop sample")))
        return GuidedBlend(stops, blend_type)

    def export_scene(
        self,
        entities: Sequence[Entity],
        obj_pattern: Optional[str],
        mtl_pattern: Optional[str],
        substance: str,
    ) -> None:
        if obj_pattern is None and mtl_pattern is None:
            return
        if obj_pattern is None or mtl_pattern is None:
            raise ConfigurationError("Scene export needs both an OBJ and an MTL pattern")
        obj_filename = self._fill(obj_pattern, substance=substance)
        mtl_filename = self._fill(mtl_pattern, substance=substance)
        logger.info("Persisting scene: %s", obj_filename)
        obj.save(entities, obj_filename, mtl_filename)

    def export_surfels(self, obj_pattern: str) -> None:
        self.simulation.surface.dump(self._fill(obj_pattern))

    def __str__(self) -> str:
        lines = [
            f"Name:               {self.spec.name}",
            f"Description:        {self.spec.description}",
        ]
        lines.extend(f"Scene:              {Path(scene).name}" for scene in self.spec.scenes)
        lines.extend(
            [
                f"Iterations:         {self.iterations}",
                f"Surfels:            {self.simulation.surfel_count()}",
                f"Tons per iteration: {self.simulation.emission_count()}",
                f"Substances:         {list(self.substances)}",
            ]
        )
        return "\n".join(lines)


__all__ = ["SimulationRunner", "blend_output_size"]
