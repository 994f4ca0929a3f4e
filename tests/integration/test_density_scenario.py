"""End-to-end run of the rain scenario with density, surfel dump and benchmarks."""
from __future__ import annotations

from datetime import datetime, timezone

import numpy as np

from patina.builder import SimulationBuilder
from patina.io import obj
from patina.physics.texture import open_image

FIXED_TIME = datetime(2024, 5, 17, 13, 45, 12, tzinfo=timezone.utc)


def _run(scenario, effects: str, extra: str = "", iterations: int = 1):
    path = scenario.write_simulation(effects, extra, iterations=iterations)
    runner = SimulationBuilder(creation_time=FIXED_TIME).append_spec_fragment_file(path).build(threads=2)
    runner.run()
    return runner


def test_density_maps_per_substance_and_entity(scenario) -> None:
    runner = _run(scenario, scenario.density_effect(size=64))

    written = sorted(p.name for p in (scenario.out / "density").glob("1-*.png"))
    assert written == ["1-floor-rust.png", "1-floor-water.png", "1-wall-rust.png", "1-wall-water.png"]
    for name in written:
        assert open_image(scenario.out / "density" / name).shape == (64, 64, 4)

    floor_water = open_image(scenario.out / "density" / "1-floor-water.png")
    floor_rust = open_image(scenario.out / "density" / "1-floor-rust.png")
    wall_water = open_image(scenario.out / "density" / "1-wall-water.png")
    assert floor_water[..., :3].min() < 200
    assert floor_rust[..., :3].min() < 255
    assert np.all(wall_water == 255)

    # nothing has been traced before the first iteration
    initial_water = open_image(scenario.out / "density" / "0-floor-water.png")
    assert np.all(initial_water == 255)

    water = runner.substances.index("water")
    floor_surfels = runner.simulation.surface.entity_idx == 0
    assert runner.simulation.surface.substances[floor_surfels, water].max() > 0.0


def test_density_scene_export(scenario) -> None:
    effect = scenario.density_effect(size=16) + (
        f"      obj_pattern: \"{scenario.pattern('density/{iteration}-{substance}.obj')}\"\n"
        f"      mtl_pattern: \"{scenario.pattern('density/{iteration}-{substance}.mtl')}\"\n"
    )
    _run(scenario, effect)
    entities = obj.load(scenario.out / "density" / "1-water.obj")
    assert [entity.name for entity in entities] == ["floor", "wall"]
    assert entities[0].material.name == "water-density-0-floor"
    assert entities[0].material.albedo == (scenario.out / "density" / "1-floor-water.png").absolute()
    assert (scenario.out / "density" / "0-rust.obj").exists()


def test_effect_interval_and_surfel_dump(scenario) -> None:
    effects = (
        "  - dump_surfels:\n"
        f"      obj_pattern: \"{scenario.pattern('surfels/{iteration}.obj')}\"\n"
    )
    runner = _run(scenario, effects, extra="effect_interval: 2\n", iterations=3)
    dumps = sorted(p.name for p in (scenario.out / "surfels").glob("*.obj"))
    assert dumps == ["0.obj", "2.obj", "3.obj"]
    lines = (scenario.out / "surfels" / "3.obj").read_text(encoding="utf-8").splitlines()
    assert len(lines) == runner.simulation.surfel_count()


def test_benchmarks_record_one_sample_per_measurement(scenario) -> None:
    bench = scenario.out / "bench"
    extra = (
        "benchmark:\n"
        f"  iterations: \"{(bench / 'iterations-{datetime}.csv').as_posix()}\"\n"
        f"  tracing: \"{(bench / 'tracing.csv').as_posix()}\"\n"
        f"  synthesis: \"{(bench / 'synthesis.csv').as_posix()}\"\n"
    )
    _run(scenario, scenario.density_effect(size=8), extra=extra)
    iterations = (bench / "iterations-2024-05-17T13_45_12+00_00.csv").read_text(encoding="utf-8").splitlines()
    tracing = (bench / "tracing.csv").read_text(encoding="utf-8").splitlines()
    synthesis = (bench / "synthesis.csv").read_text(encoding="utf-8").splitlines()
    assert len(iterations) == 1
    assert len(tracing) == 1
    # iteration 0 and the final iteration
    assert len(synthesis) == 2


def test_single_surfel_spec_writes_two_iterations_of_each_substance(scenario) -> None:
    path = scenario.write_simulation(scenario.density_effect(size=64))
    builder = SimulationBuilder(creation_time=FIXED_TIME).append_spec_fragment_file(path)
    spec = builder.spec
    spec = spec.model_copy(update={"surfels_by_material": {"bronze": spec.surfels_by_material["bronze"]}})
    builder = SimulationBuilder(creation_time=FIXED_TIME).append_spec_fragment(spec)
    builder.build(threads=1).run()
    written = sorted(p.name for p in (scenario.out / "density").glob("*.png"))
    assert written == [
        "0-floor-rust.png",
        "0-floor-water.png",
        "1-floor-rust.png",
        "1-floor-water.png",
    ]
