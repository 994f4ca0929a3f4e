from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

import numpy as np
import pytest
from PIL import Image

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

SCENE_OBJ = """\
mtllib scene.mtl
o floor
v 0 0 0
v 0 0 1
v 1 0 1
v 1 0 0
vt 0 0
vt 0 1
vt 1 1
vt 1 0
usemtl bronze
f 1/1 2/2 3/3 4/4
o wall
v 0 0 -0.5
v 1 0 -0.5
v 1 1 -0.5
v 0 1 -0.5
vt 0 0
vt 1 0
vt 1 1
vt 0 1
usemtl concrete
f 5/5 6/6 7/7 8/8
"""

SCENE_MTL = """\
newmtl bronze
Kd 0.8 0.5 0.2
map_Kd textures/bronze.png

newmtl concrete
map_Kd textures/concrete.png
"""

# facing down onto the floor
SKY_OBJ = """\
o sky
v 0 1 0
v 1 1 0
v 1 1 1
v 0 1 1
f 1 2 3 4
"""

BRONZE_SURFELS = """\
name: bronze
reflectance:
  delta_straight: 0.0
  delta_parabolic: 0.0
  delta_flow: 0.0
initial:
  rust: 0.0
deposit:
  water: 0.5
rules:
  - from: water
    to: rust
    factor: 0.1
"""

CONCRETE_SURFELS = """\
name: concrete
reflectance:
  delta_straight: 0.0
  delta_parabolic: 0.0
  delta_flow: 0.0
deposit:
  water: 0.2
"""

RAIN_SOURCE = """\
name: rain
mesh: sky.obj
emission_count: 200
p_straight: 1.0
p_parabolic: 0.0
p_flow: 0.0
initial:
  water: 1.0
absorb:
  water: 0.1
interaction_radius: 0.2
parabola_height: 0.05
flow_distance: 0.02
"""


def _write_png(path: Path, color, size=(16, 16)) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    pixels = np.zeros((size[1], size[0], 4), dtype=np.uint8)
    pixels[...] = color
    Image.fromarray(pixels).save(path, format="PNG")
    return path


@dataclass
class Scenario:
    """A tiny scene on disk: a rained-on bronze floor next to a concrete wall."""

    root: Path

    @property
    def out(self) -> Path:
        return self.root / "out"

    def pattern(self, name: str) -> str:
        return (self.out / name).as_posix()

    def simulation_yaml(self, effects: str, extra: str = "", iterations: int = 1) -> str:
        return (
            "name: rain\n"
            "scenes:\n"
            "  - scene.obj\n"
            "sources:\n"
            "  - sources/rain.yml\n"
            "surfels_by_material:\n"
            "  bronze: surfels/bronze.yml\n"
            "  concrete: surfels/concrete.yml\n"
            "surfel_distance: 0.1\n"
            f"iterations: {iterations}\n"
            "seed: 7\n"
            f"{extra}"
            "effects:\n"
            f"{effects}"
        )

    def write_simulation(self, effects: str, extra: str = "", name: str = "sim.yml", iterations: int = 1) -> Path:
        path = self.root / name
        path.write_text(self.simulation_yaml(effects, extra, iterations), encoding="utf-8")
        return path

    def density_effect(self, size: int = 64) -> str:
        return (
            "  - density:\n"
            f"      width: {size}\n"
            f"      height: {size}\n"
            f"      tex_pattern: \"{self.pattern('density/{iteration}-{entity}-{substance}.png')}\"\n"
        )


@pytest.fixture()
def scenario(tmp_path: Path) -> Scenario:
    (tmp_path / "scene.obj").write_text(SCENE_OBJ, encoding="utf-8")
    (tmp_path / "scene.mtl").write_text(SCENE_MTL, encoding="utf-8")
    _write_png(tmp_path / "textures" / "bronze.png", (160, 100, 40, 255))
    _write_png(tmp_path / "textures" / "concrete.png", (128, 128, 128, 255), size=(8, 8))
    _write_png(tmp_path / "textures" / "rust.png", (200, 80, 20, 255))
    surfels = tmp_path / "surfels"
    surfels.mkdir()
    (surfels / "bronze.yml").write_text(BRONZE_SURFELS, encoding="utf-8")
    (surfels / "concrete.yml").write_text(CONCRETE_SURFELS, encoding="utf-8")
    sources = tmp_path / "sources"
    sources.mkdir()
    (sources / "rain.yml").write_text(RAIN_SOURCE, encoding="utf-8")
    (sources / "sky.obj").write_text(SKY_OBJ, encoding="utf-8")
    return Scenario(tmp_path)


@pytest.fixture(autouse=True)
def _restore_root_logging() -> Iterator[None]:
    """Drop handlers that CLI runs attach to the root logger."""

    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
    logging.captureWarnings(False)
