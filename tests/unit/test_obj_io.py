from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from patina.errors import AssetError
from patina.io import obj
from patina.scene import Entity, Material, Mesh


def test_quads_are_split_into_triangles(tmp_path: Path) -> None:
    path = tmp_path / "quad.obj"
    path.write_text(
        "v 0 0 0\nv 1 0 0\nv 1 1 0\nv 0 1 0\n"
        "vt 0 0\nvt 1 0\nvt 1 1\nvt 0 1\n"
        "f 1/1 2/2 3/3 4/4\n",
        encoding="utf-8",
    )
    (entity,) = obj.load(path)
    assert entity.name == "quad"
    assert entity.mesh.triangle_count == 2
    np.testing.assert_allclose(entity.mesh.positions[0], [[0, 0, 0], [1, 0, 0], [1, 1, 0]])
    np.testing.assert_allclose(entity.mesh.positions[1], [[1, 1, 0], [0, 1, 0], [0, 0, 0]])
    np.testing.assert_allclose(entity.mesh.uvs[0], [[0, 0], [1, 0], [1, 1]])
    np.testing.assert_allclose(entity.mesh.uvs[1], [[1, 1], [0, 1], [0, 0]])
    assert entity.material.name == ""


def test_entities_split_by_object_and_material(tmp_path: Path) -> None:
    (tmp_path / "lib.mtl").write_text(
        "newmtl bronze\nKd 1 0 0\nmap_Kd tex/bronze.png\nnewmtl stone\nnorm -bm 0.5 tex/stone_n.png\n",
        encoding="utf-8",
    )
    path = tmp_path / "scene.obj"
    path.write_text(
        "mtllib lib.mtl\n"
        "v 0 0 0\nv 1 0 0\nv 0 1 0\n"
        "o statue\nusemtl bronze\nf 1 2 3\nusemtl stone\nf 1 3 2\n"
        "o plinth\nusemtl stone\nf 3 2 1\n",
        encoding="utf-8",
    )
    entities = obj.load(path)
    assert [e.name for e in entities] == ["statue", "statue-stone", "plinth"]
    assert entities[0].material.albedo == (tmp_path / "tex" / "bronze.png").absolute()
    assert entities[0].material.properties == (("Kd", "1 0 0"),)
    assert entities[1].material.normal == (tmp_path / "tex" / "stone_n.png").absolute()
    assert entities[0].mesh.uvs is None


def test_malformed_face_raises_asset_error(tmp_path: Path) -> None:
    path = tmp_path / "broken.obj"
    path.write_text("v 0 0 0\nf 1 2 3\n", encoding="utf-8")
    with pytest.raises(AssetError, match="broken.obj"):
        obj.load(path)


def test_missing_scene_raises_asset_error(tmp_path: Path) -> None:
    with pytest.raises(AssetError):
        obj.load(tmp_path / "missing.obj")


def test_save_then_load_keeps_geometry_and_textures(tmp_path: Path) -> None:
    texture = tmp_path / "textures" / "rust.png"
    texture.parent.mkdir()
    texture.write_bytes(b"")
    positions = np.array([[[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]]])
    uvs = np.array([[[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]]])
    material = Material("bronze", albedo=texture, roughness=texture, properties=(("Ns", "10"),))
    entities = [
        Entity("floor", Mesh(positions, uvs), material),
        Entity("ghost", Mesh(positions + 1.0), Material("plain")),
    ]
    obj.save(entities, tmp_path / "out" / "scene.obj", tmp_path / "out" / "materials" / "scene.mtl")

    mtl_text = (tmp_path / "out" / "materials" / "scene.mtl").read_text(encoding="utf-8")
    assert "map_Kd ../../textures/rust.png" in mtl_text
    assert "map_Pr ../../textures/rust.png" in mtl_text

    loaded = obj.load(tmp_path / "out" / "scene.obj")
    assert [e.name for e in loaded] == ["floor", "ghost"]
    np.testing.assert_allclose(loaded[0].mesh.positions, positions)
    np.testing.assert_allclose(loaded[0].mesh.uvs, uvs)
    np.testing.assert_allclose(loaded[1].mesh.positions, positions + 1.0)
    assert loaded[1].mesh.uvs is None
    assert loaded[0].material.albedo == texture.absolute()
    assert loaded[0].material.properties == (("Ns", "10"),)


def test_save_points_writes_vertices(tmp_path: Path) -> None:
    target = tmp_path / "surfels.obj"
    obj.save_points(np.array([[0.0, 1.0, 2.0], [3.0, 4.0, 5.0]]), target)
    assert target.read_text(encoding="utf-8").splitlines() == [
        "v 0.000000 1.000000 2.000000",
        "v 3.000000 4.000000 5.000000",
    ]


def test_load_mesh_merges_every_object(tmp_path: Path) -> None:
    path = tmp_path / "emitter.obj"
    path.write_text(
        "v 0 1 0\nv 1 1 0\nv 1 1 1\nv 0 1 1\n"
        "o left\nf 1 2 3\n"
        "o right\nf 1 3 4\n",
        encoding="utf-8",
    )
    mesh = obj.load_mesh(path)
    assert mesh.triangle_count == 2
    assert mesh.uvs is None
    np.testing.assert_allclose(mesh.positions[:, :, 1], 1.0)
    np.testing.assert_allclose(mesh.positions.reshape(-1, 3).sum(axis=0), [3.0, 6.0, 3.0])


def test_load_mesh_without_triangles_raises_asset_error(tmp_path: Path) -> None:
    path = tmp_path / "points.obj"
    path.write_text("v 0 0 0\nv 1 0 0\n", encoding="utf-8")
    with pytest.raises(AssetError, match="does not contain any triangles"):
        obj.load_mesh(path)
