"""Wavefront OBJ/MTL reading and writing for scene entities."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import trimesh

from ..errors import AssetError
from ..scene import Entity, Material, Mesh
from .paths import create_file_recursively

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# MTL keyword -> material channel; the first keyword is used when writing.
MTL_CHANNELS: Dict[str, str] = {
    "map_Kd": "albedo",
    "norm": "normal",
    "map_Bump": "normal",
    "bump": "normal",
    "disp": "displacement",
    "map_Pm": "metallicity",
    "map_Pr": "roughness",
}
CHANNEL_KEYWORDS: Dict[str, str] = {
    "albedo": "map_Kd",
    "normal": "norm",
    "displacement": "disp",
    "metallicity": "map_Pm",
    "roughness": "map_Pr",
}


def _texture_token(rest: str) -> str:
    tokens = rest.split()
    if tokens and tokens[0].startswith("-"):
        return tokens[-1]
    return rest.strip()


def load_mtl(path: PathLike) -> Dict[str, Material]:
    """Parse a material library into materials keyed by name."""

    mtl_path = Path(path)
    base = mtl_path.parent
    materials: Dict[str, Material] = {}
    current: Optional[str] = None
    channels: Dict[str, Path] = {}
    properties: List[Tuple[str, str]] = []

    def flush() -> None:
        if current is not None:
            materials[current] = Material(current, properties=tuple(properties), **channels)

    try:
        lines = mtl_path.read_text(encoding="utf-8").splitlines()
    except OSError as exc:
        raise AssetError(f"material library {mtl_path} could not be read") from exc
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        key, _, rest = line.partition(" ")
        rest = rest.strip()
        if key == "newmtl":
            flush()
            current = rest
            channels = {}
            properties = []
        elif current is None:
            continue
        elif key in MTL_CHANNELS:
            texture = _texture_token(rest)
            channels[MTL_CHANNELS[key]] = Path(os.path.abspath(os.path.join(base, texture)))
        else:
            properties.append((key, rest))
    flush()
    return materials


def _material_libraries(obj_path: Path) -> Dict[str, Material]:
    """Materials of every ``mtllib`` statement, looked up next to the OBJ file."""

    try:
        lines = obj_path.read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeDecodeError) as exc:
        raise AssetError(f"scene {obj_path} could not be read") from exc
    materials: Dict[str, Material] = {}
    for raw in lines:
        key, _, rest = raw.strip().partition(" ")
        if key != "mtllib":
            continue
        for lib in rest.split():
            lib_path = obj_path.parent / lib
            if lib_path.exists():
                materials.update(load_mtl(lib_path))
            else:
                logger.warning("material library %s referenced by %s does not exist", lib_path, obj_path)
    return materials


def _load_scene(path: Path) -> trimesh.Scene:
    if not path.is_file():
        raise AssetError(f"scene {path} could not be read")
    try:
        return trimesh.load(
            str(path),
            file_type="obj",
            force="scene",
            process=False,
            split_objects=True,
            group_material=True,
        )
    except (OSError, ValueError, IndexError, KeyError) as exc:
        raise AssetError(f"scene {path} is malformed") from exc


def _geometries(scene: trimesh.Scene) -> List[Tuple[str, trimesh.Trimesh]]:
    # the OBJ reader stores chunks last to first
    items = reversed(list(scene.geometry.items()))
    return [(str(key), geom) for key, geom in items if isinstance(geom, trimesh.Trimesh) and len(geom.faces)]


def _to_mesh(geometry: trimesh.Trimesh) -> Mesh:
    faces = np.asarray(geometry.faces, dtype=np.int64)
    vertices = np.asarray(geometry.vertices, dtype=np.float64)
    uv = getattr(geometry.visual, "uv", None)
    uvs = None
    if uv is not None and len(uv) == len(vertices):
        uvs = np.asarray(uv, dtype=np.float64)[faces]
    return Mesh(vertices[faces], uvs)


def _entity_name(key: str, material: str, obj_path: Path, tagged: bool) -> str:
    # geometry keys read "<object>_<material>" when the library holds several materials
    name = key
    if tagged and material:
        if name == material:
            name = ""
        elif name.endswith("_" + material):
            name = name[: -len(material) - 1]
    if name in ("", obj_path.name, "geometry"):
        name = obj_path.stem
    return name


def load(path: PathLike) -> List[Entity]:
    """Load the entities of an OBJ file.

    One entity is produced per object and material, in file order. Geometry
    and texture coordinates are read with trimesh. Material channels come
    from the ``mtllib`` libraries next to the OBJ file because trimesh keeps
    only the diffuse map.
    """

    obj_path = Path(path)
    materials = _material_libraries(obj_path)
    scene = _load_scene(obj_path)
    entities: List[Entity] = []
    for key, geometry in _geometries(scene):
        material_name = getattr(getattr(geometry.visual, "material", None), "name", None)
        material = materials.get(material_name) if material_name else None
        if material is None:
            material = Material("")
        name = _entity_name(key, material.name, obj_path, len(materials) > 1)
        if any(existing.name == name for existing in entities):
            name = f"{name}-{material.name}"
        entities.append(Entity(name, _to_mesh(geometry), material))
    logger.debug("loaded %d entities from %s", len(entities), obj_path)
    return entities


def load_mesh(path: PathLike) -> Mesh:
    """Load every triangle of an OBJ file into one mesh, ignoring materials."""

    mesh_path = Path(path)
    meshes = [
        trimesh.Trimesh(vertices=geom.vertices, faces=geom.faces, process=False)
        for _, geom in _geometries(_load_scene(mesh_path))
    ]
    if not meshes:
        raise AssetError(f"mesh {mesh_path} does not contain any triangles")
    merged = meshes[0] if len(meshes) == 1 else trimesh.util.concatenate(meshes)
    return _to_mesh(merged)


def _relative(target: Path, base: Path) -> str:
    try:
        return os.path.relpath(target, base)
    except ValueError:
        return str(target)


def save_mtl(materials: Iterable[Material], path: PathLike) -> None:
    mtl_path = create_file_recursively(path)
    base = mtl_path.parent.resolve()
    seen: Dict[str, Material] = {}
    for material in materials:
        seen.setdefault(material.name, material)
    out: List[str] = []
    for material in seen.values():
        out.append(f"newmtl {material.name}")
        for key, rest in material.properties:
            out.append(f"{key} {rest}")
        for channel, texture in material.textures():
            out.append(f"{CHANNEL_KEYWORDS[channel]} {_relative(Path(texture).resolve(), base)}")
        out.append("")
    mtl_path.write_text("\n".join(out), encoding="utf-8")


def save(entities: Sequence[Entity], obj_path: PathLike, mtl_path: PathLike) -> None:
    """Write ``entities`` to an OBJ file referencing a material library."""

    try:
        obj_file = create_file_recursively(obj_path)
        save_mtl([entity.material for entity in entities], mtl_path)
        out: List[str] = [f"mtllib {_relative(Path(mtl_path).resolve(), obj_file.parent.resolve())}"]
        v_offset = 1
        t_offset = 1
        for entity in entities:
            mesh = entity.mesh
            out.append(f"o {entity.name}")
            for vertex in mesh.positions.reshape(-1, 3):
                out.append("v {:.6f} {:.6f} {:.6f}".format(*vertex))
            if mesh.uvs is not None:
                for uv in mesh.uvs.reshape(-1, 2):
                    out.append("vt {:.6f} {:.6f}".format(*uv))
            out.append(f"usemtl {entity.material.name}")
            for face in range(mesh.triangle_count):
                idx = [3 * face + corner for corner in range(3)]
                if mesh.uvs is not None:
                    out.append("f " + " ".join(f"{v_offset + i}/{t_offset + i}" for i in idx))
                else:
                    out.append("f " + " ".join(str(v_offset + i) for i in idx))
            v_offset += 3 * mesh.triangle_count
            if mesh.uvs is not None:
                t_offset += 3 * mesh.triangle_count
        obj_file.write_text("\n".join(out) + "\n", encoding="utf-8")
    except OSError as exc:
        raise AssetError(f"scene {obj_path} could not be written") from exc


def save_points(points: np.ndarray, obj_path: PathLike) -> None:
    """Write a point cloud as bare OBJ vertices."""

    try:
        obj_file = create_file_recursively(obj_path)
        lines = ["v {:.6f} {:.6f} {:.6f}".format(*p) for p in np.asarray(points).reshape(-1, 3)]
        obj_file.write_text("\n".join(lines) + ("\n" if lines else ""), encoding="utf-8")
    except OSError as exc:
        raise AssetError(f"point cloud {obj_path} could not be written") from exc


__all__ = ["load", "load_mesh", "load_mtl", "save", "save_mtl", "save_points", "MTL_CHANNELS"]
