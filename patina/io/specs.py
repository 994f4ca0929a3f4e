"""YAML loading for simulation, surfel and ton source specifications."""
from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Any, Dict, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from ..errors import SpecParseError
from ..schema import SimulationSpec, SurfelSpec, TonSourceSpec

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)
PathLike = Union[str, Path]

SIMULATION_ROLE = "Simulation specification"
SURFEL_ROLE = "Surfel specification"
TON_SOURCE_ROLE = "Gammaton source specification"


def _yaml() -> YAML:
    return YAML(typ="safe")


def _validate(model: Type[ModelT], data: Any, role: str, source: object) -> ModelT:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise SpecParseError(role, source) from TypeError(
            f"expected a mapping at the document root, got {type(data).__name__}"
        )
    try:
        return model(**data)
    except ValidationError as exc:
        raise SpecParseError(role, source) from exc


def load_yaml_document(path: PathLike, role: str) -> Any:
    """Return the raw YAML payload stored at ``path``."""

    source_path = Path(path)
    try:
        with source_path.open("r", encoding="utf-8") as fh:
            return _yaml().load(fh)
    except (YAMLError, OSError, UnicodeDecodeError) as exc:
        raise SpecParseError(role, source_path) from exc


def load_model(path: PathLike, model: Type[ModelT], role: str) -> ModelT:
    logger.debug("loading %s from %s", role.lower(), path)
    return _validate(model, load_yaml_document(path, role), role, Path(path))


def simulation_spec_from_str(text: str) -> SimulationSpec:
    """Parse an inline simulation spec fragment."""

    try:
        data = _yaml().load(io.StringIO(text))
    except YAMLError as exc:
        raise SpecParseError(SIMULATION_ROLE, "inline fragment") from exc
    return _validate(SimulationSpec, data, SIMULATION_ROLE, "inline fragment")


def simulation_spec_from_dict(data: Dict[str, Any]) -> SimulationSpec:
    return _validate(SimulationSpec, data, SIMULATION_ROLE, "mapping")


def load_simulation_spec(path: PathLike) -> SimulationSpec:
    return load_model(path, SimulationSpec, SIMULATION_ROLE)


def load_surfel_spec(path: PathLike) -> SurfelSpec:
    return load_model(path, SurfelSpec, SURFEL_ROLE)


def load_ton_source_spec(path: PathLike) -> TonSourceSpec:
    return load_model(path, TonSourceSpec, TON_SOURCE_ROLE)


__all__ = [
    "load_yaml_document",
    "load_model",
    "simulation_spec_from_str",
    "simulation_spec_from_dict",
    "load_simulation_spec",
    "load_surfel_spec",
    "load_ton_source_spec",
]
