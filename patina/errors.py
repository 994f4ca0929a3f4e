"""Custom exceptions for the :mod:`patina` package."""
from __future__ import annotations

from enum import Enum
from typing import Optional


class PatinaError(Exception):
    """Base exception for weathering simulation errors."""


class ConfigurationError(PatinaError, ValueError):
    """Invalid or incomplete simulation specification."""


class SpecParseError(ConfigurationError):
    """A YAML document could not be parsed or validated."""

    def __init__(self, role: str, source: object = None) -> None:
        self.role = role
        self.source = source
        where = f" at {source}" if source is not None else ""
        super().__init__(f"{role}{where} failed to parse.")


class ResolveKind(str, Enum):
    """File roles that can fail path resolution."""

    BASE_PATH = "Custom base path"
    SIMULATION = "Simulation specification"
    TON_SOURCE_SPEC = "Gammaton source specification"
    TON_SOURCE_MESH = "Gammaton source emission mesh"
    SURFEL_SPEC = "Surfel specification"
    SCENE = "Scene to simulate"
    LAYER = "Texture sample referenced by layer effect"


class ResolveError(PatinaError):
    """A referenced file could not be found in any base path."""

    def __init__(self, kind: ResolveKind, cause: Optional[BaseException] = None) -> None:
        self.kind = kind
        self.cause = cause
        super().__init__(f"{kind.value} could not be resolved.")


class AssetError(PatinaError):
    """A mesh or material library could not be read or written."""


class SurfelSpecsMissing(ConfigurationError):
    def __init__(self) -> None:
        super().__init__(
            "Simulation spec did not specify a material to surfel specification mapping, "
            "surface properties unspecified."
        )


class EffectsMissing(ConfigurationError):
    def __init__(self) -> None:
        super().__init__(
            "Simulation spec does not specify any effects, no way to obtain results of simulation."
        )


class SourcesMissing(ConfigurationError):
    def __init__(self) -> None:
        super().__init__(
            "Simulation spec does not define any particle sources, no particle emission possible."
        )


class SubstancesMissing(ConfigurationError):
    def __init__(self) -> None:
        super().__init__(
            "No surfel or ton source specs mention any substance names, no substance transport possible."
        )


class InvalidSurfelDistance(ConfigurationError):
    def __init__(self, distance: Optional[float]) -> None:
        self.distance = distance
        super().__init__(f"Surfel distance has been set to {distance!r}")


class UnknownSubstanceError(ConfigurationError):
    """A rule, source or effect references a substance that no spec defines."""

    def __init__(self, name: str, context: str = "Surfel transport rule") -> None:
        self.name = name
        super().__init__(f"{context} references unknown substance name {name}")


class BlendSizeError(ConfigurationError):
    """The output size of a layer blend cannot be derived."""


class SurfelTableMissingError(PatinaError, LookupError):
    """A surfel table was looked up without being prepared first."""


class UnsupportedLookupError(PatinaError, NotImplementedError):
    """The surfel lookup policy cannot be cached."""


class BencherClosedError(PatinaError, RuntimeError):
    """A benchmark was requested after its bencher has been flushed."""


__all__ = [
    "PatinaError",
    "ConfigurationError",
    "SpecParseError",
    "ResolveKind",
    "ResolveError",
    "AssetError",
    "SurfelSpecsMissing",
    "EffectsMissing",
    "SourcesMissing",
    "SubstancesMissing",
    "InvalidSurfelDistance",
    "UnknownSubstanceError",
    "BlendSizeError",
    "SurfelTableMissingError",
    "UnsupportedLookupError",
    "BencherClosedError",
]
