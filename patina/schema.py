"""Specification schema for weathering simulations.

This module defines Pydantic models that mirror the YAML documents consumed
by :mod:`patina.builder`: simulation spec fragments, surfel specs describing
the surface behaviour of a material, and ton source specs describing particle
emitters.  Simulation specs are *fragments*: every field is optional so that
several files and inline snippets can be merged with :func:`patina.merge.merge`
before the result is instantiated.

Effects and surfel lookups use the externally tagged YAML layout, e.g.::

    effects:
      - density:
          width: 512
          height: 512
          tex_pattern: "out/{iteration}/{entity}-{substance}.png"
          surfel_lookup:
            nearest:
              count: 4
"""
from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import ConfigurationError

TransportMode = Literal["classic", "consistent", "conserving", "differential"]
DEFAULT_TRANSPORT: TransportMode = "differential"
DEFAULT_ISLAND_BLEED = 2
DEFAULT_NEAREST_COUNT = 4
FALLBACK_MATERIAL = "_"


def _untag(data: Any, tags: Tuple[str, ...]) -> Any:
    """Turn ``{tag: {...}}`` into ``{"kind": tag, ...}`` for discriminated unions."""

    if isinstance(data, dict) and len(data) == 1:
        ((tag, body),) = data.items()
        if tag in tags:
            body = dict(body) if isinstance(body, dict) else {}
            body["kind"] = tag
            return body
    return data


# ---------------------------------------------------------------------------
# Surfel lookup policies
# ---------------------------------------------------------------------------


class NearestLookup(BaseModel):
    """Associate each texel with its ``count`` nearest surfels."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["nearest"] = "nearest"
    count: int = Field(DEFAULT_NEAREST_COUNT, gt=0)


class WithinLookup(BaseModel):
    """Associate each texel with all surfels within ``radius``."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["within"] = "within"
    radius: float = Field(..., gt=0.0)


SurfelLookup = Annotated[Union[NearestLookup, WithinLookup], Field(discriminator="kind")]


def _parse_lookup(value: Any) -> Any:
    if value is None:
        return NearestLookup()
    return _untag(value, ("nearest", "within"))


# ---------------------------------------------------------------------------
# Effects
# ---------------------------------------------------------------------------


class Stop(BaseModel):
    """A blend stop: ``sample`` has full influence at concentration ``cenith``."""

    cenith: float
    sample: Optional[Path] = None


class Blend(BaseModel):
    """Guided blend configuration for one material channel."""

    tex_pattern: str
    stops: List[Stop] = Field(default_factory=list)
    width: Optional[int] = Field(None, gt=0)
    height: Optional[int] = Field(None, gt=0)
    influence: float = Field(1.0, ge=0.0, le=1.0)


class DensityEffect(BaseModel):
    """Write one concentration map per substance and entity."""

    kind: Literal["density"] = "density"
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    island_bleed: int = Field(DEFAULT_ISLAND_BLEED, ge=0)
    surfel_lookup: SurfelLookup = NearestLookup()
    tex_pattern: str
    obj_pattern: Optional[str] = None
    mtl_pattern: Optional[str] = None

    @field_validator("surfel_lookup", mode="before")
    def _untag_lookup(cls, value: Any) -> Any:
        return _parse_lookup(value)

    @model_validator(mode="after")
    def _check_scene_patterns(self) -> "DensityEffect":
        if (self.obj_pattern is None) != (self.mtl_pattern is None):
            raise ConfigurationError(
                "density effect needs both obj_pattern and mtl_pattern to export a scene, or neither"
            )
        return self


CHANNELS: Tuple[str, ...] = ("normal", "displacement", "albedo", "metallicity", "roughness")


class LayerEffect(BaseModel):
    """Blend weathering samples into material channels guided by a substance."""

    kind: Literal["layer"] = "layer"
    materials: List[str] = Field(default_factory=list)
    substance: str
    surfel_lookup: SurfelLookup = NearestLookup()
    island_bleed: int = Field(DEFAULT_ISLAND_BLEED, ge=0)
    normal: Optional[Blend] = None
    displacement: Optional[Blend] = None
    albedo: Optional[Blend] = None
    metallicity: Optional[Blend] = None
    roughness: Optional[Blend] = None

    @field_validator("surfel_lookup", mode="before")
    def _untag_lookup(cls, value: Any) -> Any:
        return _parse_lookup(value)

    def blends(self) -> List[Tuple[str, Blend]]:
        """Return ``(channel, blend)`` for every configured channel, in channel order."""

        return [(channel, getattr(self, channel)) for channel in CHANNELS if getattr(self, channel) is not None]

    def applies_to(self, material_name: str) -> bool:
        """Empty material lists and ``_`` admit every material."""

        return not self.materials or any(m == FALLBACK_MATERIAL or m == material_name for m in self.materials)


class ExportEffect(BaseModel):
    """Persist the current, possibly layered, scene."""

    kind: Literal["export"] = "export"
    obj_pattern: str
    mtl_pattern: str


class DumpSurfelsEffect(BaseModel):
    """Persist surfel positions as a point cloud."""

    kind: Literal["dump_surfels"] = "dump_surfels"
    obj_pattern: str


EffectSpec = Annotated[
    Union[DensityEffect, LayerEffect, ExportEffect, DumpSurfelsEffect],
    Field(discriminator="kind"),
]
EFFECT_TAGS = ("density", "layer", "export", "dump_surfels")


# ---------------------------------------------------------------------------
# Surfel rules and surfel specs
# ---------------------------------------------------------------------------


class TransferRuleSpec(BaseModel):
    """Moves ``factor`` of substance ``from`` into substance ``to`` each pass."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    from_: str = Field(..., alias="from")
    to: str
    factor: float


class DeteriorateRuleSpec(BaseModel):
    """Scales substance ``from`` by ``1 + factor`` each pass."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    from_: str = Field(..., alias="from")
    factor: float


class DepositRuleSpec(BaseModel):
    """Adds a constant ``amount`` of substance ``to`` each pass."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    to: str
    amount: float


SurfelRuleSpec = Union[TransferRuleSpec, DeteriorateRuleSpec, DepositRuleSpec]


class TonReflectance(BaseModel):
    """Probabilities that a ton keeps moving after touching the surface."""

    delta_straight: float = Field(..., ge=0.0, le=1.0)
    delta_parabolic: float = Field(..., ge=0.0, le=1.0)
    delta_flow: float = Field(..., ge=0.0, le=1.0)


class SurfelSpec(BaseModel):
    """Surface behaviour of one material."""

    name: str = ""
    description: str = ""
    reflectance: TonReflectance
    initial: Dict[str, float] = Field(default_factory=dict)
    deposit: Dict[str, float] = Field(default_factory=dict)
    rules: List[SurfelRuleSpec] = Field(default_factory=list)

    @field_validator("initial", "deposit", mode="before")
    def _none_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value


# ---------------------------------------------------------------------------
# Ton sources
# ---------------------------------------------------------------------------


class TonSourceSpec(BaseModel):
    """A particle emitter shaped like a mesh."""

    name: str = ""
    description: str = ""
    mesh: Path
    emission_count: int = Field(..., ge=0)
    diffuse: bool = False
    p_straight: float = Field(..., ge=0.0)
    p_parabolic: float = Field(..., ge=0.0)
    p_flow: float = Field(..., ge=0.0)
    initial: Dict[str, float] = Field(default_factory=dict)
    absorb: Dict[str, float] = Field(default_factory=dict)
    interaction_radius: float = Field(..., gt=0.0)
    parabola_height: float = Field(..., ge=0.0)
    flow_distance: float = Field(..., ge=0.0)
    flow_direction: Optional[Tuple[float, float, float]] = None

    @field_validator("initial", "absorb", mode="before")
    def _none_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    @model_validator(mode="after")
    def _check_motion_distribution(self) -> "TonSourceSpec":
        if self.p_straight + self.p_parabolic + self.p_flow <= 0.0:
            raise ConfigurationError(
                "p_straight, p_parabolic and p_flow must not all be zero"
            )
        return self


# ---------------------------------------------------------------------------
# Simulation fragments
# ---------------------------------------------------------------------------


class BenchSpec(BaseModel):
    """CSV targets for duration samples; each may contain ``{datetime}``."""

    iterations: Optional[str] = None
    tracing: Optional[str] = None
    synthesis: Optional[str] = None
    setup: Optional[str] = None


class SimulationSpec(BaseModel):
    """A (partial) simulation specification.

    Every field is optional so fragments can be merged. Only the merged
    result is validated for completeness, by :func:`patina.instantiate.instantiate`.
    """

    name: str = ""
    description: str = ""
    scenes: List[Path] = Field(default_factory=list)
    iterations: Optional[int] = Field(None, ge=0)
    effect_interval: Optional[int] = Field(
        None,
        ge=1,
        description="Run effects every n-th iteration. Iteration 0 and the last iteration always run effects.",
    )
    log: Optional[str] = None
    surfel_distance: Optional[float] = None
    sources: List[Path] = Field(default_factory=list)
    surfels_by_material: Dict[str, Path] = Field(default_factory=dict)
    effects: List[EffectSpec] = Field(default_factory=list)
    benchmark: Optional[BenchSpec] = None
    transport: Optional[TransportMode] = None
    consistent_transport: Optional[bool] = Field(
        None,
        description="Legacy switch; true selects consistent transport when transport is unset.",
    )
    flat_filtering: Optional[bool] = None
    seed: Optional[int] = None
    rules: List[SurfelRuleSpec] = Field(default_factory=list)

    @field_validator("name", "description", mode="before")
    def _none_is_blank(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("scenes", "sources", "effects", "rules", mode="before")
    def _none_is_empty_list(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("surfels_by_material", mode="before")
    def _none_is_empty_map(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("effects", mode="before")
    def _untag_effects(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [_untag(item, EFFECT_TAGS) for item in value]
        return value

    def transport_mode(self) -> TransportMode:
        """Return the transport selection with legacy flag and default applied."""

        if self.transport is not None:
            return self.transport
        if self.consistent_transport:
            return "consistent"
        return DEFAULT_TRANSPORT


__all__ = [
    "TransportMode",
    "DEFAULT_TRANSPORT",
    "FALLBACK_MATERIAL",
    "NearestLookup",
    "WithinLookup",
    "SurfelLookup",
    "Stop",
    "Blend",
    "DensityEffect",
    "LayerEffect",
    "ExportEffect",
    "DumpSurfelsEffect",
    "EffectSpec",
    "CHANNELS",
    "TransferRuleSpec",
    "DeteriorateRuleSpec",
    "DepositRuleSpec",
    "SurfelRuleSpec",
    "TonReflectance",
    "SurfelSpec",
    "TonSourceSpec",
    "BenchSpec",
    "SimulationSpec",
]
