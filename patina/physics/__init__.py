"""Particle tracing, surface sampling and texture synthesis."""
from . import rules, simulation, source, surface, texture
from .rules import Deposit, Deteriorate, SurfelRule, Transfer
from .simulation import Simulation, SimulationConfig
from .source import TonSource, TonSourceBuilder
from .surface import MinimumDistance, Surface, SurfaceBuilder, SurfelPrototype

__all__ = [
    "rules",
    "simulation",
    "source",
    "surface",
    "texture",
    "Transfer",
    "Deteriorate",
    "Deposit",
    "SurfelRule",
    "Simulation",
    "SimulationConfig",
    "TonSource",
    "TonSourceBuilder",
    "MinimumDistance",
    "Surface",
    "SurfaceBuilder",
    "SurfelPrototype",
]
