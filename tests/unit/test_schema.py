from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from patina.errors import SpecParseError
from patina.io.specs import load_surfel_spec, load_ton_source_spec, simulation_spec_from_str
from patina.schema import (
    DensityEffect,
    DepositRuleSpec,
    DeteriorateRuleSpec,
    DumpSurfelsEffect,
    ExportEffect,
    LayerEffect,
    NearestLookup,
    SimulationSpec,
    SurfelSpec,
    TonSourceSpec,
    TransferRuleSpec,
    WithinLookup,
)


def test_externally_tagged_effects_are_parsed() -> None:
    spec = simulation_spec_from_str(
        "effects:\n"
        "  - density:\n"
        "      width: 32\n"
        "      height: 16\n"
        "      tex_pattern: d.png\n"
        "      surfel_lookup:\n"
        "        within:\n"
        "          radius: 0.5\n"
        "  - layer:\n"
        "      substance: rust\n"
        "      materials: [bronze]\n"
        "      albedo:\n"
        "        tex_pattern: l.png\n"
        "  - export:\n"
        "      obj_pattern: e.obj\n"
        "      mtl_pattern: e.mtl\n"
        "  - dump_surfels:\n"
        "      obj_pattern: s.obj\n"
    )
    density, layer, export, dump = spec.effects
    assert isinstance(density, DensityEffect)
    assert density.surfel_lookup == WithinLookup(radius=0.5)
    assert density.island_bleed == 2
    assert isinstance(layer, LayerEffect)
    assert layer.surfel_lookup == NearestLookup(count=4)
    assert [channel for channel, _ in layer.blends()] == ["albedo"]
    assert isinstance(export, ExportEffect)
    assert isinstance(dump, DumpSurfelsEffect)


def test_unknown_effect_tag_fails_to_parse() -> None:
    with pytest.raises(SpecParseError):
        simulation_spec_from_str("effects:\n  - sparkle: {}\n")


def test_density_scene_patterns_come_in_pairs() -> None:
    with pytest.raises(ValidationError):
        DensityEffect(width=4, height=4, tex_pattern="a.png", obj_pattern="a.obj")
    effect = DensityEffect(width=4, height=4, tex_pattern="a.png", obj_pattern="a.obj", mtl_pattern="a.mtl")
    assert effect.mtl_pattern == "a.mtl"


def test_layer_material_filter() -> None:
    everything = LayerEffect(substance="rust")
    fallback = LayerEffect(substance="rust", materials=["_"])
    bronze = LayerEffect(substance="rust", materials=["bronze"])
    assert everything.applies_to("concrete")
    assert fallback.applies_to("concrete")
    assert bronze.applies_to("bronze")
    assert not bronze.applies_to("concrete")


def test_transport_mode_defaults_and_legacy_flag() -> None:
    assert SimulationSpec().transport_mode() == "differential"
    assert SimulationSpec(consistent_transport=True).transport_mode() == "consistent"
    assert SimulationSpec(consistent_transport=True, transport="classic").transport_mode() == "classic"


def test_rule_shapes_select_rule_kind() -> None:
    spec = SurfelSpec(
        reflectance={"delta_straight": 0.1, "delta_parabolic": 0.2, "delta_flow": 0.3},
        rules=[
            {"from": "water", "to": "rust", "factor": 0.1},
            {"from": "rust", "factor": -0.5},
            {"to": "dirt", "amount": 0.01},
        ],
    )
    transfer, deteriorate, deposit = spec.rules
    assert isinstance(transfer, TransferRuleSpec) and transfer.from_ == "water"
    assert isinstance(deteriorate, DeteriorateRuleSpec) and deteriorate.factor == -0.5
    assert isinstance(deposit, DepositRuleSpec) and deposit.amount == 0.01


def test_reflectance_must_be_probabilities() -> None:
    with pytest.raises(ValidationError):
        SurfelSpec(reflectance={"delta_straight": 1.5, "delta_parabolic": 0.0, "delta_flow": 0.0})


def test_source_needs_some_motion_probability() -> None:
    base = dict(
        mesh="sky.obj",
        emission_count=10,
        interaction_radius=0.1,
        parabola_height=0.0,
        flow_distance=0.0,
    )
    with pytest.raises(ValidationError):
        TonSourceSpec(p_straight=0.0, p_parabolic=0.0, p_flow=0.0, **base)
    spec = TonSourceSpec(p_straight=0.0, p_parabolic=0.0, p_flow=2.0, **base)
    assert spec.initial == {} and spec.absorb == {}


def test_empty_document_is_an_empty_fragment() -> None:
    assert simulation_spec_from_str("") == SimulationSpec()


def test_invalid_yaml_names_role() -> None:
    with pytest.raises(SpecParseError, match="Simulation specification"):
        simulation_spec_from_str("iterations: [1, 2\n")


def test_non_mapping_document_is_rejected() -> None:
    with pytest.raises(SpecParseError):
        simulation_spec_from_str("- just\n- a list\n")


def test_surfel_spec_file_errors_name_the_file(tmp_path: Path) -> None:
    path = tmp_path / "broken.yml"
    path.write_text("reflectance: 3\n", encoding="utf-8")
    with pytest.raises(SpecParseError) as excinfo:
        load_surfel_spec(path)
    assert excinfo.value.role == "Surfel specification"
    assert excinfo.value.source == path
    assert isinstance(excinfo.value.__cause__, ValidationError)


def test_missing_source_file_is_a_parse_error(tmp_path: Path) -> None:
    with pytest.raises(SpecParseError, match="Gammaton source specification"):
        load_ton_source_spec(tmp_path / "nope.yml")
