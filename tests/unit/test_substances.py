from __future__ import annotations

import numpy as np
import pytest

from patina.errors import UnknownSubstanceError
from patina.instantiate import extract_keys, rule_by_spec, unique_substance_names
from patina.physics.rules import Deposit, Deteriorate, Transfer, apply_rules
from patina.schema import (
    DepositRuleSpec,
    DeteriorateRuleSpec,
    SurfelSpec,
    TonSourceSpec,
    TransferRuleSpec,
)

REFLECTANCE = {"delta_straight": 0.5, "delta_parabolic": 0.5, "delta_flow": 0.5}


def _source(**kwargs) -> TonSourceSpec:
    return TonSourceSpec(
        mesh="sky.obj",
        emission_count=1,
        p_straight=1.0,
        p_parabolic=0.0,
        p_flow=0.0,
        interaction_radius=0.1,
        parabola_height=0.0,
        flow_distance=0.0,
        **kwargs,
    )


def test_extract_keys_aligns_to_table() -> None:
    assert extract_keys({"rust": 0.3, "dirt": 2.0}, ["water", "rust"], 0.0) == [0.0, 0.3]


def test_substance_names_follow_spec_order_without_duplicates() -> None:
    surfels = [
        SurfelSpec(reflectance=REFLECTANCE, initial={"rust": 0.0, "moss": 0.1}, deposit={"water": 1.0}),
        SurfelSpec(reflectance=REFLECTANCE, initial={"water": 0.0}, deposit={"dirt": 1.0}),
    ]
    sources = [_source(initial={"water": 1.0}, absorb={"dust": 0.2, "rust": 0.1})]
    assert unique_substance_names(surfels, sources) == ["rust", "moss", "water", "dirt", "dust"]


def test_rule_by_spec_resolves_indices() -> None:
    table = ["water", "rust"]
    assert rule_by_spec(TransferRuleSpec(**{"from": "water", "to": "rust", "factor": 0.2}), table) == Transfer(0, 1, 0.2)
    assert rule_by_spec(DeteriorateRuleSpec(from_="rust", factor=-0.1), table) == Deteriorate(1, -0.1)
    assert rule_by_spec(DepositRuleSpec(to="water", amount=0.5), table) == Deposit(0, 0.5)


def test_unknown_substance_in_rule() -> None:
    with pytest.raises(UnknownSubstanceError, match="Surfel transport rule references unknown substance name moss"):
        rule_by_spec(DepositRuleSpec(to="moss", amount=0.5), ["water"])


def test_transfer_moves_mass() -> None:
    substances = np.array([[1.0, 0.0], [0.5, 0.5]])
    apply_rules(substances, [Transfer(0, 1, 0.25)])
    np.testing.assert_allclose(substances, [[0.75, 0.25], [0.375, 0.625]])


def test_deteriorate_scales_and_clamps() -> None:
    substances = np.array([[1.0], [0.4]])
    apply_rules(substances, [Deteriorate(0, -0.5)])
    np.testing.assert_allclose(substances, [[0.5], [0.2]])
    apply_rules(substances, [Deteriorate(0, -3.0)])
    np.testing.assert_allclose(substances, [[0.0], [0.0]])


def test_deposit_respects_row_selection() -> None:
    substances = np.zeros((3, 1))
    apply_rules(substances, [Deposit(0, 0.1)], rows=np.array([0, 2]))
    np.testing.assert_allclose(substances[:, 0], [0.1, 0.0, 0.1])


def test_rules_apply_in_sequence() -> None:
    substances = np.array([[1.0, 0.0]])
    apply_rules(substances, [Transfer(0, 1, 0.5), Deteriorate(1, 1.0), Deposit(0, -1.0)])
    np.testing.assert_allclose(substances, [[0.0, 1.0]])
