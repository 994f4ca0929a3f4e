"""Surfel rules that transform substance concentrations after each pass."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Union

import numpy as np


@dataclass(frozen=True)
class Transfer:
    """Move ``factor`` of ``source`` into ``target``."""

    source: int
    target: int
    factor: float


@dataclass(frozen=True)
class Deteriorate:
    """Scale ``substance`` by ``1 + factor``; negative factors decay."""

    substance: int
    factor: float


@dataclass(frozen=True)
class Deposit:
    """Add ``amount`` to ``substance``."""

    substance: int
    amount: float


SurfelRule = Union[Transfer, Deteriorate, Deposit]


def apply_rules(substances: np.ndarray, rules: Sequence[SurfelRule], rows: np.ndarray | None = None) -> None:
    """Apply ``rules`` in order to ``substances`` (``(N, S)``) in place.

    ``rows`` restricts the update to a subset of surfels. Concentrations are
    clamped at zero after every rule.
    """

    if not rules or substances.size == 0:
        return
    view = substances if rows is None else substances[rows]
    for rule in rules:
        if isinstance(rule, Transfer):
            amount = view[:, rule.source] * rule.factor
            amount = np.minimum(amount, view[:, rule.source])
            view[:, rule.source] -= amount
            view[:, rule.target] += amount
        elif isinstance(rule, Deteriorate):
            view[:, rule.substance] *= 1.0 + rule.factor
        elif isinstance(rule, Deposit):
            view[:, rule.substance] += rule.amount
        else:
            raise TypeError(f"unsupported surfel rule {rule!r}")
        np.maximum(view, 0.0, out=view)
    if rows is not None:
        substances[rows] = view


__all__ = ["Transfer", "Deteriorate", "Deposit", "SurfelRule", "apply_rules"]
