"""Structured warning classes for the :mod:`patina` package."""
from __future__ import annotations


class PatinaWarning(UserWarning):
    """Base warning class for patina."""


class SpecConflictWarning(PatinaWarning):
    """Two specification fragments disagree on a value; the later one wins."""


__all__ = [
    "PatinaWarning",
    "SpecConflictWarning",
]
