"""Lookup of input files relative to a list of base directories."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class Resolver:
    """Resolve relative and absolute file names against base directories.

    Bases are tried in the order they were added. An absolute path that
    exists is returned canonicalised without consulting the bases; an
    absolute path that does not exist is treated as relative to each base,
    which lets the bases act as pseudo-roots.

    The current working directory is not added implicitly.
    """

    def __init__(self) -> None:
        self._bases: List[Path] = []

    @property
    def bases(self) -> List[Path]:
        return list(self._bases)

    def add_base(self, base: PathLike) -> None:
        """Append ``base`` (canonicalised) with the lowest precedence.

        Raises ``FileNotFoundError`` if ``base`` is not an existing directory.
        Adding a base twice keeps the first position.
        """

        canonical = Path(base).resolve(strict=True)
        if not canonical.is_dir():
            raise NotADirectoryError(f"base path {canonical} is not a directory")
        if canonical not in self._bases:
            self._bases.append(canonical)

    def copy(self) -> "Resolver":
        """Return an independent resolver with the same bases."""

        other = Resolver()
        other._bases = list(self._bases)
        return other

    def resolve(self, search_path: PathLike) -> Path:
        """Return the canonical absolute path for ``search_path``.

        Raises ``FileNotFoundError`` when no base contains the path and
        ``ValueError`` for an empty search path.
        """

        text = str(search_path)
        if not text.strip():
            raise ValueError("empty search path cannot be resolved")
        candidate = Path(text)
        if candidate.is_absolute():
            if candidate.exists():
                return candidate.resolve()
            candidate = candidate.relative_to(candidate.anchor)
        for base in self._bases:
            attempt = base / candidate
            if attempt.exists():
                return attempt.resolve()
        raise FileNotFoundError(
            f"search path {str(search_path)!r} could not be found in base paths "
            f"{[str(base) for base in self._bases]}"
        )


def local_resolver() -> Resolver:
    """Return a resolver seeded with the current working directory."""

    resolver = Resolver()
    resolver.add_base(Path.cwd())
    return resolver


__all__ = ["Resolver", "local_resolver"]
