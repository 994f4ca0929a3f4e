"""Assembling simulations from spec fragments stored in files or in memory."""
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Tuple, Union

from .errors import ResolveError, ResolveKind
from .instantiate import instantiate
from .io.resolve import Resolver, local_resolver
from .io.specs import load_simulation_spec, simulation_spec_from_str
from .merge import canonicalize, merge
from .runner import SimulationRunner
from .schema import SimulationSpec

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
Fragment = Tuple[bool, str]


class SimulationBuilder:
    """Merges spec fragments in the order they are appended.

    Input paths of every fragment are made absolute when it is appended. File
    fragments resolve relative to, in order of precedence, existing absolute
    paths, the current working directory, bases added with
    :meth:`add_base_path` and the directory containing the fragment.
    """

    def __init__(self, resolver: Optional[Resolver] = None, creation_time: Optional[datetime] = None) -> None:
        self._spec = SimulationSpec()
        self._resolver = resolver if resolver is not None else local_resolver()
        self._creation_time = creation_time if creation_time is not None else datetime.now().astimezone()

    @property
    def spec(self) -> SimulationSpec:
        return self._spec

    @property
    def creation_time(self) -> datetime:
        return self._creation_time

    @property
    def resolver(self) -> Resolver:
        return self._resolver

    def add_base_path(self, base: PathLike) -> "SimulationBuilder":
        """Resolve later fragments relative to ``base`` too."""

        try:
            self._resolver.add_base(base)
        except OSError as exc:
            raise ResolveError(ResolveKind.BASE_PATH, exc) from exc
        return self

    def _resolver_for(self, fragment_path: Path) -> Resolver:
        resolver = self._resolver.copy()
        parent = fragment_path.parent
        if str(parent) not in ("", "."):
            try:
                resolver.add_base(parent)
            except OSError as exc:
                raise ResolveError(ResolveKind.SIMULATION, exc) from exc
        return resolver

    def append_spec_fragment_file(self, path: PathLike) -> "SimulationBuilder":
        fragment_path = Path(path)
        try:
            resolved = self._resolver_for(fragment_path).resolve(fragment_path)
        except (OSError, ValueError) as exc:
            raise ResolveError(ResolveKind.SIMULATION, exc) from exc
        logger.debug("appending simulation spec fragment %s", resolved)
        fragment = load_simulation_spec(resolved)
        fragment = canonicalize(fragment, self._resolver_for(resolved))
        return self.append_spec_fragment(fragment)

    def append_spec_fragment_str(self, text: str) -> "SimulationBuilder":
        fragment = simulation_spec_from_str(text)
        return self.append_spec_fragment(canonicalize(fragment, self._resolver))

    def append_spec_fragment(self, fragment: SimulationSpec) -> "SimulationBuilder":
        self._spec = merge(self._spec, fragment)
        return self

    def append_fragments(self, fragments: Iterable[Fragment]) -> "SimulationBuilder":
        """Append ``(is_file, content_or_path)`` items in the given order."""

        for is_file, value in fragments:
            if is_file:
                self.append_spec_fragment_file(value)
            else:
                self.append_spec_fragment_str(value)
        return self

    def build(self, threads: Optional[int] = None, progress: bool = False) -> SimulationRunner:
        return instantiate(self._spec, self._resolver, self._creation_time, threads=threads, progress=progress)


__all__ = ["SimulationBuilder", "Fragment"]
