"""Helper utilities for normalising configuration inputs and logging targets."""
from __future__ import annotations

import logging
import warnings
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .errors import ConfigurationError
from .io.paths import create_file_recursively, fill_pattern

logger = logging.getLogger(__name__)

DEFAULT_LOG_NAME = "patina-log-{datetime}.log"
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
CONSOLE_FORMAT = "%(levelname)s: %(message)s"


def parse_override_value(raw: str) -> Any:
    """Parse a CLI override value into a Python object."""

    text = raw.strip()
    lower = text.lower()
    if lower in {"true", "false"}:
        return lower == "true"
    if lower in {"none", "null", "~"}:
        return None
    try:
        return int(text)
    except ValueError:
        try:
            return float(text)
        except ValueError:
            pass
    if (text.startswith('"') and text.endswith('"')) or (text.startswith("'") and text.endswith("'")):
        return text[1:-1]
    return text


def apply_overrides_dict(payload: Dict[str, Any], overrides: Sequence[str]) -> Dict[str, Any]:
    """Apply dotted-path overrides to a specification dictionary."""

    if not overrides:
        return payload
    for item in overrides:
        key, sep, value_str = item.partition("=")
        if not sep:
            raise ConfigurationError(f"Invalid override '{item}'; expected path=value")
        parts = [segment for segment in key.strip().split(".") if segment]
        if not parts:
            raise ConfigurationError(f"Invalid override '{item}'; empty path")
        target: Any = payload
        for segment in parts[:-1]:
            if not isinstance(target, dict):
                raise ConfigurationError(
                    f"Cannot traverse into non-mapping for override '{item}' at '{segment}'"
                )
            if segment not in target or target[segment] is None:
                target[segment] = {}
            target = target[segment]
        if not isinstance(target, dict):
            raise ConfigurationError(f"Cannot set override '{item}'; target is not a mapping")
        target[parts[-1]] = parse_override_value(value_str)
    return payload


def overrides_fragment(overrides: Sequence[str]) -> Optional[Dict[str, Any]]:
    """Return the overrides as one spec fragment mapping, or ``None`` if empty."""

    if not overrides:
        return None
    return apply_overrides_dict({}, overrides)


def parse_thread_count(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"Thread count must be a positive integer, got {raw!r}") from None
    if value <= 0:
        raise ConfigurationError(f"Thread count must be a positive integer, got {raw!r}")
    return value


def verbosity_level(verbose: int) -> int:
    if verbose >= 2:
        return logging.DEBUG
    if verbose == 1:
        return logging.INFO
    return logging.WARNING


def resolve_log_targets(targets: Iterable[Optional[str]], datetime_token: str) -> List[Path]:
    """Turn log targets into file paths.

    ``None`` stands for the default file in the working directory; directory
    targets receive the default file name. Duplicates are dropped.
    """

    resolved: List[Path] = []
    for target in targets:
        path = Path(fill_pattern(target or DEFAULT_LOG_NAME, datetime=datetime_token))
        if path.is_dir() or (target is not None and str(target).endswith(("/", "\\"))):
            path = path / fill_pattern(DEFAULT_LOG_NAME, datetime=datetime_token)
        path = path.absolute()
        if path not in resolved:
            resolved.append(path)
    return resolved


def configure_logging(level: int, suppress_warnings: bool = False) -> None:
    """Configure root logging with a console handler and capture warnings."""

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root.addHandler(console)
    if suppress_warnings:
        warnings.filterwarnings("ignore")
    logging.captureWarnings(True)


def attach_log_files(paths: Sequence[Path]) -> List[logging.Handler]:
    """Add a DEBUG file handler per path, creating directories as needed."""

    handlers: List[logging.Handler] = []
    root = logging.getLogger()
    for path in paths:
        create_file_recursively(path)
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
        handlers.append(handler)
        logger.debug("logging to %s", path)
    return handlers


__all__ = [
    "parse_override_value",
    "apply_overrides_dict",
    "overrides_fragment",
    "parse_thread_count",
    "verbosity_level",
    "resolve_log_targets",
    "configure_logging",
    "attach_log_files",
]
