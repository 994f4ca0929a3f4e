"""Output path helpers: templating, timestamps and file creation."""
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
PATTERN_TOKENS = ("iteration", "id", "entity", "substance", "datetime")


def fs_timestamp(time: datetime) -> str:
    """Return an ISO-8601 timestamp that is safe to use in file names.

    Colons are replaced with underscores since some file systems reject them.
    """

    return time.isoformat().replace(":", "_")


def fill_pattern(pattern: str, **tokens: Any) -> str:
    """Substitute ``{token}`` occurrences in ``pattern`` literally.

    Only the known tokens are replaced; other braces are kept untouched so
    that patterns never fail on unrelated curly brackets.
    """

    text = str(pattern)
    for key in PATTERN_TOKENS:
        if key in tokens and tokens[key] is not None:
            text = text.replace("{" + key + "}", str(tokens[key]))
    return text


def create_file_recursively(path: PathLike) -> Path:
    """Create (or truncate) ``path`` after creating its parent directories.

    Returns the path so callers can open it for writing. Directories and other
    non-file entities at ``path`` are refused with ``IsADirectoryError`` or
    ``FileExistsError``.
    """

    target = Path(path)
    if target.exists():
        if target.is_dir():
            raise IsADirectoryError(f"refusing to overwrite directory {target}")
        if not target.is_file():
            raise FileExistsError(f"refusing to overwrite non-file entity {target}")
    if target.parent and not target.parent.exists():
        logger.debug("creating directory %s", target.parent)
        target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(b"")
    return target


__all__ = ["fs_timestamp", "fill_pattern", "create_file_recursively", "PATTERN_TOKENS"]
