"""I/O helper subpackage."""
from . import obj, paths, resolve, specs
from .paths import create_file_recursively, fill_pattern, fs_timestamp
from .resolve import Resolver

__all__ = [
    "obj",
    "paths",
    "resolve",
    "specs",
    "Resolver",
    "create_file_recursively",
    "fill_pattern",
    "fs_timestamp",
]
