from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from patina.io.paths import create_file_recursively, fill_pattern, fs_timestamp
from patina.io.resolve import Resolver


def _touch(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("", encoding="utf-8")
    return path


def test_bases_are_tried_in_insertion_order(tmp_path: Path) -> None:
    first = tmp_path / "first"
    second = tmp_path / "second"
    _touch(first / "scene.obj")
    _touch(second / "scene.obj")
    _touch(second / "only_second.obj")
    resolver = Resolver()
    resolver.add_base(first)
    resolver.add_base(second)
    assert resolver.resolve("scene.obj") == (first / "scene.obj").resolve()
    assert resolver.resolve("only_second.obj") == (second / "only_second.obj").resolve()


def test_existing_absolute_path_is_returned_canonical(tmp_path: Path) -> None:
    target = _touch(tmp_path / "a" / "scene.obj")
    resolver = Resolver()
    assert resolver.resolve(tmp_path / "a" / ".." / "a" / "scene.obj") == target.resolve()


def test_missing_absolute_path_is_rerooted_at_bases(tmp_path: Path) -> None:
    target = _touch(tmp_path / "assets" / "scene.obj")
    resolver = Resolver()
    resolver.add_base(tmp_path)
    assert resolver.resolve("/assets/scene.obj") == target.resolve()


def test_empty_path_is_rejected(tmp_path: Path) -> None:
    resolver = Resolver()
    resolver.add_base(tmp_path)
    with pytest.raises(ValueError):
        resolver.resolve("")


def test_unknown_path_lists_bases(tmp_path: Path) -> None:
    resolver = Resolver()
    resolver.add_base(tmp_path)
    with pytest.raises(FileNotFoundError, match="missing.obj"):
        resolver.resolve("missing.obj")


def test_base_must_be_existing_directory(tmp_path: Path) -> None:
    resolver = Resolver()
    with pytest.raises(FileNotFoundError):
        resolver.add_base(tmp_path / "nowhere")
    with pytest.raises(NotADirectoryError):
        resolver.add_base(_touch(tmp_path / "file.txt"))


def test_duplicate_base_keeps_first_position(tmp_path: Path) -> None:
    other = tmp_path / "other"
    other.mkdir()
    resolver = Resolver()
    resolver.add_base(tmp_path)
    resolver.add_base(other)
    resolver.add_base(tmp_path)
    assert resolver.bases == [tmp_path.resolve(), other.resolve()]


def test_copy_is_independent(tmp_path: Path) -> None:
    resolver = Resolver()
    resolver.add_base(tmp_path)
    clone = resolver.copy()
    sub = tmp_path / "sub"
    sub.mkdir()
    clone.add_base(sub)
    assert resolver.bases == [tmp_path.resolve()]
    assert len(clone.bases) == 2


def test_fs_timestamp_has_no_colons() -> None:
    stamp = fs_timestamp(datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone(timedelta(hours=2))))
    assert stamp == "2024-01-02T03_04_05+02_00"


def test_fill_pattern_replaces_known_tokens_only() -> None:
    filled = fill_pattern(
        "out/{iteration}/{entity}-{substance}-{id}-{unknown}.png",
        iteration=4,
        entity="floor",
        substance="rust",
        id=0,
    )
    assert filled == "out/4/floor-rust-0-{unknown}.png"


def test_create_file_recursively_truncates(tmp_path: Path) -> None:
    target = tmp_path / "deep" / "er" / "file.csv"
    create_file_recursively(target)
    target.write_text("old", encoding="utf-8")
    create_file_recursively(target)
    assert target.read_text(encoding="utf-8") == ""


def test_create_file_recursively_refuses_directories(tmp_path: Path) -> None:
    with pytest.raises(IsADirectoryError):
        create_file_recursively(tmp_path)
