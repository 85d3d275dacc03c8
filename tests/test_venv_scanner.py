from __future__ import annotations

import os
from pathlib import Path

import pytest

from venv_scanner import VENV_MARKER, find_virtual_envs


def _make_venv(path: Path) -> Path:
    (path / "Scripts").mkdir(parents=True)
    (path / VENV_MARKER).write_text("home = C:\\Python314\nversion = 3.14.3\n")
    return path


def test_finds_environments_and_prunes_below_them(tmp_path: Path) -> None:
    outer = _make_venv(tmp_path / "project" / ".venv")
    _make_venv(outer / "Lib" / "site-packages" / "nested")
    other = _make_venv(tmp_path / "work" / "api" / "env")

    found = find_virtual_envs(str(tmp_path))

    assert sorted(found) == sorted([str(outer), str(other)])


def test_depth_bound(tmp_path: Path) -> None:
    shallow = _make_venv(tmp_path / "a" / "venv")
    deep = _make_venv(tmp_path / "a" / "b" / "c" / "venv")

    assert find_virtual_envs(str(tmp_path), max_depth=2) == [str(shallow)]
    assert sorted(find_virtual_envs(str(tmp_path), max_depth=4)) == sorted([str(shallow), str(deep)])


def test_skipped_directories_are_not_descended(tmp_path: Path) -> None:
    _make_venv(tmp_path / "node_modules" / "venv")
    _make_venv(tmp_path / ".git" / "venv")

    assert find_virtual_envs(str(tmp_path)) == []


def test_links_are_not_followed(tmp_path: Path) -> None:
    real = _make_venv(tmp_path / "real" / "venv")
    try:
        os.symlink(tmp_path / "real", tmp_path / "link", target_is_directory=True)
    except OSError:
        pytest.skip("symlinks not available")

    assert find_virtual_envs(str(tmp_path)) == [str(real)]
    assert find_virtual_envs(str(tmp_path / "link")) == []


def test_missing_root_yields_nothing(tmp_path: Path) -> None:
    assert find_virtual_envs(str(tmp_path / "missing")) == []


def test_stop_request_and_progress_callback(tmp_path: Path) -> None:
    _make_venv(tmp_path / "one" / "venv")
    counts: list[int] = []

    found = find_virtual_envs(str(tmp_path), on_directory=counts.append)
    assert found and counts == list(range(1, len(counts) + 1))

    assert find_virtual_envs(str(tmp_path), should_stop=lambda: True) == []
