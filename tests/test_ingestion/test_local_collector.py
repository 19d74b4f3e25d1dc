"""Tests for local file and directory collection."""

from __future__ import annotations

from pathlib import Path

import pytest

from robodesc.config import Settings
from robodesc.ingestion.local_collector import (
    LocalFile,
    collect_directory,
    collect_local,
)
from robodesc.resilience.errors import NoDescriptionFoundError
from tests.conftest import memory_files


def _write(root: Path, rel: str, data: str = "x") -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(data)
    return path


@pytest.fixture
def package_dir(tmp_path: Path) -> Path:
    root = tmp_path / "arm_description"
    _write(root, "urdf/arm.urdf.xacro", "<robot/>")
    _write(root, "urdf/parts/gripper.xacro", "<robot/>")
    _write(root, "meshes/base.stl")
    _write(root, "build/generated.urdf", "<robot/>")
    _write(root, ".git/config")
    _write(root, "scratch/notes.txt")
    _write(root, ".gitignore", "scratch/\n*.bak\n")
    _write(root, "meshes/old.stl.bak")
    return root


class TestLocalFile:
    def test_bare_name_has_no_relative_path(self) -> None:
        local = LocalFile.from_bytes("robot.urdf", b"<robot/>")
        assert local.relative_path is None
        assert local.canonical_path == "robot.urdf"
        assert local.locator.startswith("memory://")
        assert local.size == 8

    def test_nested_path_is_canonical(self) -> None:
        local = LocalFile.from_bytes("pkg/urdf/r.urdf", b"")
        assert local.path == "r.urdf"
        assert local.canonical_path == "pkg/urdf/r.urdf"

    def test_locators_are_unique(self) -> None:
        a = LocalFile.from_bytes("r.urdf", b"")
        b = LocalFile.from_bytes("r.urdf", b"")
        assert a.locator != b.locator

    async def test_from_path(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "pkg", "urdf/r.urdf", "<robot/>")
        local = LocalFile.from_path(path, tmp_path / "pkg")
        assert local.canonical_path == "pkg/urdf/r.urdf"
        assert local.locator == path.resolve().as_uri()
        assert await local.loader() == b"<robot/>"


class TestCollectLocal:
    def test_candidates_follow_mapping_order(self, settings: Settings) -> None:
        files = memory_files({
            "meshes/a.stl": b"",
            "b.urdf": "<robot/>",
            "a.xacro": "<robot/>",
        })
        collected = collect_local(files, settings)
        assert list(collected.mapping) == ["meshes/a.stl", "b.urdf", "a.xacro"]
        assert collected.candidates == ["b.urdf", "a.xacro"]

    def test_extension_match_is_case_insensitive(
        self, settings: Settings
    ) -> None:
        collected = collect_local(memory_files({"R.URDF": "<robot/>"}), settings)
        assert collected.candidates == ["R.URDF"]

    def test_no_candidates(self, settings: Settings) -> None:
        collected = collect_local(memory_files({"a.stl": b""}), settings)
        assert collected.candidates == []


class TestCollectDirectory:
    async def test_keys_include_directory_name(
        self, package_dir: Path, settings: Settings
    ) -> None:
        collected = await collect_directory(package_dir, settings)
        assert list(collected.mapping) == [
            "arm_description/.gitignore",
            "arm_description/meshes/base.stl",
            "arm_description/urdf/arm.urdf.xacro",
            "arm_description/urdf/parts/gripper.xacro",
        ]

    async def test_candidates(
        self, package_dir: Path, settings: Settings
    ) -> None:
        collected = await collect_directory(package_dir, settings)
        assert collected.candidates == [
            "arm_description/urdf/arm.urdf.xacro",
            "arm_description/urdf/parts/gripper.xacro",
        ]

    async def test_content_is_readable(
        self, package_dir: Path, settings: Settings
    ) -> None:
        collected = await collect_directory(package_dir, settings)
        mapping = collected.mapping
        locator = mapping["arm_description/urdf/arm.urdf.xacro"]
        assert await mapping.read_text(locator) == "<robot/>"

    async def test_skip_directories_from_settings(
        self, package_dir: Path, tmp_path: Path
    ) -> None:
        cfg = Settings(skip_directories="meshes", log_dir=tmp_path)
        collected = await collect_directory(package_dir, cfg)
        assert "arm_description/build/generated.urdf" in collected.mapping
        assert "arm_description/meshes/base.stl" not in collected.mapping

    async def test_escaping_symlink_is_skipped(
        self, package_dir: Path, tmp_path: Path, settings: Settings
    ) -> None:
        outside = _write(tmp_path / "outside", "secret.urdf", "<robot/>")
        (package_dir / "link.urdf").symlink_to(outside)
        (package_dir / "loop").symlink_to(package_dir)
        collected = await collect_directory(package_dir, settings)
        assert "arm_description/link.urdf" not in collected.mapping
        assert not any("loop" in key for key in collected.mapping)

    async def test_not_a_directory(self, tmp_path: Path) -> None:
        with pytest.raises(NoDescriptionFoundError, match="Not a directory"):
            await collect_directory(tmp_path / "missing")
