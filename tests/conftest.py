"""Shared test fixtures: in-memory file sets, fast settings, fake engine."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from robodesc.config import Settings
from robodesc.ingestion.github_client import _breaker_registry
from robodesc.ingestion.local_collector import LocalFile
from robodesc.ingestion.mapping import FileEntry, FileMapping
from robodesc.services.events import PhaseEvent
from robodesc.templating.engine import IncludeFetcher

ARM_TEMPLATE = """<?xml version="1.0"?>
<robot name="arm" xmlns:xacro="http://www.ros.org/wiki/xacro">
  <xacro:include filename="$(find arm_description)/urdf/materials.xacro"/>
  <xacro:include filename="parts/gripper.xacro"/>
  <xacro:property name="link_len" value="0.5"/>
  <link name="base_link">
    <visual>
      <geometry>
        <mesh filename="package://arm_description/meshes/base.STL"/>
      </geometry>
    </visual>
  </link>
  <xacro:gripper parent="base_link"/>
</robot>
"""

MATERIALS_XACRO = """<?xml version="1.0"?>
<robot xmlns:xacro="http://www.ros.org/wiki/xacro">
  <material name="grey">
    <color rgba="0.5 0.5 0.5 1"/>
  </material>
</robot>
"""

GRIPPER_XACRO = """<?xml version="1.0"?>
<robot xmlns:xacro="http://www.ros.org/wiki/xacro">
  <xacro:macro name="gripper" params="parent">
    <joint name="${parent}_to_gripper" type="revolute">
      <parent link="${parent}"/>
      <child link="gripper_link"/>
      <axis xyz="0 0 1"/>
      <limit lower="${-link_len}" upper="${link_len}" effort="1" velocity="1"/>
    </joint>
    <link name="gripper_link">
      <visual>
        <geometry>
          <mesh filename="package://arm_description/meshes/gripper.dae"/>
        </geometry>
      </visual>
    </link>
  </xacro:macro>
</robot>
"""

PLAIN_URDF = """<?xml version="1.0"?>
<robot name="box">
  <link name="base_link">
    <visual>
      <geometry>
        <mesh filename="package://box/meshes/box.stl"/>
      </geometry>
    </visual>
  </link>
</robot>
"""


def memory_files(files: dict[str, str | bytes]) -> list[LocalFile]:
    """In-memory LocalFiles, in dict order."""
    return [
        LocalFile.from_bytes(
            path, data.encode() if isinstance(data, str) else data
        )
        for path, data in files.items()
    ]


def memory_mapping(files: dict[str, str | bytes]) -> FileMapping:
    mapping = FileMapping()
    for local in memory_files(files):
        mapping.add(
            local.canonical_path,
            FileEntry(local.locator, local.loader, local.size),
        )
    return mapping


class FakeEngine:
    """MacroEngine double: records calls and fetches every include."""

    def __init__(
        self, output: str = PLAIN_URDF, includes: tuple[str, ...] = ()
    ) -> None:
        self.output = output
        self.includes = includes
        self.calls: list[str] = []
        self.fetched: dict[str, str] = {}

    async def expand(
        self,
        text: str,
        fetch_include: IncludeFetcher,
        source_path: str | None = None,
    ) -> str:
        self.calls.append(text)
        for path in self.includes:
            self.fetched[path] = await fetch_include(path)
        return self.output


@pytest.fixture(autouse=True)
def _reset_breakers() -> None:
    """Every test starts with all GitHub circuits closed."""
    _breaker_registry.clear()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with no retry backoff and a short phase timeout."""
    return Settings(
        retry_initial_wait=0,
        retry_max_wait=0,
        phase_timeout_seconds=5,
        log_dir=tmp_path / "logs",
        github_token="",
    )


@pytest.fixture
def arm_files() -> dict[str, str | bytes]:
    """Complete arm package as a dropped directory."""
    return {
        "arm_description/urdf/arm.urdf.xacro": ARM_TEMPLATE,
        "arm_description/urdf/materials.xacro": MATERIALS_XACRO,
        "arm_description/urdf/parts/gripper.xacro": GRIPPER_XACRO,
        "arm_description/meshes/base.STL": b"solid base",
        "arm_description/meshes/gripper.dae": b"<COLLADA/>",
    }


@pytest.fixture
def events() -> list[PhaseEvent]:
    return []


@pytest.fixture
def record_event(events: list[PhaseEvent]) -> Callable[[PhaseEvent], None]:
    return events.append
