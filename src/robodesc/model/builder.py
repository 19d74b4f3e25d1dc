"""Turn a canonical description into a structural robot model.

The model is an explicit tagged union of nodes, one per top-level
element of ``<robot>``, plus the initial joint and link states a viewer
starts from.  Mesh references on each link carry the locator they
resolved to, or None.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from collections.abc import Mapping
from typing import Annotated, Literal, Protocol

from pydantic import BaseModel, Field

from robodesc.constants import NodeKind
from robodesc.resilience.errors import ModelBuildError
from robodesc.resolution.paths import resolve
from robodesc.resolution.scanner import mesh_extension

logger = logging.getLogger(__name__)

Vector3 = tuple[float, float, float]

JOINT_TYPES = frozenset({
    "revolute",
    "continuous",
    "prismatic",
    "fixed",
    "floating",
    "planar",
})
DEFAULT_AXIS: Vector3 = (1.0, 0.0, 0.0)


# ── Nodes ────────────────────────────────────────────────


class MeshRef(BaseModel):
    raw_path: str
    extension: str
    role: Literal["visual", "collision"]
    locator: str | None = None
    scale: Vector3 | None = None

    @property
    def resolved(self) -> bool:
        return self.locator is not None


class LinkNode(BaseModel):
    kind: Literal[NodeKind.LINK] = NodeKind.LINK
    name: str
    meshes: list[MeshRef] = Field(default_factory=lambda: list[MeshRef]())


class JointNode(BaseModel):
    kind: Literal[NodeKind.JOINT] = NodeKind.JOINT
    name: str
    joint_type: str
    parent: str
    child: str
    axis: Vector3 = DEFAULT_AXIS
    lower: float = 0.0
    upper: float = 0.0


class OtherNode(BaseModel):
    """Any other top-level element (material, gazebo, transmission...)."""

    kind: Literal[NodeKind.OTHER] = NodeKind.OTHER
    tag: str
    name: str | None = None


ModelNode = Annotated[
    LinkNode | JointNode | OtherNode, Field(discriminator="kind")
]


# ── States ───────────────────────────────────────────────


class JointState(BaseModel):
    name: str
    joint_type: str
    value: float = 0.0
    min: float = 0.0
    max: float = 0.0
    axis: Vector3 = DEFAULT_AXIS


class LinkState(BaseModel):
    name: str
    visible: bool = True


class RobotModel(BaseModel):
    name: str
    nodes: list[ModelNode] = Field(default_factory=list)
    joint_states: dict[str, JointState] = Field(
        default_factory=lambda: dict[str, JointState]()
    )
    link_states: dict[str, LinkState] = Field(
        default_factory=lambda: dict[str, LinkState]()
    )

    @property
    def links(self) -> list[LinkNode]:
        return [n for n in self.nodes if isinstance(n, LinkNode)]

    @property
    def joints(self) -> list[JointNode]:
        return [n for n in self.nodes if isinstance(n, JointNode)]

    def root_links(self) -> list[str]:
        """Links that are no joint's child, in document order."""
        children = {j.child for j in self.joints}
        return [link.name for link in self.links if link.name not in children]

    def child_joints(self, link: str) -> list[JointNode]:
        return [j for j in self.joints if j.parent == link]

    def unresolved_meshes(self) -> list[MeshRef]:
        return [m for link in self.links for m in link.meshes if not m.resolved]


# ── Builders ─────────────────────────────────────────────


class ModelBuilder(Protocol):
    def build(
        self, description: str, mapping: Mapping[str, str]
    ) -> RobotModel: ...


class StructuralModelBuilder:
    """Parse a URDF string into a :class:`RobotModel`.

    Any grammar problem is reported as :class:`ModelBuildError`.
    """

    def build(
        self, description: str, mapping: Mapping[str, str]
    ) -> RobotModel:
        try:
            root = ET.fromstring(description)
        except ET.ParseError as exc:
            raise ModelBuildError(str(exc)) from exc
        if root.tag != "robot":
            raise ModelBuildError(
                f"expected <robot> root element, found <{root.tag}>"
            )

        nodes: list[LinkNode | JointNode | OtherNode] = []
        for elem in root:
            if not isinstance(elem.tag, str):
                continue
            if elem.tag == "link":
                nodes.append(self._link(elem, mapping))
            elif elem.tag == "joint":
                nodes.append(self._joint(elem))
            else:
                nodes.append(OtherNode(tag=elem.tag, name=elem.get("name")))

        model = RobotModel(name=root.get("name", ""), nodes=nodes)
        self._check_references(model)
        model.joint_states = {
            j.name: JointState(
                name=j.name,
                joint_type=j.joint_type,
                min=j.lower,
                max=j.upper,
                axis=j.axis,
            )
            for j in model.joints
            if j.joint_type != "fixed"
        }
        model.link_states = {
            link.name: LinkState(name=link.name) for link in model.links
        }
        logger.info(
            "event=model_built robot=%s links=%d joints=%d movable=%d",
            model.name,
            len(model.link_states),
            len(model.joints),
            len(model.joint_states),
        )
        return model

    def _link(self, elem: ET.Element, mapping: Mapping[str, str]) -> LinkNode:
        name = self._name(elem, "link")
        meshes: list[MeshRef] = []
        for role in ("visual", "collision"):
            for block in elem.findall(role):
                mesh = block.find("geometry/mesh")
                if mesh is None:
                    continue
                filename = (mesh.get("filename") or "").strip()
                if not filename:
                    continue
                scale = mesh.get("scale")
                meshes.append(
                    MeshRef(
                        raw_path=filename,
                        extension=mesh_extension(filename),
                        role=role,
                        locator=resolve(filename, mapping),
                        scale=(
                            _vector(scale, f'mesh scale of "{name}"')
                            if scale
                            else None
                        ),
                    )
                )
        return LinkNode(name=name, meshes=meshes)

    def _joint(self, elem: ET.Element) -> JointNode:
        name = self._name(elem, "joint")
        joint_type = elem.get("type", "")
        if joint_type not in JOINT_TYPES:
            raise ModelBuildError(
                f'joint "{name}" has unknown type "{joint_type}"'
            )
        parent = elem.find("parent")
        child = elem.find("child")
        if parent is None or child is None:
            raise ModelBuildError(
                f'joint "{name}" needs both <parent> and <child>'
            )
        axis_elem = elem.find("axis")
        axis = DEFAULT_AXIS
        if axis_elem is not None and axis_elem.get("xyz"):
            axis = _vector(axis_elem.get("xyz", ""), f'axis of "{name}"')
        limit = elem.find("limit")
        lower = upper = 0.0
        if limit is not None:
            lower = _float(limit.get("lower", "0"), f'lower limit of "{name}"')
            upper = _float(limit.get("upper", "0"), f'upper limit of "{name}"')
        return JointNode(
            name=name,
            joint_type=joint_type,
            parent=parent.get("link", ""),
            child=child.get("link", ""),
            axis=axis,
            lower=lower,
            upper=upper,
        )

    @staticmethod
    def _name(elem: ET.Element, what: str) -> str:
        name = elem.get("name")
        if not name:
            raise ModelBuildError(f"<{what}> element without a name")
        return name

    @staticmethod
    def _check_references(model: RobotModel) -> None:
        links = {link.name for link in model.links}
        if len(links) != len(model.links):
            raise ModelBuildError("duplicate link names")
        for joint in model.joints:
            for end in (joint.parent, joint.child):
                if end not in links:
                    raise ModelBuildError(
                        f'joint "{joint.name}" refers to unknown link "{end}"'
                    )


def _float(text: str, what: str) -> float:
    try:
        return float(text)
    except ValueError as exc:
        raise ModelBuildError(f"invalid {what}: {text!r}") from exc


def _vector(text: str, what: str) -> Vector3:
    parts = text.split()
    if len(parts) != 3:
        raise ModelBuildError(f"invalid {what}: {text!r}")
    x, y, z = (_float(p, what) for p in parts)
    return (x, y, z)
