"""Tests for TemplateExpander: include fetching through the file mapping."""

from __future__ import annotations

import xml.etree.ElementTree as ET

import pytest

from robodesc.resilience.errors import (
    ExpansionGrammarError,
    UnresolvedIncludeError,
)
from robodesc.templating.expander import TemplateExpander, trim_composed_prefix
from tests.conftest import PLAIN_URDF, FakeEngine, memory_mapping


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("urdf/package://robot/x.xacro", "package://robot/x.xacro"),
        ("package://robot/x.xacro", "package://robot/x.xacro"),
        ("a/b/file:///tmp/x.xacro", "file:///tmp/x.xacro"),
        ("urdf/parts/x.xacro", "urdf/parts/x.xacro"),
    ],
)
def test_trim_composed_prefix(path: str, expected: str) -> None:
    assert trim_composed_prefix(path) == expected


class TestFetchHook:
    async def test_template_is_preprocessed(self) -> None:
        engine = FakeEngine()
        await TemplateExpander(engine).expand(
            '<robot><a v="${x**2}" f="$(find p)/a"/></robot>',
            memory_mapping({}),
        )
        assert engine.calls == [
            '<robot><a v="${pow(x,2)}" f="package://p/a"/></robot>'
        ]

    async def test_included_text_is_preprocessed(self) -> None:
        mapping = memory_mapping({"robot/urdf/a.xacro": "<r v='${y**3}'/>"})
        engine = FakeEngine(includes=("urdf/package://robot/urdf/a.xacro",))
        await TemplateExpander(engine).expand("<robot/>", mapping)
        assert engine.fetched == {
            "urdf/package://robot/urdf/a.xacro": "<r v='${pow(y,3)}'/>"
        }

    async def test_dot_segments_are_normalized(self) -> None:
        mapping = memory_mapping({"robot/urdf/parts/b.xacro": "<b/>"})
        engine = FakeEngine(includes=("robot/urdf/./parts//b.xacro",))
        await TemplateExpander(engine).expand("<robot/>", mapping)
        assert engine.fetched["robot/urdf/./parts//b.xacro"] == "<b/>"

    async def test_unresolved_include_raises(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        engine = FakeEngine(includes=("urdf/missing.xacro",))
        with (
            caplog.at_level("INFO"),
            pytest.raises(UnresolvedIncludeError) as excinfo,
        ):
            await TemplateExpander(engine).expand(
                "<robot/>", memory_mapping({"other.stl": b"x"})
            )
        assert excinfo.value.path == "urdf/missing.xacro"
        assert "missing.xacro" in excinfo.value.message
        assert "event=include_unresolved" in caplog.text

    async def test_returns_engine_output(self) -> None:
        out = await TemplateExpander(FakeEngine()).expand(
            "<robot/>", memory_mapping({})
        )
        assert out == PLAIN_URDF


class _FailingEngine:
    def __init__(self, error: Exception) -> None:
        self.error = error

    async def expand(self, text, fetch_include, source_path=None):  # type: ignore[no-untyped-def]
        raise self.error


class TestErrorWrapping:
    async def test_plain_errors_become_grammar_errors(self) -> None:
        expander = TemplateExpander(_FailingEngine(ValueError("bad params")))
        with pytest.raises(ExpansionGrammarError, match="bad params") as excinfo:
            await expander.expand("<robot/>", memory_mapping({}), "r.xacro")
        assert excinfo.value.path == "r.xacro"

    async def test_grammar_errors_pass_through(self) -> None:
        original = ExpansionGrammarError("boom")
        expander = TemplateExpander(_FailingEngine(original))
        with pytest.raises(ExpansionGrammarError) as excinfo:
            await expander.expand("<robot/>", memory_mapping({}))
        assert excinfo.value is original


class TestWithEngine:
    async def test_arm_package_expands(
        self, arm_files: dict[str, str | bytes]
    ) -> None:
        mapping = memory_mapping(arm_files)
        locator = mapping["arm_description/urdf/arm.urdf.xacro"]
        template = await mapping.read_text(locator)

        out = await TemplateExpander().expand(
            template, mapping, "arm_description/urdf/arm.urdf.xacro"
        )

        root = ET.fromstring(out)
        assert root.get("name") == "arm"
        assert [link.get("name") for link in root.iter("link")] == [
            "base_link",
            "gripper_link",
        ]
        joint = root.find("joint")
        assert joint.get("name") == "base_link_to_gripper"
        limit = joint.find("limit")
        assert float(limit.get("lower")) == pytest.approx(-0.5)
        assert float(limit.get("upper")) == pytest.approx(0.5)
        assert root.find("material").get("name") == "grey"
        assert "xacro" not in out

    async def test_missing_include_with_engine(
        self, arm_files: dict[str, str | bytes]
    ) -> None:
        del arm_files["arm_description/urdf/parts/gripper.xacro"]
        mapping = memory_mapping(arm_files)
        template = await mapping.read_text(
            mapping["arm_description/urdf/arm.urdf.xacro"]
        )
        with pytest.raises(UnresolvedIncludeError) as excinfo:
            await TemplateExpander().expand(
                template, mapping, "arm_description/urdf/arm.urdf.xacro"
            )
        assert excinfo.value.path == "arm_description/urdf/parts/gripper.xacro"
