"""Tests for repository URL parsing and remote collection."""

from __future__ import annotations

import httpx
import pytest

from robodesc.config import Settings
from robodesc.constants import EntryKind
from robodesc.ingestion.github_client import GitHubClient
from robodesc.ingestion.remote_collector import (
    INVALID_URL,
    RemoteCollector,
    filter_subpath,
    find_description_files,
    parse_repository_url,
)
from robodesc.ingestion.schemas import RepositorySource, TreeEntry
from robodesc.resilience.errors import MalformedSourceLocationError

# ── parse_repository_url ────────────────────────────────────


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://github.com/owner/repo", ("owner", "repo", "", "")),
        ("github.com/owner/repo.git", ("owner", "repo", "", "")),
        ("http://www.github.com/owner/repo/", ("owner", "repo", "", "")),
        (
            "https://github.com/owner/repo/tree/humble/robot_description",
            ("owner", "repo", "humble", "robot_description"),
        ),
        (
            "https://github.com/owner/repo/blob/main/urdf/r.urdf",
            ("owner", "repo", "main", "urdf/r.urdf"),
        ),
        ("  https://github.com/o-1/r_2.x  ", ("o-1", "r_2.x", "", "")),
        ("https://github.com/owner/repo/issues/3", ("owner", "repo", "", "")),
        ("https://github.com/owner/repo/tree", ("owner", "repo", "", "")),
    ],
)
def test_parse_valid(url: str, expected: tuple[str, str, str, str]) -> None:
    source = parse_repository_url(url)
    assert (source.owner, source.repo, source.branch, source.subpath) == expected


@pytest.mark.parametrize(
    "url",
    [
        "",
        "https://gitlab.com/owner/repo",
        "https://github.com/owner",
        "https://github.com/own er/repo",
        "not a url",
    ],
)
def test_parse_invalid(url: str) -> None:
    with pytest.raises(MalformedSourceLocationError) as excinfo:
        parse_repository_url(url)
    assert excinfo.value.message == INVALID_URL


# ── Tree helpers ─────────────────────────────────────────────


ENTRIES = [
    TreeEntry(path="README.md", kind=EntryKind.FILE),
    TreeEntry(path="arm", kind=EntryKind.DIRECTORY),
    TreeEntry(path="arm/urdf/arm.urdf", kind=EntryKind.FILE),
    TreeEntry(path="arm/urdf/arm.xacro", kind=EntryKind.FILE),
    TreeEntry(path="armature/x.urdf", kind=EntryKind.FILE),
    TreeEntry(path="odd.urdf", kind=EntryKind.DIRECTORY),
]


def test_filter_subpath_respects_segments() -> None:
    kept = filter_subpath(ENTRIES, "arm/")
    assert [e.path for e in kept] == [
        "arm",
        "arm/urdf/arm.urdf",
        "arm/urdf/arm.xacro",
    ]


def test_filter_empty_subpath_keeps_everything() -> None:
    assert filter_subpath(ENTRIES, "") == ENTRIES


def test_find_description_files_ignores_directories(
    settings: Settings,
) -> None:
    assert find_description_files(ENTRIES, settings) == [
        "arm/urdf/arm.urdf",
        "arm/urdf/arm.xacro",
        "armature/x.urdf",
    ]


# ── RemoteCollector ──────────────────────────────────────────


def tree_handler(truncated: bool = False):  # type: ignore[no-untyped-def]
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/repos/o/r":
            return httpx.Response(200, json={"default_branch": "main"})
        if request.url.path.startswith("/repos/o/r/git/trees/"):
            return httpx.Response(
                200,
                json={
                    "tree": [
                        {"path": "arm", "type": "tree"},
                        {"path": "arm/r.urdf", "type": "blob", "size": 9},
                        {"path": "other/x.stl", "type": "blob", "size": 1},
                    ],
                    "truncated": truncated,
                },
            )
        return httpx.Response(200, content=b"<robot/>")

    return handler


class TestRemoteCollector:
    async def test_discover_fills_default_branch(
        self, settings: Settings
    ) -> None:
        async with GitHubClient(
            settings, transport=httpx.MockTransport(tree_handler())
        ) as client:
            collector = RemoteCollector(client, settings)
            source = await collector.discover(
                RepositorySource(owner="o", repo="r")
            )
        assert source.branch == "main"

    async def test_discover_keeps_explicit_branch(
        self, settings: Settings
    ) -> None:
        def fail(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        async with GitHubClient(
            settings, transport=httpx.MockTransport(fail)
        ) as client:
            source = RepositorySource(owner="o", repo="r", branch="dev")
            assert await RemoteCollector(client, settings).discover(source) is source

    async def test_list_tree_filters_subpath(self, settings: Settings) -> None:
        source = RepositorySource(owner="o", repo="r", branch="main", subpath="arm")
        async with GitHubClient(
            settings, transport=httpx.MockTransport(tree_handler())
        ) as client:
            entries = await RemoteCollector(client, settings).list_tree(source)
        assert [e.path for e in entries] == ["arm", "arm/r.urdf"]

    async def test_truncated_listing_is_logged(
        self, settings: Settings, caplog: pytest.LogCaptureFixture
    ) -> None:
        source = RepositorySource(owner="o", repo="r", branch="main")
        async with GitHubClient(
            settings, transport=httpx.MockTransport(tree_handler(True))
        ) as client:
            with caplog.at_level("WARNING"):
                await RemoteCollector(client, settings).list_tree(source)
        assert "event=tree_truncated" in caplog.text

    async def test_build_mapping_uses_raw_urls(
        self, settings: Settings
    ) -> None:
        source = RepositorySource(owner="o", repo="r", branch="main")
        async with GitHubClient(
            settings, transport=httpx.MockTransport(tree_handler())
        ) as client:
            collector = RemoteCollector(client, settings)
            entries = await collector.list_tree(source)
            mapping = collector.build_mapping(source, entries)
            assert list(mapping) == ["arm/r.urdf", "other/x.stl"]
            locator = mapping["arm/r.urdf"]
            assert locator == (
                "https://raw.githubusercontent.com/o/r/main/arm/r.urdf"
            )
            assert await mapping.read(locator) == b"<robot/>"
