"""Collect description packages from public GitHub repositories."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from urllib.parse import unquote, urlsplit

from robodesc.config import Settings
from robodesc.constants import GITHUB_HOST, EntryKind
from robodesc.ingestion.github_client import GitHubClient
from robodesc.ingestion.mapping import ContentLoader, FileEntry, FileMapping
from robodesc.ingestion.schemas import RepositorySource, TreeEntry
from robodesc.resilience.errors import MalformedSourceLocationError

logger = logging.getLogger(__name__)

INVALID_URL = (
    "Invalid GitHub URL. Please enter a valid GitHub repository URL."
)

_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


def parse_repository_url(url: str) -> RepositorySource:
    """Parse ``github.com/<owner>/<repo>[/tree|blob/<branch>[/<path>]]``.

    The scheme is optional and a trailing ``.git`` is dropped.  Branch
    names containing ``/`` cannot be told apart from the path and are
    read as their first segment.  Any other page of the repository
    (``/issues``, a bare ``/tree``) names the repository only, so its
    default branch is discovered later.
    """
    text = url.strip()
    if not text:
        raise MalformedSourceLocationError(INVALID_URL)
    if "://" not in text:
        text = f"https://{text}"

    parts = urlsplit(text)
    host = (parts.hostname or "").lower()
    if host not in (GITHUB_HOST, f"www.{GITHUB_HOST}"):
        raise MalformedSourceLocationError(INVALID_URL)

    segments = [unquote(s) for s in parts.path.split("/") if s]
    if len(segments) < 2:
        raise MalformedSourceLocationError(INVALID_URL)

    owner, repo = segments[0], segments[1].removesuffix(".git")
    if not (_SEGMENT_RE.match(owner) and _SEGMENT_RE.match(repo)):
        raise MalformedSourceLocationError(INVALID_URL)

    branch = ""
    subpath = ""
    rest = segments[2:]
    if len(rest) >= 2 and rest[0] in ("tree", "blob"):
        branch = rest[1]
        subpath = "/".join(rest[2:])

    return RepositorySource(
        owner=owner, repo=repo, branch=branch, subpath=subpath
    )


def filter_subpath(
    entries: Iterable[TreeEntry], subpath: str
) -> list[TreeEntry]:
    """Keep entries equal to *subpath* or below it."""
    prefix = subpath.strip("/")
    if not prefix:
        return list(entries)
    return [
        e
        for e in entries
        if e.path == prefix or e.path.startswith(prefix + "/")
    ]


def find_description_files(
    entries: Iterable[TreeEntry],
    settings: Settings | None = None,
) -> list[str]:
    cfg = settings or Settings()
    return [
        e.path
        for e in entries
        if e.kind == EntryKind.FILE and cfg.is_description(e.path)
    ]


class RemoteCollector:
    """Discover, list and map a repository through a :class:`GitHubClient`."""

    def __init__(
        self,
        client: GitHubClient,
        settings: Settings | None = None,
    ) -> None:
        self._client = client
        self._settings = settings or Settings()

    async def discover(self, source: RepositorySource) -> RepositorySource:
        """Fill in the default branch when the URL named none."""
        if source.branch:
            return source
        branch = await self._client.get_default_branch(
            source.owner, source.repo
        )
        return source.with_branch(branch)

    async def list_tree(self, source: RepositorySource) -> list[TreeEntry]:
        listing = await self._client.list_tree(
            source.owner, source.repo, source.branch
        )
        if listing.truncated:
            logger.warning(
                "event=tree_truncated repo=%s branch=%s entries=%d",
                source.slug,
                source.branch,
                len(listing.entries),
            )
        entries = filter_subpath(listing.entries, source.subpath)
        logger.info(
            "event=tree_listed repo=%s branch=%s subpath=%s entries=%d",
            source.slug,
            source.branch,
            source.subpath or "/",
            len(entries),
        )
        return entries

    def build_mapping(
        self,
        source: RepositorySource,
        entries: Iterable[TreeEntry],
    ) -> FileMapping:
        """One raw-content URL per file, keyed by its repository path."""
        mapping = FileMapping()
        for entry in entries:
            if entry.kind != EntryKind.FILE:
                continue
            url = self._client.raw_url(
                source.owner, source.repo, source.branch, entry.path
            )
            mapping.add(
                entry.path,
                FileEntry(
                    locator=url,
                    load=self._loader(url, entry.path),
                    size=entry.size,
                ),
            )
        return mapping

    def find_description_files(self, entries: Iterable[TreeEntry]) -> list[str]:
        return find_description_files(entries, self._settings)

    def _loader(self, url: str, path: str) -> ContentLoader:
        async def load() -> bytes:
            return await self._client.fetch(url, f"File not found: {path}")

        return load
