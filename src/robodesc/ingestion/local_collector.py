"""Collect description packages from local files and directory trees."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from uuid import uuid4

import pathspec

from robodesc.config import Settings
from robodesc.constants import ID_HEX_LENGTH, MEMORY_SCHEME
from robodesc.ingestion.mapping import ContentLoader, FileEntry, FileMapping
from robodesc.resilience.errors import NoDescriptionFoundError
from robodesc.resolution.paths import basename

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocalFile:
    """One user-supplied file.

    ``relative_path`` is the path inside a dropped directory (including
    the directory's own name); a plain file selection has none and is
    keyed by its bare name.
    """

    path: str
    locator: str
    loader: ContentLoader
    relative_path: str | None = None
    size: int | None = None

    @property
    def canonical_path(self) -> str:
        return self.relative_path or self.path

    @classmethod
    def from_path(cls, path: Path, base: Path | None = None) -> LocalFile:
        relative = None
        if base is not None:
            relative = f"{base.name}/{path.relative_to(base).as_posix()}"

        async def load() -> bytes:
            return await asyncio.to_thread(path.read_bytes)

        return cls(
            path=path.name,
            locator=path.resolve().as_uri(),
            loader=load,
            relative_path=relative,
        )

    @classmethod
    def from_bytes(cls, path: str, data: bytes) -> LocalFile:
        """In-memory file; *path* may carry directory segments."""

        async def load() -> bytes:
            return data

        token = uuid4().hex[:ID_HEX_LENGTH]
        return cls(
            path=basename(path),
            locator=f"{MEMORY_SCHEME}://{token}/{path}",
            loader=load,
            relative_path=path if "/" in path else None,
            size=len(data),
        )


@dataclass
class CollectedSource:
    mapping: FileMapping
    candidates: list[str] = field(default_factory=list)


def collect_local(
    files: Iterable[LocalFile],
    settings: Settings | None = None,
) -> CollectedSource:
    """Build the file mapping and the description candidates.

    Candidates keep mapping order, so the first one is the first
    description the caller supplied.
    """
    cfg = settings or Settings()
    mapping = FileMapping()
    for local in files:
        mapping.add(
            local.canonical_path,
            FileEntry(local.locator, local.loader, local.size),
        )
    candidates = [path for path in mapping if cfg.is_description(path)]
    logger.info(
        "event=local_collected files=%d candidates=%d",
        len(mapping),
        len(candidates),
    )
    return CollectedSource(mapping=mapping, candidates=candidates)


async def collect_directory(
    root: Path | str,
    settings: Settings | None = None,
) -> CollectedSource:
    """Walk a dropped directory tree and collect every file in it.

    Returns only after every directory has been listed.  Sibling
    directories are listed concurrently; results are sorted by path so
    the mapping does not depend on completion order.
    """
    cfg = settings or Settings()
    root = Path(root)
    if not root.is_dir():
        raise NoDescriptionFoundError(f"Not a directory: {root}")

    gitignore_spec = await asyncio.to_thread(_load_gitignore, root)
    semaphore = asyncio.Semaphore(cfg.max_concurrent_reads)
    files = await _walk_dir(
        root,
        root,
        set(cfg.skip_directories),
        gitignore_spec,
        root.resolve(),
        semaphore,
    )
    files.sort(key=lambda p: p.relative_to(root).as_posix())
    logger.info("event=directory_walked root=%s files=%d", root, len(files))
    return collect_local(
        (LocalFile.from_path(p, root) for p in files), cfg
    )


async def _walk_dir(
    current: Path,
    root: Path,
    skip_dirs: set[str],
    gitignore_spec: pathspec.PathSpec,
    resolved_root: Path,
    semaphore: asyncio.Semaphore,
) -> list[Path]:
    async with semaphore:
        subdirs, files = await asyncio.to_thread(
            _list_dir, current, root, skip_dirs, gitignore_spec, resolved_root
        )
    nested = await asyncio.gather(*(
        _walk_dir(d, root, skip_dirs, gitignore_spec, resolved_root, semaphore)
        for d in subdirs
    ))
    for group in nested:
        files.extend(group)
    return files


def _list_dir(
    current: Path,
    root: Path,
    skip_dirs: set[str],
    gitignore_spec: pathspec.PathSpec,
    resolved_root: Path,
) -> tuple[list[Path], list[Path]]:
    """List one directory, skipping symlinks that leave the root."""
    subdirs: list[Path] = []
    files: list[Path] = []
    for item in sorted(current.iterdir()):
        if item.is_symlink():
            resolved = item.resolve()
            if not resolved.is_relative_to(resolved_root):
                continue
            # Link back to an ancestor would walk forever
            if item.is_dir() and current.resolve().is_relative_to(resolved):
                continue
        rel = item.relative_to(root).as_posix()
        if item.is_dir():
            if item.name in skip_dirs:
                continue
            if gitignore_spec.match_file(rel + "/"):
                continue
            subdirs.append(item)
        elif item.is_file():
            if not gitignore_spec.match_file(rel):
                files.append(item)
    return subdirs, files


def _load_gitignore(root: Path) -> pathspec.PathSpec:
    gitignore = root / ".gitignore"
    if not gitignore.exists():
        return pathspec.PathSpec.from_lines("gitignore", [])
    with open(gitignore, encoding="utf-8") as f:
        return pathspec.PathSpec.from_lines("gitignore", f)
