"""Ordered path → locator mapping shared by every pipeline component."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Iterator, Mapping
from typing import TypeAlias
from dataclasses import dataclass

from robodesc.resilience.errors import MalformedMarkupError

ContentLoader: TypeAlias = Callable[[], Awaitable[bytes]]


@dataclass(frozen=True)
class FileEntry:
    """A locator plus the coroutine factory that reads its content."""

    locator: str
    load: ContentLoader
    size: int | None = None


class FileMapping(Mapping[str, str]):
    """Canonical path → locator, in insertion order.

    Iteration order is the order the resolver's suffix and basename
    steps walk, so it must stay deterministic: merging an existing key
    replaces its locator but keeps its position.

    Only :meth:`add`, :meth:`merge` and :meth:`remove` mutate the mapping.
    Readers (resolver, scanners) see it through the ``Mapping`` interface.
    """

    def __init__(
        self, entries: Iterable[tuple[str, FileEntry]] = ()
    ) -> None:
        self._entries: dict[str, FileEntry] = {}
        self._by_locator: dict[str, FileEntry] = {}
        for path, entry in entries:
            self.add(path, entry)

    # -- Mapping interface --

    def __getitem__(self, path: str) -> str:
        return self._entries[path].locator

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"FileMapping({len(self)} entries)"

    # -- Mutation --

    def add(self, path: str, entry: FileEntry) -> None:
        """Insert or replace *path* (last write wins)."""
        previous = self._entries.get(path)
        self._entries[path] = entry
        self._by_locator[entry.locator] = entry
        if previous is not None and previous.locator != entry.locator:
            self._release(previous.locator)

    def merge(self, other: FileMapping) -> None:
        """Merge *other* into this mapping; its entries win on collision."""
        for path in other:
            self.add(path, other.entry(path))

    def remove(self, path: str) -> None:
        """Drop *path*. Raises KeyError when absent."""
        entry = self._entries.pop(path)
        self._release(entry.locator)

    def _release(self, locator: str) -> None:
        # Another key may still carry the same locator
        if not any(e.locator == locator for e in self._entries.values()):
            self._by_locator.pop(locator, None)

    def copy(self) -> FileMapping:
        return FileMapping(self.items_with_entries())

    # -- Access --

    def entry(self, path: str) -> FileEntry:
        return self._entries[path]

    def items_with_entries(self) -> list[tuple[str, FileEntry]]:
        return list(self._entries.items())

    async def read(self, locator: str) -> bytes:
        """Load the content behind *locator*.

        Raises KeyError when no entry carries the locator.
        """
        return await self._by_locator[locator].load()

    async def read_text(self, locator: str, path: str | None = None) -> str:
        """Load and decode UTF-8 content (a BOM is dropped)."""
        data = await self.read(locator)
        return decode_text(data, path or locator)


def decode_text(data: bytes, path: str) -> str:
    """Decode description markup, rejecting non-UTF-8 content."""
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        msg = f"{path} is not valid UTF-8 text: {exc.reason}"
        raise MalformedMarkupError(msg, path=path) from exc
