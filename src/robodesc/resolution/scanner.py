"""Scan description markup for the files it depends on.

Two scans share one shape, ``scan(text, mapping) -> [ReferenceRecord]``:

* :func:`scan_includes` reads an unexpanded XACRO template for
  ``<xacro:include filename=...>`` directives.  It never expands
  anything, so it works on templates whose dependencies are missing.
* :func:`scan_assets` reads canonical URDF for ``<mesh filename=...>``.

Unresolved references are ordinary ``resolved=False`` records, not
errors.  Only unparseable markup raises.
"""

from __future__ import annotations

import posixpath
import xml.etree.ElementTree as ET
from collections.abc import Iterable, Mapping

from robodesc.constants import XACRO_NAMESPACES, ReferenceKind
from robodesc.resilience.errors import MalformedMarkupError
from robodesc.resolution.paths import basename, resolve
from robodesc.resolution.schemas import ReferenceRecord
from robodesc.templating.preprocess import rewrite_find


def parse_markup(text: str, label: str = "description") -> ET.Element:
    """Parse XML text, raising MalformedMarkupError on syntax errors."""
    try:
        return ET.fromstring(text)
    except ET.ParseError as exc:
        msg = f"Malformed XML in {label}: {exc}"
        raise MalformedMarkupError(msg, path=label) from exc


def split_tag(tag: str) -> tuple[str | None, str]:
    """``{ns}local`` → ``(ns, local)``; un-namespaced → ``(None, tag)``."""
    if tag.startswith("{"):
        ns, _, local = tag[1:].partition("}")
        return ns, local
    return None, tag


def is_xacro_tag(tag: object, local: str | None = None) -> bool:
    """True for elements in the xacro namespace (optionally named *local*)."""
    if not isinstance(tag, str):
        return False  # comments and processing instructions
    ns, name = split_tag(tag)
    if ns not in XACRO_NAMESPACES:
        return False
    return local is None or name == local


def mesh_extension(raw_path: str) -> str:
    """Lower-cased extension of the raw reference, without the dot."""
    return posixpath.splitext(basename(raw_path))[1].lstrip(".").lower()


def scan_includes(
    text: str,
    mapping: Mapping[str, str],
    label: str = "template",
) -> list[ReferenceRecord]:
    """Collect distinct include paths in first-seen order and resolve each."""
    root = parse_markup(text, label)
    seen: dict[str, None] = {}
    for elem in root.iter():
        if not is_xacro_tag(elem.tag, "include"):
            continue
        filename = (elem.get("filename") or "").strip()
        if filename:
            seen.setdefault(filename, None)

    return [
        ReferenceRecord(
            raw_path=path,
            resolved=resolve(rewrite_find(path), mapping) is not None,
            kind=ReferenceKind.INCLUDE,
        )
        for path in seen
    ]


def scan_assets(
    text: str,
    mapping: Mapping[str, str],
    label: str = "description",
) -> list[ReferenceRecord]:
    """Resolve every ``<mesh filename>``; repeated paths stay repeated."""
    root = parse_markup(text, label)
    records: list[ReferenceRecord] = []
    for elem in root.iter("mesh"):
        filename = (elem.get("filename") or "").strip()
        if not filename:
            continue
        records.append(
            ReferenceRecord(
                raw_path=filename,
                resolved=resolve(filename, mapping) is not None,
                kind=ReferenceKind.MESH,
                extension=mesh_extension(filename),
            )
        )
    return records


def all_resolved(records: Iterable[ReferenceRecord]) -> bool:
    return all(r.resolved for r in records)


def unresolved(records: Iterable[ReferenceRecord]) -> list[ReferenceRecord]:
    return [r for r in records if not r.resolved]


def sort_unresolved_first(
    records: Iterable[ReferenceRecord],
) -> list[ReferenceRecord]:
    """Display order: missing files on top, otherwise scan order."""
    return sorted(records, key=lambda r: r.resolved)
