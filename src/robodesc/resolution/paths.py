"""Match partial reference paths against the files that actually arrived.

Descriptions point at their dependencies with ``package://`` URIs,
relative includes and bare filenames, while the file mapping is keyed by
whatever structure the upload or repository had.  :func:`resolve` tries
four strategies from strictest to most permissive and returns the first
hit:

1. exact key match on the raw string
2. exact key match on the normalized path
3. suffix match (key equals the path or ends with ``/`` + path)
4. basename match (last segment only)

Later steps only run after the stricter ones fail, which keeps false
positives down.  Ambiguity is not resolved: the first key in mapping
iteration order wins.
"""

from __future__ import annotations

import re
from collections.abc import Mapping

_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")


def normalize_path(raw_path: str) -> str:
    """Strip scheme + package name, a leading ``./`` and empty/``.`` segments.

    ``package://pkg/meshes/a.stl`` → ``meshes/a.stl``;
    ``./a/./b//c.dae`` → ``a/b/c.dae``.
    """
    path = raw_path
    scheme = _SCHEME_RE.match(path)
    if scheme:
        path = path[scheme.end():]
        # First segment after the scheme names the package
        _, sep, rest = path.partition("/")
        path = rest if sep else path
    if path.startswith("./"):
        path = path[2:]
    segments = [s for s in path.split("/") if s not in ("", ".")]
    return "/".join(segments)


def basename(path: str) -> str:
    return path.rsplit("/", 1)[-1]


def resolve(raw_path: str, mapping: Mapping[str, str]) -> str | None:
    """Return the locator *raw_path* refers to, or None if unresolved."""
    # 1. Exact match
    if raw_path in mapping:
        return mapping[raw_path]

    normalized = normalize_path(raw_path)
    if not normalized:
        return None

    # 2. Exact match on the normalized form
    if normalized in mapping:
        return mapping[normalized]

    # 3. Suffix match
    suffix = f"/{normalized}"
    for key in mapping:
        if key == normalized or key.endswith(suffix):
            return mapping[key]

    # 4. Filename-only match (last resort)
    name = basename(normalized)
    for key in mapping:
        if basename(key) == name:
            return mapping[key]

    return None
