"""Drive the macro engine against a file mapping."""

from __future__ import annotations

import logging
from typing import Protocol

from robodesc.ingestion.mapping import FileMapping
from robodesc.resilience.errors import (
    ExpansionGrammarError,
    UnresolvedIncludeError,
)
from robodesc.resolution.paths import normalize_path, resolve
from robodesc.templating.engine import IncludeFetcher, XacroEngine
from robodesc.templating.preprocess import preprocess

logger = logging.getLogger(__name__)


class MacroEngine(Protocol):
    """Anything that expands a template, fetching includes on demand."""

    async def expand(
        self,
        text: str,
        fetch_include: IncludeFetcher,
        source_path: str | None = None,
    ) -> str: ...


def trim_composed_prefix(path: str) -> str:
    """Drop anything the engine joined in front of a ``scheme://`` URI.

    ``urdf/package://robot/x.xacro`` → ``package://robot/x.xacro``.
    """
    marker = path.find("://")
    if marker < 0:
        return path
    start = marker
    while start > 0 and (path[start - 1].isalnum() or path[start - 1] in "+.-"):
        start -= 1
    return path[start:]


class TemplateExpander:
    """Expand a XACRO template into canonical URDF.

    Every include the engine asks for is looked up in the mapping with
    the same resolver the include scanner uses, so a clean scan and a
    successful fetch agree on what "present" means.
    """

    def __init__(self, engine: MacroEngine | None = None) -> None:
        self._engine = engine or XacroEngine()

    async def expand(
        self,
        template_text: str,
        mapping: FileMapping,
        source_path: str | None = None,
    ) -> str:
        async def fetch_include(path: str) -> str:
            cleaned = trim_composed_prefix(path)
            if "://" not in cleaned:
                cleaned = normalize_path(cleaned)
            locator = resolve(cleaned, mapping)
            if locator is None:
                logger.info(
                    "event=include_unresolved requested=%s cleaned=%s",
                    path,
                    cleaned,
                )
                raise UnresolvedIncludeError(cleaned)
            text = await mapping.read_text(locator, cleaned)
            return preprocess(text)

        try:
            return await self._engine.expand(
                preprocess(template_text),
                fetch_include,
                source_path=source_path,
            )
        except ExpansionGrammarError:
            raise
        except (ValueError, LookupError, TypeError) as exc:
            # Third-party engines report grammar problems as plain errors
            raise ExpansionGrammarError(str(exc), path=source_path) from exc
