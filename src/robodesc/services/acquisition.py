"""Acquisition pipeline: from a file selection or repository URL to a
fully resolved robot description.

Each run is an explicit state machine owned by the caller::

    IDLE → COLLECTING_SOURCE → [AWAITING_SELECTION] → [EXPANDING_TEMPLATE]
         → AWAITING_DEPENDENCIES ⇄ EXPANDING_TEMPLATE → READY

Any non-terminal phase may move to FAILED.  READY and FAILED end the
run; a new run needs a new acquisition object.  Missing files are not a
failure: the run waits in AWAITING_DEPENDENCIES with the unresolved
records until the caller supplies more files.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

from robodesc.config import Settings
from robodesc.constants import ID_HEX_LENGTH, PipelinePhase
from robodesc.ingestion.github_client import GitHubClient
from robodesc.ingestion.local_collector import (
    CollectedSource,
    LocalFile,
    collect_directory,
    collect_local,
)
from robodesc.ingestion.mapping import FileMapping, decode_text
from robodesc.ingestion.remote_collector import (
    RemoteCollector,
    parse_repository_url,
)
from robodesc.ingestion.schemas import RepositorySource, TreeEntry
from robodesc.model.builder import (
    ModelBuilder,
    RobotModel,
    StructuralModelBuilder,
)
from robodesc.resilience.errors import (
    AcquisitionError,
    EmptyDescriptionError,
    Failure,
    InvalidTransitionError,
    NoDescriptionFoundError,
    PhaseTimeoutError,
    failure_from_exception,
)
from robodesc.resolution.scanner import scan_assets, scan_includes, unresolved
from robodesc.resolution.schemas import ReferenceRecord
from robodesc.services.events import PhaseCallback, PhaseEvent
from robodesc.templating.expander import TemplateExpander

logger = logging.getLogger(__name__)

NO_LOCAL_DESCRIPTION = (
    "No URDF or XACRO file found. Please include a .urdf or .xacro file."
)
NO_REMOTE_DESCRIPTION = "No URDF or XACRO files found in this repository."
EMPTY_DESCRIPTION = "The URDF file is empty."

_P = PipelinePhase

TRANSITIONS: dict[PipelinePhase, frozenset[PipelinePhase]] = {
    _P.IDLE: frozenset({_P.COLLECTING_SOURCE, _P.FAILED}),
    _P.COLLECTING_SOURCE: frozenset({
        _P.AWAITING_SELECTION,
        _P.EXPANDING_TEMPLATE,
        _P.AWAITING_DEPENDENCIES,
        _P.READY,
        _P.FAILED,
    }),
    _P.AWAITING_SELECTION: frozenset({
        _P.EXPANDING_TEMPLATE,
        _P.AWAITING_DEPENDENCIES,
        _P.READY,
        _P.FAILED,
    }),
    _P.EXPANDING_TEMPLATE: frozenset({
        _P.AWAITING_DEPENDENCIES,
        _P.READY,
        _P.FAILED,
    }),
    # Re-entering AWAITING_DEPENDENCIES reports a fresh set of records
    _P.AWAITING_DEPENDENCIES: frozenset({
        _P.AWAITING_DEPENDENCIES,
        _P.EXPANDING_TEMPLATE,
        _P.READY,
        _P.FAILED,
    }),
    _P.READY: frozenset(),
    _P.FAILED: frozenset(),
}


@dataclass(frozen=True)
class ResolvedPackage:
    """Canonical description plus the mapping its references resolve in."""

    description: str
    mapping: FileMapping
    source_path: str

    def build_model(self, builder: ModelBuilder | None = None) -> RobotModel:
        return (builder or StructuralModelBuilder()).build(
            self.description, self.mapping
        )


@dataclass
class AcquisitionState:
    """Everything one run knows, in one place."""

    run_id: str
    phase: PipelinePhase = PipelinePhase.IDLE
    failure: Failure | None = None
    mapping: FileMapping = field(default_factory=FileMapping)
    candidates: list[str] = field(default_factory=lambda: list[str]())
    selected_path: str | None = None
    # Raw template text, kept while includes are missing
    template_text: str | None = None
    # Canonical description (expanded template or plain URDF)
    description: str | None = None
    include_records: list[ReferenceRecord] = field(
        default_factory=lambda: list[ReferenceRecord]()
    )
    asset_records: list[ReferenceRecord] = field(
        default_factory=lambda: list[ReferenceRecord]()
    )
    # Remote runs only
    source: RepositorySource | None = None
    tree: list[TreeEntry] | None = None

    @property
    def expanded(self) -> bool:
        return self.description is not None

    @property
    def records(self) -> list[ReferenceRecord]:
        """Records of the current stage: includes before expansion, assets after."""
        return self.asset_records if self.expanded else self.include_records

    @property
    def unresolved(self) -> list[ReferenceRecord]:
        return unresolved(self.records)


class _Acquisition:
    """Phase bookkeeping and the include/expand/asset sequence."""

    def __init__(
        self,
        settings: Settings | None = None,
        expander: TemplateExpander | None = None,
        on_event: PhaseCallback | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._expander = expander or TemplateExpander()
        self._on_event = on_event
        self._released = False
        self._phase_started = time.perf_counter()
        self.state = AcquisitionState(
            run_id=uuid.uuid4().hex[:ID_HEX_LENGTH]
        )

    @property
    def phase(self) -> PipelinePhase:
        return self.state.phase

    @property
    def run_id(self) -> str:
        return self.state.run_id

    # -- Hand-off --

    def result(self) -> ResolvedPackage:
        """Hand the resolved package to the caller and forget it."""
        self._require("result", PipelinePhase.READY)
        st = self.state
        if self._released or st.description is None or st.selected_path is None:
            raise InvalidTransitionError(
                "The resolved package has already been handed off"
            )
        package = ResolvedPackage(
            description=st.description,
            mapping=st.mapping,
            source_path=st.selected_path,
        )
        st.description = None
        st.template_text = None
        st.mapping = FileMapping()
        self._released = True
        logger.info(
            "event=package_handed_off run_id=%s source=%s files=%d",
            st.run_id,
            package.source_path,
            len(package.mapping),
        )
        return package

    def build_model(self, builder: ModelBuilder | None = None) -> RobotModel:
        """Build the model of a READY run without handing it off."""
        self._require("build_model", PipelinePhase.READY)
        st = self.state
        if self._released or st.description is None:
            raise InvalidTransitionError(
                "The resolved package has already been handed off"
            )
        return (builder or StructuralModelBuilder()).build(
            st.description, st.mapping
        )

    # -- Phase machinery --

    def _require(self, operation: str, *phases: PipelinePhase) -> None:
        if self.state.phase not in phases:
            allowed = ", ".join(phases)
            raise InvalidTransitionError(
                f"{operation}() is not allowed in phase "
                f"{self.state.phase} (allowed: {allowed})"
            )

    def _transition(
        self,
        phase: PipelinePhase,
        message: str = "",
        failure: Failure | None = None,
        missing: Iterable[ReferenceRecord] = (),
    ) -> None:
        previous = self.state.phase
        if phase not in TRANSITIONS[previous]:
            raise InvalidTransitionError(
                f"Cannot move from {previous} to {phase}"
            )
        now = time.perf_counter()
        duration_ms = (now - self._phase_started) * 1000
        self._phase_started = now
        self.state.phase = phase
        logger.info(
            "event=phase_changed run_id=%s from=%s to=%s duration_ms=%.1f",
            self.state.run_id,
            previous,
            phase,
            duration_ms,
        )
        if self._on_event:
            self._on_event(
                PhaseEvent(
                    run_id=self.state.run_id,
                    phase=phase,
                    previous=previous,
                    message=message,
                    duration_ms=duration_ms,
                    failure=failure,
                    unresolved=tuple(r.raw_path for r in missing),
                )
            )

    def _fail(self, failure: Failure) -> None:
        self.state.failure = failure
        self._transition(
            PipelinePhase.FAILED, failure.message, failure=failure
        )

    async def _guarded(self, work: Awaitable[None], operation: str) -> None:
        """Run one step under the phase timeout; failures end the run."""
        timeout = self._settings.phase_timeout_seconds
        try:
            try:
                await asyncio.wait_for(work, timeout=timeout)
            except TimeoutError as exc:
                logger.warning(
                    "event=acquisition_timeout run_id=%s operation=%s "
                    "timeout_s=%s",
                    self.state.run_id,
                    operation,
                    timeout,
                )
                msg = f"{operation} did not finish within {timeout:g} seconds."
                raise PhaseTimeoutError(msg) from exc
        except InvalidTransitionError:
            raise
        except AcquisitionError as exc:
            logger.warning(
                "event=acquisition_failed run_id=%s operation=%s kind=%s "
                "error=%s",
                self.state.run_id,
                operation,
                exc.kind,
                exc.message,
            )
            self._fail(failure_from_exception(exc))
        except Exception as exc:
            logger.exception(
                "event=acquisition_error run_id=%s operation=%s",
                self.state.run_id,
                operation,
            )
            self._fail(failure_from_exception(exc))

    # -- Shared sequence --

    async def _process_description(self, path: str, text: str) -> None:
        if not text.strip():
            raise EmptyDescriptionError(EMPTY_DESCRIPTION)
        st = self.state
        st.selected_path = path
        if self._settings.is_template(path):
            st.template_text = text
            await self._advance_template()
        else:
            st.description = text
            self._advance_assets()

    async def _advance_template(self) -> None:
        st = self.state
        text, path = st.template_text, st.selected_path
        if text is None or path is None:
            raise InvalidTransitionError("No template has been selected")
        st.include_records = scan_includes(text, st.mapping, path)
        missing = unresolved(st.include_records)
        if missing:
            self._await_dependencies(missing)
            return

        self._transition(PipelinePhase.EXPANDING_TEMPLATE)
        st.description = await self._expander.expand(
            text, st.mapping, source_path=path
        )
        self._advance_assets()

    def _advance_assets(self) -> None:
        st = self.state
        if st.description is None:
            raise InvalidTransitionError("No description has been loaded")
        st.asset_records = scan_assets(
            st.description, st.mapping, st.selected_path or "description"
        )
        missing = unresolved(st.asset_records)
        if missing:
            self._await_dependencies(missing)
        else:
            self._transition(PipelinePhase.READY)

    def _await_dependencies(self, missing: list[ReferenceRecord]) -> None:
        self._transition(
            PipelinePhase.AWAITING_DEPENDENCIES,
            f"{len(missing)} referenced file(s) missing",
            missing=missing,
        )

    async def _rescan(self) -> None:
        if self.state.expanded:
            self._advance_assets()
        else:
            await self._advance_template()


class LocalAcquisition(_Acquisition):
    """Acquire a package from user-supplied files or a directory tree."""

    async def start(
        self,
        files: Iterable[LocalFile],
        description_path: str | None = None,
    ) -> None:
        """Collect *files* and resolve the first description among them.

        *description_path* picks a specific candidate instead.
        """
        self._require("start", PipelinePhase.IDLE)
        self._transition(PipelinePhase.COLLECTING_SOURCE)
        await self._guarded(
            self._collect_files(files, description_path), "start"
        )

    async def start_directory(
        self,
        root: Path | str,
        description_path: str | None = None,
    ) -> None:
        self._require("start_directory", PipelinePhase.IDLE)
        self._transition(PipelinePhase.COLLECTING_SOURCE)
        await self._guarded(
            self._collect_tree(root, description_path), "start_directory"
        )

    async def add_files(self, files: Iterable[LocalFile]) -> None:
        """Merge more files in (new entries win) and re-check references."""
        self._require("add_files", PipelinePhase.AWAITING_DEPENDENCIES)
        await self._guarded(self._merge(files), "add_files")

    def remove_file(self, path: str) -> None:
        """Drop *path* from the mapping; call :meth:`rescan` afterwards."""
        self._require("remove_file", PipelinePhase.AWAITING_DEPENDENCIES)
        self.state.mapping.remove(path)
        logger.info(
            "event=file_removed run_id=%s path=%s", self.state.run_id, path
        )

    async def rescan(self) -> None:
        """Recompute references against the current mapping."""
        self._require("rescan", PipelinePhase.AWAITING_DEPENDENCIES)
        await self._guarded(self._rescan(), "rescan")

    async def _collect_files(
        self, files: Iterable[LocalFile], description_path: str | None
    ) -> None:
        await self._adopt(collect_local(files, self._settings), description_path)

    async def _collect_tree(
        self, root: Path | str, description_path: str | None
    ) -> None:
        collected = await collect_directory(root, self._settings)
        await self._adopt(collected, description_path)

    async def _adopt(
        self, collected: CollectedSource, description_path: str | None
    ) -> None:
        st = self.state
        st.mapping = collected.mapping
        st.candidates = collected.candidates
        if not st.candidates:
            raise NoDescriptionFoundError(NO_LOCAL_DESCRIPTION)
        path = description_path or st.candidates[0]
        if path not in st.candidates:
            raise NoDescriptionFoundError(
                f"{path} is not a URDF or XACRO file in this upload."
            )
        text = await st.mapping.read_text(st.mapping[path], path)
        await self._process_description(path, text)

    async def _merge(self, files: Iterable[LocalFile]) -> None:
        incoming = collect_local(files, self._settings)
        self.state.mapping.merge(incoming.mapping)
        logger.info(
            "event=files_added run_id=%s added=%d total=%d",
            self.state.run_id,
            len(incoming.mapping),
            len(self.state.mapping),
        )
        await self._rescan()


class RemoteAcquisition(_Acquisition):
    """Acquire a package from a public GitHub repository.

    An acquisition created without a ``client`` owns one and closes it
    in :meth:`aclose` (or on leaving ``async with``).
    """

    def __init__(
        self,
        client: GitHubClient | None = None,
        settings: Settings | None = None,
        expander: TemplateExpander | None = None,
        on_event: PhaseCallback | None = None,
    ) -> None:
        super().__init__(settings, expander, on_event)
        self._owns_client = client is None
        self._client = client or GitHubClient(self._settings)
        self._collector = RemoteCollector(self._client, self._settings)

    async def __aenter__(self) -> RemoteAcquisition:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def start(self, url: str) -> None:
        """Parse *url*, list the repository and pick or offer candidates."""
        self._require("start", PipelinePhase.IDLE)
        self._transition(PipelinePhase.COLLECTING_SOURCE)
        await self._guarded(self._collect(url), "start")

    async def select(self, path: str) -> None:
        """Choose one of several candidates; reuses the listed tree."""
        self._require("select", PipelinePhase.AWAITING_SELECTION)
        if path not in self.state.candidates:
            msg = f"{path} is not one of the description candidates"
            raise ValueError(msg)
        await self._guarded(self._select(path), "select")

    async def _collect(self, url: str) -> None:
        st = self.state
        source = await self._collector.discover(parse_repository_url(url))
        st.source = source
        st.tree = await self._collector.list_tree(source)
        st.candidates = self._collector.find_description_files(st.tree)
        if not st.candidates:
            raise NoDescriptionFoundError(NO_REMOTE_DESCRIPTION)
        if len(st.candidates) == 1:
            await self._select(st.candidates[0])
        else:
            self._transition(
                PipelinePhase.AWAITING_SELECTION,
                f"{len(st.candidates)} description files found",
            )

    async def _select(self, path: str) -> None:
        st = self.state
        if st.source is None or st.tree is None:
            raise InvalidTransitionError("The repository has not been listed")
        data = await self._client.get_raw_content(
            st.source.owner, st.source.repo, st.source.branch, path
        )
        st.mapping = self._collector.build_mapping(st.source, st.tree)
        await self._process_description(path, decode_text(data, path))
