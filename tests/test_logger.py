"""Tests for the JSON-lines acquisition logger."""

from __future__ import annotations

import json
import logging
from collections.abc import Generator
from pathlib import Path

import pytest

from robodesc.config import Settings
from robodesc.constants import FailureKind, PipelinePhase
from robodesc.logger import AcquisitionLogger
from robodesc.resilience.errors import Failure
from robodesc.services.events import PhaseEvent


@pytest.fixture
def acquisition_logger(
    tmp_path: Path,
) -> Generator[AcquisitionLogger, None, None]:
    log = logging.getLogger("robodesc.acquisition")
    log.handlers.clear()
    yield AcquisitionLogger(log_dir=tmp_path / "logs")
    for handler in log.handlers:
        handler.close()
    log.handlers.clear()


def read_records(tmp_path: Path) -> list[dict[str, object]]:
    content = (tmp_path / "logs" / "acquisition.log").read_text()
    return [json.loads(line) for line in content.splitlines()]


def test_phase_record(
    acquisition_logger: AcquisitionLogger, tmp_path: Path
) -> None:
    acquisition_logger(
        PhaseEvent(
            run_id="run-1",
            phase=PipelinePhase.AWAITING_DEPENDENCIES,
            previous=PipelinePhase.EXPANDING_TEMPLATE,
            message="1 referenced file(s) missing",
            unresolved=("meshes/a.stl",),
        )
    )
    (record,) = read_records(tmp_path)
    assert record["type"] == "phase"
    assert record["run_id"] == "run-1"
    assert record["phase"] == "awaiting_dependencies"
    assert record["previous"] == "expanding_template"
    assert record["label"] == "Missing files"
    assert record["unresolved"] == ["meshes/a.stl"]
    assert "timestamp" in record


def test_failure_adds_second_record(
    acquisition_logger: AcquisitionLogger, tmp_path: Path
) -> None:
    acquisition_logger(
        PhaseEvent(
            run_id="run-2",
            phase=PipelinePhase.FAILED,
            previous=PipelinePhase.COLLECTING_SOURCE,
            failure=Failure(FailureKind.NETWORK_NOT_FOUND, "gone " * 100),
        )
    )
    phase, failure = read_records(tmp_path)
    assert phase["type"] == "phase"
    assert failure["type"] == "failure"
    assert failure["kind"] == "network_not_found"
    assert len(str(failure["message"])) == 200


def test_existing_handler_is_reused(
    acquisition_logger: AcquisitionLogger, tmp_path: Path
) -> None:
    AcquisitionLogger(log_dir=tmp_path / "logs")
    assert len(logging.getLogger("robodesc.acquisition").handlers) == 1


def test_from_settings_uses_log_dir_and_level(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    levels: list[str] = []
    monkeypatch.setattr("robodesc.logger.setup_logging", levels.append)
    log = logging.getLogger("robodesc.acquisition")
    log.handlers.clear()
    settings = Settings(log_dir=tmp_path / "runs", log_level="DEBUG")
    try:
        AcquisitionLogger.from_settings(settings)
        assert levels == ["DEBUG"]
        assert log.level == logging.DEBUG
        assert (tmp_path / "runs" / "acquisition.log").exists()
    finally:
        for handler in log.handlers:
            handler.close()
        log.handlers.clear()
        log.setLevel(logging.NOTSET)
