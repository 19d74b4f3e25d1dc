"""Structured JSON logger for acquisition runs."""

import json
import logging
from datetime import UTC, datetime
from pathlib import Path

from robodesc.config import Settings
from robodesc.constants import ERROR_TRUNCATION_CHARS
from robodesc.logging_config import LOG_DATEFMT, LOG_FORMAT, setup_logging
from robodesc.services.events import PhaseEvent

__all__ = ["AcquisitionLogger", "LOG_FORMAT", "LOG_DATEFMT"]


class AcquisitionLogger:
    """JSON-lines log of phase transitions, correlated by run_id.

    Instances are callable, so one can be passed directly as an
    acquisition's ``on_event`` callback.
    """

    def __init__(self, log_dir: Path, level: str = "INFO") -> None:
        self._log_dir = log_dir
        self._log_dir.mkdir(parents=True, exist_ok=True)
        self._logger = logging.getLogger("robodesc.acquisition")
        self._logger.setLevel(getattr(logging, level.upper()))

        if not self._logger.handlers:
            handler = logging.FileHandler(log_dir / "acquisition.log")
            handler.setFormatter(logging.Formatter("%(message)s"))
            self._logger.addHandler(handler)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AcquisitionLogger":
        """Configure process logging, then log runs under settings.log_dir."""
        setup_logging(settings.log_level)
        return cls(log_dir=settings.log_dir, level=settings.log_level)

    def __call__(self, event: PhaseEvent) -> None:
        self.log_phase(event)
        if event.failure is not None:
            self.log_failure(
                event.run_id,
                event.failure.kind,
                event.failure.message,
            )

    def log_phase(self, event: PhaseEvent) -> None:
        self._logger.info(
            json.dumps({
                "type": "phase",
                "timestamp": datetime.now(UTC).isoformat(),
                "run_id": event.run_id,
                "phase": event.phase,
                "previous": event.previous,
                "label": event.label,
                "message": event.message,
                "duration_ms": event.duration_ms,
                "unresolved": list(event.unresolved),
            })
        )

    def log_failure(self, run_id: str, kind: str, message: str) -> None:
        self._logger.error(
            json.dumps({
                "type": "failure",
                "timestamp": datetime.now(UTC).isoformat(),
                "run_id": run_id,
                "kind": kind,
                "message": message[:ERROR_TRUNCATION_CHARS],
            })
        )
