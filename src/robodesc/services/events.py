"""Event types emitted while an acquisition run changes phase."""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeAlias
from dataclasses import dataclass

from robodesc.constants import PHASE_LABELS, PipelinePhase
from robodesc.resilience.errors import Failure


@dataclass(frozen=True)
class PhaseEvent:
    """Typed event emitted on every phase transition."""

    run_id: str
    phase: PipelinePhase
    previous: PipelinePhase
    message: str = ""
    duration_ms: float = 0.0
    # Present when phase is FAILED
    failure: Failure | None = None
    # Present when phase is AWAITING_DEPENDENCIES
    unresolved: tuple[str, ...] = ()

    @property
    def label(self) -> str:
        """User-friendly display label from PHASE_LABELS."""
        return PHASE_LABELS[self.phase]


PhaseCallback: TypeAlias = Callable[[PhaseEvent], None]
