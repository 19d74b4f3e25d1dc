"""Cross-module constants: enums, defaults and user-facing labels.

All magic strings and numbers that appear in 2+ files belong here.
StrEnum members are str-compatible, so log lines, JSON payloads and
event callbacks work unchanged.
"""

from __future__ import annotations

from enum import StrEnum

# ── String Enums ─────────────────────────────────────────


class PipelinePhase(StrEnum):
    """Acquisition lifecycle phase."""

    IDLE = "idle"
    COLLECTING_SOURCE = "collecting_source"
    AWAITING_SELECTION = "awaiting_selection"
    EXPANDING_TEMPLATE = "expanding_template"
    AWAITING_DEPENDENCIES = "awaiting_dependencies"
    READY = "ready"
    FAILED = "failed"


class ReferenceKind(StrEnum):
    """What a scanned reference points at."""

    MESH = "mesh"
    INCLUDE = "include"


class EntryKind(StrEnum):
    """Row type of a remote file listing."""

    FILE = "file"
    DIRECTORY = "directory"


class NodeKind(StrEnum):
    """Discriminator of the structural model's node union."""

    LINK = "link"
    JOINT = "joint"
    OTHER = "other"


class FailureKind(StrEnum):
    """User-actionable failure categories.

    UNRESOLVED_DEPENDENCY is the only recoverable kind: it maps to the
    AWAITING_DEPENDENCIES phase rather than to FAILED.
    """

    NO_DESCRIPTION_FOUND = "no_description_found"
    EMPTY_DESCRIPTION = "empty_description"
    UNRESOLVED_DEPENDENCY = "unresolved_dependency"
    EXPANSION_GRAMMAR_ERROR = "expansion_grammar_error"
    MALFORMED_MARKUP = "malformed_markup"
    MODEL_BUILD_ERROR = "model_build_error"
    NETWORK_NOT_FOUND = "network_not_found"
    NETWORK_RATE_LIMITED = "network_rate_limited"
    NETWORK_OTHER = "network_other"
    MALFORMED_SOURCE_LOCATION = "malformed_source_location"
    TIMEOUT = "timeout"
    INTERNAL = "internal"


# ── File Types ───────────────────────────────────────────

URDF_EXTENSIONS: tuple[str, ...] = (".urdf", ".xacro")
TEMPLATE_EXTENSIONS: tuple[str, ...] = (".xacro",)

XACRO_NAMESPACE = "http://www.ros.org/wiki/xacro"
# Older packages still declare the pre-2013 namespace URI
XACRO_NAMESPACES = frozenset({
    XACRO_NAMESPACE,
    "http://ros.org/wiki/xacro",
    "http://wiki.ros.org/xacro",
})

# ── Circuit Breaker Configuration ────────────────────────

CB_GITHUB_FAILURE_THRESHOLD = 5
CB_GITHUB_RECOVERY_TIMEOUT = 30

# ── Retry Strategy ───────────────────────────────────────

RETRY_MAX_ATTEMPTS = 3
RETRY_INITIAL_WAIT = 1
RETRY_MAX_WAIT = 10

# ── Remote Repository ────────────────────────────────────

GITHUB_API_URL = "https://api.github.com"
GITHUB_RAW_URL = "https://raw.githubusercontent.com"
GITHUB_HOST = "github.com"
GITHUB_ACCEPT = "application/vnd.github.v3+json"

# ── Misc ─────────────────────────────────────────────────

HTTP_TIMEOUT_SECONDS = 30.0
PHASE_TIMEOUT_SECONDS = 120.0
MAX_CONCURRENT_READS = 8
MAX_INCLUDE_DEPTH = 32
ERROR_TRUNCATION_CHARS = 200
ID_HEX_LENGTH = 12
MEMORY_SCHEME = "memory"

# ── Phase Labels (user-facing) ───────────────────────────

PHASE_LABELS: dict[str, str] = {
    PipelinePhase.IDLE: "Waiting for files",
    PipelinePhase.COLLECTING_SOURCE: "Collecting files",
    PipelinePhase.AWAITING_SELECTION: "Choose a robot description",
    PipelinePhase.EXPANDING_TEMPLATE: "Expanding XACRO template",
    PipelinePhase.AWAITING_DEPENDENCIES: "Missing files",
    PipelinePhase.READY: "Ready",
    PipelinePhase.FAILED: "Failed",
}
