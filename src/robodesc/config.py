"""Environment-based configuration."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode

from robodesc.constants import (
    GITHUB_API_URL,
    GITHUB_RAW_URL,
    HTTP_TIMEOUT_SECONDS,
    MAX_CONCURRENT_READS,
    PHASE_TIMEOUT_SECONDS,
    RETRY_INITIAL_WAIT,
    RETRY_MAX_ATTEMPTS,
    RETRY_MAX_WAIT,
    TEMPLATE_EXTENSIONS,
    URDF_EXTENSIONS,
)

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Reads from .env file and ROBODESC_* environment variables."""

    # Remote repository host
    github_api_url: str = GITHUB_API_URL
    github_raw_url: str = GITHUB_RAW_URL
    github_token: str = ""

    # Network
    http_timeout_seconds: float = HTTP_TIMEOUT_SECONDS
    retry_max_attempts: int = RETRY_MAX_ATTEMPTS
    retry_initial_wait: float = RETRY_INITIAL_WAIT
    retry_max_wait: float = RETRY_MAX_WAIT

    # Pipeline
    phase_timeout_seconds: float = PHASE_TIMEOUT_SECONDS
    max_concurrent_reads: int = MAX_CONCURRENT_READS

    # File classification
    description_extensions: Annotated[list[str], NoDecode] = list(
        URDF_EXTENSIONS
    )
    template_extensions: Annotated[list[str], NoDecode] = list(
        TEMPLATE_EXTENSIONS
    )

    # Local collection
    skip_directories: Annotated[list[str], NoDecode] = [
        ".git",
        ".svn",
        ".hg",
        "__pycache__",
        "node_modules",
        "build",
        "install",
        "log",
    ]

    # Logging
    log_dir: Path = Path("logs")
    log_level: str = "INFO"

    @field_validator(
        "description_extensions",
        "template_extensions",
        "skip_directories",
        mode="before",
    )
    @classmethod
    def _parse_list(cls, v: Any) -> Any:
        """Accept comma-separated string or JSON array."""
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @field_validator("description_extensions", "template_extensions")
    @classmethod
    def _normalize_extensions(cls, v: list[str]) -> list[str]:
        normalized: list[str] = []
        for ext in v:
            ext = ext.strip().lower()
            if not ext:
                continue
            if not ext.startswith("."):
                ext = f".{ext}"
            if ext in normalized:
                logger.warning(
                    "Duplicate extension in settings: %s", ext
                )
                continue
            normalized.append(ext)
        return normalized

    @field_validator("description_extensions")
    @classmethod
    def _validate_descriptions(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError(
                "description_extensions must contain at least one extension"
            )
        return v

    def is_description(self, path: str) -> bool:
        """True if *path* names a top-level description file."""
        return path.lower().endswith(tuple(self.description_extensions))

    def is_template(self, path: str) -> bool:
        """True if *path* names a macro template that needs expansion."""
        return path.lower().endswith(tuple(self.template_extensions))

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "ROBODESC_",
        "extra": "ignore",
    }
