"""Pydantic models for reference scanning."""

from pydantic import BaseModel, ConfigDict

from robodesc.constants import ReferenceKind


class ReferenceRecord(BaseModel):
    """One dependency a description declares, and whether it resolved.

    Produced fresh by every scan and never updated in place.
    """

    model_config = ConfigDict(frozen=True)

    raw_path: str
    resolved: bool
    kind: ReferenceKind
    extension: str | None = None  # lower-cased, no dot; meshes only
