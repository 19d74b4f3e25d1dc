"""Pydantic models for the source collection data flow."""

from pydantic import BaseModel, ConfigDict, Field

from robodesc.constants import EntryKind


class RepositorySource(BaseModel):
    """Where a remote robot package lives.

    ``branch`` is empty until the default branch has been discovered;
    ``subpath`` is empty when the whole repository is the package.
    """

    model_config = ConfigDict(frozen=True)

    owner: str
    repo: str
    branch: str = ""
    subpath: str = ""

    def with_branch(self, branch: str) -> "RepositorySource":
        """Return a copy pinned to *branch*."""
        return self.model_copy(update={"branch": branch})

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.repo}"


class TreeEntry(BaseModel):
    """One row of a recursive remote file listing."""

    model_config = ConfigDict(frozen=True)

    path: str
    kind: EntryKind
    size: int = 0


class TreeListing(BaseModel):
    """Output of the tree endpoint, before subpath filtering."""

    entries: list[TreeEntry] = Field(
        default_factory=lambda: list[TreeEntry]()
    )
    truncated: bool = False
