"""
ShipLog — Typed release and change-set models.

Every pipeline step works against these models.
No raw GitHub dicts leak past the aggregator.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ReleaseEvent(BaseModel):
    """Facts extracted from one inbound release webhook."""

    model_config = ConfigDict(frozen=True)

    repo_full_name: str = Field(min_length=3)
    tag_name: str = Field(min_length=1)
    action: str
    event_type: str = "release"


class Commit(BaseModel):
    id: str
    message: str
    author_name: str


class PullRequest(BaseModel):
    number: int
    title: str
    body: str | None = None
    labels: list[str] = Field(default_factory=list)
    author_login: str


class ReleaseMetadata(BaseModel):
    """The GitHub release object the change-set was built for."""

    github_id: int
    tag_name: str
    name: str | None = None
    body: str | None = None
    html_url: str = ""
    is_draft: bool = False
    is_prerelease: bool = False
    published_at: datetime | None = None


class ChangeSet(BaseModel):
    """
    Normalised delta between a release tag and the previous tag.

    Commits keep compare-range order (oldest first). Pull requests are
    unique by number and capped; ``pull_requests_truncated`` marks the cap.
    """

    release: ReleaseMetadata
    previous_tag: str | None = None
    commits: list[Commit] = Field(default_factory=list)
    pull_requests: list[PullRequest] = Field(default_factory=list)
    pull_requests_truncated: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.commits and not self.pull_requests
