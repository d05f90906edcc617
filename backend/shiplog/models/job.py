"""
ShipLog — Release state and pipeline run contracts.

Every orchestrated run returns a result model with step timings,
so callers and logs can trace what happened to a release.
"""

from __future__ import annotations

import enum
from typing import Literal

from pydantic import BaseModel, Field


class ReleaseStatus(str, enum.Enum):
    RECEIVED = "RECEIVED"
    PROCESSING = "PROCESSING"
    READY = "READY"
    PUBLISHED = "PUBLISHED"
    FAILED = "FAILED"


class StepTiming(BaseModel):
    step: str
    duration_ms: int
    status: str = "ok"  # ok | skipped | failed
    detail: str = ""


class ProcessResult(BaseModel):
    """Outcome of the webhook path for one release event."""

    status: Literal["processed", "duplicate"]
    repo: str
    release: str
    release_id: str | None = None
    targets: int = 0
    delivered: int = 0
    failed: int = 0
    tokens_used: int = 0
    timings: list[StepTiming] = Field(default_factory=list)


class BackfillResult(BaseModel):
    status: Literal["completed"] = "completed"
    imported: int = 0
    skipped: int = 0
    total_found: int = 0
    errors: list[str] = Field(default_factory=list)


class RegenerateResult(BaseModel):
    release_id: str
    status: ReleaseStatus
    regenerated: list[str] = Field(default_factory=list)
    preserved: list[str] = Field(default_factory=list)
    tokens_used: int = 0


class PublishResult(BaseModel):
    release_id: str
    status: ReleaseStatus
    targets: int = 0
    delivered: int = 0
    failed: int = 0
