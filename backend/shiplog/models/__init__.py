"""ShipLog data models — typed contracts for the entire pipeline."""

from shiplog.models.release import (
    ReleaseEvent,
    Commit,
    PullRequest,
    ReleaseMetadata,
    ChangeSet,
)
from shiplog.models.notes import (
    Audience,
    StyleConfig,
    GeneratedDocumentSet,
)
from shiplog.models.distribution import (
    ChatTarget,
    EmailTarget,
    HostedTarget,
    DistributionTarget,
    ReleaseSummary,
    DistributionOutcome,
)
from shiplog.models.job import (
    ReleaseStatus,
    StepTiming,
    ProcessResult,
    BackfillResult,
    RegenerateResult,
    PublishResult,
)

__all__ = [
    "ReleaseEvent",
    "Commit",
    "PullRequest",
    "ReleaseMetadata",
    "ChangeSet",
    "Audience",
    "StyleConfig",
    "GeneratedDocumentSet",
    "ChatTarget",
    "EmailTarget",
    "HostedTarget",
    "DistributionTarget",
    "ReleaseSummary",
    "DistributionOutcome",
    "ReleaseStatus",
    "StepTiming",
    "ProcessResult",
    "BackfillResult",
    "RegenerateResult",
    "PublishResult",
]
