"""
ShipLog — Release store.

Every write is a short, single-key operation in its own session.
The (repo_id, tag_name) unique constraint is the only guard against two
deliveries of the same release; a violation surfaces as
DuplicateReleaseError.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from shiplog.db.tables import (
    DistributionRecord,
    NotesRecord,
    ReleaseRecord,
    RepoRecord,
)
from shiplog.errors import DuplicateReleaseError, NotesNotReadyError, ReleaseNotFoundError
from shiplog.models.distribution import DistributionOutcome
from shiplog.models.job import ReleaseStatus
from shiplog.models.notes import Audience, GeneratedDocumentSet
from shiplog.models.release import ReleaseMetadata

_REPO_LOAD = (
    selectinload(RepoRecord.user),
    selectinload(RepoRecord.config),
    selectinload(RepoRecord.channels),
    selectinload(RepoRecord.recipients),
)

_AUDIENCE_COLUMNS = {
    Audience.CUSTOMER: "customer",
    Audience.DEVELOPER: "developer",
    Audience.STAKEHOLDER: "stakeholder",
}


def _metadata_fields(metadata: ReleaseMetadata) -> dict:
    return {
        "github_id": metadata.github_id,
        "name": metadata.name,
        "body": metadata.body,
        "html_url": metadata.html_url,
        "is_draft": metadata.is_draft,
        "is_prerelease": metadata.is_prerelease,
    }


def _outcome_row(release_id: str, outcome: DistributionOutcome) -> DistributionRecord:
    return DistributionRecord(
        release_id=release_id,
        audience=outcome.audience.value,
        channel_kind=outcome.channel_kind,
        destination=outcome.destination,
        success=outcome.success,
        error_detail=outcome.error_detail,
        response_code=outcome.response_code,
        responded_at=outcome.responded_at,
    )


class ReleaseStore:
    """Persistence gateway used by the orchestrator and the API layer."""

    def __init__(self, sessions: async_sessionmaker[AsyncSession]):
        self._sessions = sessions

    # ---- Subscriptions (read-only here) ----

    async def get_repo_by_full_name(self, full_name: str) -> RepoRecord | None:
        async with self._sessions() as session:
            stmt = select(RepoRecord).where(RepoRecord.full_name == full_name).options(*_REPO_LOAD)
            return (await session.execute(stmt)).scalar_one_or_none()

    async def get_repo(self, repo_id: str) -> RepoRecord | None:
        async with self._sessions() as session:
            stmt = select(RepoRecord).where(RepoRecord.id == repo_id).options(*_REPO_LOAD)
            return (await session.execute(stmt)).scalar_one_or_none()

    # ---- Releases ----

    async def find_release(self, repo_id: str, tag_name: str) -> ReleaseRecord | None:
        async with self._sessions() as session:
            stmt = select(ReleaseRecord).where(
                ReleaseRecord.repo_id == repo_id,
                ReleaseRecord.tag_name == tag_name,
            )
            return (await session.execute(stmt)).scalar_one_or_none()

    async def get_release(self, release_id: str) -> ReleaseRecord:
        async with self._sessions() as session:
            stmt = (
                select(ReleaseRecord)
                .where(ReleaseRecord.id == release_id)
                .options(
                    selectinload(ReleaseRecord.notes),
                    selectinload(ReleaseRecord.distributions),
                    selectinload(ReleaseRecord.repo).options(*_REPO_LOAD),
                )
            )
            record = (await session.execute(stmt)).scalar_one_or_none()
        if record is None:
            raise ReleaseNotFoundError(release_id)
        return record

    async def create_release(
        self,
        repo: RepoRecord,
        tag_name: str,
        status: ReleaseStatus = ReleaseStatus.RECEIVED,
    ) -> ReleaseRecord:
        record = ReleaseRecord(repo_id=repo.id, tag_name=tag_name, status=status.value)
        try:
            async with self._sessions() as session, session.begin():
                session.add(record)
        except IntegrityError as exc:
            raise DuplicateReleaseError(repo.full_name, tag_name) from exc
        return record

    async def set_status(
        self,
        release_id: str,
        status: ReleaseStatus,
        error_message: str | None = None,
    ) -> None:
        async with self._sessions() as session, session.begin():
            record = await session.get(ReleaseRecord, release_id)
            if record is None:
                raise ReleaseNotFoundError(release_id)
            record.status = status.value
            record.error_message = error_message
            if status in (ReleaseStatus.READY, ReleaseStatus.FAILED):
                record.processed_at = datetime.now(timezone.utc)
            if status == ReleaseStatus.PUBLISHED and record.published_at is None:
                record.published_at = datetime.now(timezone.utc)

    async def update_metadata(self, release_id: str, metadata: ReleaseMetadata) -> None:
        async with self._sessions() as session, session.begin():
            record = await session.get(ReleaseRecord, release_id)
            if record is None:
                raise ReleaseNotFoundError(release_id)
            for key, value in _metadata_fields(metadata).items():
                setattr(record, key, value)
            if metadata.published_at is not None:
                record.published_at = metadata.published_at

    async def import_release(
        self,
        repo: RepoRecord,
        metadata: ReleaseMetadata,
        documents: GeneratedDocumentSet,
        outcome: DistributionOutcome,
    ) -> ReleaseRecord:
        """Insert an already-published release with its notes and outcome in one transaction."""
        now = datetime.now(timezone.utc)
        record = ReleaseRecord(
            repo_id=repo.id,
            tag_name=metadata.tag_name,
            status=ReleaseStatus.PUBLISHED.value,
            published_at=metadata.published_at or now,
            processed_at=now,
            **_metadata_fields(metadata),
        )
        try:
            async with self._sessions() as session, session.begin():
                session.add(record)
                await session.flush()
                session.add(NotesRecord(
                    release_id=record.id,
                    customer=documents.customer,
                    developer=documents.developer,
                    stakeholder=documents.stakeholder,
                    tokens_used=documents.tokens_used,
                    model=documents.model,
                ))
                session.add(_outcome_row(record.id, outcome))
        except IntegrityError as exc:
            raise DuplicateReleaseError(repo.full_name, metadata.tag_name) from exc
        return record

    # ---- Notes ----

    async def save_notes(
        self,
        release_id: str,
        documents: GeneratedDocumentSet,
        preserve: frozenset[Audience] = frozenset(),
    ) -> NotesRecord:
        """
        Store generated notes. Audiences in ``preserve`` keep their text and
        edited flag; every other audience is overwritten and marked unedited.
        """
        async with self._sessions() as session, session.begin():
            stmt = select(NotesRecord).where(NotesRecord.release_id == release_id)
            notes = (await session.execute(stmt)).scalar_one_or_none()
            if notes is None:
                notes = NotesRecord(release_id=release_id, model=documents.model)
                session.add(notes)

            for audience, column in _AUDIENCE_COLUMNS.items():
                if audience in preserve and getattr(notes, column, None):
                    continue
                setattr(notes, column, getattr(documents, column))
                setattr(notes, f"{column}_edited", False)

            notes.tokens_used = documents.tokens_used
            notes.model = documents.model
        return notes

    async def edit_notes(self, release_id: str, edits: dict[Audience, str]) -> NotesRecord:
        async with self._sessions() as session, session.begin():
            stmt = select(NotesRecord).where(NotesRecord.release_id == release_id)
            notes = (await session.execute(stmt)).scalar_one_or_none()
            if notes is None:
                raise NotesNotReadyError(release_id)
            for audience, text in edits.items():
                column = _AUDIENCE_COLUMNS[audience]
                setattr(notes, column, text)
                setattr(notes, f"{column}_edited", True)
        return notes

    # ---- Distributions ----

    async def add_outcomes(self, release_id: str, outcomes: list[DistributionOutcome]) -> None:
        if not outcomes:
            return
        async with self._sessions() as session, session.begin():
            session.add_all(_outcome_row(release_id, outcome) for outcome in outcomes)
