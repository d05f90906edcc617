"""
ShipLog — Release Orchestrator.

Drives one release through the state machine:

  RECEIVED → PROCESSING → READY → PUBLISHED
                 ↘ FAILED

Entry points share the same steps: webhook delivery, backfill import,
regeneration and manual publish. Each step is timed and logged; a run
returns a result model with its step timings.
"""

from __future__ import annotations

import json
import time
import uuid
from typing import Any

from shiplog.db.store import ReleaseStore
from shiplog.db.tables import NotesRecord, RepoRecord
from shiplog.distribution.distributor import Distributor
from shiplog.errors import (
    DuplicateReleaseError,
    InvalidSignatureError,
    MalformedPayloadError,
    NotesNotReadyError,
    RepoNotFoundError,
    ShipLogError,
)
from shiplog.generation.generator import NoteGenerator
from shiplog.github.aggregator import DiffAggregator
from shiplog.models.distribution import DistributionOutcome, ReleaseSummary
from shiplog.models.job import (
    BackfillResult,
    ProcessResult,
    PublishResult,
    RegenerateResult,
    ReleaseStatus,
    StepTiming,
)
from shiplog.models.notes import Audience, GeneratedDocumentSet
from shiplog.models.release import ChangeSet, ReleaseEvent
from shiplog.pipeline.targets import build_targets, style_for
from shiplog.security.credentials import CredentialCipher
from shiplog.security.signature import verify
from shiplog.utils.logging import logger

PUBLISHED_ACTION = "published"
BACKFILL_DETAIL = "Imported via backfill"

_EDITED_FLAGS = {
    Audience.CUSTOMER: "customer_edited",
    Audience.DEVELOPER: "developer_edited",
    Audience.STAKEHOLDER: "stakeholder_edited",
}


def _repo_name_hint(raw_body: bytes) -> str | None:
    """Best-effort repository lookup key, read before the signature is trusted."""
    try:
        payload = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(payload, dict):
        return None
    repository = payload.get("repository")
    if not isinstance(repository, dict):
        return None
    full_name = repository.get("full_name")
    return full_name if isinstance(full_name, str) else None


def parse_payload(raw_body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError) as exc:
        raise MalformedPayloadError(f"invalid JSON ({exc})") from exc
    if not isinstance(payload, dict):
        raise MalformedPayloadError("expected a JSON object")
    return payload


def to_release_event(payload: dict[str, Any], event_type: str) -> ReleaseEvent:
    """Extract the release facts. Raises MalformedPayloadError on missing fields."""
    release = payload.get("release")
    repository = payload.get("repository")
    if not isinstance(release, dict) or not release.get("tag_name"):
        raise MalformedPayloadError("missing release.tag_name")
    if not isinstance(repository, dict) or not repository.get("full_name"):
        raise MalformedPayloadError("missing repository.full_name")
    return ReleaseEvent(
        repo_full_name=repository["full_name"],
        tag_name=release["tag_name"],
        action=str(payload.get("action", "")),
        event_type=event_type,
    )


def failure_reason(exc: BaseException) -> str:
    """Message stored on a failed release; catalog errors keep their own wording."""
    if isinstance(exc, ShipLogError):
        return exc.message
    return f"{type(exc).__name__}: {exc}"


def documents_from_record(notes: NotesRecord) -> GeneratedDocumentSet:
    return GeneratedDocumentSet(
        customer=notes.customer,
        developer=notes.developer,
        stakeholder=notes.stakeholder,
        tokens_used=notes.tokens_used or 0,
        model=notes.model,
    )


class RunTrace:
    """Step timings and log lines for one orchestrated run."""

    def __init__(self, label: str):
        self.run_id = uuid.uuid4().hex[:12]
        self.label = label
        self.timings: list[StepTiming] = []
        self.started = time.perf_counter()

    def banner(self, message: str) -> None:
        logger.info("=" * 60)
        logger.info("[%s] %s %s", self.run_id, self.label, message)
        logger.info("=" * 60)

    def record(self, name: str, start: float, status: str = "ok", detail: str = "") -> None:
        ms = int((time.perf_counter() - start) * 1000)
        self.timings.append(StepTiming(step=name, duration_ms=ms, status=status, detail=detail))
        symbol = "✓" if status == "ok" else ("⊘" if status == "skipped" else "✗")
        logger.info("  %s %s — %dms %s", symbol, name, ms, detail)

    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.started) * 1000)


class ReleaseOrchestrator:
    """
    Owns the release lifecycle. Collaborators are injected so the API
    layer and tests can swap transports, providers and storage.
    """

    def __init__(
        self,
        store: ReleaseStore,
        cipher: CredentialCipher,
        aggregator: DiffAggregator,
        generator: NoteGenerator,
        distributor: Distributor,
        webhook_secret: str = "",
    ):
        self.store = store
        self.cipher = cipher
        self.aggregator = aggregator
        self.generator = generator
        self.distributor = distributor
        self.webhook_secret = webhook_secret

    # ---- Webhook path ----

    async def handle_webhook(
        self,
        raw_body: bytes,
        signature: str | None,
        event_type: str | None,
    ) -> dict[str, Any]:
        """
        Verify, parse and process one GitHub delivery.

        Raises InvalidSignatureError or MalformedPayloadError before any
        write happens. Any later failure, catalog or not, propagates after
        the release has been marked FAILED with its reason.
        """
        hint = _repo_name_hint(raw_body)
        repo = await self.store.get_repo_by_full_name(hint) if hint else None
        secret = (repo.webhook_secret if repo else None) or self.webhook_secret

        if not verify(raw_body, signature, secret):
            logger.warning("Rejected webhook for %s: bad signature", hint or "(unknown repo)")
            raise InvalidSignatureError()

        payload = parse_payload(raw_body)
        event = event_type or ""
        if event != "release" or payload.get("action") != PUBLISHED_ACTION:
            logger.info("Ignoring %s event (action=%s)", event or "(none)", payload.get("action"))
            return {"status": "ignored", "event": event}

        release_event = to_release_event(payload, event)

        if repo is None or repo.status != "ACTIVE":
            logger.info("Ignoring release for %s: repo not connected", release_event.repo_full_name)
            return {"status": "ignored", "reason": "repo_not_connected"}

        result = await self.process_release(repo, release_event)
        return result.model_dump(mode="json")

    async def process_release(self, repo: RepoRecord, event: ReleaseEvent) -> ProcessResult:
        trace = RunTrace(f"{repo.full_name}@{event.tag_name}")
        trace.banner("release pipeline starting")

        # 1. Claim the (repo, tag) slot
        t = time.perf_counter()
        existing = await self.store.find_release(repo.id, event.tag_name)
        if existing is not None:
            trace.record("claim", t, "skipped", "duplicate")
            return ProcessResult(
                status="duplicate", repo=repo.full_name, release=event.tag_name,
                release_id=existing.id, timings=trace.timings,
            )
        try:
            release = await self.store.create_release(repo, event.tag_name)
        except DuplicateReleaseError:
            trace.record("claim", t, "skipped", "duplicate (constraint)")
            return ProcessResult(
                status="duplicate", repo=repo.full_name, release=event.tag_name, timings=trace.timings,
            )
        trace.record("claim", t, detail=release.id)
        await self.store.set_status(release.id, ReleaseStatus.PROCESSING)

        # 2-4. Aggregate, generate and persist
        try:
            change_set, documents = await self._build_documents(trace, repo, event.tag_name)

            t = time.perf_counter()
            await self.store.update_metadata(release.id, change_set.release)
            await self.store.save_notes(release.id, documents)
            trace.record("persist", t)
        except Exception as exc:
            reason = failure_reason(exc)
            await self.store.set_status(release.id, ReleaseStatus.FAILED, reason)
            logger.error("[%s] Release failed: %s", trace.run_id, reason)
            raise
        await self.store.set_status(release.id, ReleaseStatus.READY)

        # 5. Distribute
        outcomes = await self._distribute(trace, release.id, repo, change_set.release.html_url,
                                          event.tag_name, documents)
        await self.store.set_status(release.id, ReleaseStatus.PUBLISHED)

        delivered = sum(1 for o in outcomes if o.success)
        logger.info("=" * 60)
        logger.info(
            "[%s] Release published — %d/%d delivered, %d tokens, %dms",
            trace.run_id, delivered, len(outcomes), documents.tokens_used, trace.elapsed_ms(),
        )
        logger.info("=" * 60)

        return ProcessResult(
            status="processed",
            repo=repo.full_name,
            release=event.tag_name,
            release_id=release.id,
            targets=len(outcomes),
            delivered=delivered,
            failed=len(outcomes) - delivered,
            tokens_used=documents.tokens_used,
            timings=trace.timings,
        )

    # ---- Backfill ----

    async def backfill(self, repo_id: str, limit: int = 10) -> BackfillResult:
        """
        Import the newest ``limit`` releases that are not stored yet.
        One failing tag is reported in ``errors`` and does not stop the loop.
        """
        repo = await self.store.get_repo(repo_id)
        if repo is None:
            raise RepoNotFoundError(repo_id)

        trace = RunTrace(f"{repo.full_name} backfill")
        trace.banner(f"starting (limit={limit})")

        credential = self.cipher.decrypt(repo.user.access_token)
        client = self.aggregator.client_for(credential)

        t = time.perf_counter()
        # One release past the limit: counted in total_found, never imported
        releases = await client.list_releases(repo.owner, repo.name, per_page=limit + 1)
        trace.record("list_releases", t, detail=f"{len(releases)} found")

        result = BackfillResult(total_found=len(releases))
        style = style_for(repo)

        for raw in releases[:limit]:
            tag_name = raw.get("tag_name", "")
            t = time.perf_counter()

            if await self.store.find_release(repo.id, tag_name) is not None:
                result.skipped += 1
                trace.record(f"import {tag_name}", t, "skipped", "already stored")
                continue

            try:
                change_set = await self.aggregator.aggregate(repo.owner, repo.name, tag_name, credential)
                documents = await self.generator.generate(change_set, style)
                await self.store.import_release(
                    repo,
                    change_set.release,
                    documents,
                    DistributionOutcome(
                        audience=Audience.CUSTOMER,
                        channel_kind="hosted",
                        success=True,
                        error_detail=BACKFILL_DETAIL,
                    ),
                )
            except DuplicateReleaseError:
                result.skipped += 1
                trace.record(f"import {tag_name}", t, "skipped", "imported concurrently")
                continue
            except Exception as exc:
                reason = failure_reason(exc)
                result.errors.append(f"{tag_name}: {reason}")
                trace.record(f"import {tag_name}", t, "failed", reason)
                continue

            result.imported += 1
            trace.record(f"import {tag_name}", t, detail=f"{documents.tokens_used} tokens")

        logger.info(
            "[%s] Backfill complete — %d imported, %d skipped, %d errors",
            trace.run_id, result.imported, result.skipped, len(result.errors),
        )
        return result

    # ---- Regeneration ----

    async def regenerate(self, release_id: str, force: bool = False) -> RegenerateResult:
        """
        Re-run aggregation and generation for a stored release.

        Without ``force`` any audience the user edited keeps its text.
        """
        record = await self.store.get_release(release_id)
        repo = record.repo
        previous = ReleaseStatus(record.status)

        preserve: frozenset[Audience] = frozenset()
        if not force and record.notes is not None:
            preserve = frozenset(
                audience for audience, flag in _EDITED_FLAGS.items() if getattr(record.notes, flag)
            )

        trace = RunTrace(f"{repo.full_name}@{record.tag_name} regenerate")
        trace.banner(f"starting (force={force}, preserving={sorted(a.value for a in preserve)})")

        await self.store.set_status(release_id, ReleaseStatus.PROCESSING)
        try:
            change_set, documents = await self._build_documents(trace, repo, record.tag_name)
        except Exception as exc:
            reason = failure_reason(exc)
            fallback = previous if previous in (ReleaseStatus.READY, ReleaseStatus.PUBLISHED) else ReleaseStatus.FAILED
            await self.store.set_status(release_id, fallback, reason)
            logger.error("[%s] Regeneration failed, release back to %s: %s", trace.run_id, fallback.value, reason)
            raise

        await self.store.update_metadata(release_id, change_set.release)
        await self.store.save_notes(release_id, documents, preserve=preserve)
        final = ReleaseStatus.PUBLISHED if previous == ReleaseStatus.PUBLISHED else ReleaseStatus.READY
        await self.store.set_status(release_id, final)

        return RegenerateResult(
            release_id=release_id,
            status=final,
            regenerated=[a.value for a in Audience if a not in preserve],
            preserved=[a.value for a in Audience if a in preserve],
            tokens_used=documents.tokens_used,
        )

    # ---- Manual edit and publish ----

    async def edit_notes(self, release_id: str, edits: dict[Audience, str]) -> NotesRecord:
        await self.store.get_release(release_id)
        return await self.store.edit_notes(release_id, edits)

    async def publish(self, release_id: str) -> PublishResult:
        """Distribute the stored notes to the currently configured targets."""
        record = await self.store.get_release(release_id)
        if record.notes is None:
            raise NotesNotReadyError(release_id)

        trace = RunTrace(f"{record.repo.full_name}@{record.tag_name} publish")
        trace.banner("starting")

        outcomes = await self._distribute(
            trace, release_id, record.repo, record.html_url or "", record.tag_name,
            documents_from_record(record.notes),
        )
        await self.store.set_status(release_id, ReleaseStatus.PUBLISHED)

        delivered = sum(1 for o in outcomes if o.success)
        return PublishResult(
            release_id=release_id,
            status=ReleaseStatus.PUBLISHED,
            targets=len(outcomes),
            delivered=delivered,
            failed=len(outcomes) - delivered,
        )

    # ---- Shared steps ----

    async def _build_documents(
        self,
        trace: RunTrace,
        repo: RepoRecord,
        tag_name: str,
    ) -> tuple[ChangeSet, GeneratedDocumentSet]:
        t = time.perf_counter()
        try:
            credential = self.cipher.decrypt(repo.user.access_token)
            change_set = await self.aggregator.aggregate(repo.owner, repo.name, tag_name, credential)
        except Exception as exc:
            trace.record("aggregate", t, "failed", failure_reason(exc))
            raise
        trace.record(
            "aggregate", t,
            detail=f"{len(change_set.commits)} commits, {len(change_set.pull_requests)} PRs",
        )

        t = time.perf_counter()
        try:
            documents = await self.generator.generate(change_set, style_for(repo))
        except Exception as exc:
            trace.record("generate", t, "failed", failure_reason(exc))
            raise
        trace.record("generate", t, detail=f"{documents.tokens_used} tokens ({documents.model})")
        return change_set, documents

    async def _distribute(
        self,
        trace: RunTrace,
        release_id: str,
        repo: RepoRecord,
        release_url: str,
        tag_name: str,
        documents: GeneratedDocumentSet,
    ) -> list[DistributionOutcome]:
        t = time.perf_counter()
        targets = build_targets(repo)
        summary = ReleaseSummary(repo_full_name=repo.full_name, tag_name=tag_name, release_url=release_url)
        outcomes = await self.distributor.distribute(summary, documents, targets)
        await self.store.add_outcomes(release_id, outcomes)

        failed = sum(1 for o in outcomes if not o.success)
        trace.record(
            "distribute", t,
            "ok" if not failed else "failed",
            f"{len(outcomes) - failed}/{len(outcomes)} delivered",
        )
        return outcomes
