"""Integration tests for the release orchestrator with a fake GitHub and LLM."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from shiplog.db.tables import DistributionRecord, NotesRecord, ReleaseRecord
from shiplog.errors import (
    GenerationError, InvalidSignatureError, MalformedPayloadError,
    NotesNotReadyError, ReleaseNotFoundError, UpstreamFetchError,
)
from shiplog.models import Audience, ReleaseEvent, ReleaseStatus


async def count(sessions, table) -> int:
    async with sessions() as session:
        return (await session.execute(select(func.count()).select_from(table))).scalar_one()


@pytest.mark.asyncio
class TestWebhookPath:
    async def test_end_to_end_release(self, orchestrator, repo, store, github, release_webhook):
        body, signature = release_webhook()
        result = await orchestrator.handle_webhook(body, signature, "release")

        assert result["status"] == "processed"
        assert result["repo"] == "acme/widgets"
        assert result["release"] == "v1.2.0"
        assert result["targets"] == 5
        assert result["delivered"] == 4
        assert result["failed"] == 1
        assert result["tokens_used"] == 30
        assert [t["step"] for t in result["timings"]] == ["claim", "aggregate", "generate", "persist", "distribute"]

        release = await store.get_release(result["release_id"])
        assert release.status == ReleaseStatus.PUBLISHED.value
        assert release.published_at is not None
        assert release.processed_at is not None
        assert release.html_url.endswith("/v1.2.0")
        assert release.notes.customer.startswith("## customer notes")
        assert release.notes.model == "gemini-test"

        outcomes = release.distributions
        assert len(outcomes) == 5
        assert sum(o.success for o in outcomes) == 4
        failed = [o for o in outcomes if not o.success]
        assert failed[0].channel_kind == "chat:webhook"
        assert "500" in failed[0].error_detail
        assert sorted(o.audience for o in outcomes if o.channel_kind == "hosted") == [
            "CUSTOMER", "DEVELOPER", "STAKEHOLDER",
        ]

    async def test_change_set_reaches_generator(self, orchestrator, repo, provider, release_webhook):
        body, signature = release_webhook()
        await orchestrator.handle_webhook(body, signature, "release")

        assert len(provider.calls) == 3
        user = provider.calls[0][1].content
        assert "v1.1.0" in user
        assert '"number": 42' in user
        assert "Planned: export, import" in user

    async def test_missing_signature_writes_nothing(self, orchestrator, repo, sessions, release_webhook):
        body, _ = release_webhook()
        with pytest.raises(InvalidSignatureError):
            await orchestrator.handle_webhook(body, None, "release")
        assert await count(sessions, ReleaseRecord) == 0
        assert await count(sessions, DistributionRecord) == 0

    async def test_wrong_secret_rejected(self, orchestrator, repo, release_webhook):
        body, signature = release_webhook(secret="not-the-secret")
        with pytest.raises(InvalidSignatureError):
            await orchestrator.handle_webhook(body, signature, "release")

    async def test_repo_secret_overrides_global(self, orchestrator, repo, sessions, release_webhook):
        async with sessions() as session, session.begin():
            record = await session.get(type(repo), repo.id)
            record.webhook_secret = "per-repo-secret"

        body, global_sig = release_webhook()
        with pytest.raises(InvalidSignatureError):
            await orchestrator.handle_webhook(body, global_sig, "release")

        body, repo_sig = release_webhook(secret="per-repo-secret")
        result = await orchestrator.handle_webhook(body, repo_sig, "release")
        assert result["status"] == "processed"

    async def test_unknown_repo_ignored_without_writes(self, orchestrator, repo, sessions, release_webhook):
        body, signature = release_webhook(full_name="acme/unknown")
        result = await orchestrator.handle_webhook(body, signature, "release")
        assert result == {"status": "ignored", "reason": "repo_not_connected"}
        assert await count(sessions, ReleaseRecord) == 0

    async def test_paused_repo_ignored(self, orchestrator, repo, sessions, release_webhook):
        async with sessions() as session, session.begin():
            (await session.get(type(repo), repo.id)).status = "PAUSED"
        body, signature = release_webhook()
        result = await orchestrator.handle_webhook(body, signature, "release")
        assert result["reason"] == "repo_not_connected"

    async def test_other_events_ignored(self, orchestrator, repo, sessions, release_webhook):
        body, signature = release_webhook()
        assert await orchestrator.handle_webhook(body, signature, "push") == {"status": "ignored", "event": "push"}

        body, signature = release_webhook(action="created")
        result = await orchestrator.handle_webhook(body, signature, "release")
        assert result["status"] == "ignored"
        assert await count(sessions, ReleaseRecord) == 0

    async def test_malformed_payload(self, orchestrator, repo):
        from shiplog.security.signature import sign

        body = b'{"action": "published", "release": {}}'
        with pytest.raises(MalformedPayloadError):
            await orchestrator.handle_webhook(body, sign(body, "whsec-test"), "release")

        body = b"not json"
        with pytest.raises(MalformedPayloadError):
            await orchestrator.handle_webhook(body, sign(body, "whsec-test"), "release")


@pytest.mark.asyncio
class TestIdempotence:
    async def test_second_delivery_is_duplicate(self, orchestrator, repo, sessions, release_webhook):
        body, signature = release_webhook()
        first = await orchestrator.handle_webhook(body, signature, "release")
        second = await orchestrator.handle_webhook(body, signature, "release")

        assert first["status"] == "processed"
        assert second["status"] == "duplicate"
        assert second["release_id"] == first["release_id"]
        assert await count(sessions, ReleaseRecord) == 1
        assert await count(sessions, DistributionRecord) == 5

    async def test_precheck_race_caught_by_constraint(self, orchestrator, repo, store, sessions):
        event = ReleaseEvent(repo_full_name="acme/widgets", tag_name="v1.2.0", action="published")
        await orchestrator.process_release(repo, event)

        # The pre-check misses the row written by a concurrent delivery
        with patch.object(store, "find_release", AsyncMock(return_value=None)):
            result = await orchestrator.process_release(repo, event)

        assert result.status == "duplicate"
        assert await count(sessions, ReleaseRecord) == 1
        assert await count(sessions, DistributionRecord) == 5

    async def test_concurrent_double_delivery(self, orchestrator, repo, sessions, release_webhook):
        body, signature = release_webhook()
        results = await asyncio.gather(
            orchestrator.handle_webhook(body, signature, "release"),
            orchestrator.handle_webhook(body, signature, "release"),
        )

        assert sorted(r["status"] for r in results) == ["duplicate", "processed"]
        assert await count(sessions, ReleaseRecord) == 1
        assert await count(sessions, NotesRecord) == 1
        assert await count(sessions, DistributionRecord) == 5


@pytest.mark.asyncio
class TestFailures:
    async def test_generation_failure_marks_failed(self, orchestrator, repo, store, provider, sessions):
        provider.fail_tags.add("v1.2.0")
        event = ReleaseEvent(repo_full_name="acme/widgets", tag_name="v1.2.0", action="published")
        with pytest.raises(GenerationError):
            await orchestrator.process_release(repo, event)

        release = await store.find_release(repo.id, "v1.2.0")
        assert release.status == ReleaseStatus.FAILED.value
        assert "model overloaded" in release.error_message
        assert await count(sessions, DistributionRecord) == 0

    async def test_missing_release_marks_failed(self, orchestrator, repo, store, github):
        github.missing_tags.add("v1.2.0")
        event = ReleaseEvent(repo_full_name="acme/widgets", tag_name="v1.2.0", action="published")
        with pytest.raises(UpstreamFetchError):
            await orchestrator.process_release(repo, event)

        release = await store.find_release(repo.id, "v1.2.0")
        assert release.status == ReleaseStatus.FAILED.value
        assert "404" in release.error_message

    async def test_pr_failure_does_not_fail_run(self, orchestrator, repo, github):
        github.failing_pulls.add(42)
        event = ReleaseEvent(repo_full_name="acme/widgets", tag_name="v1.2.0", action="published")
        result = await orchestrator.process_release(repo, event)
        assert result.status == "processed"

    async def test_non_json_release_marks_failed(self, orchestrator, repo, store, github):
        github.broken_tags["v1.2.0"] = "<html>unicorn</html>"
        event = ReleaseEvent(repo_full_name="acme/widgets", tag_name="v1.2.0", action="published")
        with pytest.raises(UpstreamFetchError):
            await orchestrator.process_release(repo, event)

        release = await store.find_release(repo.id, "v1.2.0")
        assert release.status == ReleaseStatus.FAILED.value
        assert "v1.2.0" in release.error_message

    async def test_unexpected_error_marks_failed(self, orchestrator, repo, store):
        event = ReleaseEvent(repo_full_name="acme/widgets", tag_name="v1.2.0", action="published")
        with patch.object(store, "save_notes", AsyncMock(side_effect=RuntimeError("disk full"))):
            with pytest.raises(RuntimeError):
                await orchestrator.process_release(repo, event)

        release = await store.find_release(repo.id, "v1.2.0")
        assert release.status == ReleaseStatus.FAILED.value
        assert release.error_message == "RuntimeError: disk full"

    async def test_failed_release_is_not_stuck(self, orchestrator, repo, store, github):
        github.broken_tags["v1.2.0"] = "<html>unicorn</html>"
        event = ReleaseEvent(repo_full_name="acme/widgets", tag_name="v1.2.0", action="published")
        with pytest.raises(UpstreamFetchError):
            await orchestrator.process_release(repo, event)

        github.broken_tags.clear()
        release = await store.find_release(repo.id, "v1.2.0")
        result = await orchestrator.regenerate(release.id)
        assert result.status == ReleaseStatus.READY


@pytest.mark.asyncio
class TestRegeneration:
    async def _published(self, orchestrator, repo) -> str:
        event = ReleaseEvent(repo_full_name="acme/widgets", tag_name="v1.2.0", action="published")
        return (await orchestrator.process_release(repo, event)).release_id

    async def test_preserves_edited_audiences(self, orchestrator, repo, store, provider):
        release_id = await self._published(orchestrator, repo)
        await orchestrator.edit_notes(release_id, {Audience.DEVELOPER: "Hand-written dev notes"})

        provider.version = 2
        result = await orchestrator.regenerate(release_id)

        assert result.status == ReleaseStatus.PUBLISHED
        assert result.preserved == ["DEVELOPER"]
        assert result.regenerated == ["CUSTOMER", "STAKEHOLDER"]

        notes = (await store.get_release(release_id)).notes
        assert notes.developer == "Hand-written dev notes"
        assert notes.developer_edited is True
        assert "v2" in notes.customer
        assert notes.customer_edited is False

    async def test_force_overwrites_everything(self, orchestrator, repo, store, provider):
        release_id = await self._published(orchestrator, repo)
        await orchestrator.edit_notes(release_id, {
            Audience.CUSTOMER: "mine", Audience.STAKEHOLDER: "also mine",
        })

        provider.version = 2
        result = await orchestrator.regenerate(release_id, force=True)
        assert result.preserved == []

        notes = (await store.get_release(release_id)).notes
        assert not (notes.customer_edited or notes.developer_edited or notes.stakeholder_edited)
        assert "v2" in notes.customer and "v2" in notes.stakeholder

    async def test_failed_release_recovers_to_ready(self, orchestrator, repo, store, provider):
        provider.fail_tags.add("v1.2.0")
        event = ReleaseEvent(repo_full_name="acme/widgets", tag_name="v1.2.0", action="published")
        with pytest.raises(GenerationError):
            await orchestrator.process_release(repo, event)
        release = await store.find_release(repo.id, "v1.2.0")

        provider.fail_tags.clear()
        result = await orchestrator.regenerate(release.id)
        assert result.status == ReleaseStatus.READY
        refreshed = await store.get_release(release.id)
        assert refreshed.status == "READY"
        assert refreshed.error_message is None

    async def test_failure_keeps_published_status(self, orchestrator, repo, store, provider):
        release_id = await self._published(orchestrator, repo)
        provider.fail_tags.add("v1.2.0")
        with pytest.raises(GenerationError):
            await orchestrator.regenerate(release_id)

        release = await store.get_release(release_id)
        assert release.status == "PUBLISHED"
        assert "model overloaded" in release.error_message
        assert release.notes.customer.startswith("## customer notes v1")

    async def test_unexpected_error_restores_status(self, orchestrator, repo, store):
        release_id = await self._published(orchestrator, repo)
        with patch.object(orchestrator.aggregator, "aggregate", AsyncMock(side_effect=ValueError("bad range"))):
            with pytest.raises(ValueError):
                await orchestrator.regenerate(release_id)

        release = await store.get_release(release_id)
        assert release.status == "PUBLISHED"
        assert release.error_message == "ValueError: bad range"

    async def test_unknown_release(self, orchestrator):
        with pytest.raises(ReleaseNotFoundError):
            await orchestrator.regenerate("missing")


@pytest.mark.asyncio
class TestBackfill:
    async def test_continues_past_failing_tag(self, orchestrator, repo, store, github, provider):
        github.releases.clear()
        for tag in ["v5.0.0", "v4.0.0", "v3.0.0", "v2.0.0", "v1.0.0"]:
            github.add_release(tag)
        provider.fail_tags.add("v3.0.0")

        result = await orchestrator.backfill(repo.id, limit=5)

        assert result.status == "completed"
        assert result.imported == 4
        assert result.total_found == 5
        assert len(result.errors) == 1
        assert result.errors[0].startswith("v3.0.0: ")

        for tag in ["v5.0.0", "v4.0.0", "v2.0.0", "v1.0.0"]:
            release = await store.get_release((await store.find_release(repo.id, tag)).id)
            assert release.status == "PUBLISHED"
            assert release.notes is not None
            assert len(release.distributions) == 1
            assert release.distributions[0].channel_kind == "hosted"
            assert release.distributions[0].error_detail == "Imported via backfill"
        assert await store.find_release(repo.id, "v3.0.0") is None

    async def test_malformed_release_does_not_stop_batch(self, orchestrator, repo, store, github):
        github.releases.clear()
        for tag in ["v3.0.0", "v2.0.0", "v1.0.0"]:
            github.add_release(tag)
        github.broken_tags["v2.0.0"] = {"tag_name": "v2.0.0"}

        result = await orchestrator.backfill(repo.id, limit=3)

        assert result.imported == 2
        assert len(result.errors) == 1
        assert result.errors[0].startswith("v2.0.0: ")
        assert await store.find_release(repo.id, "v1.0.0") is not None
        assert await store.find_release(repo.id, "v2.0.0") is None

    async def test_unexpected_error_does_not_stop_batch(self, orchestrator, repo, store, github):
        real_aggregate = orchestrator.aggregator.aggregate

        async def aggregate(owner, name, tag_name, credential):
            if tag_name == "v1.1.0":
                raise RuntimeError("connection reset")
            return await real_aggregate(owner, name, tag_name, credential)

        with patch.object(orchestrator.aggregator, "aggregate", side_effect=aggregate):
            result = await orchestrator.backfill(repo.id, limit=3)

        assert result.imported == 2
        assert result.errors == ["v1.1.0: RuntimeError: connection reset"]
        assert await store.find_release(repo.id, "v1.0.0") is not None

    async def test_skips_existing_and_respects_limit(self, orchestrator, repo, store, github):
        event = ReleaseEvent(repo_full_name="acme/widgets", tag_name="v1.2.0", action="published")
        await orchestrator.process_release(repo, event)

        result = await orchestrator.backfill(repo.id, limit=2)

        assert result.total_found == 3
        assert result.skipped == 1
        assert result.imported == 1
        assert await store.find_release(repo.id, "v1.1.0") is not None
        assert await store.find_release(repo.id, "v1.0.0") is None

    async def test_unknown_repo(self, orchestrator):
        from shiplog.errors import RepoNotFoundError

        with pytest.raises(RepoNotFoundError):
            await orchestrator.backfill("missing")


@pytest.mark.asyncio
class TestPublish:
    async def test_appends_new_outcomes(self, orchestrator, repo, store):
        event = ReleaseEvent(repo_full_name="acme/widgets", tag_name="v1.2.0", action="published")
        release_id = (await orchestrator.process_release(repo, event)).release_id

        result = await orchestrator.publish(release_id)

        assert result.status == ReleaseStatus.PUBLISHED
        assert result.targets == 5
        assert result.delivered == 4
        assert len((await store.get_release(release_id)).distributions) == 10

    async def test_requires_notes(self, orchestrator, repo, store):
        release = await store.create_release(repo, "v1.2.0")
        with pytest.raises(NotesNotReadyError):
            await orchestrator.publish(release.id)
