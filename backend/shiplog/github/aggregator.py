"""
ShipLog — Diff aggregation.

Builds a ChangeSet for one release tag:

  release by tag → previous tag (from the newest page of releases)
  → commits between tags → pull requests referenced by those commits

Only the release lookups are mandatory. The compare range and the
individual PR fetches are best-effort context: their failures are
logged and skipped, never raised.
"""

from __future__ import annotations

import asyncio
import re
from datetime import datetime
from typing import Any

import httpx

from shiplog.errors import UpstreamFetchError
from shiplog.github.client import GitHubClient
from shiplog.models.release import ChangeSet, Commit, PullRequest, ReleaseMetadata
from shiplog.utils.logging import logger, step_timer

MERGE_COMMIT_PATTERN = re.compile(r"Merge pull request #(\d+)")
SQUASH_MERGE_PATTERN = re.compile(r"\(#(\d+)\)$")


def extract_pr_numbers(messages: list[str]) -> list[int]:
    """PR numbers referenced by merge or squash-merge commits, first-seen order, no repeats."""
    seen: dict[int, None] = {}
    for message in messages:
        merge_match = MERGE_COMMIT_PATTERN.search(message)
        if merge_match:
            seen.setdefault(int(merge_match.group(1)), None)

        squash_match = SQUASH_MERGE_PATTERN.search(message.rstrip())
        if squash_match:
            seen.setdefault(int(squash_match.group(1)), None)
    return list(seen)


def find_previous_tag(releases: list[dict[str, Any]], tag_name: str) -> str | None:
    """The release just older than ``tag_name`` in a newest-first page, if any."""
    tags = [r.get("tag_name") for r in releases]
    if tag_name not in tags:
        return None
    index = tags.index(tag_name)
    if index + 1 >= len(tags):
        return None
    return tags[index + 1]


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def to_release_metadata(release: dict[str, Any]) -> ReleaseMetadata:
    return ReleaseMetadata(
        github_id=release["id"],
        tag_name=release["tag_name"],
        name=release.get("name"),
        body=release.get("body"),
        html_url=release.get("html_url") or "",
        is_draft=bool(release.get("draft")),
        is_prerelease=bool(release.get("prerelease")),
        published_at=_parse_timestamp(release.get("published_at")),
    )


def to_commit(raw: dict[str, Any]) -> Commit:
    account = raw.get("author") or {}
    commit = raw.get("commit") or {}
    return Commit(
        id=raw["sha"],
        message=commit.get("message", ""),
        author_name=account.get("login") or (commit.get("author") or {}).get("name") or "unknown",
    )


def to_pull_request(raw: dict[str, Any]) -> PullRequest:
    return PullRequest(
        number=raw["number"],
        title=raw.get("title", ""),
        body=raw.get("body"),
        labels=[label["name"] for label in raw.get("labels", [])],
        author_login=(raw.get("user") or {}).get("login", "unknown"),
    )


class DiffAggregator:
    """Turns a release tag into a normalised ChangeSet."""

    def __init__(
        self,
        base_url: str = "https://api.github.com",
        timeout: float = 10.0,
        page_size: int = 10,
        max_pull_requests: int = 20,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.page_size = page_size
        self.max_pull_requests = max_pull_requests
        self.transport = transport

    def client_for(self, credential: str) -> GitHubClient:
        return GitHubClient(
            access_token=credential,
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
        )

    async def aggregate(self, owner: str, repo_name: str, tag_name: str, credential: str) -> ChangeSet:
        """Raises UpstreamFetchError when the release metadata cannot be fetched."""
        client = self.client_for(credential)

        with step_timer(f"Aggregate {owner}/{repo_name}@{tag_name}"):
            raw_release = await client.get_release_by_tag(owner, repo_name, tag_name)
            try:
                release = to_release_metadata(raw_release)
            except (KeyError, TypeError, ValueError) as exc:
                logger.error("  Release %s has an unexpected shape: %r", tag_name, exc)
                raise UpstreamFetchError(
                    f"release {owner}/{repo_name}@{tag_name}", 200, f"unexpected release payload: {exc!r}"
                ) from exc

            releases = await client.list_releases(owner, repo_name, per_page=self.page_size)
            previous_tag = find_previous_tag(releases, tag_name)

            commits = await self._fetch_commits(client, owner, repo_name, previous_tag, tag_name)

            numbers = extract_pr_numbers([c.message for c in commits])
            truncated = len(numbers) > self.max_pull_requests
            pull_requests = await self._fetch_pull_requests(
                client, owner, repo_name, numbers[: self.max_pull_requests]
            )

            logger.info(
                "  %s since %s: %d commits, %d PRs%s",
                tag_name, previous_tag or "(none)", len(commits), len(pull_requests),
                " (truncated)" if truncated else "",
            )

        return ChangeSet(
            release=release,
            previous_tag=previous_tag,
            commits=commits,
            pull_requests=pull_requests,
            pull_requests_truncated=truncated,
        )

    async def _fetch_commits(
        self,
        client: GitHubClient,
        owner: str,
        repo_name: str,
        previous_tag: str | None,
        tag_name: str,
    ) -> list[Commit]:
        if previous_tag is None:
            return []
        try:
            data = await client.compare(owner, repo_name, previous_tag, tag_name)
        except UpstreamFetchError as exc:
            logger.warning("  Commit range unavailable, continuing without commits: %s", exc.message)
            return []
        return [to_commit(c) for c in data.get("commits", [])]

    async def _fetch_pull_requests(
        self,
        client: GitHubClient,
        owner: str,
        repo_name: str,
        numbers: list[int],
    ) -> list[PullRequest]:
        async def fetch_one(number: int) -> PullRequest | None:
            try:
                return to_pull_request(await client.get_pull_request(owner, repo_name, number))
            except (UpstreamFetchError, KeyError) as exc:
                logger.warning("  Skipping PR #%d: %s", number, exc)
                return None

        results = await asyncio.gather(*(fetch_one(n) for n in numbers))
        return [pr for pr in results if pr is not None]
