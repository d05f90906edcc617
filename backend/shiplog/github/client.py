"""
ShipLog — GitHub REST API client.

Auth: ``Authorization: Bearer <token>`` on every request.

Key endpoints used:
  GET    /repos/{o}/{r}/releases/tags/{tag}   — release by tag
  GET    /repos/{o}/{r}/releases              — releases, newest first
  GET    /repos/{o}/{r}/compare/{base}...{head} — commits between tags
  GET    /repos/{o}/{r}/pulls/{n}              — single pull request
  POST   /repos/{o}/{r}/hooks                  — register release webhook
  DELETE /repos/{o}/{r}/hooks/{id}             — remove webhook
  GET    /user/repos                           — repositories for the token
"""

from __future__ import annotations

from typing import Any

import httpx

from shiplog.errors import UpstreamFetchError
from shiplog.utils.logging import logger

API_VERSION = "2022-11-28"


class GitHubClient:
    """Thin async wrapper around the GitHub REST API for one access token."""

    def __init__(
        self,
        access_token: str,
        base_url: str = "https://api.github.com",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        h = {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/vnd.github.v3+json",
            "X-GitHub-Api-Version": API_VERSION,
        }
        if extra:
            h.update(extra)
        return h

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def _get(self, resource: str, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET a JSON resource; any failure becomes UpstreamFetchError."""
        try:
            async with self._client() as client:
                resp = await client.get(f"{self.base_url}{path}", headers=self._headers(), params=params)
        except httpx.TransportError as exc:
            logger.error("  GitHub %s failed: %s", resource, exc)
            raise UpstreamFetchError(resource) from exc

        if not resp.is_success:
            logger.error("  GitHub %s returned %d", resource, resp.status_code)
            raise UpstreamFetchError(resource, resp.status_code, resp.text)
        try:
            return resp.json()
        except ValueError as exc:
            logger.error("  GitHub %s returned a non-JSON body", resource)
            raise UpstreamFetchError(resource, resp.status_code, resp.text) from exc

    # ---- Release data ----

    async def get_release_by_tag(self, owner: str, repo: str, tag_name: str) -> dict[str, Any]:
        return await self._get(
            f"release {owner}/{repo}@{tag_name}",
            f"/repos/{owner}/{repo}/releases/tags/{tag_name}",
        )

    async def list_releases(self, owner: str, repo: str, per_page: int = 10) -> list[dict[str, Any]]:
        """Most recent releases, newest first. Single page, not paginated."""
        return await self._get(
            f"releases for {owner}/{repo}",
            f"/repos/{owner}/{repo}/releases",
            params={"per_page": per_page},
        )

    async def compare(self, owner: str, repo: str, base: str, head: str) -> dict[str, Any]:
        return await self._get(
            f"compare {base}...{head}",
            f"/repos/{owner}/{repo}/compare/{base}...{head}",
        )

    async def get_pull_request(self, owner: str, repo: str, number: int) -> dict[str, Any]:
        return await self._get(
            f"pull request #{number}",
            f"/repos/{owner}/{repo}/pulls/{number}",
        )

    # ---- Subscription management ----

    async def create_webhook(self, owner: str, repo: str, webhook_url: str, secret: str) -> int:
        """Register a release-only webhook and return its id."""
        payload = {
            "name": "web",
            "config": {
                "url": webhook_url,
                "content_type": "json",
                "secret": secret,
                "insecure_ssl": "0",
            },
            "events": ["release"],
            "active": True,
        }
        async with self._client() as client:
            resp = await client.post(
                f"{self.base_url}/repos/{owner}/{repo}/hooks",
                headers=self._headers({"Content-Type": "application/json"}),
                json=payload,
            )
        if not resp.is_success:
            raise UpstreamFetchError(f"webhook for {owner}/{repo}", resp.status_code, resp.text)
        hook_id = resp.json()["id"]
        logger.info("  Registered webhook %s on %s/%s", hook_id, owner, repo)
        return hook_id

    async def delete_webhook(self, owner: str, repo: str, webhook_id: int) -> None:
        """Remove a webhook. A hook that is already gone is not an error."""
        async with self._client() as client:
            resp = await client.delete(
                f"{self.base_url}/repos/{owner}/{repo}/hooks/{webhook_id}",
                headers=self._headers(),
            )
        if not resp.is_success and resp.status_code != 404:
            raise UpstreamFetchError(f"webhook {webhook_id}", resp.status_code, resp.text)

    async def list_user_repos(self) -> list[dict[str, Any]]:
        repos = await self._get(
            "user repositories",
            "/user/repos",
            params={"per_page": 100, "sort": "updated"},
        )
        return [
            {
                "id": r["id"],
                "name": r["name"],
                "full_name": r["full_name"],
                "owner": r["owner"]["login"],
                "description": r.get("description"),
            }
            for r in repos
        ]

    async def get_authenticated_user(self) -> dict[str, Any]:
        return await self._get("authenticated user", "/user")


async def exchange_oauth_code(
    token_url: str,
    client_id: str,
    client_secret: str,
    code: str,
    redirect_uri: str = "",
    timeout: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """Trade an OAuth callback code for an access token."""
    payload = {"client_id": client_id, "client_secret": client_secret, "code": code}
    if redirect_uri:
        payload["redirect_uri"] = redirect_uri

    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        resp = await client.post(token_url, headers={"Accept": "application/json"}, data=payload)

    if not resp.is_success:
        raise UpstreamFetchError("OAuth access token", resp.status_code, resp.text)
    data = resp.json()
    token = data.get("access_token")
    if not token:
        # GitHub answers 200 with an "error" field for bad or reused codes
        raise UpstreamFetchError("OAuth access token", resp.status_code, data.get("error_description", ""))
    return token
