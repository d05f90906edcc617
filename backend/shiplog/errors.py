"""
ShipLog — Structured error catalog.

Every error has a code, human message, and suggested fix.
No raw exceptions leak to webhook callers.
"""

from __future__ import annotations

from typing import Any


class ShipLogError(Exception):
    """Base error with structured code + suggestion."""

    status_code = 500

    def __init__(self, code: str, message: str, suggestion: str = "", detail: Any = None):
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.detail = detail
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "error_code": self.code,
            "message": self.message,
        }
        if self.suggestion:
            d["suggestion"] = self.suggestion
        if self.detail:
            d["detail"] = self.detail
        return d


class InvalidSignatureError(ShipLogError):
    status_code = 401

    def __init__(self):
        super().__init__(
            code="INVALID_SIGNATURE",
            message="Invalid signature",
            suggestion="Check that the webhook secret configured on GitHub matches the repository subscription.",
        )


class MalformedPayloadError(ShipLogError):
    status_code = 400

    def __init__(self, reason: str):
        super().__init__(
            code="MALFORMED_PAYLOAD",
            message=f"Malformed webhook payload: {reason}",
            suggestion="Release events must carry action, release.tag_name and repository.full_name.",
        )


class UpstreamFetchError(ShipLogError):
    status_code = 502

    def __init__(self, resource: str, status: int | None = None, body: str = ""):
        status_part = f"HTTP {status}" if status is not None else "network error"
        super().__init__(
            code="UPSTREAM_FETCH_FAILED",
            message=f"Failed to fetch {resource}: {status_part}",
            suggestion="Check the repository access token and that the release still exists, then regenerate.",
            detail=body[:500] if body else None,
        )


class GenerationError(ShipLogError):
    status_code = 502

    def __init__(self, message: str, audience: str | None = None):
        prefix = f"{audience} notes: " if audience else ""
        super().__init__(
            code="GENERATION_FAILED",
            message=f"Note generation failed: {prefix}{message}",
            suggestion="Check the GOOGLE_API_KEY and model quota, then regenerate the release.",
        )


class ReleaseNotFoundError(ShipLogError):
    status_code = 404

    def __init__(self, release_id: str):
        super().__init__(
            code="RELEASE_NOT_FOUND",
            message=f"Release not found: {release_id}",
        )


class RepoNotFoundError(ShipLogError):
    status_code = 404

    def __init__(self, repo_id: str):
        super().__init__(
            code="REPO_NOT_FOUND",
            message=f"Repository not found: {repo_id}",
            suggestion="Connect the repository before importing releases.",
        )


class CredentialError(ShipLogError):
    def __init__(self, message: str):
        super().__init__(
            code="CREDENTIAL_INVALID",
            message=f"Stored credential could not be used: {message}",
            suggestion="Reconnect the GitHub account so a fresh access token is stored.",
        )


class InvalidOAuthStateError(ShipLogError):
    status_code = 400

    def __init__(self):
        super().__init__(
            code="OAUTH_STATE_INVALID",
            message="OAuth state is missing, expired or already used",
            suggestion="Restart the GitHub sign-in flow.",
        )


class NotesNotReadyError(ShipLogError):
    status_code = 409

    def __init__(self, release_id: str):
        super().__init__(
            code="NOTES_NOT_READY",
            message=f"Release {release_id} has no generated notes yet",
            suggestion="Regenerate the release before publishing it.",
        )


class DuplicateReleaseError(ShipLogError):
    status_code = 409

    def __init__(self, repo: str, tag_name: str):
        super().__init__(
            code="DUPLICATE_RELEASE",
            message=f"Release {tag_name} already exists for {repo}",
        )
