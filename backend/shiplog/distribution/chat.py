"""
ShipLog — Chat webhook delivery.

One POST per target. The JSON body depends on the provider:
  slack    — header / section / context blocks
  discord  — single embed
  webhook  — flat ``release.published`` event
"""

from datetime import datetime, timezone
from typing import Any

import httpx

from shiplog.models.distribution import ChatTarget, DistributionOutcome, ReleaseSummary
from shiplog.utils.markdown import truncate

SLACK_MAX_TEXT = 2900
DISCORD_MAX_TEXT = 4000
DISCORD_COLOR = 0x27AB83


def _now() -> datetime:
    return datetime.now(timezone.utc)


def slack_payload(summary: ReleaseSummary, notes: str) -> dict[str, Any]:
    return {
        "text": f"🚀 New Release: {summary.repo_full_name} {summary.tag_name}",
        "blocks": [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": f"🚀 {summary.tag_name} Released", "emoji": True},
            },
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": truncate(notes, SLACK_MAX_TEXT, "\n\n_[truncated - see full notes on GitHub]_"),
                },
            },
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": f"<{summary.release_url}|View on GitHub> • {summary.repo_full_name}",
                    }
                ],
            },
        ],
    }


def discord_payload(summary: ReleaseSummary, notes: str) -> dict[str, Any]:
    return {
        "embeds": [
            {
                "title": f"🚀 {summary.tag_name} Released",
                "description": truncate(notes, DISCORD_MAX_TEXT, "\n\n*[truncated]*"),
                "color": DISCORD_COLOR,
                "footer": {"text": summary.repo_full_name},
                "url": summary.release_url,
                "timestamp": _now().isoformat(),
            }
        ]
    }


def webhook_payload(summary: ReleaseSummary, notes: str, target: ChatTarget) -> dict[str, Any]:
    return {
        "event": "release.published",
        "repo": summary.repo_full_name,
        "tag": summary.tag_name,
        "url": summary.release_url,
        "audience": target.audience.value.lower(),
        "notes": notes,
        "timestamp": _now().isoformat(),
    }


def build_payload(target: ChatTarget, summary: ReleaseSummary, notes: str) -> dict[str, Any]:
    if target.provider == "slack":
        return slack_payload(summary, notes)
    if target.provider == "discord":
        return discord_payload(summary, notes)
    return webhook_payload(summary, notes, target)


async def send_chat(
    target: ChatTarget,
    summary: ReleaseSummary,
    notes: str,
    timeout: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> DistributionOutcome:
    """POST the provider payload. Transport errors propagate to the caller."""
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        resp = await client.post(target.webhook_url, json=build_payload(target, summary, notes))

    return DistributionOutcome(
        audience=target.audience,
        channel_kind=f"chat:{target.provider}",
        destination=target.webhook_url,
        success=resp.is_success,
        error_detail=None if resp.is_success else f"HTTP {resp.status_code}: {resp.text[:500]}",
        response_code=resp.status_code,
        responded_at=_now(),
    )
