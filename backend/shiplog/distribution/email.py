"""
ShipLog — Email delivery through the Resend API.

  POST {RESEND_BASE_URL}/emails
  Authorization: Bearer <RESEND_API_KEY>
"""

from datetime import datetime, timezone

import httpx

from shiplog.core.config import EmailConfig
from shiplog.models.distribution import DistributionOutcome, EmailTarget, ReleaseSummary
from shiplog.models.notes import Audience
from shiplog.utils.markdown import render_email

AUDIENCE_LABELS = {
    Audience.CUSTOMER: "Release Notes",
    Audience.DEVELOPER: "Developer Notes",
    Audience.STAKEHOLDER: "Stakeholder Brief",
}


def email_subject(summary: ReleaseSummary, audience: Audience) -> str:
    return f"[{summary.repo_full_name}] {summary.tag_name} - {AUDIENCE_LABELS[audience]}"


async def send_email(
    target: EmailTarget,
    summary: ReleaseSummary,
    notes: str,
    config: EmailConfig,
    timeout: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> DistributionOutcome:
    if not config.api_key:
        return DistributionOutcome(
            audience=target.audience,
            channel_kind="email",
            destination=target.address,
            success=False,
            error_detail="RESEND_API_KEY not configured",
            responded_at=datetime.now(timezone.utc),
        )

    message = {
        "from": config.sender,
        "to": target.address,
        "subject": email_subject(summary, target.audience),
        "html": render_email(notes, summary.repo_full_name, summary.tag_name, summary.release_url),
    }
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        resp = await client.post(
            f"{config.base_url.rstrip('/')}/emails",
            headers={"Authorization": f"Bearer {config.api_key}"},
            json=message,
        )

    return DistributionOutcome(
        audience=target.audience,
        channel_kind="email",
        destination=target.address,
        success=resp.is_success,
        error_detail=None if resp.is_success else f"HTTP {resp.status_code}: {resp.text[:500]}",
        response_code=resp.status_code,
        responded_at=datetime.now(timezone.utc),
    )
