"""
ShipLog — Release fan-out.

Sends the audience-appropriate document to every target concurrently.
The outcome list always matches the target list in length and order;
delivery failures are recorded, never raised.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import assert_never

import httpx

from shiplog.core.config import EmailConfig
from shiplog.distribution.chat import send_chat
from shiplog.distribution.email import send_email
from shiplog.models.distribution import (
    ChatTarget,
    DistributionOutcome,
    DistributionTarget,
    EmailTarget,
    HostedTarget,
    ReleaseSummary,
)
from shiplog.models.notes import Audience, GeneratedDocumentSet
from shiplog.utils.logging import logger, step_timer


def get_notes_for_audience(documents: GeneratedDocumentSet, audience: Audience) -> str:
    match audience:
        case Audience.CUSTOMER:
            return documents.customer
        case Audience.DEVELOPER:
            return documents.developer
        case Audience.STAKEHOLDER:
            return documents.stakeholder
        case _:
            assert_never(audience)


def channel_kind(target: DistributionTarget) -> str:
    match target:
        case ChatTarget():
            return f"chat:{target.provider}"
        case EmailTarget():
            return "email"
        case HostedTarget():
            return "hosted"
        case _:
            assert_never(target)


def destination_of(target: DistributionTarget) -> str | None:
    match target:
        case ChatTarget():
            return target.webhook_url
        case EmailTarget():
            return target.address
        case HostedTarget():
            return None
        case _:
            assert_never(target)


class Distributor:
    """Concurrent delivery to chat webhooks, email and the hosted changelog."""

    def __init__(
        self,
        http_timeout: float = 10.0,
        email_config: EmailConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.http_timeout = http_timeout
        self.email_config = email_config or EmailConfig(api_key="", base_url="https://api.resend.com", sender="")
        self.transport = transport

    async def _deliver(
        self,
        target: DistributionTarget,
        summary: ReleaseSummary,
        documents: GeneratedDocumentSet,
    ) -> DistributionOutcome:
        notes = get_notes_for_audience(documents, target.audience)

        match target:
            case ChatTarget():
                return await send_chat(target, summary, notes, self.http_timeout, self.transport)
            case EmailTarget():
                return await send_email(
                    target, summary, notes, self.email_config, self.http_timeout, self.transport
                )
            case HostedTarget():
                return DistributionOutcome(
                    audience=target.audience,
                    channel_kind="hosted",
                    success=True,
                    responded_at=datetime.now(timezone.utc),
                )
            case _:
                assert_never(target)

    async def distribute(
        self,
        summary: ReleaseSummary,
        documents: GeneratedDocumentSet,
        targets: list[DistributionTarget],
    ) -> list[DistributionOutcome]:
        with step_timer(f"Distribute {summary.tag_name} to {len(targets)} targets"):
            results = await asyncio.gather(
                *(self._deliver(t, summary, documents) for t in targets),
                return_exceptions=True,
            )

            outcomes: list[DistributionOutcome] = []
            for target, result in zip(targets, results):
                if isinstance(result, BaseException):
                    logger.warning("  ✗ %s %s: %s", channel_kind(target), destination_of(target), result)
                    result = DistributionOutcome(
                        audience=target.audience,
                        channel_kind=channel_kind(target),
                        destination=destination_of(target),
                        success=False,
                        error_detail=str(result) or type(result).__name__,
                        responded_at=datetime.now(timezone.utc),
                    )
                elif not result.success:
                    logger.warning("  ✗ %s %s: %s", result.channel_kind, result.destination, result.error_detail)
                outcomes.append(result)

            delivered = sum(1 for o in outcomes if o.success)
            logger.info("  Delivered %d/%d", delivered, len(outcomes))
        return outcomes
