"""
ShipLog — Distribution targets and outcomes.

A target is a tagged union over ``kind``. The distributor matches on the
concrete class, so adding a variant without a handler is a type error.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from shiplog.models.notes import Audience


class ChatTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["chat"] = "chat"
    provider: Literal["slack", "discord", "webhook"] = "webhook"
    webhook_url: str = Field(min_length=1)
    audience: Audience
    name: str | None = None


class EmailTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["email"] = "email"
    address: str = Field(min_length=3)
    audience: Audience


class HostedTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["hosted"] = "hosted"
    audience: Audience


DistributionTarget = Annotated[
    Union[ChatTarget, EmailTarget, HostedTarget],
    Field(discriminator="kind"),
]


class ReleaseSummary(BaseModel):
    repo_full_name: str
    tag_name: str
    release_url: str = ""


class DistributionOutcome(BaseModel):
    """Result of one delivery attempt. Stored append-only."""

    audience: Audience
    channel_kind: str  # chat:slack | chat:discord | chat:webhook | email | hosted
    destination: str | None = None
    success: bool
    error_detail: str | None = None
    response_code: int | None = None
    responded_at: datetime | None = None
