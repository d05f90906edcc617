"""
ShipLog — Generated note contracts.
"""

from __future__ import annotations

import enum

from pydantic import BaseModel, Field


class Audience(str, enum.Enum):
    CUSTOMER = "CUSTOMER"
    DEVELOPER = "DEVELOPER"
    STAKEHOLDER = "STAKEHOLDER"


class StyleConfig(BaseModel):
    """Per-repository voice settings fed into every prompt."""

    product_name: str
    company_name: str
    customer_tone: str = "friendly, clear, and concise"


class GeneratedDocumentSet(BaseModel):
    """Three audience documents from a single generation run."""

    customer: str = Field(min_length=1)
    developer: str = Field(min_length=1)
    stakeholder: str = Field(min_length=1)
    tokens_used: int = Field(default=0, ge=0)
    model: str
