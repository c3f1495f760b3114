"""Pydantic models for inbound engine payloads."""

import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .storage.models import EventKind, as_utc

MAX_REPLY_LENGTH = 10000


class EngagementEventPayload(BaseModel):
    """An email activity as delivered by an outreach platform."""

    prospect_id: str = Field(..., min_length=1)
    kind: EventKind = Field(
        ...,
        description="One of: sent, delivered, opened, clicked, replied, bounced, unsubscribed, complained",
    )
    timestamp: datetime
    integration_id: str = "default"
    external_id: Optional[str] = None
    reply_text: Optional[str] = None

    @field_validator("prospect_id", "integration_id", "external_id", mode="before")
    @classmethod
    def strip_ids(cls, value):
        if isinstance(value, str):
            value = value.strip()
        return value

    @field_validator("kind", mode="before")
    @classmethod
    def normalize_kind(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("timestamp")
    @classmethod
    def to_utc(cls, value: datetime) -> datetime:
        """Naive timestamps are taken as UTC."""
        return as_utc(value)

    @field_validator("reply_text")
    @classmethod
    def sanitize_reply(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        # Strip HTML and normalize whitespace
        value = re.sub(r"<[^>]+>", " ", value)
        value = re.sub(r"\s+", " ", value).strip()
        return value[:MAX_REPLY_LENGTH] or None


class ProspectPayload(BaseModel):
    """A company record from the prospecting pipeline."""

    id: str = Field(..., min_length=1)
    name: str = ""
    industry: str = ""
    company_size: str = "unknown"
    revenue_band: Optional[str] = None
    website: Optional[str] = None


class OpportunityPayload(BaseModel):
    """An automation opportunity found by analysis."""

    priority_score: int = Field(..., ge=1, le=100)
    process_name: str = ""
    service_tier: Optional[str] = None
    annual_savings: float = Field(0.0, ge=0)
