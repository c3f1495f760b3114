"""Data models for prospect storage."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ProspectStage(Enum):
    """Stage of a prospect in the pipeline."""

    IDENTIFIED = "identified"
    ANALYZING = "analyzing"
    ANALYZED = "analyzed"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    DISQUALIFIED = "disqualified"
    CONVERTED = "converted"


class CompanySize(Enum):
    """Company size category."""

    ENTERPRISE = "enterprise"
    LARGE = "large"
    MEDIUM = "medium"
    SMALL = "small"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "CompanySize":
        """Lenient lookup, anything unrecognized is UNKNOWN."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN


class AnalysisType(Enum):
    """Kinds of external analysis passes."""

    WEBSITE = "website"
    JOURNEY = "journey"
    OPPORTUNITY = "opportunity"
    ROI = "roi"


class AnalysisStatus(Enum):
    """Completion status of an analysis pass."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"


class ServiceTier(Enum):
    """Service package tiers an opportunity can map to."""

    BASIC = "basic_2_5k"
    PROFESSIONAL = "professional_7_5k"
    ENTERPRISE = "enterprise_15k"


class EventKind(Enum):
    """Email activity kinds."""

    SENT = "sent"
    DELIVERED = "delivered"
    OPENED = "opened"
    CLICKED = "clicked"
    REPLIED = "replied"
    BOUNCED = "bounced"
    UNSUBSCRIBED = "unsubscribed"
    COMPLAINED = "complained"


class Temperature(Enum):
    """Coarse engagement category."""

    COLD = "cold"
    WARM = "warm"
    HOT = "hot"
    INTERESTED = "interested"
    QUALIFIED = "qualified"

    @property
    def rank(self) -> int:
        return _TEMPERATURE_RANK[self]


_TEMPERATURE_RANK = {
    Temperature.COLD: 0,
    Temperature.WARM: 1,
    Temperature.HOT: 2,
    Temperature.INTERESTED: 3,
    Temperature.QUALIFIED: 4,
}


class LeadStatus(Enum):
    """Outreach status of a prospect's integration."""

    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    UNSUBSCRIBED = "unsubscribed"
    BOUNCED = "bounced"
    COMPLAINED = "complained"
    REPLIED = "replied"


@dataclass
class Prospect:
    """A candidate business being evaluated for automation services."""

    id: str
    tenant_id: str
    name: str = ""
    industry: str = ""
    company_size: CompanySize = CompanySize.UNKNOWN
    revenue_band: Optional[str] = None
    website: Optional[str] = None
    stage: ProspectStage = ProspectStage.IDENTIFIED
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def display_name(self) -> str:
        """Get best available name for display."""
        return self.name or self.website or f"Prospect {self.id}"


@dataclass(frozen=True)
class AnalysisSnapshot:
    """Versioned, immutable result of an analysis pass."""

    prospect_id: str
    analysis_type: AnalysisType
    version: int
    status: AnalysisStatus = AnalysisStatus.COMPLETED
    content_quality_score: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def counts_as_complete(self) -> bool:
        """Website passes must finish; other passes count once present."""
        if self.analysis_type is AnalysisType.WEBSITE:
            return self.status is AnalysisStatus.COMPLETED
        return self.status not in (AnalysisStatus.FAILED, AnalysisStatus.TIMEOUT)


@dataclass(frozen=True)
class OpportunityRecord:
    """An identified automation opportunity for a prospect."""

    prospect_id: str
    priority_score: int
    process_name: str = ""
    service_tier: Optional[ServiceTier] = None
    annual_savings: float = 0.0
    id: Optional[int] = None


@dataclass(frozen=True)
class EngagementEvent:
    """An immutable email activity record."""

    prospect_id: str
    integration_id: str
    external_id: str
    kind: EventKind
    timestamp: datetime
    reply_text: Optional[str] = None
    reply_sentiment: Optional[str] = None
    reply_intent: Optional[str] = None
    needs_human_review: bool = False
    received_at: datetime = field(default_factory=utcnow)
    sequence: Optional[int] = None


@dataclass
class ScoreRecord:
    """Derived scores and engagement state for a prospect."""

    prospect_id: str
    lead_score: int = 0
    engagement_score: int = 0
    temperature: Temperature = Temperature.COLD
    lead_status: LeadStatus = LeadStatus.ACTIVE
    computed_at: datetime = field(default_factory=utcnow)

    def same_scores(self, other: Optional["ScoreRecord"]) -> bool:
        """Compare everything except the computation time."""
        if other is None:
            return False
        return (
            self.lead_score == other.lead_score
            and self.engagement_score == other.engagement_score
            and self.temperature == other.temperature
            and self.lead_status == other.lead_status
        )


@dataclass(frozen=True)
class CampaignAssignment:
    """Resolved outreach treatment for a prospect."""

    campaign_id: str
    sequence_id: str
    delay_hours: float
    priority: str
    reason: str
    tier: str = "cold"
    assigned_at: datetime = field(default_factory=utcnow, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "campaign_id": self.campaign_id,
            "sequence_id": self.sequence_id,
            "delay_hours": self.delay_hours,
            "priority": self.priority,
            "reason": self.reason,
            "tier": self.tier,
        }

    def same_route(self, other: Optional["CampaignAssignment"]) -> bool:
        """Same campaign, sequence, delay, priority and tier; the reason may differ."""
        if other is None:
            return False
        return (self.campaign_id, self.sequence_id, self.delay_hours, self.priority, self.tier) == (
            other.campaign_id, other.sequence_id, other.delay_hours, other.priority, other.tier
        )


@dataclass(frozen=True)
class StageTransition:
    """Record of a prospect stage change."""

    prospect_id: str
    from_stage: ProspectStage
    to_stage: ProspectStage
    trigger: str
    occurred_at: datetime = field(default_factory=utcnow)
