"""Campaign assignment - maps scores and context to an outreach treatment."""

import logging
import math
from dataclasses import dataclass
from typing import Any, List, Optional

from .config import EngineConfig
from .scorer import round_half_up
from ..storage.models import CampaignAssignment, CompanySize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CampaignTier:
    """One row of the assignment decision table."""

    name: str
    campaign: str
    sequence_id: str
    delay_hours: float
    priority: str


ENTERPRISE_TIER = CampaignTier("enterprise", "enterprise_vip", "seq_enterprise_executive", 0.5, "high")
PROFESSIONAL_TIER = CampaignTier("professional", "professional_priority", "seq_professional_priority", 1, "medium")
WARM_TIER = CampaignTier("warm", "warm_prospects", "seq_warm_nurture", 4, "medium")
COLD_TIER = CampaignTier("cold", "cold_outreach", "seq_cold_education", 24, "low")


@dataclass(frozen=True)
class AssignmentInput:
    """Everything the resolver looks at."""

    lead_score: int = 0
    roi_potential: float = 0.0
    industry: str = ""
    company_size: CompanySize = CompanySize.UNKNOWN
    opportunity_count: int = 0


def _as_number(value: Any, default: float = 0.0) -> float:
    try:
        number = float(value) if value is not None else default
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


class AssignmentResolver:
    """Deterministic decision table for campaign assignment.

    Tiers are evaluated top-down and the first match wins. Regulated
    industries and large companies then raise the delay.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    def select_tier(self, data: AssignmentInput) -> CampaignTier:
        """Pick the first tier whose condition matches."""
        cfg = self.config
        if data.lead_score >= cfg.enterprise_score or data.roi_potential > cfg.enterprise_roi:
            return ENTERPRISE_TIER
        if data.lead_score >= cfg.professional_score or (
            data.roi_potential > cfg.professional_roi
            and data.opportunity_count >= cfg.professional_min_opportunities
        ):
            return PROFESSIONAL_TIER
        if data.lead_score >= cfg.warm_score or data.opportunity_count >= cfg.warm_min_opportunities:
            return WARM_TIER
        return COLD_TIER

    def is_regulated(self, industry: str) -> bool:
        """Industry contains a regulated pattern (legal, healthcare, financial)."""
        industry = (industry or "").lower()
        return any(pattern in industry for pattern in self.config.regulated_industries)

    def resolve(
        self,
        lead_score: Any = 0,
        roi_potential: Any = 0.0,
        industry: Optional[str] = None,
        company_size: Any = None,
        opportunity_count: Any = 0,
    ) -> CampaignAssignment:
        """Resolve an assignment. Never raises; bad input degrades to defaults."""
        data = AssignmentInput(
            lead_score=int(_as_number(lead_score)),
            roi_potential=_as_number(roi_potential),
            industry=industry or "",
            company_size=CompanySize.parse(company_size),
            opportunity_count=int(_as_number(opportunity_count)),
        )
        return self.resolve_input(data)

    def resolve_input(self, data: AssignmentInput) -> CampaignAssignment:
        cfg = self.config
        tier = self.select_tier(data)
        sequence_id = tier.sequence_id
        delay = tier.delay_hours
        adjustments: List[str] = []

        if self.is_regulated(data.industry):
            sequence_id += cfg.compliance_suffix
            delay = max(delay, cfg.compliance_min_delay_hours)
            adjustments.append("regulated industry")

        if data.company_size.value in cfg.large_company_sizes:
            delay = max(delay, cfg.large_company_min_delay_hours)
            adjustments.append(f"{data.company_size.value} company")

        campaign_id = f"{cfg.campaign_prefix}_{tier.campaign}" if cfg.campaign_prefix else tier.campaign
        reason = self.build_reason(data, tier, adjustments)

        logger.debug(f"Assigned {campaign_id}/{sequence_id} ({reason})")
        return CampaignAssignment(
            campaign_id=campaign_id,
            sequence_id=sequence_id,
            delay_hours=float(delay),
            priority=tier.priority,
            reason=reason,
            tier=tier.name,
        )

    @staticmethod
    def build_reason(data: AssignmentInput, tier: CampaignTier, adjustments: List[str]) -> str:
        """Summarize the inputs that produced an assignment."""
        roi_k = round_half_up(data.roi_potential / 1000)
        reason = (
            f"Lead Score: {data.lead_score}, ROI: ${roi_k}K, "
            f"Opportunities: {data.opportunity_count} -> {tier.name} tier"
        )
        if adjustments:
            reason += f" ({', '.join(adjustments)})"
        return reason
