"""Scoring engine - lead score from firmographics, engagement score from the event log."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set

from .config import EngineConfig
from ..storage.models import (
    AnalysisSnapshot,
    AnalysisType,
    EngagementEvent,
    EventKind,
    OpportunityRecord,
    Prospect,
    as_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

SCORE_MIN = 0
SCORE_MAX = 100

# Only the prospect's own actions count toward recency
ENGAGING_KINDS = frozenset({EventKind.OPENED, EventKind.CLICKED, EventKind.REPLIED})


def clamp_score(value: float) -> int:
    """Clamp a composite score into [0, 100]."""
    return int(max(SCORE_MIN, min(SCORE_MAX, value)))


def round_half_up(value: float) -> int:
    """Round like an SQL integer cast (halves away from zero)."""
    if value >= 0:
        return int(value + 0.5)
    return -int(-value + 0.5)


def safe_ratio(numerator: float, denominator: float) -> float:
    """Division where a zero denominator yields 0."""
    if not denominator:
        return 0.0
    return numerator / denominator


@dataclass
class LeadScoreBreakdown:
    """Components of a lead score."""

    company_size: int = 0
    opportunity: int = 0
    analysis: int = 0
    service_fit: int = 0
    opportunity_count: int = 0
    average_priority: float = 0.0
    completed_analysis_types: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return clamp_score(self.company_size + self.opportunity + self.analysis + self.service_fit)


@dataclass
class EngagementBreakdown:
    """Components of an engagement score."""

    sent: int = 0
    opened: int = 0
    clicked: int = 0
    replied: int = 0
    bounced: int = 0
    open_term: int = 0
    click_term: int = 0
    reply_term: int = 0
    bounce_penalty: int = 0
    recency_term: int = 0
    frequency_term: int = 0
    days_since_last_activity: Optional[float] = None
    active_days: int = 0

    @property
    def raw_total(self) -> int:
        """Sum before clamping, can be negative."""
        return (
            self.open_term + self.click_term + self.reply_term
            - self.bounce_penalty + self.recency_term + self.frequency_term
        )

    @property
    def total(self) -> int:
        return clamp_score(self.raw_total)


class ScoringEngine:
    """Computes lead and engagement scores from folded inputs."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    # === LEAD SCORE ===

    def lead_score(
        self,
        prospect: Prospect,
        opportunities: Iterable[OpportunityRecord] = (),
        snapshots: Iterable[AnalysisSnapshot] = (),
    ) -> LeadScoreBreakdown:
        """Score a prospect from company size, opportunities and analysis coverage."""
        cfg = self.config
        opportunities = list(opportunities)
        breakdown = LeadScoreBreakdown(opportunity_count=len(opportunities))

        breakdown.company_size = cfg.size_points.get(
            prospect.company_size.value, cfg.size_points.get("unknown", 0)
        )

        if opportunities:
            avg = sum(o.priority_score for o in opportunities) / len(opportunities)
            breakdown.average_priority = avg
            breakdown.opportunity = min(cfg.opportunity_cap, round_half_up(avg * cfg.opportunity_weight))

        completed = self.completed_analysis_types(snapshots)
        breakdown.completed_analysis_types = sorted(t.value for t in completed)
        breakdown.analysis = self._analysis_points(len(completed))

        with_tier = sum(1 for o in opportunities if o.service_tier is not None)
        breakdown.service_fit = min(cfg.service_fit_cap, with_tier * cfg.service_fit_per_tier)

        logger.debug(
            f"Lead score for {prospect.id}: size={breakdown.company_size} "
            f"opp={breakdown.opportunity} analysis={breakdown.analysis} "
            f"fit={breakdown.service_fit} total={breakdown.total}"
        )
        return breakdown

    @staticmethod
    def completed_analysis_types(snapshots: Iterable[AnalysisSnapshot]) -> Set[AnalysisType]:
        """Distinct analysis types whose latest snapshot counts as complete."""
        latest: Dict[AnalysisType, AnalysisSnapshot] = {}
        for snapshot in snapshots:
            current = latest.get(snapshot.analysis_type)
            if current is None or snapshot.version > current.version:
                latest[snapshot.analysis_type] = snapshot
        return {t for t, s in latest.items() if s.counts_as_complete}

    def _analysis_points(self, completed_count: int) -> int:
        for minimum in sorted(self.config.analysis_points, reverse=True):
            if completed_count >= minimum:
                return self.config.analysis_points[minimum]
        return 0

    # === ENGAGEMENT SCORE ===

    def engagement_score(
        self,
        events: Iterable[EngagementEvent],
        now: Optional[datetime] = None,
    ) -> EngagementBreakdown:
        """Fold an event log into an engagement score.

        The result depends only on the set of events, never on their order.
        """
        cfg = self.config
        now = as_utc(now) if now else utcnow()
        events = list(events)
        b = EngagementBreakdown()

        counts = {kind: 0 for kind in EventKind}
        for event in events:
            counts[event.kind] += 1
        b.sent = counts[EventKind.SENT]
        b.opened = counts[EventKind.OPENED]
        b.clicked = counts[EventKind.CLICKED]
        b.replied = counts[EventKind.REPLIED]
        b.bounced = counts[EventKind.BOUNCED]

        if b.sent > 0:
            b.open_term = min(
                cfg.open_rate_cap,
                round_half_up(safe_ratio(b.opened, b.sent) * 100 * cfg.open_rate_weight),
            )
            if b.opened > 0:
                b.click_term = min(
                    cfg.click_rate_cap,
                    round_half_up(safe_ratio(b.clicked, b.opened) * 100 * cfg.click_rate_weight),
                )
            b.reply_term = min(cfg.reply_cap, b.replied * cfg.reply_points)
            b.bounce_penalty = b.bounced * cfg.bounce_penalty

        engaged = [e.timestamp for e in events if e.kind in ENGAGING_KINDS]
        if engaged:
            last_activity = max(engaged)
            b.days_since_last_activity = max(0.0, (now - last_activity).total_seconds() / 86400)
            b.recency_term = self._recency_points(b.days_since_last_activity)

        window_start = now - timedelta(days=cfg.activity_window_days)
        active_dates = {e.timestamp.date() for e in events if window_start < e.timestamp <= now}
        b.active_days = len(active_dates)
        b.frequency_term = min(cfg.activity_cap, b.active_days * cfg.points_per_active_day)

        return b

    def _recency_points(self, days: float) -> int:
        for max_days, points in self.config.recency_bands:
            if days <= max_days:
                return int(points)
        return 0

    def engagement_by_integration(
        self,
        events: Iterable[EngagementEvent],
        now: Optional[datetime] = None,
    ) -> Dict[str, EngagementBreakdown]:
        """Engagement breakdown for each integration found in the log."""
        grouped: Dict[str, List[EngagementEvent]] = {}
        for event in events:
            grouped.setdefault(event.integration_id, []).append(event)
        return {
            integration_id: self.engagement_score(group, now=now)
            for integration_id, group in grouped.items()
        }

    # === EXPLANATIONS ===

    def explain_score(
        self,
        lead: LeadScoreBreakdown,
        engagement: Optional[EngagementBreakdown] = None,
    ) -> str:
        """Get a detailed explanation of a scoring result."""
        lines = [
            f"Lead Score: {lead.total}/100",
            f"  company size:   {lead.company_size:>3}",
            f"  opportunities:  {lead.opportunity:>3}  "
            f"({lead.opportunity_count} found, avg priority {lead.average_priority:.1f})",
            f"  analyses:       {lead.analysis:>3}  "
            f"({', '.join(lead.completed_analysis_types) or 'none completed'})",
            f"  service fit:    {lead.service_fit:>3}",
        ]

        if engagement is not None:
            lines.extend([
                "",
                f"Engagement Score: {engagement.total}/100",
                f"  open rate:      {engagement.open_term:>3}  ({engagement.opened}/{engagement.sent})",
                f"  click rate:     {engagement.click_term:>3}  ({engagement.clicked}/{engagement.opened})",
                f"  replies:        {engagement.reply_term:>3}  ({engagement.replied})",
                f"  bounces:        {-engagement.bounce_penalty:>3}  ({engagement.bounced})",
                f"  recency:        {engagement.recency_term:>3}",
                f"  active days:    {engagement.frequency_term:>3}  ({engagement.active_days})",
            ])

        return "\n".join(lines)
