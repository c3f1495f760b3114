"""Prospect engine - wires collector, scoring, lifecycle and assignment together."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError

from .assignment import AssignmentResolver
from .classifier import ReplyClassification, ReplyClassifier
from .collector import BatchCollectResult, CollectResult, SignalCollector
from .config import EngineConfig
from .errors import (
    EngineError,
    EventValidationError,
    IntegrationNotFoundError,
    ProspectNotFoundError,
    SnapshotVersionError,
)
from .lifecycle import LifecycleStateMachine
from .scorer import EngagementBreakdown, LeadScoreBreakdown, ScoringEngine
from ..automation.webhooks import WebhookEvent, WebhookManager
from ..schemas import OpportunityPayload, ProspectPayload
from ..storage.database import ProspectDatabase
from ..storage.models import (
    AnalysisSnapshot,
    AnalysisStatus,
    AnalysisType,
    CampaignAssignment,
    CompanySize,
    OpportunityRecord,
    Prospect,
    ProspectStage,
    ScoreRecord,
    ServiceTier,
    StageTransition,
    as_utc,
    utcnow,
)

logger = logging.getLogger(__name__)


@dataclass
class RecomputeResult:
    """Everything a recompute produced for one prospect."""

    prospect: Prospect
    score: ScoreRecord
    lead: LeadScoreBreakdown
    engagement: EngagementBreakdown
    previous: Optional[ScoreRecord] = None
    transition: Optional[StageTransition] = None
    assignment: Optional[CampaignAssignment] = None

    @property
    def changed(self) -> bool:
        return not self.score.same_scores(self.previous)


@dataclass
class IngestResult:
    """Outcome of ingesting one event."""

    collected: CollectResult
    recompute: Optional[RecomputeResult] = None


@dataclass
class BatchIngestResult:
    """Outcome of ingesting a batch of events."""

    collected: BatchCollectResult
    recomputes: List[RecomputeResult] = field(default_factory=list)


def roi_potential(opportunities: Iterable[OpportunityRecord]) -> float:
    """Total estimated annual savings across opportunities."""
    return float(sum(o.annual_savings or 0 for o in opportunities))


Notification = Tuple[WebhookEvent, Dict[str, Any]]

DEFAULT_LOCK_STRIPES = 64


def _review_payload(tenant_id: str, collected: CollectResult) -> Dict[str, Any]:
    return {
        "tenant_id": tenant_id,
        "prospect_id": collected.event.prospect_id,
        "external_id": collected.event.external_id,
        "reply_text": collected.event.reply_text,
        **collected.classification.to_dict(),
    }


def _transition_payload(tenant_id: str, transition: StageTransition) -> Dict[str, Any]:
    return {
        "tenant_id": tenant_id,
        "prospect_id": transition.prospect_id,
        "from_stage": transition.from_stage.value,
        "to_stage": transition.to_stage.value,
        "trigger": transition.trigger,
    }


class ProspectEngine:
    """Entry point for scoring, classification, assignment and lifecycle.

    Every recompute folds the prospect's full history, so replayed or
    out-of-order events converge on the same result. Recomputes for the
    same (tenant, prospect) are serialized. Webhooks go out after the
    prospect's lock is released.
    """

    def __init__(
        self,
        db: Optional[ProspectDatabase] = None,
        config: Optional[EngineConfig] = None,
        webhooks: Optional[WebhookManager] = None,
        classifier: Optional[ReplyClassifier] = None,
        lock_stripes: int = DEFAULT_LOCK_STRIPES,
    ):
        self.db = db or ProspectDatabase()
        self.config = config or EngineConfig()
        self.webhooks = webhooks
        self.classifier = classifier or ReplyClassifier()
        self.scorer = ScoringEngine(self.config)
        self.resolver = AssignmentResolver(self.config)
        self.lifecycle = LifecycleStateMachine()
        self.collector = SignalCollector(self.db, self.classifier)

        # Fixed pool; unrelated prospects may share a stripe
        self._locks = [threading.Lock() for _ in range(max(1, lock_stripes))]

    def _lock_for(self, tenant_id: str, prospect_id: str) -> threading.Lock:
        return self._locks[hash((tenant_id, prospect_id)) % len(self._locks)]

    def _send(self, outbox: List[Notification]):
        """Deliver queued notifications. Call only with no prospect lock held."""
        if self.webhooks is None:
            return
        for event, payload in outbox:
            self.webhooks.trigger(event, payload)

    # === PROSPECTS ===

    def register_prospect(
        self,
        tenant_id: str,
        payload: Union[Dict[str, Any], ProspectPayload],
        now: Optional[datetime] = None,
    ) -> Prospect:
        """Create a prospect on first sighting or refresh its attributes.

        New prospects, and existing ones whose industry or size changed,
        are rescored and reassigned right away.
        """
        try:
            data = payload if isinstance(payload, ProspectPayload) else ProspectPayload.model_validate(payload)
        except ValidationError as e:
            raise EngineError(f"Invalid prospect: {e.errors()[0].get('msg')}", component="engine") from e

        outbox: List[Notification] = []
        with self._lock_for(tenant_id, data.id):
            before = self.db.get_prospect(tenant_id, data.id)
            prospect, is_new = self.db.upsert_prospect(Prospect(
                id=data.id,
                tenant_id=tenant_id,
                name=data.name,
                industry=data.industry,
                company_size=CompanySize.parse(data.company_size),
                revenue_band=data.revenue_band,
                website=data.website,
            ))
            logger.info(f"{'Registered' if is_new else 'Updated'} prospect {prospect.id} ({tenant_id})")

            if is_new or (before.industry, before.company_size) != (prospect.industry, prospect.company_size):
                prospect = self._recompute_locked(tenant_id, prospect.id, now, outbox).prospect

        self._send(outbox)
        return prospect

    def get_prospect(self, tenant_id: str, prospect_id: str, component: str = "engine") -> Prospect:
        prospect = self.db.get_prospect(tenant_id, prospect_id)
        if prospect is None:
            logger.warning(f"[{component}] prospect {prospect_id} not found for tenant {tenant_id}")
            raise ProspectNotFoundError(prospect_id, component=component)
        return prospect

    def add_opportunity(
        self,
        tenant_id: str,
        prospect_id: str,
        payload: Union[Dict[str, Any], OpportunityPayload],
        now: Optional[datetime] = None,
    ) -> Tuple[OpportunityRecord, RecomputeResult]:
        """Store an opportunity and rescore the prospect."""
        self.get_prospect(tenant_id, prospect_id)
        try:
            data = payload if isinstance(payload, OpportunityPayload) else OpportunityPayload.model_validate(payload)
            tier = ServiceTier(data.service_tier) if data.service_tier else None
        except (ValidationError, ValueError) as e:
            raise EngineError(f"Invalid opportunity: {e}", prospect_id=prospect_id) from e

        record = self.db.add_opportunity(tenant_id, OpportunityRecord(
            prospect_id=prospect_id,
            priority_score=data.priority_score,
            process_name=data.process_name,
            service_tier=tier,
            annual_savings=data.annual_savings,
        ))
        return record, self.recompute(tenant_id, prospect_id, now=now)

    # === ANALYSIS ===

    def record_analysis(
        self,
        tenant_id: str,
        prospect_id: str,
        analysis_type: Union[AnalysisType, str],
        status: Union[AnalysisStatus, str] = AnalysisStatus.COMPLETED,
        version: Optional[int] = None,
        content_quality_score: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> RecomputeResult:
        """Write a new analysis snapshot, advance the stage and rescore.

        Without an explicit version the next one for the type is used.
        """
        analysis_type = AnalysisType(analysis_type)
        status = AnalysisStatus(status)

        outbox: List[Notification] = []
        with self._lock_for(tenant_id, prospect_id):
            prospect = self.get_prospect(tenant_id, prospect_id, component="lifecycle")
            if version is None:
                version = self.db.latest_snapshot_version(tenant_id, prospect_id, analysis_type) + 1

            try:
                snapshot = self.db.add_snapshot(tenant_id, AnalysisSnapshot(
                    prospect_id=prospect_id,
                    analysis_type=analysis_type,
                    version=version,
                    status=status,
                    content_quality_score=content_quality_score,
                ))
            except SnapshotVersionError as e:
                logger.warning(f"Rejected snapshot: {e}")
                raise

            transition = self.lifecycle.advance_on_analysis(prospect, snapshot)
            if transition is not None:
                self._persist_transition(tenant_id, transition)

            result = self._recompute_locked(tenant_id, prospect_id, now, outbox, transition=transition)

        self._send(outbox)
        return result

    # === EVENTS ===

    def ingest_event(
        self,
        tenant_id: str,
        payload: Dict[str, Any],
        now: Optional[datetime] = None,
    ) -> IngestResult:
        """Collect one event and, if it was new, recompute its prospect."""
        try:
            collected = self.collector.collect(payload, tenant_id)
        except EventValidationError as e:
            logger.warning(f"Rejected event: {e}")
            raise

        result = IngestResult(collected=collected)
        if collected.recompute is None:
            return result

        if collected.classification is not None and collected.classification.needs_human_review:
            self._send([(WebhookEvent.REPLY_NEEDS_REVIEW, _review_payload(tenant_id, collected))])

        result.recompute = self.recompute(tenant_id, collected.recompute.prospect_id, now=now)
        return result

    def ingest_many(
        self,
        tenant_id: str,
        payloads: Iterable[Dict[str, Any]],
        now: Optional[datetime] = None,
    ) -> BatchIngestResult:
        """Collect a batch, then recompute each affected prospect once."""
        batch = self.collector.collect_many(payloads, tenant_id)
        result = BatchIngestResult(collected=batch)

        self._send([
            (WebhookEvent.REPLY_NEEDS_REVIEW, _review_payload(tenant_id, collected))
            for collected in batch.results
            if collected.classification is not None and collected.classification.needs_human_review
        ])

        for request in batch.recompute_requests:
            try:
                result.recomputes.append(self.recompute(tenant_id, request.prospect_id, now=now))
            except EngineError as e:
                logger.error(f"Recompute failed: {e}")
        return result

    # === SCORING ===

    def recompute(
        self,
        tenant_id: str,
        prospect_id: str,
        now: Optional[datetime] = None,
    ) -> RecomputeResult:
        """Rebuild scores, temperature, status and assignment from the full history."""
        outbox: List[Notification] = []
        with self._lock_for(tenant_id, prospect_id):
            result = self._recompute_locked(tenant_id, prospect_id, now, outbox)
        self._send(outbox)
        return result

    def _recompute_locked(
        self,
        tenant_id: str,
        prospect_id: str,
        now: Optional[datetime],
        outbox: List[Notification],
        transition: Optional[StageTransition] = None,
    ) -> RecomputeResult:
        now = as_utc(now) if now else utcnow()
        prospect = self.get_prospect(tenant_id, prospect_id, component="scoring")
        opportunities = self.db.list_opportunities(tenant_id, prospect_id)
        snapshots = self.db.list_snapshots(tenant_id, prospect_id)
        events = self.db.list_events(tenant_id, prospect_id)

        lead = self.scorer.lead_score(prospect, opportunities, snapshots)
        by_integration = self.scorer.engagement_by_integration(events, now=now)
        # Prospect-level engagement is the best integration's score
        engagement = max(by_integration.values(), key=lambda b: b.total, default=EngagementBreakdown())
        temperature, status = self.lifecycle.fold_engagement(events)

        previous = self.db.get_score(tenant_id, prospect_id)
        score = ScoreRecord(
            prospect_id=prospect_id,
            lead_score=lead.total,
            engagement_score=engagement.total,
            temperature=temperature,
            lead_status=status,
            computed_at=now,
        )
        result = RecomputeResult(
            prospect=prospect,
            score=score,
            lead=lead,
            engagement=engagement,
            previous=previous,
            transition=transition,
        )

        if result.changed:
            self.db.save_score(tenant_id, score)
            logger.info(
                f"Scored prospect {prospect_id}: lead={score.lead_score} "
                f"engagement={score.engagement_score} {score.temperature.value}/{score.lead_status.value}"
            )
            outbox.append((WebhookEvent.SCORED, {
                "tenant_id": tenant_id,
                "prospect_id": prospect_id,
                "lead_score": score.lead_score,
                "engagement_score": score.engagement_score,
                "temperature": score.temperature.value,
                "lead_status": score.lead_status.value,
            }))
        else:
            score = previous
            result.score = previous

        if transition is not None:
            outbox.append((WebhookEvent.STAGE_CHANGED, _transition_payload(tenant_id, transition)))

        # Resolve every time; history only records a change of route
        candidate = self.resolver.resolve(
            lead_score=score.lead_score,
            roi_potential=roi_potential(opportunities),
            industry=prospect.industry,
            company_size=prospect.company_size,
            opportunity_count=len(opportunities),
        )
        latest = self.db.latest_assignment(tenant_id, prospect_id)
        if not candidate.same_route(latest):
            self.db.add_assignment(tenant_id, prospect_id, candidate)
            result.assignment = candidate
            logger.info(f"Assigned prospect {prospect_id} to {candidate.campaign_id}/{candidate.sequence_id}")
            outbox.append((WebhookEvent.ASSIGNED, {
                "tenant_id": tenant_id,
                "prospect_id": prospect_id,
                **candidate.to_dict(),
            }))

        return result

    def lead_score(self, tenant_id: str, prospect_id: str) -> LeadScoreBreakdown:
        """Current lead score breakdown for a prospect."""
        prospect = self.get_prospect(tenant_id, prospect_id, component="scoring")
        return self.scorer.lead_score(
            prospect,
            self.db.list_opportunities(tenant_id, prospect_id),
            self.db.list_snapshots(tenant_id, prospect_id),
        )

    def engagement_for_integration(
        self,
        tenant_id: str,
        prospect_id: str,
        integration_id: str,
        now: Optional[datetime] = None,
    ) -> EngagementBreakdown:
        """Engagement breakdown for one integration of a prospect."""
        self.get_prospect(tenant_id, prospect_id, component="scoring")
        events = self.db.list_events(tenant_id, prospect_id, integration_id=integration_id)
        if not events:
            logger.warning(f"[scoring] integration {integration_id} not found for prospect {prospect_id}")
            raise IntegrationNotFoundError(integration_id, prospect_id=prospect_id)
        return self.scorer.engagement_score(events, now=now)

    def explain(self, tenant_id: str, prospect_id: str, now: Optional[datetime] = None) -> str:
        """Human-readable breakdown of the prospect's current scores."""
        prospect = self.get_prospect(tenant_id, prospect_id, component="scoring")
        lead = self.scorer.lead_score(
            prospect,
            self.db.list_opportunities(tenant_id, prospect_id),
            self.db.list_snapshots(tenant_id, prospect_id),
        )
        by_integration = self.scorer.engagement_by_integration(
            self.db.list_events(tenant_id, prospect_id), now=now
        )
        engagement = max(by_integration.values(), key=lambda b: b.total, default=EngagementBreakdown())
        return self.scorer.explain_score(lead, engagement)

    # === CLASSIFICATION / ASSIGNMENT ===

    def classify_reply(self, content: Optional[str]) -> ReplyClassification:
        return self.classifier.classify(content)

    def resolve_assignment(self, tenant_id: str, prospect_id: str) -> CampaignAssignment:
        """What the resolver would assign now, without recording it."""
        prospect = self.get_prospect(tenant_id, prospect_id, component="assignment")
        opportunities = self.db.list_opportunities(tenant_id, prospect_id)
        score = self.db.get_score(tenant_id, prospect_id)
        lead_score = score.lead_score if score else self.lead_score(tenant_id, prospect_id).total
        return self.resolver.resolve(
            lead_score=lead_score,
            roi_potential=roi_potential(opportunities),
            industry=prospect.industry,
            company_size=prospect.company_size,
            opportunity_count=len(opportunities),
        )

    # === LIFECYCLE ===

    def manual_transition(
        self,
        tenant_id: str,
        prospect_id: str,
        to_stage: Union[ProspectStage, str],
        operator: str = "operator",
    ) -> Optional[StageTransition]:
        """Operator stage override, the only way to move backward."""
        to_stage = ProspectStage(to_stage)
        with self._lock_for(tenant_id, prospect_id):
            prospect = self.get_prospect(tenant_id, prospect_id, component="lifecycle")
            transition = self.lifecycle.manual_transition(prospect, to_stage, operator=operator)
            if transition is None:
                return None
            self._persist_transition(tenant_id, transition)

        self._send([(WebhookEvent.STAGE_CHANGED, _transition_payload(tenant_id, transition))])
        return transition

    def _persist_transition(self, tenant_id: str, transition: StageTransition):
        self.db.update_stage(tenant_id, transition.prospect_id, transition.to_stage)
        self.db.add_transition(tenant_id, transition)
