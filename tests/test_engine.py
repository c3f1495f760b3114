"""Tests for the prospect engine end to end."""

import random
import tempfile
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from prospect_engine.automation.webhooks import WebhookEvent
from prospect_engine.core.engine import ProspectEngine
from prospect_engine.core.errors import (
    EngineError,
    EventValidationError,
    IntegrationNotFoundError,
    ProspectNotFoundError,
    SnapshotVersionError,
)
from prospect_engine.storage.database import ProspectDatabase
from prospect_engine.storage.models import LeadStatus, ProspectStage, Temperature

TENANT = "t1"
NOW = datetime(2026, 6, 30, 12, 0, tzinfo=timezone.utc)


class RecordingWebhooks:
    """Captures notifications instead of sending them."""

    def __init__(self):
        self.sent = []

    def trigger(self, event, payload):
        self.sent.append((event, payload))
        return []

    def events(self):
        return [event for event, _ in self.sent]


@pytest.fixture
def temp_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def webhooks():
    return RecordingWebhooks()


@pytest.fixture
def engine(temp_dir, webhooks):
    """Engine with a temp database and one registered prospect."""
    engine = ProspectEngine(db=ProspectDatabase(temp_dir / "prospects.db"), webhooks=webhooks)
    engine.register_prospect(TENANT, {
        "id": "acme",
        "name": "Acme Co",
        "industry": "Retail",
        "company_size": "enterprise",
    })
    return engine


def campaign_events():
    """A realistic engagement history across ten days."""
    events = []
    for i in range(20):
        events.append({
            "prospect_id": "acme",
            "kind": "sent",
            "timestamp": (NOW - timedelta(days=i % 10, hours=1)).isoformat(),
            "integration_id": "mailer",
            "external_id": f"sent-{i}",
        })
    for i in range(8):
        events.append({
            "prospect_id": "acme",
            "kind": "opened",
            "timestamp": (NOW - timedelta(days=i % 5)).isoformat(),
            "integration_id": "mailer",
            "external_id": f"open-{i}",
        })
    events.append({
        "prospect_id": "acme",
        "kind": "clicked",
        "timestamp": (NOW - timedelta(days=1)).isoformat(),
        "integration_id": "mailer",
        "external_id": "click-1",
    })
    events.append({
        "prospect_id": "acme",
        "kind": "replied",
        "timestamp": (NOW - timedelta(hours=2)).isoformat(),
        "integration_id": "mailer",
        "external_id": "reply-1",
        "reply_text": "Sounds good, send me pricing",
    })
    return events


def score_tuple(result):
    score = result.score
    return score.lead_score, score.engagement_score, score.temperature, score.lead_status


class TestRegistration:
    """Tests for prospect registration."""

    def test_registration_scores_and_assigns(self, engine, webhooks):
        assert engine.db.get_score(TENANT, "acme").lead_score == 25
        assignment = engine.db.latest_assignment(TENANT, "acme")
        assert assignment.campaign_id == "entelech_cold_outreach"
        assert assignment.delay_hours == 24
        assert WebhookEvent.SCORED in webhooks.events()
        assert WebhookEvent.ASSIGNED in webhooks.events()

        result = engine.recompute(TENANT, "acme", now=NOW)
        assert result.assignment is None
        assert len(engine.db.assignment_history(TENANT, "acme")) == 1

    def test_reregister_unchanged_keeps_history(self, engine):
        engine.register_prospect(TENANT, {"id": "acme", "name": "Acme Co", "industry": "Retail",
                                          "company_size": "enterprise"})
        assert len(engine.db.assignment_history(TENANT, "acme")) == 1

    def test_industry_change_reassigns(self, engine):
        engine.register_prospect(TENANT, {"id": "acme", "name": "Acme Co", "industry": "Healthcare Services",
                                          "company_size": "enterprise"})
        assignment = engine.db.latest_assignment(TENANT, "acme")
        assert assignment.sequence_id == "seq_cold_education_compliance"
        assert len(engine.db.assignment_history(TENANT, "acme")) == 2

    def test_unknown_prospect(self, engine):
        with pytest.raises(ProspectNotFoundError) as exc_info:
            engine.recompute(TENANT, "ghost")
        assert exc_info.value.prospect_id == "ghost"
        assert exc_info.value.component == "scoring"

    def test_tenant_isolation(self, engine):
        with pytest.raises(ProspectNotFoundError):
            engine.recompute("other", "acme")


class TestAnalysis:
    """Tests for analysis snapshots driving stage and score."""

    def test_advances_one_step_per_snapshot(self, engine, webhooks):
        first = engine.record_analysis(TENANT, "acme", "website", now=NOW)
        assert first.transition.to_stage == ProspectStage.ANALYZING
        assert first.score.lead_score == 25 + 15

        second = engine.record_analysis(TENANT, "acme", "journey", now=NOW)
        assert second.transition.to_stage == ProspectStage.ANALYZED
        assert second.score.lead_score == 25 + 20

        third = engine.record_analysis(TENANT, "acme", "opportunity", now=NOW)
        assert third.transition is None
        assert engine.get_prospect(TENANT, "acme").stage == ProspectStage.ANALYZED

        assert webhooks.events().count(WebhookEvent.STAGE_CHANGED) == 2
        assert len(engine.db.list_transitions(TENANT, "acme")) == 2

    def test_versions_auto_increment(self, engine):
        engine.record_analysis(TENANT, "acme", "website", now=NOW)
        engine.record_analysis(TENANT, "acme", "website", now=NOW)
        versions = [s.version for s in engine.db.list_snapshots(TENANT, "acme")]
        assert versions == [1, 2]

    def test_stale_version_rejected(self, engine):
        engine.record_analysis(TENANT, "acme", "website", version=3, now=NOW)
        with pytest.raises(SnapshotVersionError):
            engine.record_analysis(TENANT, "acme", "website", version=2, now=NOW)


class TestOpportunities:
    """Tests for opportunity-driven rescoring."""

    def test_full_profile_score(self, temp_dir):
        engine = ProspectEngine(db=ProspectDatabase(temp_dir / "p.db"))
        engine.register_prospect(TENANT, {"id": "p2", "name": "Unknown Size Inc"})
        for tier in ("basic_2_5k", "enterprise_15k", None, None):
            engine.add_opportunity(TENANT, "p2", {"priority_score": 80, "service_tier": tier}, now=NOW)
        for analysis in ("website", "journey", "opportunity"):
            engine.record_analysis(TENANT, "p2", analysis, now=NOW)

        assert engine.lead_score(TENANT, "p2").total == 68

    def test_roi_drives_assignment(self, engine):
        _, result = engine.add_opportunity(TENANT, "acme", {
            "priority_score": 90,
            "annual_savings": 60000,
        }, now=NOW)
        assignment = engine.db.latest_assignment(TENANT, "acme")
        assert assignment.campaign_id == "entelech_enterprise_vip"
        # Enterprise-size prospects are held to the large company delay
        assert assignment.delay_hours == 4
        assert "ROI: $60K" in assignment.reason

    def test_roi_alone_reassigns(self, engine):
        engine.add_opportunity(TENANT, "acme", {"priority_score": 50}, now=NOW)
        assert engine.db.latest_assignment(TENANT, "acme").campaign_id == "entelech_warm_prospects"

        _, result = engine.add_opportunity(TENANT, "acme", {
            "priority_score": 50,
            "annual_savings": 60000,
        }, now=NOW)
        assert not result.changed
        assert result.assignment.campaign_id == "entelech_enterprise_vip"
        assert engine.db.latest_assignment(TENANT, "acme").campaign_id == "entelech_enterprise_vip"

    def test_small_score_change_crosses_tier(self, engine):
        for analysis in ("website", "journey", "opportunity"):
            engine.record_analysis(TENANT, "acme", analysis, now=NOW)
        _, result = engine.add_opportunity(TENANT, "acme", {"priority_score": 83}, now=NOW)
        assert result.score.lead_score == 79
        assert engine.db.latest_assignment(TENANT, "acme").tier == "professional"

        _, result = engine.add_opportunity(TENANT, "acme", {"priority_score": 86}, now=NOW)
        assert result.score.lead_score == 80
        assert result.transition is None
        assert engine.db.latest_assignment(TENANT, "acme").tier == "enterprise"

    def test_invalid_opportunity(self, engine):
        with pytest.raises(EngineError):
            engine.add_opportunity(TENANT, "acme", {"priority_score": 0})


class TestIngest:
    """Tests for event ingestion and recompute."""

    def test_reply_makes_prospect_hot(self, engine, webhooks):
        for payload in campaign_events():
            engine.ingest_event(TENANT, payload, now=NOW)

        score = engine.db.get_score(TENANT, "acme")
        assert score.temperature == Temperature.HOT
        assert score.lead_status == LeadStatus.REPLIED
        assert score.engagement_score > 0
        assert WebhookEvent.REPLY_NEEDS_REVIEW in webhooks.events()

    def test_replay_is_idempotent(self, engine, webhooks):
        for payload in campaign_events():
            engine.ingest_event(TENANT, payload, now=NOW)
        before = engine.db.get_score(TENANT, "acme")
        sent_before = len(webhooks.sent)
        assignments_before = len(engine.db.assignment_history(TENANT, "acme"))

        for payload in campaign_events():
            result = engine.ingest_event(TENANT, payload, now=NOW)
            assert result.collected.duplicate
            assert result.recompute is None

        after = engine.db.get_score(TENANT, "acme")
        assert after.same_scores(before)
        assert len(webhooks.sent) == sent_before
        assert len(engine.db.assignment_history(TENANT, "acme")) == assignments_before

    def test_order_independent(self, temp_dir):
        outcomes = set()
        for seed in range(3):
            events = campaign_events()
            random.Random(seed).shuffle(events)
            engine = ProspectEngine(db=ProspectDatabase(temp_dir / f"order-{seed}.db"))
            engine.register_prospect(TENANT, {"id": "acme", "company_size": "enterprise"})
            for payload in events:
                engine.ingest_event(TENANT, payload, now=NOW)
            outcomes.add(score_tuple(engine.recompute(TENANT, "acme", now=NOW)))
        assert len(outcomes) == 1

    def test_repeated_recompute_is_stable(self, engine):
        engine.ingest_many(TENANT, campaign_events(), now=NOW)
        first = engine.recompute(TENANT, "acme", now=NOW)
        second = engine.recompute(TENANT, "acme", now=NOW)
        assert score_tuple(first) == score_tuple(second)
        assert not second.changed
        assert second.assignment is None

    def test_negative_reply_after_positive(self, engine):
        engine.ingest_many(TENANT, campaign_events(), now=NOW)
        engine.ingest_event(TENANT, {
            "prospect_id": "acme",
            "kind": "replied",
            "timestamp": (NOW - timedelta(minutes=5)).isoformat(),
            "external_id": "reply-2",
            "integration_id": "mailer",
            "reply_text": "Actually, not interested. Please remove me.",
        }, now=NOW)
        score = engine.db.get_score(TENANT, "acme")
        assert score.temperature == Temperature.COLD
        assert score.lead_status == LeadStatus.UNSUBSCRIBED

    def test_rejected_event(self, engine):
        with pytest.raises(EventValidationError):
            engine.ingest_event(TENANT, {"prospect_id": "acme", "kind": "opened"})

    def test_batch_reports_errors(self, engine):
        events = campaign_events() + [{"prospect_id": "ghost", "kind": "sent", "timestamp": NOW.isoformat()}]
        result = engine.ingest_many(TENANT, events, now=NOW)
        assert len(result.collected.errors) == 1
        assert len(result.recomputes) == 1

    def test_engagement_is_best_integration(self, engine):
        engine.ingest_many(TENANT, campaign_events(), now=NOW)
        engine.ingest_event(TENANT, {
            "prospect_id": "acme",
            "kind": "sent",
            "timestamp": NOW.isoformat(),
            "integration_id": "crm",
            "external_id": "crm-1",
        }, now=NOW)
        mailer = engine.engagement_for_integration(TENANT, "acme", "mailer", now=NOW)
        crm = engine.engagement_for_integration(TENANT, "acme", "crm", now=NOW)
        assert mailer.total > crm.total
        assert engine.db.get_score(TENANT, "acme").engagement_score == mailer.total

    def test_unknown_integration(self, engine):
        with pytest.raises(IntegrationNotFoundError):
            engine.engagement_for_integration(TENANT, "acme", "nope", now=NOW)

    def test_concurrent_ingest(self, engine):
        events = campaign_events()
        threads = [
            threading.Thread(target=engine.ingest_event, args=(TENANT, payload), kwargs={"now": NOW})
            for payload in events
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        expected = engine.recompute(TENANT, "acme", now=NOW)
        assert len(engine.db.list_events(TENANT, "acme")) == len(events)
        assert expected.score.temperature == Temperature.HOT


class LockCheckingWebhooks(RecordingWebhooks):
    """Records whether the prospect's lock was held when each notification went out."""

    def __init__(self):
        super().__init__()
        self.engine = None
        self.lock_held = []

    def trigger(self, event, payload):
        lock = self.engine._lock_for(payload["tenant_id"], payload["prospect_id"])
        self.lock_held.append(lock.locked())
        return super().trigger(event, payload)


class TestLocking:
    """Tests for per-prospect serialization."""

    def test_notifications_sent_after_lock_released(self, temp_dir):
        hooks = LockCheckingWebhooks()
        engine = ProspectEngine(db=ProspectDatabase(temp_dir / "locks.db"), webhooks=hooks)
        hooks.engine = engine

        engine.register_prospect(TENANT, {"id": "acme", "company_size": "enterprise"})
        engine.record_analysis(TENANT, "acme", "website", now=NOW)
        engine.ingest_many(TENANT, campaign_events(), now=NOW)
        engine.manual_transition(TENANT, "acme", "contacted")

        assert {WebhookEvent.SCORED, WebhookEvent.ASSIGNED, WebhookEvent.STAGE_CHANGED} <= set(hooks.events())
        assert hooks.lock_held
        assert not any(hooks.lock_held)

    def test_lock_pool_is_fixed(self, temp_dir):
        engine = ProspectEngine(db=ProspectDatabase(temp_dir / "pool.db"), lock_stripes=4)
        for i in range(20):
            engine.register_prospect(TENANT, {"id": f"p{i}"})
        assert len(engine._locks) == 4
        assert engine._lock_for(TENANT, "p1") is engine._lock_for(TENANT, "p1")
        assert {id(engine._lock_for(TENANT, f"p{i}")) for i in range(20)} <= {id(lock) for lock in engine._locks}


class TestAssignmentAndLifecycle:
    """Tests for assignment preview and manual stage changes."""

    def test_resolve_assignment_preview(self, engine):
        engine.recompute(TENANT, "acme", now=NOW)
        history_before = engine.db.assignment_history(TENANT, "acme")
        preview = engine.resolve_assignment(TENANT, "acme")
        assert preview.campaign_id == "entelech_cold_outreach"
        assert engine.db.assignment_history(TENANT, "acme") == history_before

    def test_regulated_prospect(self, temp_dir):
        engine = ProspectEngine(db=ProspectDatabase(temp_dir / "reg.db"))
        engine.register_prospect(TENANT, {"id": "clinic", "industry": "Healthcare Services", "company_size": "small"})
        engine.add_opportunity(TENANT, "clinic", {"priority_score": 50}, now=NOW)
        assignment = engine.db.latest_assignment(TENANT, "clinic")
        assert assignment.sequence_id == "seq_warm_nurture_compliance"
        assert assignment.delay_hours == 4

    def test_manual_transition(self, engine, webhooks):
        transition = engine.manual_transition(TENANT, "acme", "contacted", operator="sam")
        assert transition.trigger == "manual:sam"
        assert engine.get_prospect(TENANT, "acme").stage == ProspectStage.CONTACTED
        assert webhooks.events()[-1] == WebhookEvent.STAGE_CHANGED

        # Analysis no longer moves a contacted prospect
        result = engine.record_analysis(TENANT, "acme", "website", now=NOW)
        assert result.transition is None
        assert engine.get_prospect(TENANT, "acme").stage == ProspectStage.CONTACTED

    def test_explain(self, engine):
        engine.ingest_many(TENANT, campaign_events(), now=NOW)
        text = engine.explain(TENANT, "acme", now=NOW)
        assert "Lead Score: 25/100" in text
        assert "Engagement Score:" in text

    def test_classify_reply(self, engine):
        assert engine.classify_reply("Can we schedule a call next week?").intent.value == "meeting_request"
