"""Tests for the SQLite prospect store."""

import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from prospect_engine.core.errors import SnapshotVersionError
from prospect_engine.storage.database import ProspectDatabase
from prospect_engine.storage.models import (
    AnalysisSnapshot,
    AnalysisStatus,
    AnalysisType,
    CampaignAssignment,
    CompanySize,
    EngagementEvent,
    EventKind,
    LeadStatus,
    OpportunityRecord,
    Prospect,
    ProspectStage,
    ScoreRecord,
    ServiceTier,
    StageTransition,
    Temperature,
)


@pytest.fixture
def db():
    """Create a database in a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield ProspectDatabase(Path(tmpdir) / "prospects.db")


@pytest.fixture
def prospect(db):
    created, _ = db.upsert_prospect(Prospect(
        id="acme",
        tenant_id="t1",
        name="Acme Legal",
        industry="legal",
        company_size=CompanySize.MEDIUM,
    ))
    return created


class TestProspects:
    """Tests for prospect records."""

    def test_insert_then_update(self, db, prospect):
        assert prospect.stage == ProspectStage.IDENTIFIED
        updated, is_new = db.upsert_prospect(Prospect(id="acme", tenant_id="t1", website="acme.test"))
        assert not is_new
        assert updated.name == "Acme Legal"
        assert updated.company_size == CompanySize.MEDIUM
        assert updated.website == "acme.test"

    def test_tenant_scoped(self, db, prospect):
        assert db.get_prospect("t2", "acme") is None
        assert db.list_prospects("t2") == []

    def test_update_stage(self, db, prospect):
        db.update_stage("t1", "acme", ProspectStage.ANALYZING)
        assert db.get_prospect("t1", "acme").stage == ProspectStage.ANALYZING
        assert [p.id for p in db.list_prospects("t1", stage=ProspectStage.ANALYZING)] == ["acme"]


class TestSnapshots:
    """Tests for versioned analysis snapshots."""

    def test_versions_must_increase(self, db, prospect):
        db.add_snapshot("t1", AnalysisSnapshot("acme", AnalysisType.WEBSITE, 1))
        db.add_snapshot("t1", AnalysisSnapshot("acme", AnalysisType.WEBSITE, 2))
        with pytest.raises(SnapshotVersionError):
            db.add_snapshot("t1", AnalysisSnapshot("acme", AnalysisType.WEBSITE, 2))
        with pytest.raises(SnapshotVersionError):
            db.add_snapshot("t1", AnalysisSnapshot("acme", AnalysisType.WEBSITE, 1))

    def test_versions_per_type(self, db, prospect):
        db.add_snapshot("t1", AnalysisSnapshot("acme", AnalysisType.WEBSITE, 3))
        db.add_snapshot("t1", AnalysisSnapshot("acme", AnalysisType.JOURNEY, 1, AnalysisStatus.PENDING))
        assert db.latest_snapshot_version("t1", "acme", AnalysisType.WEBSITE) == 3
        assert db.latest_snapshot_version("t1", "acme", AnalysisType.ROI) == 0

        snapshots = db.list_snapshots("t1", "acme")
        assert {(s.analysis_type, s.version) for s in snapshots} == {
            (AnalysisType.WEBSITE, 3),
            (AnalysisType.JOURNEY, 1),
        }


class TestOpportunities:
    """Tests for opportunity storage."""

    def test_round_trip(self, db, prospect):
        saved = db.add_opportunity("t1", OpportunityRecord(
            "acme", 70, process_name="intake", service_tier=ServiceTier.PROFESSIONAL, annual_savings=30000,
        ))
        assert saved.id is not None
        [loaded] = db.list_opportunities("t1", "acme")
        assert loaded == saved


class TestEngagementLog:
    """Tests for the append-only event log."""

    def make_event(self, external_id="e1", kind=EventKind.OPENED):
        return EngagementEvent(
            prospect_id="acme",
            integration_id="mailer",
            external_id=external_id,
            kind=kind,
            timestamp=datetime(2026, 4, 2, 10, 30, tzinfo=timezone.utc),
        )

    def test_duplicate_ignored(self, db, prospect):
        assert db.append_event("t1", self.make_event()) is True
        assert db.append_event("t1", self.make_event()) is False
        assert len(db.list_events("t1", "acme")) == 1

    def test_same_external_id_other_tenant(self, db, prospect):
        db.append_event("t1", self.make_event())
        assert db.append_event("t2", self.make_event()) is True
        assert len(db.list_events("t1", "acme")) == 1

    def test_timestamps_stay_aware(self, db, prospect):
        db.append_event("t1", self.make_event())
        [loaded] = db.list_events("t1", "acme")
        assert loaded.timestamp == datetime(2026, 4, 2, 10, 30, tzinfo=timezone.utc)
        assert loaded.timestamp.tzinfo is not None
        assert loaded.sequence is not None

    def test_filter_by_integration(self, db, prospect):
        db.append_event("t1", self.make_event("e1"))
        other = EngagementEvent("acme", "crm", "e2", EventKind.SENT, datetime(2026, 4, 2, tzinfo=timezone.utc))
        db.append_event("t1", other)
        assert [e.external_id for e in db.list_events("t1", "acme", integration_id="crm")] == ["e2"]
        assert db.list_integrations("t1", "acme") == ["crm", "mailer"]


class TestScoresAndHistory:
    """Tests for score records, assignments and transitions."""

    def test_score_replace(self, db, prospect):
        db.save_score("t1", ScoreRecord("acme", 40, 10))
        db.save_score("t1", ScoreRecord("acme", 55, 20, Temperature.WARM, LeadStatus.REPLIED))
        record = db.get_score("t1", "acme")
        assert record.lead_score == 55
        assert record.temperature == Temperature.WARM
        assert db.get_score("t2", "acme") is None

    def test_assignment_history(self, db, prospect):
        first = CampaignAssignment("c_cold", "seq_cold", 24, "low", "Lead Score: 10")
        second = CampaignAssignment("c_warm", "seq_warm", 4, "medium", "Lead Score: 45", tier="warm")
        db.add_assignment("t1", "acme", first)
        db.add_assignment("t1", "acme", second)
        assert db.assignment_history("t1", "acme") == [first, second]
        assert db.latest_assignment("t1", "acme") == second

    def test_transitions(self, db, prospect):
        db.add_transition("t1", StageTransition("acme", ProspectStage.IDENTIFIED, ProspectStage.ANALYZING, "test"))
        [transition] = db.list_transitions("t1", "acme")
        assert transition.to_stage == ProspectStage.ANALYZING

    def test_stats(self, db, prospect):
        db.save_score("t1", ScoreRecord("acme", 40, 10))
        stats = db.get_stats("t1")
        assert stats["total_prospects"] == 1
        assert stats["by_temperature"] == {"cold": 1}
        assert [r.prospect_id for r in db.top_scores("t1")] == ["acme"]
