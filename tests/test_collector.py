"""Tests for the signal collector."""

import tempfile
from pathlib import Path

import pytest

from prospect_engine.core.collector import SignalCollector, derive_external_id
from prospect_engine.core.errors import EventValidationError
from prospect_engine.storage.database import ProspectDatabase
from prospect_engine.storage.models import EventKind, Prospect


@pytest.fixture
def db():
    """Create a database in a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        database = ProspectDatabase(Path(tmpdir) / "prospects.db")
        database.upsert_prospect(Prospect(id="acme", tenant_id="t1", name="Acme"))
        yield database


@pytest.fixture
def collector(db):
    return SignalCollector(db)


def payload(**overrides):
    data = {
        "prospect_id": "acme",
        "kind": "opened",
        "timestamp": "2026-04-02T10:30:00Z",
        "integration_id": "mailer",
        "external_id": "evt-1",
    }
    data.update(overrides)
    return data


class TestCollect:
    """Tests for single-event collection."""

    def test_accepts_valid_event(self, collector, db):
        result = collector.collect(payload(), "t1")
        assert result.accepted
        assert not result.duplicate
        assert result.recompute.prospect_id == "acme"
        assert result.recompute.tenant_id == "t1"
        assert result.recompute.reason == "event:opened"
        assert len(db.list_events("t1", "acme")) == 1

    def test_duplicate_is_no_op(self, collector, db):
        collector.collect(payload(), "t1")
        result = collector.collect(payload(), "t1")
        assert result.accepted is False
        assert result.duplicate is True
        assert result.recompute is None
        assert len(db.list_events("t1", "acme")) == 1

    def test_kind_case_insensitive(self, collector):
        assert collector.collect(payload(kind=" Clicked "), "t1").event.kind == EventKind.CLICKED

    def test_timestamp_normalized_to_utc(self, collector):
        result = collector.collect(payload(timestamp="2026-04-02T12:30:00+02:00"), "t1")
        assert result.event.timestamp.isoformat() == "2026-04-02T10:30:00+00:00"

    def test_naive_timestamp_taken_as_utc(self, collector):
        result = collector.collect(payload(timestamp="2026-04-02T10:30:00"), "t1")
        assert result.event.timestamp.utcoffset().total_seconds() == 0

    @pytest.mark.parametrize("field", ["prospect_id", "kind", "timestamp"])
    def test_missing_required_field(self, collector, field):
        data = payload()
        del data[field]
        with pytest.raises(EventValidationError):
            collector.collect(data, "t1")

    def test_unknown_kind(self, collector):
        with pytest.raises(EventValidationError) as exc_info:
            collector.collect(payload(kind="forwarded"), "t1")
        assert exc_info.value.prospect_id == "acme"
        assert exc_info.value.component == "collector"

    def test_unknown_prospect(self, collector):
        with pytest.raises(EventValidationError, match="unknown prospect"):
            collector.collect(payload(prospect_id="ghost"), "t1")

    def test_prospect_scoped_by_tenant(self, collector):
        with pytest.raises(EventValidationError):
            collector.collect(payload(), "other-tenant")

    def test_not_a_mapping(self, collector):
        with pytest.raises(EventValidationError):
            collector.collect(["opened"], "t1")

    def test_reply_classified_on_collection(self, collector):
        result = collector.collect(payload(
            kind="replied",
            external_id="r1",
            reply_text="<p>Can we schedule a call?</p>",
        ), "t1")
        assert result.event.reply_text == "Can we schedule a call?"
        assert result.event.reply_sentiment == "positive"
        assert result.event.reply_intent == "meeting_request"
        assert result.event.needs_human_review
        assert result.classification.needs_human_review

    def test_missing_external_id_is_derived(self, collector, db):
        data = payload()
        del data["external_id"]
        first = collector.collect(data, "t1")
        second = collector.collect(dict(data), "t1")
        assert first.event.external_id.startswith("auto-")
        assert second.duplicate
        assert len(db.list_events("t1", "acme")) == 1

    def test_derived_id_is_stable(self):
        from datetime import datetime, timezone
        ts = datetime(2026, 4, 2, tzinfo=timezone.utc)
        assert derive_external_id("m", EventKind.SENT, ts) == derive_external_id("m", EventKind.SENT, ts)
        assert derive_external_id("m", EventKind.SENT, ts) != derive_external_id("m", EventKind.OPENED, ts)


class TestCollectMany:
    """Tests for batch collection."""

    def test_batch_continues_past_errors(self, collector):
        batch = collector.collect_many([
            payload(external_id="a"),
            payload(kind="bogus", external_id="b"),
            payload(external_id="a"),
            payload(external_id="c", kind="clicked"),
        ], "t1")

        assert batch.accepted_count == 2
        assert batch.duplicate_count == 1
        assert [index for index, _ in batch.errors] == [1]
        assert len(batch.recompute_requests) == 1
