"""SQLite storage for prospects, analysis snapshots and the engagement log."""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional, List, Generator, Tuple

from .models import (
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
    utcnow,
)
from ..core.errors import SnapshotVersionError

logger = logging.getLogger(__name__)


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class ProspectDatabase:
    """SQLite database scoped by tenant and prospect on every query."""

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize database connection."""
        if db_path is None:
            from ..core.config import settings
            db_path = settings.db_path

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_db()

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self):
        """Initialize database schema."""
        with self._get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS prospects (
                    tenant_id TEXT NOT NULL,
                    id TEXT NOT NULL,
                    name TEXT,
                    industry TEXT,
                    company_size TEXT DEFAULT 'unknown',
                    revenue_band TEXT,
                    website TEXT,
                    stage TEXT NOT NULL DEFAULT 'identified',
                    created_at TIMESTAMP,
                    updated_at TIMESTAMP,

                    PRIMARY KEY (tenant_id, id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS analysis_snapshots (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    tenant_id TEXT NOT NULL,
                    prospect_id TEXT NOT NULL,
                    analysis_type TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    content_quality_score INTEGER,
                    created_at TIMESTAMP,

                    UNIQUE(tenant_id, prospect_id, analysis_type, version)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS opportunities (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    tenant_id TEXT NOT NULL,
                    prospect_id TEXT NOT NULL,
                    process_name TEXT,
                    priority_score INTEGER NOT NULL,
                    service_tier TEXT,
                    annual_savings REAL DEFAULT 0,
                    created_at TIMESTAMP
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS engagement_events (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    tenant_id TEXT NOT NULL,
                    prospect_id TEXT NOT NULL,
                    integration_id TEXT NOT NULL,
                    external_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    timestamp TIMESTAMP NOT NULL,
                    reply_text TEXT,
                    reply_sentiment TEXT,
                    reply_intent TEXT,
                    needs_human_review INTEGER DEFAULT 0,
                    received_at TIMESTAMP,

                    UNIQUE(tenant_id, prospect_id, external_id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS score_records (
                    tenant_id TEXT NOT NULL,
                    prospect_id TEXT NOT NULL,
                    lead_score INTEGER NOT NULL CHECK (lead_score BETWEEN 0 AND 100),
                    engagement_score INTEGER NOT NULL CHECK (engagement_score BETWEEN 0 AND 100),
                    temperature TEXT NOT NULL,
                    lead_status TEXT NOT NULL,
                    computed_at TIMESTAMP,

                    PRIMARY KEY (tenant_id, prospect_id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS campaign_assignments (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    tenant_id TEXT NOT NULL,
                    prospect_id TEXT NOT NULL,
                    campaign_id TEXT NOT NULL,
                    sequence_id TEXT NOT NULL,
                    delay_hours REAL NOT NULL,
                    priority TEXT NOT NULL,
                    reason TEXT NOT NULL,
                    tier TEXT,
                    assigned_at TIMESTAMP
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS stage_transitions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    tenant_id TEXT NOT NULL,
                    prospect_id TEXT NOT NULL,
                    from_stage TEXT NOT NULL,
                    to_stage TEXT NOT NULL,
                    trigger TEXT,
                    occurred_at TIMESTAMP
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_events_prospect
                ON engagement_events(tenant_id, prospect_id, timestamp)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_snapshots_prospect
                ON analysis_snapshots(tenant_id, prospect_id, analysis_type)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_opportunities_prospect
                ON opportunities(tenant_id, prospect_id)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_assignments_prospect
                ON campaign_assignments(tenant_id, prospect_id)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_scores_lead ON score_records(lead_score DESC)
            """)

    # === PROSPECTS ===

    def _row_to_prospect(self, row: sqlite3.Row) -> Prospect:
        """Convert a database row to a Prospect object."""
        return Prospect(
            id=row["id"],
            tenant_id=row["tenant_id"],
            name=row["name"] or "",
            industry=row["industry"] or "",
            company_size=CompanySize.parse(row["company_size"]),
            revenue_band=row["revenue_band"],
            website=row["website"],
            stage=ProspectStage(row["stage"]),
            created_at=_dt(row["created_at"]) or utcnow(),
            updated_at=_dt(row["updated_at"]) or utcnow(),
        )

    def upsert_prospect(self, prospect: Prospect) -> Tuple[Prospect, bool]:
        """
        Insert a prospect on first sighting, or refresh its company attributes.
        The stage is never touched here. Returns (prospect, is_new).
        """
        now = utcnow().isoformat()
        existing = self.get_prospect(prospect.tenant_id, prospect.id)

        with self._get_connection() as conn:
            if existing is None:
                conn.execute("""
                    INSERT INTO prospects (
                        tenant_id, id, name, industry, company_size, revenue_band,
                        website, stage, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    prospect.tenant_id,
                    prospect.id,
                    prospect.name,
                    prospect.industry,
                    prospect.company_size.value,
                    prospect.revenue_band,
                    prospect.website,
                    prospect.stage.value,
                    now,
                    now,
                ))
            else:
                conn.execute("""
                    UPDATE prospects SET
                        name = COALESCE(NULLIF(?, ''), name),
                        industry = COALESCE(NULLIF(?, ''), industry),
                        company_size = ?,
                        revenue_band = COALESCE(?, revenue_band),
                        website = COALESCE(?, website),
                        updated_at = ?
                    WHERE tenant_id = ? AND id = ?
                """, (
                    prospect.name,
                    prospect.industry,
                    prospect.company_size.value
                    if prospect.company_size is not CompanySize.UNKNOWN
                    else existing.company_size.value,
                    prospect.revenue_band,
                    prospect.website,
                    now,
                    prospect.tenant_id,
                    prospect.id,
                ))

        return self.get_prospect(prospect.tenant_id, prospect.id), existing is None

    def get_prospect(self, tenant_id: str, prospect_id: str) -> Optional[Prospect]:
        """Get a prospect by ID."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM prospects WHERE tenant_id = ? AND id = ?",
                (tenant_id, prospect_id)
            ).fetchone()
            return self._row_to_prospect(row) if row else None

    def list_prospects(
        self,
        tenant_id: str,
        stage: Optional[ProspectStage] = None,
        limit: int = 100,
    ) -> List[Prospect]:
        """List prospects for a tenant, optionally filtered by stage."""
        query = "SELECT * FROM prospects WHERE tenant_id = ?"
        params: list = [tenant_id]
        if stage is not None:
            query += " AND stage = ?"
            params.append(stage.value)
        query += " ORDER BY updated_at DESC LIMIT ?"
        params.append(limit)

        with self._get_connection() as conn:
            return [self._row_to_prospect(row) for row in conn.execute(query, params).fetchall()]

    def update_stage(self, tenant_id: str, prospect_id: str, stage: ProspectStage):
        """Persist a stage change."""
        with self._get_connection() as conn:
            conn.execute(
                "UPDATE prospects SET stage = ?, updated_at = ? WHERE tenant_id = ? AND id = ?",
                (stage.value, utcnow().isoformat(), tenant_id, prospect_id)
            )

    # === ANALYSIS SNAPSHOTS ===

    def latest_snapshot_version(
        self,
        tenant_id: str,
        prospect_id: str,
        analysis_type: AnalysisType,
    ) -> int:
        """Highest stored version for a type, 0 when none."""
        with self._get_connection() as conn:
            row = conn.execute("""
                SELECT MAX(version) AS version FROM analysis_snapshots
                WHERE tenant_id = ? AND prospect_id = ? AND analysis_type = ?
            """, (tenant_id, prospect_id, analysis_type.value)).fetchone()
            return row["version"] or 0

    def add_snapshot(self, tenant_id: str, snapshot: AnalysisSnapshot) -> AnalysisSnapshot:
        """Write an immutable snapshot; its version must exceed the stored one."""
        with self._get_connection() as conn:
            row = conn.execute("""
                SELECT MAX(version) AS version FROM analysis_snapshots
                WHERE tenant_id = ? AND prospect_id = ? AND analysis_type = ?
            """, (tenant_id, snapshot.prospect_id, snapshot.analysis_type.value)).fetchone()
            latest = row["version"] or 0
            if snapshot.version <= latest:
                raise SnapshotVersionError(
                    f"{snapshot.analysis_type.value} version {snapshot.version} "
                    f"does not advance stored version {latest}",
                    prospect_id=snapshot.prospect_id,
                )

            conn.execute("""
                INSERT INTO analysis_snapshots (
                    tenant_id, prospect_id, analysis_type, version, status,
                    content_quality_score, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                tenant_id,
                snapshot.prospect_id,
                snapshot.analysis_type.value,
                snapshot.version,
                snapshot.status.value,
                snapshot.content_quality_score,
                snapshot.created_at.isoformat(),
            ))
        return snapshot

    def list_snapshots(self, tenant_id: str, prospect_id: str) -> List[AnalysisSnapshot]:
        """All snapshots for a prospect, oldest version first."""
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT * FROM analysis_snapshots
                WHERE tenant_id = ? AND prospect_id = ?
                ORDER BY analysis_type, version
            """, (tenant_id, prospect_id)).fetchall()

        return [
            AnalysisSnapshot(
                prospect_id=row["prospect_id"],
                analysis_type=AnalysisType(row["analysis_type"]),
                version=row["version"],
                status=AnalysisStatus(row["status"]),
                content_quality_score=row["content_quality_score"],
                created_at=_dt(row["created_at"]) or utcnow(),
            )
            for row in rows
        ]

    # === OPPORTUNITIES ===

    def add_opportunity(self, tenant_id: str, opportunity: OpportunityRecord) -> OpportunityRecord:
        """Store an opportunity and return it with its ID."""
        with self._get_connection() as conn:
            cursor = conn.execute("""
                INSERT INTO opportunities (
                    tenant_id, prospect_id, process_name, priority_score,
                    service_tier, annual_savings, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                tenant_id,
                opportunity.prospect_id,
                opportunity.process_name,
                opportunity.priority_score,
                opportunity.service_tier.value if opportunity.service_tier else None,
                opportunity.annual_savings,
                utcnow().isoformat(),
            ))
            opportunity_id = cursor.lastrowid

        return OpportunityRecord(
            id=opportunity_id,
            prospect_id=opportunity.prospect_id,
            priority_score=opportunity.priority_score,
            process_name=opportunity.process_name,
            service_tier=opportunity.service_tier,
            annual_savings=opportunity.annual_savings,
        )

    def list_opportunities(self, tenant_id: str, prospect_id: str) -> List[OpportunityRecord]:
        """All opportunities for a prospect."""
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT * FROM opportunities WHERE tenant_id = ? AND prospect_id = ? ORDER BY id
            """, (tenant_id, prospect_id)).fetchall()

        return [
            OpportunityRecord(
                id=row["id"],
                prospect_id=row["prospect_id"],
                priority_score=row["priority_score"],
                process_name=row["process_name"] or "",
                service_tier=ServiceTier(row["service_tier"]) if row["service_tier"] else None,
                annual_savings=row["annual_savings"] or 0.0,
            )
            for row in rows
        ]

    # === ENGAGEMENT LOG ===

    def append_event(self, tenant_id: str, event: EngagementEvent) -> bool:
        """
        Append an event to the log.
        Returns False when (prospect, external_id) was already recorded.
        """
        with self._get_connection() as conn:
            cursor = conn.execute("""
                INSERT OR IGNORE INTO engagement_events (
                    tenant_id, prospect_id, integration_id, external_id, kind,
                    timestamp, reply_text, reply_sentiment, reply_intent,
                    needs_human_review, received_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                tenant_id,
                event.prospect_id,
                event.integration_id,
                event.external_id,
                event.kind.value,
                event.timestamp.isoformat(),
                event.reply_text,
                event.reply_sentiment,
                event.reply_intent,
                int(event.needs_human_review),
                event.received_at.isoformat(),
            ))
            return cursor.rowcount == 1

    def list_events(
        self,
        tenant_id: str,
        prospect_id: str,
        integration_id: Optional[str] = None,
    ) -> List[EngagementEvent]:
        """The prospect's log in arrival order."""
        query = "SELECT * FROM engagement_events WHERE tenant_id = ? AND prospect_id = ?"
        params: list = [tenant_id, prospect_id]
        if integration_id is not None:
            query += " AND integration_id = ?"
            params.append(integration_id)
        query += " ORDER BY seq"

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()

        return [
            EngagementEvent(
                prospect_id=row["prospect_id"],
                integration_id=row["integration_id"],
                external_id=row["external_id"],
                kind=EventKind(row["kind"]),
                timestamp=_dt(row["timestamp"]),
                reply_text=row["reply_text"],
                reply_sentiment=row["reply_sentiment"],
                reply_intent=row["reply_intent"],
                needs_human_review=bool(row["needs_human_review"]),
                received_at=_dt(row["received_at"]) or utcnow(),
                sequence=row["seq"],
            )
            for row in rows
        ]

    def list_integrations(self, tenant_id: str, prospect_id: str) -> List[str]:
        """Integration identities seen in a prospect's log."""
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT DISTINCT integration_id FROM engagement_events
                WHERE tenant_id = ? AND prospect_id = ? ORDER BY integration_id
            """, (tenant_id, prospect_id)).fetchall()
            return [row["integration_id"] for row in rows]

    # === SCORES ===

    def save_score(self, tenant_id: str, record: ScoreRecord):
        """Replace the current score record for a prospect."""
        with self._get_connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO score_records (
                    tenant_id, prospect_id, lead_score, engagement_score,
                    temperature, lead_status, computed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                tenant_id,
                record.prospect_id,
                record.lead_score,
                record.engagement_score,
                record.temperature.value,
                record.lead_status.value,
                record.computed_at.isoformat(),
            ))

    def get_score(self, tenant_id: str, prospect_id: str) -> Optional[ScoreRecord]:
        """Current score record, None if never computed."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM score_records WHERE tenant_id = ? AND prospect_id = ?",
                (tenant_id, prospect_id)
            ).fetchone()

        if not row:
            return None
        return ScoreRecord(
            prospect_id=row["prospect_id"],
            lead_score=row["lead_score"],
            engagement_score=row["engagement_score"],
            temperature=Temperature(row["temperature"]),
            lead_status=LeadStatus(row["lead_status"]),
            computed_at=_dt(row["computed_at"]) or utcnow(),
        )

    def top_scores(self, tenant_id: str, limit: int = 20) -> List[ScoreRecord]:
        """Highest lead scores for a tenant."""
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT prospect_id FROM score_records WHERE tenant_id = ?
                ORDER BY lead_score DESC, engagement_score DESC LIMIT ?
            """, (tenant_id, limit)).fetchall()
        return [self.get_score(tenant_id, row["prospect_id"]) for row in rows]

    # === ASSIGNMENTS ===

    def add_assignment(self, tenant_id: str, prospect_id: str, assignment: CampaignAssignment):
        """Append an assignment to the prospect's history."""
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO campaign_assignments (
                    tenant_id, prospect_id, campaign_id, sequence_id, delay_hours,
                    priority, reason, tier, assigned_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                tenant_id,
                prospect_id,
                assignment.campaign_id,
                assignment.sequence_id,
                assignment.delay_hours,
                assignment.priority,
                assignment.reason,
                assignment.tier,
                assignment.assigned_at.isoformat(),
            ))

    def assignment_history(self, tenant_id: str, prospect_id: str) -> List[CampaignAssignment]:
        """All assignments for a prospect, oldest first."""
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT * FROM campaign_assignments
                WHERE tenant_id = ? AND prospect_id = ? ORDER BY id
            """, (tenant_id, prospect_id)).fetchall()

        return [
            CampaignAssignment(
                campaign_id=row["campaign_id"],
                sequence_id=row["sequence_id"],
                delay_hours=row["delay_hours"],
                priority=row["priority"],
                reason=row["reason"],
                tier=row["tier"] or "cold",
                assigned_at=_dt(row["assigned_at"]) or utcnow(),
            )
            for row in rows
        ]

    def latest_assignment(self, tenant_id: str, prospect_id: str) -> Optional[CampaignAssignment]:
        history = self.assignment_history(tenant_id, prospect_id)
        return history[-1] if history else None

    # === STAGE TRANSITIONS ===

    def add_transition(self, tenant_id: str, transition: StageTransition):
        """Record a stage change for audit."""
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO stage_transitions (
                    tenant_id, prospect_id, from_stage, to_stage, trigger, occurred_at
                ) VALUES (?, ?, ?, ?, ?, ?)
            """, (
                tenant_id,
                transition.prospect_id,
                transition.from_stage.value,
                transition.to_stage.value,
                transition.trigger,
                transition.occurred_at.isoformat(),
            ))

    def list_transitions(self, tenant_id: str, prospect_id: str) -> List[StageTransition]:
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT * FROM stage_transitions
                WHERE tenant_id = ? AND prospect_id = ? ORDER BY id
            """, (tenant_id, prospect_id)).fetchall()

        return [
            StageTransition(
                prospect_id=row["prospect_id"],
                from_stage=ProspectStage(row["from_stage"]),
                to_stage=ProspectStage(row["to_stage"]),
                trigger=row["trigger"] or "",
                occurred_at=_dt(row["occurred_at"]) or utcnow(),
            )
            for row in rows
        ]

    # === STATS ===

    def get_stats(self, tenant_id: str) -> dict:
        """Get counts by stage and temperature for a tenant."""
        with self._get_connection() as conn:
            by_stage = {
                row["stage"]: row["count"]
                for row in conn.execute("""
                    SELECT stage, COUNT(*) AS count FROM prospects
                    WHERE tenant_id = ? GROUP BY stage
                """, (tenant_id,)).fetchall()
            }
            by_temperature = {
                row["temperature"]: row["count"]
                for row in conn.execute("""
                    SELECT temperature, COUNT(*) AS count FROM score_records
                    WHERE tenant_id = ? GROUP BY temperature
                """, (tenant_id,)).fetchall()
            }
            events = conn.execute(
                "SELECT COUNT(*) AS count FROM engagement_events WHERE tenant_id = ?",
                (tenant_id,)
            ).fetchone()["count"]

        return {
            "total_prospects": sum(by_stage.values()),
            "by_stage": by_stage,
            "by_temperature": by_temperature,
            "total_events": events,
        }
