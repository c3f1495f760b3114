"""Storage layer for prospects and engagement history."""

from .database import ProspectDatabase
from .models import (
    Prospect,
    ProspectStage,
    CompanySize,
    AnalysisSnapshot,
    AnalysisType,
    AnalysisStatus,
    OpportunityRecord,
    EngagementEvent,
    EventKind,
    ScoreRecord,
    CampaignAssignment,
    StageTransition,
    Temperature,
    LeadStatus,
)

__all__ = [
    "ProspectDatabase",
    "Prospect",
    "ProspectStage",
    "CompanySize",
    "AnalysisSnapshot",
    "AnalysisType",
    "AnalysisStatus",
    "OpportunityRecord",
    "EngagementEvent",
    "EventKind",
    "ScoreRecord",
    "CampaignAssignment",
    "StageTransition",
    "Temperature",
    "LeadStatus",
]
