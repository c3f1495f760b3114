"""Core scoring, classification, assignment and lifecycle logic."""

from .scorer import ScoringEngine, LeadScoreBreakdown, EngagementBreakdown
from .classifier import ReplyClassifier, ReplyClassification, Sentiment, ReplyIntent, classify_reply
from .lexicon import ReplySignal, LexiconCategory, REPLY_SIGNALS
from .assignment import AssignmentResolver
from .lifecycle import LifecycleStateMachine
from .config import EngineConfig, EngineConfigManager
from .errors import (
    EngineError,
    EventValidationError,
    ProspectNotFoundError,
    IntegrationNotFoundError,
    SnapshotVersionError,
)

__all__ = [
    "ScoringEngine",
    "LeadScoreBreakdown",
    "EngagementBreakdown",
    "ReplyClassifier",
    "ReplyClassification",
    "Sentiment",
    "ReplyIntent",
    "classify_reply",
    "ReplySignal",
    "LexiconCategory",
    "REPLY_SIGNALS",
    "AssignmentResolver",
    "LifecycleStateMachine",
    "EngineConfig",
    "EngineConfigManager",
    "EngineError",
    "EventValidationError",
    "ProspectNotFoundError",
    "IntegrationNotFoundError",
    "SnapshotVersionError",
]
