"""Lifecycle state machine - pipeline stage and engagement temperature."""

import logging
from typing import Iterable, Optional, Tuple

from ..storage.models import (
    AnalysisSnapshot,
    EngagementEvent,
    EventKind,
    LeadStatus,
    Prospect,
    ProspectStage,
    StageTransition,
    Temperature,
)
from .classifier import ReplyIntent, Sentiment

logger = logging.getLogger(__name__)

# Forward chain; disqualified and converted both follow qualified
FORWARD_CHAIN = [
    ProspectStage.IDENTIFIED,
    ProspectStage.ANALYZING,
    ProspectStage.ANALYZED,
    ProspectStage.CONTACTED,
    ProspectStage.QUALIFIED,
]
TERMINAL_STAGES = {ProspectStage.DISQUALIFIED, ProspectStage.CONVERTED}

# Stages the analysis trigger is allowed to move out of
ANALYSIS_ADVANCEABLE = {ProspectStage.IDENTIFIED, ProspectStage.ANALYZING}

_STATUS_BY_KIND = {
    EventKind.UNSUBSCRIBED: LeadStatus.UNSUBSCRIBED,
    EventKind.COMPLAINED: LeadStatus.COMPLAINED,
    EventKind.BOUNCED: LeadStatus.BOUNCED,
}


def stage_rank(stage: ProspectStage) -> int:
    """Position along the forward chain; terminal stages rank last."""
    if stage in TERMINAL_STAGES:
        return len(FORWARD_CHAIN)
    return FORWARD_CHAIN.index(stage)


def next_stage(stage: ProspectStage) -> Optional[ProspectStage]:
    """The following stage on the chain, None at the end."""
    if stage in TERMINAL_STAGES or stage == FORWARD_CHAIN[-1]:
        return None
    return FORWARD_CHAIN[FORWARD_CHAIN.index(stage) + 1]


class LifecycleStateMachine:
    """Advances prospect stages and folds engagement events into temperature/status."""

    # === STAGE ===

    def advance_on_analysis(
        self,
        prospect: Prospect,
        snapshot: AnalysisSnapshot,
    ) -> Optional[StageTransition]:
        """Move one step forward when an analysis arrives.

        Only identified and analyzing prospects move; later stages belong to
        sales actions, so repeated triggers there are no-ops.
        """
        if prospect.stage not in ANALYSIS_ADVANCEABLE:
            logger.debug(f"Analysis trigger ignored for {prospect.id} at {prospect.stage.value}")
            return None

        target = next_stage(prospect.stage)
        transition = StageTransition(
            prospect_id=prospect.id,
            from_stage=prospect.stage,
            to_stage=target,
            trigger=f"analysis:{snapshot.analysis_type.value}:v{snapshot.version}",
        )
        prospect.stage = target
        logger.info(f"Prospect {prospect.id} advanced {transition.from_stage.value} -> {target.value}")
        return transition

    def manual_transition(
        self,
        prospect: Prospect,
        to_stage: ProspectStage,
        operator: str = "operator",
    ) -> Optional[StageTransition]:
        """Operator override; the only path that may move a stage backward."""
        if prospect.stage == to_stage:
            return None
        transition = StageTransition(
            prospect_id=prospect.id,
            from_stage=prospect.stage,
            to_stage=to_stage,
            trigger=f"manual:{operator}",
        )
        if stage_rank(to_stage) < stage_rank(prospect.stage):
            logger.warning(
                f"Manual backward move for {prospect.id}: "
                f"{prospect.stage.value} -> {to_stage.value} by {operator}"
            )
        prospect.stage = to_stage
        return transition

    # === TEMPERATURE / STATUS ===

    def apply_event(
        self,
        temperature: Temperature,
        status: LeadStatus,
        event: EngagementEvent,
    ) -> Tuple[Temperature, LeadStatus]:
        """Apply one event. Later events may downgrade earlier ones."""
        if event.kind == EventKind.REPLIED:
            sentiment = event.reply_sentiment
            intent = event.reply_intent
            if sentiment == Sentiment.POSITIVE.value:
                temperature = Temperature.HOT
            elif sentiment == Sentiment.NEGATIVE.value:
                temperature = Temperature.COLD

            if sentiment == Sentiment.NEGATIVE.value or intent == ReplyIntent.UNSUBSCRIBE_REQUEST.value:
                status = LeadStatus.UNSUBSCRIBED
            elif sentiment == Sentiment.POSITIVE.value or intent == ReplyIntent.INTERESTED.value:
                status = LeadStatus.REPLIED

        elif event.kind == EventKind.CLICKED:
            if temperature.rank < Temperature.WARM.rank:
                temperature = Temperature.WARM

        elif event.kind in _STATUS_BY_KIND:
            status = _STATUS_BY_KIND[event.kind]

        return temperature, status

    def fold_engagement(
        self,
        events: Iterable[EngagementEvent],
    ) -> Tuple[Temperature, LeadStatus]:
        """Replay events in timestamp order; the most recent signal wins."""
        temperature, status = Temperature.COLD, LeadStatus.ACTIVE
        for event in sorted(events, key=lambda e: (e.timestamp, e.external_id)):
            temperature, status = self.apply_event(temperature, status, event)
        return temperature, status
