"""Signal collector - validates, deduplicates and logs engagement events."""

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError

from .classifier import ReplyClassification, ReplyClassifier
from .errors import EventValidationError
from ..schemas import EngagementEventPayload
from ..storage.database import ProspectDatabase
from ..storage.models import EngagementEvent, EventKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecomputeRequest:
    """Token asking for a prospect's scores to be recomputed."""

    tenant_id: str
    prospect_id: str
    reason: str


@dataclass
class CollectResult:
    """Outcome of collecting a single event."""

    accepted: bool
    duplicate: bool = False
    event: Optional[EngagementEvent] = None
    classification: Optional[ReplyClassification] = None
    recompute: Optional[RecomputeRequest] = None


@dataclass
class BatchCollectResult:
    """Outcome of collecting many events; failures don't stop the batch."""

    results: List[CollectResult] = field(default_factory=list)
    errors: List[Tuple[int, EventValidationError]] = field(default_factory=list)

    @property
    def accepted_count(self) -> int:
        return sum(1 for r in self.results if r.accepted)

    @property
    def duplicate_count(self) -> int:
        return sum(1 for r in self.results if r.duplicate)

    @property
    def recompute_requests(self) -> List[RecomputeRequest]:
        """One request per affected prospect, in first-seen order."""
        seen = {}
        for result in self.results:
            if result.recompute is not None:
                key = (result.recompute.tenant_id, result.recompute.prospect_id)
                seen.setdefault(key, result.recompute)
        return list(seen.values())


def derive_external_id(
    integration_id: str,
    kind: EventKind,
    timestamp,
    reply_text: Optional[str] = None,
) -> str:
    """Stable id for events the source didn't label, so replays still dedupe."""
    raw = "|".join([integration_id, kind.value, timestamp.isoformat(), reply_text or ""])
    return "auto-" + hashlib.sha256(raw.encode()).hexdigest()[:24]


def _describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts)


class SignalCollector:
    """Accepts engagement events and appends them to the prospect's log.

    The collector never computes scores. An accepted event yields a
    RecomputeRequest; a duplicate is a silent no-op.
    """

    def __init__(self, db: ProspectDatabase, classifier: Optional[ReplyClassifier] = None):
        self.db = db
        self.classifier = classifier or ReplyClassifier()

    def validate(self, payload: Union[Dict[str, Any], EngagementEventPayload]) -> EngagementEventPayload:
        """Parse a raw payload, raising EventValidationError on bad input."""
        if isinstance(payload, EngagementEventPayload):
            return payload
        if not isinstance(payload, dict):
            raise EventValidationError(f"Event payload must be a mapping, got {type(payload).__name__}")

        try:
            return EngagementEventPayload.model_validate(payload)
        except ValidationError as e:
            prospect_id = payload.get("prospect_id")
            raise EventValidationError(
                _describe_validation_error(e),
                prospect_id=str(prospect_id) if prospect_id else None,
            ) from e

    def collect(
        self,
        payload: Union[Dict[str, Any], EngagementEventPayload],
        tenant_id: str,
    ) -> CollectResult:
        """Validate and append one event."""
        data = self.validate(payload)

        if self.db.get_prospect(tenant_id, data.prospect_id) is None:
            raise EventValidationError("Event references an unknown prospect", prospect_id=data.prospect_id)

        classification = None
        if data.kind == EventKind.REPLIED:
            classification = self.classifier.classify(data.reply_text)

        external_id = data.external_id or derive_external_id(
            data.integration_id, data.kind, data.timestamp, data.reply_text
        )

        event = EngagementEvent(
            prospect_id=data.prospect_id,
            integration_id=data.integration_id,
            external_id=external_id,
            kind=data.kind,
            timestamp=data.timestamp,
            reply_text=data.reply_text,
            reply_sentiment=classification.sentiment.value if classification else None,
            reply_intent=classification.intent.value if classification else None,
            needs_human_review=classification.needs_human_review if classification else False,
        )

        if not self.db.append_event(tenant_id, event):
            logger.debug(f"Duplicate event {external_id} for prospect {data.prospect_id}")
            return CollectResult(accepted=False, duplicate=True)

        logger.info(f"Collected {data.kind.value} event {external_id} for prospect {data.prospect_id}")
        return CollectResult(
            accepted=True,
            event=event,
            classification=classification,
            recompute=RecomputeRequest(
                tenant_id=tenant_id,
                prospect_id=data.prospect_id,
                reason=f"event:{data.kind.value}",
            ),
        )

    def collect_many(
        self,
        payloads: Iterable[Union[Dict[str, Any], EngagementEventPayload]],
        tenant_id: str,
    ) -> BatchCollectResult:
        """Collect a batch, recording per-event errors and continuing."""
        batch = BatchCollectResult()
        for index, payload in enumerate(payloads):
            try:
                batch.results.append(self.collect(payload, tenant_id))
            except EventValidationError as e:
                logger.warning(f"Rejected event #{index}: {e}")
                batch.errors.append((index, e))

        logger.info(
            f"Collected batch: {batch.accepted_count} accepted, "
            f"{batch.duplicate_count} duplicates, {len(batch.errors)} rejected"
        )
        return batch
