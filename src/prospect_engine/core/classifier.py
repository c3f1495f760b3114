"""Reply classifier - derives sentiment and intent from reply text."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Optional, Tuple

from .lexicon import ReplySignal, LexiconCategory, REPLY_SIGNALS


class Sentiment(Enum):
    """Overall tone of a reply."""

    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class ReplyIntent(Enum):
    """What the prospect is asking for."""

    MEETING_REQUEST = "meeting_request"
    PRICING_INQUIRY = "pricing_inquiry"
    UNSUBSCRIBE_REQUEST = "unsubscribe_request"
    INTERESTED = "interested"
    NOT_INTERESTED = "not_interested"
    GENERAL_INQUIRY = "general_inquiry"


# Intent lexicons in precedence order, first hit wins
_INTENT_PRECEDENCE: List[Tuple[LexiconCategory, ReplyIntent]] = [
    (LexiconCategory.MEETING, ReplyIntent.MEETING_REQUEST),
    (LexiconCategory.PRICING, ReplyIntent.PRICING_INQUIRY),
    (LexiconCategory.UNSUBSCRIBE, ReplyIntent.UNSUBSCRIBE_REQUEST),
]


def phrase_pattern(signal: ReplySignal) -> re.Pattern:
    """Whole-word pattern for a phrase plus the endings it allows."""
    pattern = re.escape(signal.phrase.lower())
    if signal.inflections:
        pattern += "(?:" + "|".join(re.escape(e) for e in signal.inflections) + ")?"
    return re.compile(r"\b" + pattern + r"\b", re.IGNORECASE)


@dataclass
class PhraseMatch:
    """A lexicon phrase found in reply text."""

    signal: ReplySignal
    matched_text: str
    start: int
    end: int


@dataclass
class ReplyClassification:
    """Result of classifying a reply."""

    sentiment: Sentiment = Sentiment.NEUTRAL
    intent: ReplyIntent = ReplyIntent.GENERAL_INQUIRY
    confidence: str = "medium"
    needs_human_review: bool = False
    matches: List[PhraseMatch] = field(default_factory=list)

    @property
    def matched_phrases(self) -> List[str]:
        return sorted({m.signal.phrase for m in self.matches})

    def to_dict(self) -> Dict:
        return {
            "sentiment": self.sentiment.value,
            "intent": self.intent.value,
            "confidence": self.confidence,
            "needs_human_review": self.needs_human_review,
            "matched_phrases": self.matched_phrases,
        }


class ReplyClassifier:
    """Classifies free-text replies against compiled lexicons."""

    def __init__(self, signals: Optional[List[ReplySignal]] = None):
        """Initialize with optional custom lexicon."""
        self.signals = signals or REPLY_SIGNALS
        self._patterns: List[Tuple[re.Pattern, ReplySignal]] = [
            (phrase_pattern(signal), signal) for signal in self.signals
        ]

    @staticmethod
    def normalize(text: Optional[str]) -> str:
        """Lowercase and collapse whitespace."""
        if not text:
            return ""
        return re.sub(r"\s+", " ", str(text)).strip().lower()

    def find_matches(self, text: str) -> List[PhraseMatch]:
        """Find every lexicon phrase in already-normalized text."""
        matches: List[PhraseMatch] = []
        for pattern, signal in self._patterns:
            for match in pattern.finditer(text):
                matches.append(PhraseMatch(
                    signal=signal,
                    matched_text=match.group(),
                    start=match.start(),
                    end=match.end(),
                ))
        return matches

    def classify(self, content: Optional[str]) -> ReplyClassification:
        """Classify a reply. Never raises; empty input gets the defaults."""
        text = self.normalize(content)
        if not text:
            return ReplyClassification()

        matches = self._mask_contained_positives(self.find_matches(text))
        categories = {m.signal.category for m in matches}

        if LexiconCategory.POSITIVE in categories:
            sentiment = Sentiment.POSITIVE
        elif LexiconCategory.NEGATIVE in categories:
            sentiment = Sentiment.NEGATIVE
        else:
            sentiment = Sentiment.NEUTRAL

        intent = self._resolve_intent(categories, sentiment)

        lexicon_hit = bool(categories & {LexiconCategory.POSITIVE, LexiconCategory.NEGATIVE})
        needs_review = (
            sentiment is Sentiment.POSITIVE
            or intent in (ReplyIntent.INTERESTED, ReplyIntent.MEETING_REQUEST)
        )

        return ReplyClassification(
            sentiment=sentiment,
            intent=intent,
            confidence="high" if lexicon_hit else "medium",
            needs_human_review=needs_review,
            matches=matches,
        )

    @staticmethod
    def _resolve_intent(categories, sentiment: Sentiment) -> ReplyIntent:
        for category, intent in _INTENT_PRECEDENCE:
            if category in categories:
                return intent
        if sentiment is Sentiment.POSITIVE:
            return ReplyIntent.INTERESTED
        if sentiment is Sentiment.NEGATIVE:
            return ReplyIntent.NOT_INTERESTED
        return ReplyIntent.GENERAL_INQUIRY

    @staticmethod
    def _mask_contained_positives(matches: List[PhraseMatch]) -> List[PhraseMatch]:
        """Drop positive hits that sit inside a negative phrase ("not interested")."""
        negatives = [m for m in matches if m.signal.category is LexiconCategory.NEGATIVE]
        kept = []
        for match in matches:
            if match.signal.category is LexiconCategory.POSITIVE and any(
                n.start <= match.start and match.end <= n.end and (n.end - n.start) > (match.end - match.start)
                for n in negatives
            ):
                continue
            kept.append(match)
        return kept


_default_classifier: Optional[ReplyClassifier] = None


def classify_reply(content: Optional[str]) -> ReplyClassification:
    """Quick helper using a shared default classifier."""
    global _default_classifier
    if _default_classifier is None:
        _default_classifier = ReplyClassifier()
    return _default_classifier.classify(content)
