"""Reply lexicons for sentiment and intent classification."""

from dataclasses import dataclass
from enum import Enum
from typing import List, Tuple


class LexiconCategory(Enum):
    """Keyword groups used by the reply classifier."""

    POSITIVE = "positive"  # Sentiment: favorable
    NEGATIVE = "negative"  # Sentiment: rejection / opt out
    MEETING = "meeting"  # Intent: wants to talk
    PRICING = "pricing"  # Intent: asks about cost
    UNSUBSCRIBE = "unsubscribe"  # Intent: wants out


@dataclass(frozen=True)
class ReplySignal:
    """A keyword or phrase belonging to one lexicon."""

    phrase: str
    category: LexiconCategory
    description: str = ""
    # Endings that also match, e.g. ("s", "ed") for "calls", "called"
    inflections: Tuple[str, ...] = ()


REPLY_SIGNALS: List[ReplySignal] = [
    # === POSITIVE ===
    ReplySignal("interested", LexiconCategory.POSITIVE, "Explicit interest"),
    ReplySignal("yes", LexiconCategory.POSITIVE, "Affirmative"),
    ReplySignal("sounds good", LexiconCategory.POSITIVE, "Agreement"),
    ReplySignal("tell me more", LexiconCategory.POSITIVE, "Wants details"),
    ReplySignal("schedule", LexiconCategory.POSITIVE, "Wants to book time", inflections=("s", "d")),
    ReplySignal("call", LexiconCategory.POSITIVE, "Open to a call", inflections=("s", "ed", "ing")),
    ReplySignal("meeting", LexiconCategory.POSITIVE, "Open to a meeting", inflections=("s",)),
    ReplySignal("demo", LexiconCategory.POSITIVE, "Wants a demo", inflections=("s",)),
    ReplySignal("pricing", LexiconCategory.POSITIVE, "Cost research"),
    ReplySignal("learn more", LexiconCategory.POSITIVE, "Wants details"),

    # === NEGATIVE ===
    ReplySignal("not interested", LexiconCategory.NEGATIVE, "Explicit rejection"),
    ReplySignal("no", LexiconCategory.NEGATIVE, "Refusal"),
    ReplySignal("remove", LexiconCategory.NEGATIVE, "List removal", inflections=("d",)),
    ReplySignal("unsubscribe", LexiconCategory.NEGATIVE, "Opt out", inflections=("d",)),
    ReplySignal("stop", LexiconCategory.NEGATIVE, "Opt out"),
    ReplySignal("spam", LexiconCategory.NEGATIVE, "Complaint"),
    ReplySignal("delete", LexiconCategory.NEGATIVE, "Data removal", inflections=("d",)),
    ReplySignal("busy", LexiconCategory.NEGATIVE, "No capacity"),
    ReplySignal("no thanks", LexiconCategory.NEGATIVE, "Polite refusal"),

    # === MEETING ===
    ReplySignal("meeting", LexiconCategory.MEETING, inflections=("s",)),
    ReplySignal("call", LexiconCategory.MEETING, inflections=("s", "ed", "ing")),
    ReplySignal("demo", LexiconCategory.MEETING, inflections=("s",)),
    ReplySignal("schedule", LexiconCategory.MEETING, inflections=("s", "d")),
    ReplySignal("chat", LexiconCategory.MEETING, inflections=("s",)),
    ReplySignal("discuss", LexiconCategory.MEETING, inflections=("ed", "ing")),

    # === PRICING ===
    ReplySignal("price", LexiconCategory.PRICING, inflections=("s",)),
    ReplySignal("cost", LexiconCategory.PRICING, inflections=("s",)),
    ReplySignal("pricing", LexiconCategory.PRICING),
    ReplySignal("budget", LexiconCategory.PRICING),
    ReplySignal("quote", LexiconCategory.PRICING, inflections=("s",)),
    ReplySignal("proposal", LexiconCategory.PRICING, inflections=("s",)),

    # === UNSUBSCRIBE ===
    ReplySignal("remove", LexiconCategory.UNSUBSCRIBE, inflections=("d",)),
    ReplySignal("unsubscribe", LexiconCategory.UNSUBSCRIBE, inflections=("d",)),
]


def get_signals_by_category(category: LexiconCategory) -> List[ReplySignal]:
    """Get all phrases for a specific lexicon."""
    return [s for s in REPLY_SIGNALS if s.category == category]
