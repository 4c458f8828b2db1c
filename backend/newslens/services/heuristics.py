"""
Heuristic scoring of newly ingested items.

Cheap, model-free scores computed once per item from its text, source weight
and age. They only feed the small base term of the ranking formula.
"""
import math
import re
from datetime import datetime
from typing import Optional

from newslens.core.text import tokenize
from newslens.core.utils import clamp01, utcnow
from newslens.models.domain import HeuristicScores, Item

RECENCY_SCALE_HOURS = 12.0
TITLE_LENGTH_NORM = 120
CAPITALIZED_NORM = 6

_CAPITALIZED_RE = re.compile(r"\b[A-ZА-ЯЁ][A-Za-zА-Яа-яЁё0-9-]+\b")


class HeuristicScorer:
    """Computes importance, hype, prominence, novelty and quality."""

    def recency(self, published_at: datetime, now: Optional[datetime] = None) -> float:
        """exp(-hours / 12); future timestamps count as fresh."""
        now = now or utcnow()
        hours = max(0.0, (now - published_at).total_seconds() / 3600)
        return math.exp(-hours / RECENCY_SCALE_HOURS)

    def score(self, item: Item, now: Optional[datetime] = None) -> HeuristicScores:
        sw = item.source_weight
        recency = self.recency(item.published_at, now)

        unique_terms = len(set(tokenize(item.title)) | set(tokenize(item.summary)))
        novelty = min(1.0, 0.02 * unique_terms)

        importance = min(
            1.0,
            0.6 * sw + 0.3 * min(1.0, len(item.title) / TITLE_LENGTH_NORM) + 0.1 * recency,
        )
        capitalized = len(_CAPITALIZED_RE.findall(item.title))
        prominence = min(1.0, 0.7 * sw + 0.3 * min(1.0, capitalized / CAPITALIZED_NORM))

        return HeuristicScores(
            importance=round(importance, 2),
            hype=round(recency, 2),
            prominence=round(prominence, 2),
            novelty=round(novelty, 2),
            quality=round(clamp01(sw), 2),
        )
