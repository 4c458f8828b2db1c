"""
Item-level scores that do not depend on the user.

quality_composite rewards evidence and penalizes spin:

    raw = avg(positive features) - 0.7 * avg(negative features)
    Q   = clamp(0.5 + raw / 2)

Each group averages only the features that are present, so a missing
feature never counts as zero.
"""
from typing import Iterable, Optional

from newslens.core.utils import clamp01
from newslens.models.domain import (
    HEURISTIC_FIELDS,
    NEGATIVE_FEATURES,
    POSITIVE_FEATURES,
    AnalysisFeatures,
    Item,
)

NEGATIVE_PENALTY = 0.7


def _mean_present(values: Iterable[Optional[float]]) -> float:
    present = [v for v in values if v is not None]
    return sum(present) / len(present) if present else 0.0


def quality_composite(item: Item) -> float:
    """Quality in [0, 1]; 0 for items without analysis scalars."""
    features = item.analysis
    if features is None or not features.has_scalars():
        return 0.0
    return features_composite(features)


def features_composite(features: AnalysisFeatures) -> float:
    avg_pos = _mean_present(getattr(features, name) for name in POSITIVE_FEATURES)
    avg_neg = _mean_present(getattr(features, name) for name in NEGATIVE_FEATURES)
    raw = avg_pos - NEGATIVE_PENALTY * avg_neg
    return clamp01(0.5 + raw / 2)


def heuristic_base(item: Item) -> float:
    """Mean of the five heuristic scores, absent scores counting as 0."""
    scores = item.heuristics
    return sum(getattr(scores, name) or 0.0 for name in HEURISTIC_FIELDS) / len(HEURISTIC_FIELDS)


def base_term(item: Item, enriched_scale: float = 0.2) -> float:
    """Heuristic base, scaled down once the item carries analysis features."""
    scale = enriched_scale if item.is_enriched else 1.0
    return heuristic_base(item) * scale
