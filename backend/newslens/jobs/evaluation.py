"""
Heuristic evaluation pass - fills in heuristic scores for new items.
"""
from typing import Optional

import structlog

from newslens.services.heuristics import HeuristicScorer
from newslens.services.store import Store

logger = structlog.get_logger(__name__)


class HeuristicEvaluationJob:
    def __init__(self, store: Store, scorer: Optional[HeuristicScorer] = None):
        self.store = store
        self.scorer = scorer or HeuristicScorer()

    async def run(self, limit: int = 200) -> int:
        """Score up to `limit` items lacking heuristics; returns how many were scored."""
        items = await self.store.items_missing_heuristics(limit)
        for item in items:
            await self.store.save_heuristics(item.id, self.scorer.score(item))
        logger.info("evaluate.completed", scored=len(items))
        return len(items)
