"""
Services layer - core business logic for NewsLens.

The services implement the key algorithms:

1. Topic Canonicalizer (canonicalizer.py):
   - Alias memory, embedding similarity, LLM disambiguation
   - Self-learning controlled vocabulary with topic families

2. Scoring (scoring.py, heuristics.py):
   - User-independent quality composite from analysis features
   - Ingestion-time heuristic scores and the base term

3. Feedback (feedback.py):
   - Per-family preference vector from likes / dislikes
   - Latent taste for evidence-rich items

4. Personalization (personalization.py):
   - Profile relevance, feedback adjustment, final score

5. Diversification (diversification.py):
   - Topic buckets, quotas, round-robin selection with backfill

6. Ranking (ranking.py):
   - Orchestrates the above per user, degrading to neutral inputs on failure

7. External clients (embeddings.py, llm.py, analysis.py, disambiguation.py)
"""

from newslens.services.analysis import AnalysisResult, AnalysisService, sanitize_analysis
from newslens.services.canonicalizer import TopicCanonicalizer, merge_topic_tags
from newslens.services.diversification import DiversificationAllocator
from newslens.services.embeddings import EmbeddingService
from newslens.services.feedback import FeedbackVectorBuilder
from newslens.services.heuristics import HeuristicScorer
from newslens.services.llm import LLMClient
from newslens.services.personalization import PersonalizationEngine
from newslens.services.profiles import ProfileService
from newslens.services.ranking import RankingService
from newslens.services.store import Store

__all__ = [
    # Canonicalization
    "TopicCanonicalizer",
    "merge_topic_tags",
    # Scoring
    "HeuristicScorer",
    # Personalization
    "FeedbackVectorBuilder",
    "PersonalizationEngine",
    "DiversificationAllocator",
    "RankingService",
    # Profiles
    "ProfileService",
    # External clients
    "AnalysisResult",
    "AnalysisService",
    "sanitize_analysis",
    "EmbeddingService",
    "LLMClient",
    # Persistence
    "Store",
]
