"""
Wiring of the service graph, shared by the API and the CLI.
"""
from dataclasses import dataclass
from typing import Optional

from newslens.config import Settings, get_settings
from newslens.jobs.enrichment import EnrichmentJob
from newslens.jobs.evaluation import HeuristicEvaluationJob
from newslens.models.database import Database
from newslens.services.analysis import AnalysisService
from newslens.services.canonicalizer import TopicCanonicalizer
from newslens.services.disambiguation import TopicDisambiguationService
from newslens.services.embeddings import EmbeddingService
from newslens.services.llm import LLMClient
from newslens.services.profiles import ProfileService
from newslens.services.ranking import RankingService
from newslens.services.store import Store
from newslens.services.topic_cache import AliasCache, CanonicalEmbeddingIndex


@dataclass
class Services:
    settings: Settings
    database: Database
    store: Store
    embeddings: EmbeddingService
    llm: LLMClient
    canonicalizer: TopicCanonicalizer
    analysis: AnalysisService
    profiles: ProfileService
    ranking: RankingService
    enrichment: EnrichmentJob
    evaluation: HeuristicEvaluationJob

    async def run_enrichment_cycle(self) -> dict[str, int]:
        """Heuristic pass, then queue and enrich unanalysed items."""
        evaluated = await self.evaluation.run()
        enqueued = await self.enrichment.enqueue_missing()
        stats = await self.enrichment.run()
        return {"evaluated": evaluated, "enqueued": enqueued, **stats}


def build_services(database: Database, settings: Optional[Settings] = None) -> Services:
    settings = settings or get_settings()
    store = Store(database)
    embeddings = EmbeddingService(settings)
    llm = LLMClient(settings)

    canonicalizer = TopicCanonicalizer(
        store,
        embeddings,
        TopicDisambiguationService(llm),
        alias_cache=AliasCache(),
        embedding_index=CanonicalEmbeddingIndex(
            store, ttl_seconds=settings.canonicalizer.embedding_cache_ttl_seconds
        ),
        settings=settings,
    )
    analysis = AnalysisService(llm)

    return Services(
        settings=settings,
        database=database,
        store=store,
        embeddings=embeddings,
        llm=llm,
        canonicalizer=canonicalizer,
        analysis=analysis,
        profiles=ProfileService(store, canonicalizer, llm),
        ranking=RankingService(store, settings=settings),
        enrichment=EnrichmentJob(store, analysis, canonicalizer, settings=settings),
        evaluation=HeuristicEvaluationJob(store),
    )
