"""
FastAPI routes for the NewsLens API.
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Query, Request, Response, status
from pydantic import BaseModel, Field

from newslens.core.errors import NotFoundError
from newslens.models.domain import (
    DeliveryItem,
    FeedbackRecord,
    InterestProfile,
    ResolutionMethod,
    ScoreWeights,
    UserProfile,
)
from newslens.services.container import Services

logger = structlog.get_logger(__name__)
router = APIRouter()


def get_services(request: Request) -> Services:
    """Dependency returning the service graph built at startup."""
    return request.app.state.services


ServicesDep = Annotated[Services, Depends(get_services)]


# ============================================================================
# Request / response bodies
# ============================================================================

class PromptTextBody(BaseModel):
    prompt_text: str = Field(min_length=1, max_length=4000)


class PausedBody(BaseModel):
    paused: bool


class VoteBody(BaseModel):
    vote: int = Field(ge=-1, le=1)


class ResolveTopicsBody(BaseModel):
    tags: list[str] = Field(max_length=100)


class ResolvedTag(BaseModel):
    surface: str
    canonical: str
    family: str
    confidence: float
    method: ResolutionMethod


# ============================================================================
# Feed Routes
# ============================================================================

@router.get("/users/{user_id}/feed", response_model=list[DeliveryItem])
async def get_feed(
    user_id: str,
    services: ServicesDep,
    window_hours: Annotated[int | None, Query(ge=1, le=24 * 14)] = None,
    limit: Annotated[int | None, Query(ge=1, le=100)] = None,
    require_analysis: bool = False,
):
    """Ranked and diversified items of the recent window."""
    ranked = await services.ranking.rank_for_user(
        user_id,
        window_hours=window_hours,
        limit=limit,
        require_analysis=require_analysis,
    )
    return [DeliveryItem.from_candidate(c) for c in ranked]


@router.get("/users/{user_id}/digest", response_model=list[DeliveryItem])
async def get_digest(
    user_id: str,
    services: ServicesDep,
    limit: Annotated[int | None, Query(ge=1, le=100)] = None,
):
    """Digest of analysed items. Empty while the user is paused."""
    return await services.ranking.build_digest(user_id, limit=limit)


# ============================================================================
# Profile Routes
# ============================================================================

@router.get("/users/{user_id}/profile", response_model=UserProfile)
async def get_profile(user_id: str, services: ServicesDep):
    return await services.profiles.get_profile(user_id)


@router.put("/users/{user_id}/profile", response_model=InterestProfile)
async def put_profile(user_id: str, profile: InterestProfile, services: ServicesDep):
    """Replace the interest profile; tags are stored in canonical form."""
    return await services.profiles.set_interest_profile(user_id, profile)


@router.delete("/users/{user_id}/profile", status_code=status.HTTP_204_NO_CONTENT)
async def delete_profile(user_id: str, services: ServicesDep):
    await services.profiles.clear_interest_profile(user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/users/{user_id}/profile/extract", response_model=InterestProfile)
async def extract_profile(user_id: str, body: PromptTextBody, services: ServicesDep):
    """Derive the interest profile from a free-text description."""
    return await services.profiles.extract_interest_profile(user_id, body.prompt_text)


@router.put("/users/{user_id}/pause", response_model=UserProfile)
async def set_pause(user_id: str, body: PausedBody, services: ServicesDep):
    await services.profiles.set_paused(user_id, body.paused)
    return await services.profiles.get_profile(user_id)


@router.put("/users/{user_id}/weights", response_model=UserProfile)
async def set_weights(user_id: str, weights: ScoreWeights, services: ServicesDep):
    await services.profiles.set_score_weights(user_id, weights)
    return await services.profiles.get_profile(user_id)


# ============================================================================
# Feedback Routes
# ============================================================================

@router.put("/users/{user_id}/feedback/{item_id}", response_model=FeedbackRecord)
async def put_feedback(user_id: str, item_id: str, body: VoteBody, services: ServicesDep):
    """Record a like (1), dislike (-1) or neutral (0) vote; the latest vote wins."""
    if await services.store.get_item(item_id) is None:
        raise NotFoundError(f"Item {item_id} not found")

    await services.store.ensure_user(user_id)
    record = FeedbackRecord(user_id=user_id, item_id=item_id, vote=body.vote)
    await services.store.upsert_feedback(record)
    logger.info("feedback.recorded", user_id=user_id, item_id=item_id, vote=body.vote)
    return record


# ============================================================================
# Topic Routes
# ============================================================================

@router.post("/topics/resolve", response_model=list[ResolvedTag])
async def resolve_topics(body: ResolveTopicsBody, services: ServicesDep):
    """Canonicalize surface tags, learning new canonicals where needed."""
    out = []
    for tag in body.tags:
        resolved = await services.canonicalizer.resolve(tag)
        out.append(ResolvedTag(surface=tag, **resolved.model_dump()))
    return out


# ============================================================================
# Admin Routes
# ============================================================================

@router.post("/admin/enrich")
async def run_enrichment(services: ServicesDep):
    """Run one heuristic evaluation and enrichment pass synchronously."""
    return await services.run_enrichment_cycle()
