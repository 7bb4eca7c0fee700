"""FastAPI dependency injection for the caller identity and shared services."""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Request

from hemoconnect.config import get_settings
from hemoconnect.services.badges import BadgeService
from hemoconnect.services.content import ContentService
from hemoconnect.services.inference import InferenceClient
from hemoconnect.services.matching import MatchingService
from hemoconnect.services.rate_limit import RateLimiter
from hemoconnect.services.search import SearchService
from hemoconnect.services.vector_store import VectorStore
from hemoconnect.worker import BackgroundWorker

RATE_LIMIT_MESSAGES = {
    "create-post": "Too many posts. Please wait a moment and try again.",
    "create-comment": "Too many comments. Please wait a moment.",
    "send-message": "Too many messages. Please slow down.",
    "report-content": "Too many reports. Please try again later.",
}


def get_actor_id(
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
) -> str:
    """Return the caller's actor id, as asserted by the upstream gateway.

    Raises HTTPException 401 if the header is missing or blank.
    """
    if x_actor_id is None or not x_actor_id.strip():
        raise HTTPException(status_code=401, detail="Not authenticated")
    return x_actor_id.strip()


def get_inference_client(request: Request) -> InferenceClient:
    """Inject the InferenceClient initialized at startup."""
    client = getattr(request.app.state, "inference_client", None)
    if client is None:
        raise HTTPException(status_code=503, detail="Inference client not initialized")
    return client


def get_vector_store(request: Request) -> VectorStore | None:
    """Inject the VectorStore, or None while Qdrant is unreachable."""
    return getattr(request.app.state, "vector_store", None)


def get_worker(request: Request) -> BackgroundWorker | None:
    """Inject the BackgroundWorker if available."""
    return getattr(request.app.state, "worker", None)


def get_rate_limiter(request: Request) -> RateLimiter:
    """Inject the process-wide RateLimiter."""
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        raise HTTPException(status_code=503, detail="Rate limiter not initialized")
    return limiter


def enforce_rate_limit(limiter: RateLimiter, actor_id: str, action_class: str) -> None:
    """Consume a token or raise HTTPException 429."""
    decision = limiter.check(actor_id, action_class)
    if not decision.allowed:
        raise HTTPException(
            status_code=429,
            detail=RATE_LIMIT_MESSAGES.get(
                action_class, "Too many requests. Please try again later."
            ),
        )


def get_content_service(
    inference: InferenceClient = Depends(get_inference_client),
    vector_store: VectorStore | None = Depends(get_vector_store),
    worker: BackgroundWorker | None = Depends(get_worker),
) -> ContentService:
    """Construct ContentService from its dependencies."""
    settings = get_settings()
    return ContentService(
        inference=inference,
        vector_store=vector_store,
        worker=worker,
        moderation_timeout=settings.moderation_timeout_seconds,
        summary_min_comments=settings.summary_min_comments,
        summary_stale_minutes=settings.summary_stale_minutes,
    )


def get_search_service(
    inference: InferenceClient = Depends(get_inference_client),
    vector_store: VectorStore | None = Depends(get_vector_store),
) -> SearchService:
    """Construct SearchService from its dependencies."""
    settings = get_settings()
    return SearchService(
        inference=inference,
        vector_store=vector_store,
        similarity_threshold=settings.search_similarity_threshold,
        result_limit=settings.search_result_limit,
    )


def get_matching_service(
    vector_store: VectorStore | None = Depends(get_vector_store),
) -> MatchingService:
    settings = get_settings()
    return MatchingService(
        vector_store=vector_store,
        candidate_count=settings.match_candidate_count,
        scan_limit=settings.match_scan_limit,
    )


def get_badge_service() -> BadgeService:
    return BadgeService()
