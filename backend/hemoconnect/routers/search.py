"""Search router: semantic search over forum posts with keyword fallback."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlmodel import Session

from hemoconnect.db import get_session
from hemoconnect.dependencies import get_actor_id, get_search_service
from hemoconnect.services.search import SearchService

router = APIRouter(prefix="/api/search", tags=["search"])


class SearchResultResponse(BaseModel):
    """Single search result. ``relevance`` is null for keyword matches."""
    content_id: str
    title: str
    excerpt: str
    relevance: float | None
    method: str


class SearchResponseModel(BaseModel):
    results: list[SearchResultResponse]
    method: str


@router.get("", response_model=SearchResponseModel)
async def search_posts(
    q: str = Query(..., min_length=1, max_length=500, description="Search query"),
    _actor_id: str = Depends(get_actor_id),
    session: Session = Depends(get_session),
    search_service: SearchService = Depends(get_search_service),
) -> SearchResponseModel:
    """Search approved posts.

    Uses semantic similarity when the embedding service and vector store are
    available, and keyword matching otherwise. ``method`` reports which ran.
    """
    response = await search_service.search(q, session)
    return SearchResponseModel(
        results=[
            SearchResultResponse(
                content_id=r.content_id,
                title=r.title,
                excerpt=r.excerpt,
                relevance=r.relevance,
                method=r.method.value,
            )
            for r in response.results
        ],
        method=response.method.value,
    )
