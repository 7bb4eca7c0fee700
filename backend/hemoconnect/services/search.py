"""Search service: semantic search over forum posts with keyword fallback."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from sqlmodel import Session, col, or_, select

from hemoconnect.models.forum import ForumPost
from hemoconnect.services.inference import InferenceClient
from hemoconnect.services.vector_store import (
    POSTS_COLLECTION,
    VectorStore,
    VectorStoreError,
)

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.3
DEFAULT_RESULT_LIMIT = 20


class SearchMethod(str, Enum):
    SEMANTIC = "semantic"  # embedding similarity
    KEYWORD = "keyword"  # case-insensitive substring match


@dataclass(frozen=True, slots=True)
class SearchResult:
    """A single matched post. ``relevance`` is only set for semantic matches."""
    content_id: str
    title: str
    excerpt: str
    method: SearchMethod
    relevance: float | None = None


@dataclass(frozen=True, slots=True)
class SearchResponse:
    results: list[SearchResult]
    method: SearchMethod


class SearchService:
    """Semantic search that silently degrades to keyword search."""

    __slots__ = ("inference", "vector_store", "similarity_threshold", "result_limit")

    def __init__(
        self,
        inference: InferenceClient,
        vector_store: VectorStore | None,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        result_limit: int = DEFAULT_RESULT_LIMIT,
    ) -> None:
        self.inference = inference
        self.vector_store = vector_store
        self.similarity_threshold = similarity_threshold
        self.result_limit = result_limit

    async def search(self, query: str, session: Session) -> SearchResponse:
        """Search approved posts.

        1. Embed the query and look up similar post vectors above threshold.
        2. Load the approved posts among the matches, ranked by similarity.
        3. On any failure or an empty result, fall back to keyword search.
        """
        query = query.strip()
        if not query:
            return SearchResponse(results=[], method=SearchMethod.KEYWORD)

        semantic = await self._semantic_search(query, session)
        if semantic:
            return SearchResponse(results=semantic, method=SearchMethod.SEMANTIC)

        return SearchResponse(
            results=self._keyword_search(query, session),
            method=SearchMethod.KEYWORD,
        )

    async def _semantic_search(self, query: str, session: Session) -> list[SearchResult]:
        if self.vector_store is None:
            return []

        embedding = await self.inference.embed(query)
        if embedding is None:
            return []

        try:
            matches = self.vector_store.query(
                POSTS_COLLECTION,
                embedding,
                top_n=self.result_limit,
                min_similarity=self.similarity_threshold,
            )
        except VectorStoreError:
            logger.warning("Semantic search failed, falling back to keyword", exc_info=True)
            return []

        if not matches:
            return []

        similarity = {m.id: m.similarity for m in matches}
        posts = session.exec(
            select(ForumPost)
            .where(col(ForumPost.id).in_(list(similarity)))
            .where(ForumPost.moderation_status == "approved")
        ).all()

        results = [
            SearchResult(
                content_id=post.id,
                title=post.title,
                excerpt=post.excerpt,
                method=SearchMethod.SEMANTIC,
                relevance=similarity[post.id],
            )
            for post in posts
        ]
        results.sort(key=lambda r: r.relevance, reverse=True)
        return results

    def _keyword_search(self, query: str, session: Session) -> list[SearchResult]:
        """Case-insensitive substring match on title or body of approved posts."""
        pattern = f"%{_escape_like(query.lower())}%"
        posts = session.exec(
            select(ForumPost)
            .where(ForumPost.moderation_status == "approved")
            .where(
                or_(
                    col(ForumPost.title).ilike(pattern, escape="\\"),
                    col(ForumPost.body).ilike(pattern, escape="\\"),
                )
            )
            .order_by(col(ForumPost.created_at).desc())
            .limit(self.result_limit)
        ).all()

        return [
            SearchResult(
                content_id=post.id,
                title=post.title,
                excerpt=post.excerpt,
                method=SearchMethod.KEYWORD,
            )
            for post in posts
        ]


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
