"""Tests for semantic search over forum posts with keyword fallback."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlmodel import Session

from hemoconnect.models.forum import ForumPost
from hemoconnect.services.inference import EMBEDDING_DIMENSIONS
from hemoconnect.services.search import SearchMethod, SearchService
from hemoconnect.services.vector_store import POSTS_COLLECTION, VectorStoreError


def _vector(*weights: float) -> list[float]:
    vec = [0.0] * EMBEDDING_DIMENSIONS
    for i, w in enumerate(weights):
        vec[i] = w
    norm = sum(x * x for x in vec) ** 0.5
    return [x / norm for x in vec]


def _post(session: Session, title: str, body: str = "", status: str = "approved", age_minutes: int = 0) -> ForumPost:
    post = ForumPost(
        user_id="author",
        title=title,
        body=body or title,
        excerpt=(body or title)[:200],
        moderation_status=status,
        created_at=datetime.now(timezone.utc) - timedelta(minutes=age_minutes),
    )
    session.add(post)
    session.commit()
    session.refresh(post)
    return post


class TestKeywordFallback:
    @pytest.mark.asyncio
    async def test_embedding_failure_finds_substring(self, session, mock_inference, vector_store):
        hit = _post(session, "Switching products", "My Factor Replacement schedule changed.")
        _post(session, "Unrelated", "Nothing here.")
        mock_inference.embed = AsyncMock(return_value=None)

        response = await SearchService(mock_inference, vector_store).search("factor replacement", session)

        assert response.method is SearchMethod.KEYWORD
        assert [r.content_id for r in response.results] == [hit.id]

    @pytest.mark.asyncio
    async def test_no_vector_store(self, session, mock_inference):
        _post(session, "Knee bleeds after running", age_minutes=5)
        _post(session, "Travel insurance", "Which insurer covers factor?")
        _post(session, "Running shoes for bad knees", age_minutes=1)

        response = await SearchService(mock_inference, vector_store=None).search("KNEE", session)

        assert response.method is SearchMethod.KEYWORD
        assert [r.title for r in response.results] == [
            "Running shoes for bad knees",
            "Knee bleeds after running",
        ]
        assert all(r.relevance is None for r in response.results)

    @pytest.mark.asyncio
    async def test_matches_body(self, session, mock_inference):
        _post(session, "Question", "Does emicizumab help with joint pain?")
        response = await SearchService(mock_inference, None).search("emicizumab", session)
        assert len(response.results) == 1

    @pytest.mark.asyncio
    async def test_flagged_posts_excluded(self, session, mock_inference):
        _post(session, "ice pack tips", status="flagged")
        _post(session, "ice pack review")
        response = await SearchService(mock_inference, None).search("ice pack", session)
        assert [r.title for r in response.results] == ["ice pack review"]

    @pytest.mark.asyncio
    async def test_like_wildcards_are_literal(self, session, mock_inference):
        _post(session, "100% recovered")
        _post(session, "100 days of prophylaxis")
        response = await SearchService(mock_inference, None).search("100%", session)
        assert [r.title for r in response.results] == ["100% recovered"]

    @pytest.mark.asyncio
    async def test_limit(self, session, mock_inference):
        for i in range(25):
            _post(session, f"factor post {i}")
        response = await SearchService(mock_inference, None).search("factor", session)
        assert len(response.results) == 20

    @pytest.mark.asyncio
    async def test_blank_query(self, session, mock_inference):
        response = await SearchService(mock_inference, None).search("   ", session)
        assert response.results == []
        mock_inference.embed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_embedding_unavailable(self, session, mock_inference, vector_store):
        _post(session, "swimming")
        mock_inference.embed = AsyncMock(return_value=None)
        response = await SearchService(mock_inference, vector_store).search("swimming", session)
        assert response.method is SearchMethod.KEYWORD
        assert len(response.results) == 1

    @pytest.mark.asyncio
    async def test_vector_store_error(self, session, mock_inference):
        _post(session, "swimming")
        mock_inference.embed = AsyncMock(return_value=_vector(1.0))
        store = MagicMock()
        store.query.side_effect = VectorStoreError("down")

        response = await SearchService(mock_inference, store).search("swimming", session)

        assert response.method is SearchMethod.KEYWORD
        assert len(response.results) == 1


class TestSemantic:
    @pytest.mark.asyncio
    async def test_ranked_by_similarity_above_threshold(self, session, mock_inference, vector_store):
        close = _post(session, "Managing joint bleeds")
        nearby = _post(session, "Physio after a bleed")
        unrelated = _post(session, "School forms")
        vector_store.upsert(POSTS_COLLECTION, close.id, _vector(1.0, 0.1))
        vector_store.upsert(POSTS_COLLECTION, nearby.id, _vector(1.0, 1.0))
        vector_store.upsert(POSTS_COLLECTION, unrelated.id, _vector(0.0, 0.0, 1.0))
        mock_inference.embed = AsyncMock(return_value=_vector(1.0))

        response = await SearchService(mock_inference, vector_store).search("joint bleeding", session)

        assert response.method is SearchMethod.SEMANTIC
        assert [r.content_id for r in response.results] == [close.id, nearby.id]
        assert response.results[0].relevance > response.results[1].relevance
        assert all(r.method is SearchMethod.SEMANTIC for r in response.results)

    @pytest.mark.asyncio
    async def test_flagged_semantic_hits_dropped(self, session, mock_inference, vector_store):
        flagged = _post(session, "rant", status="flagged")
        vector_store.upsert(POSTS_COLLECTION, flagged.id, _vector(1.0))
        _post(session, "rant about insurance")
        mock_inference.embed = AsyncMock(return_value=_vector(1.0))

        response = await SearchService(mock_inference, vector_store).search("rant", session)

        # Only semantic hit was flagged, so keyword search answers
        assert response.method is SearchMethod.KEYWORD
        assert [r.title for r in response.results] == ["rant about insurance"]

    @pytest.mark.asyncio
    async def test_nothing_above_threshold_falls_back(self, session, mock_inference, vector_store):
        post = _post(session, "diet and nutrition")
        vector_store.upsert(POSTS_COLLECTION, post.id, _vector(0.0, 1.0))
        mock_inference.embed = AsyncMock(return_value=_vector(1.0))

        response = await SearchService(mock_inference, vector_store).search("diet", session)

        assert response.method is SearchMethod.KEYWORD
        assert [r.content_id for r in response.results] == [post.id]
