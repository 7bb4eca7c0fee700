"""Content service: moderation gate on submission, background enrichment.

The gate is the only AI call a submission waits on, and it fails open: when
the toxicity classifier is unavailable content is published unmoderated.
Embedding, auto-tagging and thread digests run later on the background
worker and never surface their failures to the author.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from sqlmodel import Session, col, select

from hemoconnect.models.forum import ForumComment, ForumPost
from hemoconnect.models.profile import INTEREST_TOPICS, Profile
from hemoconnect.services.inference import (
    InferenceClient,
    ModerationVerdict,
    compose_post_text,
    compose_profile_text,
    compose_thread_text,
)
from hemoconnect.services.vector_store import (
    POSTS_COLLECTION,
    PROFILES_COLLECTION,
    VectorStore,
    VectorStoreError,
    profile_payload,
)

if TYPE_CHECKING:
    from hemoconnect.worker import BackgroundWorker

logger = logging.getLogger(__name__)

EXCERPT_CHARS = 200
COMMENT_REJECTED_MESSAGE = (
    "Your comment was flagged for review. Please revise it and try again."
)


class ModerationRejected(Exception):
    """Raised when a comment fails the toxicity gate. Nothing was stored."""


@dataclass(frozen=True, slots=True)
class PostSubmission:
    id: str
    flagged: bool


def make_excerpt(body: str) -> str:
    return body[:EXCERPT_CHARS] + ("..." if len(body) > EXCERPT_CHARS else "")


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back out
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class ContentService:
    """Submission gate plus the enrichment steps the worker runs afterwards."""

    __slots__ = (
        "inference",
        "vector_store",
        "worker",
        "moderation_timeout",
        "summary_min_comments",
        "summary_stale_after",
    )

    def __init__(
        self,
        inference: InferenceClient,
        vector_store: VectorStore | None,
        worker: BackgroundWorker | None = None,
        moderation_timeout: float = 15.0,
        summary_min_comments: int = 3,
        summary_stale_minutes: int = 60,
    ) -> None:
        self.inference = inference
        self.vector_store = vector_store
        self.worker = worker
        self.moderation_timeout = moderation_timeout
        self.summary_min_comments = summary_min_comments
        self.summary_stale_after = timedelta(minutes=summary_stale_minutes)

    # ── moderation gate ──────────────────────────────────────────

    async def moderate(self, text: str) -> ModerationVerdict | None:
        """Toxicity verdict for ``text``; None when the check could not run."""
        try:
            return await asyncio.wait_for(
                self.inference.classify_toxicity(text),
                timeout=self.moderation_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Toxicity check timed out after %.0fs, allowing content through",
                self.moderation_timeout,
            )
            return None

    async def submit_post(
        self,
        actor_id: str,
        title: str,
        body: str,
        tags: list[str],
        session: Session,
    ) -> PostSubmission:
        """Moderate, persist, and schedule enrichment for a new post.

        Toxic posts are stored as ``flagged`` rather than rejected so the
        author can still see them.
        """
        verdict = await self.moderate(f"{title} {body}")
        flagged = verdict is not None and verdict.is_toxic

        post = ForumPost(
            user_id=actor_id,
            title=title,
            body=body,
            excerpt=make_excerpt(body),
            tags=tags,
            moderation_status="flagged" if flagged else "approved",
        )
        session.add(post)
        session.commit()
        session.refresh(post)

        if flagged:
            logger.info("Post %s flagged by toxicity check", post.id)

        from hemoconnect.worker import Job, JobType

        self._enqueue(Job(job_type=JobType.EMBED_POST, payload={"post_id": post.id}))
        self._enqueue(Job(job_type=JobType.AUTO_TAG_POST, payload={"post_id": post.id}))
        self._enqueue(
            Job(
                job_type=JobType.CHECK_BADGES,
                payload={"actor_id": actor_id, "trigger": "post_created"},
            )
        )
        return PostSubmission(id=post.id, flagged=flagged)

    async def submit_comment(
        self,
        actor_id: str,
        post_id: str,
        body: str,
        session: Session,
    ) -> ForumComment:
        """Moderate and persist a comment, then schedule a digest refresh.

        Raises LookupError for an unknown post and ModerationRejected for a
        toxic comment.
        """
        if session.get(ForumPost, post_id) is None:
            raise LookupError(f"Post {post_id} not found")

        verdict = await self.moderate(body)
        if verdict is not None and verdict.is_toxic:
            logger.info("Comment on post %s rejected by toxicity check", post_id)
            raise ModerationRejected(COMMENT_REJECTED_MESSAGE)

        comment = ForumComment(post_id=post_id, user_id=actor_id, body=body)
        session.add(comment)
        session.commit()
        session.refresh(comment)

        from hemoconnect.worker import Job, JobType

        self._enqueue(Job(job_type=JobType.REFRESH_SUMMARY, payload={"post_id": post_id}))
        return comment

    def _enqueue(self, job) -> None:
        if self.worker is None:
            logger.debug("No background worker, skipping %s", job.job_type.value)
            return
        try:
            self.worker.submit_job(job)
        except Exception:
            logger.warning("Failed to submit %s job", job.job_type.value, exc_info=True)

    # ── enrichment (background) ──────────────────────────────────

    async def embed_post(self, post_id: str, session: Session) -> bool:
        """Embed a post's title and body. Returns whether a vector was stored."""
        post = session.get(ForumPost, post_id)
        if post is None:
            return False

        embedding = await self.inference.embed(compose_post_text(post.title, post.body))
        if embedding is None:
            return False

        post.embedding = embedding
        session.add(post)
        session.commit()
        self._index(POSTS_COLLECTION, post.id, embedding, {"post_id": post.id})
        return True

    async def embed_profile(self, profile_id: str, session: Session) -> bool:
        profile = session.get(Profile, profile_id)
        if profile is None:
            return False

        embedding = await self.inference.embed(compose_profile_text(profile))
        if embedding is None:
            return False

        profile.embedding = embedding
        session.add(profile)
        session.commit()
        self._index(PROFILES_COLLECTION, profile.id, embedding, profile_payload(profile))
        return True

    def _index(self, collection: str, point_id: str, vector: list[float], payload: dict) -> None:
        if self.vector_store is None:
            return
        try:
            self.vector_store.upsert(collection, point_id, vector, payload)
        except VectorStoreError:
            logger.warning("Could not index %s in '%s'", point_id, collection, exc_info=True)

    async def auto_tag_post(self, post_id: str, session: Session) -> list[str]:
        """Store up to three interest topics detected in the post."""
        post = session.get(ForumPost, post_id)
        if post is None:
            return []

        results = await self.inference.classify_topics(
            compose_post_text(post.title, post.body), INTEREST_TOPICS
        )
        if not results:
            return []

        post.auto_tags = [r.label for r in results]
        session.add(post)
        session.commit()
        return post.auto_tags

    async def refresh_summary(
        self, post_id: str, session: Session, force: bool = False
    ) -> bool:
        """Regenerate the thread digest if the thread is long enough and stale.

        ``force`` skips the staleness check but not the comment minimum.
        Returns whether a new summary was stored.
        """
        post = session.get(ForumPost, post_id)
        if post is None:
            return False

        comment_bodies = session.exec(
            select(ForumComment.body)
            .where(ForumComment.post_id == post_id)
            .order_by(col(ForumComment.created_at))
        ).all()
        if len(comment_bodies) < self.summary_min_comments:
            return False

        if not force and post.ai_summary and post.ai_summary_updated_at:
            age = datetime.now(timezone.utc) - _as_utc(post.ai_summary_updated_at)
            if age < self.summary_stale_after:
                return False

        summary = await self.inference.summarize(
            compose_thread_text(post.title, post.body, comment_bodies)
        )
        if not summary:
            return False

        post.ai_summary = summary
        post.ai_summary_updated_at = datetime.now(timezone.utc)
        session.add(post)
        session.commit()
        return True
