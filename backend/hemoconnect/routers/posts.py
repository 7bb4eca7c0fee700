"""Forum router: post and comment submission, likes, thread digests."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import defer
from sqlmodel import Session, col, func, select

from hemoconnect.db import get_session
from hemoconnect.dependencies import (
    enforce_rate_limit,
    get_actor_id,
    get_content_service,
    get_rate_limiter,
    get_worker,
)
from hemoconnect.models.forum import (
    CommentCreate,
    CommentLike,
    CommentRead,
    ForumComment,
    ForumPost,
    PostCreate,
    PostDetailRead,
    PostRead,
    PostSubmissionRead,
)
from hemoconnect.services.content import ContentService, ModerationRejected
from hemoconnect.services.rate_limit import RateLimiter
from hemoconnect.worker import BackgroundWorker, Job, JobType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/posts", tags=["posts"])
comments_router = APIRouter(prefix="/api/comments", tags=["posts"])

LIST_LIMIT = 20


@router.post("", response_model=PostSubmissionRead, status_code=201)
async def create_post(
    body: PostCreate,
    actor_id: str = Depends(get_actor_id),
    session: Session = Depends(get_session),
    limiter: RateLimiter = Depends(get_rate_limiter),
    content: ContentService = Depends(get_content_service),
) -> PostSubmissionRead:
    enforce_rate_limit(limiter, actor_id, "create-post")
    submission = await content.submit_post(
        actor_id, body.title, body.body, body.tags, session
    )
    return PostSubmissionRead(id=submission.id, flagged=submission.flagged)


@router.get("", response_model=list[PostRead])
async def list_posts(
    tag: str | None = Query(None, description="Filter by author-chosen tag"),
    _actor_id: str = Depends(get_actor_id),
    session: Session = Depends(get_session),
) -> list[PostRead]:
    """Newest approved posts. Flagged posts stay out until reviewed."""
    statement = (
        select(ForumPost)
        .options(defer(ForumPost.embedding))  # type: ignore[arg-type]
        .where(ForumPost.moderation_status == "approved")
    )
    if tag and tag != "all":
        tag_values = func.json_each(ForumPost.tags).table_valued("value")
        statement = statement.where(
            select(tag_values.c.value).where(tag_values.c.value == tag).exists()
        )
    posts = session.exec(
        statement.order_by(col(ForumPost.created_at).desc()).limit(LIST_LIMIT)
    ).all()

    counts = dict(
        session.exec(
            select(ForumComment.post_id, func.count())
            .where(col(ForumComment.post_id).in_([p.id for p in posts]))
            .group_by(ForumComment.post_id)
        ).all()
    )
    result = []
    for post in posts:
        read = PostRead.model_validate(post)
        read.comment_count = counts.get(post.id, 0)
        result.append(read)
    return result


@router.get("/{post_id}", response_model=PostDetailRead)
async def get_post(
    post_id: str,
    actor_id: str = Depends(get_actor_id),
    session: Session = Depends(get_session),
) -> PostDetailRead:
    post = session.get(ForumPost, post_id)
    # Flagged posts remain visible to their author only
    if post is None or (post.moderation_status != "approved" and post.user_id != actor_id):
        raise HTTPException(status_code=404, detail="Post not found")

    comments = session.exec(
        select(ForumComment)
        .where(ForumComment.post_id == post_id)
        .order_by(col(ForumComment.created_at))
    ).all()
    like_counts = dict(
        session.exec(
            select(CommentLike.comment_id, func.count())
            .where(col(CommentLike.comment_id).in_([c.id for c in comments]))
            .group_by(CommentLike.comment_id)
        ).all()
    )

    detail = PostDetailRead.model_validate(post)
    detail.comment_count = len(comments)
    detail.comments = []
    for comment in comments:
        read = CommentRead.model_validate(comment)
        read.like_count = like_counts.get(comment.id, 0)
        detail.comments.append(read)
    return detail


@router.post("/{post_id}/comments", response_model=CommentRead, status_code=201)
async def create_comment(
    post_id: str,
    body: CommentCreate,
    actor_id: str = Depends(get_actor_id),
    session: Session = Depends(get_session),
    limiter: RateLimiter = Depends(get_rate_limiter),
    content: ContentService = Depends(get_content_service),
) -> CommentRead:
    enforce_rate_limit(limiter, actor_id, "create-comment")
    try:
        comment = await content.submit_comment(actor_id, post_id, body.body, session)
    except LookupError:
        raise HTTPException(status_code=404, detail="Post not found")
    except ModerationRejected as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return CommentRead.model_validate(comment)


@router.post("/{post_id}/summary")
async def regenerate_summary(
    post_id: str,
    _actor_id: str = Depends(get_actor_id),
    session: Session = Depends(get_session),
    content: ContentService = Depends(get_content_service),
) -> dict:
    """Regenerate the thread digest now, ignoring the staleness window."""
    if session.get(ForumPost, post_id) is None:
        raise HTTPException(status_code=404, detail="Post not found")
    updated = await content.refresh_summary(post_id, session, force=True)
    post = session.get(ForumPost, post_id)
    return {"updated": updated, "ai_summary": post.ai_summary if post else None}


@comments_router.post("/{comment_id}/like")
async def toggle_comment_like(
    comment_id: str,
    actor_id: str = Depends(get_actor_id),
    session: Session = Depends(get_session),
    worker: BackgroundWorker | None = Depends(get_worker),
) -> dict:
    comment = session.get(ForumComment, comment_id)
    if comment is None:
        raise HTTPException(status_code=404, detail="Comment not found")

    existing = session.exec(
        select(CommentLike)
        .where(CommentLike.user_id == actor_id)
        .where(CommentLike.comment_id == comment_id)
    ).first()
    if existing is not None:
        session.delete(existing)
        session.commit()
        return {"liked": False}

    session.add(CommentLike(user_id=actor_id, comment_id=comment_id))
    session.commit()

    # The comment author may now qualify for a like-based badge
    if worker is not None:
        worker.submit_job(
            Job(
                job_type=JobType.CHECK_BADGES,
                payload={"actor_id": comment.user_id, "trigger": "comment_liked"},
            )
        )
    return {"liked": True}
