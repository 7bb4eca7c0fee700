"""Social router: community membership, direct messages, content reports."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, and_, or_, select

from hemoconnect.db import get_session
from hemoconnect.dependencies import (
    enforce_rate_limit,
    get_actor_id,
    get_rate_limiter,
    get_worker,
)
from hemoconnect.models.social import (
    CommunityMember,
    ContentReport,
    Conversation,
    DirectMessage,
    MessageCreate,
    MessageRead,
    ReportCreate,
)
from hemoconnect.services.rate_limit import RateLimiter
from hemoconnect.worker import BackgroundWorker, Job, JobType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["social"])


def _check_badges(worker: BackgroundWorker | None, actor_id: str, trigger: str) -> None:
    if worker is None:
        return
    try:
        worker.submit_job(
            Job(job_type=JobType.CHECK_BADGES, payload={"actor_id": actor_id, "trigger": trigger})
        )
    except Exception:
        logger.warning("Badge check submit failed for %s (%s)", actor_id, trigger, exc_info=True)


def _get_or_create_conversation(session: Session, a: str, b: str) -> Conversation:
    conversation = session.exec(
        select(Conversation).where(
            or_(
                and_(Conversation.participant_1 == a, Conversation.participant_2 == b),
                and_(Conversation.participant_1 == b, Conversation.participant_2 == a),
            )
        )
    ).first()
    if conversation is None:
        conversation = Conversation(participant_1=a, participant_2=b)
        session.add(conversation)
        session.flush()
    return conversation


@router.post("/communities/{community_id}/join", status_code=201)
async def join_community(
    community_id: str,
    actor_id: str = Depends(get_actor_id),
    session: Session = Depends(get_session),
    worker: BackgroundWorker | None = Depends(get_worker),
) -> dict:
    existing = session.get(CommunityMember, (community_id, actor_id))
    if existing is not None:
        return {"community_id": community_id, "joined": False}

    session.add(CommunityMember(community_id=community_id, user_id=actor_id))
    session.commit()
    _check_badges(worker, actor_id, "community_joined")
    return {"community_id": community_id, "joined": True}


@router.post("/messages", response_model=MessageRead, status_code=201)
async def send_message(
    body: MessageCreate,
    actor_id: str = Depends(get_actor_id),
    session: Session = Depends(get_session),
    limiter: RateLimiter = Depends(get_rate_limiter),
    worker: BackgroundWorker | None = Depends(get_worker),
) -> MessageRead:
    if body.recipient_id == actor_id:
        raise HTTPException(status_code=400, detail="Cannot message yourself")
    enforce_rate_limit(limiter, actor_id, "send-message")

    conversation = _get_or_create_conversation(session, actor_id, body.recipient_id)
    message = DirectMessage(
        conversation_id=conversation.id,
        sender_id=actor_id,
        body=body.body,
    )
    session.add(message)
    session.commit()
    session.refresh(message)

    _check_badges(worker, actor_id, "message_sent")
    return MessageRead.model_validate(message)


@router.post("/reports", status_code=201)
async def report_content(
    body: ReportCreate,
    actor_id: str = Depends(get_actor_id),
    session: Session = Depends(get_session),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> dict:
    """File a report against a post or a comment. Exactly one target is required."""
    if (body.post_id is None) == (body.comment_id is None):
        raise HTTPException(status_code=422, detail="Report exactly one of post_id or comment_id")
    enforce_rate_limit(limiter, actor_id, "report-content")

    report = ContentReport(
        reporter_id=actor_id,
        post_id=body.post_id,
        comment_id=body.comment_id,
        reason=body.reason,
        details=body.details,
    )
    session.add(report)
    session.commit()
    logger.info("Content report %s filed (%s)", report.id, body.reason)
    return {"id": report.id, "status": report.status}
