from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlmodel import Session

from hemoconnect.db import get_session
from hemoconnect.dependencies import get_actor_id, get_badge_service
from hemoconnect.models.badge import BadgeAwardRead
from hemoconnect.services.badges import BadgeService

router = APIRouter(prefix="/api/badges", tags=["badges"])


@router.get("/{user_id}", response_model=list[BadgeAwardRead])
async def list_user_badges(
    user_id: str,
    _actor_id: str = Depends(get_actor_id),
    session: Session = Depends(get_session),
    badges: BadgeService = Depends(get_badge_service),
) -> list[BadgeAwardRead]:
    return [BadgeAwardRead.model_validate(a) for a in badges.list_badges(user_id, session)]
