from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel
from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class BadgeType(str, Enum):
    GUIDING_LIGHT = "guiding_light"  # a single comment with 10+ likes
    CONNECTOR = "connector"  # chatted with 3+ connected peers
    FIRST_POST = "first_post"
    HELPFUL = "helpful"  # 5+ likes across all comments
    ACTIVE_MEMBER = "active_member"  # 10+ approved posts
    COMMUNITY_BUILDER = "community_builder"  # joined 3+ communities


class BadgeAward(SQLModel, table=True):
    __tablename__ = "user_badges"
    __table_args__ = (
        UniqueConstraint("user_id", "badge_type", name="uq_user_badges_user_badge"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = Field(index=True)
    badge_type: str
    earned_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Notification(SQLModel, table=True):
    __tablename__ = "notifications"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    user_id: str = Field(index=True)  # recipient
    actor_id: str
    type: str  # "badge_earned"
    badge_type: str | None = Field(default=None)
    message: str | None = Field(default=None)
    is_read: bool = Field(default=False)


class BadgeAwardRead(BaseModel):
    badge_type: str
    earned_at: datetime

    model_config = {"from_attributes": True}
