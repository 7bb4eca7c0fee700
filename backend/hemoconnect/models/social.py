"""Social models: communities, peer connections, direct messages, reports."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field as PydanticField, field_validator
from sqlmodel import Field, SQLModel

ReportReason = Literal["spam", "harassment", "misinformation", "inappropriate", "other"]


class CommunityMember(SQLModel, table=True):
    """Membership junction between users and micro-communities."""
    __tablename__ = "community_members"

    community_id: str = Field(primary_key=True)
    user_id: str = Field(primary_key=True, index=True)
    joined_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PeerConnection(SQLModel, table=True):
    __tablename__ = "peer_connections"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    requester_id: str = Field(index=True)
    receiver_id: str = Field(index=True)
    status: str = Field(default="pending")  # pending, connected, declined, blocked


class Conversation(SQLModel, table=True):
    __tablename__ = "conversations"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    participant_1: str = Field(index=True)
    participant_2: str = Field(index=True)


class DirectMessage(SQLModel, table=True):
    __tablename__ = "direct_messages"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    conversation_id: str = Field(foreign_key="conversations.id", index=True)
    sender_id: str
    body: str


class ContentReport(SQLModel, table=True):
    __tablename__ = "content_reports"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    reporter_id: str
    post_id: str | None = Field(default=None)
    comment_id: str | None = Field(default=None)
    reason: str
    details: str | None = Field(default=None)
    status: str = Field(default="pending")


# --- Pydantic schemas ---

class MessageCreate(BaseModel):
    recipient_id: str
    body: str = PydanticField(min_length=1, max_length=5_000)

    @field_validator("body")
    @classmethod
    def strip_body(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


class MessageRead(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    body: str
    created_at: datetime

    model_config = {"from_attributes": True}


class ReportCreate(BaseModel):
    post_id: str | None = None
    comment_id: str | None = None
    reason: ReportReason
    details: str | None = PydanticField(default=None, max_length=1_000)
