"""Forum models: posts, comments, and comment likes."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field as PydanticField, field_validator
from sqlalchemy import JSON, CheckConstraint, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

ModerationStatus = Literal["pending", "approved", "flagged"]


class ForumPost(SQLModel, table=True):
    __tablename__ = "forum_posts"
    __table_args__ = (
        CheckConstraint(
            "moderation_status IN ('pending', 'approved', 'flagged')",
            name="ck_forum_posts_moderation_status",
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    user_id: str = Field(index=True)

    title: str
    body: str
    excerpt: str = Field(default="")
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    # Zero-shot classifier output, kept apart from the author's own tags
    auto_tags: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    moderation_status: str = Field(default="approved", index=True)

    embedding: list[float] | None = Field(default=None, sa_column=Column(JSON, nullable=True))

    # Thread digest
    ai_summary: str | None = Field(default=None)
    ai_summary_updated_at: datetime | None = Field(default=None)


class ForumComment(SQLModel, table=True):
    __tablename__ = "forum_comments"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    post_id: str = Field(foreign_key="forum_posts.id", index=True)
    user_id: str = Field(index=True)
    body: str


class CommentLike(SQLModel, table=True):
    __tablename__ = "comment_likes"
    __table_args__ = (
        UniqueConstraint("user_id", "comment_id", name="uq_comment_likes_user_comment"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    user_id: str
    comment_id: str = Field(foreign_key="forum_comments.id", index=True)


# --- Pydantic schemas for request/response validation ---

class PostCreate(BaseModel):
    title: str = PydanticField(min_length=1, max_length=200)
    body: str = PydanticField(min_length=1, max_length=10_000)
    tags: list[str] = []

    @field_validator("title", "body")
    @classmethod
    def strip_text(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


class CommentCreate(BaseModel):
    body: str = PydanticField(min_length=1, max_length=5_000)

    @field_validator("body")
    @classmethod
    def strip_body(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


class PostSubmissionRead(BaseModel):
    id: str
    flagged: bool


class CommentRead(BaseModel):
    id: str
    created_at: datetime
    post_id: str
    user_id: str
    body: str
    like_count: int = 0

    model_config = {"from_attributes": True}


class PostRead(BaseModel):
    id: str
    created_at: datetime
    user_id: str
    title: str
    body: str
    excerpt: str
    tags: list[str]
    auto_tags: list[str]
    moderation_status: str
    ai_summary: str | None
    ai_summary_updated_at: datetime | None
    comment_count: int = 0

    model_config = {"from_attributes": True}


class PostDetailRead(PostRead):
    comments: list[CommentRead] = []
