"""Badge service: idempotent achievement checks run after triggering events.

Each check is evaluated only after the event most likely to satisfy it (a
post, a like, a community join, a message). There is no periodic sweep, so a
predicate that becomes true through some other path is not awarded until the
next triggering event.
"""
from __future__ import annotations

import logging
from collections import Counter
from enum import Enum

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, func, or_, select

from hemoconnect.models.badge import BadgeAward, BadgeType, Notification
from hemoconnect.models.forum import CommentLike, ForumComment, ForumPost
from hemoconnect.models.social import CommunityMember, Conversation, PeerConnection

logger = logging.getLogger(__name__)

GUIDING_LIGHT_LIKES = 10
HELPFUL_LIKES = 5
ACTIVE_MEMBER_POSTS = 10
COMMUNITY_BUILDER_COMMUNITIES = 3
CONNECTOR_PEERS = 3


class BadgeTrigger(str, Enum):
    POST_CREATED = "post_created"
    COMMENT_LIKED = "comment_liked"  # actor is the comment author
    COMMUNITY_JOINED = "community_joined"
    MESSAGE_SENT = "message_sent"


def _badge_message(badge_type: BadgeType) -> str:
    return f'You earned the "{badge_type.value.replace("_", " ")}" badge!'


class BadgeService:
    """Award badges once per user, with a notification on the first award."""

    __slots__ = ()

    def award_badge(self, actor_id: str, badge_type: BadgeType, session: Session) -> bool:
        """Record ``badge_type`` for ``actor_id``. Returns False if already held."""
        existing = session.exec(
            select(BadgeAward)
            .where(BadgeAward.user_id == actor_id)
            .where(BadgeAward.badge_type == badge_type.value)
        ).first()
        if existing is not None:
            return False

        session.add(BadgeAward(user_id=actor_id, badge_type=badge_type.value))
        session.add(
            Notification(
                user_id=actor_id,
                actor_id=actor_id,
                type="badge_earned",
                badge_type=badge_type.value,
                message=_badge_message(badge_type),
            )
        )
        try:
            session.commit()
        except IntegrityError:
            # Lost a race with a concurrent award; the unique constraint holds
            session.rollback()
            return False

        logger.info("Awarded badge %s to %s", badge_type.value, actor_id)
        return True

    def evaluate(self, trigger: BadgeTrigger, actor_id: str, session: Session) -> list[BadgeType]:
        """Run the checks tied to ``trigger``. Returns the badges newly awarded."""
        checks = {
            BadgeTrigger.POST_CREATED: (self.check_first_post, self.check_active_member),
            BadgeTrigger.COMMENT_LIKED: (self.check_guiding_light, self.check_helpful),
            BadgeTrigger.COMMUNITY_JOINED: (self.check_community_builder,),
            BadgeTrigger.MESSAGE_SENT: (self.check_connector,),
        }[trigger]

        awarded = []
        for check in checks:
            badge = check(actor_id, session)
            if badge is not None:
                awarded.append(badge)
        return awarded

    # ── predicates ───────────────────────────────────────────────

    def _award_if(self, condition: bool, actor_id: str, badge_type: BadgeType, session: Session) -> BadgeType | None:
        if condition and self.award_badge(actor_id, badge_type, session):
            return badge_type
        return None

    def check_first_post(self, actor_id: str, session: Session) -> BadgeType | None:
        has_post = session.exec(
            select(ForumPost.id).where(ForumPost.user_id == actor_id).limit(1)
        ).first() is not None
        return self._award_if(has_post, actor_id, BadgeType.FIRST_POST, session)

    def check_active_member(self, actor_id: str, session: Session) -> BadgeType | None:
        approved = session.exec(
            select(func.count())
            .select_from(ForumPost)
            .where(ForumPost.user_id == actor_id)
            .where(ForumPost.moderation_status == "approved")
        ).one()
        return self._award_if(
            approved >= ACTIVE_MEMBER_POSTS, actor_id, BadgeType.ACTIVE_MEMBER, session
        )

    def _comment_like_counts(self, actor_id: str, session: Session) -> Counter[str]:
        rows = session.exec(
            select(CommentLike.comment_id)
            .join(ForumComment, CommentLike.comment_id == ForumComment.id)  # type: ignore[arg-type]
            .where(ForumComment.user_id == actor_id)
        ).all()
        return Counter(rows)

    def check_guiding_light(self, actor_id: str, session: Session) -> BadgeType | None:
        counts = self._comment_like_counts(actor_id, session)
        qualifies = any(n >= GUIDING_LIGHT_LIKES for n in counts.values())
        return self._award_if(qualifies, actor_id, BadgeType.GUIDING_LIGHT, session)

    def check_helpful(self, actor_id: str, session: Session) -> BadgeType | None:
        total = sum(self._comment_like_counts(actor_id, session).values())
        return self._award_if(total >= HELPFUL_LIKES, actor_id, BadgeType.HELPFUL, session)

    def check_community_builder(self, actor_id: str, session: Session) -> BadgeType | None:
        joined = session.exec(
            select(func.count())
            .select_from(CommunityMember)
            .where(CommunityMember.user_id == actor_id)
        ).one()
        return self._award_if(
            joined >= COMMUNITY_BUILDER_COMMUNITIES,
            actor_id,
            BadgeType.COMMUNITY_BUILDER,
            session,
        )

    def check_connector(self, actor_id: str, session: Session) -> BadgeType | None:
        """Conversations with at least three mutually connected peers."""
        connections = session.exec(
            select(PeerConnection)
            .where(or_(PeerConnection.requester_id == actor_id, PeerConnection.receiver_id == actor_id))
            .where(PeerConnection.status == "connected")
        ).all()
        connected = {
            c.receiver_id if c.requester_id == actor_id else c.requester_id
            for c in connections
        }
        if len(connected) < CONNECTOR_PEERS:
            return None

        conversations = session.exec(
            select(Conversation).where(
                or_(Conversation.participant_1 == actor_id, Conversation.participant_2 == actor_id)
            )
        ).all()
        partners = {
            c.participant_2 if c.participant_1 == actor_id else c.participant_1
            for c in conversations
        }
        return self._award_if(
            len(partners & connected) >= CONNECTOR_PEERS,
            actor_id,
            BadgeType.CONNECTOR,
            session,
        )

    def list_badges(self, actor_id: str, session: Session) -> list[BadgeAward]:
        return list(
            session.exec(
                select(BadgeAward)
                .where(BadgeAward.user_id == actor_id)
                .order_by(col(BadgeAward.earned_at).desc())
            ).all()
        )
