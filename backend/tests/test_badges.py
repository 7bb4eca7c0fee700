"""Tests for badge predicates, idempotent awards and notifications."""
from __future__ import annotations

from sqlmodel import Session, select

from hemoconnect.models.badge import BadgeAward, BadgeType, Notification
from hemoconnect.models.forum import CommentLike, ForumComment, ForumPost
from hemoconnect.models.social import CommunityMember, Conversation, PeerConnection
from hemoconnect.services.badges import BadgeService, BadgeTrigger


# ── Helpers ──────────────────────────────────────────────────────────


def _posts(session: Session, user_id: str, n: int, status: str = "approved") -> None:
    for i in range(n):
        session.add(ForumPost(user_id=user_id, title=f"p{i}", body="b", moderation_status=status))
    session.commit()


def _comment_with_likes(session: Session, author: str, likes: int) -> ForumComment:
    post = ForumPost(user_id="someone", title="t", body="b")
    session.add(post)
    session.commit()
    comment = ForumComment(post_id=post.id, user_id=author, body="helpful reply")
    session.add(comment)
    session.commit()
    for i in range(likes):
        session.add(CommentLike(user_id=f"liker{i}", comment_id=comment.id))
    session.commit()
    return comment


def _connect(session: Session, a: str, b: str, status: str = "connected", converse: bool = True) -> None:
    session.add(PeerConnection(requester_id=a, receiver_id=b, status=status))
    if converse:
        session.add(Conversation(participant_1=b, participant_2=a))
    session.commit()


def _held(session: Session, user_id: str) -> set[str]:
    return set(session.exec(select(BadgeAward.badge_type).where(BadgeAward.user_id == user_id)).all())


class TestAwardBadge:
    def test_award_creates_notification(self, session):
        service = BadgeService()
        assert service.award_badge("alice", BadgeType.FIRST_POST, session) is True

        notes = session.exec(select(Notification)).all()
        assert len(notes) == 1
        assert notes[0].user_id == "alice"
        assert notes[0].type == "badge_earned"
        assert notes[0].badge_type == "first_post"
        assert notes[0].message == 'You earned the "first post" badge!'

    def test_award_is_idempotent(self, session):
        service = BadgeService()
        service.award_badge("alice", BadgeType.HELPFUL, session)
        assert service.award_badge("alice", BadgeType.HELPFUL, session) is False
        assert len(session.exec(select(BadgeAward)).all()) == 1
        assert len(session.exec(select(Notification)).all()) == 1

    def test_list_badges_newest_first(self, session):
        service = BadgeService()
        service.award_badge("alice", BadgeType.FIRST_POST, session)
        service.award_badge("alice", BadgeType.HELPFUL, session)
        service.award_badge("bob", BadgeType.CONNECTOR, session)

        badges = service.list_badges("alice", session)

        assert [b.badge_type for b in badges] == ["helpful", "first_post"]


class TestPostBadges:
    def test_first_post(self, session):
        _posts(session, "alice", 1)
        assert BadgeService().evaluate(BadgeTrigger.POST_CREATED, "alice", session) == [BadgeType.FIRST_POST]

    def test_first_post_counts_flagged_posts(self, session):
        _posts(session, "alice", 1, status="flagged")
        assert BadgeType.FIRST_POST in BadgeService().evaluate(BadgeTrigger.POST_CREATED, "alice", session)

    def test_active_member_needs_ten_approved(self, session):
        _posts(session, "alice", 9)
        _posts(session, "alice", 3, status="flagged")
        service = BadgeService()
        assert BadgeType.ACTIVE_MEMBER not in service.evaluate(BadgeTrigger.POST_CREATED, "alice", session)

        _posts(session, "alice", 1)
        assert service.evaluate(BadgeTrigger.POST_CREATED, "alice", session) == [BadgeType.ACTIVE_MEMBER]

    def test_repeat_evaluation_awards_nothing_new(self, session):
        _posts(session, "alice", 1)
        service = BadgeService()
        service.evaluate(BadgeTrigger.POST_CREATED, "alice", session)
        assert service.evaluate(BadgeTrigger.POST_CREATED, "alice", session) == []


class TestLikeBadges:
    def test_helpful_sums_across_comments(self, session):
        _comment_with_likes(session, "alice", 3)
        _comment_with_likes(session, "alice", 2)
        assert BadgeService().evaluate(BadgeTrigger.COMMENT_LIKED, "alice", session) == [BadgeType.HELPFUL]

    def test_guiding_light_needs_one_comment_with_ten(self, session):
        _comment_with_likes(session, "alice", 6)
        _comment_with_likes(session, "alice", 6)
        assert BadgeType.GUIDING_LIGHT not in BadgeService().evaluate(BadgeTrigger.COMMENT_LIKED, "alice", session)

        _comment_with_likes(session, "alice", 10)
        assert BadgeService().evaluate(BadgeTrigger.COMMENT_LIKED, "alice", session) == [BadgeType.GUIDING_LIGHT]
        assert _held(session, "alice") == {"helpful", "guiding_light"}

    def test_likes_on_other_authors_ignored(self, session):
        _comment_with_likes(session, "bob", 12)
        assert BadgeService().evaluate(BadgeTrigger.COMMENT_LIKED, "alice", session) == []


class TestCommunityBuilder:
    def test_three_communities(self, session):
        service = BadgeService()
        for community in ("joints", "parents"):
            session.add(CommunityMember(community_id=community, user_id="alice"))
        session.commit()
        assert service.evaluate(BadgeTrigger.COMMUNITY_JOINED, "alice", session) == []

        session.add(CommunityMember(community_id="travel", user_id="alice"))
        session.commit()
        assert service.evaluate(BadgeTrigger.COMMUNITY_JOINED, "alice", session) == [BadgeType.COMMUNITY_BUILDER]


class TestConnector:
    def test_three_connected_peers_with_conversations(self, session):
        for peer in ("b", "c", "d"):
            _connect(session, "alice", peer)
        assert BadgeService().evaluate(BadgeTrigger.MESSAGE_SENT, "alice", session) == [BadgeType.CONNECTOR]

    def test_connected_but_silent_peer_does_not_count(self, session):
        _connect(session, "alice", "b")
        _connect(session, "c", "alice")
        _connect(session, "alice", "d", converse=False)
        assert BadgeService().evaluate(BadgeTrigger.MESSAGE_SENT, "alice", session) == []

    def test_pending_connection_does_not_count(self, session):
        _connect(session, "alice", "b")
        _connect(session, "alice", "c")
        _connect(session, "alice", "d", status="pending")
        assert BadgeService().evaluate(BadgeTrigger.MESSAGE_SENT, "alice", session) == []
