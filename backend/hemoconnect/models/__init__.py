from __future__ import annotations

from hemoconnect.models.profile import Profile  # noqa: F401
from hemoconnect.models.forum import ForumPost, ForumComment, CommentLike  # noqa: F401
from hemoconnect.models.badge import BadgeAward, Notification  # noqa: F401
from hemoconnect.models.social import (  # noqa: F401
    CommunityMember,
    ContentReport,
    Conversation,
    DirectMessage,
    PeerConnection,
)
