"""Peer matching: rule-based clinical scoring blended with embedding similarity."""
from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Literal

from sqlmodel import Session, select

from hemoconnect.models.profile import Profile
from hemoconnect.services.vector_store import (
    MATCHABLE_FLAGS,
    PROFILES_COLLECTION,
    VectorStore,
    VectorStoreError,
)

logger = logging.getLogger(__name__)

BASE_SCORE = 50
SAME_TYPE_BONUS = 20
SAME_SEVERITY_BONUS = 15
SHARED_TOPIC_BONUS = 5
MAX_SCORE = 99

RULE_WEIGHT = 0.4
SIMILARITY_WEIGHT = 0.6

DEFAULT_MATCH_LIMIT = 3

MatchMethod = Literal["hybrid", "rule-based"]


@dataclass(frozen=True, slots=True)
class MatchableProfile:
    hemophilia_type: str | None = None
    severity_level: str | None = None
    topics: frozenset[str] = field(default_factory=frozenset)
    embedding: list[float] | None = None

    @classmethod
    def from_profile(cls, profile: Profile) -> MatchableProfile:
        return cls(
            hemophilia_type=profile.hemophilia_type,
            severity_level=profile.severity_level,
            topics=frozenset(profile.topics or ()),
            embedding=profile.embedding,
        )


@dataclass(frozen=True, slots=True)
class ScoredCandidate:
    candidate_id: str
    rule_score: int
    final_score: int
    method: MatchMethod
    similarity: float | None = None


def _clamp(score: int) -> int:
    return max(0, min(score, MAX_SCORE))


def calculate_rule_score(a: MatchableProfile, b: MatchableProfile) -> int:
    """Categorical match score in [0, 99]. Symmetric in ``a`` and ``b``.

    Base 50, +20 for the same hemophilia type, +15 for the same severity,
    +5 for every shared interest topic.
    """
    score = BASE_SCORE
    if a.hemophilia_type and a.hemophilia_type == b.hemophilia_type:
        score += SAME_TYPE_BONUS
    if a.severity_level and a.severity_level == b.severity_level:
        score += SAME_SEVERITY_BONUS
    score += len(a.topics & b.topics) * SHARED_TOPIC_BONUS
    return _clamp(score)


def calculate_hybrid_score(rule_score: int, similarity: float | None) -> int:
    """Blend 40% rule score with 60% cosine similarity (scaled to 0-100).

    Returns ``rule_score`` unchanged when there is no similarity signal.
    """
    if similarity is None:
        return rule_score
    blended = rule_score * RULE_WEIGHT + similarity * 100 * SIMILARITY_WEIGHT
    # Half-up rounding; the 1e-9 absorbs float error such as 29.999999999999996
    return _clamp(math.floor(blended + 0.5 + 1e-9))


def rank_candidates(candidates: Iterable[ScoredCandidate]) -> list[ScoredCandidate]:
    """Sort by final score, then rule score, both descending. Stable on ties."""
    return sorted(candidates, key=lambda c: (-c.final_score, -c.rule_score))


def _is_matchable(profile: Profile | None) -> bool:
    return profile is not None and profile.profile_visible and profile.peer_matching_enabled


class MatchingService:
    """Suggest peers for a profile, preferring hybrid scoring over rule-only."""

    __slots__ = ("vector_store", "candidate_count", "scan_limit")

    def __init__(
        self,
        vector_store: VectorStore | None,
        candidate_count: int = 10,
        scan_limit: int = 200,
    ) -> None:
        self.vector_store = vector_store
        self.candidate_count = candidate_count
        self.scan_limit = scan_limit

    def score_matches(
        self,
        profile: Profile,
        session: Session,
        limit: int = DEFAULT_MATCH_LIMIT,
    ) -> list[ScoredCandidate]:
        """Top ``limit`` peers for ``profile``.

        1. Vector lookup of the nearest profiles, blended with rule scores.
        2. On no embedding, no vector store, lookup failure, or no eligible
           neighbours: rule scoring over eligible profiles.
        """
        me = MatchableProfile.from_profile(profile)

        hybrid = self._score_hybrid(profile.id, me, session)
        if hybrid:
            return rank_candidates(hybrid)[:limit]

        return rank_candidates(self._score_rule_based(profile.id, me, session))[:limit]

    def _score_hybrid(
        self, profile_id: str, me: MatchableProfile, session: Session
    ) -> list[ScoredCandidate]:
        if me.embedding is None or self.vector_store is None:
            return []

        try:
            matches = self.vector_store.query(
                PROFILES_COLLECTION,
                me.embedding,
                top_n=self.candidate_count,
                exclude_id=profile_id,
                must_match={flag: True for flag in MATCHABLE_FLAGS},
            )
        except VectorStoreError:
            logger.warning(
                "Vector matching failed, falling back to rule-based", exc_info=True
            )
            return []

        if not matches:
            return []

        ids = [m.id for m in matches if m.id != profile_id]
        profiles = {
            p.id: p
            for p in session.exec(select(Profile).where(Profile.id.in_(ids))).all()  # type: ignore[union-attr]
        }

        scored: list[ScoredCandidate] = []
        for match in matches:
            other = profiles.get(match.id)
            if match.id == profile_id or not _is_matchable(other):
                continue
            rule_score = calculate_rule_score(me, MatchableProfile.from_profile(other))
            scored.append(
                ScoredCandidate(
                    candidate_id=other.id,
                    rule_score=rule_score,
                    similarity=match.similarity,
                    final_score=calculate_hybrid_score(rule_score, match.similarity),
                    method="hybrid",
                )
            )
        return scored

    def _score_rule_based(
        self, profile_id: str, me: MatchableProfile, session: Session
    ) -> list[ScoredCandidate]:
        others = session.exec(
            select(Profile)
            .where(Profile.id != profile_id)
            .where(Profile.profile_visible == True)  # noqa: E712
            .where(Profile.peer_matching_enabled == True)  # noqa: E712
            .order_by(Profile.created_at)
            .limit(self.scan_limit)
        ).all()

        scored = []
        for other in others:
            rule_score = calculate_rule_score(me, MatchableProfile.from_profile(other))
            scored.append(
                ScoredCandidate(
                    candidate_id=other.id,
                    rule_score=rule_score,
                    final_score=rule_score,
                    method="rule-based",
                )
            )
        return scored
