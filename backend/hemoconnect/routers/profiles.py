"""Profile router: profile upsert and peer match suggestions."""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session

from hemoconnect.db import get_session
from hemoconnect.dependencies import (
    get_actor_id,
    get_matching_service,
    get_vector_store,
    get_worker,
)
from hemoconnect.models.profile import Profile, ProfileRead, ProfileUpdate
from hemoconnect.services.matching import MatchingService
from hemoconnect.services.vector_store import (
    MATCHABLE_FLAGS,
    PROFILES_COLLECTION,
    VectorStore,
    VectorStoreError,
    profile_payload,
)
from hemoconnect.worker import BackgroundWorker, Job, JobType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["profiles"])

# Fields that feed the profile embedding text
_EMBEDDED_FIELDS = ("bio", "hemophilia_type", "severity_level", "current_treatment", "life_stage", "topics")


class MatchResponse(BaseModel):
    candidate_id: str
    first_name: str
    last_name: str
    hemophilia_type: str | None
    severity_level: str | None
    topics: list[str]
    rule_score: int
    similarity: float | None
    match_score: int
    match_method: str


def _to_read(profile: Profile) -> ProfileRead:
    read = ProfileRead.model_validate(profile)
    read.has_embedding = profile.embedding is not None
    return read


@router.put("/profiles/me", response_model=ProfileRead)
async def upsert_my_profile(
    body: ProfileUpdate,
    actor_id: str = Depends(get_actor_id),
    session: Session = Depends(get_session),
    worker: BackgroundWorker | None = Depends(get_worker),
    vector_store: VectorStore | None = Depends(get_vector_store),
) -> ProfileRead:
    profile = session.get(Profile, actor_id)
    if profile is None:
        profile = Profile(id=actor_id)
        text_changed = True
        flags_changed = False
    else:
        text_changed = any(getattr(profile, f) != getattr(body, f) for f in _EMBEDDED_FIELDS)
        flags_changed = any(getattr(profile, f) != getattr(body, f) for f in MATCHABLE_FLAGS)

    for field, value in body.model_dump().items():
        setattr(profile, field, value)
    profile.profile_setup_complete = True
    profile.updated_at = datetime.now(timezone.utc)
    session.add(profile)
    session.commit()
    session.refresh(profile)

    # Re-embed whenever the embedded text changes
    if text_changed and worker is not None:
        try:
            worker.submit_job(Job(job_type=JobType.EMBED_PROFILE, payload={"profile_id": profile.id}))
        except Exception:
            logger.warning("Embedding submit failed for profile %s", profile.id, exc_info=True)

    # Keep the indexed vector's flags in step with the row until any re-embed lands
    if flags_changed and profile.embedding is not None and vector_store is not None:
        try:
            vector_store.set_payload(PROFILES_COLLECTION, profile.id, profile_payload(profile))
        except VectorStoreError:
            logger.warning("Matching flags not synced for profile %s", profile.id, exc_info=True)

    return _to_read(profile)


@router.get("/profiles/{profile_id}", response_model=ProfileRead)
async def get_profile(
    profile_id: str,
    actor_id: str = Depends(get_actor_id),
    session: Session = Depends(get_session),
) -> ProfileRead:
    profile = session.get(Profile, profile_id)
    if profile is None or (not profile.profile_visible and profile.id != actor_id):
        raise HTTPException(status_code=404, detail="Profile not found")
    return _to_read(profile)


@router.get("/matches", response_model=list[MatchResponse])
async def suggested_peers(
    actor_id: str = Depends(get_actor_id),
    session: Session = Depends(get_session),
    matching: MatchingService = Depends(get_matching_service),
) -> list[MatchResponse]:
    """Top three peers for the caller: hybrid when embeddings allow, else rule-based."""
    me = session.get(Profile, actor_id)
    if me is None:
        return []

    candidates = matching.score_matches(me, session)

    responses = []
    for c in candidates:
        other = session.get(Profile, c.candidate_id)
        if other is None:
            continue
        responses.append(
            MatchResponse(
                candidate_id=other.id,
                first_name=other.first_name,
                last_name=other.last_name,
                hemophilia_type=other.hemophilia_type,
                severity_level=other.severity_level,
                topics=other.topics,
                rule_score=c.rule_score,
                similarity=c.similarity,
                match_score=c.final_score,
                match_method=c.method,
            )
        )
    return responses
