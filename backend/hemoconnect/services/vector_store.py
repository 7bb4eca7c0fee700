"""Qdrant-backed similarity lookup for profile and post embeddings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import NAMESPACE_URL, uuid5

from qdrant_client import QdrantClient
from qdrant_client.models import Distance, PointStruct, VectorParams, models

from hemoconnect.services.inference import EMBEDDING_DIMENSIONS

logger = logging.getLogger(__name__)

PROFILES_COLLECTION = "profiles"
POSTS_COLLECTION = "forum_posts"
COLLECTIONS = (PROFILES_COLLECTION, POSTS_COLLECTION)

# Payload key holding the row id; Qdrant point ids must be UUIDs
REF_ID_KEY = "ref_id"

# Profile flags mirrored into the payload so lookups can skip ineligible peers
MATCHABLE_FLAGS = ("profile_visible", "peer_matching_enabled")


class VectorStoreError(Exception):
    """Raised when a similarity lookup or write cannot be completed."""


@dataclass(frozen=True, slots=True)
class VectorMatch:
    id: str
    similarity: float  # cosine, clamped to [0, 1]


def point_id_for(collection: str, ref_id: str) -> str:
    """Deterministic point id, so re-embedding a row overwrites its vector."""
    return str(uuid5(NAMESPACE_URL, f"hemoconnect:{collection}:{ref_id}"))


class VectorStore:
    """Thin wrapper over a Qdrant client with one cosine collection per entity."""

    __slots__ = ("qdrant",)

    def __init__(self, qdrant_client: QdrantClient) -> None:
        self.qdrant = qdrant_client

    def ensure_collections(self) -> None:
        """Create the collections if they do not already exist."""
        for name in COLLECTIONS:
            if self.qdrant.collection_exists(name):
                logger.info("Qdrant collection '%s' already exists", name)
                continue
            self.qdrant.create_collection(
                collection_name=name,
                vectors_config=VectorParams(size=EMBEDDING_DIMENSIONS, distance=Distance.COSINE),
            )
            logger.info("Created Qdrant collection '%s'", name)

    def upsert(
        self,
        collection: str,
        ref_id: str,
        vector: list[float],
        payload: dict | None = None,
    ) -> None:
        try:
            self.qdrant.upsert(
                collection_name=collection,
                points=[
                    PointStruct(
                        id=point_id_for(collection, ref_id),
                        vector=vector,
                        payload={**(payload or {}), REF_ID_KEY: ref_id},
                    )
                ],
            )
        except Exception as exc:
            raise VectorStoreError(f"Upsert into '{collection}' failed: {exc}") from exc

    def set_payload(self, collection: str, ref_id: str, payload: dict) -> None:
        """Overwrite payload keys of an existing point, leaving its vector alone."""
        try:
            self.qdrant.set_payload(
                collection_name=collection,
                payload=payload,
                points=[point_id_for(collection, ref_id)],
            )
        except Exception as exc:
            raise VectorStoreError(f"Payload update in '{collection}' failed: {exc}") from exc

    def query(
        self,
        collection: str,
        vector: list[float],
        top_n: int,
        min_similarity: float | None = None,
        exclude_id: str | None = None,
        must_match: dict | None = None,
    ) -> list[VectorMatch]:
        """Nearest neighbours of ``vector``, most similar first.

        ``must_match`` restricts the lookup to points whose payload holds
        each given key with exactly the given value.
        """
        must = [
            models.FieldCondition(key=key, match=models.MatchValue(value=value))
            for key, value in (must_match or {}).items()
        ]
        must_not = []
        if exclude_id is not None:
            must_not.append(models.HasIdCondition(has_id=[point_id_for(collection, exclude_id)]))

        query_filter: models.Filter | None = None
        if must or must_not:
            query_filter = models.Filter(must=must or None, must_not=must_not or None)

        try:
            response = self.qdrant.query_points(
                collection_name=collection,
                query=vector,
                limit=top_n,
                query_filter=query_filter,
                score_threshold=min_similarity,
                with_payload=True,
            )
        except Exception as exc:
            raise VectorStoreError(f"Similarity query on '{collection}' failed: {exc}") from exc

        matches = [
            VectorMatch(
                id=str((point.payload or {}).get(REF_ID_KEY, point.id)),
                similarity=min(max(point.score, 0.0), 1.0),
            )
            for point in response.points
        ]
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches


def profile_payload(profile) -> dict:
    """Payload stored with a profile vector: its id plus the matching flags."""
    payload = {"profile_id": profile.id}
    for flag in MATCHABLE_FLAGS:
        payload[flag] = bool(getattr(profile, flag))
    return payload
