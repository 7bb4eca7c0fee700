#!/usr/bin/env python3
"""Backfill embeddings for completed profiles and posts that have none.

Runs once against the configured database and Qdrant. Calls are spaced out
to stay under the inference provider's free-tier rate limit.

Usage:
    HF_API_TOKEN=hf_... python3 scripts/backfill_embeddings.py
    python3 scripts/backfill_embeddings.py --only posts
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from qdrant_client import QdrantClient
from sqlmodel import Session, col, select

import hemoconnect.models  # noqa: F401, register SQLModel tables

from hemoconnect.config import get_settings
from hemoconnect.db import create_db_and_tables, engine
from hemoconnect.models.forum import ForumPost
from hemoconnect.models.profile import Profile
from hemoconnect.services.content import ContentService
from hemoconnect.services.inference import InferenceClient
from hemoconnect.services.vector_store import VectorStore

DELAY_SECONDS = 0.2

logger = logging.getLogger("backfill_embeddings")


async def _embed_all(ids, embed, session) -> tuple[int, int]:
    stored = failed = 0
    for row_id in ids:
        if await embed(row_id, session):
            stored += 1
        else:
            failed += 1
        await asyncio.sleep(DELAY_SECONDS)
    return stored, failed


async def backfill(content: ContentService, only: str | None) -> dict[str, tuple[int, int]]:
    """Embed every row still missing a vector. Returns (stored, failed) per kind."""
    results: dict[str, tuple[int, int]] = {}
    with Session(engine) as session:
        if only in (None, "profiles"):
            profile_ids = session.exec(
                select(Profile.id)
                .where(col(Profile.embedding).is_(None))
                .where(Profile.profile_setup_complete == True)  # noqa: E712
            ).all()
            logger.info("%d profile(s) without embedding", len(profile_ids))
            results["profiles"] = await _embed_all(profile_ids, content.embed_profile, session)

        if only in (None, "posts"):
            post_ids = session.exec(
                select(ForumPost.id).where(col(ForumPost.embedding).is_(None))
            ).all()
            logger.info("%d post(s) without embedding", len(post_ids))
            results["posts"] = await _embed_all(post_ids, content.embed_post, session)
    return results


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--only", choices=["profiles", "posts"], default=None)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    settings = get_settings()
    if not settings.hf_api_token:
        print("HF_API_TOKEN is not set; nothing to do.", file=sys.stderr)
        return 1

    create_db_and_tables()
    qdrant_client = QdrantClient(location=settings.qdrant_url)
    vector_store = VectorStore(qdrant_client)
    vector_store.ensure_collections()
    inference = InferenceClient(
        base_url=settings.hf_inference_url,
        api_token=settings.hf_api_token,
        embedding_model=settings.embedding_model,
        toxicity_model=settings.toxicity_model,
        classification_model=settings.classification_model,
        summarization_model=settings.summarization_model,
        timeout=settings.inference_timeout_seconds,
    )
    content = ContentService(inference=inference, vector_store=vector_store)

    try:
        results = asyncio.run(backfill(content, args.only))
    finally:
        qdrant_client.close()

    for kind, (stored, failed) in results.items():
        print(f"{kind}: {stored} stored, {failed} failed")
    return 0 if all(failed == 0 for _, failed in results.values()) else 2


if __name__ == "__main__":
    sys.exit(main())
