from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import hemoconnect.models  # noqa: F401, register SQLModel tables

from hemoconnect.config import get_settings
from hemoconnect.db import create_db_and_tables
from hemoconnect.routers import badges, health, posts, profiles, search, social
from hemoconnect.services.inference import InferenceClient
from hemoconnect.services.rate_limit import RateLimiter
from hemoconnect.worker import BackgroundWorker

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    create_db_and_tables()

    # Process-wide limiter; every request shares the same buckets
    app.state.rate_limiter = RateLimiter(settings.rate_limits)

    inference_client = InferenceClient(
        base_url=settings.hf_inference_url,
        api_token=settings.hf_api_token,
        embedding_model=settings.embedding_model,
        toxicity_model=settings.toxicity_model,
        classification_model=settings.classification_model,
        summarization_model=settings.summarization_model,
        timeout=settings.inference_timeout_seconds,
    )
    app.state.inference_client = inference_client
    if not inference_client.is_configured:
        logger.warning("HF_API_TOKEN not set, AI features disabled, keyword search only")

    # Initialize Qdrant. Without it search and matching degrade to SQL.
    from qdrant_client import QdrantClient
    from hemoconnect.services.vector_store import VectorStore

    app.state.qdrant_client = None
    app.state.vector_store = None
    try:
        qdrant_client = QdrantClient(location=settings.qdrant_url)
        vector_store = VectorStore(qdrant_client)
        vector_store.ensure_collections()
        app.state.qdrant_client = qdrant_client
        app.state.vector_store = vector_store
    except Exception:
        logger.warning(
            "Failed to initialize Qdrant, semantic search and hybrid matching unavailable",
            exc_info=True,
        )

    worker = BackgroundWorker(
        inference=inference_client,
        vector_store=app.state.vector_store,
    )
    worker.start()
    app.state.worker = worker

    yield

    # Shutdown: stop background worker
    if getattr(app.state, "worker", None) is not None:
        app.state.worker.stop()

    # Shutdown: close Qdrant client
    if getattr(app.state, "qdrant_client", None) is not None:
        app.state.qdrant_client.close()


app = FastAPI(
    title="HemoConnect",
    description="Peer support community backend: matching, search, moderation",
    version="0.1.0",
    lifespan=lifespan,
)

settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(profiles.router)
app.include_router(posts.router)
app.include_router(posts.comments_router)
app.include_router(search.router)
app.include_router(social.router)
app.include_router(badges.router)
