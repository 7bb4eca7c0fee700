from __future__ import annotations

import os
from unittest.mock import AsyncMock, MagicMock

# Set test environment BEFORE importing hemoconnect modules.
# hemoconnect.db creates the engine at module level using get_settings().db_url,
# so we must override the env vars before any hemoconnect imports.
os.environ.setdefault("DB_URL", "sqlite://")
os.environ.setdefault("QDRANT_URL", ":memory:")
os.environ.setdefault("HF_API_TOKEN", "")

import pytest
from fastapi.testclient import TestClient
from qdrant_client import QdrantClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from hemoconnect.db import get_session
from hemoconnect.dependencies import get_inference_client, get_vector_store, get_worker
from hemoconnect.main import app as fastapi_app
from hemoconnect.services.inference import InferenceClient
from hemoconnect.services.vector_store import VectorStore
from hemoconnect.worker import BackgroundWorker


# ── Database fixtures ─────────────────────────────────────────────────


@pytest.fixture(name="engine")
def engine_fixture():
    """Create an in-memory SQLite engine for testing.

    Uses StaticPool so every connection shares the same in-memory database.
    Recreates tables per test for full isolation.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine):
    """Provide a fresh session per test."""
    with Session(engine) as session:
        yield session


# ── Vector store fixtures ─────────────────────────────────────────────


@pytest.fixture(name="vector_store")
def vector_store_fixture():
    """VectorStore over an embedded in-process Qdrant."""
    client = QdrantClient(location=":memory:")
    store = VectorStore(client)
    store.ensure_collections()
    yield store
    client.close()


# ── Mock AI service fixtures ──────────────────────────────────────────


@pytest.fixture(name="mock_inference")
def mock_inference_fixture() -> MagicMock:
    """Mock InferenceClient where every call reports the service unavailable."""
    mock = MagicMock(spec=InferenceClient)
    mock.is_configured = True
    mock.embed = AsyncMock(return_value=None)
    mock.classify_toxicity = AsyncMock(return_value=None)
    mock.classify_topics = AsyncMock(return_value=None)
    mock.summarize = AsyncMock(return_value=None)
    return mock


@pytest.fixture(name="mock_worker")
def mock_worker_fixture() -> MagicMock:
    """Mock BackgroundWorker that records submitted jobs."""
    return MagicMock(spec=BackgroundWorker)


# ── HTTP client fixtures ──────────────────────────────────────────────


@pytest.fixture(name="client")
def client_fixture(session, mock_inference, mock_worker):
    """FastAPI TestClient with overridden DB session, inference and worker.

    The vector store is overridden to None so search and matching take
    their SQL paths unless a test overrides it again.
    """

    def _get_session_override():
        yield session

    fastapi_app.dependency_overrides[get_session] = _get_session_override
    fastapi_app.dependency_overrides[get_inference_client] = lambda: mock_inference
    fastapi_app.dependency_overrides[get_worker] = lambda: mock_worker
    fastapi_app.dependency_overrides[get_vector_store] = lambda: None
    with TestClient(fastapi_app) as client:
        client.headers["X-Actor-Id"] = "alice"
        yield client
    fastapi_app.dependency_overrides.clear()
