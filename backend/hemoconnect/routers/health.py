from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlmodel import Session, text

from hemoconnect.db import get_session

router = APIRouter(prefix="/api", tags=["health"])

SERVICE_NAME = "hemoconnect-backend"
VERSION = "0.1.0"


@router.get("/health")
async def health(request: Request, session: Session = Depends(get_session)):
    db_status = "ok"
    try:
        session.exec(text("SELECT 1"))
    except Exception as exc:
        db_status = f"error: {exc}"

    inference = getattr(request.app.state, "inference_client", None)
    inference_status = "configured" if inference is not None and inference.is_configured else "not_configured"

    vector_status = "ok" if getattr(request.app.state, "vector_store", None) is not None else "unavailable"

    limiter = getattr(request.app.state, "rate_limiter", None)
    rate_limit_status: dict | str = "unavailable"
    if limiter is not None:
        rate_limit_status = {"buckets": limiter.bucket_count()}

    # Job stats from the background worker
    jobs_status: dict | str = "unavailable"
    worker = getattr(request.app.state, "worker", None)
    if worker is not None:
        try:
            jobs_status = worker.get_job_stats()
        except Exception:
            jobs_status = "error"

    return {
        "status": "healthy" if db_status == "ok" else "degraded",
        "service": SERVICE_NAME,
        "version": VERSION,
        "checks": {
            "database": db_status,
            "inference": inference_status,
            "vector_store": vector_status,
            "rate_limiter": rate_limit_status,
            "jobs": jobs_status,
        },
    }


@router.get("/health/ready")
async def ready():
    return {"status": "ready"}
