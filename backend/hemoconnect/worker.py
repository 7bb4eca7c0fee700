"""Background job processor for HemoConnect.

Runs a daemon thread that drains a thread-safe queue of fire-and-forget
jobs submitted by request handlers: embeddings, auto-tagging, thread digests
and badge checks.

Delivery is at-most-once and best-effort. Jobs are not persisted or retried,
and no ordering is guaranteed between jobs or relative to the response of the
request that submitted them. A failing job is logged and dropped.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from queue import Empty, Queue

from sqlmodel import Session

from hemoconnect.services.badges import BadgeService, BadgeTrigger
from hemoconnect.services.content import ContentService
from hemoconnect.services.inference import InferenceClient
from hemoconnect.services.vector_store import VectorStore

logger = logging.getLogger(__name__)


class JobType(str, Enum):
    EMBED_POST = "embed_post"  # Store the post embedding for semantic search
    AUTO_TAG_POST = "auto_tag_post"  # Zero-shot interest topic tagging
    EMBED_PROFILE = "embed_profile"  # Store the profile embedding for matching
    REFRESH_SUMMARY = "refresh_summary"  # Thread digest after a new comment
    CHECK_BADGES = "check_badges"  # Badge predicates for a triggering event


@dataclass
class Job:
    job_type: JobType
    payload: dict  # Contents depend on job_type


class BackgroundWorker:
    """Background job processor.

    Each job runs in a fresh event loop with its own database session.
    """

    __slots__ = (
        "_queue",
        "_thread",
        "_stop_event",
        "_content_service",
        "_badge_service",
        "_stats_lock",
        "_processed",
        "_failed",
    )

    def __init__(
        self,
        inference: InferenceClient,
        vector_store: VectorStore | None,
        content_service: ContentService | None = None,
        badge_service: BadgeService | None = None,
    ) -> None:
        self._queue: Queue[Job] = Queue()
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        # No worker handle here: enrichment steps never schedule further jobs
        self._content_service = content_service or ContentService(
            inference=inference, vector_store=vector_store
        )
        self._badge_service = badge_service or BadgeService()
        self._stats_lock = threading.Lock()
        self._processed = 0
        self._failed = 0

    def start(self) -> None:
        """Start the daemon worker thread."""
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="hemoconnect-worker", daemon=True
        )
        self._thread.start()
        logger.info("Background worker started")

    def stop(self) -> None:
        """Signal the worker to stop and wait for it to finish."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=10)
            logger.info("Background worker stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def submit_job(self, job: Job) -> None:
        """Put a job on the queue for processing."""
        self._queue.put(job)
        logger.debug("Job submitted: %s", job.job_type.value)

    def get_job_stats(self) -> dict:
        with self._stats_lock:
            return {
                "queued": self._queue.qsize(),
                "processed": self._processed,
                "failed": self._failed,
            }

    def _get_engine(self):
        """Get the DB engine (deferred import to avoid circular imports)."""
        from hemoconnect.db import engine
        return engine

    def _run(self) -> None:
        """Thread main loop: pull jobs from queue and dispatch."""
        logger.info("Worker thread running")

        while not self._stop_event.is_set():
            try:
                job = self._queue.get(timeout=1.0)
            except Empty:
                continue

            self.run_job(job)

        logger.info("Worker thread exiting")

    def run_job(self, job: Job) -> None:
        """Process one job, logging and dropping it on failure."""
        loop = asyncio.new_event_loop()
        try:
            with Session(self._get_engine()) as session:
                loop.run_until_complete(self._process_job(job, session))
        except Exception:
            logger.exception(
                "Background job %s failed (payload=%s)", job.job_type.value, job.payload
            )
            with self._stats_lock:
                self._failed += 1
        else:
            with self._stats_lock:
                self._processed += 1
        finally:
            loop.close()

    async def _process_job(self, job: Job, session: Session) -> None:
        """Dispatch a job by type."""
        payload = job.payload
        if job.job_type == JobType.EMBED_POST:
            stored = await self._content_service.embed_post(payload["post_id"], session)
            if not stored:
                logger.info("Post %s left without embedding", payload["post_id"])
        elif job.job_type == JobType.AUTO_TAG_POST:
            await self._content_service.auto_tag_post(payload["post_id"], session)
        elif job.job_type == JobType.EMBED_PROFILE:
            stored = await self._content_service.embed_profile(payload["profile_id"], session)
            if not stored:
                logger.info("Profile %s left without embedding", payload["profile_id"])
        elif job.job_type == JobType.REFRESH_SUMMARY:
            await self._content_service.refresh_summary(
                payload["post_id"], session, force=payload.get("force", False)
            )
        elif job.job_type == JobType.CHECK_BADGES:
            self._badge_service.evaluate(
                BadgeTrigger(payload["trigger"]), payload["actor_id"], session
            )
        else:
            logger.warning("Unknown job type: %s", job.job_type)
