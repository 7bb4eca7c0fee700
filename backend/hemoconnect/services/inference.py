"""Inference client for HemoConnect: embeddings, moderation, tagging, digests.

Wraps four Hugging Face Inference API tasks behind one best-effort contract:
every call returns its value or ``None``. Transient remote failures (model
loading, remote rate limiting) are retried with exponential backoff; anything
else ends the call with ``None`` straight away. Callers treat ``None`` as
"feature unavailable" and carry on with the primary action.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from hemoconnect.models.profile import (
    HEMOPHILIA_TYPE_LABELS,
    SEVERITY_LABELS,
    TREATMENT_LABELS,
)

logger = logging.getLogger(__name__)

EMBEDDING_DIMENSIONS = 384  # all-MiniLM-L6-v2
MAX_ATTEMPTS = 3
MAX_EMBEDDING_CHARS = 500
MAX_SUMMARY_INPUT_CHARS = 1024
TOXICITY_THRESHOLD = 0.7
CLASSIFICATION_THRESHOLD = 0.4
MAX_TOPIC_LABELS = 3
SUMMARY_MAX_LENGTH = 150
SUMMARY_MIN_LENGTH = 30

# 503: model still loading on the remote side, 429: remote rate limit
TRANSIENT_STATUS_CODES = frozenset({429, 503})


class OutcomeKind(str, Enum):
    OK = "ok"
    TRANSIENT = "transient"
    TERMINAL = "terminal"


@dataclass(frozen=True, slots=True)
class CallOutcome:
    """Result of a single attempt against the inference API."""

    kind: OutcomeKind
    value: Any = None
    detail: str = ""

    @classmethod
    def ok(cls, value: Any) -> CallOutcome:
        return cls(OutcomeKind.OK, value=value)

    @classmethod
    def transient(cls, detail: str) -> CallOutcome:
        return cls(OutcomeKind.TRANSIENT, detail=detail)

    @classmethod
    def terminal(cls, detail: str) -> CallOutcome:
        return cls(OutcomeKind.TERMINAL, detail=detail)


@dataclass(frozen=True, slots=True)
class LabelScore:
    label: str
    score: float


@dataclass(frozen=True, slots=True)
class ModerationVerdict:
    is_toxic: bool
    labels: list[LabelScore]


TopicScore = LabelScore


def compose_profile_text(profile) -> str:
    """Build the natural-language text a profile is embedded from."""
    parts: list[str] = []
    if profile.hemophilia_type:
        parts.append(
            f"Hemophilia Type: {HEMOPHILIA_TYPE_LABELS.get(profile.hemophilia_type, profile.hemophilia_type)}"
        )
    if profile.severity_level:
        parts.append(
            f"Severity: {SEVERITY_LABELS.get(profile.severity_level, profile.severity_level)}"
        )
    if profile.current_treatment:
        parts.append(
            f"Treatment: {TREATMENT_LABELS.get(profile.current_treatment, profile.current_treatment)}"
        )
    if profile.life_stage:
        parts.append(f"Life Stage: {profile.life_stage.replace('-', ' ')}")
    if profile.topics:
        parts.append(f"Interests: {', '.join(profile.topics)}")
    if profile.bio:
        parts.append(f"Bio: {profile.bio}")
    return ". ".join(parts)[:MAX_EMBEDDING_CHARS]


def compose_post_text(title: str, body: str) -> str:
    return f"{title}. {body}"[:MAX_EMBEDDING_CHARS]


def compose_thread_text(title: str, body: str, comment_bodies: Sequence[str]) -> str:
    """Title, body and every reply in order, truncated for summarization."""
    parts = [f"Topic: {title}", f"Original post: {body}"]
    parts.extend(f"Reply {i}: {text}" for i, text in enumerate(comment_bodies, start=1))
    return "\n\n".join(parts)[:MAX_SUMMARY_INPUT_CHARS]


class InferenceClient:
    """Best-effort client for the remote inference service."""

    __slots__ = (
        "base_url",
        "_api_token",
        "_timeout",
        "_transport",
        "_sleep",
        "embedding_model",
        "toxicity_model",
        "classification_model",
        "summarization_model",
    )

    def __init__(
        self,
        base_url: str,
        api_token: str = "",
        embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2",
        toxicity_model: str = "unitary/toxic-bert",
        classification_model: str = "facebook/bart-large-mnli",
        summarization_model: str = "facebook/bart-large-cnn",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._api_token = api_token
        self._timeout = timeout
        self._transport = transport
        self._sleep = sleep
        self.embedding_model = embedding_model
        self.toxicity_model = toxicity_model
        self.classification_model = classification_model
        self.summarization_model = summarization_model

    @property
    def is_configured(self) -> bool:
        return bool(self._api_token)

    def _accepts(self, text: str) -> bool:
        return self.is_configured and bool(text and text.strip())

    # ── public operations ────────────────────────────────────────

    async def embed(self, text: str) -> list[float] | None:
        """Return a 384-d embedding for ``text``, or None."""
        if not self._accepts(text):
            return None
        return await self._call_with_retry(
            "embedding",
            self.embedding_model,
            {"inputs": text[:MAX_EMBEDDING_CHARS]},
            _parse_embedding,
        )

    async def classify_toxicity(self, text: str) -> ModerationVerdict | None:
        """Score ``text`` with the toxicity classifier, or None if unavailable."""
        if not self._accepts(text):
            return None
        return await self._call_with_retry(
            "toxicity",
            self.toxicity_model,
            {"inputs": text[:MAX_EMBEDDING_CHARS]},
            _parse_toxicity,
        )

    async def classify_topics(
        self, text: str, candidate_labels: Sequence[str]
    ) -> list[TopicScore] | None:
        """Zero-shot classify ``text``; up to three labels scoring above threshold."""
        if not self._accepts(text) or not candidate_labels:
            return None
        return await self._call_with_retry(
            "classification",
            self.classification_model,
            {
                "inputs": text[:MAX_EMBEDDING_CHARS],
                "parameters": {
                    "candidate_labels": list(candidate_labels),
                    "multi_label": True,
                },
            },
            _parse_topics,
        )

    async def summarize(self, text: str) -> str | None:
        if not self._accepts(text):
            return None
        return await self._call_with_retry(
            "summarization",
            self.summarization_model,
            {
                "inputs": text[:MAX_SUMMARY_INPUT_CHARS],
                "parameters": {
                    "max_length": SUMMARY_MAX_LENGTH,
                    "min_length": SUMMARY_MIN_LENGTH,
                },
            },
            _parse_summary,
        )

    # ── retry state machine ──────────────────────────────────────

    async def _call_with_retry(
        self,
        operation: str,
        model: str,
        payload: dict,
        parse: Callable[[Any], Any],
    ) -> Any:
        """Attempt, classify the outcome, then retry or return.

        Sleeps ``2**attempt`` seconds between transient failures.
        """
        for attempt in range(MAX_ATTEMPTS):
            outcome = await self._attempt(model, payload, parse)

            if outcome.kind is OutcomeKind.OK:
                return outcome.value

            if outcome.kind is OutcomeKind.TERMINAL:
                logger.warning("Inference %s failed: %s", operation, outcome.detail)
                return None

            if attempt < MAX_ATTEMPTS - 1:
                backoff = 2**attempt
                logger.warning(
                    "Inference %s returned %s, retrying in %ds (attempt %d/%d)",
                    operation, outcome.detail, backoff, attempt + 1, MAX_ATTEMPTS,
                )
                await self._sleep(backoff)

        logger.error(
            "Inference %s still unavailable after %d attempts", operation, MAX_ATTEMPTS
        )
        return None

    async def _attempt(
        self, model: str, payload: dict, parse: Callable[[Any], Any]
    ) -> CallOutcome:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_token}",
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self.base_url}/{model}", headers=headers, json=payload
                )
        except httpx.TimeoutException as exc:
            return CallOutcome.terminal(f"request timed out after {self._timeout}s: {exc}")
        except httpx.HTTPError as exc:
            return CallOutcome.terminal(f"cannot reach {self.base_url}: {exc}")

        if response.status_code in TRANSIENT_STATUS_CODES:
            return CallOutcome.transient(f"HTTP {response.status_code}")
        if response.status_code >= 400:
            return CallOutcome.terminal(f"HTTP {response.status_code}: {response.text[:200]}")

        try:
            return CallOutcome.ok(parse(response.json()))
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            return CallOutcome.terminal(f"unexpected response format: {exc!r}")


# ── response parsers ─────────────────────────────────────────────


def _parse_embedding(data: Any) -> list[float]:
    # Single input comes back as [float, ...]; some deployments wrap it as [[...]]
    if data and isinstance(data[0], list):
        data = data[0]
    vector = [float(x) for x in data]
    if len(vector) != EMBEDDING_DIMENSIONS:
        raise ValueError(f"expected {EMBEDDING_DIMENSIONS} dimensions, got {len(vector)}")
    return vector


def _parse_toxicity(data: Any) -> ModerationVerdict:
    if isinstance(data, dict):
        data = [data]
    if data and isinstance(data[0], list):
        data = data[0]
    labels = [LabelScore(label=str(d["label"]), score=float(d["score"])) for d in data]
    is_toxic = any(
        l.label.lower() == "toxic" and l.score > TOXICITY_THRESHOLD for l in labels
    )
    return ModerationVerdict(is_toxic=is_toxic, labels=labels)


def _parse_topics(data: Any) -> list[TopicScore] | None:
    # Pipeline format {"labels": [...], "scores": [...]} or a list of {label, score}
    if isinstance(data, dict):
        pairs = zip(data["labels"], data["scores"], strict=True)
    else:
        pairs = ((d["label"], d["score"]) for d in data)

    scored = [
        TopicScore(label=str(label), score=float(score))
        for label, score in pairs
        if float(score) > CLASSIFICATION_THRESHOLD
    ]
    scored.sort(key=lambda t: t.score, reverse=True)
    return scored[:MAX_TOPIC_LABELS] or None


def _parse_summary(data: Any) -> str | None:
    if isinstance(data, list):
        data = data[0]
    return data["summary_text"] or None
