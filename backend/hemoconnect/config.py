from __future__ import annotations

from functools import lru_cache

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RateLimitRule(BaseModel):
    window_ms: int
    max_requests: int


def _default_rate_limits() -> dict[str, RateLimitRule]:
    return {
        "create-post": RateLimitRule(window_ms=60_000, max_requests=5),
        "create-comment": RateLimitRule(window_ms=60_000, max_requests=15),
        "send-message": RateLimitRule(window_ms=60_000, max_requests=30),
        "report-content": RateLimitRule(window_ms=300_000, max_requests=5),
    }


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    db_url: str = "sqlite:///./hemoconnect.db"
    qdrant_url: str = "http://qdrant:6333"  # ":memory:" runs Qdrant embedded in-process
    cors_origins: list[str] = ["http://localhost:3000"]

    # Hugging Face Inference API. An empty token disables every AI feature.
    hf_api_token: str = ""
    hf_inference_url: str = "https://router.huggingface.co/hf-inference/models"
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    toxicity_model: str = "unitary/toxic-bert"
    classification_model: str = "facebook/bart-large-mnli"
    summarization_model: str = "facebook/bart-large-cnn"
    inference_timeout_seconds: float = 30.0
    # Upper bound on the synchronous moderation gate; expiry lets content through
    moderation_timeout_seconds: float = 15.0

    rate_limits: dict[str, RateLimitRule] = Field(default_factory=_default_rate_limits)

    search_similarity_threshold: float = 0.3
    search_result_limit: int = 20
    match_candidate_count: int = 10
    match_scan_limit: int = 200
    summary_min_comments: int = 3
    summary_stale_minutes: int = 60

    @model_validator(mode="after")
    def _check_moderation_timeout(self) -> Settings:
        if self.moderation_timeout_seconds < 10:
            raise ValueError(
                "MODERATION_TIMEOUT_SECONDS must be at least 10, "
                f"got {self.moderation_timeout_seconds}"
            )
        missing = set(_default_rate_limits()) - set(self.rate_limits)
        for action_class in missing:
            self.rate_limits[action_class] = _default_rate_limits()[action_class]
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
