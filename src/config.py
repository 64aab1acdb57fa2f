"""Central application configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_float(name: str, default: str) -> float:
    return float(os.getenv(name, default))


@dataclass(frozen=True)
class Config:
    """Central application configuration.

    Reads from environment variables with sensible defaults.
    The encryption secret is optional here; the codec raises on first use
    when it is missing.
    """

    # Elasticsearch
    elasticsearch_url: str = field(
        default_factory=lambda: os.getenv("ELASTICSEARCH_URL", "http://localhost:9200")
    )
    elasticsearch_cloud_id: str | None = field(
        default_factory=lambda: os.getenv("ELASTIC_CLOUD_ID") or None
    )
    elasticsearch_api_key: str | None = field(
        default_factory=lambda: os.getenv("ELASTIC_API_KEY") or None
    )
    pets_index: str = "pets"
    match_results_index: str = "match_results"
    settings_index: str = "scoring_settings"
    adoption_requests_index: str = "adoption_requests"
    pet_approvals_index: str = "pet_approvals"
    active_requests_index: str = "active_adoption_requests"
    integration_events_index: str = "integration_events"

    # Secret at rest
    encryption_secret: str | None = field(
        default_factory=lambda: os.getenv("SCORING_KEY_ENC_SECRET")
        or os.getenv("JWT_SECRET")
        or None
    )

    # Scoring service
    default_model: str = "gpt-4o-mini"
    default_max_tokens: int = 1024
    default_temperature: float = 0.3
    scoring_timeout_seconds: float = field(
        default_factory=lambda: _env_float("SCORING_TIMEOUT_SECONDS", "20")
    )

    # Matching
    score_ttl_hours: int = 24
    max_candidate_pets: int = 500
    recommend_max_workers: int = field(
        default_factory=lambda: int(os.getenv("RECOMMEND_MAX_WORKERS", "4"))
    )

    # Admin test-call throttling (per admin)
    test_calls_per_minute: int = 5

    # Server
    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8000")))


def get_config() -> Config:
    """Get application configuration.

    Returns:
        Config instance with values from environment or defaults.
    """
    return Config()
