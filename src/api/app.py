"""FastAPI application factory with lifespan management."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from elasticsearch import Elasticsearch
from fastapi import FastAPI

from src.adoption.lifecycle import AdoptionRequestLifecycle
from src.api.rate_limit import KeyedRateLimiter
from src.config import Config, get_config
from src.events.audit import AuditLog
from src.events.notifier import ChangeNotifier
from src.matching.hard_filters import HardFilterEngine
from src.matching.recommender import RecommendationOrchestrator
from src.matching.score_cache import ScoreCache
from src.matching.scoring_client import ScoringClient
from src.matching.settings import SettingsResolver, SettingsStore
from src.security.secret_codec import SecretCodec
from src.storage.es_client import create_es_client
from src.storage.indices import ensure_indices
from src.storage.pets import PetDirectory


def build_services(
    app: FastAPI,
    config: Config,
    es_client: Elasticsearch,
    notifier: ChangeNotifier | None = None,
) -> None:
    """Wire the core services onto ``app.state``.

    Raises:
        ConfigurationError: If no encryption secret is configured.
    """
    codec = SecretCodec(config.encryption_secret)
    codec.key  # noqa: B018 - fail fast on a missing secret

    audit = AuditLog(es_client, config.integration_events_index)
    pets = PetDirectory(es_client, config.pets_index, config.max_candidate_pets)
    settings_store = SettingsStore(es_client, codec, config, audit=audit)
    resolver = SettingsResolver(settings_store)
    scoring_client = ScoringClient(
        resolver, timeout=config.scoring_timeout_seconds, audit=audit
    )

    app.state.config = config
    app.state.es_client = es_client
    app.state.audit = audit
    app.state.notifier = notifier or ChangeNotifier()
    app.state.settings_store = settings_store
    app.state.scoring_client = scoring_client
    app.state.test_rate_limiter = KeyedRateLimiter(config.test_calls_per_minute, 60.0)
    app.state.recommender = RecommendationOrchestrator(
        pets=pets,
        hard_filters=HardFilterEngine(),
        cache=ScoreCache(
            es_client,
            config.match_results_index,
            ttl=timedelta(hours=config.score_ttl_hours),
        ),
        resolver=resolver,
        client=scoring_client,
        audit=audit,
        max_workers=config.recommend_max_workers,
    )
    app.state.lifecycle = AdoptionRequestLifecycle(
        es_client, pets, app.state.notifier, config
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Initialize shared resources on startup, clean up on shutdown.

    Creates the Elasticsearch client, makes sure every index exists and
    builds the services shared across requests.
    """
    config = get_config()
    es_client = create_es_client(config)
    ensure_indices(es_client, config)
    build_services(app, config, es_client)

    yield

    es_client.close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    app = FastAPI(
        title="Adopt-a-Pet Matching",
        description="Adopter/pet compatibility scoring and adoption request lifecycle",
        version="0.2.0",
        lifespan=lifespan,
    )

    from src.api.routes import router

    app.include_router(router)

    return app
