"""Shared test fixtures for the matching and adoption test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from src.config import Config
from src.data.schemas import Actor, AdopterProfile, PetCandidate
from src.events.notifier import ChangeNotifier
from src.security.secret_codec import SecretCodec
from src.storage.pets import PetDirectory
from tests.fakes import FakeElasticsearch

HEX_SECRET = "0" * 64


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def config() -> Config:
    """Config with a fixed encryption secret."""
    return Config(encryption_secret=HEX_SECRET, recommend_max_workers=1)


@pytest.fixture
def fake_es() -> FakeElasticsearch:
    return FakeElasticsearch()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def codec() -> SecretCodec:
    return SecretCodec(HEX_SECRET)


@pytest.fixture
def apartment_profile() -> AdopterProfile:
    """Profile from the end-to-end scenarios (camelCase, as sent by the UI)."""
    return AdopterProfile.model_validate(
        {
            "livingSpace": "apartment",
            "energyLevel": "low",
            "kids": "none",
            "specialCare": "none",
        }
    )


@pytest.fixture
def yard_dog() -> PetCandidate:
    return PetCandidate(
        pet_id="pet-yard",
        shelter_id="shelter-1",
        name="Rex",
        species="dog",
        breed="German Shepherd",
        age=3,
        living_space="house-with-yard",
        energy_level="high",
        experience="experienced",
        kids="older",
        special_care="none",
        size="large",
        description="Needs room to run.",
    )


@pytest.fixture
def calm_cat() -> PetCandidate:
    return PetCandidate(
        pet_id="pet-cat",
        shelter_id="shelter-1",
        name="Luna",
        species="cat",
        breed="Siamese",
        age=5,
        living_space="apartment",
        energy_level="low",
        experience="first-time",
        kids="any",
        special_care="none",
        size="small",
        description="A quiet lap cat.",
        image="luna.jpg",
    )


@pytest.fixture
def pet_directory(fake_es: FakeElasticsearch, config: Config) -> PetDirectory:
    return PetDirectory(fake_es, config.pets_index)


@pytest.fixture
def seed_pets(fake_es: FakeElasticsearch, config: Config):
    """Write pets straight into the fake pets index."""

    def _seed(*pets: PetCandidate) -> None:
        for pet in pets:
            fake_es.put(config.pets_index, pet.pet_id, pet.model_dump())

    return _seed


@pytest.fixture
def notifier() -> ChangeNotifier:
    return ChangeNotifier()


@pytest.fixture
def signals(notifier: ChangeNotifier) -> list:
    received: list = []
    notifier.subscribe(received.append)
    return received


@pytest.fixture
def adopter() -> Actor:
    return Actor(user_id="adopter-1", role="adopter")


@pytest.fixture
def shelter() -> Actor:
    return Actor(user_id="shelter-1", role="shelter")


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id="admin-1", role="admin")


@pytest.fixture
def mock_es_client() -> MagicMock:
    """Create a mock Elasticsearch client."""
    mock = MagicMock()
    mock.ping.return_value = True
    mock.indices.exists.return_value = False
    mock.indices.create.return_value = {"acknowledged": True}
    return mock
