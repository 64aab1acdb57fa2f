"""Rank every eligible pet for one adopter profile.

Per pet: hard filters, then the score cache, then the external scorer.
Whatever happens to one pet, every other pet still gets an entry, and a
scoring outage only turns entries into neutral CONDITIONAL fallbacks.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor

from elasticsearch import ApiError, TransportError

from src.data.schemas import (
    ActiveSettings,
    AdopterProfile,
    PetCandidate,
    Recommendation,
)
from src.errors import InvalidProfileError
from src.events.audit import AuditLog
from src.matching.hard_filters import HardFilterEngine
from src.matching.score_cache import ScoreCache
from src.matching.scoring_client import ScoringClient, build_payload
from src.matching.settings import SettingsResolver
from src.storage.pets import PetDirectory

logger = logging.getLogger(__name__)

FALLBACK_SCORE = 50
NOT_CONFIGURED_REASON = "scoring service not configured; manual review recommended"
UNAVAILABLE_REASON = "scoring unavailable; manual review recommended"


class _SettingsOnce:
    """Resolve settings at most once per recommendation run, on first need."""

    def __init__(self, resolver: SettingsResolver) -> None:
        self._resolver = resolver
        self._lock = threading.Lock()
        self._resolved = False
        self._value: ActiveSettings | None = None

    def get(self) -> ActiveSettings | None:
        with self._lock:
            if not self._resolved:
                self._value = self._resolver.get_active_settings()
                self._resolved = True
            return self._value


def _fallback(pet: PetCandidate, reason: str) -> Recommendation:
    return Recommendation(
        pet_id=pet.pet_id,
        pet=pet.summary(),
        score=FALLBACK_SCORE,
        label="CONDITIONAL",
        reasons=[reason],
    )


class RecommendationOrchestrator:
    """Build ranked recommendations for an adopter.

    Args:
        pets: Directory of adoptable pets.
        hard_filters: Deterministic pre-filter.
        cache: Score cache (skipped for anonymous callers).
        resolver: Scoring settings resolver.
        client: External scoring client.
        audit: Optional sink for one ``matchmaking`` event per run.
        max_workers: Pets scored concurrently.
    """

    def __init__(
        self,
        pets: PetDirectory,
        hard_filters: HardFilterEngine,
        cache: ScoreCache,
        resolver: SettingsResolver,
        client: ScoringClient,
        audit: AuditLog | None = None,
        max_workers: int = 4,
    ) -> None:
        self.pets = pets
        self.hard_filters = hard_filters
        self.cache = cache
        self.resolver = resolver
        self.client = client
        self.audit = audit
        self.max_workers = max(1, max_workers)

    def recommend(
        self,
        profile: AdopterProfile,
        adopter_id: str | None = None,
        actor_id: str | None = None,
    ) -> list[Recommendation]:
        """Score every eligible pet and return them best first.

        Ties keep the directory's order.

        Raises:
            InvalidProfileError: If the profile carries no answers.
        """
        if profile is None or profile.is_empty():
            raise InvalidProfileError("adopterProfile (object) is required")

        start = time.monotonic()
        candidates = self.pets.list_available()
        fingerprint = profile.fingerprint()
        settings = _SettingsOnce(self.resolver)

        def _run(pet: PetCandidate) -> Recommendation:
            try:
                return self._recommend_one(profile, adopter_id, fingerprint, pet, settings)
            except Exception:
                logger.exception("Scoring pipeline failed for pet %s", pet.pet_id)
                return _fallback(pet, UNAVAILABLE_REASON)

        if self.max_workers == 1 or len(candidates) <= 1:
            results = [_run(pet) for pet in candidates]
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                results = list(pool.map(_run, candidates))

        results.sort(key=lambda r: r.score, reverse=True)

        latency_ms = int((time.monotonic() - start) * 1000)
        unavailable = sum(1 for r in results if r.reasons == [UNAVAILABLE_REASON])
        logger.info(
            "Ranked %d pets in %dms (%d scoring failure(s))",
            len(results), latency_ms, unavailable,
        )
        if self.audit is not None:
            self.audit.record(
                "matchmaking", "fail" if unavailable else "success",
                latency_ms=latency_ms, actor=actor_id,
                message=f"{len(results)} pets ranked, {unavailable} scoring failure(s)",
            )
        return results

    def _recommend_one(
        self,
        profile: AdopterProfile,
        adopter_id: str | None,
        fingerprint: str,
        pet: PetCandidate,
        settings: _SettingsOnce,
    ) -> Recommendation:
        decision = self.hard_filters.evaluate(profile, pet)
        if decision.reject:
            return Recommendation(
                pet_id=pet.pet_id,
                pet=pet.summary(),
                score=0,
                label="NOT_SUITABLE",
                reasons=[decision.reason],
            )

        cached = self.cache.get(adopter_id, pet.pet_id, fingerprint)
        if cached is not None:
            return Recommendation(
                pet_id=pet.pet_id,
                pet=pet.summary(),
                **cached.model_dump(
                    include={"score", "label", "reasons", "risks", "missing_info", "version"}
                ),
            )

        active = settings.get()
        if active is None:
            return _fallback(pet, NOT_CONFIGURED_REASON)

        adopter_payload, pet_payload = build_payload(profile, pet)
        scored = self.client.score(adopter_payload, pet_payload, settings=active)
        if scored is None:
            return _fallback(pet, UNAVAILABLE_REASON)

        if adopter_id:
            record = self.cache.new_record(adopter_id, pet.pet_id, fingerprint, scored)
            try:
                self.cache.put(record)
            except (ApiError, TransportError) as exc:
                logger.warning("Could not cache score %s: %s", record.cache_key, exc)

        return Recommendation(pet_id=pet.pet_id, pet=pet.summary(), **scored.model_dump())
