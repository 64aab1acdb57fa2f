"""Adopter/pet compatibility scoring over an OpenAI-compatible endpoint.

One structured-output chat completion per pair. The service is asked for
a fixed JSON shape, but its answer is re-validated here: the score is
clamped to [0, 100] and an unknown label becomes CONDITIONAL. Transport
errors, timeouts and malformed answers all come back as ``None``.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from typing import Any

import openai
from openai import OpenAI

from src.data.schemas import (
    MATCH_LABELS,
    MAX_INTERESTS_CHARS,
    SCORE_SCHEMA_VERSION,
    ActiveSettings,
    AdopterProfile,
    CompatibilityScore,
    ConnectionTestResult,
    PetCandidate,
    label_for_score,
)
from src.events.audit import AuditLog
from src.matching.settings import SettingsResolver

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_CHARS = 300

MATCHMAKING_RESPONSE_FORMAT = {
    "type": "json_schema",
    "json_schema": {
        "name": "matchmaking_result",
        "strict": True,
        "schema": {
            "type": "object",
            "properties": {
                "score": {"type": "integer", "description": "Compatibility score 0-100"},
                "label": {"type": "string", "enum": list(MATCH_LABELS)},
                "reasons": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Brief compatibility reasons",
                },
                "risks": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Potential risks or concerns",
                },
                "missing_info": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Missing information that would help",
                },
                "version": {"type": "string", "description": "Schema version e.g. 1.0"},
            },
            "required": ["score", "label", "reasons", "risks", "missing_info", "version"],
            "additionalProperties": False,
        },
    },
}

SCORING_PROMPT = """You are a pet adoption compatibility scorer. Score 0-100 with strict rules:
- SUITABLE: strong match (score >= 70). CONDITIONAL: possible with caveats (40-69). NOT_SUITABLE: poor match (0-39).
- Be consistent: same inputs should yield the same score. Prefer round numbers (e.g. 75, 50, 25).
- reasons: 2-4 short bullet points. risks: list any concerns. missing_info: what we don't know.
- If the adopter provided additional_interests (free text), match their stated interests, breed or trait preferences and concerns against the pet's breed, description and profile, and factor this into the score and reasons.

Adopter: {adopter}
Pet: {pet}

Return JSON only."""

TEST_PROMPT = 'Reply with exactly: {"ok":true,"service":"scoring"}'


class MalformedScoreError(ValueError):
    """The scoring service answered, but not with a usable score."""


def build_payload(
    profile: AdopterProfile, pet: PetCandidate
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Reduce adopter and pet to the fields the scorer needs.

    Free text is capped (500 chars of interests, 300 of description) and
    identifiers, contact details and shelter data are never included.
    """
    adopter = {
        "living_space": profile.living_space,
        "energy_level": profile.energy_level,
        "experience": profile.experience,
        "kids": profile.kids,
        "special_care": profile.special_care,
        "has_cats": profile.has_cats,
        "time_available": profile.time_available,
        "preferred_species": profile.preferred_species,
        "preferred_size": profile.preferred_size,
    }
    interests = (profile.additional_interests or "").strip()
    if interests:
        adopter["additional_interests"] = interests[:MAX_INTERESTS_CHARS]

    pet_payload = {
        "name": pet.name,
        "species": pet.species,
        "breed": pet.breed,
        "age": pet.age,
        "living_space": pet.living_space,
        "energy_level": pet.energy_level,
        "experience": pet.experience,
        "kids": pet.kids,
        "special_care": pet.special_care,
        "size": pet.size,
        "description": (pet.description or "")[:MAX_DESCRIPTION_CHARS],
    }
    return adopter, pet_payload


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None]


def parse_score(content: str | None) -> CompatibilityScore:
    """Validate a raw structured answer into a :class:`CompatibilityScore`.

    Raises:
        MalformedScoreError: If the content is not a JSON object with a numeric score.
    """
    try:
        data = json.loads(content or "")
    except json.JSONDecodeError as exc:
        raise MalformedScoreError(f"response is not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedScoreError("response is not a JSON object")

    raw_score = data.get("score")
    if isinstance(raw_score, bool):
        raise MalformedScoreError("score is not numeric")
    try:
        score = round(float(raw_score))
    except (TypeError, ValueError, OverflowError) as exc:
        raise MalformedScoreError("score is not numeric") from exc
    score = min(100, max(0, score))

    label = data.get("label")
    if label not in MATCH_LABELS:
        label = "CONDITIONAL"
    elif label != label_for_score(score):
        # Buckets are fixed; the number wins over a disagreeing label.
        label = label_for_score(score)

    return CompatibilityScore(
        score=score,
        label=label,
        reasons=_string_list(data.get("reasons")),
        risks=_string_list(data.get("risks")),
        missing_info=_string_list(data.get("missing_info")),
        version=str(data.get("version") or SCORE_SCHEMA_VERSION),
    )


def _default_client_factory(settings: ActiveSettings, timeout: float) -> OpenAI:
    kwargs: dict[str, Any] = {
        "api_key": settings.api_key,
        "timeout": timeout,
        "max_retries": 0,
    }
    if settings.base_url:
        kwargs["base_url"] = settings.base_url
    return OpenAI(**kwargs)


class ScoringClient:
    """Issue compatibility-scoring calls with the currently active settings.

    Args:
        resolver: Source of decrypted settings.
        timeout: Per-call timeout in seconds; a timeout counts as failure.
        client_factory: Builds an SDK client from settings and timeout.
        audit: Optional sink for one failed ``matchmaking`` event per failed call.
    """

    def __init__(
        self,
        resolver: SettingsResolver,
        timeout: float = 20.0,
        client_factory: Callable[[ActiveSettings, float], OpenAI] = _default_client_factory,
        audit: AuditLog | None = None,
    ) -> None:
        self.resolver = resolver
        self.timeout = timeout
        self.client_factory = client_factory
        self.audit = audit

    def _record_failure(self, latency_ms: int, error: str) -> None:
        if self.audit is not None:
            self.audit.record(
                "matchmaking", "fail", latency_ms=latency_ms,
                message=f"Scoring call failed: {error}",
            )

    def score(
        self,
        adopter_payload: dict[str, Any],
        pet_payload: dict[str, Any],
        settings: ActiveSettings | None = None,
    ) -> CompatibilityScore | None:
        """Score one adopter/pet pair, or return None on any failure."""
        settings = settings or self.resolver.get_active_settings()
        if settings is None:
            return None

        prompt = SCORING_PROMPT.format(
            adopter=json.dumps(adopter_payload), pet=json.dumps(pet_payload)
        )
        start = time.monotonic()
        try:
            client = self.client_factory(settings, self.timeout)
            completion = client.chat.completions.create(
                model=settings.model,
                max_tokens=settings.max_tokens,
                temperature=settings.temperature,
                messages=[{"role": "user", "content": prompt}],
                response_format=MATCHMAKING_RESPONSE_FORMAT,
            )
            result = parse_score(completion.choices[0].message.content)
        except openai.OpenAIError as exc:
            latency_ms = int((time.monotonic() - start) * 1000)
            logger.warning(
                "Scoring call failed after %dms: %s", latency_ms, type(exc).__name__
            )
            self._record_failure(latency_ms, type(exc).__name__)
            return None
        except (MalformedScoreError, IndexError, AttributeError) as exc:
            latency_ms = int((time.monotonic() - start) * 1000)
            logger.warning("Scoring response malformed after %dms: %s", latency_ms, exc)
            self._record_failure(latency_ms, "Malformed scoring response")
            return None

        latency_ms = int((time.monotonic() - start) * 1000)
        logger.info("Scoring call succeeded in %dms (model=%s)", latency_ms, settings.model)
        return result

    def test_connection(self) -> ConnectionTestResult:
        """Run a minimal request to check the configured credential and model."""
        settings = self.resolver.get_active_settings()
        if settings is None:
            return ConnectionTestResult(
                success=False, error="Scoring service is not configured or disabled"
            )

        start = time.monotonic()
        try:
            client = self.client_factory(settings, self.timeout)
            completion = client.chat.completions.create(
                model=settings.model,
                max_tokens=min(settings.max_tokens, 100),
                temperature=settings.temperature,
                messages=[{"role": "user", "content": TEST_PROMPT}],
            )
        except openai.OpenAIError as exc:
            return ConnectionTestResult(
                success=False,
                latency_ms=int((time.monotonic() - start) * 1000),
                model=settings.model,
                error=type(exc).__name__,
            )

        latency_ms = int((time.monotonic() - start) * 1000)
        content = ""
        if completion.choices:
            content = completion.choices[0].message.content or ""
        try:
            sample_output = json.dumps(json.loads(content))
        except json.JSONDecodeError:
            sample_output = content
        return ConnectionTestResult(
            success=True,
            latency_ms=latency_ms,
            model=getattr(completion, "model", None) or settings.model,
            sample_output=sample_output,
        )
