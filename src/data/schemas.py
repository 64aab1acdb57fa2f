"""Pydantic models for data validation and serialization."""

from __future__ import annotations

import hashlib
import json
from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

MatchLabel = Literal["SUITABLE", "CONDITIONAL", "NOT_SUITABLE"]
MATCH_LABELS: tuple[str, ...] = ("SUITABLE", "CONDITIONAL", "NOT_SUITABLE")

SUITABLE_THRESHOLD = 70
CONDITIONAL_THRESHOLD = 40

SCORE_SCHEMA_VERSION = "1.0"
MAX_INTERESTS_CHARS = 500
MAX_AI_REASONS = 20


def label_for_score(score: int) -> str:
    """Bucket a 0-100 score into its fixed label."""
    if score >= SUITABLE_THRESHOLD:
        return "SUITABLE"
    if score >= CONDITIONAL_THRESHOLD:
        return "CONDITIONAL"
    return "NOT_SUITABLE"


class AdopterProfile(BaseModel):
    """Questionnaire answers describing an adopter's household.

    Never persisted; used as scoring input and, through its fingerprint,
    as a cache-key component. Accepts camelCase keys from the UI and the
    legacy ``home_type`` / ``time_available`` spellings.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    living_space: str | None = Field(
        default=None,
        validation_alias=AliasChoices("livingSpace", "living_space", "home_type"),
    )
    energy_level: str | None = None
    experience: str | None = None
    kids: str | None = None
    special_care: str | None = None
    has_cats: bool | None = None
    time_available: str | None = Field(
        default=None,
        validation_alias=AliasChoices("timeAvailable", "time_available"),
    )
    preferred_species: str | None = None
    preferred_size: str | None = None
    additional_interests: str | None = None

    @field_validator("additional_interests")
    @classmethod
    def _bound_interests(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value[:MAX_INTERESTS_CHARS] or None

    def is_empty(self) -> bool:
        """Return True when no field carries a value."""
        return not self.model_dump(exclude_none=True)

    def fingerprint(self) -> str:
        """Stable hash of the canonical serialization.

        Any edit to any answer yields a different value.
        """
        canonical = json.dumps(
            self.model_dump(mode="json", exclude_none=True),
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


class PetSummary(BaseModel):
    """Short pet card returned alongside each recommendation."""

    id: str
    name: str
    species: str
    breed: str
    image: str | None = None
    age: float | None = None


class PetCandidate(BaseModel):
    """Pet as read from the shelter-owned pet directory."""

    pet_id: str = Field(description="Unique pet identifier")
    shelter_id: str = Field(default="", description="Owning shelter")
    name: str = Field(default="Unknown")
    species: str = Field(description="'dog' or 'cat'")
    breed: str = Field(default="Mixed")
    age: float | None = Field(default=None, description="Age in years")
    living_space: str = Field(
        default="house", description="'apartment', 'house' or 'house-with-yard'"
    )
    energy_level: str = Field(default="medium")
    experience: str = Field(default="some")
    kids: str = Field(default="none", description="'none', 'young', 'older' or 'any'")
    special_care: str = Field(default="none")
    size: str = Field(default="medium")
    description: str = Field(default="")
    cat_friendly: bool | None = Field(
        default=None, description="Dogs only; cats are always cat-friendly"
    )
    image: str | None = None
    archived: bool = False
    available: bool = True

    def summary(self) -> PetSummary:
        return PetSummary(
            id=self.pet_id,
            name=self.name,
            species=self.species,
            breed=self.breed,
            image=self.image or None,
            age=self.age,
        )


class CompatibilityScore(BaseModel):
    """Validated output of one external scoring call."""

    score: int = Field(ge=0, le=100)
    label: MatchLabel
    reasons: list[str] = Field(default_factory=list)
    risks: list[str] = Field(default_factory=list)
    missing_info: list[str] = Field(default_factory=list)
    version: str = SCORE_SCHEMA_VERSION


class ScoreRecord(CompatibilityScore):
    """Cached score for one (adopter, pet, profile fingerprint) key."""

    adopter_id: str | None = None
    pet_id: str
    profile_hash: str
    created_at: datetime
    expires_at: datetime | None = None

    @property
    def cache_key(self) -> str:
        return f"{self.adopter_id}:{self.pet_id}:{self.profile_hash}"


class Recommendation(BaseModel):
    """One ranked entry in a recommendation response."""

    pet_id: str
    pet: PetSummary
    score: int
    label: MatchLabel
    reasons: list[str] = Field(default_factory=list)
    risks: list[str] = Field(default_factory=list)
    missing_info: list[str] = Field(default_factory=list)
    version: str = SCORE_SCHEMA_VERSION


class RecommendRequest(BaseModel):
    """Body of the recommend endpoint."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    adopter_profile: dict | None = None
    adopter_id: str | None = None


class RecommendationResponse(BaseModel):
    """Full ranked list returned to the UI."""

    recommendations: list[Recommendation] = Field(default_factory=list)
    count: int = 0


# ---------------------------------------------------------------------------
# Scoring settings
# ---------------------------------------------------------------------------

class ScoringSettings(BaseModel):
    """Stored form of the single global scoring settings document."""

    model: str | None = None
    base_url: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    enabled: bool = False
    api_key_encrypted: str | None = None
    updated_by: str | None = None
    updated_at: datetime | None = None


class ActiveSettings(BaseModel):
    """Decrypted settings handed to the scoring client. Never serialized."""

    api_key: str = Field(repr=False, exclude=True)
    model: str
    base_url: str | None = None
    max_tokens: int
    temperature: float


class SettingsView(BaseModel):
    """Admin-facing projection: no credential, only whether one is stored."""

    model: str
    base_url: str | None = None
    max_tokens: int
    temperature: float
    enabled: bool
    has_api_key: bool


class SettingsUpdate(BaseModel):
    """Partial settings update. Unset fields keep their stored value."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    model: str | None = None
    base_url: str | None = Field(
        default=None, validation_alias=AliasChoices("baseURL", "baseUrl", "base_url")
    )
    max_tokens: int | None = Field(default=None, ge=1, le=128000)
    temperature: float | None = Field(default=None, ge=0, le=2)
    enabled: bool | None = None
    api_key: str | None = Field(default=None, repr=False)


class ConnectionTestResult(BaseModel):
    """Outcome of a minimal round trip to the scoring service."""

    success: bool
    latency_ms: int | None = None
    model: str | None = None
    sample_output: str | None = None
    error: str | None = None


# ---------------------------------------------------------------------------
# Adoption requests
# ---------------------------------------------------------------------------

class AdoptionStatus(str, Enum):
    NEW = "New"
    UNDER_REVIEW = "Under Review"
    INTERVIEW_SCHEDULED = "Interview Scheduled"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"


class Actor(BaseModel):
    """Authenticated caller as supplied by the identity layer."""

    user_id: str
    role: Literal["adopter", "shelter", "admin"]


class AdopterContact(BaseModel):
    """Contact snapshot copied onto a request at submission time."""

    name: str
    email: str
    address: str = ""


class AdoptionRequestCreate(BaseModel):
    """Body of the create-request endpoint."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    pet_id: str
    message: str | None = None
    compatibility_score: float | str | None = None
    ai_reasons: list | None = None
    adopter_name: str | None = None
    adopter_email: str | None = None
    adopter_address: str = ""


class StatusUpdate(BaseModel):
    status: str


class AdoptionRequest(BaseModel):
    """Stored adoption request."""

    request_id: str
    adopter_id: str
    adopter_name: str
    adopter_email: str
    adopter_address: str = ""
    pet_id: str
    pet_name: str
    shelter_id: str
    status: AdoptionStatus = AdoptionStatus.NEW
    compatibility_score: int | None = Field(default=None, ge=0, le=100)
    ai_reasons: list[str] = Field(default_factory=list)
    message: str = ""
    escalated: bool = False
    escalated_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Audit events
# ---------------------------------------------------------------------------

class IntegrationEvent(BaseModel):
    """Audit record for scoring and settings activity. Never holds secrets."""

    type: Literal["scoring_test", "matchmaking", "settings_updated"]
    outcome: Literal["success", "fail"]
    latency_ms: int | None = None
    actor: str | None = None
    message: str | None = None
    created_at: datetime
