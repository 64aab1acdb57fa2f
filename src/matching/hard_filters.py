"""Deterministic accept/reject rules applied before any scoring call.

Rules are checked in a fixed order and the first match wins, so a pair
that trips several rules always reports the same reason. The reason
strings are shown to adopters ("why not a match") and must only change
together with the UI that displays them.
"""

from __future__ import annotations

from dataclasses import dataclass

from src.data.schemas import AdopterProfile, PetCandidate

REASON_CATS = "Hard constraint mismatch: adopter has cats, pet is not cat-friendly"
REASON_YARD = "Hard constraint mismatch: apartment home but pet requires yard"
REASON_TIME = "Hard constraint mismatch: low time availability vs high-care pet"
REASON_KIDS = "Hard constraint mismatch: kids at home but pet not suitable with kids"

LOW_TIME_TIERS = frozenset({"low", "minimal"})
HIGH_ENERGY_LEVELS = frozenset({"high", "very-high"})


@dataclass(frozen=True)
class FilterDecision:
    reject: bool
    reason: str | None = None


ACCEPT = FilterDecision(reject=False)


def _norm(value: str | None) -> str:
    return (value or "").strip().lower()


def _cats_conflict(adopter: AdopterProfile, pet: PetCandidate) -> bool:
    pet_cat_friendly = _norm(pet.species) == "cat" or pet.cat_friendly is True
    return bool(adopter.has_cats) and not pet_cat_friendly


def _yard_conflict(adopter: AdopterProfile, pet: PetCandidate) -> bool:
    return _norm(adopter.living_space) == "apartment" and _norm(pet.living_space) == "house-with-yard"


def _time_conflict(adopter: AdopterProfile, pet: PetCandidate) -> bool:
    pet_high_care = (
        _norm(pet.special_care) not in ("", "none")
        or _norm(pet.energy_level) in HIGH_ENERGY_LEVELS
    )
    return _norm(adopter.time_available) in LOW_TIME_TIERS and pet_high_care


def _kids_conflict(adopter: AdopterProfile, pet: PetCandidate) -> bool:
    kids_present = _norm(adopter.kids) not in ("", "none")
    pet_good_with_kids = _norm(pet.kids) not in ("", "none")
    return kids_present and not pet_good_with_kids


_RULES = (
    (_cats_conflict, REASON_CATS),
    (_yard_conflict, REASON_YARD),
    (_time_conflict, REASON_TIME),
    (_kids_conflict, REASON_KIDS),
)


class HardFilterEngine:
    """Side-effect-free pre-filter over adopter/pet pairs."""

    def evaluate(self, adopter: AdopterProfile, pet: PetCandidate) -> FilterDecision:
        for rule, reason in _RULES:
            if rule(adopter, pet):
                return FilterDecision(reject=True, reason=reason)
        return ACCEPT
