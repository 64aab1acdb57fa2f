"""Tests for src/adoption/lifecycle.py."""

from __future__ import annotations

import threading

import pytest
from elasticsearch import ConnectionError as ESConnectionError

from src.adoption.lifecycle import (
    AdoptionRequestLifecycle,
    normalize_reasons,
    normalize_score,
    parse_status,
)
from src.data.schemas import Actor, AdopterContact, AdoptionStatus, PetCandidate
from src.errors import (
    AdoptionError,
    ApprovalConflictError,
    ConcurrentUpdateError,
    DuplicateRequestError,
    InvalidStatusError,
    InvalidTransitionError,
    PermissionDeniedError,
    PetUnavailableError,
    RequestNotFoundError,
)


@pytest.fixture
def lifecycle(fake_es, pet_directory, notifier, config, clock) -> AdoptionRequestLifecycle:
    return AdoptionRequestLifecycle(fake_es, pet_directory, notifier, config, clock=clock)


@pytest.fixture
def pet(seed_pets, calm_cat: PetCandidate) -> PetCandidate:
    seed_pets(calm_cat)
    return calm_cat


def _adopter(n: int) -> Actor:
    return Actor(user_id=f"adopter-{n}", role="adopter")


def _contact(n: int = 1) -> AdopterContact:
    return AdopterContact(name=f"Adopter {n}", email=f"Adopter{n}@Example.com ")


@pytest.fixture
def file_request(lifecycle, pet, clock):
    """File a request for the seeded pet as adopter *n*."""

    def _file(n: int = 1, **kwargs):
        clock.advance(seconds=1)
        return lifecycle.create_request(_adopter(n), _contact(n), pet.pet_id, **kwargs)

    return _file


class TestHelpers:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("Requested", AdoptionStatus.NEW), ("Under Review", AdoptionStatus.UNDER_REVIEW),
         (AdoptionStatus.APPROVED, AdoptionStatus.APPROVED)],
    )
    def test_parse_status(self, raw, expected) -> None:
        assert parse_status(raw) is expected

    @pytest.mark.parametrize("raw", ["Adopted", "", None, "approved"])
    def test_parse_status_rejects_unknown(self, raw) -> None:
        with pytest.raises(InvalidStatusError):
            parse_status(raw)

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [(82, 82), ("64.6", 65), (0, 0), (100, 100), (101, None), (-1, None),
         ("abc", None), (None, None), (True, None), (float("nan"), None)],
    )
    def test_normalize_score(self, raw, expected) -> None:
        assert normalize_score(raw) == expected

    def test_normalize_reasons(self) -> None:
        assert normalize_reasons(["a", 3, None, "b"]) == ["a", "b"]
        assert normalize_reasons("not a list") == []
        assert len(normalize_reasons(["r"] * 50)) == 20


class TestCreateRequest:
    def test_creates_new_request(self, file_request, signals, fake_es) -> None:
        request = file_request(message="  We love cats  ", compatibility_score="82",
                               ai_reasons=["Quiet home"])
        assert request.status is AdoptionStatus.NEW
        assert request.adopter_email == "adopter1@example.com"
        assert request.pet_name == "Luna"
        assert request.shelter_id == "shelter-1"
        assert request.compatibility_score == 82
        assert request.ai_reasons == ["Quiet home"]
        assert request.message == "We love cats"
        assert fake_es.source("adoption_requests", request.request_id)["status"] == "New"
        assert signals[-1].shelter_id == "shelter-1"

    def test_invalid_score_dropped(self, file_request) -> None:
        assert file_request(compatibility_score=250).compatibility_score is None

    def test_only_adopters(self, lifecycle, pet, shelter) -> None:
        with pytest.raises(PermissionDeniedError):
            lifecycle.create_request(shelter, _contact(), pet.pet_id)

    def test_blank_pet_id(self, lifecycle, adopter) -> None:
        with pytest.raises(ValueError):
            lifecycle.create_request(adopter, _contact(), "  ")

    def test_unknown_pet(self, lifecycle, adopter) -> None:
        with pytest.raises(PetUnavailableError, match="not found"):
            lifecycle.create_request(adopter, _contact(), "ghost")

    def test_archived_pet(self, lifecycle, seed_pets, calm_cat, adopter) -> None:
        seed_pets(calm_cat.model_copy(update={"archived": True}))
        with pytest.raises(PetUnavailableError, match="not found"):
            lifecycle.create_request(adopter, _contact(), calm_cat.pet_id)

    def test_unavailable_pet(self, lifecycle, seed_pets, calm_cat, adopter) -> None:
        seed_pets(calm_cat.model_copy(update={"available": False}))
        with pytest.raises(PetUnavailableError, match="not available"):
            lifecycle.create_request(adopter, _contact(), calm_cat.pet_id)

    def test_duplicate_active_request(self, file_request, fake_es) -> None:
        file_request(1)
        with pytest.raises(DuplicateRequestError):
            file_request(1)
        assert fake_es.count("adoption_requests") == 1

    def test_concurrent_duplicates_file_once(self, lifecycle, pet, fake_es) -> None:
        errors: list[Exception] = []
        barrier = threading.Barrier(4)

        def _apply() -> None:
            barrier.wait()
            try:
                lifecycle.create_request(_adopter(1), _contact(1), pet.pet_id)
            except DuplicateRequestError as exc:
                errors.append(exc)

        threads = [threading.Thread(target=_apply) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert fake_es.count("adoption_requests") == 1
        assert len(errors) == 3

    def test_reapply_after_rejection(self, lifecycle, file_request, shelter) -> None:
        first = file_request(1)
        lifecycle.set_status(first.request_id, "Rejected", shelter)
        second = file_request(1)
        assert second.request_id != first.request_id

    def test_cannot_apply_once_approved(self, lifecycle, file_request, shelter) -> None:
        lifecycle.set_status(file_request(1).request_id, "Approved", shelter)
        with pytest.raises(PetUnavailableError, match="approved adopter"):
            file_request(2)


class TestSetStatus:
    def test_shelter_moves_through_review(self, lifecycle, file_request, shelter, signals):
        request = file_request()
        updated = lifecycle.set_status(request.request_id, "Under Review", shelter)
        assert updated.status is AdoptionStatus.UNDER_REVIEW
        updated = lifecycle.set_status(request.request_id, "Interview Scheduled", shelter)
        assert updated.status is AdoptionStatus.INTERVIEW_SCHEDULED
        assert lifecycle.get(request.request_id).status is AdoptionStatus.INTERVIEW_SCHEDULED
        assert len(signals) == 3

    def test_same_status_refused(self, lifecycle, file_request, shelter) -> None:
        request = file_request()
        lifecycle.set_status(request.request_id, "Under Review", shelter)
        with pytest.raises(InvalidTransitionError, match="already"):
            lifecycle.set_status(request.request_id, "Under Review", shelter)

    def test_terminal_states_are_final(self, lifecycle, file_request, shelter) -> None:
        request = file_request()
        lifecycle.set_status(request.request_id, "Rejected", shelter)
        with pytest.raises(InvalidTransitionError):
            lifecycle.set_status(request.request_id, "Under Review", shelter)

    def test_cannot_go_back_to_new(self, lifecycle, file_request, shelter) -> None:
        request = file_request()
        lifecycle.set_status(request.request_id, "Under Review", shelter)
        with pytest.raises(InvalidTransitionError):
            lifecycle.set_status(request.request_id, "Requested", shelter)

    def test_unknown_status(self, lifecycle, file_request, shelter) -> None:
        with pytest.raises(InvalidStatusError):
            lifecycle.set_status(file_request().request_id, "Adopted", shelter)

    def test_unknown_request(self, lifecycle, shelter) -> None:
        with pytest.raises(RequestNotFoundError):
            lifecycle.set_status("missing", "Rejected", shelter)

    def test_adopter_may_cancel_own(self, lifecycle, file_request) -> None:
        request = file_request(1)
        updated = lifecycle.set_status(request.request_id, "Cancelled", _adopter(1))
        assert updated.status is AdoptionStatus.CANCELLED

    def test_adopter_cannot_cancel_others(self, lifecycle, file_request) -> None:
        request = file_request(1)
        with pytest.raises(PermissionDeniedError):
            lifecycle.set_status(request.request_id, "Cancelled", _adopter(2))

    def test_adopter_cannot_approve(self, lifecycle, file_request) -> None:
        request = file_request(1)
        with pytest.raises(PermissionDeniedError):
            lifecycle.set_status(request.request_id, "Approved", _adopter(1))

    def test_shelter_cannot_cancel(self, lifecycle, file_request, shelter) -> None:
        with pytest.raises(PermissionDeniedError):
            lifecycle.set_status(file_request().request_id, "Cancelled", shelter)

    def test_other_shelter_denied(self, lifecycle, file_request) -> None:
        other = Actor(user_id="shelter-2", role="shelter")
        with pytest.raises(PermissionDeniedError):
            lifecycle.set_status(file_request().request_id, "Under Review", other)

    def test_admin_may_review_any(self, lifecycle, file_request, admin) -> None:
        updated = lifecycle.set_status(file_request().request_id, "Under Review", admin)
        assert updated.status is AdoptionStatus.UNDER_REVIEW


class TestApproval:
    def test_approval_cascades(self, lifecycle, file_request, shelter, pet, signals) -> None:
        a, b, c = file_request(1), file_request(2), file_request(3)
        lifecycle.set_status(c.request_id, "Cancelled", _adopter(3))

        approved = lifecycle.set_status(a.request_id, "Approved", shelter)
        assert approved.status is AdoptionStatus.APPROVED
        assert lifecycle.approved_request_id(pet.pet_id) == a.request_id
        assert lifecycle.get(b.request_id).status is AdoptionStatus.REJECTED
        assert lifecycle.get(c.request_id).status is AdoptionStatus.REJECTED
        assert {s.request_id for s in signals} >= {a.request_id, b.request_id, c.request_id}

    def test_second_approval_conflicts(self, lifecycle, file_request, shelter, fake_es) -> None:
        a, b = file_request(1), file_request(2)
        lifecycle.set_status(a.request_id, "Approved", shelter)
        writes_before = fake_es.writes("adoption_requests")
        # b was cascaded to Rejected, so approving it is an invalid transition.
        with pytest.raises(InvalidTransitionError):
            lifecycle.set_status(b.request_id, "Approved", shelter)
        assert fake_es.writes("adoption_requests") == writes_before

    def test_slot_held_by_other_request(self, lifecycle, file_request, shelter, fake_es, pet):
        a, b = file_request(1), file_request(2)
        fake_es.put("pet_approvals", pet.pet_id, {"pet_id": pet.pet_id, "request_id": a.request_id})
        with pytest.raises(ApprovalConflictError):
            lifecycle.set_status(b.request_id, "Approved", shelter)
        assert lifecycle.get(b.request_id).status is AdoptionStatus.NEW

    def test_duplicate_approval_refused(self, lifecycle, file_request, shelter, signals) -> None:
        a = file_request(1)
        lifecycle.set_status(a.request_id, "Approved", shelter)
        seen = len(signals)
        with pytest.raises(InvalidTransitionError):
            lifecycle.set_status(a.request_id, "Approved", shelter)
        assert len(signals) == seen

    def test_interrupted_approval_resumes(self, lifecycle, file_request, shelter, fake_es, pet):
        a, b = file_request(1), file_request(2)
        fake_es.put("pet_approvals", pet.pet_id, {"pet_id": pet.pet_id, "request_id": a.request_id})
        approved = lifecycle.set_status(a.request_id, "Approved", shelter)
        assert approved.status is AdoptionStatus.APPROVED
        assert lifecycle.get(b.request_id).status is AdoptionStatus.REJECTED

    def test_failed_approval_write_frees_slot(
        self, lifecycle, file_request, shelter, fake_es, pet, monkeypatch
    ) -> None:
        """A store error while writing Approved leaves the pet open to other approvals."""
        a, b = file_request(1), file_request(2)
        real_index = fake_es.index

        def _flaky_index(index, document, **kwargs):
            if index == "adoption_requests" and document.get("status") == "Approved":
                raise ESConnectionError("connection refused")
            return real_index(index, document, **kwargs)

        monkeypatch.setattr(fake_es, "index", _flaky_index)
        with pytest.raises(ESConnectionError):
            lifecycle.set_status(a.request_id, "Approved", shelter)
        assert lifecycle.get(a.request_id).status is AdoptionStatus.NEW
        assert lifecycle.approved_request_id(pet.pet_id) is None

        monkeypatch.setattr(fake_es, "index", real_index)
        approved = lifecycle.set_status(b.request_id, "Approved", shelter)
        assert approved.status is AdoptionStatus.APPROVED
        assert lifecycle.approved_request_id(pet.pet_id) == b.request_id

    def test_rejecting_slot_holder_frees_slot(
        self, lifecycle, file_request, shelter, fake_es, pet
    ) -> None:
        a, b = file_request(1), file_request(2)
        fake_es.put("pet_approvals", pet.pet_id, {"pet_id": pet.pet_id, "request_id": a.request_id})
        lifecycle.set_status(a.request_id, "Rejected", shelter)
        assert lifecycle.approved_request_id(pet.pet_id) is None

        approved = lifecycle.set_status(b.request_id, "Approved", shelter)
        assert approved.status is AdoptionStatus.APPROVED

    def test_concurrent_approvals_single_winner(self, lifecycle, pet, shelter) -> None:
        requests = [
            lifecycle.create_request(_adopter(n), _contact(n), pet.pet_id) for n in range(1, 6)
        ]
        outcomes: list[object] = []
        barrier = threading.Barrier(len(requests))

        def _approve(request_id: str) -> None:
            barrier.wait()
            try:
                outcomes.append(lifecycle.set_status(request_id, "Approved", shelter))
            except AdoptionError as exc:
                outcomes.append(exc)

        threads = [threading.Thread(target=_approve, args=(r.request_id,)) for r in requests]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        winners = [o for o in outcomes if not isinstance(o, Exception)]
        assert len(winners) == 1
        assert all(
            isinstance(o, (ApprovalConflictError, InvalidTransitionError, ConcurrentUpdateError))
            for o in outcomes if isinstance(o, Exception)
        )
        statuses = [r.status for r in lifecycle.list_for_pet(pet.pet_id)]
        assert statuses.count(AdoptionStatus.APPROVED) == 1
        assert statuses.count(AdoptionStatus.REJECTED) == 4
        assert lifecycle.approved_request_id(pet.pet_id) == winners[0].request_id


class TestEscalateAndReads:
    def test_escalate_admin_only(self, lifecycle, file_request, admin, shelter) -> None:
        request = file_request()
        with pytest.raises(PermissionDeniedError):
            lifecycle.escalate(request.request_id, shelter)
        updated = lifecycle.escalate(request.request_id, admin)
        assert updated.escalated is True
        assert updated.escalated_at is not None

    def test_list_for_shelter_newest_first(self, lifecycle, file_request) -> None:
        first, second = file_request(1), file_request(2)
        ids = [r.request_id for r in lifecycle.list_for_shelter("shelter-1")]
        assert ids == [second.request_id, first.request_id]
        assert lifecycle.list_for_shelter("shelter-2") == []
