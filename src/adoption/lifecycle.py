"""Adoption request state machine.

A pet may have at most one Approved request. Approval first claims the
pet's approval slot, a document keyed by pet id that can only be
created once, so two concurrent approvals for the same pet cannot both
succeed. After the request itself is marked Approved, every competing
request for the pet is moved to Rejected.

A second marker document, keyed by (adopter, pet), exists while the
adopter holds a non-Rejected request for that pet and blocks duplicate
applications the same way.
"""

from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

from elasticsearch import (
    ApiError,
    ConflictError,
    Elasticsearch,
    NotFoundError,
    TransportError,
)

from src.config import Config
from src.data.schemas import (
    MAX_AI_REASONS,
    Actor,
    AdopterContact,
    AdoptionRequest,
    AdoptionStatus,
)
from src.errors import (
    ApprovalConflictError,
    ConcurrentUpdateError,
    DuplicateRequestError,
    InvalidStatusError,
    InvalidTransitionError,
    PermissionDeniedError,
    PetUnavailableError,
    RequestNotFoundError,
)
from src.events.notifier import ChangeNotifier
from src.storage.pets import PetDirectory

logger = logging.getLogger(__name__)

New = AdoptionStatus.NEW
UnderReview = AdoptionStatus.UNDER_REVIEW
Interview = AdoptionStatus.INTERVIEW_SCHEDULED
Approved = AdoptionStatus.APPROVED
Rejected = AdoptionStatus.REJECTED
Cancelled = AdoptionStatus.CANCELLED

ALLOWED_TRANSITIONS: dict[AdoptionStatus, frozenset[AdoptionStatus]] = {
    New: frozenset({UnderReview, Interview, Approved, Rejected, Cancelled}),
    UnderReview: frozenset({Interview, Approved, Rejected, Cancelled}),
    Interview: frozenset({UnderReview, Approved, Rejected, Cancelled}),
    Approved: frozenset(),
    Rejected: frozenset(),
    Cancelled: frozenset(),
}
TERMINAL_STATUSES = frozenset({Approved, Rejected, Cancelled})

# Admin dashboards label New as "Requested".
_STATUS_ALIASES = {"Requested": New}

CASCADE_ATTEMPTS = 3


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_status(value: str | AdoptionStatus | None) -> AdoptionStatus:
    """Map a status string onto :class:`AdoptionStatus`.

    Raises:
        InvalidStatusError: For anything that is not a known status.
    """
    if isinstance(value, AdoptionStatus):
        return value
    if value in _STATUS_ALIASES:
        return _STATUS_ALIASES[value]
    try:
        return AdoptionStatus(value)
    except ValueError:
        raise InvalidStatusError("Valid status is required") from None


def normalize_score(value: object) -> int | None:
    """Accept a submitted compatibility score only if it is a number in [0, 100]."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or not 0 <= number <= 100:
        return None
    return round(number)


def normalize_reasons(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [r for r in value if isinstance(r, str)][:MAX_AI_REASONS]


class AdoptionRequestLifecycle:
    """Create adoption requests and move them through their statuses.

    Args:
        es_client: Connected Elasticsearch client.
        pets: Pet directory used to validate new requests.
        notifier: Receives a signal after every change.
        config: Supplies index names.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        es_client: Elasticsearch,
        pets: PetDirectory,
        notifier: ChangeNotifier,
        config: Config,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.es = es_client
        self.pets = pets
        self.notifier = notifier
        self.clock = clock
        self.requests_index = config.adoption_requests_index
        self.approvals_index = config.pet_approvals_index
        self.active_index = config.active_requests_index

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, request_id: str) -> AdoptionRequest:
        request, _, _ = self._load(request_id)
        return request

    def list_for_shelter(self, shelter_id: str, limit: int = 1000) -> list[AdoptionRequest]:
        return self._search([{"term": {"shelter_id": shelter_id}}], limit=limit)

    def list_for_pet(self, pet_id: str, limit: int = 1000) -> list[AdoptionRequest]:
        return self._search([{"term": {"pet_id": pet_id}}], limit=limit)

    def approved_request_id(self, pet_id: str) -> str | None:
        """Id of the request holding the pet's approval slot, if any."""
        try:
            resp = self.es.get(index=self.approvals_index, id=pet_id)
        except NotFoundError:
            return None
        return resp["_source"]["request_id"]

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_request(
        self,
        actor: Actor,
        contact: AdopterContact,
        pet_id: str,
        message: str | None = None,
        compatibility_score: object = None,
        ai_reasons: object = None,
    ) -> AdoptionRequest:
        """File a new request in status New.

        The compatibility score and reasons are copied as submitted (after
        validation); they are not linked to the score cache.
        """
        if actor.role != "adopter":
            raise PermissionDeniedError(
                "Adopter access only. Sign in as an adopter to apply to adopt."
            )
        pet_id = (pet_id or "").strip()
        if not pet_id:
            raise ValueError("petId is required")

        pet = self.pets.get(pet_id)
        if pet is None or pet.archived:
            raise PetUnavailableError("Pet not found")
        if not pet.available:
            raise PetUnavailableError("This pet is not available for adoption")
        if self.approved_request_id(pet_id) is not None:
            raise PetUnavailableError("This pet already has an approved adopter.")

        now = self.clock()
        request = AdoptionRequest(
            request_id=uuid.uuid4().hex,
            adopter_id=actor.user_id,
            adopter_name=contact.name or contact.email.split("@")[0] or "Adopter",
            adopter_email=contact.email.strip().lower(),
            adopter_address=(contact.address or "").strip(),
            pet_id=pet.pet_id,
            pet_name=pet.name,
            shelter_id=pet.shelter_id,
            status=New,
            compatibility_score=normalize_score(compatibility_score),
            ai_reasons=normalize_reasons(ai_reasons),
            message=(message or "").strip(),
            created_at=now,
            updated_at=now,
        )

        self._claim_active_marker(request)
        try:
            self.es.index(
                index=self.requests_index,
                id=request.request_id,
                document=request.model_dump(mode="json"),
                op_type="create",
                refresh="wait_for",
            )
        except Exception:
            self._release_active_marker(request)
            raise

        # An approval may have landed between the check above and the write.
        if self.approved_request_id(pet_id) is not None:
            self._force_reject(request.request_id)
            raise PetUnavailableError("This pet already has an approved adopter.")

        logger.info(
            "Adoption request %s filed by %s for pet %s",
            request.request_id, request.adopter_id, request.pet_id,
        )
        self.notifier.adoption_requests_changed(
            request.shelter_id, request.request_id, request.adopter_id
        )
        return request

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def set_status(
        self, request_id: str, new_status: str | AdoptionStatus, actor: Actor
    ) -> AdoptionRequest:
        """Move a request to *new_status*.

        Approving cascades every competing request for the same pet to
        Rejected. Re-sending the current status is refused rather than
        treated as a fresh transition, so a duplicate approval never
        cascades twice.

        Raises:
            InvalidStatusError: Unknown target status.
            RequestNotFoundError: Unknown request.
            PermissionDeniedError: Actor may not make this change.
            InvalidTransitionError: Same status, or not reachable from the current one.
            ApprovalConflictError: Another request for the pet is already Approved.
            ConcurrentUpdateError: The request changed during the transition.
        """
        target = parse_status(new_status)
        request, seq_no, primary_term = self._load(request_id)
        _authorize(actor, request, target)

        if request.status == target:
            raise InvalidTransitionError(f"Request is already {target.value}")
        if target not in ALLOWED_TRANSITIONS[request.status]:
            raise InvalidTransitionError(
                f"Cannot change request from {request.status.value} to {target.value}"
            )

        if target is Approved:
            return self._approve(request, seq_no, primary_term, actor)

        updated = self._write(request, seq_no, primary_term, status=target)
        if target is Rejected:
            self._release_active_marker(updated)
        if target in TERMINAL_STATUSES:
            # A slot left behind by a failed approval of this request.
            self._release_approval_slot(updated)
        logger.info(
            "Adoption request %s: %s -> %s by %s",
            request_id, request.status.value, target.value, actor.user_id,
        )
        self._notify(updated)
        return updated

    def escalate(self, request_id: str, actor: Actor) -> AdoptionRequest:
        """Flag a request for admin attention."""
        if actor.role != "admin":
            raise PermissionDeniedError("Admin access required")
        request, seq_no, primary_term = self._load(request_id)
        updated = self._write(
            request, seq_no, primary_term, escalated=True, escalated_at=self.clock()
        )
        self._notify(updated)
        return updated

    def _approve(
        self,
        request: AdoptionRequest,
        seq_no: int,
        primary_term: int,
        actor: Actor,
    ) -> AdoptionRequest:
        if not self._claim_approval_slot(request, actor):
            holder = self.approved_request_id(request.pet_id)
            if holder is None:
                raise ConcurrentUpdateError(
                    "Approval state for this pet changed; reload and retry"
                )
            if holder != request.request_id:
                raise ApprovalConflictError()
            # Slot already ours: an earlier approval of this request stopped midway.
            logger.warning(
                "Resuming interrupted approval of request %s", request.request_id
            )

        try:
            approved = self._write(request, seq_no, primary_term, status=Approved)
        except Exception:
            try:
                self._release_approval_slot(request)
            except (ApiError, TransportError) as exc:
                logger.error(
                    "Approval slot for pet %s left held by request %s: %s",
                    request.pet_id, request.request_id, exc,
                )
            raise

        rejected = self._cascade_reject(approved)
        logger.info(
            "Adoption request %s approved for pet %s by %s; %d competing request(s) rejected",
            approved.request_id, approved.pet_id, actor.user_id, len(rejected),
        )
        self._notify(approved)
        return approved

    def _cascade_reject(self, approved: AdoptionRequest) -> list[AdoptionRequest]:
        competing = self._search(
            [{"term": {"pet_id": approved.pet_id}}],
            must_not=[
                {"term": {"status": Rejected.value}},
                {"ids": {"values": [approved.request_id]}},
            ],
        )
        rejected = []
        for other in competing:
            updated = self._force_reject(other.request_id)
            if updated is not None:
                rejected.append(updated)
        return rejected

    def _force_reject(self, request_id: str) -> AdoptionRequest | None:
        """Move a competing request to Rejected regardless of its status."""
        for _ in range(CASCADE_ATTEMPTS):
            try:
                request, seq_no, primary_term = self._load(request_id)
            except RequestNotFoundError:
                return None
            if request.status is Rejected:
                return None
            if request.status is Approved:
                logger.error(
                    "Request %s is Approved alongside another approval for pet %s",
                    request_id, request.pet_id,
                )
                return None
            try:
                updated = self._write(request, seq_no, primary_term, status=Rejected)
            except ConcurrentUpdateError:
                continue
            self._release_active_marker(updated)
            self._release_approval_slot(updated)
            self._notify(updated)
            return updated

        logger.error(
            "Could not reject competing request %s after %d attempts",
            request_id, CASCADE_ATTEMPTS,
        )
        return None

    # ------------------------------------------------------------------
    # Storage helpers
    # ------------------------------------------------------------------

    def _load(self, request_id: str) -> tuple[AdoptionRequest, int, int]:
        try:
            resp = self.es.get(index=self.requests_index, id=request_id)
        except NotFoundError:
            raise RequestNotFoundError("Adoption request not found") from None
        return AdoptionRequest(**resp["_source"]), resp["_seq_no"], resp["_primary_term"]

    def _write(
        self, request: AdoptionRequest, seq_no: int, primary_term: int, **changes
    ) -> AdoptionRequest:
        updated = request.model_copy(update={**changes, "updated_at": self.clock()})
        try:
            self.es.index(
                index=self.requests_index,
                id=request.request_id,
                document=updated.model_dump(mode="json"),
                if_seq_no=seq_no,
                if_primary_term=primary_term,
                refresh="wait_for",
            )
        except ConflictError:
            raise ConcurrentUpdateError(
                "Adoption request was modified concurrently; reload and retry"
            ) from None
        return updated

    def _search(
        self, filters: list[dict], must_not: list[dict] | None = None, limit: int = 1000
    ) -> list[AdoptionRequest]:
        query: dict = {"bool": {"filter": filters}}
        if must_not:
            query["bool"]["must_not"] = must_not
        resp = self.es.search(
            index=self.requests_index,
            query=query,
            sort=[{"created_at": {"order": "desc"}}],
            size=limit,
        )
        return [AdoptionRequest(**hit["_source"]) for hit in resp["hits"]["hits"]]

    def _claim_approval_slot(self, request: AdoptionRequest, actor: Actor) -> bool:
        try:
            self.es.index(
                index=self.approvals_index,
                id=request.pet_id,
                document={
                    "pet_id": request.pet_id,
                    "request_id": request.request_id,
                    "approved_by": actor.user_id,
                    "approved_at": self.clock().isoformat(),
                },
                op_type="create",
                refresh="wait_for",
            )
        except ConflictError:
            return False
        return True

    def _release_approval_slot(self, request: AdoptionRequest) -> None:
        self._delete_if_owned(self.approvals_index, request.pet_id, request.request_id)

    def _claim_active_marker(self, request: AdoptionRequest) -> None:
        try:
            self.es.index(
                index=self.active_index,
                id=_active_key(request.adopter_id, request.pet_id),
                document={
                    "adopter_id": request.adopter_id,
                    "pet_id": request.pet_id,
                    "request_id": request.request_id,
                },
                op_type="create",
                refresh="wait_for",
            )
        except ConflictError:
            raise DuplicateRequestError("You have already applied to adopt this pet") from None

    def _release_active_marker(self, request: AdoptionRequest) -> None:
        self._delete_if_owned(
            self.active_index,
            _active_key(request.adopter_id, request.pet_id),
            request.request_id,
        )

    def _delete_if_owned(self, index: str, doc_id: str, request_id: str) -> None:
        """Delete a marker document only while it still points at *request_id*."""
        try:
            resp = self.es.get(index=index, id=doc_id)
        except NotFoundError:
            return
        if resp["_source"].get("request_id") != request_id:
            return
        try:
            self.es.delete(
                index=index,
                id=doc_id,
                if_seq_no=resp["_seq_no"],
                if_primary_term=resp["_primary_term"],
                refresh="wait_for",
            )
        except (NotFoundError, ConflictError):
            logger.debug("Marker %s/%s changed before release", index, doc_id)

    def _notify(self, request: AdoptionRequest) -> None:
        self.notifier.adoption_requests_changed(
            request.shelter_id, request.request_id, request.adopter_id
        )


def _active_key(adopter_id: str, pet_id: str) -> str:
    return f"{adopter_id}:{pet_id}"


def _authorize(actor: Actor, request: AdoptionRequest, target: AdoptionStatus) -> None:
    if actor.role == "adopter":
        if request.adopter_id != actor.user_id:
            raise PermissionDeniedError("This request belongs to another adopter")
        if target is not Cancelled:
            raise PermissionDeniedError("Adopters may only cancel their own requests")
        return
    if target is Cancelled:
        raise PermissionDeniedError("Only the adopter can cancel a request")
    if actor.role == "shelter" and request.shelter_id != actor.user_id:
        raise PermissionDeniedError("This request belongs to another shelter")
