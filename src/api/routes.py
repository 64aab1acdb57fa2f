"""FastAPI routes for matchmaking, scoring settings, adoption requests and health."""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import ValidationError

from src.data.schemas import (
    Actor,
    AdopterContact,
    AdopterProfile,
    AdoptionRequest,
    AdoptionRequestCreate,
    ConnectionTestResult,
    IntegrationEvent,
    RecommendationResponse,
    RecommendRequest,
    SettingsUpdate,
    SettingsView,
    StatusUpdate,
)
from src.errors import (
    AdoptionError,
    ApprovalConflictError,
    ConcurrentUpdateError,
    ConfigurationError,
    DuplicateRequestError,
    PermissionDeniedError,
    RequestNotFoundError,
)

logger = logging.getLogger(__name__)

router = APIRouter()

_ROLES = ("adopter", "shelter", "admin")


def get_actor(
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> Actor:
    """Build the caller identity from headers set by the upstream auth layer."""
    if not x_user_id or x_user_role not in _ROLES:
        raise HTTPException(status_code=401, detail="Authentication required")
    return Actor(user_id=x_user_id, role=x_user_role)


def require_admin(actor: Actor = Depends(get_actor)) -> Actor:  # noqa: B008
    if actor.role != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return actor


def _http_error(exc: Exception) -> HTTPException:
    """Translate a core exception into an HTTP error with its message."""
    if isinstance(exc, PermissionDeniedError):
        status = 403
    elif isinstance(exc, RequestNotFoundError):
        status = 404
    elif isinstance(exc, (ApprovalConflictError, ConcurrentUpdateError, DuplicateRequestError)):
        status = 409
    else:
        status = 400
    return HTTPException(status_code=status, detail=str(exc))


@router.get("/health")
def health_check(request: Request) -> dict:
    """Health check endpoint for monitoring.

    Returns:
        Dict with system health status.
    """
    es = request.app.state.es_client
    es_healthy = es.ping()
    return {
        "status": "healthy" if es_healthy else "degraded",
        "elasticsearch": "connected" if es_healthy else "disconnected",
    }


# ---------------------------------------------------------------------------
# Matchmaking
# ---------------------------------------------------------------------------

@router.post("/api/matchmaking/recommend", response_model=RecommendationResponse)
def recommend(
    request: Request,
    body: RecommendRequest,
    actor: Actor = Depends(get_actor),  # noqa: B008
) -> RecommendationResponse:
    """Rank every adoptable pet for the submitted adopter profile.

    Adopters are scored under their own id; an admin may score on behalf
    of an adopter by passing ``adopterId``, otherwise the run is anonymous
    and nothing is cached.
    """
    if actor.role not in ("adopter", "admin"):
        raise HTTPException(status_code=403, detail="Adopter or admin access required")
    if not body.adopter_profile:
        raise HTTPException(status_code=400, detail="adopterProfile (object) is required")

    try:
        profile = AdopterProfile.model_validate(body.adopter_profile)
    except ValidationError as exc:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid adopterProfile ({exc.error_count()} error(s))",
        ) from exc

    if actor.role == "adopter":
        adopter_id = actor.user_id
    else:
        adopter_id = body.adopter_id or None

    recommender = request.app.state.recommender
    try:
        results = recommender.recommend(profile, adopter_id, actor_id=actor.user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return RecommendationResponse(recommendations=results, count=len(results))


# ---------------------------------------------------------------------------
# Admin: scoring settings
# ---------------------------------------------------------------------------

@router.get("/api/admin/scoring/settings", response_model=SettingsView)
def get_scoring_settings(
    request: Request, actor: Actor = Depends(require_admin)  # noqa: B008
) -> SettingsView:
    """Non-secret settings only; the credential is reported as present or not."""
    return request.app.state.settings_store.view()


@router.put("/api/admin/scoring/settings", response_model=SettingsView)
def update_scoring_settings(
    request: Request,
    update: SettingsUpdate,
    actor: Actor = Depends(require_admin),  # noqa: B008
) -> SettingsView:
    """Update settings; a supplied API key is encrypted before storage."""
    try:
        return request.app.state.settings_store.update(update, actor_id=actor.user_id)
    except ConfigurationError as exc:
        logger.error("Settings update refused: %s", exc)
        raise HTTPException(
            status_code=400,
            detail="API key encryption failed. Set SCORING_KEY_ENC_SECRET in env.",
        ) from exc


@router.post("/api/admin/scoring/test", response_model=ConnectionTestResult)
def test_scoring_connection(
    request: Request, actor: Actor = Depends(require_admin)  # noqa: B008
) -> ConnectionTestResult:
    """Run a minimal scoring-service request. Rate limited per admin."""
    limiter = request.app.state.test_rate_limiter
    if not limiter.acquire(actor.user_id):
        raise HTTPException(
            status_code=429,
            detail="Too many test requests. Try again in a minute.",
            headers={"Retry-After": str(max(1, round(limiter.retry_after(actor.user_id))))},
        )

    start = time.monotonic()
    result = request.app.state.scoring_client.test_connection()
    request.app.state.audit.record(
        "scoring_test",
        "success" if result.success else "fail",
        latency_ms=result.latency_ms
        if result.latency_ms is not None
        else int((time.monotonic() - start) * 1000),
        actor=actor.user_id,
        message=result.error,
    )
    return result


@router.get("/api/admin/scoring/events", response_model=list[IntegrationEvent])
def list_integration_events(
    request: Request, actor: Actor = Depends(require_admin)  # noqa: B008
) -> list[IntegrationEvent]:
    """Last 20 integration events for the admin logs panel."""
    return request.app.state.audit.recent(limit=20)


# ---------------------------------------------------------------------------
# Adoption requests
# ---------------------------------------------------------------------------

@router.post("/api/adoption-requests", response_model=AdoptionRequest, status_code=201)
def create_adoption_request(
    request: Request,
    body: AdoptionRequestCreate,
    actor: Actor = Depends(get_actor),  # noqa: B008
) -> AdoptionRequest:
    """File an adoption request carrying the adopter's compatibility score."""
    if not body.adopter_email:
        raise HTTPException(status_code=400, detail="adopterEmail is required")
    contact = AdopterContact(
        name=body.adopter_name or "",
        email=body.adopter_email,
        address=body.adopter_address,
    )
    try:
        return request.app.state.lifecycle.create_request(
            actor,
            contact,
            body.pet_id,
            message=body.message,
            compatibility_score=body.compatibility_score,
            ai_reasons=body.ai_reasons,
        )
    except (AdoptionError, ValueError) as exc:
        raise _http_error(exc) from exc


@router.get("/api/adoption-requests/{request_id}", response_model=AdoptionRequest)
def get_adoption_request(
    request: Request,
    request_id: str,
    actor: Actor = Depends(get_actor),  # noqa: B008
) -> AdoptionRequest:
    try:
        found = request.app.state.lifecycle.get(request_id)
    except AdoptionError as exc:
        raise _http_error(exc) from exc
    owner = {"adopter": found.adopter_id, "shelter": found.shelter_id}.get(actor.role)
    if actor.role != "admin" and owner != actor.user_id:
        raise HTTPException(status_code=404, detail="Adoption request not found")
    return found


@router.get("/api/shelter/requests", response_model=list[AdoptionRequest])
def list_shelter_requests(
    request: Request, actor: Actor = Depends(get_actor)  # noqa: B008
) -> list[AdoptionRequest]:
    """Adoption requests for the calling shelter, newest first."""
    if actor.role != "shelter":
        raise HTTPException(status_code=403, detail="Shelter access required")
    return request.app.state.lifecycle.list_for_shelter(actor.user_id)


@router.patch("/api/adoption-requests/{request_id}", response_model=AdoptionRequest)
def update_adoption_request_status(
    request: Request,
    request_id: str,
    body: StatusUpdate,
    actor: Actor = Depends(get_actor),  # noqa: B008
) -> AdoptionRequest:
    """Change a request's status. One pet can only have one approved adopter."""
    try:
        return request.app.state.lifecycle.set_status(request_id, body.status, actor)
    except (AdoptionError, ValueError) as exc:
        raise _http_error(exc) from exc


@router.post("/api/adoption-requests/{request_id}/escalate", response_model=AdoptionRequest)
def escalate_adoption_request(
    request: Request,
    request_id: str,
    actor: Actor = Depends(require_admin),  # noqa: B008
) -> AdoptionRequest:
    """Mark a request as escalated for admin attention."""
    try:
        return request.app.state.lifecycle.escalate(request_id, actor)
    except AdoptionError as exc:
        raise _http_error(exc) from exc
