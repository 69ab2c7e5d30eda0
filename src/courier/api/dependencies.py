"""Request-scoped accessors for the driver runtime."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from ..models.domain import ActionOutcome, OutcomeStatus
from ..runtime import DriverRuntime
from ..schemas.journey import OutcomeModel
from ..services.journey.tracker import JourneyTracker

_OUTCOME_STATUS_CODES = {
    OutcomeStatus.REJECTED: status.HTTP_409_CONFLICT,
    OutcomeStatus.FAILED: status.HTTP_502_BAD_GATEWAY,
}


def get_runtime(request: Request) -> DriverRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Driver runtime is not ready")
    return runtime


def get_tracker(request: Request) -> JourneyTracker:
    return get_runtime(request).tracker


def outcome_response(outcome: ActionOutcome) -> OutcomeModel:
    """Return the outcome as a response body, raising for rejected/failed outcomes."""
    body = OutcomeModel(
        status=outcome.status.value,
        message=outcome.message,
        pending_sync=outcome.pending_sync,
        action_id=outcome.action_id,
        data=outcome.data,
    )
    status_code = _OUTCOME_STATUS_CODES.get(outcome.status)
    if status_code is not None:
        raise HTTPException(status_code=status_code, detail=body.model_dump())
    return body
