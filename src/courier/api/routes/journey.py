"""Journey endpoints for the on-device UI."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from ...models.domain import LocationUpdateRequest, Stop
from ...schemas.journey import (
    EndSessionRequest,
    JourneyStateModel,
    LoadRoutesRequest,
    MarkStopRequest,
    OutcomeModel,
    SelectSessionRequest,
    StartJourneyRequest,
    UpdateLocationRequest,
)
from ...services.journey.tracker import JourneyTracker
from ..dependencies import get_tracker, outcome_response

router = APIRouter(prefix="/journey", tags=["journey"])


@router.get("/state", response_model=JourneyStateModel)
def journey_state(tracker: JourneyTracker = Depends(get_tracker)) -> dict:
    return tracker.snapshot()


@router.post("/routes/load", response_model=OutcomeModel)
async def load_routes(
    payload: LoadRoutesRequest | None = None,
    tracker: JourneyTracker = Depends(get_tracker),
) -> OutcomeModel:
    outcome = await tracker.load_routes(date=payload.date if payload else None)
    return outcome_response(outcome)


@router.post("/session", response_model=OutcomeModel)
async def select_session(payload: SelectSessionRequest, tracker: JourneyTracker = Depends(get_tracker)) -> OutcomeModel:
    return outcome_response(await tracker.select_session(payload.session))


@router.post("/start", response_model=OutcomeModel)
async def start_journey(
    payload: StartJourneyRequest | None = None,
    tracker: JourneyTracker = Depends(get_tracker),
) -> OutcomeModel:
    outcome = await tracker.start_journey(route_id=payload.route_id if payload else None)
    return outcome_response(outcome)


@router.post("/mark-stop", response_model=OutcomeModel)
async def mark_stop(payload: MarkStopRequest, tracker: JourneyTracker = Depends(get_tracker)) -> OutcomeModel:
    record = payload.stop.model_dump(exclude_none=True)
    stop = Stop.from_record(record, session=payload.stop.session)
    outcome = await tracker.mark_stop(stop, payload.status, comments=payload.comments)
    return outcome_response(outcome)


@router.post("/end-session", response_model=OutcomeModel)
async def end_session(
    payload: EndSessionRequest | None = None,
    tracker: JourneyTracker = Depends(get_tracker),
) -> OutcomeModel:
    payload = payload or EndSessionRequest()
    outcome = await tracker.end_session(route_id=payload.route_id, session=payload.session)
    return outcome_response(outcome)


@router.post("/update-location", response_model=OutcomeModel)
async def update_location(payload: UpdateLocationRequest, tracker: JourneyTracker = Depends(get_tracker)) -> OutcomeModel:
    target = payload.model_dump(exclude={"latitude", "longitude", "use_device_location"}, exclude_none=True)
    if payload.use_device_location:
        return outcome_response(await tracker.capture_location_for(**target))
    if payload.latitude is None or payload.longitude is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="latitude and longitude are required unless use_device_location is set",
        )
    try:
        request = LocationUpdateRequest(latitude=payload.latitude, longitude=payload.longitude, **target)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return outcome_response(await tracker.update_location(request))


@router.post("/refresh", response_model=JourneyStateModel)
async def refresh(tracker: JourneyTracker = Depends(get_tracker)) -> dict:
    await tracker.refresh_status()
    return tracker.snapshot()


@router.post("/reoptimize", response_model=OutcomeModel)
async def reoptimize(tracker: JourneyTracker = Depends(get_tracker)) -> OutcomeModel:
    return outcome_response(await tracker.reoptimize())
