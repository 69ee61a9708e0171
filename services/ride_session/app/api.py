"""Session endpoints consumed by the presentation layer."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from . import deps, schemas
from .orchestrator import AddressOrderError, SessionOrchestrator
from .rating import InvalidRatingError
from .travel import TravelTransitionError

router = APIRouter(prefix="/session")


def _conflict(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.get("", response_model=schemas.SessionState)
async def get_session(
    orchestrator: SessionOrchestrator = Depends(deps.get_orchestrator),
) -> schemas.SessionState:
    return orchestrator.snapshot()


@router.put("/identity", response_model=schemas.SessionState)
async def put_identity(
    data: schemas.IdentityUpdate,
    orchestrator: SessionOrchestrator = Depends(deps.get_orchestrator),
) -> schemas.SessionState:
    orchestrator.sign_in(data.user, data.token)
    return orchestrator.snapshot()


@router.put("/origin", response_model=schemas.SessionState)
async def put_origin(
    data: schemas.AddressUpdate,
    orchestrator: SessionOrchestrator = Depends(deps.get_orchestrator),
) -> schemas.SessionState:
    try:
        await orchestrator.set_origin(data.address, data.place)
    except TravelTransitionError as exc:
        raise _conflict(exc) from exc
    return orchestrator.snapshot()


@router.put("/destination", response_model=schemas.SessionState)
async def put_destination(
    data: schemas.AddressUpdate,
    orchestrator: SessionOrchestrator = Depends(deps.get_orchestrator),
) -> schemas.SessionState:
    try:
        await orchestrator.set_destination(data.address, data.place)
    except (AddressOrderError, TravelTransitionError) as exc:
        raise _conflict(exc) from exc
    return orchestrator.snapshot()


@router.post("/location", status_code=status.HTTP_202_ACCEPTED)
async def post_location(
    data: schemas.Coordinate,
    orchestrator: SessionOrchestrator = Depends(deps.get_orchestrator),
) -> dict[str, str]:
    orchestrator.push_location(data)
    return {"status": "accepted"}


@router.post("/location/unavailable", status_code=status.HTTP_202_ACCEPTED)
async def post_location_unavailable(
    orchestrator: SessionOrchestrator = Depends(deps.get_orchestrator),
) -> dict[str, str]:
    orchestrator.location_unavailable()
    return {"status": "accepted"}


@router.post("/travel", response_model=schemas.SessionState)
async def request_ride(
    orchestrator: SessionOrchestrator = Depends(deps.get_orchestrator),
) -> schemas.SessionState:
    try:
        await orchestrator.request_ride()
    except TravelTransitionError as exc:
        raise _conflict(exc) from exc
    return orchestrator.snapshot()


@router.post("/travel/events", response_model=schemas.SessionState)
async def post_travel_event(
    data: schemas.TravelStatusEvent,
    orchestrator: SessionOrchestrator = Depends(deps.get_orchestrator),
) -> schemas.SessionState:
    orchestrator.handle_status_event(data)
    return orchestrator.snapshot()


@router.post("/rating", response_model=schemas.RatingResponse)
async def post_rating(
    data: schemas.RatingRequest,
    orchestrator: SessionOrchestrator = Depends(deps.get_orchestrator),
) -> schemas.RatingResponse:
    try:
        return await orchestrator.submit_rating(data.rating, data.description)
    except InvalidRatingError as exc:
        raise HTTPException(
            status_code=422, detail=str(exc)
        ) from exc
    except TravelTransitionError as exc:
        raise _conflict(exc) from exc


@router.post("/notifications/{flag}/dismiss", response_model=schemas.SessionState)
async def dismiss_notification(
    flag: schemas.NotificationFlag,
    orchestrator: SessionOrchestrator = Depends(deps.get_orchestrator),
) -> schemas.SessionState:
    orchestrator.dismiss(flag)
    return orchestrator.snapshot()


@router.post("/reset", response_model=schemas.SessionState)
async def reset_session(
    orchestrator: SessionOrchestrator = Depends(deps.get_orchestrator),
) -> schemas.SessionState:
    try:
        orchestrator.reset_session()
    except TravelTransitionError as exc:
        raise _conflict(exc) from exc
    return orchestrator.snapshot()
