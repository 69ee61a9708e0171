"""Composition root of a rider session.

Owns the addresses, route, map position and notices. Travel status belongs to
:class:`TravelSession`; the orchestrator only triggers its transitions.
"""

from __future__ import annotations

from typing import Any

from src.common.logging import get_logger

from . import deps
from .backend import BackendClient, RatingSubmissionError
from .location import LocationTracker, QueueLocationSource
from .maps import RouteResolver, get_directions_service
from .notifications import NotificationBoard
from .rating import normalize_rating, submit_rating
from .schemas import (
    Coordinate,
    NotificationFlag,
    RatingResponse,
    Rider,
    Route,
    SessionState,
    Travel,
    TravelRequest,
    TravelStatus,
    TravelStatusEvent,
)
from .travel import RiderIdentity, TravelSession, TravelTransitionError

logger = get_logger(__name__)

VALIDATION_MESSAGE = "Oops, you need to choose two different places"
SENTINEL_DISTANCE_KM = 100.0


class AddressOrderError(Exception):
    """Destination edited before an origin was chosen."""


def build_travel_request(route: Route) -> TravelRequest:
    meters = route.leg_distances_m[0] if route.leg_distances_m else 0
    distance = meters / 1000 if meters else SENTINEL_DISTANCE_KM
    return TravelRequest(from_=route.origin, to=route.destination, distance_km=distance)


class SessionOrchestrator:
    def __init__(
        self,
        *,
        resolver: RouteResolver,
        backend: BackendClient,
        location_source: QueueLocationSource,
        default_position: Coordinate,
        identity: RiderIdentity | None = None,
        service_name: str = deps.SERVICE_NAME,
    ) -> None:
        self._resolver = resolver
        self._backend = backend
        self._board = NotificationBoard()
        self.identity = identity or RiderIdentity()
        self.travel = TravelSession(backend, self.identity, self._board, service_name)
        self.location_source = location_source
        self._tracker = LocationTracker(location_source, self._on_fix)
        self.origin = ""
        self.destination = ""
        self.has_origin = False
        self.route: Route | None = None
        self.client_position = default_position
        self.center = default_position
        self._closed = False

    # lifecycle

    async def start(self) -> None:
        self._tracker.start()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.travel.close()
        await self._tracker.stop()
        await self._backend.aclose()

    async def __aenter__(self) -> "SessionOrchestrator":
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # location

    def _on_fix(self, fix: Coordinate) -> None:
        self.client_position = fix
        self.center = fix

    def push_location(self, fix: Coordinate) -> None:
        self.location_source.push(fix)

    def location_unavailable(self) -> None:
        self.location_source.unavailable()

    # addresses and route

    async def set_origin(self, address: str, place: Coordinate | None = None) -> Route | None:
        self._ensure_editable()
        self.has_origin = True
        return await self._select(address, self.destination, place)

    async def set_destination(
        self, address: str, place: Coordinate | None = None
    ) -> Route | None:
        if not self.has_origin:
            raise AddressOrderError("choose the origin before the destination")
        return await self._select(self.origin, address, place)

    def _ensure_editable(self) -> None:
        if not self.travel.can_request:
            raise TravelTransitionError("addresses are locked while a travel is active")

    async def _select(
        self, origin: str, destination: str, place: Coordinate | None
    ) -> Route | None:
        self._ensure_editable()
        if place is not None:
            self.center = place
        if (origin, destination) != (self.origin, self.destination):
            self.route = None
        self.origin, self.destination = origin, destination
        pair = (origin, destination)
        route = await self._resolver.resolve(origin, destination)
        if self._closed or pair != (self.origin, self.destination):
            logger.info("route.stale_result_ignored", origin=origin, destination=destination)
            return self.route
        if route is not None:
            self.route = route
        return self.route

    @property
    def can_request_ride(self) -> bool:
        route = self.route
        return (
            self.travel.can_request
            and bool(self.origin)
            and bool(self.destination)
            and self.origin != self.destination
            and route is not None
            and (route.origin, route.destination) == (self.origin, self.destination)
        )

    # travel

    async def request_ride(self) -> Travel | None:
        """Submit the selected route; validation failures only raise a notice."""

        if not self.travel.can_request:
            raise TravelTransitionError(
                f"a travel is already {self.travel.status.value!r}"
            )
        if not self.can_request_ride:
            logger.info(
                "travel.validation_failed", origin=self.origin, destination=self.destination
            )
            self._board.raise_flag(
                NotificationFlag.REQUEST_ERROR, self.travel.entry, VALIDATION_MESSAGE
            )
            return None
        assert self.route is not None
        return await self.travel.request(build_travel_request(self.route))

    def handle_status_event(self, event: TravelStatusEvent | dict[str, Any]) -> bool:
        if isinstance(event, dict):
            event = TravelStatusEvent.model_validate(event)
        if self._closed:
            return False
        if not self.travel.matches(event.travel_id):
            logger.info("travel.foreign_event_ignored", travel_id=event.travel_id)
            return False
        if event.status is TravelStatus.IN_TRANSIT:
            return self.travel.mark_in_transit()
        if event.status is TravelStatus.FINISHED:
            return self.travel.mark_finished()
        logger.warning("travel.unsupported_event", status=event.status.value)
        return False

    async def submit_rating(self, raw: int, description: str) -> RatingResponse:
        travel = self.travel.travel
        if self.travel.status is not TravelStatus.FINISHED or travel is None:
            raise TravelTransitionError("only a finished travel can be rated")
        score = normalize_rating(raw)
        entry = self.travel.entry
        try:
            await submit_rating(
                self._backend, travel, self.identity.token or "", raw, description
            )
        except RatingSubmissionError as exc:
            logger.warning("rating.failed", reason=exc.message, code=exc.status_code)
            self._board.raise_flag(NotificationFlag.RATING_ERROR, entry, exc.message)
            return RatingResponse(submitted=False, stars=score.stars, label=score.label)
        self._board.dismiss(NotificationFlag.RATING_ERROR)
        self._board.raise_flag(NotificationFlag.RATING_SUBMITTED, entry)
        return RatingResponse(submitted=True, stars=score.stars, label=score.label)

    def reset_session(self) -> None:
        self.travel.reset()
        self._resolver.clear()
        self.has_origin = False
        self.origin = ""
        self.destination = ""
        self.route = None
        self.center = self.client_position

    def sign_in(self, user: Rider, token: str) -> None:
        self.identity.sign_in(user, token)

    # notices

    def dismiss(self, flag: NotificationFlag) -> None:
        self._board.dismiss(flag)

    def is_active(self, flag: NotificationFlag) -> bool:
        return self._board.is_active(flag, self.travel.entry)

    def snapshot(self) -> SessionState:
        entry = self.travel.entry
        board = self._board
        return SessionState(
            origin=self.origin,
            destination=self.destination,
            has_origin=self.has_origin,
            route=self.route,
            center=self.center,
            client_position=self.client_position,
            travel=self.travel.travel,
            travel_status=self.travel.status,
            rider=self.identity.user,
            request_error=board.message(NotificationFlag.REQUEST_ERROR, entry),
            notification_waiting=board.is_active(
                NotificationFlag.NOTIFICATION_WAITING, entry
            ),
            message_on_route=board.is_active(NotificationFlag.MESSAGE_ON_ROUTE, entry),
            rating_submitted=board.is_active(NotificationFlag.RATING_SUBMITTED, entry),
            rating_error=board.message(NotificationFlag.RATING_ERROR, entry),
            notice=board.visible(entry),
            can_request_ride=self.can_request_ride,
        )


def build_orchestrator(settings: deps.Settings) -> SessionOrchestrator:
    identity = RiderIdentity()
    if settings.rider_user_id and settings.rider_token:
        identity.sign_in(Rider(id=settings.rider_user_id), settings.rider_token)
    return SessionOrchestrator(
        resolver=RouteResolver(get_directions_service()),
        backend=BackendClient(settings.backend_base_url, timeout=settings.backend_timeout),
        location_source=QueueLocationSource(),
        default_position=settings.default_coordinate,
        identity=identity,
    )
