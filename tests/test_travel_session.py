import asyncio
import json
from typing import Any, Callable

import httpx
import pytest

from services.ride_session.app.backend import BackendClient
from services.ride_session.app.location import QueueLocationSource
from services.ride_session.app.maps import DirectionsResult, RouteResolver
from services.ride_session.app.orchestrator import (
    VALIDATION_MESSAGE,
    AddressOrderError,
    SessionOrchestrator,
    build_travel_request,
)
from services.ride_session.app.schemas import (
    Coordinate,
    NotificationFlag,
    Rider,
    Route,
    TravelStatus,
)
from services.ride_session.app.travel import RiderIdentity, TravelTransitionError

DEFAULT = Coordinate(lat=-23.55052, lng=-46.633309)


class DummyDirections:
    def __init__(self, distance_m: int | None = 2500) -> None:
        self.distance_m = distance_m
        self.calls: list[tuple[str, str]] = []

    async def directions(self, origin: str, destination: str) -> DirectionsResult:
        self.calls.append((origin, destination))
        leg: dict[str, Any] = {}
        if self.distance_m is not None:
            leg["distance"] = {"value": self.distance_m}
        return DirectionsResult(status="OK", routes=[{"legs": [leg]}])


class DummyBackend:
    """Records calls made through a real client backed by MockTransport."""

    def __init__(self, reply: Callable[[httpx.Request], Any] | None = None) -> None:
        self.requests: list[httpx.Request] = []
        self.reply = reply or self.accept

    @staticmethod
    def accept(request: httpx.Request) -> httpx.Response:
        if "/rating" in request.url.path:
            return httpx.Response(200, json={})
        return httpx.Response(
            201,
            json={
                "id": 11,
                "driver": {"id": 3, "name": "Ana", "image": "ana.png"},
                "user": {"id": 7, "balance": 37.5},
            },
        )

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        result = self.reply(request)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    def client(self) -> BackendClient:
        return BackendClient("http://backend.test", transport=httpx.MockTransport(self.handle))


def make_session(
    backend: DummyBackend, directions: DummyDirections | None = None
) -> SessionOrchestrator:
    return SessionOrchestrator(
        resolver=RouteResolver(directions or DummyDirections()),
        backend=backend.client(),
        location_source=QueueLocationSource(),
        default_position=DEFAULT,
        identity=RiderIdentity(Rider(id=7, balance=50.0), "tok"),
    )


async def _choose(session: SessionOrchestrator, origin: str, destination: str) -> None:
    await session.set_origin(origin)
    await session.set_destination(destination)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.mark.anyio
@pytest.mark.parametrize(
    "origin,destination", [("", ""), ("A St", ""), ("A St", "A St")]
)
async def test_invalid_addresses_never_reach_backend(origin: str, destination: str) -> None:
    backend = DummyBackend()
    session = make_session(backend)
    await _choose(session, origin, destination)

    assert await session.request_ride() is None

    state = session.snapshot()
    assert backend.requests == []
    assert state.travel_status is TravelStatus.UNSET
    assert state.request_error == VALIDATION_MESSAGE
    assert state.notice is not None and state.notice.flag is NotificationFlag.REQUEST_ERROR
    assert not state.can_request_ride


@pytest.mark.anyio
async def test_destination_requires_origin() -> None:
    session = make_session(DummyBackend())
    with pytest.raises(AddressOrderError):
        await session.set_destination("B Ave")


@pytest.mark.anyio
async def test_successful_request_waits_for_driver() -> None:
    backend = DummyBackend()
    session = make_session(backend)
    await _choose(session, "A St", "B Ave")
    assert session.snapshot().can_request_ride

    travel = await session.request_ride()

    assert travel is not None and travel.id == 11
    state = session.snapshot()
    assert state.travel_status is TravelStatus.WAITING_FOR_DRIVER
    assert state.travel == travel
    assert state.rider is not None and state.rider.balance == 37.5
    assert state.notification_waiting
    assert state.notice is not None
    assert state.notice.flag is NotificationFlag.NOTIFICATION_WAITING
    body = json.loads(backend.requests[0].content)
    assert body == {"from": "A St", "to": "B Ave", "distance": 2.5}


@pytest.mark.anyio
async def test_rejection_reverts_and_keeps_server_message() -> None:
    backend = DummyBackend(
        lambda request: httpx.Response(400, json={"message": "Insufficient balance"})
    )
    session = make_session(backend)
    await _choose(session, "A St", "B Ave")

    assert await session.request_ride() is None

    state = session.snapshot()
    assert state.travel_status is TravelStatus.UNSET
    assert state.request_error == "Insufficient balance"
    assert state.travel is None
    assert state.rider is not None and state.rider.balance == 50.0
    assert len(backend.requests) == 1


@pytest.mark.anyio
async def test_request_in_flight_blocks_duplicates_and_applies_atomically() -> None:
    release = asyncio.Event()

    async def slow(request: httpx.Request) -> httpx.Response:
        await release.wait()
        return DummyBackend.accept(request)

    backend = DummyBackend(slow)
    session = make_session(backend)
    await _choose(session, "A St", "B Ave")

    pending = asyncio.ensure_future(session.request_ride())
    while not backend.requests:
        await asyncio.sleep(0)

    state = session.snapshot()
    assert state.travel_status is TravelStatus.REQUESTED
    assert state.travel is None and state.rider.balance == 50.0  # type: ignore[union-attr]
    assert not state.can_request_ride
    with pytest.raises(TravelTransitionError):
        await session.request_ride()
    with pytest.raises(TravelTransitionError):
        await session.set_destination("C Rd")

    release.set()
    await pending
    state = session.snapshot()
    assert state.travel is not None and state.rider.balance == 37.5  # type: ignore[union-attr]
    assert len(backend.requests) == 1


@pytest.mark.anyio
async def test_late_response_after_close_is_ignored() -> None:
    release = asyncio.Event()

    async def slow(request: httpx.Request) -> httpx.Response:
        await release.wait()
        return DummyBackend.accept(request)

    session = make_session(DummyBackend(slow))
    await _choose(session, "A St", "B Ave")
    pending = asyncio.ensure_future(session.request_ride())
    await asyncio.sleep(0)

    session.travel.close()
    release.set()

    assert await pending is None
    assert session.travel.travel is None
    assert session.travel.status is not TravelStatus.WAITING_FOR_DRIVER


@pytest.mark.anyio
async def test_lifecycle_notices_and_dismissal() -> None:
    session = make_session(DummyBackend())
    await _choose(session, "A St", "B Ave")
    await session.request_ride()

    session.dismiss(NotificationFlag.NOTIFICATION_WAITING)
    state = session.snapshot()
    assert state.travel_status is TravelStatus.WAITING_FOR_DRIVER
    assert not state.notification_waiting
    assert state.notice is None

    assert not session.handle_status_event({"travel_id": 99, "status": "in transit"})
    assert session.handle_status_event({"travel_id": 11, "status": "in transit"})
    state = session.snapshot()
    assert state.travel_status is TravelStatus.IN_TRANSIT
    assert state.message_on_route
    assert state.notice is not None
    assert state.notice.flag is NotificationFlag.MESSAGE_ON_ROUTE

    session.dismiss(NotificationFlag.MESSAGE_ON_ROUTE)
    assert not session.handle_status_event({"travel_id": 11, "status": "in transit"})
    assert not session.snapshot().message_on_route

    assert session.handle_status_event({"status": "finished"})
    assert not session.handle_status_event({"status": "finished"})
    assert session.snapshot().travel_status is TravelStatus.FINISHED


@pytest.mark.anyio
async def test_out_of_order_event_is_ignored() -> None:
    session = make_session(DummyBackend())
    assert not session.handle_status_event({"status": "finished"})
    assert not session.handle_status_event({"status": "in transit"})
    assert session.travel.status is TravelStatus.UNSET


@pytest.mark.anyio
async def test_end_to_end_with_rating_and_reset() -> None:
    backend = DummyBackend()
    session = make_session(backend)
    session.location_source.push(Coordinate(lat=-23.6, lng=-46.7))
    await session.start()
    try:
        while session.client_position == DEFAULT:
            await asyncio.sleep(0)

        place = Coordinate(lat=-23.0, lng=-46.0)
        await session.set_origin("A St", place)
        await session.set_destination("B Ave")
        assert session.center == place

        await session.request_ride()
        session.handle_status_event({"travel_id": 11, "status": "in transit"})
        session.handle_status_event({"travel_id": 11, "status": "finished"})

        rating = await session.submit_rating(60, "good")
        assert (rating.submitted, rating.stars, rating.label) == (True, 3, "Regular")
        assert session.snapshot().rating_submitted
        assert backend.requests[-1].url.params["stars"] == "3"

        session.reset_session()
        state = session.snapshot()
        assert state.travel_status is TravelStatus.UNSET
        assert (state.origin, state.destination, state.has_origin) == ("", "", False)
        assert state.route is None
        assert state.travel is None
        assert state.center == Coordinate(lat=-23.6, lng=-46.7)
        assert state.notice is None
    finally:
        await session.close()


@pytest.mark.anyio
async def test_rating_failure_is_surfaced_without_changing_status() -> None:
    def reply(request: httpx.Request) -> httpx.Response:
        if "/rating" in request.url.path:
            return httpx.Response(500, json={"message": "Rating service down"})
        return DummyBackend.accept(request)

    session = make_session(DummyBackend(reply))
    await _choose(session, "A St", "B Ave")
    await session.request_ride()
    session.handle_status_event({"status": "in transit"})
    session.handle_status_event({"status": "finished"})

    rating = await session.submit_rating(80, "")

    assert not rating.submitted
    state = session.snapshot()
    assert state.travel_status is TravelStatus.FINISHED
    assert state.rating_error == "Rating service down"
    assert not state.rating_submitted


@pytest.mark.anyio
async def test_reset_during_active_travel_is_rejected() -> None:
    session = make_session(DummyBackend())
    await _choose(session, "A St", "B Ave")
    await session.request_ride()
    with pytest.raises(TravelTransitionError):
        session.reset_session()
    assert session.origin == "A St"


@pytest.mark.anyio
async def test_old_error_is_not_resurrected_after_full_cycle() -> None:
    session = make_session(DummyBackend())
    await session.set_origin("A St")
    await session.request_ride()
    assert session.is_active(NotificationFlag.REQUEST_ERROR)

    await session.set_destination("B Ave")
    await session.request_ride()
    session.handle_status_event({"status": "in transit"})
    session.handle_status_event({"status": "finished"})
    session.reset_session()

    assert session.travel.status is TravelStatus.UNSET
    assert not session.is_active(NotificationFlag.REQUEST_ERROR)
    assert session.snapshot().request_error is None


@pytest.mark.anyio
async def test_route_change_clears_previous_route() -> None:
    directions = DummyDirections()
    session = make_session(DummyBackend(), directions)
    await _choose(session, "A St", "B Ave")
    first = session.route
    await session.set_destination("A St")
    assert session.route is None
    await session.set_destination("B Ave")
    assert session.route == first
    assert directions.calls == [("A St", "B Ave")]


def test_distance_defaults_to_sentinel() -> None:
    request = build_travel_request(Route(origin="A", destination="B"))
    assert request.distance_km == 100
    request = build_travel_request(Route(origin="A", destination="B", leg_distances_m=[2500]))
    assert request.model_dump(by_alias=True) == {"from": "A", "to": "B", "distance": 2.5}


@pytest.mark.anyio
async def test_cancelled_request_returns_to_unset() -> None:
    never = asyncio.Event()

    async def reply(request: httpx.Request) -> httpx.Response:
        if len(backend.requests) == 1:
            await never.wait()
        return DummyBackend.accept(request)

    backend = DummyBackend(reply)
    session = make_session(backend)
    await _choose(session, "A St", "B Ave")

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(session.request_ride(), 0.05)

    state = session.snapshot()
    assert state.travel_status is TravelStatus.UNSET
    assert state.travel is None
    assert state.can_request_ride
    session.reset_session()
    await _choose(session, "A St", "C Rd")
    travel = await session.request_ride()
    assert travel is not None
    assert session.travel.status is TravelStatus.WAITING_FOR_DRIVER
    assert len(backend.requests) == 2


@pytest.mark.anyio
async def test_unexpected_backend_failure_returns_to_unset() -> None:
    def reply(request: httpx.Request) -> httpx.Response:
        raise RuntimeError("transport bug")

    session = make_session(DummyBackend(reply))
    await _choose(session, "A St", "B Ave")

    with pytest.raises(RuntimeError):
        await session.request_ride()

    assert session.travel.status is TravelStatus.UNSET
    assert session.snapshot().can_request_ride


@pytest.mark.anyio
async def test_locked_origin_edit_leaves_state_untouched() -> None:
    session = make_session(DummyBackend())
    await _choose(session, "A St", "B Ave")
    await session.request_ride()
    session.has_origin = False
    before = session.snapshot()

    with pytest.raises(TravelTransitionError):
        await session.set_origin("C Rd", Coordinate(lat=-22.9, lng=-43.2))

    assert session.snapshot() == before
    assert not session.has_origin


@pytest.mark.anyio
async def test_reset_forgets_cached_routes() -> None:
    directions = DummyDirections()
    session = make_session(DummyBackend(), directions)
    await _choose(session, "A St", "B Ave")
    await session.request_ride()
    session.handle_status_event({"status": "in transit"})
    session.handle_status_event({"status": "finished"})

    session.reset_session()
    await _choose(session, "A St", "B Ave")

    assert directions.calls == [("A St", "B Ave"), ("A St", "B Ave")]
    assert session.snapshot().can_request_ride


def test_identity_update_keeps_token() -> None:
    identity = RiderIdentity(Rider(id=7, balance=50.0), "tok")

    identity.update_user(Rider(id=7, balance=37.5))

    assert identity.user is not None and identity.user.balance == 37.5
    assert identity.token == "tok"
    assert identity.signed_in
