from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class TravelStatus(str, Enum):
    UNSET = "unset"
    REQUESTED = "requested"
    WAITING_FOR_DRIVER = "waiting for driver"
    IN_TRANSIT = "in transit"
    FINISHED = "finished"


class NotificationFlag(str, Enum):
    REQUEST_ERROR = "request_error"
    NOTIFICATION_WAITING = "notification_waiting"
    MESSAGE_ON_ROUTE = "message_on_route"
    RATING_SUBMITTED = "rating_submitted"
    RATING_ERROR = "rating_error"


class Coordinate(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class Route(BaseModel):
    origin: str
    destination: str
    leg_distances_m: list[int] = Field(default_factory=list)
    polyline: str = ""
    bounds: Optional[dict[str, Any]] = None


class TravelRequest(BaseModel):
    """Body of ``POST /travels/newTravel/users/{userId}``."""

    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(alias="from")
    to: str
    distance_km: float = Field(alias="distance")


class Driver(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Any
    name: Optional[str] = None
    image: Optional[str] = None


class Travel(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Any = None
    driver: Optional[Driver] = None


class Rider(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Any
    balance: Optional[float] = None


class Notice(BaseModel):
    flag: NotificationFlag
    severity: str
    title: str
    message: Optional[str] = None


class AddressUpdate(BaseModel):
    address: str
    place: Optional[Coordinate] = None


class IdentityUpdate(BaseModel):
    user: Rider
    token: str


class TravelStatusEvent(BaseModel):
    travel_id: Any = None
    status: TravelStatus


class RatingRequest(BaseModel):
    rating: int
    description: str = ""


class RatingResponse(BaseModel):
    submitted: bool
    stars: int
    label: str


class SessionState(BaseModel):
    """Everything the presentation layer renders."""

    origin: str
    destination: str
    has_origin: bool
    route: Optional[Route]
    center: Coordinate
    client_position: Coordinate
    travel: Optional[Travel]
    travel_status: TravelStatus
    rider: Optional[Rider]
    request_error: Optional[str]
    notification_waiting: bool
    message_on_route: bool
    rating_submitted: bool
    rating_error: Optional[str]
    notice: Optional[Notice]
    can_request_ride: bool
