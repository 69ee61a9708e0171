"""Client for the trip backend HTTP API."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from opentelemetry import trace
from pydantic import ValidationError

from .schemas import Rider, Travel, TravelRequest

logger = logging.getLogger(__name__)

_tracer = trace.get_tracer(__name__)


class BackendError(Exception):
    """The backend refused a call or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TravelRequestRejected(BackendError):
    """``newTravel`` did not create a trip."""


class RatingSubmissionError(BackendError):
    """The driver rating was not stored."""


def _error_message(response: httpx.Response, fallback: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return fallback
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return fallback


class BackendClient:
    """Thin wrapper over :class:`httpx.AsyncClient` with bearer authentication."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url, timeout=timeout, transport=transport
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    @staticmethod
    def _auth(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    async def create_travel(
        self, user_id: Any, token: str, request: TravelRequest
    ) -> tuple[Travel, Rider]:
        """Submit a ride request and split the reply into travel and rider."""

        with _tracer.start_as_current_span("backend.new_travel"):
            try:
                response = await self._client.post(
                    f"/travels/newTravel/users/{user_id}",
                    json=request.model_dump(by_alias=True),
                    headers=self._auth(token),
                )
            except httpx.HTTPError as exc:
                logger.warning("newTravel transport error: %s", exc)
                raise TravelRequestRejected("Could not reach the travel service") from exc
        if response.is_error:
            raise TravelRequestRejected(
                _error_message(response, "The travel request was refused"),
                response.status_code,
            )
        try:
            body = response.json()
        except ValueError:
            body = None
        user = body.pop("user", None) if isinstance(body, dict) else None
        if not isinstance(user, dict):
            raise TravelRequestRejected(
                "Malformed travel response", response.status_code
            )
        try:
            return Travel.model_validate(body), Rider.model_validate(user)
        except ValidationError as exc:
            raise TravelRequestRejected(
                "Malformed travel response", response.status_code
            ) from exc

    async def rate_driver(
        self, driver_id: Any, token: str, stars: int, description: str
    ) -> None:
        with _tracer.start_as_current_span("backend.rate_driver"):
            try:
                response = await self._client.post(
                    f"/drivers/{driver_id}/rating",
                    params={"stars": stars, "description": description},
                    headers=self._auth(token),
                )
            except httpx.HTTPError as exc:
                raise RatingSubmissionError("Could not reach the rating service") from exc
        if response.is_error:
            raise RatingSubmissionError(
                _error_message(response, "The rating was refused"),
                response.status_code,
            )
