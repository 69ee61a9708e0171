from functools import lru_cache
from typing import TYPE_CHECKING, Optional

from src.common.settings import Settings as CommonSettings

from .schemas import Coordinate

if TYPE_CHECKING:
    from .orchestrator import SessionOrchestrator

SERVICE_NAME = "ride_session"


class Settings(CommonSettings):
    backend_base_url: str = "http://localhost:3000"
    backend_timeout: float = 10.0
    google_maps_api_key: str | None = None
    google_maps_language: str = "pt-BR"
    google_maps_region: str | None = "br"
    google_maps_timeout: float = 5.0
    travel_status_topic: str = "travel.status"
    travel_status_group: str | None = None
    default_lat: float = -23.55052
    default_lng: float = -46.633309
    rider_user_id: str | None = None
    rider_token: str | None = None

    @property
    def default_coordinate(self) -> Coordinate:
        return Coordinate(lat=self.default_lat, lng=self.default_lng)


@lru_cache
def get_settings() -> Settings:
    return Settings()


_orchestrator: Optional["SessionOrchestrator"] = None


def get_orchestrator() -> "SessionOrchestrator":
    """Return the session orchestrator built for this process."""

    global _orchestrator
    if _orchestrator is None:
        from .orchestrator import build_orchestrator

        _orchestrator = build_orchestrator(get_settings())
    return _orchestrator


def reset_orchestrator() -> None:
    global _orchestrator
    _orchestrator = None
