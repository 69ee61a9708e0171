"""Интеграция с Google Maps Directions API и кеш маршрутов."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Protocol

import googlemaps
from googlemaps.exceptions import ApiError, Timeout, TransportError

from src.common.metrics import ROUTE_LOOKUP_DURATION, ROUTE_LOOKUPS

from . import deps
from .schemas import Route

logger = logging.getLogger(__name__)

STATUS_OK = "OK"
STATUS_ZERO_RESULTS = "ZERO_RESULTS"
STATUS_UNKNOWN_ERROR = "UNKNOWN_ERROR"
TRAVEL_MODE = "driving"
MAX_CACHED_ROUTES = 128

Pair = tuple[str, str]


class GoogleMapsError(Exception):
    """Ошибка при работе с Google Maps."""


@dataclass
class DirectionsResult:
    """Ответ сервиса маршрутов: статус и список маршрутов при ``OK``."""

    status: str
    routes: list[dict[str, Any]] = field(default_factory=list)


class DirectionsService(Protocol):
    async def directions(self, origin: str, destination: str) -> DirectionsResult:
        """Рассчитать маршрут на автомобиле между двумя адресами."""


class GoogleDirectionsService:
    """Обёртка над клиентом googlemaps с нужными настройками."""

    def __init__(self, settings: deps.Settings) -> None:
        if not settings.google_maps_api_key:
            raise GoogleMapsError("Отсутствует API-ключ Google Maps")
        try:
            self._client = googlemaps.Client(
                key=settings.google_maps_api_key,
                timeout=settings.google_maps_timeout,
            )
        except ValueError as exc:
            raise GoogleMapsError("Некорректный API-ключ Google Maps") from exc
        self._language = settings.google_maps_language
        self._region = settings.google_maps_region

    async def directions(self, origin: str, destination: str) -> DirectionsResult:
        # Клиент googlemaps синхронный, поэтому уводим вызов в отдельный поток.
        try:
            routes = await asyncio.to_thread(
                self._client.directions,
                origin,
                destination,
                mode=TRAVEL_MODE,
                language=self._language,
                region=self._region,
            )
        except ApiError as exc:
            return DirectionsResult(status=exc.status or STATUS_UNKNOWN_ERROR)
        except (TransportError, Timeout) as exc:
            logger.warning("Google Maps недоступен: %s", exc)
            return DirectionsResult(status=STATUS_UNKNOWN_ERROR)
        if not routes:
            return DirectionsResult(status=STATUS_ZERO_RESULTS)
        return DirectionsResult(status=STATUS_OK, routes=list(routes))


def route_from_directions(
    origin: str, destination: str, payload: dict[str, Any]
) -> Route:
    """Привести маршрут Google к виду, пригодному для отрисовки."""

    legs = payload.get("legs", [])
    distances = [
        int(leg["distance"]["value"])
        for leg in legs
        if leg.get("distance", {}).get("value") is not None
    ]
    return Route(
        origin=origin,
        destination=destination,
        leg_distances_m=distances,
        polyline=payload.get("overview_polyline", {}).get("points", ""),
        bounds=payload.get("bounds"),
    )


class RouteResolver:
    """Мемоизированный поиск маршрута по паре (откуда, куда).

    Успешные маршруты кешируются до сброса сессии (не больше
    ``max_routes``, старые вытесняются первыми), неудача запоминается только
    для последней пары: повтор той же пары не вызывает внешний сервис, а
    новый ввод адреса запускает поиск заново.
    """

    def __init__(
        self,
        service: DirectionsService | None,
        service_name: str = deps.SERVICE_NAME,
        max_routes: int = MAX_CACHED_ROUTES,
    ) -> None:
        self._service = service
        self._service_name = service_name
        self._max_routes = max_routes
        self._routes: OrderedDict[Pair, Route] = OrderedDict()
        self._inflight: dict[Pair, asyncio.Task[Route | None]] = {}
        self._last_failed: Pair | None = None

    async def resolve(self, origin: str, destination: str) -> Route | None:
        if not origin or not destination or origin == destination:
            return None
        pair = (origin, destination)
        if pair == self._last_failed:
            return None
        self._last_failed = None
        cached = self._routes.get(pair)
        if cached is not None:
            self._routes.move_to_end(pair)
            ROUTE_LOOKUPS.labels(self._service_name, "cached").inc()
            return cached
        if self._service is None:
            return None
        task = self._inflight.get(pair)
        if task is None:
            task = asyncio.ensure_future(self._lookup(pair))
            self._inflight[pair] = task
            task.add_done_callback(lambda _t: self._inflight.pop(pair, None))
        return await asyncio.shield(task)

    async def _lookup(self, pair: Pair) -> Route | None:
        assert self._service is not None
        start = time.monotonic()
        result = await self._service.directions(*pair)
        elapsed = time.monotonic() - start
        ROUTE_LOOKUP_DURATION.labels(self._service_name).observe(elapsed)
        ROUTE_LOOKUPS.labels(self._service_name, result.status.lower()).inc()
        if result.status != STATUS_OK or not result.routes:
            logger.info(
                "Маршрут %s -> %s не найден: статус %s", pair[0], pair[1], result.status
            )
            self._last_failed = pair
            return None
        route = route_from_directions(pair[0], pair[1], result.routes[0])
        self._routes[pair] = route
        while len(self._routes) > self._max_routes:
            self._routes.popitem(last=False)
        return route

    def clear(self) -> None:
        """Забыть найденные маршруты и последнюю неудачу."""

        self._routes.clear()
        self._last_failed = None

    def __len__(self) -> int:
        return len(self._routes)


@lru_cache
def get_directions_service() -> GoogleDirectionsService | None:
    """Вернуть закешированный клиент Google Maps либо `None`."""

    settings = deps.get_settings()
    if not settings.google_maps_api_key:
        logger.warning("Ключ Google Maps не задан, маршруты рассчитываться не будут")
        return None
    try:
        return GoogleDirectionsService(settings)
    except GoogleMapsError as exc:
        logger.error("Не удалось инициализировать Google Maps: %s", exc)
        return None
