"""Device location tracking."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Callable, Protocol

from pydantic import ValidationError

from src.common.logging import get_logger

from .schemas import Coordinate

logger = get_logger(__name__)


class LocationUnavailableError(Exception):
    """Geolocation is unsupported or the rider denied it."""


class LocationSource(Protocol):
    def watch(self) -> AsyncIterator[Any]:
        """Yield fixes until the iterator is closed."""


_UNAVAILABLE = object()


class QueueLocationSource:
    """Fixes pushed by the presentation layer as the browser reports them.

    Only the newest unread fix is kept, so nothing piles up while no watch is
    running. A pending unavailability signal is never replaced by a fix.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=1)
        self._unavailable_pending = False
        self.watchers = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def push(self, fix: Any) -> None:
        if self._queue.full():
            if self._unavailable_pending:
                return
            self._queue.get_nowait()
        self._queue.put_nowait(fix)

    def unavailable(self) -> None:
        if self._queue.full():
            self._queue.get_nowait()
        self._unavailable_pending = True
        self._queue.put_nowait(_UNAVAILABLE)

    async def watch(self) -> AsyncIterator[Any]:
        self.watchers += 1
        try:
            while True:
                fix = await self._queue.get()
                if fix is _UNAVAILABLE:
                    self._unavailable_pending = False
                    raise LocationUnavailableError("geolocation unavailable")
                yield fix
        finally:
            self.watchers -= 1


class LocationTracker:
    """Observe a location source and publish every valid fix.

    The watch runs in its own task. :meth:`stop` cancels it and waits for the
    source iterator to be closed; using the tracker as an async context
    manager makes that happen on any exit path.
    """

    def __init__(
        self, source: LocationSource, on_fix: Callable[[Coordinate], None]
    ) -> None:
        self._source = source
        self._on_fix = on_fix
        self._task: asyncio.Task[None] | None = None
        self.latest: Coordinate | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run(), name="location-watch")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def __aenter__(self) -> "LocationTracker":
        self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    async def _run(self) -> None:
        watch = self._source.watch()
        try:
            async for raw in watch:
                fix = self._coerce(raw)
                if fix is None or fix == self.latest:
                    continue
                self.latest = fix
                self._on_fix(fix)
        except LocationUnavailableError as exc:
            logger.info("location.unavailable", reason=str(exc))
        finally:
            aclose = getattr(watch, "aclose", None)
            if aclose is not None:
                await aclose()
        logger.info("location.watch_ended", last_fix=self.latest)

    @staticmethod
    def _coerce(raw: Any) -> Coordinate | None:
        if isinstance(raw, Coordinate):
            return raw
        try:
            return Coordinate.model_validate(raw)
        except ValidationError:
            logger.warning("location.invalid_fix", fix=raw)
            return None
