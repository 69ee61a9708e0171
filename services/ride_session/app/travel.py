"""Жизненный цикл поездки: единственное место, где меняется статус."""

from __future__ import annotations

from typing import Any

from src.common.logging import get_logger
from src.common.metrics import TRAVEL_REQUESTS

from . import deps
from .backend import BackendClient, TravelRequestRejected
from .notifications import NotificationBoard, StatusEntry
from .schemas import NotificationFlag, Rider, Travel, TravelRequest, TravelStatus

logger = get_logger(__name__)


class TravelTransitionError(Exception):
    """Переход недопустим из текущего статуса."""


class RiderIdentity:
    """Данные авторизованного пассажира: запись пользователя и токен."""

    def __init__(self, user: Rider | None = None, token: str | None = None) -> None:
        self.user = user
        self.token = token

    @property
    def signed_in(self) -> bool:
        return self.user is not None and bool(self.token)

    def sign_in(self, user: Rider, token: str) -> None:
        self.user = user
        self.token = token

    def update_user(self, user: Rider) -> None:
        """Обновить запись пользователя из ответа бэкенда, токен не меняется."""
        self.user = user


class TravelSession:
    """Управляет переходами статуса поездки.

    Статус пишет только этот класс. Ответ бэкенда применяется синхронно,
    без точек ожидания между обновлением поездки и пользователя, поэтому
    никто не увидит одно без другого.
    """

    def __init__(
        self,
        backend: BackendClient,
        identity: RiderIdentity,
        board: NotificationBoard,
        service_name: str = deps.SERVICE_NAME,
    ) -> None:
        self._backend = backend
        self._identity = identity
        self._board = board
        self._service_name = service_name
        self._status = TravelStatus.UNSET
        self._seq = 0
        self._generation = 0
        self.travel: Travel | None = None

    @property
    def status(self) -> TravelStatus:
        return self._status

    @property
    def entry(self) -> StatusEntry:
        return StatusEntry(self._status, self._seq)

    @property
    def can_request(self) -> bool:
        return self._status is TravelStatus.UNSET

    def _enter(self, status: TravelStatus) -> None:
        logger.info("travel.transition", source=self._status.value, target=status.value)
        self._status = status
        self._seq += 1

    async def request(self, request: TravelRequest) -> Travel | None:
        """Отправить заказ; ``None`` если бэкенд отказал или ответ устарел."""

        if not self.can_request:
            raise TravelTransitionError(
                f"cannot request a ride while status is {self._status.value!r}"
            )
        if not self._identity.signed_in:
            self._board.raise_flag(
                NotificationFlag.REQUEST_ERROR,
                self.entry,
                "Sign in before requesting a ride",
            )
            return None
        assert self._identity.user is not None and self._identity.token is not None
        generation = self._generation
        self._enter(TravelStatus.REQUESTED)
        try:
            travel, rider = await self._backend.create_travel(
                self._identity.user.id, self._identity.token, request
            )
        except TravelRequestRejected as exc:
            if generation != self._generation:
                logger.info("travel.late_rejection_ignored", reason=exc.message)
                return None
            TRAVEL_REQUESTS.labels(self._service_name, "rejected").inc()
            logger.warning("travel.rejected", reason=exc.message, code=exc.status_code)
            self._enter(TravelStatus.UNSET)
            self._board.raise_flag(NotificationFlag.REQUEST_ERROR, self.entry, exc.message)
            return None
        except BaseException:
            # Отмена или непредвиденная ошибка не должны оставить статус `requested`.
            if generation == self._generation and self._status is TravelStatus.REQUESTED:
                logger.warning("travel.request_aborted")
                self._enter(TravelStatus.UNSET)
            raise
        if generation != self._generation:
            logger.info("travel.late_response_ignored", travel_id=travel.id)
            return None
        TRAVEL_REQUESTS.labels(self._service_name, "accepted").inc()
        self.travel = travel
        self._identity.update_user(rider)
        self._enter(TravelStatus.WAITING_FOR_DRIVER)
        self._board.raise_flag(NotificationFlag.NOTIFICATION_WAITING, self.entry)
        return travel

    def mark_in_transit(self) -> bool:
        if not self._advance(TravelStatus.WAITING_FOR_DRIVER, TravelStatus.IN_TRANSIT):
            return False
        self._board.raise_flag(NotificationFlag.MESSAGE_ON_ROUTE, self.entry)
        return True

    def mark_finished(self) -> bool:
        return self._advance(TravelStatus.IN_TRANSIT, TravelStatus.FINISHED)

    def _advance(self, expected: TravelStatus, target: TravelStatus) -> bool:
        if self._status is target:
            logger.debug("travel.duplicate_event", status=target.value)
            return False
        if self._status is not expected:
            logger.warning(
                "travel.unexpected_event", status=self._status.value, target=target.value
            )
            return False
        self._enter(target)
        return True

    def matches(self, travel_id: Any) -> bool:
        if travel_id is None or self.travel is None or self.travel.id is None:
            return True
        return str(self.travel.id) == str(travel_id)

    def reset(self) -> None:
        """Завершить цикл после оценки; из пустого статуса ничего не делает."""

        if self._status is TravelStatus.UNSET:
            return
        if self._status is not TravelStatus.FINISHED:
            raise TravelTransitionError(
                f"cannot reset while status is {self._status.value!r}"
            )
        self.travel = None
        self._generation += 1
        self._enter(TravelStatus.UNSET)

    def close(self) -> None:
        # Поздние ответы после закрытия сессии отбрасываются.
        self._generation += 1
