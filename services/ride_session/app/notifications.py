"""Status-gated notices shown to the rider.

Every flag is raised for one *status entry*: the travel status together with
the number of transitions the session has made so far. A flag is visible only
while that same entry is current, so a notice tied to a status the session has
left never renders again, even if the status is entered a second time.
"""

from __future__ import annotations

from dataclasses import dataclass

from .schemas import Notice, NotificationFlag, TravelStatus


@dataclass(frozen=True)
class StatusEntry:
    status: TravelStatus
    seq: int


@dataclass(frozen=True)
class _Raised:
    entry: StatusEntry
    message: str | None = None


_PRECEDENCE = (
    NotificationFlag.REQUEST_ERROR,
    NotificationFlag.NOTIFICATION_WAITING,
    NotificationFlag.MESSAGE_ON_ROUTE,
    NotificationFlag.RATING_ERROR,
    NotificationFlag.RATING_SUBMITTED,
)

_GATES = {
    NotificationFlag.REQUEST_ERROR: TravelStatus.UNSET,
    NotificationFlag.NOTIFICATION_WAITING: TravelStatus.WAITING_FOR_DRIVER,
    NotificationFlag.MESSAGE_ON_ROUTE: TravelStatus.IN_TRANSIT,
    NotificationFlag.RATING_SUBMITTED: TravelStatus.FINISHED,
    NotificationFlag.RATING_ERROR: TravelStatus.FINISHED,
}

_TEMPLATES = {
    NotificationFlag.REQUEST_ERROR: ("critical", "Could not request a ride"),
    NotificationFlag.NOTIFICATION_WAITING: ("warning", "Your driver will arrive soon"),
    NotificationFlag.MESSAGE_ON_ROUTE: (
        "normal",
        "Hey, why not order a water or a soda for the ride :)",
    ),
    NotificationFlag.RATING_SUBMITTED: ("normal", "Rating sent, all went well!"),
    NotificationFlag.RATING_ERROR: ("critical", "Could not send your rating"),
}


class NotificationBoard:
    """Holds the raised flags; never touches the travel status."""

    def __init__(self) -> None:
        self._raised: dict[NotificationFlag, _Raised] = {}

    def raise_flag(
        self, flag: NotificationFlag, entry: StatusEntry, message: str | None = None
    ) -> bool:
        """Raise ``flag`` for ``entry``; returns ``False`` if the gate does not match."""

        if _GATES[flag] is not entry.status:
            return False
        self._raised[flag] = _Raised(entry=entry, message=message)
        return True

    def dismiss(self, flag: NotificationFlag) -> None:
        self._raised.pop(flag, None)

    def clear(self) -> None:
        self._raised.clear()

    def is_active(self, flag: NotificationFlag, entry: StatusEntry) -> bool:
        raised = self._raised.get(flag)
        return raised is not None and raised.entry == entry

    def message(self, flag: NotificationFlag, entry: StatusEntry) -> str | None:
        if not self.is_active(flag, entry):
            return None
        return self._raised[flag].message

    def visible(self, entry: StatusEntry) -> Notice | None:
        """Return the single notice to render for ``entry``, if any."""

        for flag in _PRECEDENCE:
            if self.is_active(flag, entry):
                severity, title = _TEMPLATES[flag]
                return Notice(
                    flag=flag,
                    severity=severity,
                    title=title,
                    message=self._raised[flag].message,
                )
        return None
