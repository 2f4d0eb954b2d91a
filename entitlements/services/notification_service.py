"""
Notification trigger interface and dispatch.

The engine only decides when a threshold event fires. Delivery (push,
email, in-app feed) belongs to whatever NotificationTrigger is plugged in.
Dispatch never raises: a failing or slow trigger must not affect a quota
decision or roll back a committed counter change.
"""
import enum
import logging
from abc import ABC, abstractmethod
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

logger = logging.getLogger(__name__)


class NotificationType(str, enum.Enum):
    BROWSE_LIMIT_WARNING = "browse_limit_warning"
    LISTING_LIMIT_REACHED = "listing_limit_reached"
    SUBSCRIPTION_EXPIRING_SOON = "subscription_expiring_soon"
    SUBSCRIPTION_EXPIRED = "subscription_expired"


@dataclass(frozen=True)
class NotificationEvent:
    user_id: str
    type: NotificationType
    payload: Dict[str, Any] = field(default_factory=dict)


class NotificationTrigger(ABC):
    """External collaborator that receives threshold events."""

    @abstractmethod
    def notify(self, event: NotificationEvent) -> None:
        """Deliver or enqueue a single event."""


class LoggingNotificationTrigger(NotificationTrigger):
    """Default trigger: records events in the application log."""

    def notify(self, event: NotificationEvent) -> None:
        logger.info(
            f"Notification event: user_id={event.user_id}, type={event.type.value}, payload={event.payload}"
        )


class NotificationDispatcher:
    """
    Fire-and-forget fan-out to a NotificationTrigger.

    With an executor, events are handed off and the caller returns
    immediately; without one, the trigger runs inline but its exceptions are
    still contained.
    """

    def __init__(self, trigger: NotificationTrigger, executor: Optional[Executor] = None):
        self.trigger = trigger
        self.executor = executor

    def emit(self, events: Iterable[NotificationEvent]) -> None:
        for event in events:
            if self.executor is None:
                self._deliver(event)
                continue
            try:
                self.executor.submit(self._deliver, event)
            except RuntimeError:
                # Executor already shut down
                logger.warning(f"Notification dropped, dispatcher closed: type={event.type.value}, user_id={event.user_id}")

    def _deliver(self, event: NotificationEvent) -> None:
        try:
            self.trigger.notify(event)
        except Exception:
            logger.exception(
                f"Notification trigger failed: type={event.type.value}, user_id={event.user_id}"
            )

    def close(self) -> None:
        if self.executor is not None:
            self.executor.shutdown(wait=True)
