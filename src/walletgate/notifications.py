"""User-visible notifications (success/info/warning/error toasts)."""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List

from loguru import logger

from .config import Config


class NotificationLevel(str, Enum):
    """Severity of a user-visible notification."""

    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class Notification:
    """A single message surfaced to the operator."""

    level: NotificationLevel
    message: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "message": self.message,
            "timestamp": self.timestamp,
        }


_LOG_METHODS = {
    NotificationLevel.SUCCESS: "success",
    NotificationLevel.INFO: "info",
    NotificationLevel.WARNING: "warning",
    NotificationLevel.ERROR: "error",
}


class Notifier:
    """
    Bounded notification history with subscriber fan-out.

    Subscribers may be sync or async callables taking a Notification.
    Async subscribers are scheduled on the running loop. Subscriber
    errors are logged and never reach the caller.
    """

    def __init__(self, history_size: int = Config.NOTIFICATION_HISTORY):
        self._history: Deque[Notification] = deque(maxlen=history_size)
        self._callbacks: List[Callable] = []

    @property
    def history(self) -> List[Notification]:
        return list(self._history)

    def register_callback(self, callback: Callable) -> None:
        self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def notify(self, level: NotificationLevel, message: str) -> Notification:
        """
        Record and publish a notification.

        Args:
            level: Notification severity
            message: Text shown to the user

        Returns:
            The recorded Notification
        """
        notification = Notification(level=level, message=message)
        self._history.append(notification)
        getattr(logger, _LOG_METHODS[level])(f"[notify] {message}")

        for callback in list(self._callbacks):
            try:
                result = callback(notification)
                if asyncio.iscoroutine(result):
                    asyncio.ensure_future(result).add_done_callback(
                        self._report_callback_failure
                    )
            except Exception as e:
                logger.error(f"Error in notification callback: {e}")
        return notification

    @staticmethod
    def _report_callback_failure(task: "asyncio.Future") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Error in async notification callback: {exc}")

    def success(self, message: str) -> Notification:
        return self.notify(NotificationLevel.SUCCESS, message)

    def info(self, message: str) -> Notification:
        return self.notify(NotificationLevel.INFO, message)

    def warning(self, message: str) -> Notification:
        return self.notify(NotificationLevel.WARNING, message)

    def error(self, message: str) -> Notification:
        return self.notify(NotificationLevel.ERROR, message)
