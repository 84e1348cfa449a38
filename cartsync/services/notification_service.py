# cartsync/services/notification_service.py
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Callable, List

from pydantic import BaseModel, Field

from cartsync.utils.logging import get_logger

logger = get_logger(__name__)


class Notification(BaseModel):
    level: str  # success | info | error
    message: str
    description: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationService:
    """
    Serwis do powiadomien dla uzytkownika (toasty w UI).
    Kazde powiadomienie jest logowane i trafia do kolejki, z ktorej UI je odbiera.
    Opcjonalny listener dostaje je od razu.
    """

    def __init__(self, maxlen: int = 100, listener: Callable[[Notification], None] | None = None):
        self._queue: deque[Notification] = deque(maxlen=maxlen)
        self._lock = threading.Lock()
        self.listener = listener

    def _push(self, level: str, message: str, description: str = "") -> Notification:
        note = Notification(level=level, message=message, description=description)
        log = logger.error if level == "error" else logger.info
        log(f"[NOTIFICATION] {level}: {message}" + (f" - {description}" if description else ""))

        with self._lock:
            self._queue.append(note)

        if self.listener:
            self.listener(note)
        return note

    def success(self, message: str, description: str = "") -> Notification:
        return self._push("success", message, description)

    def info(self, message: str, description: str = "") -> Notification:
        return self._push("info", message, description)

    def error(self, message: str, description: str = "") -> Notification:
        return self._push("error", message, description)

    @property
    def history(self) -> List[Notification]:
        with self._lock:
            return list(self._queue)

    def drain(self) -> List[Notification]:
        with self._lock:
            notes = list(self._queue)
            self._queue.clear()
        return notes
