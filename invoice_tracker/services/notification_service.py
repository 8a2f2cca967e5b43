"""User-facing notifications (toast messages)."""
import logging
from typing import Dict, List

logger = logging.getLogger(__name__)

SUCCESS = 'success'
ERROR = 'error'


class Notifier:
    """Fire-and-forget notification surface. The base class only logs."""

    def notify(self, kind: str, message: str) -> None:
        if kind == ERROR:
            logger.warning(f"[NOTIFY] {message}")
        else:
            logger.info(f"[NOTIFY] {message}")

    def success(self, message: str) -> None:
        self.notify(SUCCESS, message)

    def error(self, message: str) -> None:
        self.notify(ERROR, message)


class CollectingNotifier(Notifier):
    """Keeps the messages so they can be returned with a JSON response."""

    def __init__(self):
        self.messages: List[Dict[str, str]] = []

    def notify(self, kind: str, message: str) -> None:
        super().notify(kind, message)
        self.messages.append({'kind': kind, 'message': message})
