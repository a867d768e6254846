"""Notification collaborator interface."""

from abc import ABC, abstractmethod

from evreserve.logging import get_logger

logger = get_logger(__name__)


class NotificationSender(ABC):
    """Delivers a message to a user's e-mail address."""

    @abstractmethod
    async def send(self, email: str, subject: str, body: str) -> None:
        pass


class LogNotificationSender(NotificationSender):
    """Writes notifications to the log instead of delivering them.

    Used where no mail service is wired in, e.g. local runs.
    """

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    async def send(self, email: str, subject: str, body: str) -> None:
        self.sent.append((email, subject, body))
        logger.info("notification_logged", email=email, subject=subject)
