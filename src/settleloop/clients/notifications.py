"""In-memory notification sink."""

import logging

from ..models import Notification

logger = logging.getLogger(__name__)


class InMemoryNotificationSink:
    """Keeps notifications newest first."""

    def __init__(self):
        """Initialize the sink."""
        self.notifications: list[Notification] = []

    def notify(self, notification: Notification) -> Notification:
        """Store a notification."""
        self.notifications.insert(0, notification)
        logger.info(f"Notification [{notification.type}] {notification.title}")
        return notification

    def unread_count(self) -> int:
        return sum(1 for notification in self.notifications if not notification.read)

    def mark_all_as_read(self):
        for notification in self.notifications:
            notification.read = True

    def recent(self, limit: int = 10) -> list[Notification]:
        """Get the most recent notifications."""
        return self.notifications[:limit]
