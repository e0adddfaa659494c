"""
In-app notifications, kept in memory per user.
"""

import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Literal

logger = logging.getLogger(__name__)

NotificationType = Literal["info", "success", "warning", "reminder"]


@dataclass
class Notification:
    id: str
    title: str
    message: str
    type: NotificationType = "info"
    timestamp: datetime = field(default_factory=datetime.now)
    is_read: bool = False


class NotificationStore:
    """Newest-first notification lists keyed by user id."""

    def __init__(self):
        self._by_user: Dict[int, List[Notification]] = {}
        self._ids = itertools.count(1)

    def list(self, user_id: int) -> List[Notification]:
        return list(self._by_user.get(user_id, []))

    def unread_count(self, user_id: int) -> int:
        return sum(1 for n in self._by_user.get(user_id, []) if not n.is_read)

    def add(self, user_id: int, title: str, message: str, type: NotificationType = "info") -> Notification:
        notification = Notification(id=str(next(self._ids)), title=title, message=message, type=type)
        self._by_user.setdefault(user_id, []).insert(0, notification)
        logger.debug(f"Notification {notification.id} added for user {user_id}")
        return notification

    def mark_as_read(self, user_id: int, notification_id: str) -> bool:
        for notification in self._by_user.get(user_id, []):
            if notification.id == notification_id:
                notification.is_read = True
                return True
        return False

    def mark_all_as_read(self, user_id: int) -> int:
        changed = 0
        for notification in self._by_user.get(user_id, []):
            if not notification.is_read:
                notification.is_read = True
                changed += 1
        return changed
