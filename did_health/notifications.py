"""
Notification Center
===================

Per-user notification inbox plus live subscriber queues.

Subscribers (e.g. a WebSocket handler) get an asyncio.Queue and read
events from it; publishing never blocks.
"""

import uuid
import asyncio
import logging
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field

from .errors import NotFound, ValidationError
from .credential_issuer import format_timestamp, utcnow

logger = logging.getLogger(__name__)

NOTIFICATION_KINDS = ("info", "success", "warning", "error")


@dataclass
class Notification:
    id: str
    user_id: str
    title: str
    message: str
    kind: str = "info"
    metadata: Dict[str, Any] = field(default_factory=dict)
    is_read: bool = False
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "message": self.message,
            "type": self.kind,
            "metadata": dict(self.metadata),
            "isRead": self.is_read,
            "createdAt": self.created_at
        }


class NotificationCenter:
    """
    Stores notifications per user and fans them out to live subscribers

    Each inbox keeps at most max_inbox entries; older ones are dropped.
    """

    def __init__(self, queue_size: int = 100, max_inbox: int = 200):
        self.queue_size = queue_size
        self.max_inbox = max_inbox
        self._inboxes: Dict[str, List[Notification]] = {}
        self._subscribers: Dict[str, List[asyncio.Queue]] = {}

    def notify(
        self,
        user_id: str,
        title: str,
        message: str,
        kind: str = "info",
        metadata: Optional[Dict[str, Any]] = None
    ) -> Notification:
        """Record a notification and push it to the user's subscribers"""
        if kind not in NOTIFICATION_KINDS:
            raise ValidationError(f"Invalid notification kind: {kind}")

        notification = Notification(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=title,
            message=message,
            kind=kind,
            metadata=dict(metadata or {}),
            created_at=format_timestamp(utcnow())
        )
        inbox = self._inboxes.setdefault(user_id, [])
        inbox.append(notification)
        if len(inbox) > self.max_inbox:
            del inbox[:len(inbox) - self.max_inbox]

        event = {"event": "notification", **notification.to_dict()}
        for queue in self._subscribers.get(user_id, []):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Subscriber queue full for user %s, dropping event", user_id)

        return notification

    def inbox(self, user_id: str, unread_only: bool = False) -> List[Notification]:
        """Notifications for a user, newest first"""
        items = reversed(self._inboxes.get(user_id, []))
        return [n for n in items if not (unread_only and n.is_read)]

    def unread_count(self, user_id: str) -> int:
        return sum(1 for n in self._inboxes.get(user_id, []) if not n.is_read)

    def mark_read(self, notification_id: str, user_id: str) -> Notification:
        for notification in self._inboxes.get(user_id, []):
            if notification.id == notification_id:
                notification.is_read = True
                return notification
        raise NotFound(f"Notification not found: {notification_id}")

    # ==================== SUBSCRIPTIONS ====================

    def subscribe(self, user_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.setdefault(user_id, []).append(queue)
        logger.debug("Subscriber added for user %s", user_id)
        return queue

    def unsubscribe(self, user_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(user_id, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(user_id, None)

    def subscriber_count(self, user_id: str) -> int:
        return len(self._subscribers.get(user_id, []))
