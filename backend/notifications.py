# notifications.py — Notification persistence, presence and live push
import logging
import threading
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models import Notification, NotificationType

logger = logging.getLogger("teamhub.notifications")


class PresenceRegistry:
    """Online users and their open sockets: user_id -> {connection_id -> socket}.

    All reads and writes go through one lock; sends happen on a snapshot
    taken under the lock so a slow client never blocks registration.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._connections: Dict[str, Dict[str, Any]] = {}

    def register(self, user_id: str, socket: Any, connection_id: Optional[str] = None) -> str:
        connection_id = connection_id or str(uuid.uuid4())
        with self._lock:
            self._connections.setdefault(user_id, {})[connection_id] = socket
        return connection_id

    def unregister(self, user_id: str, connection_id: str) -> None:
        with self._lock:
            sockets = self._connections.get(user_id)
            if not sockets:
                return
            sockets.pop(connection_id, None)
            if not sockets:
                del self._connections[user_id]

    def is_online(self, user_id: str) -> bool:
        with self._lock:
            return bool(self._connections.get(user_id))

    def online_users(self) -> List[str]:
        with self._lock:
            return list(self._connections.keys())

    def connections_for(self, user_id: str) -> Dict[str, Any]:
        with self._lock:
            return dict(self._connections.get(user_id, {}))

    def connection_count(self) -> int:
        with self._lock:
            return sum(len(s) for s in self._connections.values())

    async def push(self, user_id: str, message: dict) -> int:
        """Send to every socket of a user. Dead sockets are dropped. Returns deliveries."""
        delivered = 0
        for connection_id, socket in self.connections_for(user_id).items():
            try:
                await socket.send_json(message)
                delivered += 1
            except Exception:
                logger.warning("Dropping dead socket %s for user %s", connection_id, user_id)
                self.unregister(user_id, connection_id)
        return delivered


# Global presence registry
presence = PresenceRegistry()


def notification_to_out(n: Notification) -> dict:
    return {
        "id": n.id,
        "type": n.type.value if isinstance(n.type, NotificationType) else n.type,
        "title": n.title,
        "message": n.message,
        "data": n.data or {},
        "isRead": n.read_at is not None,
        "readAt": n.read_at.isoformat() if n.read_at else None,
        "createdAt": n.created_at.isoformat() if n.created_at else None,
    }


async def notify(
    db: AsyncSession,
    user_id: str,
    type: NotificationType,
    title: str,
    message: str,
    data: Optional[dict] = None,
) -> Optional[Notification]:
    """Persist a notification and push it to the user's sockets.

    Fire-and-forget: the caller's own work is already committed, so a failure
    here is logged and reported as None rather than raised.
    """
    notification = Notification(user_id=user_id, type=type, title=title, message=message, data=data or {})
    db.add(notification)
    try:
        await db.commit()
    except SQLAlchemyError:
        logger.exception("Failed to store %s notification for user %s", type.value, user_id)
        await db.rollback()
        return None

    await presence.push(user_id, {"event": "notification", "data": notification_to_out(notification)})
    return notification


# ── Typed helpers ────────────────────────────────────────────

async def notify_task_assigned(db: AsyncSession, user_id: str, task_id: str, task_title: str, by_name: str):
    return await notify(
        db, user_id, NotificationType.TASK_ASSIGNED, "Task assigned",
        f"{by_name} assigned you \"{task_title}\"", {"taskId": task_id},
    )


async def notify_task_updated(db: AsyncSession, user_id: str, task_id: str, task_title: str,
                              by_name: str, fields: str):
    return await notify(
        db, user_id, NotificationType.TASK_UPDATED, "Task updated",
        f"{by_name} updated \"{task_title}\" ({fields})", {"taskId": task_id},
    )


async def notify_task_completed(db: AsyncSession, user_id: str, task_id: str, task_title: str, by_name: str):
    return await notify(
        db, user_id, NotificationType.TASK_COMPLETED, "Task completed",
        f"{by_name} completed \"{task_title}\"", {"taskId": task_id},
    )


async def notify_task_comment(db: AsyncSession, user_id: str, task_id: str, task_title: str,
                              by_name: str, preview: str):
    return await notify(
        db, user_id, NotificationType.TASK_COMMENT, "New comment",
        f"{by_name} on \"{task_title}\": {preview}", {"taskId": task_id},
    )
