from __future__ import annotations

from typing import Any, Dict, List, Optional

from mockchain.logging import get_logger
from mockchain.storage.models import Notification, RequestLog


def project_channel(project_id: Any) -> str:
    return f"notification#project_{project_id}"


def user_channel(user_id: Any) -> str:
    return f"user_{user_id}#notifications"


def log_payload(log: RequestLog) -> Dict[str, Any]:
    return {
        "id": log.id,
        "project_id": log.project_id,
        "endpoint_id": log.endpoint_id,
        "stateful_endpoint_id": log.stateful_endpoint_id,
        "user_id": log.user_id,
        "request_method": log.request_method,
        "request_path": log.request_path,
        "response_status_code": log.response_status_code,
        "latency_ms": log.latency_ms,
        "created_at": log.created_at.isoformat() if log.created_at else None,
    }


class NotificationService:
    """Records a notification for a request log and fans it out over pub/sub."""

    def __init__(self, store: Any, cache: Any = None, *, channel: str) -> None:
        self.store = store
        self.cache = cache
        self.channel = channel
        self.logger = get_logger(__name__)

    def channels_for(self, log: RequestLog) -> List[str]:
        channels = []
        if log.project_id is not None:
            channels.append(project_channel(log.project_id))
        if log.user_id:
            channels.append(user_channel(log.user_id))
        if self.channel:
            channels.append(self.channel)
        return channels

    async def notify(
        self,
        log: RequestLog,
        *,
        endpoint_id: Optional[int] = None,
        is_stateful: bool = True,
    ) -> Optional[Notification]:
        notification = self.store.create_notification(
            log.id,
            endpoint_id=endpoint_id,
            user_id=log.user_id,
            is_stateful=is_stateful,
        )
        if self.cache is None:
            self.logger.debug("notification_publish_skipped", notification_id=notification.id)
            return notification
        message = {
            "type": "request_log",
            "notification_id": notification.id,
            "log": log_payload(log),
        }
        for channel in self.channels_for(log):
            try:
                await self.cache.publish(channel, message)
            except Exception as exc:
                self.logger.warning(
                    "notification_publish_failed", channel=channel, error=str(exc)
                )
        return notification
