"""Notification dispatcher adapters.

Delivery itself (email, push) lives outside this service. The engine only
hands requests to a dispatcher after a successful commit:

    - LoggingNotificationDispatcher: writes each request to the structured log.
    - RedisNotificationDispatcher:   pushes JSON onto a Redis list consumed by
                                     the delivery workers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from trade_settlement.infrastructure.redis_client import enqueue_notification
from trade_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from trade_settlement.config import Settings
    from trade_settlement.domain.collaborators import (
        NotificationDispatcher,
        NotificationRequest,
    )

logger = get_logger(__name__)


class LoggingNotificationDispatcher:
    async def dispatch(self, request: NotificationRequest) -> None:
        logger.info(
            "notification.dispatched",
            recipient_id=request.recipient_id,
            template=request.template,
            payload=request.payload,
        )


class RedisNotificationDispatcher:
    """Queue notifications on a Redis list for the delivery workers."""

    def __init__(self, list_key: str) -> None:
        self._list_key = list_key

    async def dispatch(self, request: NotificationRequest) -> None:
        await enqueue_notification(self._list_key, request.to_dict())
        logger.debug(
            "notification.queued",
            recipient_id=request.recipient_id,
            template=request.template,
        )


def build_notification_dispatcher(settings: Settings) -> NotificationDispatcher:
    if settings.notification_backend == "redis":
        return RedisNotificationDispatcher(settings.redis_notification_list)
    return LoggingNotificationDispatcher()
