import httpx
import logging
from typing import Optional
from app.core.config import settings
from app.core.metrics import NOTIFICATIONS

logger = logging.getLogger(__name__)


class NotificationClient:
    """Tells the notification service (emails to owners) about reviewer decisions."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        enabled: Optional[bool] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or settings.NOTIFICATION_SERVICE_URL
        self.enabled = settings.NOTIFICATIONS_ENABLED if enabled is None else enabled
        self.timeout = settings.HTTP_TIMEOUT
        self.transport = transport

    async def notify_transition(self, item, record) -> bool:
        """Returns True if the notification service accepted the event.

        Failures are logged and counted, never raised: the transition is
        already committed when this runs.
        """
        if not self.enabled:
            NOTIFICATIONS.labels(status="disabled").inc()
            return False

        payload = {
            "itemId": item.id,
            "kind": item.kind.value,
            "title": item.title,
            "ownerId": item.owner_id,
            "actorId": record.actor_id,
            "action": record.action,
            "fromStatus": record.from_status.value,
            "toStatus": record.to_status.value,
            "reason": record.reason,
            "occurredAt": record.occurred_at.isoformat(),
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(f"{self.base_url}/api/notifications/workflow", json=payload)
                response.raise_for_status()
            except httpx.HTTPError as e:
                NOTIFICATIONS.labels(status="error").inc()
                logger.warning("failed to notify %s about item %s: %s: %s", item.owner_id, item.id, type(e).__name__, e)
                return False

        NOTIFICATIONS.labels(status="success").inc()
        return True

notification_client = NotificationClient()
