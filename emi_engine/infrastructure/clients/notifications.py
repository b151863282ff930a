"""Notification sink HTTP client

Delivery is best-effort: one attempt per call, never retried here. The
channel and its own retry policy belong to the sink.
"""

import httpx
from typing import Dict
from emi_engine.config import settings
from emi_engine.domain.exceptions import NotificationDeliveryError
from emi_engine.domain.models import DeliveryResult, NotificationType
from emi_engine.domain.notifications import render_notification
from emi_engine.infrastructure.observability.metrics import notification_latency_histogram


class NotificationClient:
    """Client for sending templated notifications to users"""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        channel: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.notification_api_base
        self.timeout = timeout or settings.http_timeout_seconds
        self.channel = channel or settings.notification_channel
        self.transport = transport

    async def send(self, user_id: str, template_type: str, substitutions: Dict[str, str]) -> DeliveryResult:
        """
        Hand one notification to the sink.

        The payload carries the template type and substitutions, plus the
        rendered title/body for sinks that do not template themselves.

        Raises:
            NotificationDeliveryError: On timeout, HTTP errors, or unreachable sink
        """
        payload = {
            "user_id": user_id,
            "template_type": template_type,
            "channel": self.channel,
            "substitutions": substitutions,
            **render_notification(NotificationType(template_type), substitutions),
        }

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                with notification_latency_histogram.time():
                    response = await client.post(f"{self.base_url}/notifications", json=payload)
                    response.raise_for_status()
                data = response.json()
                return DeliveryResult(
                    delivered=data.get("status") == "delivered",
                    reference=data.get("notification_id"),
                )

            except httpx.TimeoutException as e:
                raise NotificationDeliveryError(f"Notification sink timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise NotificationDeliveryError(f"Notification sink error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise NotificationDeliveryError(f"Notification sink unreachable: {e}") from e
            except ValueError as e:
                raise NotificationDeliveryError(f"Invalid notification sink response: {e}") from e
