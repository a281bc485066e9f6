"""Delivery of fired interventions to the outside world.

Notifiers never raise: they return success/failure booleans and log errors.
"""

import logging
from typing import Any, Protocol

import httpx

from nudgeguard.config import Settings, get_settings

logger = logging.getLogger(__name__)


class InterventionSink(Protocol):
    async def on_intervention_fired(self, name: str, payload: dict[str, Any]) -> bool: ...


class LoggingNotifier:
    """Writes each intervention to the log. Used when no webhook is configured."""

    def __init__(self) -> None:
        self.delivered: list[tuple[str, dict[str, Any]]] = []

    async def on_intervention_fired(self, name: str, payload: dict[str, Any]) -> bool:
        self.delivered.append((name, payload))
        logger.info("Intervention fired: %s (%s)", name, payload.get("severity", "unknown"))
        return True


class WebhookNotifier:
    """POSTs each intervention as JSON to a webhook URL."""

    def __init__(self, url: str, timeout_seconds: float = 5.0) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds

    async def on_intervention_fired(self, name: str, payload: dict[str, Any]) -> bool:
        """Deliver one intervention.

        Returns:
            True on a 2xx response, False on any HTTP or transport error.
        """
        body = {"name": name, "payload": payload}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(self.url, json=body)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning("Webhook rejected intervention '%s': HTTP %d", name, exc.response.status_code)
            return False
        except httpx.HTTPError:
            logger.exception("Failed to deliver intervention '%s' to webhook", name)
            return False
        logger.info("Intervention '%s' delivered to webhook", name)
        return True


def build_notifier(settings: Settings | None = None) -> InterventionSink:
    settings = settings or get_settings()
    if settings.notification_webhook_url:
        return WebhookNotifier(settings.notification_webhook_url, settings.notification_timeout_seconds)
    logger.info("Notification webhook not configured, interventions will only be logged")
    return LoggingNotifier()
