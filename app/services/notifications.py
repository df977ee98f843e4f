"""Deploy notifications — fire-and-forget sinks for deploy outcomes."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Protocol

import httpx

from app.config import settings
from app.services.webhook_signature import sign_payload

logger = logging.getLogger(__name__)

TIMEOUT_SECONDS = 10


@dataclass(frozen=True)
class DeployNotification:
    event: str  # "success" | "failure" | "skip"
    project: str
    trigger: str
    has_changes: bool = False
    commit: str | None = None
    error: str | None = None
    timestamp: str = ""

    def to_dict(self) -> dict:
        data = asdict(self)
        data["timestamp"] = self.timestamp or datetime.now(UTC).isoformat()
        return data


class NotificationSink(Protocol):
    async def notify(self, notification: DeployNotification) -> None: ...


class LoggingNotificationSink:
    async def notify(self, notification: DeployNotification) -> None:
        if notification.error:
            logger.warning(
                "Deploy %s for %s (trigger=%s, changes=%s): %s",
                notification.event,
                notification.project,
                notification.trigger,
                notification.has_changes,
                notification.error,
            )
            return
        logger.info(
            "Deploy %s for %s (trigger=%s, changes=%s)",
            notification.event,
            notification.project,
            notification.trigger,
            notification.has_changes,
        )


class HttpNotificationSink:
    """POST a signed JSON body to an operator-configured URL."""

    def __init__(self, url: str, secret: str | None = None, timeout: float = TIMEOUT_SECONDS) -> None:
        self.url = url
        self.secret = secret
        self.timeout = timeout

    async def notify(self, notification: DeployNotification) -> None:
        body = json.dumps(notification.to_dict(), default=str).encode("utf-8")
        headers = {"Content-Type": "application/json", "X-Dployr-Event": notification.event}
        if self.secret:
            headers["X-Dployr-Signature"] = sign_payload(self.secret, body)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(self.url, content=body, headers=headers)
            if resp.status_code >= 400:
                logger.warning("Notification sink returned %d for %s", resp.status_code, notification.project)
        except httpx.HTTPError as exc:
            logger.warning("Notification delivery failed for %s: %s", notification.project, exc)


def build_notification_sink() -> NotificationSink:
    if settings.notification_webhook_url:
        return HttpNotificationSink(settings.notification_webhook_url, settings.notification_webhook_secret)
    return LoggingNotificationSink()
