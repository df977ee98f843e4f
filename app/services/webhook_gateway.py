"""Webhook Gateway — authenticate inbound push deliveries and dispatch redeploys.

The steps run strictly in order; an unauthenticated body is never parsed.
The deploy itself is handed to the coordinator and not awaited, so the
provider sees 202 as soon as the delivery is accepted.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from app.metrics import WEBHOOK_EVENTS
from app.models.deploy_log import DeployTrigger
from app.services.deploy_coordinator import DeployCoordinator
from app.services.project_service import WebhookRegistration
from app.services.webhook_providers import detect_provider, get_adapter
from app.services.webhook_signature import verify_signature

logger = logging.getLogger(__name__)

_WEBHOOK_ID_RE = re.compile(r"[0-9]+")
# Largest value an INTEGER primary key can hold.
MAX_WEBHOOK_ID = 2**31 - 1

WebhookLookup = Callable[[int], "WebhookRegistration | None"]


@dataclass
class WebhookOutcome:
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400


def _error(status_code: int, message: str) -> WebhookOutcome:
    return WebhookOutcome(status_code, {"error": message})


class WebhookGateway:
    def __init__(self, coordinator: DeployCoordinator) -> None:
        self.coordinator = coordinator

    def handle(
        self,
        webhook_id: str,
        raw_body: bytes,
        headers: Mapping[str, str],
        lookup: WebhookLookup,
        client_ip: str = "unknown",
    ) -> WebhookOutcome:
        if not isinstance(webhook_id, str) or not _WEBHOOK_ID_RE.fullmatch(webhook_id):
            logger.warning("Webhook: invalid id format %r from %s", webhook_id, client_ip)
            return _error(400, "Invalid webhook ID")

        # Ids too large for the INTEGER column can never be registered.
        significant = webhook_id.lstrip("0") or "0"
        registration = None
        if len(significant) <= len(str(MAX_WEBHOOK_ID)) and int(significant) <= MAX_WEBHOOK_ID:
            registration = lookup(int(significant))
        if registration is None or not registration.enabled:
            logger.warning("Webhook %s: not found or disabled", webhook_id)
            return _error(404, "Webhook not found or disabled")

        normalized = {str(key).lower(): value for key, value in headers.items()}

        provider = detect_provider(normalized)
        if provider is None:
            logger.warning("Webhook %s: unknown provider from %s", webhook_id, client_ip)
            WEBHOOK_EVENTS.labels(provider="unknown", outcome="rejected").inc()
            return _error(400, "Unknown webhook provider")
        adapter = get_adapter(provider)

        if not verify_signature(provider, raw_body, normalized, registration.secret):
            logger.warning(
                "Webhook %s: invalid %s signature from %s (event=%s)",
                webhook_id,
                provider.value,
                client_ip,
                adapter.event_name(normalized),
            )
            WEBHOOK_EVENTS.labels(provider=provider.value, outcome="unauthorized").inc()
            return _error(401, "Invalid signature")

        if not adapter.is_push(normalized):
            logger.debug("Webhook %s: ignoring %s event %s", webhook_id, provider.value, adapter.event_name(normalized))
            WEBHOOK_EVENTS.labels(provider=provider.value, outcome="ignored").inc()
            return WebhookOutcome(200, {"message": "Event ignored (not a push)"})

        try:
            payload = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("Webhook %s: invalid JSON payload: %s", webhook_id, exc)
            return _error(400, "Invalid JSON payload")

        branch = adapter.extract_branch(payload)
        if not branch:
            logger.warning("Webhook %s: could not determine branch (%s)", webhook_id, provider.value)
            return _error(400, "Could not determine branch")

        if branch != registration.branch:
            logger.debug(
                "Webhook %s: branch %s ignored, configured %s", webhook_id, branch, registration.branch
            )
            WEBHOOK_EVENTS.labels(provider=provider.value, outcome="ignored").inc()
            return WebhookOutcome(
                200,
                {"message": "Branch ignored", "received": branch, "configured": registration.branch},
            )

        commit = adapter.extract_commit(payload)
        target = registration.project
        logger.info(
            "Webhook %s: triggering deployment of %s (%s, branch %s, commit %s)",
            webhook_id,
            target.key,
            provider.value,
            branch,
            commit.short_hash or "-",
        )
        self.coordinator.dispatch(target, DeployTrigger.webhook, commit.hash)
        WEBHOOK_EVENTS.labels(provider=provider.value, outcome="accepted").inc()
        return WebhookOutcome(
            202,
            {
                "message": "Deployment triggered",
                "project": target.project_name,
                "branch": branch,
                "commit": commit.short_hash,
            },
        )
