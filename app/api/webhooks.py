"""Webhooks API — unauthenticated endpoint for git provider push events.

Authentication is the per-webhook signature checked by the gateway.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_gateway
from app.rate_limit import webhook_limiter
from app.services.project_service import ProjectService
from app.services.webhook_gateway import WebhookGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/{webhook_id}")
async def receive_webhook(
    webhook_id: str,
    request: Request,
    db: Session = Depends(get_db),
    gateway: WebhookGateway = Depends(get_gateway),
) -> JSONResponse:
    """Receive a push delivery from GitHub, GitLab or Bitbucket."""
    webhook_limiter.check(request)
    body = await request.body()

    outcome = gateway.handle(
        webhook_id,
        body,
        request.headers,
        lookup=ProjectService(db).resolve_webhook,
        client_ip=webhook_limiter.client_ip(request),
    )
    if outcome.is_error:
        raise HTTPException(status_code=outcome.status_code, detail=outcome.body.get("error"))
    return JSONResponse(status_code=outcome.status_code, content=outcome.body)
